"""Tests for writing, loading and rejecting compiled model blobs."""

from __future__ import annotations

import struct
from pathlib import Path

import numpy as np
import pytest

from fastpiece.constants import MODEL_MAGIC, SECTION_NORM_POOL, SECTION_SHORTCUT
from fastpiece.errors import MalformedModelError
from fastpiece.normalizer import NormalizerOptions
from fastpiece.segmenter import tokenize
from fastpiece.serialization import CompiledModel, load_model, model_to_bytes, save_model
from fastpiece.vocab import Piece

_TOKENS = ["a", "ab", "##c", "abc", "##d", "[UNK]"]
_HEADER = struct.Struct("<4sII")
_ENTRY = struct.Struct("<4sIQQ")


@pytest.fixture()
def model() -> CompiledModel:
    return CompiledModel.build(
        [Piece.from_token(t, i, score=-float(i)) for i, t in enumerate(_TOKENS)],
        {"é": "e", "\u00a0": " "},
        NormalizerOptions(escape_whitespaces=True, add_dummy_prefix=False),
        unknown_piece="[UNK]",
    )


@pytest.fixture()
def blob(model: CompiledModel) -> bytes:
    return model_to_bytes(model)


def _entries(blob: bytes) -> list[tuple[bytes, int, int, int]]:
    _, _, count = _HEADER.unpack_from(blob, 0)
    return [_ENTRY.unpack_from(blob, _HEADER.size + i * _ENTRY.size) for i in range(count)]


class TestRoundTrip:
    def test_bytes_roundtrip(self, model: CompiledModel, blob: bytes) -> None:
        loaded = load_model(blob)
        assert loaded.vocab.get_vocab() == model.vocab.get_vocab()
        assert loaded.options == model.options
        assert loaded.unknown_piece == "[UNK]"
        assert loaded.continuation_marker == "##"
        assert loaded.replacements.items() == model.replacements.items()
        for name in ("shortcut", "pop_start", "pop_count", "pop_pool", "piece_text"):
            np.testing.assert_array_equal(getattr(loaded.vocab, name), getattr(model.vocab, name))

    def test_scores_survive(self, blob: bytes) -> None:
        loaded = load_model(blob)
        assert loaded.vocab.lookup_by_id(3).score == pytest.approx(-3.0)

    def test_file_roundtrip_is_memory_mapped(self, model: CompiledModel, tmp_path: Path) -> None:
        path = save_model(model, tmp_path / "nested" / "model.fpcm")
        assert path.exists()
        loaded = load_model(path)
        assert isinstance(loaded.vocab.trie.base, np.memmap)
        text = "▁a▁abc▁abcd".encode("utf-8")
        assert tokenize(text, loaded.vocab) == tokenize(text, model.vocab)

    def test_blob_is_deterministic(self, model: CompiledModel, blob: bytes) -> None:
        assert model_to_bytes(model) == blob

    def test_sections_are_aligned(self, blob: bytes) -> None:
        for _, _, offset, _ in _entries(blob):
            assert offset % 8 == 0

    def test_loaded_tables_are_read_only(self, blob: bytes) -> None:
        loaded = load_model(bytearray(blob))
        with pytest.raises(ValueError):
            loaded.vocab.shortcut[0] = 1

    def test_unknown_piece_must_exist(self, model: CompiledModel) -> None:
        with pytest.raises(ValueError):
            CompiledModel(model.vocab, model.replacements, unknown_piece="<missing>")


class TestCorruption:
    def test_bad_magic(self, blob: bytes) -> None:
        with pytest.raises(MalformedModelError):
            load_model(b"XXXX" + blob[4:])

    def test_bad_version(self, blob: bytes) -> None:
        bad = bytearray(blob)
        struct.pack_into("<I", bad, 4, 99)
        with pytest.raises(MalformedModelError):
            load_model(bytes(bad))

    @pytest.mark.parametrize("length", [0, 3, 11, 40])
    def test_truncated(self, blob: bytes, length: int) -> None:
        with pytest.raises(MalformedModelError):
            load_model(blob[:length])

    def test_truncated_payload(self, blob: bytes) -> None:
        with pytest.raises(MalformedModelError):
            load_model(blob[: len(blob) // 2])

    def test_section_offset_out_of_bounds(self, blob: bytes) -> None:
        bad = bytearray(blob)
        tag, dtype_id, _, length = _ENTRY.unpack_from(bad, _HEADER.size)
        _ENTRY.pack_into(bad, _HEADER.size, tag, dtype_id, len(blob) * 2, length)
        with pytest.raises(MalformedModelError):
            load_model(bytes(bad))

    def test_implausible_section_count(self, blob: bytes) -> None:
        bad = bytearray(blob)
        struct.pack_into("<I", bad, 8, 10_000)
        with pytest.raises(MalformedModelError):
            load_model(bytes(bad))

    def test_shortcut_out_of_range(self, blob: bytes) -> None:
        bad = bytearray(blob)
        for tag, _, offset, _ in _entries(blob):
            if tag == SECTION_SHORTCUT:
                struct.pack_into("<i", bad, offset, 1_000_000)
        with pytest.raises(MalformedModelError):
            load_model(bytes(bad))

    def test_replacement_not_utf8(self, blob: bytes) -> None:
        bad = bytearray(blob)
        for tag, _, offset, length in _entries(blob):
            if tag == SECTION_NORM_POOL:
                bad[offset:offset + length] = b"\xc3" * length
        with pytest.raises(MalformedModelError, match="UTF-8"):
            load_model(bytes(bad))

    def test_garbage_metadata(self, blob: bytes) -> None:
        bad = bytearray(blob)
        tag, _, offset, length = _entries(blob)[0]
        assert tag == b"META"
        bad[offset:offset + length] = b"\xff" * length
        with pytest.raises(MalformedModelError):
            load_model(bytes(bad))

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.fpcm"
        path.write_bytes(b"")
        with pytest.raises(MalformedModelError):
            load_model(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_model(tmp_path / "absent.fpcm")

    def test_header_magic_constant(self, blob: bytes) -> None:
        assert blob[:4] == MODEL_MAGIC
