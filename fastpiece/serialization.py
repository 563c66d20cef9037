"""Compiled-model blob: save and zero-copy load.

Layout (all integers little-endian)::

    magic   4s   b"FPCM"
    version u32
    count   u32  number of sections
    count x (tag 4s, dtype u32, offset u64, length u64)
    ... 8-byte aligned section payloads ...

Every table of the vocabulary automaton and the replacement trie is one
section; ``META`` holds a small JSON document with the marker and the
normalizer options.  Loading views each section straight over the blob
(``np.memmap`` for files, ``np.frombuffer`` for bytes) and validates all
offsets before any table is used, so a corrupt blob fails with
:class:`MalformedModelError` instead of reading out of bounds.
"""

from __future__ import annotations

import json
import logging
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

import numpy as np

from .constants import (
    DEFAULT_CONTINUATION_MARKER,
    DTYPE_CODES,
    DTYPE_IDS,
    MODEL_MAGIC,
    MODEL_VERSION,
    NUM_ROOTS,
    REQUIRED_SECTIONS,
    SECTION_ALIGNMENT,
    SECTION_META,
    SECTION_NORM_BASE,
    SECTION_NORM_CHECK,
    SECTION_NORM_OFFSETS,
    SECTION_NORM_POOL,
    SECTION_NORM_VALUE,
    SECTION_PIECE_IDS,
    SECTION_PIECE_KINDS,
    SECTION_PIECE_OFFSETS,
    SECTION_PIECE_SCORES,
    SECTION_PIECE_TEXT,
    SECTION_POP_COUNT,
    SECTION_POP_POOL,
    SECTION_POP_START,
    SECTION_SHORTCUT,
    SECTION_VOCAB_ACCEPT,
    SECTION_VOCAB_BASE,
    SECTION_VOCAB_CHECK,
)
from .errors import MalformedModelError, VocabularyError
from .normalizer import NormalizerOptions, ReplacementTable
from .trie import DoubleArrayTrie
from .vocab import CompiledVocabulary, Piece

logger = logging.getLogger("fastpiece.serialization")

_HEADER = struct.Struct("<4sII")
_ENTRY = struct.Struct("<4sIQQ")
_MAX_SECTIONS = 64


@dataclass
class CompiledModel:
    """Everything a tokenizer needs: vocabulary, replacements and policy."""

    vocab: CompiledVocabulary
    replacements: ReplacementTable
    options: NormalizerOptions = field(default_factory=NormalizerOptions)
    unknown_piece: str | None = None

    def __post_init__(self) -> None:
        if self.unknown_piece is not None and self.unknown_piece not in self.vocab:
            raise ValueError(
                f"unknown_piece {self.unknown_piece!r} is not in the vocabulary"
            )

    @property
    def continuation_marker(self) -> str:
        return self.vocab.continuation_marker

    @classmethod
    def build(
        cls,
        pieces: Iterable[Piece],
        replacements: Mapping[str | bytes, str | bytes] | None = None,
        options: NormalizerOptions | None = None,
        *,
        continuation_marker: str = DEFAULT_CONTINUATION_MARKER,
        unknown_piece: str | None = None,
        show_progress: bool = False,
    ) -> CompiledModel:
        vocab = CompiledVocabulary.build(
            pieces, continuation_marker=continuation_marker, show_progress=show_progress
        )
        table = ReplacementTable.build(replacements or {})
        return cls(vocab, table, options or NormalizerOptions(), unknown_piece)


# ── Writing ────────────────────────────────────────────────────────


class ModelWriter:
    """Collects typed sections and writes the blob."""

    def __init__(self) -> None:
        self.sections: list[tuple[bytes, int, np.ndarray]] = []

    def add_array(self, tag: bytes, array: np.ndarray, dtype: str) -> None:
        data = np.ascontiguousarray(array, dtype=np.dtype(dtype))
        self.sections.append((tag, DTYPE_IDS[dtype], data))

    def add_json(self, tag: bytes, payload: dict[str, Any]) -> None:
        raw = json.dumps(payload, sort_keys=True).encode("utf-8")
        self.add_array(tag, np.frombuffer(raw, dtype=np.uint8), "u1")

    def to_bytes(self) -> bytes:
        header_size = _HEADER.size + _ENTRY.size * len(self.sections)
        offset = _align(header_size)
        entries: list[bytes] = []
        for tag, dtype_id, data in self.sections:
            entries.append(_ENTRY.pack(tag, dtype_id, offset, len(data)))
            offset = _align(offset + data.nbytes)

        out = bytearray(_HEADER.pack(MODEL_MAGIC, MODEL_VERSION, len(self.sections)))
        for entry in entries:
            out += entry
        for _, _, data in self.sections:
            out += b"\x00" * (_align(len(out)) - len(out))
            out += data.tobytes()
        out += b"\x00" * (_align(len(out)) - len(out))
        return bytes(out)


def model_to_bytes(model: CompiledModel) -> bytes:
    vocab, table = model.vocab, model.replacements
    writer = ModelWriter()
    writer.add_json(
        SECTION_META,
        {
            "continuation_marker": vocab.continuation_marker,
            "add_dummy_prefix": model.options.add_dummy_prefix,
            "remove_extra_whitespaces": model.options.remove_extra_whitespaces,
            "escape_whitespaces": model.options.escape_whitespaces,
            "unknown_piece": model.unknown_piece,
        },
    )
    writer.add_array(SECTION_VOCAB_BASE, vocab.trie.base, "<i4")
    writer.add_array(SECTION_VOCAB_CHECK, vocab.trie.check, "<i4")
    writer.add_array(SECTION_VOCAB_ACCEPT, vocab.trie.value, "<i4")
    writer.add_array(SECTION_SHORTCUT, vocab.shortcut, "<i4")
    writer.add_array(SECTION_POP_START, vocab.pop_start, "<i4")
    writer.add_array(SECTION_POP_COUNT, vocab.pop_count, "<i4")
    writer.add_array(SECTION_POP_POOL, vocab.pop_pool, "<i4")
    writer.add_array(SECTION_PIECE_IDS, vocab.piece_ids, "<i4")
    writer.add_array(SECTION_PIECE_KINDS, vocab.piece_kinds, "u1")
    writer.add_array(SECTION_PIECE_SCORES, vocab.piece_scores, "<f4")
    writer.add_array(SECTION_PIECE_OFFSETS, vocab.piece_offsets, "<i4")
    writer.add_array(SECTION_PIECE_TEXT, vocab.piece_text, "u1")
    writer.add_array(SECTION_NORM_BASE, table.trie.base, "<i4")
    writer.add_array(SECTION_NORM_CHECK, table.trie.check, "<i4")
    writer.add_array(SECTION_NORM_VALUE, table.trie.value, "<i4")
    writer.add_array(SECTION_NORM_OFFSETS, table.offsets, "<i4")
    writer.add_array(SECTION_NORM_POOL, table.pool, "u1")
    return writer.to_bytes()


def save_model(model: CompiledModel, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    blob = model_to_bytes(model)
    path.write_bytes(blob)
    logger.info("Saved compiled model to %s (%d bytes)", path, len(blob))
    return path


# ── Loading ────────────────────────────────────────────────────────


def load_model(source: str | Path | bytes | bytearray | memoryview) -> CompiledModel:
    """Interpret a compiled blob without copying its tables.

    Raises
    ------
    MalformedModelError
        If the blob is truncated, has an unknown layout or any table fails
        its bounds checks.  No partially loaded model is returned.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Model file not found: {path}")
        if path.stat().st_size == 0:
            raise MalformedModelError(f"Model file is empty: {path}")
        buffer = np.memmap(path, dtype=np.uint8, mode="r")
        origin = str(path)
    else:
        if not len(source):
            raise MalformedModelError("Model blob is empty")
        buffer = np.frombuffer(source, dtype=np.uint8)
        origin = "<bytes>"

    sections = _read_sections(buffer)
    meta = _read_meta(sections[SECTION_META])

    try:
        vocab_trie = DoubleArrayTrie(
            sections[SECTION_VOCAB_BASE],
            sections[SECTION_VOCAB_CHECK],
            sections[SECTION_VOCAB_ACCEPT],
            num_roots=NUM_ROOTS,
        )
        vocab = CompiledVocabulary(
            vocab_trie,
            sections[SECTION_SHORTCUT],
            sections[SECTION_POP_START],
            sections[SECTION_POP_COUNT],
            sections[SECTION_POP_POOL],
            sections[SECTION_PIECE_IDS],
            sections[SECTION_PIECE_KINDS],
            sections[SECTION_PIECE_SCORES],
            sections[SECTION_PIECE_OFFSETS],
            sections[SECTION_PIECE_TEXT],
            continuation_marker=meta["continuation_marker"],
            validate=True,
        )
        table = ReplacementTable(
            DoubleArrayTrie(
                sections[SECTION_NORM_BASE],
                sections[SECTION_NORM_CHECK],
                sections[SECTION_NORM_VALUE],
                num_roots=1,
            ),
            sections[SECTION_NORM_OFFSETS],
            sections[SECTION_NORM_POOL],
        )
        table.validate()
        model = CompiledModel(
            vocab,
            table,
            NormalizerOptions(
                add_dummy_prefix=meta["add_dummy_prefix"],
                remove_extra_whitespaces=meta["remove_extra_whitespaces"],
                escape_whitespaces=meta["escape_whitespaces"],
            ),
            meta["unknown_piece"],
        )
    except MalformedModelError:
        raise
    except (VocabularyError, ValueError) as exc:
        raise MalformedModelError(f"Invalid compiled model {origin}: {exc}") from exc

    logger.info(
        "Loaded compiled model from %s: %d pieces, %d replacement rules",
        origin, len(vocab), len(table),
    )
    return model


def _read_sections(buffer: np.ndarray) -> dict[bytes, np.ndarray]:
    size = len(buffer)
    if size < _HEADER.size:
        raise MalformedModelError(f"Blob too small for a header ({size} bytes)")
    magic, version, count = _HEADER.unpack(buffer[: _HEADER.size].tobytes())
    if magic != MODEL_MAGIC:
        raise MalformedModelError(f"Bad magic {magic!r}, expected {MODEL_MAGIC!r}")
    if version != MODEL_VERSION:
        raise MalformedModelError(f"Unsupported model version {version}")
    if count > _MAX_SECTIONS:
        raise MalformedModelError(f"Implausible section count {count}")
    directory_end = _HEADER.size + count * _ENTRY.size
    if directory_end > size:
        raise MalformedModelError("Section directory runs past the end of the blob")

    sections: dict[bytes, np.ndarray] = {}
    for i in range(count):
        start = _HEADER.size + i * _ENTRY.size
        tag, dtype_id, offset, length = _ENTRY.unpack(
            buffer[start:start + _ENTRY.size].tobytes()
        )
        if tag in sections:
            raise MalformedModelError(f"Section {tag!r} appears twice")
        if dtype_id not in DTYPE_CODES:
            raise MalformedModelError(f"Section {tag!r} has unknown dtype {dtype_id}")
        dtype = np.dtype(DTYPE_CODES[dtype_id])
        nbytes = length * dtype.itemsize
        if offset < directory_end or offset % SECTION_ALIGNMENT or offset + nbytes > size:
            raise MalformedModelError(
                f"Section {tag!r} [{offset}, {offset + nbytes}) lies outside the blob"
            )
        sections[tag] = buffer[offset:offset + nbytes].view(dtype)

    missing = [tag for tag in REQUIRED_SECTIONS if tag not in sections]
    if missing:
        raise MalformedModelError(f"Missing sections: {missing}")
    expected = {
        SECTION_META: "u1",
        SECTION_PIECE_KINDS: "u1",
        SECTION_PIECE_TEXT: "u1",
        SECTION_NORM_POOL: "u1",
        SECTION_PIECE_SCORES: "<f4",
    }
    for tag in REQUIRED_SECTIONS:
        want = np.dtype(expected.get(tag, "<i4"))
        if sections[tag].dtype != want:
            raise MalformedModelError(f"Section {tag!r} has dtype {sections[tag].dtype}")
    return sections


def _read_meta(raw: np.ndarray) -> dict[str, Any]:
    try:
        meta = json.loads(raw.tobytes().decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedModelError(f"Unreadable metadata section: {exc}") from exc
    if not isinstance(meta, dict):
        raise MalformedModelError("Metadata section is not a JSON object")
    if not isinstance(meta.get("continuation_marker"), str):
        raise MalformedModelError("Metadata lacks a continuation_marker string")
    for flag in ("add_dummy_prefix", "remove_extra_whitespaces", "escape_whitespaces"):
        if not isinstance(meta.get(flag), bool):
            raise MalformedModelError(f"Metadata flag {flag!r} must be a boolean")
    unknown = meta.get("unknown_piece")
    if unknown is not None and not isinstance(unknown, str):
        raise MalformedModelError("Metadata unknown_piece must be a string or null")
    meta["unknown_piece"] = unknown
    return meta


def _align(offset: int) -> int:
    return (offset + SECTION_ALIGNMENT - 1) // SECTION_ALIGNMENT * SECTION_ALIGNMENT
