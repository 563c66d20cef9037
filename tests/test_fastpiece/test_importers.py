"""Tests for vocabulary and replacement file readers."""

from __future__ import annotations

from pathlib import Path

import pytest

from fastpiece.errors import EmptyPieceError
from fastpiece.importers import pieces_from_hf_tokenizer, read_replacements_file, read_vocab_file
from fastpiece.serialization import CompiledModel
from fastpiece.vocab import PieceKind
from fastpiece.wrapper import FastPieceTokenizer


class TestReadVocabFile:
    def test_line_number_is_id(self, tmp_path: Path) -> None:
        path = tmp_path / "vocab.txt"
        path.write_text("[UNK]\nthe\n##ing\n", encoding="utf-8")
        pieces = read_vocab_file(path)
        assert [(p.text, p.id, p.kind) for p in pieces] == [
            (b"[UNK]", 0, PieceKind.STANDALONE),
            (b"the", 1, PieceKind.STANDALONE),
            (b"ing", 2, PieceKind.CONTINUATION),
        ]

    def test_scores_and_crlf(self, tmp_path: Path) -> None:
        path = tmp_path / "vocab.txt"
        path.write_bytes(b"a\t-1.5\r\n@@b\t-2\r\n")
        pieces = read_vocab_file(path, marker="@@")
        assert [p.score for p in pieces] == [-1.5, -2.0]
        assert pieces[1].is_continuation

    def test_empty_line_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "vocab.txt"
        path.write_text("a\n\nb\n", encoding="utf-8")
        with pytest.raises(EmptyPieceError, match=":2:"):
            read_vocab_file(path)

    def test_unicode_line_separators_kept_in_piece(self, tmp_path: Path) -> None:
        path = tmp_path / "vocab.txt"
        path.write_text("a\u2028b\nc\n", encoding="utf-8")
        assert [p.text.decode("utf-8") for p in read_vocab_file(path)] == ["a\u2028b", "c"]


class TestReadReplacementsFile:
    def test_rules_and_escapes(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.tsv"
        path.write_text("é\te\n\\t\t\\s\n\\\\\t/\n-\t\n\n", encoding="utf-8")
        assert read_replacements_file(path) == {
            "é": "e",
            "\t": "\\s",
            "\\": "/",
            "-": "",
        }

    def test_missing_tab_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.tsv"
        path.write_text("abc\n", encoding="utf-8")
        with pytest.raises(ValueError, match=":1:"):
            read_replacements_file(path)


class TestHFImport:
    @pytest.fixture()
    def hf_path(self, tmp_path: Path) -> Path:
        tokenizers = pytest.importorskip("tokenizers")
        vocab = {
            "[UNK]": 0, "a": 1, "ab": 2, "##c": 3, "abc": 4, "##d": 5,
            "b": 6, "##b": 7, "##a": 8, "c": 9, "##bc": 10, "d": 11,
        }
        hf = tokenizers.Tokenizer(tokenizers.models.WordPiece(vocab=vocab, unk_token="[UNK]"))
        hf.pre_tokenizer = tokenizers.pre_tokenizers.WhitespaceSplit()
        path = tmp_path / "tokenizer.json"
        hf.save(str(path))
        return path

    def test_import(self, hf_path: Path) -> None:
        imported = pieces_from_hf_tokenizer(hf_path)
        assert imported.continuation_marker == "##"
        assert imported.unknown_piece == "[UNK]"
        assert len(imported.pieces) == 12
        assert [p.id for p in imported.pieces] == list(range(12))

    def test_agrees_with_hf_wordpiece(self, hf_path: Path) -> None:
        from tokenizers import Tokenizer

        hf = Tokenizer.from_file(str(hf_path))
        imported = pieces_from_hf_tokenizer(hf_path)
        tok = FastPieceTokenizer(
            CompiledModel.build(
                imported.pieces,
                continuation_marker=imported.continuation_marker,
                unknown_piece=imported.unknown_piece,
            )
        )
        for text in ["a abc abcd", "abbc  ba\tdcab", "abx cab", "dd b abab", ""]:
            expected = hf.encode(text)
            result = tok.tokenize_with_offsets(text)
            assert result.ids == expected.ids, text
            assert list(zip(result.start_offsets, result.end_offsets)) == expected.offsets, text

    def test_rejects_non_wordpiece(self, tmp_path: Path) -> None:
        tokenizers = pytest.importorskip("tokenizers")
        hf = tokenizers.Tokenizer(tokenizers.models.BPE(vocab={"a": 0}, merges=[]))
        path = tmp_path / "bpe.json"
        hf.save(str(path))
        with pytest.raises(ValueError, match="WordPiece"):
            pieces_from_hf_tokenizer(path)
