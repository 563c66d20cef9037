"""Reading vocabularies and replacement rules from external files.

Plain-text vocabularies list one display token per line (``##`` marks a
continuation piece) with the line number as id and an optional
tab-separated score.  HuggingFace ``tokenizer.json`` files with a WordPiece
model are read through the ``tokenizers`` library.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path

from tokenizers import Tokenizer

from .constants import DEFAULT_CONTINUATION_MARKER
from .errors import EmptyPieceError
from .vocab import Piece

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "\\": "\\"}
_ESCAPE_RE = re.compile(r"\\(.)")


@dataclass(frozen=True)
class ImportedVocabulary:
    """Pieces read from an external tokenizer plus its marker and unknown piece."""

    pieces: list[Piece]
    continuation_marker: str
    unknown_piece: str | None = None


def read_vocab_file(
    path: str | Path, marker: str = DEFAULT_CONTINUATION_MARKER
) -> list[Piece]:
    """Parse a one-piece-per-line vocabulary file.

    Raises
    ------
    EmptyPieceError
        If a line (other than a final trailing newline) is empty.
    """
    path = Path(path)
    lines = path.read_text(encoding="utf-8").split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    pieces: list[Piece] = []
    for line_no, line in enumerate(lines):
        line = line.rstrip("\r")
        score: float | None = None
        token = line
        if "\t" in line:
            token, raw_score = line.rsplit("\t", 1)
            score = float(raw_score)
        if not token:
            raise EmptyPieceError(f"{path}:{line_no + 1}: empty piece")
        pieces.append(Piece.from_token(token, line_no, marker, score))
    return pieces


def read_replacements_file(path: str | Path) -> dict[str, str]:
    """Parse ``prefix<TAB>replacement`` lines.

    ``\\t``, ``\\n``, ``\\r`` and ``\\\\`` are unescaped in both columns; an
    empty replacement deletes the prefix.  Blank lines are skipped.
    """
    rules: dict[str, str] = {}
    for line_no, line in enumerate(Path(path).read_text(encoding="utf-8").split("\n")):
        line = line.rstrip("\r")
        if not line:
            continue
        if "\t" not in line:
            raise ValueError(f"{path}:{line_no + 1}: expected 'prefix<TAB>replacement'")
        prefix, replacement = line.split("\t", 1)
        rules[_unescape(prefix)] = _unescape(replacement)
    return rules


def pieces_from_hf_tokenizer(path: str | Path) -> ImportedVocabulary:
    """Import the vocabulary of a HuggingFace WordPiece ``tokenizer.json``."""
    tokenizer = Tokenizer.from_file(str(path))
    model = json.loads(tokenizer.to_str()).get("model", {})
    if model.get("type") != "WordPiece":
        raise ValueError(
            f"{path} holds a {model.get('type')!r} model; only WordPiece is supported"
        )
    marker = model.get("continuing_subword_prefix") or DEFAULT_CONTINUATION_MARKER
    vocab = tokenizer.get_vocab(with_added_tokens=False)
    pieces = [
        Piece.from_token(token, piece_id, marker)
        for token, piece_id in sorted(vocab.items(), key=lambda item: item[1])
    ]
    return ImportedVocabulary(pieces, marker, model.get("unk_token"))


def _unescape(text: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(0)), text)
