"""Piece ids back to text.

Continuation pieces are glued to the text before them; every other piece
after the first starts a new word, and words are joined with a single
space.  This inverts segmentation up to whitespace canonicalization.

A continuation piece at the very start of a sequence has nothing to glue
to.  By default it is emitted bare (no separator, no marker); with
``strict=True`` it is rejected with :class:`InvalidIdError`.
"""

from __future__ import annotations

from typing import Sequence

from .constants import WORD_SEPARATOR
from .errors import InvalidIdError
from .vocab import CompiledVocabulary, PieceKind


class Detokenizer:
    """Turns piece ids from one vocabulary back into words and text."""

    def __init__(self, vocab: CompiledVocabulary, *, strict: bool = False) -> None:
        self.vocab = vocab
        self.strict = strict

    def to_words(self, ids: Sequence[int]) -> list[str]:
        """Group *ids* into words, one string per standalone piece."""
        vocab = self.vocab
        words: list[bytearray] = []
        for piece_id in ids:
            index = vocab.index_of_id(int(piece_id))
            text = vocab.piece_text_at(index)
            if vocab.piece_kinds[index] == PieceKind.CONTINUATION:
                if not words:
                    if self.strict:
                        raise InvalidIdError(
                            int(piece_id),
                            f"Continuation piece {vocab.token_at(index)!r} "
                            f"(id {piece_id}) cannot start a sequence",
                        )
                    words.append(bytearray())
                words[-1] += text
            else:
                words.append(bytearray(text))
        return [word.decode("utf-8", errors="replace") for word in words]

    def detokenize(self, ids: Sequence[int]) -> str:
        return WORD_SEPARATOR.join(self.to_words(ids))

    def detokenize_groups(self, ids: Sequence[int], boundaries: Sequence[int]) -> list[str]:
        """Detokenize each ``ids[boundaries[i]:boundaries[i + 1]]``.

        *boundaries* are row splits: they start at 0, never decrease and
        end at ``len(ids)``.
        """
        splits = [int(b) for b in boundaries]
        if not splits or splits[0] != 0 or splits[-1] != len(ids):
            raise ValueError(
                f"boundaries must start at 0 and end at {len(ids)}, got {splits}"
            )
        if any(lo > hi for lo, hi in zip(splits, splits[1:])):
            raise ValueError(f"boundaries must be non-decreasing, got {splits}")
        return [self.detokenize(ids[lo:hi]) for lo, hi in zip(splits, splits[1:])]


def detokenize(ids: Sequence[int], vocab: CompiledVocabulary, *, strict: bool = False) -> str:
    """Join the pieces for *ids*; raises :class:`InvalidIdError` on unknown ids."""
    return Detokenizer(vocab, strict=strict).detokenize(ids)


def detokenize_groups(
    ids: Sequence[int],
    boundaries: Sequence[int],
    vocab: CompiledVocabulary,
    *,
    strict: bool = False,
) -> list[str]:
    return Detokenizer(vocab, strict=strict).detokenize_groups(ids, boundaries)


def detokenize_to_words(
    ids: Sequence[int], vocab: CompiledVocabulary, *, strict: bool = False
) -> list[str]:
    return Detokenizer(vocab, strict=strict).to_words(ids)
