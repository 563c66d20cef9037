"""Exception hierarchy for vocabulary construction, segmentation and loading."""

from __future__ import annotations


class FastPieceError(Exception):
    """Base class for every error raised by fastpiece."""


class VocabularyError(FastPieceError, ValueError):
    """The piece list cannot be compiled into a vocabulary."""


class DuplicatePieceError(VocabularyError):
    """Two pieces share the same text and kind, or the same id."""


class EmptyPieceError(VocabularyError):
    """A piece has empty text."""


class NoProgressError(FastPieceError):
    """Segmentation could not cover the input at *position*.

    Retrying with the same input and vocabulary fails the same way, so
    callers either change the input or substitute their own placeholder.
    """

    def __init__(self, message: str, *, position: int = -1, word: bytes = b"") -> None:
        super().__init__(message)
        self.position = position
        self.word = word


class InvalidIdError(FastPieceError, KeyError):
    """A piece id is not present in the vocabulary."""

    def __init__(self, piece_id: int, message: str | None = None) -> None:
        super().__init__(message or f"Piece id {piece_id} is not in the vocabulary")
        self.piece_id = piece_id

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0])


class MalformedModelError(FastPieceError, ValueError):
    """A compiled model blob failed a format or bounds check."""
