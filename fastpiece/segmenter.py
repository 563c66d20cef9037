"""Linear-time greedy longest-match segmentation.

Normalized text is split into words at whitespace (``▁`` or ASCII
whitespace).  Each word is matched against the vocabulary automaton: the
first piece from ``WORD_ROOT``, every following piece from
``CONTINUATION_ROOT``.  The result is exactly what a naive matcher gets by
repeatedly taking the longest piece at the cursor (see
:func:`greedy_reference`), but the automaton walk never moves backwards:
when no transition exists, the current state's pops are emitted and the
walk resumes from its shortcut.  Total work is bounded by the input
length.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from .constants import CONTINUATION_ROOT, SPACE_MARKER, WHITESPACE_BYTES, WORD_ROOT
from .errors import NoProgressError
from .vocab import CompiledVocabulary

_WHITESPACE = frozenset(WHITESPACE_BYTES)


@dataclass(frozen=True)
class PieceOccurrence:
    """One emitted piece; ``end`` is exclusive."""

    piece_id: int
    piece: str
    start: int
    end: int


class Segmenter:
    """Greedy longest-match tokenizer over a :class:`CompiledVocabulary`.

    Holds no per-call state, so one instance can serve concurrent callers.
    """

    def __init__(self, vocab: CompiledVocabulary, marker: bytes = SPACE_MARKER) -> None:
        self.vocab = vocab
        self.marker = marker

    def iter_words(self, text: bytes) -> Iterator[tuple[int, int]]:
        """``(start, end)`` of every maximal run between separators."""
        marker = self.marker
        lead = marker[0] if marker else -1
        n = len(text)
        start: int | None = None
        i = 0
        while i < n:
            byte = text[i]
            if byte in _WHITESPACE:
                step = 1
            elif byte == lead and text.startswith(marker, i):
                step = len(marker)
            else:
                if start is None:
                    start = i
                i += 1
                continue
            if start is not None:
                yield start, i
                start = None
            i += step
        if start is not None:
            yield start, n

    def tokenize(self, text: bytes) -> tuple[list[PieceOccurrence], bool]:
        """Segment *text*.

        Returns the occurrences and ``True``, or the occurrences of the
        words before the first uncoverable word and ``False``.
        """
        occurrences: list[PieceOccurrence] = []
        for start, end in self.iter_words(text):
            if self._segment(text, start, end, occurrences) is not None:
                return occurrences, False
        return occurrences, True

    def segment_word(self, text: bytes, start: int = 0, end: int | None = None) -> list[PieceOccurrence]:
        """Segment ``text[start:end]`` as a single word.

        Raises
        ------
        NoProgressError
            If the vocabulary cannot cover the word.
        """
        end = len(text) if end is None else end
        occurrences: list[PieceOccurrence] = []
        failed_at = self._segment(text, start, end, occurrences)
        if failed_at is not None:
            raise NoProgressError(
                f"Failed to make any progress in tokenizing the input text "
                f"at byte {failed_at}",
                position=failed_at,
                word=text[start:end],
            )
        return occurrences

    def _segment(
        self, text: bytes, start: int, end: int, out: list[PieceOccurrence]
    ) -> int | None:
        """Append the pieces of ``text[start:end]`` to *out*.

        Returns ``None`` on success, or the byte position where matching
        got stuck; in that case nothing is appended for this word.
        """
        vocab = self.vocab
        mark = len(out)
        state = WORD_ROOT
        cursor = start
        i = start
        while i < end:
            byte = text[i]
            nxt = vocab.advance(state, byte)
            while nxt is None:
                target = vocab.shortcut_of(state)
                if target == WORD_ROOT:
                    del out[mark:]
                    return i
                cursor = self._emit(vocab.pops_of(state), cursor, out)
                state = target
                nxt = vocab.advance(state, byte)
            state = nxt
            i += 1

        while state != CONTINUATION_ROOT:
            target = vocab.shortcut_of(state)
            if target == WORD_ROOT:
                del out[mark:]
                return cursor
            cursor = self._emit(vocab.pops_of(state), cursor, out)
            state = target
        return None

    def _emit(self, indices: list[int], cursor: int, out: list[PieceOccurrence]) -> int:
        vocab = self.vocab
        for index in indices:
            length = vocab.piece_length_at(index)
            out.append(
                PieceOccurrence(vocab.id_at(index), vocab.token_at(index), cursor, cursor + length)
            )
            cursor += length
        return cursor


def tokenize(text: bytes, vocab: CompiledVocabulary) -> tuple[list[PieceOccurrence], bool]:
    """Segment *text* with *vocab*; see :meth:`Segmenter.tokenize`."""
    return Segmenter(vocab).tokenize(text)


def greedy_reference(text: bytes, vocab: CompiledVocabulary) -> tuple[list[PieceOccurrence], bool]:
    """Naive greedy longest-match, rescanning from every piece boundary.

    Quadratic in the worst case; kept as the behavioural reference the
    automaton walk must agree with.
    """
    segmenter = Segmenter(vocab)
    table = vocab.prefix_table()
    occurrences: list[PieceOccurrence] = []
    for start, end in segmenter.iter_words(text):
        word = text[start:end]
        mark = len(occurrences)
        pos = 0
        root = WORD_ROOT
        while pos < len(word):
            match = table.longest_match(word, pos, root)
            if match is None:
                del occurrences[mark:]
                return occurrences, False
            piece = match.value
            occurrences.append(
                PieceOccurrence(
                    piece.id, vocab.display(piece), start + pos, start + pos + match.length
                )
            )
            pos += match.length
            root = CONTINUATION_ROOT
    return occurrences, True
