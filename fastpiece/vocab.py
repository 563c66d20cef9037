"""Compiled vocabulary automaton with shortcut links.

The vocabulary is a two-root :class:`~fastpiece.trie.DoubleArrayTrie`:
word-initial pieces hang off ``WORD_ROOT`` and continuation pieces off
``CONTINUATION_ROOT``.  On top of the transitions every state carries

* ``accept``: index of the piece spelled by the state, or -1;
* ``shortcut``: where to resume when no transition exists.  For a state
  spelling ``s`` it is the state reached by greedily dropping the
  longest-match pieces from the front of ``s`` and re-entering the
  continuation trie with what is left;
* ``pops``: the pieces dropped on the way, emitted when the shortcut is
  taken.

With these links the segmenter never looks at an input byte twice, which
keeps tokenization linear in the input length whatever the vocabulary.
A shortcut equal to ``WORD_ROOT`` means there is none.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Iterator

import numpy as np

from .constants import (
    CONTINUATION_ROOT,
    DEFAULT_CONTINUATION_MARKER,
    NUM_ROOTS,
    WORD_ROOT,
)
from .errors import (
    DuplicatePieceError,
    EmptyPieceError,
    InvalidIdError,
    MalformedModelError,
    VocabularyError,
)
from .trie import DoubleArrayTrie, PrefixTable, TrieBuilder

logger = logging.getLogger("fastpiece.vocab")


class PieceKind(enum.IntEnum):
    """Whether a piece starts a word or continues the previous piece."""

    STANDALONE = 0
    CONTINUATION = 1


@dataclass(frozen=True)
class Piece:
    """A vocabulary entry.

    ``text`` holds the surface bytes matched in the input; a continuation
    marker such as ``##`` is never part of it.
    """

    text: bytes
    id: int
    kind: PieceKind = PieceKind.STANDALONE
    score: float | None = None

    @property
    def is_continuation(self) -> bool:
        return self.kind is PieceKind.CONTINUATION

    @classmethod
    def from_token(
        cls,
        token: str,
        piece_id: int,
        marker: str = DEFAULT_CONTINUATION_MARKER,
        score: float | None = None,
    ) -> Piece:
        """Parse a display token such as ``"##ing"`` into a piece.

        A token that is exactly the marker is a standalone piece.
        """
        if marker and token.startswith(marker) and len(token) > len(marker):
            return cls(
                token[len(marker):].encode("utf-8"),
                piece_id,
                PieceKind.CONTINUATION,
                score,
            )
        return cls(token.encode("utf-8"), piece_id, PieceKind.STANDALONE, score)

    def display(self, marker: str = DEFAULT_CONTINUATION_MARKER) -> str:
        text = self.text.decode("utf-8", errors="replace")
        return marker + text if self.is_continuation else text


class CompiledVocabulary:
    """Immutable, shareable vocabulary automaton.

    Construct with :meth:`build` from a piece list, or let
    :func:`fastpiece.serialization.load_model` wrap arrays viewed over a
    compiled blob.  Piece arrays are indexed by *piece index* (position in
    the build list); ids are looked up through :meth:`lookup_by_id`.
    """

    def __init__(
        self,
        trie: DoubleArrayTrie,
        shortcut: np.ndarray,
        pop_start: np.ndarray,
        pop_count: np.ndarray,
        pop_pool: np.ndarray,
        piece_ids: np.ndarray,
        piece_kinds: np.ndarray,
        piece_scores: np.ndarray,
        piece_offsets: np.ndarray,
        piece_text: np.ndarray,
        continuation_marker: str = DEFAULT_CONTINUATION_MARKER,
        validate: bool = False,
    ) -> None:
        self.trie = trie
        self.shortcut = _readonly(shortcut)
        self.pop_start = _readonly(pop_start)
        self.pop_count = _readonly(pop_count)
        self.pop_pool = _readonly(pop_pool)
        self.piece_ids = _readonly(piece_ids)
        self.piece_kinds = _readonly(piece_kinds)
        self.piece_scores = _readonly(piece_scores)
        self.piece_offsets = _readonly(piece_offsets)
        self.piece_text = _readonly(piece_text)
        self.continuation_marker = continuation_marker
        if validate:
            self.validate()

        self._index_by_id: dict[int, int] = {}
        for index, piece_id in enumerate(self.piece_ids.tolist()):
            if piece_id in self._index_by_id:
                raise DuplicatePieceError(
                    f"Piece id {piece_id} is used by pieces "
                    f"#{self._index_by_id[piece_id]} and #{index}"
                )
            self._index_by_id[piece_id] = index
        self._tokens = [self.piece_at(i).display(continuation_marker) for i in range(len(self))]
        self._index_by_token = {token: i for i, token in enumerate(self._tokens)}

    # ── Construction ───────────────────────────────────────────────

    @classmethod
    def build(
        cls,
        pieces: Iterable[Piece],
        *,
        continuation_marker: str = DEFAULT_CONTINUATION_MARKER,
        show_progress: bool = False,
    ) -> CompiledVocabulary:
        """Compile *pieces* into an automaton.

        Raises
        ------
        EmptyPieceError
            If a piece has empty text.
        DuplicatePieceError
            If two pieces share text and kind, or share an id.
        """
        pieces = list(pieces)
        builder = TrieBuilder(NUM_ROOTS)
        index_by_id: dict[int, int] = {}
        for index, piece in enumerate(pieces):
            if not piece.text:
                raise EmptyPieceError(f"Piece #{index} (id {piece.id}) has empty text")
            if piece.id < 0:
                raise VocabularyError(f"Piece #{index} has negative id {piece.id}")
            if piece.id in index_by_id:
                raise DuplicatePieceError(
                    f"Piece id {piece.id} is used by pieces "
                    f"#{index_by_id[piece.id]} and #{index}"
                )
            index_by_id[piece.id] = index
            root = CONTINUATION_ROOT if piece.is_continuation else WORD_ROOT
            previous = builder.insert(piece.text, index, root)
            if previous is not None:
                raise DuplicatePieceError(
                    f"Piece {piece.display(continuation_marker)!r} (id {piece.id}) "
                    f"duplicates id {pieces[previous].id}"
                )

        trie, node_to_state = builder.layout(
            show_progress=show_progress, desc="Compiling vocabulary"
        )
        links, pops = _shortcut_links(builder)

        shortcut = np.full(trie.size, WORD_ROOT, dtype=np.int32)
        pop_start = np.zeros(trie.size, dtype=np.int32)
        pop_count = np.zeros(trie.size, dtype=np.int32)
        pool: list[int] = []
        for node, link in enumerate(links):
            if link is None:
                continue
            state = node_to_state[node]
            shortcut[state] = node_to_state[link]
            pop_start[state] = len(pool)
            pop_count[state] = len(pops[node])
            pool.extend(pops[node])

        lengths = np.asarray([len(p.text) for p in pieces], dtype=np.int64)
        offsets = np.concatenate([[0], np.cumsum(lengths)]).astype(np.int32)
        vocab = cls(
            trie,
            shortcut,
            pop_start,
            pop_count,
            np.asarray(pool, dtype=np.int32),
            np.asarray([p.id for p in pieces], dtype=np.int32),
            np.asarray([int(p.kind) for p in pieces], dtype=np.uint8),
            np.asarray(
                [math.nan if p.score is None else p.score for p in pieces],
                dtype=np.float32,
            ),
            offsets,
            np.fromiter(b"".join(p.text for p in pieces), dtype=np.uint8),
            continuation_marker=continuation_marker,
        )
        logger.info(
            "Compiled vocabulary: %d pieces, %d trie nodes, %d slots, %d pops",
            len(pieces), builder.num_nodes, trie.size, len(pool),
        )
        return vocab

    # ── Automaton access ───────────────────────────────────────────

    def start_state(self, continuation: bool = False) -> int:
        return CONTINUATION_ROOT if continuation else WORD_ROOT

    def advance(self, state: int, byte: int) -> int | None:
        return self.trie.advance(state, byte)

    def accepting_index(self, state: int) -> int | None:
        """Piece index spelled by *state*, if it is accepting."""
        return self.trie.value_of(state)

    def is_accepting(self, state: int) -> int | None:
        """Piece id spelled by *state*, if it is accepting."""
        index = self.trie.value_of(state)
        return None if index is None else int(self.piece_ids[index])

    def shortcut_of(self, state: int) -> int:
        return int(self.shortcut[state])

    def pops_of(self, state: int) -> list[int]:
        """Piece indices emitted when leaving *state* through its shortcut."""
        start = int(self.pop_start[state])
        return self.pop_pool[start:start + int(self.pop_count[state])].tolist()

    # ── Piece access ───────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self.piece_ids)

    def __contains__(self, token: object) -> bool:
        return token in self._index_by_token

    def __iter__(self) -> Iterator[Piece]:
        for index in range(len(self)):
            yield self.piece_at(index)

    def piece_text_at(self, index: int) -> bytes:
        start, end = int(self.piece_offsets[index]), int(self.piece_offsets[index + 1])
        return self.piece_text[start:end].tobytes()

    def piece_length_at(self, index: int) -> int:
        return int(self.piece_offsets[index + 1]) - int(self.piece_offsets[index])

    def piece_at(self, index: int) -> Piece:
        score = float(self.piece_scores[index])
        return Piece(
            self.piece_text_at(index),
            int(self.piece_ids[index]),
            PieceKind(int(self.piece_kinds[index])),
            None if math.isnan(score) else score,
        )

    def token_at(self, index: int) -> str:
        """Display string of the piece at *index* (marker included)."""
        return self._tokens[index]

    def id_at(self, index: int) -> int:
        return int(self.piece_ids[index])

    def index_of_id(self, piece_id: int) -> int:
        try:
            return self._index_by_id[piece_id]
        except KeyError:
            raise InvalidIdError(piece_id) from None

    def lookup_by_id(self, piece_id: int) -> Piece:
        """Return the piece with *piece_id*, raising :class:`InvalidIdError`."""
        return self.piece_at(self.index_of_id(piece_id))

    def id_of(self, token: str) -> int | None:
        """Id of a display token (``"##c"`` for a continuation piece)."""
        index = self._index_by_token.get(token)
        return None if index is None else self.id_at(index)

    def token_of(self, piece_id: int) -> str | None:
        index = self._index_by_id.get(piece_id)
        return None if index is None else self._tokens[index]

    def get_vocab(self) -> dict[str, int]:
        """Display token -> id mapping."""
        return {token: self.id_at(i) for i, token in enumerate(self._tokens)}

    def display(self, piece: Piece) -> str:
        return piece.display(self.continuation_marker)

    def prefix_table(self) -> PrefixTable[Piece]:
        """Plain longest-prefix matcher over the same trie."""
        return PrefixTable(self.trie, self.piece_at)

    # ── Integrity ──────────────────────────────────────────────────

    def validate(self) -> None:
        """Bounds-check every table; used before trusting a loaded blob.

        Raises
        ------
        MalformedModelError
            If any array is inconsistent or could send traversal out of
            bounds or into a shortcut cycle.
        """
        n_pieces = len(self.piece_ids)
        size = self.trie.size
        self.trie.validate(n_pieces)
        for name in ("shortcut", "pop_start", "pop_count"):
            if len(getattr(self, name)) != size:
                raise MalformedModelError(
                    f"{name} has {len(getattr(self, name))} entries, expected {size}"
                )
        if self.trie.num_roots != NUM_ROOTS:
            raise MalformedModelError(f"Vocabulary trie must have {NUM_ROOTS} roots")

        for name in ("piece_kinds", "piece_scores"):
            if len(getattr(self, name)) != n_pieces:
                raise MalformedModelError(f"{name} length does not match piece count")
        if len(self.piece_offsets) != n_pieces + 1:
            raise MalformedModelError("piece_offsets must have one entry per piece plus one")
        offsets = self.piece_offsets.astype(np.int64)
        if offsets[0] != 0 or offsets[-1] != len(self.piece_text):
            raise MalformedModelError("piece_offsets do not span the piece text pool")
        if (np.diff(offsets) <= 0).any():
            raise MalformedModelError("piece_offsets must be strictly increasing")
        if (self.piece_kinds > int(PieceKind.CONTINUATION)).any():
            raise MalformedModelError("Unknown piece kind")
        if (self.piece_ids < 0).any():
            raise MalformedModelError("Negative piece id")
        if len(np.unique(self.piece_ids)) != n_pieces:
            raise MalformedModelError("Duplicate piece ids")

        pop_start = self.pop_start.astype(np.int64)
        pop_count = self.pop_count.astype(np.int64)
        if (pop_start < 0).any() or (pop_count < 0).any():
            raise MalformedModelError("Negative pop range")
        if ((pop_start + pop_count) > len(self.pop_pool)).any():
            raise MalformedModelError("Pop range runs past the pop pool")
        if len(self.pop_pool) and (
            (self.pop_pool < 0).any() or (self.pop_pool >= n_pieces).any()
        ):
            raise MalformedModelError("Pop pool references an unknown piece")

        shortcut = self.shortcut.astype(np.int64)
        if ((shortcut < 0) | (shortcut >= size)).any():
            raise MalformedModelError("Shortcut points outside the state table")
        depth = _state_depths(self.trie)
        linked = np.nonzero(shortcut != WORD_ROOT)[0]
        targets = shortcut[linked]
        if (depth[linked] < 0).any() or (depth[targets] < 0).any():
            raise MalformedModelError("Shortcut touches an unreachable state")
        if (depth[targets] >= depth[linked]).any():
            raise MalformedModelError("Shortcut does not lead to a shallower state")


def _shortcut_links(builder: TrieBuilder) -> tuple[list[int | None], list[list[int]]]:
    """Shortcut target and popped piece indices for every builder node.

    Nodes are visited in BFS order so a parent's link is final before its
    children are processed.
    """
    links: list[int | None] = [None] * builder.num_nodes
    pops: list[list[int]] = [[] for _ in range(builder.num_nodes)]
    for node in builder.bfs_order():
        if node < NUM_ROOTS:
            continue
        accepted = builder.value(node)
        if accepted is not None:
            links[node] = CONTINUATION_ROOT
            pops[node] = [accepted]
            continue
        parent, byte = builder.parent(node), builder.label(node)
        popped = list(pops[parent])
        z = links[parent]
        while z is not None and builder.child(z, byte) is None:
            popped.extend(pops[z])
            z = links[z]
        if z is not None:
            links[node] = builder.child(z, byte)
            pops[node] = popped
    return links, pops


def _state_depths(trie: DoubleArrayTrie) -> np.ndarray:
    """Depth of every slot reachable from a root, -1 elsewhere."""
    check = trie.check.astype(np.int64)
    depth = np.full(trie.size, -1, dtype=np.int64)
    depth[: trie.num_roots] = 0
    owned = np.nonzero(check >= 0)[0]
    parents = check[owned]
    for _ in range(trie.size):
        pending = depth[owned] < 0
        ready = pending & (depth[parents] >= 0)
        if not ready.any():
            break
        depth[owned[ready]] = depth[parents[ready]] + 1
    return depth


def _readonly(array: np.ndarray) -> np.ndarray:
    if array.flags.writeable:
        array.setflags(write=False)
    return array
