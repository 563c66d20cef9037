"""Text normalization with byte-offset tracking.

Normalization rewrites the raw input in one left-to-right scan:

1. At each position the :class:`ReplacementTable` is asked for the
   longest registered prefix; its replacement is emitted (possibly empty)
   and the cursor skips the prefix.  Otherwise the byte is copied.
2. The emitted stream passes through the whitespace policy
   (:class:`NormalizerOptions`): runs of whitespace collapse to a single
   separator, leading and trailing whitespace are dropped, a dummy prefix
   is inserted before the first output byte and whitespace is escaped as
   ``▁``.

Every emission appends a breakpoint ``(output_end, input_end)`` to the
:class:`OffsetMap`, which is how normalized offsets are mapped back to
the caller's input.  All positions are UTF-8 byte offsets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

import numpy as np

from .constants import DUMMY_PREFIX, SPACE_MARKER, WHITESPACE_BYTES
from .errors import MalformedModelError
from .trie import DoubleArrayTrie, PrefixMatch, PrefixTable, TrieBuilder

logger = logging.getLogger("fastpiece.normalizer")

_WHITESPACE = frozenset(WHITESPACE_BYTES)


@dataclass(frozen=True)
class NormalizerOptions:
    """Independently toggleable whitespace policy."""

    add_dummy_prefix: bool = True
    remove_extra_whitespaces: bool = True
    escape_whitespaces: bool = True


class ReplacementTable:
    """Longest-prefix replacement rules compiled into a trie.

    Rule ``i`` replaces its prefix with ``pool[offsets[i]:offsets[i + 1]]``.
    """

    def __init__(
        self, trie: DoubleArrayTrie, offsets: np.ndarray, pool: np.ndarray
    ) -> None:
        self.trie = trie
        self.offsets = offsets
        self.pool = pool
        if self.offsets.flags.writeable:
            self.offsets.setflags(write=False)
        if self.pool.flags.writeable:
            self.pool.setflags(write=False)
        self._matcher: PrefixTable[bytes] = PrefixTable(trie, self.replacement_at)

    @classmethod
    def build(
        cls,
        rules: Mapping[str | bytes, str | bytes] | Iterable[tuple[str | bytes, str | bytes]],
    ) -> ReplacementTable:
        """Compile ``prefix -> replacement`` rules.

        Raises
        ------
        ValueError
            If a prefix is empty or registered twice, or if a prefix or
            replacement is not valid UTF-8.
        """
        pairs = list(rules.items()) if isinstance(rules, Mapping) else list(rules)
        builder = TrieBuilder(1)
        replacements: list[bytes] = []
        for prefix, replacement in pairs:
            prefix_b = _as_bytes(prefix)
            replacement_b = _as_bytes(replacement)
            if not prefix_b:
                raise ValueError("Replacement prefix must not be empty")
            if not _is_utf8(prefix_b) or not _is_utf8(replacement_b):
                raise ValueError(
                    f"Replacement rule {prefix!r} -> {replacement!r} is not valid UTF-8"
                )
            if builder.insert(prefix_b, len(replacements)) is not None:
                raise ValueError(f"Replacement prefix {prefix!r} registered twice")
            replacements.append(replacement_b)

        trie, _ = builder.layout()
        lengths = np.asarray([len(r) for r in replacements], dtype=np.int64)
        offsets = np.concatenate([[0], np.cumsum(lengths)]).astype(np.int32)
        pool = np.fromiter(b"".join(replacements), dtype=np.uint8)
        logger.debug("Compiled %d replacement rules into %d slots", len(pairs), trie.size)
        return cls(trie, offsets, pool)

    @classmethod
    def empty(cls) -> ReplacementTable:
        return cls.build([])

    def __len__(self) -> int:
        return len(self.offsets) - 1

    def replacement_at(self, index: int) -> bytes:
        return self.pool[int(self.offsets[index]):int(self.offsets[index + 1])].tobytes()

    def longest_match(self, data: bytes, pos: int = 0) -> PrefixMatch[bytes] | None:
        return self._matcher.longest_match(data, pos)

    def items(self) -> list[tuple[bytes, bytes]]:
        return [(key, self.replacement_at(i)) for key, i in self.trie.items()]

    def validate(self) -> None:
        """Bounds-check the compiled rules before use."""
        n_rules = len(self.offsets) - 1
        if n_rules < 0:
            raise MalformedModelError("Replacement offsets are empty")
        self.trie.validate(n_rules)
        offsets = self.offsets.astype(np.int64)
        if offsets[0] != 0 or offsets[-1] != len(self.pool):
            raise MalformedModelError("Replacement offsets do not span the pool")
        if (np.diff(offsets) < 0).any():
            raise MalformedModelError("Replacement offsets must be non-decreasing")
        # Rules must start and end on code point boundaries
        for prefix, replacement in self.items():
            if not _is_utf8(prefix) or not _is_utf8(replacement):
                raise MalformedModelError(f"Replacement rule {prefix!r} is not valid UTF-8")


class OffsetMap:
    """Breakpoints translating normalized byte positions to input positions.

    Breakpoint ``(o, i)`` says that after emitting the first ``o`` output
    bytes, the first ``i`` input bytes had been consumed.  Both coordinates
    are non-decreasing and the first breakpoint is ``(0, 0)``.
    """

    def __init__(self, output_positions: Sequence[int], input_positions: Sequence[int]) -> None:
        self.output_positions = np.asarray(output_positions, dtype=np.int64)
        self.input_positions = np.asarray(input_positions, dtype=np.int64)
        if len(self.output_positions) != len(self.input_positions) or not len(self.output_positions):
            raise ValueError("OffsetMap needs matching, non-empty breakpoint lists")

    @classmethod
    def identity(cls, length: int) -> OffsetMap:
        positions = range(length + 1)
        return cls(positions, positions)

    @property
    def breakpoints(self) -> list[tuple[int, int]]:
        return list(zip(self.output_positions.tolist(), self.input_positions.tolist()))

    @property
    def output_length(self) -> int:
        return int(self.output_positions[-1])

    @property
    def input_length(self) -> int:
        return int(self.input_positions[-1])

    def to_original_start(self, position: int) -> int:
        """Input offset of the unit that produced output byte *position*."""
        return int(self.map_starts([position])[0])

    def to_original_end(self, position: int) -> int:
        """Input offset just past the unit that ends at output *position*."""
        return int(self.map_ends([position])[0])

    def map_starts(self, positions: Sequence[int] | np.ndarray) -> np.ndarray:
        idx = np.searchsorted(self.output_positions, positions, side="right") - 1
        return self.input_positions[np.clip(idx, 0, None)]

    def map_ends(self, positions: Sequence[int] | np.ndarray) -> np.ndarray:
        idx = np.searchsorted(self.output_positions, positions, side="left")
        return self.input_positions[np.clip(idx, None, len(self.input_positions) - 1)]

    def per_byte(self) -> list[int]:
        """One input offset per output byte."""
        return self.map_starts(np.arange(self.output_length)).tolist()

    def __repr__(self) -> str:
        return f"OffsetMap({self.breakpoints!r})"


class _Emitter:
    """Applies the whitespace policy to the emission stream."""

    def __init__(self, options: NormalizerOptions) -> None:
        self.options = options
        self.space = SPACE_MARKER if options.escape_whitespaces else b" "
        self.out = bytearray()
        self.out_marks = [0]
        self.in_marks = [0]
        self.consumed = 0  # input position reached by skipped or emitted units
        self.pending = False

    def _mark(self, in_pos: int) -> None:
        out_pos = len(self.out)
        if out_pos == self.out_marks[-1] and in_pos == self.in_marks[-1]:
            return
        self.out_marks.append(out_pos)
        self.in_marks.append(in_pos)

    def _open(self) -> None:
        if not self.out and self.options.add_dummy_prefix:
            self.out += SPACE_MARKER if self.options.escape_whitespaces else DUMMY_PREFIX
            self._mark(0)

    def content(self, byte: int, in_pos: int | None) -> None:
        self._open()
        if self.pending:
            self.out += self.space
            self.pending = False
        self._mark(self.consumed)
        self.out.append(byte)
        if in_pos is not None:
            self._mark(in_pos)
            self.consumed = in_pos

    def whitespace(self, byte: int, in_pos: int) -> None:
        if self.options.remove_extra_whitespaces:
            if self.out:
                self.pending = True
            self.consumed = max(self.consumed, in_pos)
            return
        self._open()
        self._mark(self.consumed)
        self.out += self.space if self.options.escape_whitespaces else bytes([byte])
        self._mark(in_pos)
        self.consumed = max(self.consumed, in_pos)

    def skip(self, in_pos: int) -> None:
        self.consumed = in_pos

    def finish(self, input_length: int) -> tuple[bytes, OffsetMap]:
        # Pending trailing whitespace is dropped
        self._mark(input_length)
        return bytes(self.out), OffsetMap(self.out_marks, self.in_marks)


def normalize(
    text: bytes,
    table: ReplacementTable | None = None,
    options: NormalizerOptions | None = None,
) -> tuple[bytes, OffsetMap]:
    """Normalize *text* and return it with its :class:`OffsetMap`."""
    options = options or NormalizerOptions()
    emitter = _Emitter(options)
    n = len(text)
    pos = 0
    while pos < n:
        match = table.longest_match(text, pos) if table is not None else None
        if match is not None:
            produced, end = match.value, pos + match.length
        else:
            produced, end = text[pos:pos + 1], pos + 1
        last = len(produced) - 1
        for k, byte in enumerate(produced):
            consumed_to = end if k == last else pos
            if byte in _WHITESPACE:
                emitter.whitespace(byte, consumed_to)
            else:
                emitter.content(byte, consumed_to if k == last else None)
        if not produced:
            emitter.skip(end)
        pos = end
    return emitter.finish(n)


class Normalizer:
    """A replacement table bound to a whitespace policy."""

    def __init__(
        self,
        table: ReplacementTable | None = None,
        options: NormalizerOptions | None = None,
    ) -> None:
        self.table = table if table is not None else ReplacementTable.empty()
        self.options = options or NormalizerOptions()

    def normalize(self, text: bytes | str) -> tuple[bytes, OffsetMap]:
        return normalize(_as_bytes(text), self.table, self.options)

    __call__ = normalize


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def _is_utf8(data: bytes) -> bool:
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return True
