"""Double-array trie shared by the vocabulary automaton and the normalizer.

Both the segmenter and the normalizer need the same capability: walk a
compiled set of byte keys from a cursor and find the longest registered
key starting there.  This module provides it once:

* :class:`TrieBuilder`: build-time arena (one child dict per node,
  nodes addressed by index) that supports insertion, BFS traversal and
  layout into a double array.
* :class:`DoubleArrayTrie`: the compiled form.  A transition from state
  ``s`` on byte ``c`` goes to ``t = base[s] + c`` when ``check[t] == s``,
  so every lookup is O(1) and the three arrays can be viewed directly
  over a memory-mapped blob.
* :class:`PrefixTable`: a trie plus a payload resolver, generic over the
  payload type (``Piece`` for the vocabulary, ``bytes`` for replacements).
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Generic, Iterator, TypeVar

import numpy as np
from tqdm import tqdm

from .constants import NO_VALUE
from .errors import MalformedModelError

T = TypeVar("T")

_ALPHABET = 256


class TrieBuilder:
    """Mutable byte trie used only while compiling a table.

    Nodes ``0 .. num_roots - 1`` are roots; keys may be inserted under
    any of them.
    """

    def __init__(self, num_roots: int = 1) -> None:
        if num_roots < 1:
            raise ValueError(f"num_roots must be >= 1, got {num_roots}")
        self.num_roots = num_roots
        self._children: list[dict[int, int]] = [{} for _ in range(num_roots)]
        self._values: list[int] = [NO_VALUE] * num_roots
        self._parent: list[int] = [-1] * num_roots
        self._label: list[int] = [-1] * num_roots

    @property
    def num_nodes(self) -> int:
        return len(self._children)

    def insert(self, key: bytes, value: int, root: int = 0) -> int | None:
        """Register *key* under *root* with *value*.

        Returns the value previously stored for *key*, or ``None`` if the
        key is new.  An existing value is left untouched.
        """
        node = root
        for byte in key:
            nxt = self._children[node].get(byte)
            if nxt is None:
                nxt = len(self._children)
                self._children.append({})
                self._values.append(NO_VALUE)
                self._parent.append(node)
                self._label.append(byte)
                self._children[node][byte] = nxt
            node = nxt
        previous = self._values[node]
        if previous != NO_VALUE:
            return previous
        self._values[node] = value
        return None

    def child(self, node: int, byte: int) -> int | None:
        return self._children[node].get(byte)

    def children(self, node: int) -> list[tuple[int, int]]:
        """``(byte, child)`` pairs of *node* in byte order."""
        return sorted(self._children[node].items())

    def value(self, node: int) -> int | None:
        v = self._values[node]
        return None if v == NO_VALUE else v

    def parent(self, node: int) -> int:
        return self._parent[node]

    def label(self, node: int) -> int:
        return self._label[node]

    def bfs_order(self) -> list[int]:
        """All nodes, roots first, then by increasing depth."""
        order: list[int] = []
        queue = deque(range(self.num_roots))
        while queue:
            node = queue.popleft()
            order.append(node)
            for _, child in self.children(node):
                queue.append(child)
        return order

    def layout(
        self, *, show_progress: bool = False, desc: str = "Laying out trie"
    ) -> tuple[DoubleArrayTrie, np.ndarray]:
        """Place every node in a double array.

        Returns the compiled trie and an ``int64`` array mapping builder
        node index to its state slot.
        """
        order = self.bfs_order()
        node_to_state = np.full(self.num_nodes, -1, dtype=np.int64)
        base: list[int] = [0] * self.num_roots
        check: list[int] = [-1] * self.num_roots
        used = bytearray(b"\x01" * self.num_roots)
        for root in range(self.num_roots):
            node_to_state[root] = root

        def grow(size: int) -> None:
            if size > len(used):
                extra = size - len(used)
                used.extend(b"\x00" * extra)
                base.extend([0] * extra)
                check.extend([-1] * extra)

        next_free = self.num_roots
        for node in tqdm(order, desc=desc, disable=not show_progress):
            kids = self.children(node)
            if not kids:
                continue
            state = int(node_to_state[node])
            labels = [byte for byte, _ in kids]
            b = max(next_free - labels[0], 0)
            while True:
                grow(b + labels[-1] + 1)
                if not any(used[b + c] for c in labels):
                    break
                b += 1
            base[state] = b
            for byte, child in kids:
                slot = b + byte
                used[slot] = 1
                check[slot] = state
                node_to_state[child] = slot
            while next_free < len(used) and used[next_free]:
                next_free += 1

        size = len(used)
        while size > self.num_roots and not used[size - 1]:
            size -= 1
        values = np.full(size, NO_VALUE, dtype=np.int32)
        for node, value in enumerate(self._values):
            if value != NO_VALUE:
                values[node_to_state[node]] = value

        trie = DoubleArrayTrie(
            np.asarray(base[:size], dtype=np.int32),
            np.asarray(check[:size], dtype=np.int32),
            values,
            num_roots=self.num_roots,
        )
        return trie, node_to_state


class DoubleArrayTrie:
    """Immutable double-array byte trie.

    The arrays are flagged read-only so one instance can be shared by any
    number of concurrent readers.
    """

    def __init__(
        self,
        base: np.ndarray,
        check: np.ndarray,
        value: np.ndarray,
        num_roots: int = 1,
    ) -> None:
        if not len(base) == len(check) == len(value):
            raise MalformedModelError(
                f"Trie arrays differ in length: base={len(base)}, "
                f"check={len(check)}, value={len(value)}"
            )
        if len(base) < num_roots:
            raise MalformedModelError(
                f"Trie has {len(base)} slots but needs {num_roots} roots"
            )
        self.base = _frozen(base)
        self.check = _frozen(check)
        self.value = _frozen(value)
        self.num_roots = num_roots
        self._size = len(base)

    @property
    def size(self) -> int:
        """Number of slots (states plus unused gaps)."""
        return self._size

    def __len__(self) -> int:
        return self._size

    # ── Traversal ──────────────────────────────────────────────────

    def advance(self, state: int, byte: int) -> int | None:
        """Follow the transition on *byte*, or ``None`` if there is none."""
        target = int(self.base[state]) + byte
        if target < self._size and self.check[target] == state:
            return target
        return None

    def value_of(self, state: int) -> int | None:
        v = int(self.value[state])
        return None if v == NO_VALUE else v

    def walk(self, key: bytes, root: int = 0) -> int | None:
        """State reached by consuming all of *key* from *root*."""
        state: int | None = root
        for byte in key:
            state = self.advance(state, byte)
            if state is None:
                return None
        return state

    def lookup(self, key: bytes, root: int = 0) -> int | None:
        """Value stored for exactly *key*, if any."""
        state = self.walk(key, root)
        return None if state is None else self.value_of(state)

    def longest_prefix(
        self, data: bytes, pos: int = 0, root: int = 0
    ) -> tuple[int, int] | None:
        """Longest registered key that starts at ``data[pos]``.

        Returns ``(match_length, value)`` or ``None``.
        """
        state = root
        best: tuple[int, int] | None = None
        end = len(data)
        i = pos
        while i < end:
            target = int(self.base[state]) + data[i]
            if target >= self._size or self.check[target] != state:
                break
            state = target
            i += 1
            v = int(self.value[state])
            if v != NO_VALUE:
                best = (i - pos, v)
        return best

    def children(self, state: int) -> Iterator[tuple[int, int]]:
        """``(byte, child_state)`` pairs in byte order."""
        b = int(self.base[state])
        for byte in range(_ALPHABET):
            target = b + byte
            if target >= self._size:
                break
            if self.check[target] == state:
                yield byte, target

    def items(self, root: int = 0) -> Iterator[tuple[bytes, int]]:
        """Every ``(key, value)`` registered under *root*, in key order."""
        stack: list[tuple[int, bytes]] = [(root, b"")]
        while stack:
            state, prefix = stack.pop()
            v = self.value_of(state)
            if v is not None:
                yield prefix, v
            for byte, child in reversed(list(self.children(state))):
                stack.append((child, prefix + bytes([byte])))

    # ── Integrity ──────────────────────────────────────────────────

    def validate(self, num_values: int) -> None:
        """Check every slot so traversal can never index out of bounds.

        Raises
        ------
        MalformedModelError
            If any ``check``, ``base`` or ``value`` entry is inconsistent.
        """
        n = self._size
        check = self.check.astype(np.int64)
        base = self.base.astype(np.int64)
        value = self.value.astype(np.int64)
        if (base < 0).any():
            raise MalformedModelError("Trie base contains negative entries")
        if ((check < -1) | (check >= n)).any():
            raise MalformedModelError("Trie check points outside the state table")
        if (check[: self.num_roots] != -1).any():
            raise MalformedModelError("Trie root slots must not have a parent")
        owned = np.nonzero(check >= 0)[0]
        labels = owned - base[check[owned]]
        if ((labels < 0) | (labels >= _ALPHABET)).any():
            raise MalformedModelError("Trie check/base disagree on a transition")
        if ((value < NO_VALUE) | (value >= num_values)).any():
            raise MalformedModelError(
                f"Trie value outside [{NO_VALUE}, {num_values})"
            )


@dataclass(frozen=True)
class PrefixMatch(Generic[T]):
    """Longest registered prefix found at a cursor."""

    length: int
    value: T


class PrefixTable(Generic[T]):
    """Longest-prefix matcher over a :class:`DoubleArrayTrie`.

    *resolve* turns the integer stored in the trie into the payload, so
    the same matcher serves piece lookups and replacement lookups.
    """

    def __init__(self, trie: DoubleArrayTrie, resolve: Callable[[int], T]) -> None:
        self.trie = trie
        self._resolve = resolve

    def longest_match(
        self, data: bytes, pos: int = 0, root: int = 0
    ) -> PrefixMatch[T] | None:
        found = self.trie.longest_prefix(data, pos, root)
        if found is None:
            return None
        length, index = found
        return PrefixMatch(length, self._resolve(index))

    def get(self, key: bytes, root: int = 0) -> T | None:
        index = self.trie.lookup(key, root)
        return None if index is None else self._resolve(index)


def _frozen(array: np.ndarray) -> np.ndarray:
    if array.flags.writeable:
        array.setflags(write=False)
    return array
