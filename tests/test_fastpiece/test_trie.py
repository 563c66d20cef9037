"""Tests for the trie builder, double-array layout and prefix matching."""

from __future__ import annotations

import numpy as np
import pytest

from fastpiece.errors import MalformedModelError
from fastpiece.trie import DoubleArrayTrie, PrefixTable, TrieBuilder

_KEYS = [b"a", b"ab", b"abc", b"b", b"ba", b"\xff\x00"]


@pytest.fixture()
def builder() -> TrieBuilder:
    b = TrieBuilder()
    for value, key in enumerate(_KEYS):
        assert b.insert(key, value) is None
    return b


@pytest.fixture()
def trie(builder: TrieBuilder) -> DoubleArrayTrie:
    compiled, _ = builder.layout()
    return compiled


class TestTrieBuilder:
    def test_insert_returns_previous_value(self) -> None:
        b = TrieBuilder()
        assert b.insert(b"x", 7) is None
        assert b.insert(b"x", 9) == 7
        assert b.value(b.child(0, ord("x"))) == 7

    def test_rejects_zero_roots(self) -> None:
        with pytest.raises(ValueError):
            TrieBuilder(0)

    def test_bfs_order_is_by_depth(self, builder: TrieBuilder) -> None:
        order = builder.bfs_order()
        assert order[0] == 0
        assert sorted(order) == list(range(builder.num_nodes))
        depths = []
        for node in order:
            depth = 0
            while builder.parent(node) != -1:
                node = builder.parent(node)
                depth += 1
            depths.append(depth)
        assert depths == sorted(depths)

    def test_separate_roots_do_not_share_keys(self) -> None:
        b = TrieBuilder(num_roots=2)
        b.insert(b"c", 0, root=0)
        b.insert(b"c", 1, root=1)
        compiled, _ = b.layout()
        assert compiled.lookup(b"c", root=0) == 0
        assert compiled.lookup(b"c", root=1) == 1


class TestDoubleArrayTrie:
    def test_lookup_every_key(self, trie: DoubleArrayTrie) -> None:
        for value, key in enumerate(_KEYS):
            assert trie.lookup(key) == value

    def test_lookup_missing(self, trie: DoubleArrayTrie) -> None:
        assert trie.lookup(b"abcd") is None
        assert trie.lookup(b"c") is None
        assert trie.lookup(b"\xff") is None  # inner node, no value

    def test_node_mapping(self, builder: TrieBuilder) -> None:
        compiled, node_to_state = builder.layout()
        assert (node_to_state >= 0).all()
        for node in range(1, builder.num_nodes):
            parent_state = node_to_state[builder.parent(node)]
            assert compiled.advance(int(parent_state), builder.label(node)) == node_to_state[node]

    def test_longest_prefix(self, trie: DoubleArrayTrie) -> None:
        assert trie.longest_prefix(b"abcd") == (3, 2)
        assert trie.longest_prefix(b"abx") == (2, 1)
        assert trie.longest_prefix(b"xab") is None
        assert trie.longest_prefix(b"xab", pos=1) == (2, 1)

    def test_longest_prefix_skips_inner_nodes(self) -> None:
        b = TrieBuilder()
        b.insert(b"a", 0)
        b.insert(b"abcd", 1)
        compiled, _ = b.layout()
        # "abc" is a path to "abcd" but not a key
        assert compiled.longest_prefix(b"abce") == (1, 0)

    def test_items_in_key_order(self, trie: DoubleArrayTrie) -> None:
        assert list(trie.items()) == sorted((k, v) for v, k in enumerate(_KEYS))

    def test_arrays_are_read_only(self, trie: DoubleArrayTrie) -> None:
        with pytest.raises(ValueError):
            trie.base[0] = 5

    def test_validate_accepts_built_trie(self, trie: DoubleArrayTrie) -> None:
        trie.validate(len(_KEYS))

    def test_validate_rejects_value_out_of_range(self, trie: DoubleArrayTrie) -> None:
        with pytest.raises(MalformedModelError):
            trie.validate(2)

    def test_validate_rejects_bad_check(self, trie: DoubleArrayTrie) -> None:
        check = trie.check.copy()
        check[-1] = trie.size + 10
        broken = DoubleArrayTrie(trie.base.copy(), check, trie.value.copy())
        with pytest.raises(MalformedModelError):
            broken.validate(len(_KEYS))

    def test_length_mismatch_rejected(self) -> None:
        with pytest.raises(MalformedModelError):
            DoubleArrayTrie(
                np.zeros(3, dtype=np.int32),
                np.full(2, -1, dtype=np.int32),
                np.full(3, -1, dtype=np.int32),
            )

    def test_empty_builder_layout(self) -> None:
        compiled, _ = TrieBuilder(num_roots=2).layout()
        assert compiled.size == 2
        assert compiled.longest_prefix(b"abc") is None


class TestPrefixTable:
    def test_resolves_payload(self, trie: DoubleArrayTrie) -> None:
        table = PrefixTable(trie, lambda index: _KEYS[index].upper())
        match = table.longest_match(b"abz")
        assert match is not None
        assert match.length == 2
        assert match.value == b"AB"
        assert table.get(b"ba") == b"BA"
        assert table.get(b"zz") is None
