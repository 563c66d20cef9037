"""Tests for replacement rules, whitespace policy and offset maps."""

from __future__ import annotations

import pytest

from fastpiece.normalizer import (
    Normalizer,
    NormalizerOptions,
    OffsetMap,
    ReplacementTable,
    normalize,
)

_COUNTING_RULES = {"A": "A1", "AA": "A2", "AAA": "A3", "AAAA": "A4"}
_RAW = NormalizerOptions(
    add_dummy_prefix=False, remove_extra_whitespaces=False, escape_whitespaces=False
)


class TestReplacementTable:
    def test_longest_match_wins(self) -> None:
        table = ReplacementTable.build(_COUNTING_RULES)
        match = table.longest_match(b"AAAB")
        assert match is not None
        assert (match.length, match.value) == (3, b"A3")

    def test_accepts_pairs_and_bytes(self) -> None:
        table = ReplacementTable.build([(b"x", b"y"), ("é", "e")])
        assert len(table) == 2
        assert dict(table.items()) == {b"x": b"y", "é".encode("utf-8"): b"e"}

    def test_empty_prefix_rejected(self) -> None:
        with pytest.raises(ValueError):
            ReplacementTable.build({"": "x"})

    def test_duplicate_prefix_rejected(self) -> None:
        with pytest.raises(ValueError):
            ReplacementTable.build([("a", "b"), ("a", "c")])

    @pytest.mark.parametrize(
        "rule",
        [(b"\xa9", b"e"), (b"e", b"\xc3"), (b"\xe2\x96", b" ")],
    )
    def test_partial_code_point_rejected(self, rule: tuple[bytes, bytes]) -> None:
        with pytest.raises(ValueError, match="UTF-8"):
            ReplacementTable.build([rule])

    def test_multibyte_input_never_split(self) -> None:
        table = ReplacementTable.build({"é": "e", "a": "á"})
        out, offsets = normalize("aé".encode("utf-8"), table, _RAW)
        assert out.decode("utf-8") == "áe"
        assert offsets.per_byte() == [0, 0, 1]

    def test_empty_table(self) -> None:
        table = ReplacementTable.empty()
        assert len(table) == 0
        assert table.longest_match(b"abc") is None
        table.validate()


class TestWhitespacePolicy:
    def test_escaped_example(self) -> None:
        out, offsets = normalize(b"x  y")
        assert out == "▁x▁y".encode("utf-8")
        assert offsets.per_byte() == [0, 0, 0, 0, 1, 1, 1, 3]

    def test_leading_and_trailing_whitespace_stripped(self) -> None:
        out, offsets = normalize(b"\tx  y\n")
        assert out == "▁x▁y".encode("utf-8")
        assert offsets.per_byte() == [0, 0, 0, 1, 2, 2, 2, 4]

    def test_only_whitespace_gives_empty_output(self) -> None:
        out, offsets = normalize(b" \t \n")
        assert out == b""
        assert offsets.output_length == 0
        assert offsets.input_length == 4

    def test_empty_input(self) -> None:
        out, offsets = normalize(b"")
        assert out == b""
        assert offsets.breakpoints == [(0, 0)]

    def test_without_escaping(self) -> None:
        options = NormalizerOptions(escape_whitespaces=False)
        out, _ = normalize(b"a \t b", options=options)
        assert out == b" a b"

    def test_unescaped_dummy_prefix_is_plain_space(self) -> None:
        options = NormalizerOptions(remove_extra_whitespaces=False, escape_whitespaces=False)
        out, offsets = normalize(b"a\tb", options=options)
        assert out == b" a\tb"
        assert offsets.per_byte() == [0, 0, 1, 2]

    def test_without_collapsing(self) -> None:
        options = NormalizerOptions(add_dummy_prefix=False, remove_extra_whitespaces=False)
        out, offsets = normalize(b"a  b", options=options)
        assert out == "a▁▁b".encode("utf-8")
        assert offsets.per_byte() == [0, 1, 1, 1, 2, 2, 2, 3]

    def test_raw_options_are_identity(self) -> None:
        text = b" a\tb  c\n"
        out, offsets = normalize(text, options=_RAW)
        assert out == text
        assert offsets.per_byte() == list(range(len(text)))


class TestReplacements:
    def test_counting_example(self) -> None:
        table = ReplacementTable.build(_COUNTING_RULES)
        options = NormalizerOptions(add_dummy_prefix=False)
        out, offsets = normalize(b"ABAABAAABAAAA", table, options)
        assert out == b"A1BA2BA3BA4"
        assert offsets.per_byte() == [0, 0, 1, 2, 2, 4, 5, 5, 8, 9, 9]

    def test_leading_replacement_to_whitespace_is_stripped(self) -> None:
        table = ReplacementTable.build({"X": " "})
        out, offsets = normalize(b"XXABAABAAABAAAA", table, NormalizerOptions(add_dummy_prefix=False))
        assert out == b"ABAABAAABAAAA"
        assert offsets.to_original_start(0) == 2
        assert offsets.to_original_end(len(out)) == 15

    def test_leading_replacement_space_dropped_with_counting_rules(self) -> None:
        table = ReplacementTable.build({**_COUNTING_RULES, "X": " "})
        out, offsets = normalize(b"XXABAABAAABAAAA", table, NormalizerOptions(add_dummy_prefix=False))
        assert out == b"A1BA2BA3BA4"
        assert offsets.per_byte() == [2, 2, 3, 4, 4, 6, 7, 7, 10, 11, 11]

    def test_deletion(self) -> None:
        table = ReplacementTable.build({"-": ""})
        out, offsets = normalize(b"a-b", table, _RAW)
        assert out == b"ab"
        assert offsets.to_original_start(1) == 2
        assert offsets.to_original_end(1) == 1
        assert offsets.to_original_end(2) == 3

    def test_replacement_producing_whitespace_is_escaped(self) -> None:
        table = ReplacementTable.build({"_": " "})
        out, _ = normalize(b"a_b", table)
        assert out == "▁a▁b".encode("utf-8")

    def test_normalizer_object_accepts_str(self) -> None:
        normalizer = Normalizer(ReplacementTable.build({"é": "e"}))
        out, offsets = normalizer("café")
        assert out == "▁cafe".encode("utf-8")
        # "é" is two input bytes ending at 5
        assert offsets.to_original_end(len(out)) == 5


class TestOffsetMap:
    def test_identity(self) -> None:
        offsets = OffsetMap.identity(4)
        assert offsets.per_byte() == [0, 1, 2, 3]
        assert offsets.to_original_end(4) == 4

    def test_vectorized_mapping(self) -> None:
        _, offsets = normalize(b"x  y")
        assert offsets.map_starts([3, 7]).tolist() == [0, 3]
        assert offsets.map_ends([4, 8]).tolist() == [1, 4]

    def test_rejects_empty_breakpoints(self) -> None:
        with pytest.raises(ValueError):
            OffsetMap([], [])

    def test_monotone(self) -> None:
        table = ReplacementTable.build(_COUNTING_RULES)
        _, offsets = normalize(b"  AAB  A AAAA ", table)
        per_byte = offsets.per_byte()
        assert per_byte == sorted(per_byte)
