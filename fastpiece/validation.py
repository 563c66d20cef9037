"""Post-compilation validation for a fastpiece model.

Checks compression ratio, roundtrip stability, agreement with the naive
greedy segmenter, and single-byte coverage of the vocabulary.
"""

from __future__ import annotations

import string
from dataclasses import dataclass, field

from .errors import NoProgressError
from .segmenter import greedy_reference, tokenize
from .vocab import CompiledVocabulary
from .wrapper import FastPieceTokenizer

# Bytes whose absence as single-byte pieces makes NoProgressError likely.
DEFAULT_COVERAGE_CHARS: str = (
    string.ascii_letters + string.digits + string.punctuation
)


@dataclass
class ValidationReport:
    """Compiled-model validation results."""

    vocab_size: int = 0
    num_slots: int = 0

    # Compression
    compression_ratio: float = 0.0

    # Roundtrip
    roundtrip_ok: bool = True
    roundtrip_failures: list[str] = field(default_factory=list)

    # Reference agreement
    reference_ok: bool = True
    reference_failures: list[str] = field(default_factory=list)

    # Coverage
    missing_standalone: list[str] = field(default_factory=list)
    missing_continuation: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.roundtrip_ok and self.reference_ok

    def summary(self) -> str:
        lines = [
            f"Vocab size: {self.vocab_size} ({self.num_slots} automaton slots)",
            f"Compression ratio: {self.compression_ratio:.2f} bytes/piece",
            f"Roundtrip stability: {self.roundtrip_ok} "
            f"({len(self.roundtrip_failures)} failures)",
            f"Greedy reference agreement: {self.reference_ok} "
            f"({len(self.reference_failures)} failures)",
        ]
        for failure in self.roundtrip_failures + self.reference_failures:
            lines.append(f"  {failure}")
        if self.missing_standalone:
            lines.append(
                f"No single-byte standalone piece: {' '.join(self.missing_standalone)}"
            )
        if self.missing_continuation:
            lines.append(
                f"No single-byte continuation piece: {' '.join(self.missing_continuation)}"
            )
        return "\n".join(lines)


# ── Individual check functions ─────────────────────────────────────


def compute_compression_ratio(tokenizer: FastPieceTokenizer, text: str) -> float:
    """Compute bytes-per-piece for *text*."""
    n_pieces = len(tokenizer.encode(text))
    if n_pieces == 0:
        return 0.0
    return len(text.encode("utf-8")) / n_pieces


def check_roundtrip(
    tokenizer: FastPieceTokenizer,
    samples: list[str],
) -> tuple[bool, list[str]]:
    """Verify ``encode(decode(encode(text))) == encode(text)`` for all *samples*."""
    failures: list[str] = []
    for sample in samples:
        try:
            ids = tokenizer.encode(sample)
        except NoProgressError as exc:
            failures.append(f"UNCOVERED: {sample[:60]!r} ({exc})")
            continue
        decoded = tokenizer.decode(ids)
        again = tokenizer.encode(decoded)
        if again != ids:
            failures.append(f"MISMATCH: {sample[:60]!r} -> {decoded[:60]!r}")
    return len(failures) == 0, failures


def check_reference_agreement(
    tokenizer: FastPieceTokenizer,
    samples: list[str],
) -> tuple[bool, list[str]]:
    """Compare the automaton against rescanning longest-match on *samples*."""
    vocab = tokenizer.vocab
    failures: list[str] = []
    for sample in samples:
        normalized, _ = tokenizer.normalize(sample)
        fast = tokenize(normalized, vocab)
        slow = greedy_reference(normalized, vocab)
        if fast != slow:
            failures.append(f"DISAGREE: {sample[:60]!r}")
    return len(failures) == 0, failures


def check_single_byte_coverage(
    vocab: CompiledVocabulary,
    chars: str = DEFAULT_COVERAGE_CHARS,
) -> tuple[list[str], list[str]]:
    """Return the characters of *chars* lacking a standalone / continuation piece."""
    marker = vocab.continuation_marker
    missing_standalone = [c for c in chars if c not in vocab]
    missing_continuation = [c for c in chars if marker + c not in vocab]
    return missing_standalone, missing_continuation


# ── Orchestrator ───────────────────────────────────────────────────


def validate_tokenizer(
    tokenizer: FastPieceTokenizer,
    samples: list[str] | None = None,
    coverage_chars: str = DEFAULT_COVERAGE_CHARS,
) -> ValidationReport:
    """Run every check and collect the results into a report."""
    samples = samples or []
    report = ValidationReport(
        vocab_size=tokenizer.vocab_size,
        num_slots=tokenizer.vocab.trie.size,
    )

    covered = [s for s in samples if _coverable(tokenizer, s)]
    if covered:
        total_bytes = sum(len(s.encode("utf-8")) for s in covered)
        total_pieces = sum(len(tokenizer.encode(s)) for s in covered)
        report.compression_ratio = total_bytes / total_pieces if total_pieces else 0.0

    report.roundtrip_ok, report.roundtrip_failures = check_roundtrip(tokenizer, samples)
    report.reference_ok, report.reference_failures = check_reference_agreement(
        tokenizer, samples
    )
    report.missing_standalone, report.missing_continuation = check_single_byte_coverage(
        tokenizer.vocab, coverage_chars
    )
    return report


def _coverable(tokenizer: FastPieceTokenizer, sample: str) -> bool:
    try:
        tokenizer.encode(sample)
    except NoProgressError:
        return False
    return True
