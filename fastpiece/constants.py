"""Central constants for the fastpiece engine.

Byte markers, automaton root slots and the compiled-model blob layout
live here so that every other module imports from a single source of
truth.
"""

from __future__ import annotations

# ── Whitespace conventions ─────────────────────────────────────────
# U+2581 LOWER ONE EIGHTH BLOCK, the escaped-space marker.
SPACE_MARKER: bytes = "▁".encode("utf-8")  # b"\xe2\x96\x81"
WHITESPACE_BYTES: bytes = b" \t\r\n"
DUMMY_PREFIX: bytes = b" "
WORD_SEPARATOR: str = " "

# ── Vocabulary conventions ─────────────────────────────────────────
DEFAULT_CONTINUATION_MARKER: str = "##"

# ── Automaton layout ───────────────────────────────────────────────
# Slot 0 matches word-initial pieces, slot 1 matches continuation pieces.
# A shortcut pointing at WORD_ROOT means "no shortcut".
WORD_ROOT: int = 0
CONTINUATION_ROOT: int = 1
NUM_ROOTS: int = 2
NO_VALUE: int = -1

# ── Compiled-model blob ────────────────────────────────────────────
MODEL_MAGIC: bytes = b"FPCM"
MODEL_VERSION: int = 1
SECTION_ALIGNMENT: int = 8

# Section dtype codes (little-endian on disk)
DTYPE_CODES: dict[int, str] = {
    0: "<i4",
    1: "<f4",
    2: "u1",
}
DTYPE_IDS: dict[str, int] = {v: k for k, v in DTYPE_CODES.items()}

# Four-byte section tags
SECTION_META: bytes = b"META"
SECTION_VOCAB_BASE: bytes = b"VBAS"
SECTION_VOCAB_CHECK: bytes = b"VCHK"
SECTION_VOCAB_ACCEPT: bytes = b"VACC"
SECTION_SHORTCUT: bytes = b"SHRT"
SECTION_POP_START: bytes = b"POPS"
SECTION_POP_COUNT: bytes = b"POPC"
SECTION_POP_POOL: bytes = b"POOL"
SECTION_PIECE_IDS: bytes = b"PIDS"
SECTION_PIECE_KINDS: bytes = b"PKND"
SECTION_PIECE_SCORES: bytes = b"PSCR"
SECTION_PIECE_OFFSETS: bytes = b"POFF"
SECTION_PIECE_TEXT: bytes = b"PTXT"
SECTION_NORM_BASE: bytes = b"NBAS"
SECTION_NORM_CHECK: bytes = b"NCHK"
SECTION_NORM_VALUE: bytes = b"NVAL"
SECTION_NORM_OFFSETS: bytes = b"NOFF"
SECTION_NORM_POOL: bytes = b"NPOL"

REQUIRED_SECTIONS: tuple[bytes, ...] = (
    SECTION_META,
    SECTION_VOCAB_BASE,
    SECTION_VOCAB_CHECK,
    SECTION_VOCAB_ACCEPT,
    SECTION_SHORTCUT,
    SECTION_POP_START,
    SECTION_POP_COUNT,
    SECTION_POP_POOL,
    SECTION_PIECE_IDS,
    SECTION_PIECE_KINDS,
    SECTION_PIECE_SCORES,
    SECTION_PIECE_OFFSETS,
    SECTION_PIECE_TEXT,
    SECTION_NORM_BASE,
    SECTION_NORM_CHECK,
    SECTION_NORM_VALUE,
    SECTION_NORM_OFFSETS,
    SECTION_NORM_POOL,
)
