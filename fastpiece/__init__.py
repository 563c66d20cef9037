"""fastpiece: linear-time WordPiece tokenization with byte offsets.

A vocabulary of standalone and ``##`` continuation pieces is compiled into
a double-array trie with shortcut links, so greedy longest-match
segmentation touches every input byte a bounded number of times.  A
normalizer applies prefix replacements and whitespace policy while keeping
an offset map back to the caller's original bytes.
"""

from __future__ import annotations

from .config import TokenizerConfig
from .constants import DEFAULT_CONTINUATION_MARKER, SPACE_MARKER
from .detokenizer import Detokenizer, detokenize, detokenize_groups, detokenize_to_words
from .errors import (
    DuplicatePieceError,
    EmptyPieceError,
    FastPieceError,
    InvalidIdError,
    MalformedModelError,
    NoProgressError,
    VocabularyError,
)
from .importers import (
    ImportedVocabulary,
    pieces_from_hf_tokenizer,
    read_replacements_file,
    read_vocab_file,
)
from .normalizer import Normalizer, NormalizerOptions, OffsetMap, ReplacementTable, normalize
from .segmenter import PieceOccurrence, Segmenter, greedy_reference, tokenize
from .serialization import CompiledModel, load_model, model_to_bytes, save_model
from .validation import ValidationReport, validate_tokenizer
from .vocab import CompiledVocabulary, Piece, PieceKind
from .wrapper import BatchTokenization, FastPieceTokenizer, TokenizationResult

__all__ = [
    "BatchTokenization",
    "CompiledModel",
    "CompiledVocabulary",
    "DEFAULT_CONTINUATION_MARKER",
    "Detokenizer",
    "DuplicatePieceError",
    "EmptyPieceError",
    "FastPieceError",
    "FastPieceTokenizer",
    "ImportedVocabulary",
    "InvalidIdError",
    "MalformedModelError",
    "NoProgressError",
    "Normalizer",
    "NormalizerOptions",
    "OffsetMap",
    "Piece",
    "PieceKind",
    "PieceOccurrence",
    "ReplacementTable",
    "SPACE_MARKER",
    "Segmenter",
    "TokenizationResult",
    "TokenizerConfig",
    "ValidationReport",
    "VocabularyError",
    "detokenize",
    "detokenize_groups",
    "detokenize_to_words",
    "greedy_reference",
    "load_model",
    "model_to_bytes",
    "normalize",
    "pieces_from_hf_tokenizer",
    "read_replacements_file",
    "read_vocab_file",
    "save_model",
    "tokenize",
    "validate_tokenizer",
]

__version__ = "0.1.0"
