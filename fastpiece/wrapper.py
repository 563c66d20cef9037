"""User-facing FastPieceTokenizer.

Composes normalization and segmentation and maps every piece back to
byte offsets in the caller's original input::

    tok = FastPieceTokenizer("fastpiece_output/fastpiece.model")
    result = tok.tokenize_with_offsets("a abc abcd")
    result.pieces          # ['a', 'abc', 'abc', '##d']
    result.start_offsets   # [0, 2, 6, 9]

Also implements the HF-style duck typing of the tokenizer wrappers used
in training code (``__len__``, ``__call__``, ``get_vocab``,
``convert_tokens_to_ids``, ``convert_ids_to_tokens``).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence, overload

from .config import TokenizerConfig
from .detokenizer import Detokenizer
from .errors import NoProgressError
from .importers import read_replacements_file, read_vocab_file
from .normalizer import Normalizer, NormalizerOptions, OffsetMap
from .segmenter import PieceOccurrence, Segmenter
from .serialization import CompiledModel, load_model, save_model
from .vocab import CompiledVocabulary, Piece


@dataclass(frozen=True)
class TokenizationResult:
    """Pieces of one input with offsets into the original bytes."""

    pieces: list[str]
    ids: list[int]
    start_offsets: list[int]
    end_offsets: list[int]

    def __len__(self) -> int:
        return len(self.ids)


@dataclass(frozen=True)
class BatchTokenization:
    """Flat results for several inputs; ``row_splits`` delimits each input."""

    pieces: list[str]
    ids: list[int]
    row_splits: list[int]
    start_offsets: list[int]
    end_offsets: list[int]


class FastPieceTokenizer:
    """Normalize, segment and detokenize with one compiled model.

    Raises
    ------
    NoProgressError
        From :meth:`tokenize_with_offsets` when a word cannot be covered by
        the vocabulary and the model has no ``unknown_piece``.
    """

    def __init__(self, model: CompiledModel | str | Path) -> None:
        if not isinstance(model, CompiledModel):
            model = load_model(model)
        self._model = model
        self._normalizer = Normalizer(model.replacements, model.options)
        self._segmenter = Segmenter(model.vocab)
        self._detokenizer = Detokenizer(model.vocab)
        self._unknown_id = (
            model.vocab.id_of(model.unknown_piece) if model.unknown_piece is not None else None
        )

    # ── Construction helpers ───────────────────────────────────────

    @classmethod
    def from_pieces(
        cls,
        tokens: Sequence[str],
        replacements: Mapping[str, str] | None = None,
        options: NormalizerOptions | None = None,
        *,
        continuation_marker: str = "##",
        unknown_piece: str | None = None,
    ) -> FastPieceTokenizer:
        """Build from display tokens; a token's position is its id."""
        pieces = [Piece.from_token(t, i, continuation_marker) for i, t in enumerate(tokens)]
        model = CompiledModel.build(
            pieces,
            replacements,
            options,
            continuation_marker=continuation_marker,
            unknown_piece=unknown_piece,
        )
        return cls(model)

    @classmethod
    def from_config(cls, config: TokenizerConfig) -> FastPieceTokenizer:
        if config.vocab_path is None:
            raise ValueError("TokenizerConfig.vocab_path is required to compile a model")
        pieces = read_vocab_file(config.vocab_path, config.continuation_marker)
        replacements: dict[str, str] = {}
        if config.replacements_path is not None:
            replacements.update(read_replacements_file(config.replacements_path))
        replacements.update(config.replacements)
        model = CompiledModel.build(
            pieces,
            replacements,
            config.normalizer_options(),
            continuation_marker=config.continuation_marker,
            unknown_piece=config.unknown_piece,
            show_progress=config.show_progress,
        )
        return cls(model)

    def save(self, path: str | Path) -> Path:
        return save_model(self._model, path)

    # ── Model info ─────────────────────────────────────────────────

    @property
    def model(self) -> CompiledModel:
        return self._model

    @property
    def vocab(self) -> CompiledVocabulary:
        return self._model.vocab

    @property
    def vocab_size(self) -> int:
        return len(self._model.vocab)

    @property
    def unknown_id(self) -> int | None:
        return self._unknown_id

    # ── Tokenization ───────────────────────────────────────────────

    def normalize(self, text: str | bytes) -> tuple[bytes, OffsetMap]:
        return self._normalizer.normalize(text)

    def tokenize_with_offsets(self, text: str | bytes) -> TokenizationResult:
        """Tokenize *text*; offsets are byte offsets into its UTF-8 form."""
        normalized, offset_map = self.normalize(text)
        occurrences: list[PieceOccurrence] = []
        for start, end in self._segmenter.iter_words(normalized):
            try:
                occurrences.extend(self._segmenter.segment_word(normalized, start, end))
            except NoProgressError as exc:
                if self._unknown_id is None:
                    position = offset_map.to_original_start(exc.position)
                    raise NoProgressError(
                        f"Failed to make any progress in tokenizing the input "
                        f"text at byte {position}",
                        position=position,
                        word=exc.word,
                    ) from exc
                occurrences.append(
                    PieceOccurrence(self._unknown_id, self._model.unknown_piece, start, end)
                )

        starts = offset_map.map_starts([o.start for o in occurrences]).tolist()
        ends = offset_map.map_ends([o.end for o in occurrences]).tolist()
        return TokenizationResult(
            [o.piece for o in occurrences],
            [o.piece_id for o in occurrences],
            starts,
            ends,
        )

    def tokenize_batch_with_offsets(self, texts: Sequence[str | bytes]) -> BatchTokenization:
        pieces: list[str] = []
        ids: list[int] = []
        starts: list[int] = []
        ends: list[int] = []
        row_splits = [0]
        for text in texts:
            result = self.tokenize_with_offsets(text)
            pieces.extend(result.pieces)
            ids.extend(result.ids)
            starts.extend(result.start_offsets)
            ends.extend(result.end_offsets)
            row_splits.append(len(ids))
        return BatchTokenization(pieces, ids, row_splits, starts, ends)

    def detokenize(self, ids: Sequence[int], boundaries: Sequence[int]) -> list[str]:
        """Detokenize each group ``ids[boundaries[i]:boundaries[i + 1]]``."""
        return self._detokenizer.detokenize_groups(ids, boundaries)

    # ── Encode / decode ────────────────────────────────────────────

    def encode(self, text: str | bytes) -> list[int]:
        """Encode *text* to piece ids."""
        return self.tokenize_with_offsets(text).ids

    def decode(self, ids: Sequence[int]) -> str:
        """Decode piece *ids* back to text."""
        return self._detokenizer.detokenize(ids)

    def encode_batch(self, texts: Sequence[str | bytes]) -> list[list[int]]:
        return [self.encode(text) for text in texts]

    def decode_batch(self, id_lists: Sequence[Sequence[int]]) -> list[str]:
        return [self.decode(ids) for ids in id_lists]

    # ── HF-compatible duck-typing ───────────────────────────────────

    def __len__(self) -> int:
        return self.vocab_size

    @overload
    def __call__(self, text: str) -> dict[str, list[int]]: ...
    @overload
    def __call__(self, text: list[str]) -> dict[str, list[list[int]]]: ...

    def __call__(
        self, text: str | list[str]
    ) -> dict[str, list[int]] | dict[str, list[list[int]]]:
        """Encode text(s) and return ``{"input_ids": ...}``."""
        if isinstance(text, str):
            return {"input_ids": self.encode(text)}
        return {"input_ids": self.encode_batch(text)}

    def get_vocab(self) -> dict[str, int]:
        return self._model.vocab.get_vocab()

    @overload
    def convert_tokens_to_ids(self, tokens: str) -> int | None: ...
    @overload
    def convert_tokens_to_ids(self, tokens: list[str]) -> list[int | None]: ...

    def convert_tokens_to_ids(
        self, tokens: str | list[str]
    ) -> int | None | list[int | None]:
        vocab = self._model.vocab
        if isinstance(tokens, str):
            return vocab.id_of(tokens)
        return [vocab.id_of(t) for t in tokens]

    @overload
    def convert_ids_to_tokens(self, ids: int) -> str | None: ...
    @overload
    def convert_ids_to_tokens(self, ids: list[int]) -> list[str | None]: ...

    def convert_ids_to_tokens(
        self, ids: int | list[int]
    ) -> str | None | list[str | None]:
        vocab = self._model.vocab
        if isinstance(ids, int):
            return vocab.token_of(ids)
        return [vocab.token_of(i) for i in ids]
