"""TokenizerConfig dataclass with YAML round-tripping."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .constants import DEFAULT_CONTINUATION_MARKER
from .normalizer import NormalizerOptions

logger = logging.getLogger("fastpiece.config")

_PATH_FIELDS = ("vocab_path", "replacements_path", "output_dir")


@dataclass
class TokenizerConfig:
    """Configuration for compiling and running a fastpiece tokenizer.

    Validated in ``__post_init__`` so that mistakes surface before the
    vocabulary is compiled.
    """

    # ── Vocabulary ─────────────────────────────────────────────────
    vocab_path: Optional[Path] = None  # one piece per line, optional "\t<score>"
    continuation_marker: str = DEFAULT_CONTINUATION_MARKER
    unknown_piece: Optional[str] = None  # substitute for uncoverable words

    # ── Normalization ──────────────────────────────────────────────
    replacements: dict[str, str] = field(default_factory=dict)
    replacements_path: Optional[Path] = None  # TSV "prefix\treplacement"
    add_dummy_prefix: bool = True
    remove_extra_whitespaces: bool = True
    escape_whitespaces: bool = True

    # ── Build ──────────────────────────────────────────────────────
    show_progress: bool = False

    # ── Output ─────────────────────────────────────────────────────
    output_dir: Path = Path("fastpiece_output")
    model_filename: str = "fastpiece.model"

    def __post_init__(self) -> None:
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                setattr(self, name, Path(value))
        if not self.continuation_marker:
            raise ValueError("continuation_marker must be a non-empty string")
        for prefix in self.replacements:
            if not prefix:
                raise ValueError("replacements must not contain an empty prefix")
        if self.unknown_piece == "":
            raise ValueError("unknown_piece must be None or a non-empty string")
        if not self.model_filename:
            raise ValueError("model_filename must be a non-empty string")

    @property
    def output_path(self) -> Path:
        return self.output_dir / self.model_filename

    def normalizer_options(self) -> NormalizerOptions:
        return NormalizerOptions(
            add_dummy_prefix=self.add_dummy_prefix,
            remove_extra_whitespaces=self.remove_extra_whitespaces,
            escape_whitespaces=self.escape_whitespaces,
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "TokenizerConfig":
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.debug("Loaded tokenizer config from %s", path)
        return cls(**data)

    def to_yaml(self, path: str | Path) -> None:
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.__dict__)
        for name in _PATH_FIELDS:
            if data[name] is not None:
                data[name] = str(data[name])
        data["replacements"] = dict(self.replacements)
        return data
