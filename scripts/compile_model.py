"""Compile a WordPiece vocabulary into a fastpiece model blob.

Reads a one-piece-per-line vocabulary (or a HuggingFace WordPiece
``tokenizer.json``) plus optional replacement rules, builds the trie and
shortcut tables, validates them and writes the compiled model.

Usage:
    python -m scripts.compile_model --vocab vocab.txt
    python -m scripts.compile_model --config configs/tokenizer.yaml
    python -m scripts.compile_model --hf-tokenizer tokenizer.json --validate samples.txt
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
import time
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastpiece.config import TokenizerConfig
from fastpiece.importers import pieces_from_hf_tokenizer, read_replacements_file
from fastpiece.serialization import CompiledModel
from fastpiece.validation import validate_tokenizer
from fastpiece.wrapper import FastPieceTokenizer


def build_config(args: argparse.Namespace) -> TokenizerConfig:
    """Start from ``--config`` (if given) and apply command-line overrides."""
    config = TokenizerConfig.from_yaml(args.config) if args.config else TokenizerConfig()
    overrides: dict[str, object] = {"show_progress": not args.quiet}
    if args.vocab:
        overrides["vocab_path"] = Path(args.vocab)
    if args.replacements:
        overrides["replacements_path"] = Path(args.replacements)
    if args.output:
        overrides["output_dir"] = Path(args.output)
    if args.marker:
        overrides["continuation_marker"] = args.marker
    if args.unknown_piece:
        overrides["unknown_piece"] = args.unknown_piece
    if args.no_dummy_prefix:
        overrides["add_dummy_prefix"] = False
    if args.keep_whitespace:
        overrides["remove_extra_whitespaces"] = False
    if args.no_escape:
        overrides["escape_whitespaces"] = False
    return dataclasses.replace(config, **overrides)


def compile_from_hf(config: TokenizerConfig, path: Path) -> FastPieceTokenizer:
    imported = pieces_from_hf_tokenizer(path)
    replacements: dict[str, str] = {}
    if config.replacements_path is not None:
        replacements.update(read_replacements_file(config.replacements_path))
    replacements.update(config.replacements)
    model = CompiledModel.build(
        imported.pieces,
        replacements,
        config.normalizer_options(),
        continuation_marker=imported.continuation_marker,
        unknown_piece=config.unknown_piece or imported.unknown_piece,
        show_progress=config.show_progress,
    )
    return FastPieceTokenizer(model)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Compile a WordPiece vocabulary into a fastpiece model"
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--vocab", default=None, help="One-piece-per-line vocabulary file")
    source.add_argument(
        "--hf-tokenizer",
        default=None,
        help="HuggingFace tokenizer.json with a WordPiece model",
    )
    parser.add_argument("--config", default=None, help="TokenizerConfig YAML file")
    parser.add_argument(
        "--replacements", default=None, help="TSV of 'prefix<TAB>replacement' rules"
    )
    parser.add_argument(
        "--output", "-o",
        default=None,
        help="Output directory (default: fastpiece_output/)",
    )
    parser.add_argument("--marker", default=None, help="Continuation marker (default: ##)")
    parser.add_argument("--unknown-piece", default=None, help="Piece substituted for uncoverable words")
    parser.add_argument("--no-dummy-prefix", action="store_true", help="Do not prepend a space")
    parser.add_argument(
        "--keep-whitespace", action="store_true", help="Do not collapse or strip whitespace"
    )
    parser.add_argument("--no-escape", action="store_true", help="Do not escape spaces as U+2581")
    parser.add_argument(
        "--validate",
        default=None,
        help="Text file of validation samples (one per line)",
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Hide progress bars")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )

    config = build_config(args)
    if args.hf_tokenizer is None and config.vocab_path is None:
        parser.error("one of --vocab, --hf-tokenizer or a config with vocab_path is required")

    print("=" * 60)
    print("fastpiece Model Compilation")
    print("=" * 60)
    print(f"  Vocabulary:     {args.hf_tokenizer or config.vocab_path}")
    print(f"  Replacements:   {config.replacements_path or '-'} (+{len(config.replacements)} inline)")
    print(f"  Dummy prefix:   {config.add_dummy_prefix}")
    print(f"  Collapse ws:    {config.remove_extra_whitespaces}")
    print(f"  Escape ws:      {config.escape_whitespaces}")
    print(f"  Output:         {config.output_path}")
    print()

    t_start = time.time()
    if args.hf_tokenizer:
        tokenizer = compile_from_hf(config, Path(args.hf_tokenizer))
    else:
        tokenizer = FastPieceTokenizer.from_config(config)
    path = tokenizer.save(config.output_path)
    print(f"Compiled {tokenizer.vocab_size:,} pieces in {time.time() - t_start:.1f}s")
    print(f"Saved to: {path}")

    if args.validate:
        print("\n" + "=" * 60)
        print("Validation")
        print("=" * 60)
        samples = [
            line
            for line in Path(args.validate).read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
        reloaded = FastPieceTokenizer(path)
        report = validate_tokenizer(reloaded, samples)
        print(report.summary())
        if not report.ok:
            sys.exit(1)


if __name__ == "__main__":
    main()
