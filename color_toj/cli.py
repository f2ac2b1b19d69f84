"""Command line helpers for running the colour TOJ negation experiment."""
from __future__ import annotations

import argparse
import random
import sys
from pathlib import Path

from .colors import COLOR_NAMES
from .config import BALANCING_MODES, LANGUAGES, PAIR_LAYOUTS, RESPONSE_MODES, ExperimentConfig
from .sequences import audit_sequence
from .session import plan_session
from .stimuli import AudioCatalog

DEFAULT_SERIAL_BAUD = ExperimentConfig.__dataclass_fields__["participant_serial_baud"].default


def build_arg_parser() -> argparse.ArgumentParser:
    """Create an argument parser exposing the common runtime options."""

    parser = argparse.ArgumentParser(
        description=(
            "Launch the colour temporal-order-judgement task with negated instructions. "
            "By default audio cues are read from 'media/audio' next to the code."
        )
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON file with configuration overrides, applied before the options below.",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Folder where CSV/JSON/pickle/log outputs will be saved (default: data).",
    )
    parser.add_argument(
        "--audio-dir",
        type=Path,
        default=None,
        help="Folder holding the instruction and feedback recordings (default: media/audio).",
    )
    parser.add_argument("--language", choices=LANGUAGES, default=None, help="Instruction language.")
    parser.add_argument(
        "--balancing",
        choices=BALANCING_MODES,
        default=None,
        help=(
            "How polarity is balanced: 'factorial' mixes both polarities in one shuffled list, "
            "'run_length' alternates runs of controlled length, 'session' runs one polarity "
            "per session (default)."
        ),
    )
    parser.add_argument("--pair-layout", choices=PAIR_LAYOUTS, default=None, help="One or two target pairs.")
    parser.add_argument("--response-mode", choices=RESPONSE_MODES, default=None, help="Meaning of the answer keys.")
    parser.add_argument("--block-size", type=int, default=None, help="Trials between pause screens.")
    parser.add_argument("--repetitions", type=int, default=None, help="Repetitions of the factorial design.")
    parser.add_argument("--seed", type=int, default=None, help="Seed for all random draws.")
    parser.add_argument(
        "--participant-serial-port",
        type=str,
        default=None,
        help=(
            "Serial COM port used by the participant keypad (e.g., COM1). "
            "If omitted the keypad is ignored."
        ),
    )
    parser.add_argument(
        "--participant-serial-baud",
        type=int,
        default=None,
        help=f"Baud rate for the participant serial keypad (default: {DEFAULT_SERIAL_BAUD}).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Windowed run with a short design (two SOAs, short tutorial).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Generate the session's trial lists, print an audit and exit without opening a window.",
    )
    parser.add_argument(
        "--participant",
        type=str,
        default="dry-run",
        help="Participant code used by --dry-run (default: %(default)s).",
    )
    parser.add_argument(
        "--returning",
        action="store_true",
        help="Treat the --dry-run participant as returning for their second session.",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ExperimentConfig:
    """Build the configuration from defaults, an optional JSON file and CLI options."""

    config = ExperimentConfig.from_json(args.config) if args.config else ExperimentConfig()
    if args.debug:
        # explicit options below win over the debug defaults
        config = config.debug_variant()
    config = config.with_overrides(
        results_directory=str(args.data_dir) if args.data_dir else None,
        audio_directory=str(args.audio_dir) if args.audio_dir else None,
        language=args.language,
        balancing=args.balancing,
        pair_layout=args.pair_layout,
        response_mode=args.response_mode,
        block_size=args.block_size,
        repetitions=args.repetitions,
        seed=args.seed,
        participant_serial_port=args.participant_serial_port,
        participant_serial_baud=args.participant_serial_baud,
    )
    return config


def main(argv: list[str] | None = None) -> None:
    """Parse command line options and execute the experiment."""

    parser = build_arg_parser()
    args = parser.parse_args(argv)
    config = config_from_args(args)

    if args.dry_run:
        perform_dry_run(config, args.participant, is_first_participation=not args.returning)
        return

    from .experiment import ColorTojExperiment

    experiment = ColorTojExperiment(config)
    experiment.run()


def perform_dry_run(
    config: ExperimentConfig, participant: str, *, is_first_participation: bool = True
) -> None:
    """Print the session plan and a sequence audit, then exit."""

    plan = plan_session(
        config,
        participant,
        is_first_participation=is_first_participation,
        rng=random.Random(config.seed),
    )
    print(f"Dry-run: participant '{participant}' ({config.balancing} balancing).")
    for key, value in plan.as_dict().items():
        print(f"      {key:<22}: {value}")

    audit = audit_sequence(plan.main.trials)
    print(f"Main part: {len(plan.main)} trials in {plan.main.block_count} blocks {audit.block_sizes}")
    if plan.main.final_block_short:
        print("      final block is shorter than the block size")
    if plan.main.overflow_trials:
        print(f"      {plan.main.overflow_trials} trials exceed the block size")
    print("Runs (polarity, length) -> count:")
    for (negated, length), count in sorted(audit.run_counts.items()):
        print(f"      {'N' if negated else 'A'} x{length:<3}: {count}")
    if config.balancing == "run_length":
        for line in audit.describe(plan.main.trials):
            print(f"      {line}")

    catalog = AudioCatalog.from_directory(config.audio_directory, config.audio_extension)
    try:
        catalog.verify([config.language], config.voices, COLOR_NAMES.values())
        print(f"Audio cues complete in '{config.audio_directory}'.")
    except FileNotFoundError as exc:
        print(f"Audio check failed: {exc}")
    print("Dry-run complete.")


if __name__ == "__main__":  # pragma: no cover - module level CLI hook
    main(sys.argv[1:])
