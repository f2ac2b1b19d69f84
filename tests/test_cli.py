from __future__ import annotations

from color_toj.cli import build_arg_parser, config_from_args, perform_dry_run
from color_toj.config import ExperimentConfig


def test_options_override_the_configuration(tmp_path):
    args = build_arg_parser().parse_args(
        [
            "--balancing", "run_length",
            "--repetitions", "1",
            "--seed", "3",
            "--language", "de",
            "--data-dir", str(tmp_path),
        ]
    )

    config = config_from_args(args)

    assert config.balancing == "run_length"
    assert config.repetitions == 1
    assert config.seed == 3
    assert config.language == "de"
    assert config.results_directory == str(tmp_path)
    assert config.participant_serial_port is None


def test_debug_flag_selects_the_debug_variant():
    config = config_from_args(build_arg_parser().parse_args(["--debug"]))

    assert config.debug_mode is True
    assert config.tutorial_trials == 10


def test_explicit_options_win_over_debug_defaults():
    args = build_arg_parser().parse_args(["--debug", "--repetitions", "3", "--block-size", "12"])

    config = config_from_args(args)

    assert config.debug_mode is True
    assert config.repetitions == 3
    assert config.block_size == 12
    assert len(config.soa_levels_ms) == 2


def test_dry_run_prints_the_plan(tmp_path, capsys):
    config = ExperimentConfig(
        balancing="run_length",
        repetitions=1,
        seed=1,
        audio_directory=str(tmp_path / "audio"),
    )

    perform_dry_run(config, "abc")

    output = capsys.readouterr().out
    assert "Dry-run: participant 'abc' (run_length balancing)." in output
    assert "treatment_group" in output
    assert "block 0:" in output
    assert "Audio check failed" in output
    assert output.rstrip().endswith("Dry-run complete.")
