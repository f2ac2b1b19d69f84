"""Configuration helpers for the colour TOJ negation experiment.

The :class:`ExperimentConfig` dataclass stores every user-editable parameter of
the task: factor levels, block sizes, response keys, asset folders and window
settings.  Keeping these values in a separate module makes it easy to discover
what can be tweaked without touching the trial or sequencing code.

The configuration is immutable once built.  Variants (debug runs, command line
overrides, JSON files) are derived with :meth:`ExperimentConfig.with_overrides`
so that every collaborator sees the same values for the whole session.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

#: Duration of one frame on a 60 Hz display; SOAs are multiples of it.
FRAME_MS: float = 16.6667

SOA_FRAMES: Tuple[int, ...] = (-6, -4, -3, -2, -1, 0, 1, 2, 3, 4, 6)
TUTORIAL_SOA_FRAMES: Tuple[int, ...] = (-6, -3, 3, 6)
DEBUG_SOA_FRAMES: Tuple[int, ...] = (-6, 6)

BALANCING_MODES: Tuple[str, ...] = ("factorial", "run_length", "session")
PAIR_LAYOUTS: Tuple[str, ...] = ("single", "dual")
RESPONSE_MODES: Tuple[str, ...] = ("which_first", "which_side")
LANGUAGES: Tuple[str, ...] = ("en", "de")


class ConfigurationError(ValueError):
    """Raised when experiment parameters describe an unusable design."""


def frames_to_ms(frames: Sequence[int]) -> Tuple[float, ...]:
    """Convert frame counts to SOAs in milliseconds (rounded to 3 decimals)."""

    return tuple(round(frame * FRAME_MS, 3) for frame in frames)


@dataclass(frozen=True)
class ExperimentConfig:
    """Container for experiment parameters and runtime options."""

    experiment_name: str = "color_toj_negation"
    data_fields: Tuple[str, ...] = (
        "participant",
        "phase",
        "trial_index",
        "block_index",
        "trial_index_in_block",
        "is_instruction_negated",
        "probe_left",
        "soa",
        "sequence_length",
        "rank",
        "voice",
        "instruction_color",
        "fixation_time_ms",
        "distractor_soa",
        "condition",
        "response_key",
        "response",
        "response_source",
        "rt_ms",
        "correct",
        "timed_out",
        "play_feedback",
    )

    # Design
    balancing: str = "session"
    pair_layout: str = "single"
    response_mode: str = "which_first"
    polarity_levels: Tuple[bool, ...] = (True, False)
    probe_left_levels: Tuple[bool, ...] = (True, False)
    soa_levels_ms: Tuple[float, ...] = frames_to_ms(SOA_FRAMES)
    tutorial_soa_levels_ms: Tuple[float, ...] = frames_to_ms(TUTORIAL_SOA_FRAMES)
    sequence_lengths: Tuple[int, ...] = (1, 2, 5)
    repetitions: int = 10
    tutorial_repetitions: int = 10
    block_size: int = 44
    always_stay_under_block_size: bool = False
    probe_left_is_factor: bool = True
    seed: Optional[int] = None

    # Stimuli and timing
    color_alpha: float = 20.0
    jitter_reference_hue: bool = False
    flash_duration_ms: float = 30.0
    fixation_range_ms: Tuple[int, int] = (300, 500)
    response_timeout_ms: Optional[float] = None
    cell_px: int = 40
    grid_color: str = "#777777"
    flash_color: str = "white"

    # Audio
    language: str = "en"
    voices: Tuple[str, ...] = ("m", "f")
    audio_directory: str = "media/audio"
    audio_extension: str = "wav"

    # Responses
    left_key: str = "q"
    right_key: str = "p"
    continue_keys: Tuple[str, ...] = ("space",)
    quit_keys: Tuple[str, ...] = ("escape",)
    enable_touch: bool = True
    double_tap_key: Optional[str] = None
    participant_serial_port: Optional[str] = None
    participant_serial_baud: int = 9600

    # Tutorial
    tutorial_trials: int = 30
    repeated_tutorial_trials: int = 10
    tutorial_accuracy_threshold: float = 0.7
    max_tutorial_attempts: int = 2

    # Output and display
    results_directory: str = "data"
    full_screen: bool = True
    window_size: Tuple[int, int] = (1280, 720)
    window_units: str = "pix"
    background_color: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    screen_index: int = 0
    debug_mode: bool = False

    def __post_init__(self) -> None:
        if self.balancing not in BALANCING_MODES:
            raise ConfigurationError(
                f"Unknown balancing mode '{self.balancing}'; expected one of {BALANCING_MODES}."
            )
        if self.pair_layout not in PAIR_LAYOUTS:
            raise ConfigurationError(
                f"Unknown pair layout '{self.pair_layout}'; expected one of {PAIR_LAYOUTS}."
            )
        if self.response_mode not in RESPONSE_MODES:
            raise ConfigurationError(
                f"Unknown response mode '{self.response_mode}'; expected one of {RESPONSE_MODES}."
            )
        if self.language not in LANGUAGES:
            raise ConfigurationError(f"Unsupported language '{self.language}'.")
        for name in ("polarity_levels", "probe_left_levels", "soa_levels_ms",
                     "tutorial_soa_levels_ms", "voices"):
            if len(getattr(self, name)) == 0:
                raise ConfigurationError(f"'{name}' must contain at least one level.")
        if self.balancing == "run_length":
            if not self.sequence_lengths:
                raise ConfigurationError("'sequence_lengths' must not be empty in run_length mode.")
            if any(length < 1 for length in self.sequence_lengths):
                raise ConfigurationError("Sequence lengths must be positive integers.")
        for name in ("repetitions", "tutorial_repetitions", "block_size", "max_tutorial_attempts"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"'{name}' must be at least 1.")
        if self.left_key == self.right_key:
            raise ConfigurationError("Left and right response keys must differ.")
        if self.double_tap_key not in (None, self.left_key, self.right_key):
            raise ConfigurationError(
                f"Double tap key '{self.double_tap_key}' must be one of the response keys "
                f"('{self.left_key}', '{self.right_key}')."
            )
        needed = max(self.tutorial_trials, self.repeated_tutorial_trials)
        if self.tutorial_trial_capacity < needed:
            raise ConfigurationError(
                f"The tutorial design yields {self.tutorial_trial_capacity} trials "
                f"but {needed} are requested."
            )
        low, high = self.fixation_range_ms
        if low < 0 or high < low:
            raise ConfigurationError(f"Invalid fixation range {self.fixation_range_ms}.")
        if not 0.0 < self.tutorial_accuracy_threshold <= 1.0:
            raise ConfigurationError("Tutorial accuracy threshold must lie in (0, 1].")
        if self.response_timeout_ms is not None and self.response_timeout_ms <= 0:
            raise ConfigurationError("Response timeout must be positive when set.")

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------
    @property
    def grid_size(self) -> Tuple[int, int]:
        """Number of bar columns/rows in one half (single) or quadrant (dual)."""

        return (7, 7) if self.pair_layout == "single" else (7, 4)

    @property
    def tutorial_trial_capacity(self) -> int:
        """Number of trials the tutorial design produces."""

        cells = len(self.polarity_levels) * len(self.probe_left_levels) * len(self.tutorial_soa_levels_ms)
        return cells * self.tutorial_repetitions

    def main_factors(self, negated: Optional[bool] = None) -> Dict[str, Tuple[Any, ...]]:
        """Return the factor levels for the main part of a session.

        ``negated`` restricts the polarity factor to a single level, which is
        how the ``session`` balancing mode runs negations and assertions in
        separate sessions.
        """

        polarity = self.polarity_levels if negated is None else (negated,)
        factors: Dict[str, Tuple[Any, ...]] = {
            "is_instruction_negated": tuple(polarity),
            "soa": tuple(self.soa_levels_ms),
        }
        if self.balancing == "run_length":
            factors["sequence_length"] = tuple(self.sequence_lengths)
        else:
            factors["probe_left"] = tuple(self.probe_left_levels)
        return factors

    def tutorial_factors(self) -> Dict[str, Tuple[Any, ...]]:
        """Return the factorial design used for tutorial trials."""

        return {
            "is_instruction_negated": tuple(self.polarity_levels),
            "probe_left": tuple(self.probe_left_levels),
            "soa": tuple(self.tutorial_soa_levels_ms),
        }

    def instructions_text(self, first_key: str, second_key: str) -> str:
        """Return an instruction string for the on-screen dialog."""

        first, second = first_key.upper(), second_key.upper()
        if self.language == "de":
            return (
                "Farb-TOJ mit Negation\n\n"
                "Zu Beginn jedes Durchgangs hören Sie eine Anweisung wie "
                "„jetzt rot“ oder „nicht grün“. Danach blinken die farbigen "
                "Streifen nacheinander.\n\n"
                f"Hat der genannte Streifen zuerst geblinkt, drücken Sie {first}.\n"
                f"Hat er als zweiter geblinkt, drücken Sie {second}.\n\n"
                "Schauen Sie dabei auf den Kreis in der Mitte."
            )
        return (
            "Colour TOJ with negation\n\n"
            "At the beginning of each trial you will hear an instruction like "
            "\"now red\" or \"not green\". Then each of the coloured bars will "
            "flash once.\n\n"
            f"If the indicated bar flashed first, press {first}.\n"
            f"If it flashed second, press {second}.\n\n"
            "Please keep your eyes on the circle in the centre.\n"
            "Press ESC at any time to exit early."
        )

    # ------------------------------------------------------------------
    # Variants
    # ------------------------------------------------------------------
    def with_overrides(self, **overrides: Any) -> "ExperimentConfig":
        """Return a copy with ``overrides`` applied (``None`` values are ignored)."""

        known = {item.name for item in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)

    def debug_variant(self) -> "ExperimentConfig":
        """Return a reduced configuration for quick, windowed test runs."""

        run_length = self.balancing == "run_length"
        return replace(
            self,
            debug_mode=True,
            full_screen=False,
            sequence_lengths=(1, 2) if run_length else self.sequence_lengths,
            soa_levels_ms=frames_to_ms(DEBUG_SOA_FRAMES),
            repetitions=20,
            tutorial_trials=10,
            repeated_tutorial_trials=10,
        )

    @classmethod
    def from_json(
        cls,
        path: str | os.PathLike[str],
        base: Optional["ExperimentConfig"] = None,
    ) -> "ExperimentConfig":
        """Load overrides from a JSON object stored at ``path``."""

        config_path = Path(path)
        with config_path.open("r", encoding="utf-8") as config_file:
            loaded: Any = json.load(config_file)
        if not isinstance(loaded, dict):
            raise TypeError(f"Configuration file '{config_path.name}' must contain a JSON object.")
        # JSON has no tuples; the dataclass stores sequences as tuples
        coerced = {
            key: tuple(value) if isinstance(value, list) else value
            for key, value in loaded.items()
        }
        return (base or cls()).with_overrides(**coerced)


__all__ = [
    "ConfigurationError",
    "ExperimentConfig",
    "FRAME_MS",
    "SOA_FRAMES",
    "TUTORIAL_SOA_FRAMES",
    "DEBUG_SOA_FRAMES",
    "frames_to_ms",
]
