"""Per-trial stimulus configurations for the colour TOJ task.

A :class:`ConditionGenerator` turns the abstract ``probe_left`` flag of a trial
descriptor into concrete targets: which bar is the probe, its colour, its
position inside the bar grid, the grid orientation and, for the dual-pair
layout, a distractor pair with its own SOA.

Orientations and positions are drawn by rejection sampling so that the same
logical slot (for example ``"left"`` or ``"rotation"``) never receives the same
value on two consecutive trials.  The per-slot history lives in an explicit
:class:`SlotHistory` object owned by the generator.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Sequence, Tuple, TypeVar

from psychopy import logging

from .colors import HueColor, random_primary_color
from .config import ConfigurationError

ORIENTATION_STEP: int = 10
ORIENTATION_COUNT: int = 18

GridPosition = Tuple[int, int]
Range = Tuple[int, int]

# Column ranges are shifted towards the fixation point so that targets of the
# two halves end up at similar eccentricities.
SINGLE_X_RANGES: Dict[bool, Range] = {True: (3, 5), False: (2, 4)}
SINGLE_Y_RANGE: Range = (2, 5)
DUAL_X_RANGES: Dict[bool, Range] = {True: (2, 5), False: (1, 4)}
DUAL_Y_RANGE: Range = (1, 2)

T = TypeVar("T")


class Quadrant(Enum):
    """Screen quadrant holding one target of the dual-pair layout."""

    TOP_LEFT = "top_left"
    TOP_RIGHT = "top_right"
    BOTTOM_LEFT = "bottom_left"
    BOTTOM_RIGHT = "bottom_right"

    @property
    def is_left(self) -> bool:
        return self in (Quadrant.TOP_LEFT, Quadrant.BOTTOM_LEFT)

    @property
    def is_top(self) -> bool:
        return self in (Quadrant.TOP_LEFT, Quadrant.TOP_RIGHT)

    @classmethod
    def random_mixed_side_pairs(
        cls, rng: random.Random
    ) -> Tuple[Tuple["Quadrant", "Quadrant"], Tuple["Quadrant", "Quadrant"]]:
        """Split the four quadrants into two pairs that each span both sides."""

        layouts = (
            ((cls.TOP_LEFT, cls.TOP_RIGHT), (cls.BOTTOM_LEFT, cls.BOTTOM_RIGHT)),
            ((cls.TOP_LEFT, cls.BOTTOM_RIGHT), (cls.BOTTOM_LEFT, cls.TOP_RIGHT)),
        )
        pairs = [tuple(rng.sample(pair, 2)) for pair in rng.choice(layouts)]
        rng.shuffle(pairs)
        first, second = pairs
        return first, second  # type: ignore[return-value]


@dataclass(frozen=True)
class Target:
    """One coloured bar inside a grid."""

    color: HueColor
    is_left: bool
    is_probe: bool
    grid_position: GridPosition
    quadrant: Optional[Quadrant] = None

    @property
    def side(self) -> str:
        return "left" if self.is_left else "right"

    def as_dict(self) -> Dict[str, object]:
        return {
            "color": self.color.to_name(),
            "hue": self.color.hue,
            "side": self.side,
            "quadrant": self.quadrant.value if self.quadrant else None,
            "is_probe": self.is_probe,
            "grid_position": list(self.grid_position),
        }


@dataclass(frozen=True)
class TargetPair:
    """Two targets whose flash order is judged (or, for pair 1, ignored)."""

    pair_index: int
    primary: Target
    secondary: Target
    fixation_time_ms: int

    def __post_init__(self) -> None:
        if self.primary.is_probe == self.secondary.is_probe:
            raise ValueError("Exactly one target of a pair must be the probe.")

    @property
    def probe(self) -> Target:
        return self.primary if self.primary.is_probe else self.secondary

    @property
    def reference(self) -> Target:
        return self.secondary if self.primary.is_probe else self.primary

    def as_dict(self) -> Dict[str, object]:
        return {
            "pair_index": self.pair_index,
            "fixation_time_ms": self.fixation_time_ms,
            "primary": self.primary.as_dict(),
            "secondary": self.secondary.as_dict(),
        }


@dataclass(frozen=True)
class Condition:
    """The materialised stimulus configuration of a single trial."""

    pairs: Tuple[TargetPair, ...]
    rotation: int
    distractor_soa: Optional[float] = None

    @property
    def is_dual(self) -> bool:
        return len(self.pairs) > 1

    @property
    def primary_pair(self) -> TargetPair:
        return self.pairs[0]

    @property
    def distractor_pair(self) -> Optional[TargetPair]:
        return self.pairs[1] if self.is_dual else None

    @property
    def probe(self) -> Target:
        return self.primary_pair.probe

    @property
    def reference(self) -> Target:
        return self.primary_pair.reference

    @property
    def fixation_time_ms(self) -> int:
        return self.primary_pair.fixation_time_ms

    def targets(self) -> Tuple[Target, ...]:
        return tuple(target for pair in self.pairs for target in (pair.primary, pair.secondary))

    def instruction_color(self, negated: bool) -> HueColor:
        """Return the colour named by the spoken instruction.

        With a single pair, "now X" names the probe and "not X" names the
        reference, so that the probe is always the bar to be judged.  With two
        pairs the cue names the primary colour of pair 0 ("now") or pair 1
        ("not").
        """

        if self.is_dual:
            return self.pairs[1 if negated else 0].primary.color
        return (self.reference if negated else self.probe).color

    def as_dict(self) -> Dict[str, object]:
        return {
            "pairs": [pair.as_dict() for pair in self.pairs],
            "rotation": self.rotation,
            "distractor_soa": self.distractor_soa,
        }


@dataclass
class SlotHistory:
    """Last orientation/position handed out per logical slot."""

    orientations: Dict[str, int] = field(default_factory=dict)
    positions: Dict[str, GridPosition] = field(default_factory=dict)

    def clear(self) -> None:
        self.orientations.clear()
        self.positions.clear()


def _draw_without_repeat(draw: Callable[[], T], previous: Optional[T], domain_size: int) -> T:
    """Redraw until the value differs from ``previous`` (if an alternative exists)."""

    value = draw()
    if domain_size <= 1:
        return value
    while previous is not None and value == previous:
        value = draw()
    return value


def _range_size(value_range: Range) -> int:
    low, high = value_range
    if high < low:
        raise ValueError(f"Invalid range {value_range}: upper bound below lower bound")
    return high - low + 1


class ConditionGenerator:
    """Produce one valid, non-repeating :class:`Condition` per call."""

    def __init__(
        self,
        *,
        pair_layout: str = "single",
        color_alpha: float = 20.0,
        jitter_reference_hue: bool = False,
        soa_levels_ms: Sequence[float] = (),
        fixation_range_ms: Range = (300, 500),
        rng: random.Random | None = None,
        history: SlotHistory | None = None,
    ) -> None:
        if pair_layout not in ("single", "dual"):
            raise ConfigurationError(f"Unknown pair layout '{pair_layout}'.")
        if pair_layout == "dual" and not soa_levels_ms:
            raise ConfigurationError("The dual-pair layout needs SOA levels for the distractor pair.")
        _range_size(fixation_range_ms)
        self.pair_layout = pair_layout
        self.color_alpha = float(color_alpha)
        self.jitter_reference_hue = jitter_reference_hue
        self.soa_levels_ms = tuple(soa_levels_ms)
        self.fixation_range_ms = fixation_range_ms
        self.rng = rng or random.Random()
        self.history = history if history is not None else SlotHistory()

    # ------------------------------------------------------------------
    # Primitive draws
    # ------------------------------------------------------------------
    def generate_orientation(self, slot: Optional[str] = None) -> int:
        """Draw a grid orientation in ``{0, 10, ..., 170}`` degrees.

        When ``slot`` is given the orientation differs from the one previously
        handed out for that slot.
        """

        def draw() -> int:
            return self.rng.randint(0, ORIENTATION_COUNT - 1) * ORIENTATION_STEP

        if slot is None:
            return draw()
        orientation = _draw_without_repeat(
            draw, self.history.orientations.get(slot), ORIENTATION_COUNT
        )
        self.history.orientations[slot] = orientation
        return orientation

    @staticmethod
    def mirror_orientation(orientation: int) -> int:
        return (orientation + 90) % 180

    def generate_position(
        self,
        slot: str,
        x_range: Range = (2, 5),
        y_range: Range = (2, 5),
    ) -> GridPosition:
        """Draw an ``(x, y)`` grid cell from inclusive ranges, never repeating per slot."""

        domain_size = _range_size(x_range) * _range_size(y_range)

        def draw() -> GridPosition:
            return self.rng.randint(*x_range), self.rng.randint(*y_range)

        position = _draw_without_repeat(draw, self.history.positions.get(slot), domain_size)
        self.history.positions[slot] = position
        return position

    def random_primary_color(self) -> HueColor:
        return random_primary_color(self.rng)

    def _fixation_time(self) -> int:
        return self.rng.randint(*self.fixation_range_ms)

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------
    def generate_condition(self, probe_left: bool) -> Condition:
        """Build the targets for one trial with the probe on the requested side."""

        if self.pair_layout == "dual":
            condition = self._dual_pair_condition(probe_left)
        else:
            condition = self._single_pair_condition(probe_left)
        logging.debug(
            f"Condition: probe={condition.probe.color.to_name()} ({condition.probe.side}), "
            f"reference={condition.reference.color.to_name()}, rotation={condition.rotation}"
        )
        return condition

    def _single_pair_condition(self, probe_left: bool) -> Condition:
        probe_color = self.random_primary_color()
        if self.jitter_reference_hue:
            reference_color = probe_color.complementary().random_relative(
                (self.color_alpha, -self.color_alpha), self.rng
            )
        else:
            reference_color = probe_color.complementary()

        def build(is_left: bool, is_probe: bool, color: HueColor) -> Target:
            position = self.generate_position(
                "left" if is_left else "right", SINGLE_X_RANGES[is_left], SINGLE_Y_RANGE
            )
            return Target(color=color, is_left=is_left, is_probe=is_probe, grid_position=position)

        probe = build(probe_left, True, probe_color)
        reference = build(not probe_left, False, reference_color)
        pair = TargetPair(
            pair_index=0,
            primary=probe,
            secondary=reference,
            fixation_time_ms=self._fixation_time(),
        )
        return Condition(pairs=(pair,), rotation=self.generate_orientation("rotation"))

    def _dual_pair_condition(self, probe_left: bool) -> Condition:
        quadrant_pairs = Quadrant.random_mixed_side_pairs(self.rng)
        pairs = []
        first_primary_color: Optional[HueColor] = None
        for pair_index, (primary_quadrant, secondary_quadrant) in enumerate(quadrant_pairs):
            if first_primary_color is None:
                primary_color = self.random_primary_color()
                first_primary_color = primary_color
            else:
                primary_color = first_primary_color.complementary()
            secondary_color = primary_color.random_relative(
                (self.color_alpha, -self.color_alpha), self.rng
            )
            primary_is_probe = primary_quadrant.is_left == probe_left

            def build(quadrant: Quadrant, is_probe: bool, color: HueColor) -> Target:
                position = self.generate_position(
                    quadrant.value, DUAL_X_RANGES[quadrant.is_left], DUAL_Y_RANGE
                )
                return Target(
                    color=color,
                    is_left=quadrant.is_left,
                    is_probe=is_probe,
                    grid_position=position,
                    quadrant=quadrant,
                )

            pairs.append(
                TargetPair(
                    pair_index=pair_index,
                    primary=build(primary_quadrant, primary_is_probe, primary_color),
                    secondary=build(secondary_quadrant, not primary_is_probe, secondary_color),
                    fixation_time_ms=self._fixation_time(),
                )
            )
        return Condition(
            pairs=tuple(pairs),
            rotation=self.generate_orientation("rotation"),
            distractor_soa=self.rng.choice(self.soa_levels_ms),
        )


__all__ = [
    "Condition",
    "ConditionGenerator",
    "Quadrant",
    "SlotHistory",
    "Target",
    "TargetPair",
    "ORIENTATION_STEP",
    "ORIENTATION_COUNT",
]
