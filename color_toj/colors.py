"""Hue-based colour model for the colour TOJ task.

Every target colour is a hue angle on the CIELAB LCh circle with a fixed
lightness and chroma.  Related colours (the complementary hue, or a hue a few
degrees away) are derived by angular offsets, which keeps the two colours of a
trial perceptually balanced.  The helpers below convert hues to sRGB and to
PsychoPy's ``-1..1`` colour range for drawing.
"""
from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from template import convert_color_value

LIGHTNESS: float = 60.0
CHROMA: float = 60.0

#: The two canonical primaries a trial's probe colour is drawn from.
PRIMARY_HUES: Tuple[float, float] = (0.0, 180.0)

#: Canonical hue angles and their names; a colour is named after the closest one.
COLOR_NAMES: Dict[float, str] = {
    0.0: "red",
    90.0: "yellow",
    180.0: "green",
    270.0: "blue",
}

# D65 reference white and the XYZ -> linear sRGB matrix
_WHITE_XYZ = np.array([0.95047, 1.0, 1.08883])
_XYZ_TO_LINEAR_RGB = np.array(
    [
        [3.2404542, -1.5371385, -0.4985314],
        [-0.9692660, 1.8760108, 0.0415560],
        [0.0556434, -0.2040259, 1.0572252],
    ]
)
_LAB_DELTA: float = 6.0 / 29.0


def normalize_hue(angle: float) -> float:
    """Wrap ``angle`` into ``[0, 360)`` degrees."""

    return float(angle) % 360.0


def hue_distance(first: float, second: float) -> float:
    """Return the shortest angular distance between two hues in degrees."""

    difference = abs(normalize_hue(first) - normalize_hue(second))
    return min(difference, 360.0 - difference)


def lch_to_srgb(lightness: float, chroma: float, hue: float) -> Tuple[int, int, int]:
    """Convert a CIELAB LCh colour to 8-bit sRGB (out-of-gamut values are clipped)."""

    hue_rad = math.radians(hue)
    a_star = chroma * math.cos(hue_rad)
    b_star = chroma * math.sin(hue_rad)

    f_y = (lightness + 16.0) / 116.0
    f = np.array([f_y + a_star / 500.0, f_y, f_y - b_star / 200.0])
    xyz = np.where(f > _LAB_DELTA, f**3, 3.0 * _LAB_DELTA**2 * (f - 4.0 / 29.0)) * _WHITE_XYZ

    linear = np.clip(_XYZ_TO_LINEAR_RGB @ xyz, 0.0, 1.0)
    srgb = np.where(
        linear <= 0.0031308,
        12.92 * linear,
        1.055 * np.power(linear, 1.0 / 2.4) - 0.055,
    )
    red, green, blue = (int(round(float(value) * 255.0)) for value in srgb)
    return red, green, blue


@dataclass(frozen=True)
class HueColor:
    """A perceptual colour identified by its hue angle."""

    hue: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "hue", normalize_hue(self.hue))

    def relative(self, offset: float) -> "HueColor":
        """Return the colour ``offset`` degrees away on the hue circle."""

        return HueColor(self.hue + offset)

    def complementary(self) -> "HueColor":
        return self.relative(180.0)

    def random_relative(self, offsets: Sequence[float], rng: random.Random) -> "HueColor":
        """Return a colour offset by one of ``offsets``, chosen uniformly."""

        return self.relative(rng.choice(list(offsets)))

    def to_name(self) -> str:
        """Return the name of the closest canonical hue (used for audio cues)."""

        closest = min(COLOR_NAMES, key=lambda canonical: hue_distance(canonical, self.hue))
        return COLOR_NAMES[closest]

    def to_rgb255(self) -> Tuple[int, int, int]:
        return lch_to_srgb(LIGHTNESS, CHROMA, self.hue)

    def to_psychopy_rgb(self) -> List[float]:
        """Return the colour in PsychoPy's ``-1..1`` RGB space."""

        return convert_color_value(self.to_rgb255())


def random_primary_color(rng: random.Random) -> HueColor:
    """Pick one of the two complementary primaries uniformly."""

    return HueColor(rng.choice(PRIMARY_HUES))


__all__ = [
    "HueColor",
    "PRIMARY_HUES",
    "COLOR_NAMES",
    "hue_distance",
    "lch_to_srgb",
    "normalize_hue",
    "random_primary_color",
]
