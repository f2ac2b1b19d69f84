"""
Tests for per-trial condition generation.
"""
from __future__ import annotations

import random

import pytest

from color_toj.colors import HueColor, hue_distance
from color_toj.conditions import (
    ORIENTATION_STEP,
    ConditionGenerator,
    Quadrant,
    SlotHistory,
)
from color_toj.config import ConfigurationError


def single_generator(seed=0, **kwargs):
    return ConditionGenerator(rng=random.Random(seed), **kwargs)


def dual_generator(seed=0, **kwargs):
    return ConditionGenerator(
        pair_layout="dual", soa_levels_ms=(-50.0, 50.0), rng=random.Random(seed), **kwargs
    )


def test_orientation_never_repeats_for_a_slot():
    generator = single_generator()

    draws = [generator.generate_orientation("rotation") for _ in range(300)]

    assert all(value % ORIENTATION_STEP == 0 and 0 <= value < 180 for value in draws)
    assert all(previous != current for previous, current in zip(draws, draws[1:]))


def test_position_never_repeats_for_a_slot():
    generator = single_generator()

    draws = [generator.generate_position("left", (2, 3), (2, 2)) for _ in range(100)]

    assert set(draws) == {(2, 2), (3, 2)}
    assert all(previous != current for previous, current in zip(draws, draws[1:]))


def test_single_cell_range_may_repeat():
    generator = single_generator()

    draws = [generator.generate_position("left", (4, 4), (1, 1)) for _ in range(5)]

    assert draws == [(4, 1)] * 5


def test_slots_keep_separate_histories():
    history = SlotHistory()
    generator = ConditionGenerator(rng=random.Random(5), history=history)

    generator.generate_position("left")
    generator.generate_position("right")

    assert set(history.positions) == {"left", "right"}
    history.clear()
    assert history.positions == {}


def test_mirror_orientation():
    assert ConditionGenerator.mirror_orientation(0) == 90
    assert ConditionGenerator.mirror_orientation(120) == 30


def test_invalid_range_is_rejected():
    with pytest.raises(ValueError):
        single_generator().generate_position("left", (5, 2), (1, 1))


@pytest.mark.parametrize("probe_left", [True, False])
def test_single_pair_puts_the_probe_on_the_requested_side(probe_left):
    generator = single_generator()

    for _ in range(50):
        condition = generator.generate_condition(probe_left)
        assert not condition.is_dual
        assert condition.probe.is_left is probe_left
        assert condition.reference.is_left is not probe_left
        assert [target.is_probe for target in condition.targets()].count(True) == 1
        assert condition.probe.color.hue in (0.0, 180.0)
        assert condition.reference.color == condition.probe.color.complementary()
        assert 300 <= condition.fixation_time_ms <= 500
        assert condition.distractor_soa is None


def test_single_pair_positions_stay_in_their_column_ranges():
    generator = single_generator()

    for _ in range(100):
        condition = generator.generate_condition(True)
        left_x, left_y = condition.probe.grid_position
        right_x, right_y = condition.reference.grid_position
        assert 3 <= left_x <= 5 and 2 <= right_x <= 4
        assert 2 <= left_y <= 5 and 2 <= right_y <= 5


def test_reference_hue_jitter():
    generator = single_generator(jitter_reference_hue=True, color_alpha=20.0)

    for _ in range(20):
        condition = generator.generate_condition(False)
        complementary = condition.probe.color.complementary()
        assert hue_distance(condition.reference.color.hue, complementary.hue) == pytest.approx(20.0)


def test_instruction_color_for_a_single_pair():
    condition = single_generator().generate_condition(True)

    assert condition.instruction_color(False) == condition.probe.color
    assert condition.instruction_color(True) == condition.reference.color


@pytest.mark.parametrize("probe_left", [True, False])
def test_dual_pairs_span_both_sides(probe_left):
    generator = dual_generator()

    for _ in range(50):
        condition = generator.generate_condition(probe_left)
        assert condition.is_dual
        quadrants = {target.quadrant for target in condition.targets()}
        assert quadrants == set(Quadrant)
        for pair in condition.pairs:
            assert pair.primary.is_left != pair.secondary.is_left
            assert pair.probe.is_left is probe_left
        first, second = condition.pairs
        assert second.primary.color == first.primary.color.complementary()
        assert hue_distance(first.primary.color.hue, first.secondary.color.hue) == pytest.approx(20.0)
        assert condition.distractor_soa in (-50.0, 50.0)


def test_instruction_color_for_dual_pairs_names_a_primary():
    condition = dual_generator().generate_condition(True)

    assert condition.instruction_color(False) == condition.pairs[0].primary.color
    assert condition.instruction_color(True) == condition.pairs[1].primary.color


def test_dual_layout_needs_soa_levels():
    with pytest.raises(ConfigurationError):
        ConditionGenerator(pair_layout="dual")


def test_unknown_layout_is_rejected():
    with pytest.raises(ConfigurationError):
        ConditionGenerator(pair_layout="triple")


def test_condition_serialises_colour_names():
    condition = single_generator().generate_condition(True)

    data = condition.as_dict()

    assert data["pairs"][0]["primary"]["color"] in ("red", "green")
    assert data["pairs"][0]["primary"]["is_probe"] is True
    assert HueColor(data["pairs"][0]["primary"]["hue"]) == condition.probe.color
