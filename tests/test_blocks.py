"""
Tests for block partitioning and pause screens.
"""
from __future__ import annotations

import pytest

from color_toj.blocks import BlockBreak, BlockScheduler
from color_toj.sequences import TrialDescriptor


def trials_with_blocks(block_indices):
    return [
        TrialDescriptor(
            is_instruction_negated=False,
            probe_left=True,
            soa=0.0,
            trial_index=position,
            block_index=block_index,
        )
        for position, block_index in enumerate(block_indices)
    ]


def test_fixed_block_size_leaves_a_short_final_block():
    scheduler = BlockScheduler(block_size=4)
    trials = trials_with_blocks([0] * 10)

    blocks = scheduler.partition(trials)

    assert [len(block) for block in blocks] == [4, 4, 2]
    assert scheduler.block_count(trials) == 3


def test_stamped_block_indices_define_blocks():
    scheduler = BlockScheduler()
    trials = trials_with_blocks([0, 0, 0, 1, 1, 2])

    assert [len(block) for block in scheduler.partition(trials)] == [3, 2, 1]
    assert scheduler.block_count(trials) == 3


def test_decreasing_block_indices_are_rejected():
    with pytest.raises(ValueError):
        BlockScheduler().partition(trials_with_blocks([0, 1, 0]))


def test_block_size_must_be_positive():
    with pytest.raises(ValueError):
        BlockScheduler(block_size=0)


def test_schedule_inserts_a_pause_after_every_block():
    trials = trials_with_blocks([0, 0, 1])

    items = list(BlockScheduler().schedule(trials))

    assert items[:2] == trials[:2]
    assert items[2] == BlockBreak(block_number=1, block_count=2)
    assert items[3] == trials[2]
    assert items[4] == BlockBreak(block_number=2, block_count=2)
    assert [item.is_final for item in items if isinstance(item, BlockBreak)] == [False, True]


def test_pause_messages():
    pause = BlockBreak(block_number=1, block_count=3)
    final = BlockBreak(block_number=3, block_count=3)

    assert "block 1 of 3" in pause.message("en")
    assert "Block 1 von 3" in pause.message("de")
    assert final.message("en") == "This part of the experiment is finished."
    assert pause.choices("de") == ("Weiter",)
