"""
Tests for the trial timing engine and the response race.
"""
from __future__ import annotations

import asyncio
import json
from typing import List, Optional

import pytest

from color_toj.config import ExperimentConfig
from color_toj.engine import (
    EngineSettings,
    PollingSource,
    ResponseRace,
    TrialState,
    score_response,
)

from .conftest import EngineRig, FakeAudio, FakeClock, ScriptedSource, make_descriptor


# ────────────────────────────────────────────────────────────────────────────
# Scoring
# ────────────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "soa, responded_first, expected",
    [
        (-50.0, True, True),
        (-50.0, False, False),
        (50.0, True, False),
        (50.0, False, True),
        (0.0, True, True),
        (0.0, False, True),
    ],
)
def test_score_response(soa, responded_first, expected):
    assert score_response(soa, responded_first) is expected


def test_first_answers_across_soas_are_scored_per_onset_order(rig):
    records = [rig.run(make_descriptor(soa)) for soa in (-50.0, 0.0, 50.0)]

    assert [record.result.response for record in records] == ["first"] * 3
    assert [record.result.correct for record in records] == [True, True, False]


def test_second_answer_is_correct_when_probe_flashes_later():
    rig = EngineRig(keys=("p",))

    record = rig.run(make_descriptor(50.0))

    assert record.result.response == "second"
    assert record.result.responded_first is False
    assert record.result.correct is True


def test_switched_answer_keys():
    settings = EngineSettings(answer_keys_switched=True)

    assert (settings.first_key, settings.second_key) == ("p", "q")
    assert settings.interpret("p", probe_left=True) == ("first", True)
    assert settings.interpret("q", probe_left=True) == ("second", False)


@pytest.mark.parametrize(
    "probe_left, key, soa, label, correct",
    [
        (False, "p", -50.0, "right", True),
        (True, "p", 50.0, "right", True),
        (True, "q", 50.0, "left", False),
    ],
)
def test_which_side_mode_names_the_side_that_flashed_first(probe_left, key, soa, label, correct):
    rig = EngineRig(keys=(key,), response_mode="which_side")

    record = rig.run(make_descriptor(soa, probe_left=probe_left))

    assert record.result.response == label
    assert record.result.correct is correct


# ────────────────────────────────────────────────────────────────────────────
# Trial flow
# ────────────────────────────────────────────────────────────────────────────


def test_trial_walks_through_every_state_in_order(rig):
    rig.run(make_descriptor(-50.0))

    assert rig.engine.transitions == [
        TrialState.IDLE,
        TrialState.PLAYING_INSTRUCTION,
        TrialState.FIXATING,
        TrialState.MODIFYING,
        TrialState.AWAITING_RESPONSE,
        TrialState.SCORED,
        TrialState.FINISHED,
    ]
    assert rig.engine.state is TrialState.FINISHED


def test_instruction_cues_play_before_the_flashes(rig):
    record = rig.run(make_descriptor(-50.0, negated=True))

    catalog = rig.catalog
    assert record.voice in ("m", "f")
    assert rig.audio.played == [
        catalog.polarity_cue("en", record.voice, True),
        catalog.color_cue("en", record.voice, record.instruction_color),
    ]
    # "not X" names the reference of a single pair
    assert record.instruction_color == record.condition.reference.color.to_name()


def test_feedback_cue_follows_the_response_when_requested(rig):
    record = rig.run(make_descriptor(50.0), play_feedback=True)

    assert record.play_feedback is True
    assert rig.audio.played[-1] == rig.catalog.feedback_cue(record.result.correct)
    assert rig.audio.played[-1].stem == "wrong"


@pytest.mark.parametrize(
    "soa, expected",
    [
        (-50.0, ["probe", "reference"]),
        (50.0, ["reference", "probe"]),
        (0.0, ["probe", "reference"]),
    ],
)
def test_flash_order_follows_soa_sign(soa, expected):
    rig = EngineRig()

    record = rig.run(make_descriptor(soa))

    assert rig.renderer.flashes == expected
    fixation_s = record.condition.fixation_time_ms / 1000.0
    assert rig.sleep.calls[0] == pytest.approx(fixation_s)
    if soa:
        assert rig.sleep.calls[1:] == [pytest.approx(abs(soa) / 1000.0)]
    else:
        assert rig.sleep.calls[1:] == []


def test_reaction_time_is_measured_from_response_window_onset(rig):
    record = rig.run(make_descriptor(-50.0))

    assert record.result.rt_ms == 250
    assert record.result.source == "source_0"


def test_renderer_is_released_after_each_trial(rig):
    asyncio.run(rig.engine.run_trials([make_descriptor(-50.0, index=i) for i in range(3)]))

    assert len(rig.renderer.presented) == 3
    assert rig.renderer.released == 3
    assert rig.renderer.active is None


def test_renderer_is_released_when_audio_fails():
    rig = EngineRig(audio=FakeAudio(fail_on="now"))

    with pytest.raises(RuntimeError):
        rig.run(make_descriptor(-50.0, negated=False))

    assert rig.renderer.released == 1
    assert rig.renderer.active is None
    assert rig.engine.race.active_listeners == 0


def test_engine_requires_a_voice():
    with pytest.raises(ValueError):
        EngineRig(voices=())


def test_dual_layout_flashes_the_distractor_pair_too():
    rig = EngineRig(pair_layout="dual")

    record = rig.run(make_descriptor(-50.0))

    assert record.condition.is_dual
    assert record.condition.distractor_soa in (-50.0, 50.0)
    assert sorted(rig.renderer.flashes) == [
        "distractor_probe",
        "distractor_reference",
        "probe",
        "reference",
    ]
    assert record.as_row()["distractor_soa"] == record.condition.distractor_soa


def test_record_row_matches_data_fields(rig):
    record = rig.run(make_descriptor(-50.0, index=4))

    row = record.as_row()
    assert set(row) <= set(ExperimentConfig().data_fields)
    assert row["trial_index"] == 4
    assert row["sequence_length"] == ""
    assert json.loads(row["condition"])["rotation"] == record.condition.rotation


# ────────────────────────────────────────────────────────────────────────────
# Response race
# ────────────────────────────────────────────────────────────────────────────


def test_every_listener_is_unbound_after_every_trial():
    rig = EngineRig(keys=("q", None, None))
    descriptors = [make_descriptor(-50.0, index=i) for i in range(5)]

    asyncio.run(rig.engine.run_trials(descriptors))

    race = rig.engine.race
    assert race.bound_total == 15
    assert race.unbound_total == 15
    assert race.active_listeners == 0
    for sources in rig.sources_per_trial:
        for source in sources:
            assert source.bind_count == source.unbind_count == 1
            assert not source.is_bound


def test_timeout_records_a_missed_response():
    rig = EngineRig(keys=(None,), response_timeout_ms=20)

    record = rig.run(make_descriptor(-50.0))

    assert record.result.timed_out is True
    assert record.result.correct is False
    assert record.result.rt_ms is None
    assert record.as_row()["rt_ms"] == ""
    assert rig.engine.race.active_listeners == 0


def test_keys_outside_the_answer_set_are_ignored():
    rig = EngineRig(keys=("x", "p"))

    record = rig.run(make_descriptor(50.0))

    assert record.result.response_key == "p"
    assert record.result.source == "source_1"


class ExplodingSource:
    name = "broken"

    def __init__(self) -> None:
        self.unbind_count = 0

    def bind(self, emit) -> None:
        raise RuntimeError("device unplugged")

    def unbind(self) -> None:
        self.unbind_count += 1


def test_race_unbinds_sources_bound_before_a_failure():
    race = ResponseRace(FakeClock())
    healthy = ScriptedSource("healthy")
    broken = ExplodingSource()

    async def scenario():
        await race.run([healthy, broken])

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())

    assert healthy.unbind_count == 1
    assert broken.unbind_count == 0
    assert race.bound_total == race.unbound_total == 1


def test_cancelled_race_unbinds_its_sources():
    race = ResponseRace(FakeClock())
    idle = ScriptedSource("idle")

    async def scenario():
        task = asyncio.ensure_future(race.run([idle]))
        await asyncio.sleep(0)
        assert idle.is_bound
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert not idle.is_bound
    assert race.active_listeners == 0


class ScriptedPolling(PollingSource):
    name = "scripted_polling"

    def __init__(self, values: List[Optional[str]]) -> None:
        super().__init__(interval_s=0.0)
        self.values = list(values)
        self.resets = 0

    def reset(self) -> None:
        self.resets += 1

    def poll(self) -> Optional[str]:
        return self.values.pop(0) if self.values else None


def test_polling_source_reports_the_first_valid_key():
    race = ResponseRace(FakeClock())
    source = ScriptedPolling([None, "x", "p", "q"])

    captured = asyncio.run(race.run([source], valid_keys=("q", "p")))

    assert captured is not None
    assert (captured.key, captured.source) == ("p", "scripted_polling")
    assert source.resets == 1
    assert not source.is_bound


def test_polling_source_cannot_be_bound_twice():
    source = ScriptedPolling([])

    async def scenario():
        source.bind(lambda key: None)
        try:
            with pytest.raises(RuntimeError):
                source.bind(lambda key: None)
        finally:
            source.unbind()

    asyncio.run(scenario())
    assert not source.is_bound
