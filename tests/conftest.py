"""
Shared fakes for the colour TOJ tests.

The engine is exercised with real condition generation and real scoring; only
the PsychoPy boundary (drawing, audio, input devices, clock, sleep) is faked.
"""
from __future__ import annotations

import asyncio
import random
from pathlib import Path
from typing import List, Optional

import pytest

from color_toj.conditions import ConditionGenerator
from color_toj.engine import EngineSettings, StimulusSet, TojTimingEngine
from color_toj.sequences import TrialDescriptor
from color_toj.stimuli import AudioCatalog


# ────────────────────────────────────────────────────────────────────────────
# Fakes / helpers
# ────────────────────────────────────────────────────────────────────────────


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Instant replacement for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


class FakeRenderer:
    """Hands out string handles and records flashes and releases."""

    def __init__(self) -> None:
        self.presented = []
        self.flashes: List[str] = []
        self.released = 0
        self.active: Optional[StimulusSet] = None

    def present(self, condition) -> StimulusSet:
        self.presented.append(condition)
        stimuli = StimulusSet(
            probe="probe",
            reference="reference",
            distractor_probe="distractor_probe" if condition.is_dual else None,
            distractor_reference="distractor_reference" if condition.is_dual else None,
        )
        self.active = stimuli
        return stimuli

    async def flash(self, element, duration_ms: float) -> None:
        self.flashes.append(element)

    def release(self, stimuli: StimulusSet) -> None:
        assert stimuli is self.active
        self.released += 1
        self.active = None


class FakeAudio:
    def __init__(self, fail_on: Optional[str] = None) -> None:
        self.played: List[Path] = []
        self.fail_on = fail_on

    async def play(self, path: Path) -> None:
        if self.fail_on is not None and Path(path).stem == self.fail_on:
            raise RuntimeError(f"cannot play {path}")
        self.played.append(Path(path))


class ScriptedSource:
    """Response source that reports ``key`` shortly after being bound."""

    def __init__(self, name: str, key: Optional[str] = None, clock: Optional[FakeClock] = None,
                 delay_s: float = 0.25) -> None:
        self.name = name
        self.key = key
        self.clock = clock
        self.delay_s = delay_s
        self.bind_count = 0
        self.unbind_count = 0
        self._emit = None
        self._handle = None

    @property
    def is_bound(self) -> bool:
        return self._emit is not None

    def bind(self, emit) -> None:
        self.bind_count += 1
        self._emit = emit
        if self.key is not None:
            self._handle = asyncio.get_running_loop().call_later(0.005, self._fire)

    def _fire(self) -> None:
        if self._emit is None:
            return
        if self.clock is not None:
            self.clock.advance(self.delay_s)
        self._emit(self.key)

    def unbind(self) -> None:
        self.unbind_count += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._emit = None


def make_descriptor(soa: float, *, negated: bool = False, probe_left: bool = True,
                    index: int = 0) -> TrialDescriptor:
    return TrialDescriptor(
        is_instruction_negated=negated,
        probe_left=probe_left,
        soa=soa,
        trial_index=index,
    )


class EngineRig:
    """An engine wired to fakes, plus handles on every fake."""

    def __init__(self, *, keys=("q",), pair_layout: str = "single", seed: int = 7,
                 audio: Optional[FakeAudio] = None, **settings) -> None:
        self.clock = FakeClock()
        self.sleep = RecordingSleep()
        self.renderer = FakeRenderer()
        self.audio = audio or FakeAudio()
        self.catalog = AudioCatalog.from_directory("audio")
        self.sources_per_trial: List[List[ScriptedSource]] = []
        self.keys = keys
        self.settings = EngineSettings(**settings)
        self.generator = ConditionGenerator(
            pair_layout=pair_layout,
            soa_levels_ms=(-50.0, 50.0),
            rng=random.Random(seed),
        )
        self.engine = TojTimingEngine(
            self.settings,
            self.generator,
            self.renderer,
            self.audio,
            self.catalog,
            self.make_sources,
            rng=random.Random(seed),
            clock=self.clock,
            sleep=self.sleep,
        )

    def make_sources(self, stimuli: StimulusSet) -> List[ScriptedSource]:
        sources = [
            ScriptedSource(f"source_{index}", key, clock=self.clock)
            for index, key in enumerate(self.keys)
        ]
        self.sources_per_trial.append(sources)
        return sources

    def run(self, descriptor: TrialDescriptor, **kwargs):
        return asyncio.run(self.engine.run_trial(descriptor, **kwargs))


@pytest.fixture
def rig() -> EngineRig:
    return EngineRig()
