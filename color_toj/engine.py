"""Timing and response engine for a single colour TOJ trial.

One trial runs through a fixed sequence of states::

    IDLE -> PLAYING_INSTRUCTION -> FIXATING -> MODIFYING
         -> AWAITING_RESPONSE -> SCORED -> FINISHED

The engine never draws, plays or reads input itself.  It is handed a renderer,
an audio player and a factory for response sources, and only decides *when*
each of them acts.
PsychoPy implementations live in :mod:`color_toj.psychopy_io`; the tests use
lightweight fakes.

Everything runs on a single asyncio event loop.  The only point where several
operations are outstanding at once is the response race: every source is
bound, the first one to report a key wins, and all of them are unbound again
before the race returns, whatever the outcome.
"""
from __future__ import annotations

import asyncio
import json
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Collection,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

from psychopy import core, logging

from .conditions import Condition, ConditionGenerator
from .config import ExperimentConfig
from .sequences import TrialDescriptor
from .session import response_keys
from .stimuli import AudioCatalog

POLL_INTERVAL_S: float = 0.002


class ExperimentAbort(Exception):
    """Raised when the participant issues a quit command (e.g., presses ESC)."""


class TrialState(Enum):
    IDLE = "idle"
    PLAYING_INSTRUCTION = "playing_instruction"
    FIXATING = "fixating"
    MODIFYING = "modifying"
    AWAITING_RESPONSE = "awaiting_response"
    SCORED = "scored"
    FINISHED = "finished"


# ----------------------------------------------------------------------
# Collaborator interfaces
# ----------------------------------------------------------------------
@dataclass
class StimulusSet:
    """Handles of the drawable elements of one trial, as returned by the renderer."""

    probe: Any
    reference: Any
    distractor_probe: Any = None
    distractor_reference: Any = None


class Renderer(Protocol):
    def present(self, condition: Condition) -> StimulusSet: ...

    async def flash(self, element: Any, duration_ms: float) -> None: ...

    def release(self, stimuli: StimulusSet) -> None: ...


class AudioPlayer(Protocol):
    async def play(self, path: Path) -> None: ...


class ResponseSource(Protocol):
    """A listener that reports a response key through ``emit`` once bound."""

    name: str

    def bind(self, emit: Callable[[str], None]) -> None: ...

    def unbind(self) -> None: ...


class PollingSource:
    """Response source that polls a device from a task while it is bound.

    Subclasses implement :meth:`poll`, returning a key name or ``None``.
    """

    name = "polling"

    def __init__(self, interval_s: float = POLL_INTERVAL_S) -> None:
        self.interval_s = interval_s
        self._task: Optional[asyncio.Task] = None

    @property
    def is_bound(self) -> bool:
        return self._task is not None

    def reset(self) -> None:
        """Drop input that arrived while the source was not bound."""

    def poll(self) -> Optional[str]:
        raise NotImplementedError

    def bind(self, emit: Callable[[str], None]) -> None:
        if self._task is not None:
            raise RuntimeError(f"Response source '{self.name}' is already bound")
        self.reset()
        self._task = asyncio.ensure_future(self._run(emit))

    def unbind(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self, emit: Callable[[str], None]) -> None:
        while True:
            key = self.poll()
            if key is not None:
                emit(key)
            await asyncio.sleep(self.interval_s)


SourceFactory = Callable[[StimulusSet], Sequence[ResponseSource]]
Sleep = Callable[[float], Awaitable[Any]]


# ----------------------------------------------------------------------
# Scoring
# ----------------------------------------------------------------------
def score_response(soa: float, responded_first: bool) -> bool:
    """Return whether a response is correct.

    A negative SOA means the probe flashed first.  Simultaneous onsets
    (``soa == 0``) count as correct whatever the answer.
    """

    return (soa < 0) == responded_first or soa == 0


@dataclass(frozen=True)
class EngineSettings:
    """Per-session values the engine needs besides its collaborators."""

    response_mode: str = "which_first"
    left_key: str = "q"
    right_key: str = "p"
    answer_keys_switched: bool = False
    language: str = "en"
    voices: Tuple[str, ...] = ("m", "f")
    flash_duration_ms: float = 30.0
    response_timeout_ms: Optional[float] = None

    @classmethod
    def from_config(
        cls, config: ExperimentConfig, *, answer_keys_switched: bool = False
    ) -> "EngineSettings":
        return cls(
            response_mode=config.response_mode,
            left_key=config.left_key,
            right_key=config.right_key,
            answer_keys_switched=answer_keys_switched,
            language=config.language,
            voices=tuple(config.voices),
            flash_duration_ms=config.flash_duration_ms,
            response_timeout_ms=config.response_timeout_ms,
        )

    @property
    def first_key(self) -> str:
        return response_keys(self.left_key, self.right_key, self.answer_keys_switched)[0]

    @property
    def second_key(self) -> str:
        return response_keys(self.left_key, self.right_key, self.answer_keys_switched)[1]

    @property
    def valid_keys(self) -> Tuple[str, str]:
        return self.left_key, self.right_key

    def interpret(self, key: str, probe_left: bool) -> Tuple[str, bool]:
        """Map a response key to ``(label, responded_first)``.

        In ``which_first`` mode the keys mean "the cued bar flashed first" and
        "... second".  In ``which_side`` mode the keys name the side that
        flashed first, so the answer is "first" when it names the probe's side.
        """

        if self.response_mode == "which_side":
            probe_key = self.left_key if probe_left else self.right_key
            label = "left" if key == self.left_key else "right"
            return label, key == probe_key
        if key == self.first_key:
            return "first", True
        return "second", False


# ----------------------------------------------------------------------
# Response race
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class CapturedResponse:
    key: str
    source: str
    rt_ms: int


class ResponseRace:
    """First-settled-wins combinator over a set of response sources.

    The race keeps running totals of bound and unbound listeners so that a
    session can check that no listener outlives its trial.
    """

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._bound: List[ResponseSource] = []
        self.bound_total = 0
        self.unbound_total = 0

    @property
    def active_listeners(self) -> int:
        return len(self._bound)

    async def run(
        self,
        sources: Sequence[ResponseSource],
        *,
        valid_keys: Optional[Collection[str]] = None,
        timeout_s: Optional[float] = None,
    ) -> Optional[CapturedResponse]:
        """Bind ``sources`` and return the first valid response (``None`` on timeout)."""

        loop = asyncio.get_running_loop()
        settled: asyncio.Future = loop.create_future()
        started = self._clock()

        def make_emit(source: ResponseSource) -> Callable[[str], None]:
            def emit(key: str) -> None:
                if settled.done():
                    return
                if valid_keys is not None and key not in valid_keys:
                    return
                rt_ms = int(round((self._clock() - started) * 1000.0))
                settled.set_result(CapturedResponse(key=key, source=source.name, rt_ms=rt_ms))

            return emit

        try:
            for source in sources:
                source.bind(make_emit(source))
                self._bound.append(source)
                self.bound_total += 1
            if timeout_s is None:
                return await settled
            try:
                return await asyncio.wait_for(settled, timeout_s)
            except asyncio.TimeoutError:
                logging.warning(f"No response within {timeout_s:.3f} s")
                return None
        finally:
            self._unbind_all()

    def _unbind_all(self) -> None:
        while self._bound:
            source = self._bound.pop()
            try:
                source.unbind()
            finally:
                self.unbound_total += 1


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ResponseResult:
    response_key: str
    response: str
    responded_first: Optional[bool]
    rt_ms: Optional[int]
    correct: bool
    source: str = ""
    timed_out: bool = False


@dataclass(frozen=True)
class TrialRecord:
    """Everything logged for one trial."""

    descriptor: TrialDescriptor
    condition: Condition
    result: ResponseResult
    voice: str
    instruction_color: str
    play_feedback: bool = False

    def as_row(self) -> Dict[str, object]:
        descriptor = self.descriptor
        result = self.result
        return {
            "trial_index": descriptor.trial_index,
            "block_index": descriptor.block_index,
            "trial_index_in_block": descriptor.trial_index_in_block,
            "is_instruction_negated": descriptor.is_instruction_negated,
            "probe_left": descriptor.probe_left,
            "soa": descriptor.soa,
            "sequence_length": "" if descriptor.sequence_length is None else descriptor.sequence_length,
            "rank": "" if descriptor.rank is None else descriptor.rank,
            "voice": self.voice,
            "instruction_color": self.instruction_color,
            "fixation_time_ms": self.condition.fixation_time_ms,
            "distractor_soa": "" if self.condition.distractor_soa is None else self.condition.distractor_soa,
            "condition": json.dumps(self.condition.as_dict(), sort_keys=True),
            "response_key": result.response_key,
            "response": result.response,
            "response_source": result.source,
            "rt_ms": "" if result.rt_ms is None else result.rt_ms,
            "correct": result.correct,
            "timed_out": result.timed_out,
            "play_feedback": self.play_feedback,
        }


# ----------------------------------------------------------------------
# Engine
# ----------------------------------------------------------------------
class TojTimingEngine:
    """Drive single TOJ trials from instruction playback to the scored result."""

    def __init__(
        self,
        settings: EngineSettings,
        condition_generator: ConditionGenerator,
        renderer: Renderer,
        audio: AudioPlayer,
        audio_catalog: AudioCatalog,
        source_factory: SourceFactory,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not settings.voices:
            raise ValueError("At least one instruction voice is required")
        self.settings = settings
        self.condition_generator = condition_generator
        self.renderer = renderer
        self.audio = audio
        self.audio_catalog = audio_catalog
        self.source_factory = source_factory
        self._rng = rng or random.Random()
        self._clock = clock or core.Clock().getTime
        self._sleep = sleep
        self.race = ResponseRace(self._clock)
        self.state = TrialState.IDLE
        self.transitions: List[TrialState] = [TrialState.IDLE]

    def _enter(self, state: TrialState) -> None:
        self.state = state
        self.transitions.append(state)
        logging.exp(f"TOJ state -> {state.value}")

    @asynccontextmanager
    async def _presented(self, condition: Condition) -> AsyncIterator[StimulusSet]:
        """Own the rendering surface for one trial; it is released on every exit path."""

        stimuli = self.renderer.present(condition)
        try:
            yield stimuli
        finally:
            self.renderer.release(stimuli)

    async def run_trial(
        self, descriptor: TrialDescriptor, *, play_feedback: bool = False
    ) -> TrialRecord:
        """Run one trial and return its scored record."""

        self.state = TrialState.IDLE
        self.transitions = [TrialState.IDLE]
        settings = self.settings

        self._enter(TrialState.PLAYING_INSTRUCTION)
        condition = self.condition_generator.generate_condition(descriptor.probe_left)
        voice = self._rng.choice(settings.voices)
        color_name = condition.instruction_color(descriptor.is_instruction_negated).to_name()

        async with self._presented(condition) as stimuli:
            distractor: Optional[asyncio.Future] = None
            try:
                await self.audio.play(
                    self.audio_catalog.polarity_cue(
                        settings.language, voice, descriptor.is_instruction_negated
                    )
                )
                await self.audio.play(
                    self.audio_catalog.color_cue(settings.language, voice, color_name)
                )

                self._enter(TrialState.FIXATING)
                if condition.is_dual:
                    distractor = asyncio.ensure_future(self._run_distractor(condition, stimuli))
                await self._sleep(condition.fixation_time_ms / 1000.0)

                self._enter(TrialState.MODIFYING)
                await self._modify(stimuli.probe, stimuli.reference, descriptor.soa)

                self._enter(TrialState.AWAITING_RESPONSE)
                timeout_s = (
                    None
                    if settings.response_timeout_ms is None
                    else settings.response_timeout_ms / 1000.0
                )
                captured = await self.race.run(
                    self.source_factory(stimuli),
                    valid_keys=settings.valid_keys,
                    timeout_s=timeout_s,
                )

                self._enter(TrialState.SCORED)
                result = self._score(descriptor, captured)
                if play_feedback:
                    await self.audio.play(self.audio_catalog.feedback_cue(result.correct))
            finally:
                distractor_error = await self._stop_distractor(distractor)
            if distractor_error is not None:
                raise distractor_error

        self._enter(TrialState.FINISHED)
        record = TrialRecord(
            descriptor=descriptor,
            condition=condition,
            result=result,
            voice=voice,
            instruction_color=color_name,
            play_feedback=play_feedback,
        )
        logging.data(
            f"trial={descriptor.trial_index} soa={descriptor.soa} "
            f"response={result.response or '-'} rt_ms={result.rt_ms} correct={result.correct}"
        )
        return record

    async def run_trials(
        self, descriptors: Sequence[TrialDescriptor], *, play_feedback: bool = False
    ) -> List[TrialRecord]:
        records = []
        for descriptor in descriptors:
            records.append(await self.run_trial(descriptor, play_feedback=play_feedback))
        return records

    # ------------------------------------------------------------------
    # Stimulus modification
    # ------------------------------------------------------------------
    async def _delayed_flash(self, element: Any, delay_ms: float) -> None:
        await self._sleep(delay_ms / 1000.0)
        await self.renderer.flash(element, self.settings.flash_duration_ms)

    async def _modify(self, probe: Any, reference: Any, soa: float) -> None:
        """Flash the earlier element at 0 ms and the later one at ``|soa|`` ms."""

        duration = self.settings.flash_duration_ms
        if soa == 0:
            await asyncio.gather(
                self.renderer.flash(probe, duration),
                self.renderer.flash(reference, duration),
            )
            return
        first, second = (probe, reference) if soa < 0 else (reference, probe)
        await asyncio.gather(
            self.renderer.flash(first, duration),
            self._delayed_flash(second, abs(soa)),
        )

    async def _run_distractor(self, condition: Condition, stimuli: StimulusSet) -> None:
        pair = condition.distractor_pair
        assert pair is not None and condition.distractor_soa is not None
        await self._sleep(pair.fixation_time_ms / 1000.0)
        await self._modify(
            stimuli.distractor_probe, stimuli.distractor_reference, condition.distractor_soa
        )

    @staticmethod
    async def _stop_distractor(distractor: Optional[asyncio.Future]) -> Optional[BaseException]:
        """Cancel a still-running distractor and return its error, if it raised one."""

        if distractor is None:
            return None
        if not distractor.done():
            distractor.cancel()
        (outcome,) = await asyncio.gather(distractor, return_exceptions=True)
        if isinstance(outcome, Exception):
            return outcome
        return None

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def _score(
        self, descriptor: TrialDescriptor, captured: Optional[CapturedResponse]
    ) -> ResponseResult:
        if captured is None:
            return ResponseResult(
                response_key="",
                response="",
                responded_first=None,
                rt_ms=None,
                correct=False,
                timed_out=True,
            )
        label, responded_first = self.settings.interpret(captured.key, descriptor.probe_left)
        return ResponseResult(
            response_key=captured.key,
            response=label,
            responded_first=responded_first,
            rt_ms=captured.rt_ms,
            correct=score_response(descriptor.soa, responded_first),
            source=captured.source,
        )


__all__ = [
    "AudioPlayer",
    "CapturedResponse",
    "EngineSettings",
    "ExperimentAbort",
    "POLL_INTERVAL_S",
    "PollingSource",
    "Renderer",
    "ResponseRace",
    "ResponseResult",
    "ResponseSource",
    "StimulusSet",
    "TojTimingEngine",
    "TrialRecord",
    "TrialState",
    "score_response",
]
