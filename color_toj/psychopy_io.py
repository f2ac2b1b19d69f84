"""PsychoPy implementations of the engine's renderer, audio player and inputs.

All classes here are thin adapters.  Drawing happens in a frame task that
redraws the current stimuli and flips the window once per refresh; input
sources poll their device from their own small task while they are bound.
Both kinds of task are plain asyncio tasks on the experiment's event loop.
"""
from __future__ import annotations

import asyncio
import random
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from psychopy import constants, core, logging, sound, visual
from psychopy.event import Mouse
from psychopy.hardware import keyboard

from .conditions import Condition
from .engine import POLL_INTERVAL_S, ExperimentAbort, PollingSource, StimulusSet
from .layout import CELL_PX, bar_grid, bar_size, content_size, fit_scale

AUDIO_GRACE_S: float = 0.5
DOUBLE_TAP_WINDOW_S: float = 0.3
FIXATION_RADIUS_PX: float = 5.0
TEXT_HEIGHT_PX: int = 28

T = TypeVar("T")


def _ensure_window_focus(win: visual.Window) -> None:
    """Try to bring ``win`` to the foreground so participant input is captured."""

    win_handle = getattr(win, "winHandle", None)
    if win_handle is None:
        return
    try:
        win_handle.activate()
    except Exception as exc:
        logging.debug(f"Could not activate window: {exc}")


# ----------------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------------
class PsychopyRenderer:
    """Draw the bar grids of a condition and flash target bars on request."""

    def __init__(
        self,
        win: visual.Window,
        *,
        grid_size: Sequence[int],
        dual: bool = False,
        cell_px: int = CELL_PX,
        grid_color: Any = "#777777",
        flash_color: Any = "white",
        rng: random.Random | None = None,
    ) -> None:
        self.win = win
        self.grid_size = (int(grid_size[0]), int(grid_size[1]))
        self.cell_px = cell_px
        self.grid_color = grid_color
        self.flash_color = flash_color
        self._rng = rng or random.Random()
        self.scale = fit_scale(content_size(self.grid_size, dual, cell_px), tuple(win.size))
        self._bars: List[visual.Rect] = []
        self._fixation = visual.Circle(
            win,
            radius=FIXATION_RADIUS_PX * self.scale,
            fillColor="white",
            lineColor="white",
            edges=64,
        )
        self._frame_task: Optional[asyncio.Task] = None
        logging.info(f"Renderer scale {self.scale:.3f} for window {tuple(win.size)}")

    def _make_bar(self, position: Sequence[float], scale: float, color: Any, rotation: int) -> visual.Rect:
        width, length = bar_size(scale, self.cell_px)
        return visual.Rect(
            self.win,
            width=width * self.scale,
            height=length * self.scale,
            pos=(position[0] * self.scale, position[1] * self.scale),
            ori=rotation,
            fillColor=color,
            lineColor=color,
        )

    def present(self, condition: Condition) -> StimulusSet:
        handles: Dict[tuple, visual.Rect] = {}
        bars: List[visual.Rect] = []
        for pair in condition.pairs:
            for target in (pair.primary, pair.secondary):
                target_color = target.color.to_psychopy_rgb()
                for bar_spec in bar_grid(target, self.grid_size, self._rng, cell_px=self.cell_px):
                    color = target_color if bar_spec.is_target else self.grid_color
                    bar = self._make_bar(bar_spec.position, bar_spec.scale, color, condition.rotation)
                    bars.append(bar)
                    if bar_spec.is_target:
                        handles[(pair.pair_index, target.is_probe)] = bar
        self._bars = bars
        self._start_frames()
        return StimulusSet(
            probe=handles[(0, True)],
            reference=handles[(0, False)],
            distractor_probe=handles.get((1, True)),
            distractor_reference=handles.get((1, False)),
        )

    async def flash(self, element: visual.Rect, duration_ms: float) -> None:
        fill, line = element.fillColor, element.lineColor
        element.fillColor = self.flash_color
        element.lineColor = self.flash_color
        logging.exp(f"Flash on at {core.getTime():.4f}")
        try:
            await asyncio.sleep(duration_ms / 1000.0)
        finally:
            element.fillColor = fill
            element.lineColor = line

    def release(self, stimuli: StimulusSet) -> None:
        if self._frame_task is not None:
            self._frame_task.cancel()
            self._frame_task = None
        self._bars = []
        self.win.flip()

    def draw(self) -> None:
        for bar in self._bars:
            bar.draw()
        self._fixation.draw()

    def _start_frames(self) -> None:
        if self._frame_task is None or self._frame_task.done():
            self._frame_task = asyncio.ensure_future(self._frames())

    async def _frames(self) -> None:
        while True:
            self.draw()
            self.win.flip()
            await asyncio.sleep(0)


# ----------------------------------------------------------------------
# Audio
# ----------------------------------------------------------------------
class PsychopyAudioPlayer:
    """Play audio cues one at a time and resume once playback has finished."""

    def __init__(self) -> None:
        self._cache: Dict[Path, sound.Sound] = {}

    def _load(self, path: Path) -> sound.Sound:
        path = Path(path)
        if path not in self._cache:
            self._cache[path] = sound.Sound(str(path))
        return self._cache[path]

    def preload(self, paths: Iterable[Path]) -> None:
        for path in paths:
            self._load(path)

    async def play(self, path: Path) -> None:
        cue = self._load(path)
        duration = float(cue.getDuration())
        clock = core.Clock()
        cue.play()
        await asyncio.sleep(duration)
        while cue.status == constants.STARTED and clock.getTime() < duration + AUDIO_GRACE_S:
            await asyncio.sleep(0.01)
        cue.stop()


# ----------------------------------------------------------------------
# Response sources
# ----------------------------------------------------------------------
class KeyboardSource(PollingSource):
    """Report presses of ``keys`` on a PsychoPy keyboard."""

    name = "keyboard"

    def __init__(self, kb: keyboard.Keyboard, keys: Sequence[str], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.kb = kb
        self.keys = list(keys)

    def reset(self) -> None:
        self.kb.clearEvents()

    def poll(self) -> Optional[str]:
        for key in self.kb.getKeys(self.keys, waitRelease=False):
            return key.name
        return None


class TapSource(PollingSource):
    """Treat a touch (mouse press) inside ``region`` as a press of ``key``."""

    def __init__(self, mouse: Mouse, region: visual.BaseShapeStim, key: str, side: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.mouse = mouse
        self.region = region
        self.key = key
        self.name = f"tap_{side}"
        self._was_pressed = False

    def reset(self) -> None:
        self._was_pressed = bool(self.mouse.getPressed()[0])

    def poll(self) -> Optional[str]:
        pressed = bool(self.mouse.isPressedIn(self.region, buttons=[0]))
        fired = pressed and not self._was_pressed
        self._was_pressed = pressed
        return self.key if fired else None


class DoubleTapSource(PollingSource):
    """Treat two touches within :data:`DOUBLE_TAP_WINDOW_S` as a press of ``key``."""

    name = "double_tap"

    def __init__(
        self,
        mouse: Mouse,
        key: str,
        window_s: float = DOUBLE_TAP_WINDOW_S,
        *,
        clock: Callable[[], float] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.mouse = mouse
        self.key = key
        self.window_s = window_s
        self._clock = clock or core.Clock().getTime
        self._was_pressed = False
        self._last_tap: Optional[float] = None

    def reset(self) -> None:
        self._was_pressed = bool(self.mouse.getPressed()[0])
        self._last_tap = None

    def poll(self) -> Optional[str]:
        pressed = bool(self.mouse.getPressed()[0])
        onset = pressed and not self._was_pressed
        self._was_pressed = pressed
        if not onset:
            return None
        now = self._clock()
        if self._last_tap is not None and now - self._last_tap <= self.window_s:
            self._last_tap = None
            return self.key
        self._last_tap = now
        return None


def half_screen_region(win: visual.Window, is_left: bool) -> visual.Rect:
    """Return an invisible rectangle covering the left or right half of ``win``."""

    width, height = win.size
    return visual.Rect(
        win,
        width=width / 2.0,
        height=height,
        pos=((-1 if is_left else 1) * width / 4.0, 0),
        units="pix",
        fillColor=None,
        lineColor=None,
    )


# ----------------------------------------------------------------------
# Quit handling and message screens
# ----------------------------------------------------------------------
async def watch_quit_keys(kb: keyboard.Keyboard, quit_keys: Sequence[str]) -> None:
    """Raise :class:`ExperimentAbort` as soon as a quit key is pressed."""

    quit_list = list(quit_keys)
    while True:
        for key in kb.getKeys(quit_list, waitRelease=False):
            if key.name in quit_list:
                raise ExperimentAbort(f"Quit key '{key.name}' pressed")
        await asyncio.sleep(POLL_INTERVAL_S * 5)


async def run_until_quit(work: Awaitable[T], watcher: Awaitable[None]) -> T:
    """Run ``work`` while ``watcher`` guards it; an abort from the watcher cancels the work."""

    work_task = asyncio.ensure_future(work)
    watch_task = asyncio.ensure_future(watcher)
    try:
        done, _ = await asyncio.wait({work_task, watch_task}, return_when=asyncio.FIRST_COMPLETED)
        if watch_task in done:
            work_task.cancel()
            await asyncio.gather(work_task, return_exceptions=True)
            watch_task.result()
            raise ExperimentAbort("Quit watcher stopped unexpectedly")
        return work_task.result()
    finally:
        for task in (work_task, watch_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(work_task, watch_task, return_exceptions=True)


async def show_message(
    win: visual.Window,
    text: str,
    *,
    kb: keyboard.Keyboard,
    continue_keys: Sequence[str],
    quit_keys: Sequence[str] = ("escape",),
    mouse: Optional[Mouse] = None,
) -> str:
    """Show ``text`` until a continue key (or a touch) is given; return what ended it."""

    wrap = win.size[0] * 0.8 if win.units == "pix" else None
    stim = visual.TextStim(
        win,
        text=text,
        color="white",
        height=TEXT_HEIGHT_PX if win.units == "pix" else 0.06,
        wrapWidth=wrap,
    )
    _ensure_window_focus(win)
    kb.clearEvents()
    accepted = list(continue_keys)
    quit_list = list(quit_keys)
    was_pressed = bool(mouse.getPressed()[0]) if mouse is not None else False
    while True:
        stim.draw()
        win.flip()
        for key in kb.getKeys(accepted + quit_list, waitRelease=False):
            if key.name in quit_list:
                raise ExperimentAbort(f"Quit key '{key.name}' pressed")
            return key.name
        if mouse is not None:
            pressed = bool(mouse.getPressed()[0])
            if pressed and not was_pressed:
                return "touch"
            was_pressed = pressed
        await asyncio.sleep(0)


__all__ = [
    "DoubleTapSource",
    "KeyboardSource",
    "PsychopyAudioPlayer",
    "PsychopyRenderer",
    "TapSource",
    "half_screen_region",
    "run_until_quit",
    "show_message",
    "watch_quit_keys",
]
