"""High-level experiment orchestration for the colour TOJ negation task."""
from __future__ import annotations

import asyncio
import random
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from psychopy import core, event, gui, logging, visual
from psychopy.hardware import keyboard

from .blocks import BlockBreak, BlockScheduler
from .colors import COLOR_NAMES
from .conditions import ConditionGenerator
from .config import LANGUAGES, ExperimentConfig
from .engine import (
    EngineSettings,
    ExperimentAbort,
    ResponseSource,
    StimulusSet,
    TojTimingEngine,
    TrialRecord,
)
from .psychopy_io import (
    DoubleTapSource,
    KeyboardSource,
    PsychopyAudioPlayer,
    PsychopyRenderer,
    TapSource,
    half_screen_region,
    run_until_quit,
    show_message,
    watch_quit_keys,
)
from .serial_keypad import SerialKeypadSource
from .session import SessionPlan, plan_session
from .stimuli import AudioCatalog
from .tutorial import TutorialOutcome, TutorialSupervisor
from template import BaseExperiment


if TYPE_CHECKING:
    from psychopy.visual.window import Window
else:  # pragma: no cover - used only for static analysis fallbacks
    Window = Any


THANK_YOU_TEXT: Dict[str, str] = {
    "en": "Thank you for participating.\n\nPress SPACE to finish.",
    "de": "Vielen Dank für Ihre Teilnahme!\n\nDrücken Sie die LEERTASTE zum Beenden.",
}
RETRY_CHOICE_TEXT: Dict[str, str] = {
    "en": "Press SPACE to see the instructions and repeat the tutorial.",
    "de": "Drücken Sie die LEERTASTE, um die Anleitung anzuzeigen und die Übungsrunde zu wiederholen.",
}
CONTINUE_TEXT: Dict[str, str] = {
    "en": "Press SPACE to continue.",
    "de": "Drücken Sie die LEERTASTE, um fortzufahren.",
}


class ColorTojExperiment(BaseExperiment):
    """Run a colour TOJ session on top of the reusable BaseExperiment."""

    def __init__(self, config: ExperimentConfig | None = None):
        self.config = config or ExperimentConfig()
        self.rng = random.Random(self.config.seed)
        self.audio_catalog = AudioCatalog.from_directory(
            self.config.audio_directory, self.config.audio_extension
        )
        self.win: Optional[Window] = None
        self.response_kb: Optional[keyboard.Keyboard] = None
        self.quit_kb: Optional[keyboard.Keyboard] = None
        self.mouse: Optional[event.Mouse] = None
        self.serial_keypad: Optional[SerialKeypadSource] = None
        self._touch_regions: Dict[str, visual.Rect] = {}
        super().__init__(
            experiment_name=self.config.experiment_name,
            data_fields=self.config.data_fields,
            output_directory=Path(self.config.results_directory),
            bg_color=list(self.config.background_color),
        )

    # ------------------------------------------------------------------
    # GUI helpers
    # ------------------------------------------------------------------
    def collect_participant_info(self) -> Dict[str, object]:
        """Display an info dialog to collect the participant code and session."""

        languages = [self.config.language] + [
            language for language in LANGUAGES if language != self.config.language
        ]
        info: Dict[str, Any] = {
            "Participant code": "",
            "First participation": True,
            "Language": languages,
        }
        dialog = gui.DlgFromDict(
            info,
            title="Colour TOJ negation",
            order=["Participant code", "First participation", "Language"],
            screen=-1,
            show=False,
        )
        dialog.show()
        code = str(info["Participant code"]).strip()
        if not dialog.OK or not code:
            logging.warning("Participant dialog cancelled or no participant code given")
            core.quit()
        first = bool(info["First participation"])
        language = str(info["Language"])
        if language != self.config.language:
            self.config = self.config.with_overrides(language=language)
        return {
            "participant": code,
            "is_first_participation": first,
            "session": "1" if first else "2",
            "language": language,
        }

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------
    def create_window(self) -> Window:
        """Create the PsychoPy window and the input devices bound to it."""

        config = self.config
        win = visual.Window(
            size=list(config.window_size),
            fullscr=config.full_screen and not config.debug_mode,
            screen=config.screen_index,
            units=config.window_units,
            color=list(config.background_color),
            allowGUI=config.debug_mode,
            waitBlanking=not config.debug_mode,
        )
        self.win = win
        self.response_kb = keyboard.Keyboard()
        self.quit_kb = keyboard.Keyboard()
        if config.enable_touch:
            self.mouse = event.Mouse(win=win, visible=config.debug_mode)
            self._touch_regions = {
                "left": half_screen_region(win, is_left=True),
                "right": half_screen_region(win, is_left=False),
            }
        self.serial_keypad = SerialKeypadSource.open_or_none(
            config.participant_serial_port,
            config.participant_serial_baud,
            key_map={"1": config.left_key, "2": config.right_key},
        )
        logging.info(f"Window created: size={tuple(win.size)} units={win.units}")
        return win

    def response_sources(self, stimuli: StimulusSet) -> List[ResponseSource]:
        """Return every input channel that takes part in the response race."""

        config = self.config
        assert self.response_kb is not None
        sources: List[ResponseSource] = [
            KeyboardSource(self.response_kb, (config.left_key, config.right_key))
        ]
        if self.mouse is not None:
            if config.double_tap_key:
                # a double tap replaces the side taps, otherwise its first tap would win
                sources.append(DoubleTapSource(self.mouse, config.double_tap_key))
            else:
                sources.append(TapSource(self.mouse, self._touch_regions["left"], config.left_key, "left"))
                sources.append(TapSource(self.mouse, self._touch_regions["right"], config.right_key, "right"))
        if self.serial_keypad is not None:
            sources.append(self.serial_keypad)
        return sources

    def build_engine(self, plan: SessionPlan) -> TojTimingEngine:
        config = self.config
        assert self.win is not None
        renderer = PsychopyRenderer(
            self.win,
            grid_size=config.grid_size,
            dual=config.pair_layout == "dual",
            cell_px=config.cell_px,
            grid_color=config.grid_color,
            flash_color=config.flash_color,
            rng=self.rng,
        )
        generator = ConditionGenerator(
            pair_layout=config.pair_layout,
            color_alpha=config.color_alpha,
            jitter_reference_hue=config.jitter_reference_hue,
            soa_levels_ms=config.soa_levels_ms,
            fixation_range_ms=config.fixation_range_ms,
            rng=self.rng,
        )
        audio = PsychopyAudioPlayer()
        required = self.audio_catalog.verify([config.language], config.voices, COLOR_NAMES.values())
        audio.preload(required)
        return TojTimingEngine(
            EngineSettings.from_config(config, answer_keys_switched=plan.first_key_switched),
            generator,
            renderer,
            audio,
            self.audio_catalog,
            self.response_sources,
            rng=self.rng,
        )

    # ------------------------------------------------------------------
    # Session flow
    # ------------------------------------------------------------------
    async def show(self, text: str) -> str:
        assert self.win is not None and self.response_kb is not None
        return await show_message(
            self.win,
            text,
            kb=self.response_kb,
            continue_keys=self.config.continue_keys,
            quit_keys=self.config.quit_keys,
            mouse=self.mouse,
        )

    def _record_rows(self, records: Sequence[TrialRecord], phase: str, participant: str) -> None:
        self.update_experiment_data(
            {**record.as_row(), "participant": participant, "phase": phase} for record in records
        )

    async def run_tutorial(
        self, engine: TojTimingEngine, plan: SessionPlan, instructions: str
    ) -> TutorialOutcome:
        language = self.config.language
        supervisor = TutorialSupervisor(
            plan.tutorial,
            trial_count=plan.tutorial_trial_count,
            threshold=self.config.tutorial_accuracy_threshold,
            max_attempts=self.config.max_tutorial_attempts,
        )

        async def run_block(trials):
            records = await engine.run_trials(trials, play_feedback=True)
            self._record_rows(records, "tutorial", plan.participant)
            return records

        async def on_retry(outcome: TutorialOutcome) -> None:
            await self.show(f"{outcome.message(language)}\n\n{RETRY_CHOICE_TEXT[language]}")
            await self.show(instructions)

        return await supervisor.run(run_block, on_retry)

    async def run_main(self, engine: TojTimingEngine, plan: SessionPlan) -> List[TrialRecord]:
        language = self.config.language
        records: List[TrialRecord] = []
        for item in BlockScheduler().schedule(plan.main.trials):
            if isinstance(item, BlockBreak):
                await self.show(f"{item.message(language)}\n\n{CONTINUE_TEXT[language]}")
                continue
            record = await engine.run_trial(item)
            records.append(record)
            self._record_rows([record], "main", plan.participant)
        logging.info(
            f"Main part finished: {len(records)} trials, "
            f"{engine.race.bound_total} listeners bound, {engine.race.unbound_total} unbound"
        )
        return records

    async def run_session(self, plan: SessionPlan) -> bool:
        """Run instructions, tutorial and main part; return whether the tutorial was passed."""

        language = self.config.language
        engine = self.build_engine(plan)
        instructions = self.config.instructions_text(
            engine.settings.first_key, engine.settings.second_key
        )
        await self.show(instructions)
        outcome = await self.run_tutorial(engine, plan, instructions)
        self.experiment_info.update(
            tutorial_passed=outcome.passed,
            tutorial_attempts=outcome.attempts,
            tutorial_correct=list(outcome.history),
        )
        if not outcome.passed:
            await self.show(outcome.final_message(language))
            return False
        await self.show(f"{outcome.message(language)}\n\n{CONTINUE_TEXT[language]}")
        await self.run_main(engine, plan)
        await self.show(THANK_YOU_TEXT[language])
        return True

    # ------------------------------------------------------------------
    # Data persistence
    # ------------------------------------------------------------------
    def save_results(self) -> Path:
        """Save CSV results, the participant info JSON and the pickle summary."""

        filename = self.open_csv_data_file()
        self.save_data_to_csv()
        self.save_experiment_info()
        self.save_experiment_pickle()
        logging.info(f"Saved {self.data_lines_written} rows to {filename}")
        return filename

    def _open_log_file(self, participant: str, session: str) -> None:
        self.output_directory.mkdir(parents=True, exist_ok=True)
        log_path = self.output_directory / f"{self.config.experiment_name}_{participant}_{session}.log"
        logging.LogFile(str(log_path), level=logging.INFO, filemode="w")

    # ------------------------------------------------------------------
    # Experiment entry point
    # ------------------------------------------------------------------
    def run(self, participant_info: Optional[Dict[str, object]] = None) -> None:
        """Execute the full experiment pipeline."""

        logging.console.setLevel(logging.WARNING)
        info = participant_info or self.collect_participant_info()
        participant = str(info["participant"])
        first = bool(info.get("is_first_participation", True))
        self._open_log_file(participant, str(info.get("session", "1")))

        plan = plan_session(self.config, participant, is_first_participation=first, rng=self.rng)
        self.experiment_info.update(info)
        self.experiment_info.update(plan.as_dict())

        win = self.create_window()
        aborted = False
        try:
            assert self.quit_kb is not None
            asyncio.run(
                run_until_quit(
                    self.run_session(plan),
                    watch_quit_keys(self.quit_kb, self.config.quit_keys),
                )
            )
        except ExperimentAbort as exc:
            logging.warning(f"Experiment aborted: {exc}")
            aborted = True
        finally:
            win.close()
            if self.serial_keypad is not None:
                self.serial_keypad.close()

        if not aborted:
            self.save_results()

        logging.flush()
        core.quit()


__all__ = ["ColorTojExperiment"]
