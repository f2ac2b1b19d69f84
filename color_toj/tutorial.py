"""Tutorial block with an accuracy gate.

The tutorial plays feedback after every trial.  A participant who answers
fewer than ``floor(threshold * n)`` of ``n`` tutorial trials correctly sees the
instructions again and repeats the same trials, up to ``max_attempts`` times
in total.  If the last attempt fails as well the session ends early.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from psychopy import logging

from .config import ConfigurationError
from .engine import TrialRecord
from .sequences import TrialDescriptor

RunBlock = Callable[[Sequence[TrialDescriptor]], Awaitable[Sequence[TrialRecord]]]
OnRetry = Callable[["TutorialOutcome"], Awaitable[None]]


def required_correct(trial_count: int, threshold: float) -> int:
    """Return the number of correct responses needed to pass."""

    return int(math.floor(threshold * trial_count))


@dataclass(frozen=True)
class TutorialOutcome:
    passed: bool
    attempts: int
    correct: int
    trial_count: int
    required: int
    history: Tuple[int, ...] = ()

    def message(self, language: str = "en") -> str:
        """Return the screen text shown after an attempt."""

        if self.passed:
            if language == "de":
                return (
                    f"Sie haben die Übungsrunde mit {self.correct}/{self.trial_count} "
                    "richtigen Antworten abgeschlossen."
                )
            return f"You finished the tutorial with {self.correct}/{self.trial_count} correct responses."
        if language == "de":
            text = (
                f"{self.correct} von {self.trial_count} Antworten waren korrekt. Sie benötigen "
                f"mindestens {self.required} korrekte Antworten um mit dem Experiment fortzufahren."
            )
        else:
            text = (
                f"{self.correct} of {self.trial_count} responses were correct. You need at least "
                f"{self.required} correct responses to go on with the experiment."
            )
        return text

    def final_message(self, language: str = "en") -> str:
        """Return the text shown when no attempts are left."""

        if language == "de":
            return self.message(language) + (
                "\n\nBitte versuchen Sie es zu einem späteren Zeitpunkt nochmal. "
                "Bei Fragen wenden Sie sich bitte an die Versuchsleitung."
            )
        return self.message(language) + (
            "\n\nPlease try again later. If you have questions, "
            "please refer to the study conductor."
        )


class TutorialSupervisor:
    """Run tutorial attempts until the participant passes or runs out of attempts."""

    def __init__(
        self,
        trials: Sequence[TrialDescriptor],
        *,
        trial_count: int,
        threshold: float = 0.7,
        max_attempts: int = 2,
    ) -> None:
        if trial_count < 1:
            raise ConfigurationError("A tutorial needs at least one trial.")
        if len(trials) < trial_count:
            raise ConfigurationError(
                f"There are fewer tutorial trials ({len(trials)}) than requested ({trial_count})."
            )
        if max_attempts < 1:
            raise ConfigurationError("'max_attempts' must be at least 1.")
        self.trials: List[TrialDescriptor] = list(trials[:trial_count])
        self.threshold = threshold
        self.max_attempts = max_attempts

    @property
    def required(self) -> int:
        return required_correct(len(self.trials), self.threshold)

    async def run(self, run_block: RunBlock, on_retry: Optional[OnRetry] = None) -> TutorialOutcome:
        """Run attempts with ``run_block``; ``on_retry`` is awaited between attempts."""

        history: List[int] = []
        outcome: Optional[TutorialOutcome] = None
        for attempt in range(1, self.max_attempts + 1):
            records = await run_block(self.trials)
            correct = sum(1 for record in records if record.result.correct)
            history.append(correct)
            outcome = TutorialOutcome(
                passed=correct >= self.required,
                attempts=attempt,
                correct=correct,
                trial_count=len(self.trials),
                required=self.required,
                history=tuple(history),
            )
            logging.exp(
                f"Tutorial attempt {attempt}: {correct}/{len(self.trials)} correct "
                f"(required {self.required})"
            )
            if outcome.passed:
                break
            if attempt < self.max_attempts and on_retry is not None:
                await on_retry(outcome)
        assert outcome is not None
        return outcome


__all__ = ["TutorialOutcome", "TutorialSupervisor", "required_correct"]
