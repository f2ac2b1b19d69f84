"""Participant-level counterbalancing.

Participants are split into four treatment groups from the MD5 hash of their
participant code, so the assignment is stable across sessions without storing
any state:

* odd groups run the asserted instructions in their first session,
* groups 2 and 3 have the "first"/"second" answer keys swapped.
"""
from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from psychopy import logging

from .config import ExperimentConfig
from .sequences import BalancedSequence, SequenceBalancer, TrialDescriptor

TREATMENT_GROUPS: int = 4


def participant_code_md5(code: str) -> str:
    """Return the hex MD5 digest of a participant code."""

    return hashlib.md5(code.strip().encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class TreatmentGroup:
    number: int
    code_md5: str = ""

    def __post_init__(self) -> None:
        if not 0 <= self.number < TREATMENT_GROUPS:
            raise ValueError(f"Treatment group must lie in [0, {TREATMENT_GROUPS}), got {self.number}")

    @property
    def asserted_first(self) -> bool:
        return self.number % 2 == 1

    @property
    def answer_keys_switched(self) -> bool:
        return self.number // 2 == 1

    def session_is_negated(self, is_first_participation: bool) -> bool:
        """Return the polarity run in this session.

        Assertions are run in the first session of ``asserted_first`` groups
        and in the second session of the others.
        """

        asserted_now = self.asserted_first == is_first_participation
        return not asserted_now

    def as_dict(self) -> Dict[str, object]:
        return {
            "treatment_group": self.number,
            "participant_code_md5": self.code_md5,
            "asserted_first": self.asserted_first,
            "answer_keys_switched": self.answer_keys_switched,
        }


def assign_treatment_group(code: str) -> TreatmentGroup:
    """Derive the treatment group from the last hex digit of the code's MD5 hash."""

    digest = participant_code_md5(code)
    return TreatmentGroup(number=int(digest[-1], 16) % TREATMENT_GROUPS, code_md5=digest)


def response_keys(left_key: str, right_key: str, switched: bool) -> Tuple[str, str]:
    """Return ``(first_key, second_key)`` for the answer-key mapping of a group."""

    if switched:
        return right_key, left_key
    return left_key, right_key


@dataclass(frozen=True)
class SessionPlan:
    """Everything decided before the first trial of a session is shown."""

    participant: str
    group: TreatmentGroup
    is_first_participation: bool
    negated: Optional[bool]
    main: BalancedSequence
    tutorial: Tuple[TrialDescriptor, ...]
    tutorial_trial_count: int

    @property
    def first_key_switched(self) -> bool:
        return self.group.answer_keys_switched

    def as_dict(self) -> Dict[str, object]:
        info: Dict[str, object] = {
            "participant": self.participant,
            "is_first_participation": self.is_first_participation,
            "session_negated": "" if self.negated is None else self.negated,
            "main_trials": len(self.main),
            "main_blocks": self.main.block_count,
            "tutorial_trials": self.tutorial_trial_count,
        }
        info.update(self.group.as_dict())
        return info


def plan_session(
    config: ExperimentConfig,
    participant: str,
    *,
    is_first_participation: bool = True,
    rng: random.Random | None = None,
) -> SessionPlan:
    """Assign the treatment group and build the tutorial and main trial lists."""

    rng = rng or random.Random(config.seed)
    group = assign_treatment_group(participant)
    negated: Optional[bool] = None
    if config.balancing == "session":
        negated = group.session_is_negated(is_first_participation)
    main = SequenceBalancer(
        config.main_factors(negated),
        repetitions=config.repetitions,
        block_size=config.block_size,
        probe_left_is_factor=config.probe_left_is_factor,
        always_stay_under_block_size=config.always_stay_under_block_size,
        rng=rng,
    ).generate()
    tutorial = SequenceBalancer(
        config.tutorial_factors(),
        repetitions=config.tutorial_repetitions,
        block_size=config.block_size,
        rng=rng,
    ).generate()
    tutorial_count = (
        config.tutorial_trials if is_first_participation else config.repeated_tutorial_trials
    )
    logging.info(
        f"Participant {participant}: treatment group {group.number}, "
        f"first participation {is_first_participation}, session negated {negated}"
    )
    return SessionPlan(
        participant=participant,
        group=group,
        is_first_participation=is_first_participation,
        negated=negated,
        main=main,
        tutorial=tuple(tutorial.trials),
        tutorial_trial_count=tutorial_count,
    )


__all__ = [
    "SessionPlan",
    "TREATMENT_GROUPS",
    "TreatmentGroup",
    "assign_treatment_group",
    "participant_code_md5",
    "plan_session",
    "response_keys",
]
