"""Utility package for the colour TOJ negation experiment.

This package exposes the pieces of a colour temporal-order-judgement session:
colours and stimulus conditions, counterbalanced trial sequences, block
scheduling, the trial timing engine and the PsychoPy front end.  The PsychoPy
window code lives in :mod:`color_toj.experiment` and is imported on demand so
that the design and sequencing helpers can be used without opening a window.
"""

from .blocks import BlockBreak, BlockScheduler
from .colors import HueColor, random_primary_color
from .conditions import Condition, ConditionGenerator, Quadrant, Target, TargetPair
from .config import ConfigurationError, ExperimentConfig
from .engine import (
    EngineSettings,
    ExperimentAbort,
    ResponseRace,
    TojTimingEngine,
    TrialRecord,
    TrialState,
    score_response,
)
from .sequences import (
    BalancedSequence,
    BalancingError,
    SequenceBalancer,
    TrialDescriptor,
    audit_sequence,
)
from .session import TreatmentGroup, assign_treatment_group, plan_session
from .stimuli import AudioCatalog
from .tutorial import TutorialOutcome, TutorialSupervisor
from .cli import main as run_experiment

__all__ = [
    "AudioCatalog",
    "BalancedSequence",
    "BalancingError",
    "BlockBreak",
    "BlockScheduler",
    "Condition",
    "ConditionGenerator",
    "ConfigurationError",
    "EngineSettings",
    "ExperimentAbort",
    "ExperimentConfig",
    "HueColor",
    "Quadrant",
    "ResponseRace",
    "SequenceBalancer",
    "Target",
    "TargetPair",
    "TojTimingEngine",
    "TreatmentGroup",
    "TrialDescriptor",
    "TrialRecord",
    "TrialState",
    "TutorialOutcome",
    "TutorialSupervisor",
    "assign_treatment_group",
    "audit_sequence",
    "plan_session",
    "random_primary_color",
    "run_experiment",
    "score_response",
]
