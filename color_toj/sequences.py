"""Trial sequences for the colour TOJ task.

Two balancing strategies are offered by :class:`SequenceBalancer`:

* **factorial**: the full cross product of the factor levels, repeated and
  shuffled, then cut into blocks of ``block_size`` trials.
* **run-length**: used when a ``sequence_length`` factor is present.  Trials
  are grouped into *runs* of consecutive trials that share one instruction
  polarity.  Every requested run length occurs equally often for both
  polarities, runs alternate polarity, and a run is never split across two
  blocks.  Inside a run each trial carries its ``rank`` (position in the run);
  the SOAs are balanced per polarity, run length and rank.

Both strategies return a :class:`BalancedSequence` of immutable
:class:`TrialDescriptor` objects stamped with block and trial indices.
"""
from __future__ import annotations

import itertools
import random
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from psychopy import logging

from .config import ConfigurationError

POLARITY = "is_instruction_negated"
PROBE_LEFT = "probe_left"
SOA = "soa"
SEQUENCE_LENGTH = "sequence_length"

KNOWN_FACTORS: Tuple[str, ...] = (POLARITY, PROBE_LEFT, SOA, SEQUENCE_LENGTH)
REQUIRED_FACTORS: Tuple[str, ...] = (POLARITY, SOA)


class BalancingError(ValueError):
    """Raised when run lengths, repetitions and block size cannot be reconciled."""


@dataclass(frozen=True)
class TrialDescriptor:
    """Abstract description of one trial, produced once per session."""

    is_instruction_negated: bool
    probe_left: bool
    soa: float
    sequence_length: Optional[int] = None
    rank: Optional[int] = None
    trial_index: int = 0
    block_index: int = 0
    trial_index_in_block: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BalancedSequence:
    """Ordered trial list plus the block bookkeeping of the balancer."""

    trials: Tuple[TrialDescriptor, ...]
    block_size: int
    block_sizes: Tuple[int, ...]
    final_block_short: bool
    overflow_trials: int = 0

    @property
    def block_count(self) -> int:
        return len(self.block_sizes)

    def __len__(self) -> int:
        return len(self.trials)

    def __iter__(self) -> Iterator[TrialDescriptor]:
        return iter(self.trials)


def expand_factorial(
    factors: Mapping[str, Sequence[Any]], repetitions: int = 1
) -> List[Dict[str, Any]]:
    """Return the cross product of ``factors`` repeated ``repetitions`` times.

    Each entry is a ``{factor: level}`` dictionary.  The order is the
    deterministic product order; callers shuffle as needed.
    """

    names = list(factors)
    combinations = [
        dict(zip(names, levels)) for levels in itertools.product(*(factors[name] for name in names))
    ]
    return [dict(combination) for _ in range(repetitions) for combination in combinations]


def _validate_factors(factors: Mapping[str, Sequence[Any]]) -> Dict[str, Tuple[Any, ...]]:
    unknown = sorted(set(factors) - set(KNOWN_FACTORS))
    if unknown:
        raise ConfigurationError(f"Unknown factors: {', '.join(unknown)}")
    missing = [name for name in REQUIRED_FACTORS if name not in factors]
    if missing:
        raise ConfigurationError(f"Missing required factors: {', '.join(missing)}")
    validated: Dict[str, Tuple[Any, ...]] = {}
    for name, levels in factors.items():
        levels = tuple(levels)
        if not levels:
            raise ConfigurationError(f"Factor '{name}' has no levels.")
        if len(set(levels)) != len(levels):
            raise ConfigurationError(f"Factor '{name}' lists a level more than once.")
        validated[name] = levels
    lengths = validated.get(SEQUENCE_LENGTH, ())
    if any(not isinstance(length, int) or length < 1 for length in lengths):
        raise ConfigurationError("Sequence lengths must be positive integers.")
    return validated


class SequenceBalancer:
    """Expand a factorial design into a counterbalanced, blocked trial list.

    Parameters
    ----------
    factors:
        Mapping from factor name to its levels.  ``is_instruction_negated`` and
        ``soa`` are required; ``probe_left`` and ``sequence_length`` are
        optional.  The presence of ``sequence_length`` selects run-length mode.
    repetitions:
        How often every factor combination is repeated.
    block_size:
        Upper bound on the number of trials between two pause screens.
    probe_left_is_factor:
        If ``probe_left`` is not listed in ``factors``, cross the design with
        ``probe_left in {True, False}`` (doubling it) when ``True``; otherwise
        sample the side independently for each trial.
    always_stay_under_block_size:
        Run-length mode only.  When ``True`` a run that would overflow the
        current block starts a new block.  When ``False`` blocks close at the
        first run boundary at or past ``block_size`` and the surplus trials are
        reported as ``overflow_trials``.
    """

    def __init__(
        self,
        factors: Mapping[str, Sequence[Any]],
        *,
        repetitions: int = 1,
        block_size: int = 40,
        probe_left_is_factor: bool = True,
        always_stay_under_block_size: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self.factors = _validate_factors(factors)
        if repetitions < 1:
            raise ConfigurationError("Repetitions must be at least 1.")
        if block_size < 1:
            raise ConfigurationError("Block size must be at least 1.")
        self.repetitions = repetitions
        self.block_size = block_size
        self.probe_left_is_factor = probe_left_is_factor
        self.always_stay_under_block_size = always_stay_under_block_size
        self.rng = rng or random.Random()
        if self.run_length_mode:
            self._check_run_length_feasibility()

    @property
    def run_length_mode(self) -> bool:
        return SEQUENCE_LENGTH in self.factors

    def _probe_left_levels(self) -> Optional[Tuple[bool, ...]]:
        if PROBE_LEFT in self.factors:
            return self.factors[PROBE_LEFT]
        if self.probe_left_is_factor:
            return (True, False)
        return None

    def _check_run_length_feasibility(self) -> None:
        polarities = self.factors[POLARITY]
        if len(polarities) != 2:
            raise BalancingError(
                "Run-length balancing alternates two polarities; "
                f"got levels {polarities}."
            )
        longest = max(self.factors[SEQUENCE_LENGTH])
        if self.always_stay_under_block_size and longest > self.block_size:
            raise BalancingError(
                f"A run of {longest} trials cannot fit into blocks of {self.block_size} trials."
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def generate(self) -> BalancedSequence:
        """Build a new, freshly shuffled trial sequence."""

        if self.run_length_mode:
            sequence = self._generate_runs()
        else:
            sequence = self._generate_factorial()
        logging.info(
            f"Generated {len(sequence)} trials in {sequence.block_count} blocks "
            f"(final block short: {sequence.final_block_short}, "
            f"overflow trials: {sequence.overflow_trials})"
        )
        return sequence

    def expected_trial_count(self) -> int:
        cells = 1
        for name, levels in self.factors.items():
            if name == SEQUENCE_LENGTH:
                continue
            cells *= len(levels)
        if PROBE_LEFT not in self.factors and self._probe_left_levels() is not None:
            cells *= 2
        if self.run_length_mode:
            return cells * sum(self.factors[SEQUENCE_LENGTH]) * self.repetitions
        return cells * self.repetitions

    # ------------------------------------------------------------------
    # Factorial mode
    # ------------------------------------------------------------------
    def _generate_factorial(self) -> BalancedSequence:
        design: Dict[str, Sequence[Any]] = dict(self.factors)
        probe_levels = self._probe_left_levels()
        if probe_levels is not None:
            design[PROBE_LEFT] = probe_levels
        cells = expand_factorial(design, self.repetitions)
        self.rng.shuffle(cells)

        trials = []
        for position, cell in enumerate(cells):
            block_index, index_in_block = divmod(position, self.block_size)
            trials.append(
                TrialDescriptor(
                    is_instruction_negated=cell[POLARITY],
                    probe_left=self._resolve_probe_left(cell.get(PROBE_LEFT)),
                    soa=cell[SOA],
                    trial_index=position,
                    block_index=block_index,
                    trial_index_in_block=index_in_block,
                )
            )
        full_blocks, remainder = divmod(len(trials), self.block_size)
        block_sizes = (self.block_size,) * full_blocks + ((remainder,) if remainder else ())
        return BalancedSequence(
            trials=tuple(trials),
            block_size=self.block_size,
            block_sizes=block_sizes,
            final_block_short=remainder != 0,
        )

    def _resolve_probe_left(self, level: Optional[bool]) -> bool:
        if level is None:
            return self.rng.choice((True, False))
        return level

    # ------------------------------------------------------------------
    # Run-length mode
    # ------------------------------------------------------------------
    def _build_runs(self, polarity: bool) -> List[List[Dict[str, Any]]]:
        """Return all runs of one polarity, balanced per (length, rank)."""

        probe_levels = self._probe_left_levels() or (None,)
        cells = [
            cell
            for _ in range(self.repetitions)
            for cell in itertools.product(self.factors[SOA], probe_levels)
        ]
        runs: List[List[Dict[str, Any]]] = []
        for length in self.factors[SEQUENCE_LENGTH]:
            # one shuffled copy of every cell per rank; run i takes entry i of each
            columns = [self.rng.sample(cells, len(cells)) for _ in range(length)]
            for run_index in range(len(cells)):
                runs.append(
                    [
                        {
                            POLARITY: polarity,
                            SOA: columns[rank][run_index][0],
                            PROBE_LEFT: columns[rank][run_index][1],
                            SEQUENCE_LENGTH: length,
                            "rank": rank,
                        }
                        for rank in range(length)
                    ]
                )
        self.rng.shuffle(runs)
        return runs

    def _interleave_runs(self) -> List[List[Dict[str, Any]]]:
        first, second = self.rng.sample(list(self.factors[POLARITY]), 2)
        first_runs = self._build_runs(first)
        second_runs = self._build_runs(second)
        return [run for pair in zip(first_runs, second_runs) for run in pair]

    def _generate_runs(self) -> BalancedSequence:
        runs = self._interleave_runs()
        trials: List[TrialDescriptor] = []
        block_sizes: List[int] = []
        current_size = 0
        overflow = 0
        for run in runs:
            if current_size > 0:
                if self.always_stay_under_block_size:
                    start_new = current_size + len(run) > self.block_size
                else:
                    start_new = current_size >= self.block_size
                if start_new:
                    block_sizes.append(current_size)
                    current_size = 0
            if current_size + len(run) > self.block_size:
                overflow += current_size + len(run) - max(current_size, self.block_size)
            block_index = len(block_sizes)
            for cell in run:
                trials.append(
                    TrialDescriptor(
                        is_instruction_negated=cell[POLARITY],
                        probe_left=self._resolve_probe_left(cell[PROBE_LEFT]),
                        soa=cell[SOA],
                        sequence_length=cell[SEQUENCE_LENGTH],
                        rank=cell["rank"],
                        trial_index=len(trials),
                        block_index=block_index,
                        trial_index_in_block=current_size,
                    )
                )
                current_size += 1
        if current_size:
            block_sizes.append(current_size)
        return BalancedSequence(
            trials=tuple(trials),
            block_size=self.block_size,
            block_sizes=tuple(block_sizes),
            final_block_short=bool(block_sizes) and block_sizes[-1] < self.block_size,
            overflow_trials=overflow,
        )


# ----------------------------------------------------------------------
# Auditing
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class SequenceAudit:
    """Summary statistics used to check a generated sequence by eye or in tests."""

    run_lengths: Tuple[Tuple[bool, int], ...]
    run_counts: Dict[Tuple[bool, int], int]
    block_sizes: Tuple[int, ...]
    rank_soa_counts: Dict[Tuple[bool, Optional[int], Optional[int], float], int] = field(
        default_factory=dict
    )

    def describe(self, trials: Sequence[TrialDescriptor]) -> List[str]:
        """Return one line per block listing its runs, e.g. ``"2N 1A 5N"``."""

        lines: List[str] = []
        for block_index, block_runs in itertools.groupby(
            _runs_with_blocks(trials), key=lambda item: item[0]
        ):
            tokens = [
                f"{length}{'N' if negated else 'A'}" for _, negated, length in block_runs
            ]
            lines.append(f"block {block_index}: {' '.join(tokens)}")
        return lines


def segment_runs(trials: Iterable[TrialDescriptor]) -> List[Tuple[bool, int]]:
    """Split ``trials`` at every polarity change; return ``(negated, length)`` pairs."""

    runs: List[Tuple[bool, int]] = []
    for negated, group in itertools.groupby(trials, key=lambda trial: trial.is_instruction_negated):
        runs.append((negated, sum(1 for _ in group)))
    return runs


def _runs_with_blocks(trials: Sequence[TrialDescriptor]) -> List[Tuple[int, bool, int]]:
    runs: List[Tuple[int, bool, int]] = []
    for (block_index, negated), group in itertools.groupby(
        trials, key=lambda trial: (trial.block_index, trial.is_instruction_negated)
    ):
        runs.append((block_index, negated, sum(1 for _ in group)))
    return runs


def audit_sequence(trials: Sequence[TrialDescriptor]) -> SequenceAudit:
    """Count realised runs, block sizes and SOAs per polarity/length/rank."""

    run_lengths = tuple(segment_runs(trials))
    block_sizes = Counter(trial.block_index for trial in trials)
    rank_soa = Counter(
        (trial.is_instruction_negated, trial.sequence_length, trial.rank, trial.soa)
        for trial in trials
    )
    return SequenceAudit(
        run_lengths=run_lengths,
        run_counts=dict(Counter(run_lengths)),
        block_sizes=tuple(block_sizes[index] for index in sorted(block_sizes)),
        rank_soa_counts=dict(rank_soa),
    )


__all__ = [
    "BalancedSequence",
    "BalancingError",
    "SequenceAudit",
    "SequenceBalancer",
    "TrialDescriptor",
    "audit_sequence",
    "expand_factorial",
    "segment_runs",
    "POLARITY",
    "PROBE_LEFT",
    "SOA",
    "SEQUENCE_LENGTH",
]
