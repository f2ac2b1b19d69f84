"""Split a trial list into display blocks separated by pause screens."""
from __future__ import annotations

import itertools
import math
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple, Union

from psychopy import logging

from .sequences import TrialDescriptor


@dataclass(frozen=True)
class BlockBreak:
    """Screen shown after a block; the last one closes the main part."""

    block_number: int
    block_count: int

    @property
    def is_final(self) -> bool:
        return self.block_number >= self.block_count

    def message(self, language: str = "en") -> str:
        if language == "de":
            if self.is_final:
                return "Dieser Teil des Experiments ist beendet."
            return f"Pause\n\nSie haben Block {self.block_number} von {self.block_count} beendet."
        if self.is_final:
            return "This part of the experiment is finished."
        return f"Pause\n\nYou finished block {self.block_number} of {self.block_count}."

    def choices(self, language: str = "en") -> Tuple[str, ...]:
        return ("Weiter",) if language == "de" else ("Continue",)


ScheduleItem = Union[TrialDescriptor, BlockBreak]


class BlockScheduler:
    """Compute block boundaries and the trial/pause-screen order.

    With ``block_size`` set the list is cut into consecutive chunks of that
    size (the last one may be shorter).  Without it, the ``block_index``
    already stamped on each descriptor decides the boundaries, which keeps
    runs of the run-length balancer intact.
    """

    def __init__(self, block_size: Optional[int] = None) -> None:
        if block_size is not None and block_size < 1:
            raise ValueError("Block size must be at least 1")
        self.block_size = block_size

    def partition(self, trials: Sequence[TrialDescriptor]) -> List[List[TrialDescriptor]]:
        if self.block_size is not None:
            return [
                list(trials[start : start + self.block_size])
                for start in range(0, len(trials), self.block_size)
            ]
        blocks: List[List[TrialDescriptor]] = []
        previous_index: Optional[int] = None
        for block_index, group in itertools.groupby(trials, key=lambda trial: trial.block_index):
            if previous_index is not None and block_index < previous_index:
                raise ValueError(
                    f"Block indices must not decrease (block {block_index} after {previous_index})"
                )
            blocks.append(list(group))
            previous_index = block_index
        return blocks

    def block_count(self, trials: Sequence[TrialDescriptor]) -> int:
        if self.block_size is not None:
            return math.ceil(len(trials) / self.block_size)
        return len(self.partition(trials))

    def schedule(self, trials: Sequence[TrialDescriptor]) -> Iterator[ScheduleItem]:
        """Yield the trials of each block followed by its pause (or final) screen."""

        blocks = self.partition(trials)
        for number, block in enumerate(blocks, start=1):
            yield from block
            logging.exp(f"Block {number}/{len(blocks)} finished after {len(block)} trials")
            yield BlockBreak(block_number=number, block_count=len(blocks))


__all__ = ["BlockBreak", "BlockScheduler", "ScheduleItem"]
