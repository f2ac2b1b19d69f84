"""Session bookkeeping shared by the experiment front ends.

:class:`BaseExperiment` collects the participant information and the trial
rows of one session and writes them next to each other in the results
directory::

    <results>/<experiment>_<participant>_<session>_info.json
    <results>/<experiment>_<participant>_<session>.csv
    <results>/<experiment>_<participant>_<session>.pickle

Rows are kept in memory and appended to the CSV incrementally, so calling
:meth:`BaseExperiment.save_data_to_csv` after every block never duplicates a
trial.
"""
from __future__ import annotations

import csv
import json
import pickle
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Sequence


def convert_color_value(rgb_values: Iterable[float]) -> List[float]:
    """Map 8-bit RGB channels onto PsychoPy's ``-1..1`` range."""

    return [round(value / 127.5 - 1.0, 3) for value in rgb_values]


@dataclass
class BaseExperiment:
    """Participant info plus an append-only trial table for one session."""

    experiment_name: str
    data_fields: Sequence[str]
    output_directory: Path = field(default_factory=lambda: Path("data"))
    bg_color: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])

    def __post_init__(self) -> None:
        self.output_directory = Path(self.output_directory)
        self.data_fields = list(self.data_fields)
        self.experiment_info: Dict[str, object] = {}
        self.experiment_data: List[Dict[str, object]] = []
        self.experiment_data_filename: Path | None = None
        self.data_lines_written: int = 0

    # ------------------------------------------------------------------
    # Output locations
    # ------------------------------------------------------------------
    @property
    def session_stem(self) -> str:
        participant = str(self.experiment_info.get("participant") or "anonymous")
        session = str(self.experiment_info.get("session", "1"))
        return f"{self.experiment_name}_{participant}_{session}"

    def _default_filename(self, suffix: str) -> Path:
        self.output_directory.mkdir(parents=True, exist_ok=True)
        return self.output_directory / f"{self.session_stem}{suffix}"

    # ------------------------------------------------------------------
    # Trial table
    # ------------------------------------------------------------------
    @property
    def pending_rows(self) -> List[Dict[str, object]]:
        """Rows recorded but not yet appended to the CSV file."""

        return self.experiment_data[self.data_lines_written :]

    def open_csv_data_file(self, data_filename: Path | None = None) -> Path:
        """Create (or truncate) the CSV file and write the header row."""

        path = Path(data_filename) if data_filename else self._default_filename(".csv")
        with path.open("w", newline="", encoding="utf-8") as handle:
            csv.writer(handle).writerow(self.data_fields)
        self.experiment_data_filename = path
        self.data_lines_written = 0
        return path

    def update_experiment_data(self, rows: Iterable[Dict[str, object]]) -> None:
        self.experiment_data.extend(rows)

    def save_data_to_csv(self) -> None:
        """Append the pending rows; columns outside ``data_fields`` are dropped."""

        if self.experiment_data_filename is None:
            self.open_csv_data_file()
        assert self.experiment_data_filename is not None
        rows = self.pending_rows
        if not rows:
            return
        with self.experiment_data_filename.open("a", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=self.data_fields, restval="", extrasaction="ignore")
            writer.writerows(rows)
        self.data_lines_written += len(rows)

    # ------------------------------------------------------------------
    # Session summaries
    # ------------------------------------------------------------------
    def save_experiment_info(self, filename: Path | None = None) -> Path:
        """Write the participant and session information as JSON."""

        path = Path(filename) if filename else self._default_filename("_info.json")
        path.write_text(json.dumps(self.experiment_info, indent=2, default=str), encoding="utf-8")
        return path

    def summary(self) -> Dict[str, object]:
        return {
            "experiment_name": self.experiment_name,
            "data_fields": self.data_fields,
            "bg_color": self.bg_color,
            "experiment_info": self.experiment_info,
            "experiment_data": self.experiment_data,
            "experiment_data_filename": str(self.experiment_data_filename or ""),
            "data_lines_written": self.data_lines_written,
        }

    def save_experiment_pickle(self) -> Path:
        """Pickle :meth:`summary` for quick inspection in an interpreter."""

        path = self._default_filename(".pickle")
        with path.open("wb") as handle:
            pickle.dump(self.summary(), handle)
        return path


__all__ = ["BaseExperiment", "convert_color_value"]
