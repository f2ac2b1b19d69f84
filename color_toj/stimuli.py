"""Audio asset helpers for the colour TOJ task.

Spoken instructions are stored as one file per cue word::

    <audio_directory>/color-toj-negation/<language>/<voice>/<cue>.<ext>

where ``<cue>`` is ``now``/``not`` for the polarity cue or a colour name such
as ``red``.  Feedback sounds live in ``<audio_directory>/feedback/right.<ext>``
and ``wrong.<ext>``.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

INSTRUCTION_FOLDER = "color-toj-negation"
FEEDBACK_FOLDER = "feedback"
POLARITY_CUES = ("now", "not")
FEEDBACK_CUES = ("right", "wrong")


def polarity_token(negated: bool) -> str:
    return "not" if negated else "now"


@dataclass(frozen=True)
class AudioCatalog:
    """Resolve cue names to audio files below ``directory``."""

    directory: Path
    extension: str = "wav"

    @classmethod
    def from_directory(cls, directory: str | os.PathLike[str], extension: str = "wav") -> "AudioCatalog":
        return cls(directory=Path(directory), extension=extension.lstrip("."))

    def cue_path(self, language: str, voice: str, token: str) -> Path:
        return self.directory / INSTRUCTION_FOLDER / language / voice / f"{token}.{self.extension}"

    def polarity_cue(self, language: str, voice: str, negated: bool) -> Path:
        return self.cue_path(language, voice, polarity_token(negated))

    def color_cue(self, language: str, voice: str, color_name: str) -> Path:
        return self.cue_path(language, voice, color_name)

    def feedback_cue(self, correct: bool) -> Path:
        token = "right" if correct else "wrong"
        return self.directory / FEEDBACK_FOLDER / f"{token}.{self.extension}"

    def required_files(
        self,
        languages: Iterable[str],
        voices: Iterable[str],
        color_names: Iterable[str],
        *,
        with_feedback: bool = True,
    ) -> List[Path]:
        tokens = list(POLARITY_CUES) + list(color_names)
        voices = list(voices)
        paths = [
            self.cue_path(language, voice, token)
            for language in languages
            for voice in voices
            for token in tokens
        ]
        if with_feedback:
            paths.extend(self.feedback_cue(correct) for correct in (True, False))
        return paths

    def verify(
        self,
        languages: Iterable[str],
        voices: Iterable[str],
        color_names: Iterable[str],
        *,
        with_feedback: bool = True,
    ) -> List[Path]:
        """Return every required cue file, raising if any of them is missing."""

        if not self.directory.exists():
            raise FileNotFoundError(
                f"Audio directory '{self.directory}' does not exist. Please create it "
                "and add the instruction and feedback recordings before running the experiment."
            )
        paths = self.required_files(languages, voices, color_names, with_feedback=with_feedback)
        missing = [path for path in paths if not path.exists()]
        if missing:
            listing = "\n".join(f"  {path}" for path in missing)
            raise FileNotFoundError(f"Missing {len(missing)} audio file(s):\n{listing}")
        return paths


__all__ = ["AudioCatalog", "polarity_token", "POLARITY_CUES", "FEEDBACK_CUES"]
