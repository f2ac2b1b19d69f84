from __future__ import annotations

from pathlib import Path

import pytest

from color_toj.colors import COLOR_NAMES
from color_toj.stimuli import AudioCatalog


def test_cue_paths(tmp_path):
    catalog = AudioCatalog.from_directory(tmp_path, ".wav")

    assert catalog.polarity_cue("de", "f", True) == tmp_path / "color-toj-negation/de/f/not.wav"
    assert catalog.color_cue("en", "m", "red") == tmp_path / "color-toj-negation/en/m/red.wav"
    assert catalog.feedback_cue(True) == tmp_path / "feedback/right.wav"


def test_verify_lists_missing_files(tmp_path):
    catalog = AudioCatalog.from_directory(tmp_path)
    required = catalog.required_files(["en"], ["m", "f"], COLOR_NAMES.values())
    assert len(required) == 2 * (2 + 4) + 2
    for path in required:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()

    assert catalog.verify(["en"], ["m", "f"], COLOR_NAMES.values()) == required

    missing = catalog.color_cue("en", "f", "blue")
    missing.unlink()
    with pytest.raises(FileNotFoundError) as excinfo:
        catalog.verify(["en"], ["m", "f"], COLOR_NAMES.values())
    assert str(missing) in str(excinfo.value)


def test_verify_without_directory():
    catalog = AudioCatalog.from_directory(Path("no/such/audio/folder"))

    with pytest.raises(FileNotFoundError):
        catalog.verify(["en"], ["m"], ["red"])
