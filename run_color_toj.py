"""Entry point script for the colour TOJ negation task.

This small wrapper simply dispatches to :mod:`color_toj.cli`.  The experiment
can be launched via ``python -m color_toj`` *or* by executing this file
directly from the repository root.
"""
from __future__ import annotations

from color_toj.cli import main


if __name__ == "__main__":
    main()
