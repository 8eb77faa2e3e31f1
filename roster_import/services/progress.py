from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display for chunk dispatch with tqdm (TTY only).

A ProgressTracker is a valid progress sink for BatchDispatcher: calling it
with a percentage (0..100) advances the bar. In non-TTY environments (CI)
nothing is drawn so logs stay free of control sequences.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled.

    Returns:
        True if stdout is a TTY and progress should be displayed, False otherwise
    """
    return sys.stdout.isatty()


class ProgressTracker:
    """Percent-based progress bar fed by the dispatcher's progress sink."""

    def __init__(self, *, description: str = "Importing", enabled: bool | None = None) -> None:
        self.description = description
        self.percent = 0
        self.history: list[int] = []

        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=100,
                desc=description,
                unit="%",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def __call__(self, percent: int) -> None:
        """Advance to ``percent``; values never move the bar backwards."""
        percent = max(0, min(100, int(percent)))
        self.history.append(percent)
        if percent <= self.percent:
            return
        if self.pbar is not None:
            self.pbar.update(percent - self.percent)
        self.percent = percent

    def set_postfix(self, **kwargs: Any) -> None:
        if self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        """Close the progress bar."""
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
