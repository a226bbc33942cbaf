from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Step progress display with tqdm (TTY only).

One bar for the reconciliation pipeline, advanced once per step. In non-TTY
environments (CI, cron, piped output) the bar is disabled so the log stays
free of control sequences.
"""

__all__ = [
    "StepProgress",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class StepProgress:
    """Progress bar over the named steps of a run."""

    def __init__(self, total_steps: int, *, description: str = "Sync") -> None:
        self.total_steps = total_steps
        self.description = description
        self.current_step = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_steps,
                desc=description,
                unit="step",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def start_step(self, name: str) -> None:
        self.current_step += 1
        if self.enabled and self.pbar is not None:
            self.pbar.set_description(f"{self.description} ({name})")

    def finish_step(self, success: bool = True, **postfix: Any) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.update(1)
            if postfix:
                self.pbar.set_postfix(**postfix)
            self.pbar.set_description(self.description)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> StepProgress:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
