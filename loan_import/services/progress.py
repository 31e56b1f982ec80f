from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display service with tqdm (TTY only).

One bar over the rows of a batch while the executor runs. In non-TTY
environments (CI, piped output) the bar is disabled so no ANSI control
sequences end up in logs.
"""

__all__ = [
    "RowProgressTracker",
    "SectionProgressIndicator",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled.

    Returns:
        True if stdout is a TTY and progress should be displayed, False otherwise
    """
    return sys.stdout.isatty()


class RowProgressTracker:
    """Progress tracker over the rows of one import batch."""

    def __init__(self, total_rows: int, *, description: str = "Importing rows", enabled: bool | None = None) -> None:
        """Initialize progress tracker.

        Args:
            total_rows: Number of rows the executor will process
            description: Description for the progress bar
            enabled: Force the bar on/off; None means "only on a TTY"
        """
        self.total_rows = total_rows
        self.description = description
        self.processed = 0
        self.failed = 0

        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def advance(self, *, success: bool = True) -> None:
        """Mark one row as processed."""
        self.processed += 1
        if not success:
            self.failed += 1
        if self.pbar is not None:
            self.pbar.update(1)
            if self.failed:
                self.pbar.set_postfix(failed=self.failed)

    def set_phase(self, phase: str) -> None:
        if self.pbar is not None:
            self.pbar.set_description(f"{self.description} ({phase})")

    def close(self) -> None:
        """Close the progress bar."""
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> RowProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class SectionProgressIndicator:
    """Prints one status line per section on a TTY (splitting is fast, no bar)."""

    def __init__(self, file_name: str, total_sections: int, *, enabled: bool | None = None) -> None:
        self.file_name = file_name
        self.total_sections = total_sections
        self.current_section = 0
        self.enabled = is_tty_enabled() if enabled is None else enabled

    def section(self, name: str, rows: int, quarantined: int = 0) -> None:
        self.current_section += 1
        if self.enabled:
            line = f"  Section {self.current_section}/{self.total_sections}: {name} - {rows} rows"
            if quarantined:
                line += f" ({quarantined} quarantined)"
            print(line, flush=True)
