from __future__ import annotations

from ..models.processing_result import ImportResult

"""Summary line rendering for the loan import CLI.

Format (one line, fixed key order):

    SUMMARY batch=<id> created_customers=<n> created_loans=<n> linked=<n>
    skipped=<n> failed=<n> quarantined=<n> orphaned=<n>

`linked` adds linked customers and linked loans. `elapsed_sec` is appended
only when requested, so the fixed prefix stays greppable.
"""

__all__ = [
    "format_seconds",
    "render_summary_line",
]


def format_seconds(value: float) -> str:
    """Render seconds without scientific notation ("2", "0.5", "0.000123")."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: ImportResult, quarantined: int = 0, *, with_elapsed: bool = False) -> str:
    """Render the SUMMARY line for one batch.

    Args:
        result: executor result for the batch
        quarantined: rows held in quarantine by the router
        with_elapsed: append `elapsed_sec=<seconds>`

    Returns:
        The line, starting with "SUMMARY "

    Examples:
        >>> from datetime import datetime, timezone
        >>> from loan_import.models.processing_result import EntityCounts
        >>> t = datetime(2024, 1, 1, tzinfo=timezone.utc)
        >>> r = ImportResult(
        ...     batch_id="import-1-abc", success=3, failed=1, skipped=0,
        ...     created=EntityCounts(2, 1), linked=EntityCounts(0, 0), orphaned=1,
        ...     errors=(), succeeded_rows=frozenset({0, 1, 2}), dry_run=False,
        ...     started_at=t, finished_at=t,
        ... )
        >>> render_summary_line(r, quarantined=2)
        'SUMMARY batch=import-1-abc created_customers=2 created_loans=1 linked=0 skipped=0 failed=1 quarantined=2 orphaned=1'
    """
    line = (
        f"SUMMARY batch={result.batch_id} "
        f"created_customers={result.created.customers} "
        f"created_loans={result.created.loans} "
        f"linked={result.linked.customers + result.linked.loans} "
        f"skipped={result.skipped} "
        f"failed={result.failed} "
        f"quarantined={quarantined} "
        f"orphaned={result.orphaned}"
    )
    if with_elapsed:
        line += f" elapsed_sec={format_seconds(result.elapsed_seconds)}"
    return line
