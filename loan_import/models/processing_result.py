from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

"""Import result models for the loan import pipeline.

ImportResultBuilder is the one mutable accumulator the executor writes into;
ImportResult is its frozen snapshot handed to reporting, the audit log and
callers. Keeping them separate keeps the write path and the reporting path
apart.
"""

__all__ = [
    "EntityCounts",
    "ImportResult",
    "ImportResultBuilder",
    "RowError",
]


@dataclass(frozen=True)
class EntityCounts:
    customers: int = 0
    loans: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"customers": self.customers, "loans": self.loans}


@dataclass(frozen=True)
class RowError:
    row_index: int
    error: str
    error_type: str = "VALIDATION_ERROR"

    def as_dict(self) -> dict[str, object]:
        return {"rowIndex": self.row_index, "error": self.error}


@dataclass(frozen=True)
class ImportResult:
    """Aggregated outcome of one executor run."""
    batch_id: str
    success: int
    failed: int
    skipped: int
    created: EntityCounts
    linked: EntityCounts
    orphaned: int  # loans persisted with status requires_mapping
    errors: tuple[RowError, ...]
    succeeded_rows: frozenset[int]  # row indexes that were created or linked
    dry_run: bool
    started_at: datetime
    finished_at: datetime
    created_customer_ids: dict[int, str] = field(default_factory=dict)
    skips: tuple[RowError, ...] = ()  # skipped rows that carry a reason

    @property
    def elapsed_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def error_for(self, row_index: int) -> RowError | None:
        for err in self.errors:
            if err.row_index == row_index:
                return err
        return None

    def counts(self) -> dict[str, object]:
        """Counts in the audit-log `result` shape."""
        return {
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "created": self.created.as_dict(),
            "linked": self.linked.as_dict(),
        }


class ImportResultBuilder:
    """Mutable accumulator for one batch. Only the executor writes into it."""

    def __init__(self, batch_id: str, *, dry_run: bool = False) -> None:
        self.batch_id = batch_id
        self.dry_run = dry_run
        self.started_at = datetime.now(UTC)
        self.success = 0
        self.failed = 0
        self.skipped = 0
        self.created_customers = 0
        self.created_loans = 0
        self.linked_customers = 0
        self.linked_loans = 0
        self.orphaned = 0
        self.errors: list[RowError] = []
        self.succeeded_rows: set[int] = set()
        self.created_customer_ids: dict[int, str] = {}
        self.skips: list[RowError] = []

    def customer_created(self, row_index: int, customer_id: str, *, counts_as_row: bool = True) -> None:
        self.created_customers += 1
        self.created_customer_ids[row_index] = customer_id
        if counts_as_row:
            self._row_succeeded(row_index)

    def customer_linked(self, row_index: int) -> None:
        self.linked_customers += 1
        self._row_succeeded(row_index)

    def loan_created(self, row_index: int, *, orphan: bool = False) -> None:
        self.created_loans += 1
        if orphan:
            self.orphaned += 1
        self._row_succeeded(row_index)

    def loan_linked(self, row_index: int) -> None:
        self.linked_loans += 1
        self._row_succeeded(row_index)

    def row_skipped(self, row_index: int, reason: str = "", error_type: str = "SKIPPED") -> None:
        self.skipped += 1
        if reason:
            self.skips.append(RowError(row_index=row_index, error=reason, error_type=error_type))

    def row_failed(self, row_index: int, error: str, error_type: str = "VALIDATION_ERROR") -> None:
        self.failed += 1
        self.errors.append(RowError(row_index=row_index, error=error, error_type=error_type))

    def _row_succeeded(self, row_index: int) -> None:
        self.success += 1
        self.succeeded_rows.add(row_index)

    def build(self) -> ImportResult:
        return ImportResult(
            batch_id=self.batch_id,
            success=self.success,
            failed=self.failed,
            skipped=self.skipped,
            created=EntityCounts(self.created_customers, self.created_loans),
            linked=EntityCounts(self.linked_customers, self.linked_loans),
            orphaned=self.orphaned,
            errors=tuple(self.errors),
            succeeded_rows=frozenset(self.succeeded_rows),
            dry_run=self.dry_run,
            started_at=self.started_at,
            finished_at=datetime.now(UTC),
            created_customer_ids=dict(self.created_customer_ids),
            skips=tuple(self.skips),
        )
