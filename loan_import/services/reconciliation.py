from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..db.repositories import CustomerStore, LoanStore
from ..db.store import StoreError
from ..models.entities import LoanRecord, OrphanLoan
from ..models.enums import RowAction
from ..models.import_row import ImportRow
from ..models.match_candidate import MatchCandidate
from .matcher import DEFAULT_FUZZY_THRESHOLD, find_matching_customer

"""Orphan loan reconciliation.

Wraps the pure matcher with store access: list and count orphans, suggest a
customer per orphan, assign an orphan to a customer (loan becomes draft and
the customer's counters are bumped), auto-reconcile confident matches, and
pre-match loan rows before an import so they link instead of orphaning.
"""

__all__ = [
    "LoanMatchReport",
    "OrphanSuggestion",
    "ReconciliationService",
    "render_reconciliation_report",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrphanSuggestion:
    orphan: OrphanLoan
    match: MatchCandidate | None


@dataclass
class LoanMatchReport:
    """Outcome of matching loan rows before import."""
    processed: int = 0
    linked: int = 0
    orphaned: int = 0
    orphan_rows: list[int] = field(default_factory=list)
    matches: dict[int, MatchCandidate] = field(default_factory=dict)


class ReconciliationService:
    def __init__(
        self,
        customers: CustomerStore,
        loans: LoanStore,
        *,
        fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
    ) -> None:
        self.customers = customers
        self.loans = loans
        self.fuzzy_threshold = fuzzy_threshold

    def orphan_loans(self) -> list[OrphanLoan]:
        return [OrphanLoan.from_loan(loan) for loan in self.loans.orphans()]

    def count_orphans(self) -> int:
        return len(self.loans.orphans())

    def suggestions(self) -> list[OrphanSuggestion]:
        """One suggestion per orphan loan; the customer list is loaded once."""
        pool = self.customers.all()
        out = []
        for orphan in self.orphan_loans():
            match = find_matching_customer(
                orphan.borrower_id,
                orphan.borrower_name,
                orphan.national_id,
                pool,
                self.fuzzy_threshold,
            )
            out.append(OrphanSuggestion(orphan=orphan, match=match))
        return out

    def assign(self, loan_id: str, customer_id: str) -> LoanRecord:
        """Link an orphan loan to a customer.

        Raises:
            StoreError: the loan or the customer does not exist
            ValueError: the loan is not an orphan
        """
        loan = self.loans.get(loan_id)
        if loan is None:
            raise StoreError(f"loan {loan_id} not found")
        if not loan.is_orphan:
            raise ValueError(f"loan {loan_id} is not awaiting mapping (status {loan.status.value})")
        if self.customers.get(customer_id) is None:
            raise StoreError(f"customer {customer_id} not found")
        self.loans.assign_customer(loan_id, customer_id)
        self.customers.increment_counters(customer_id, amount=loan.amount)
        logger.info("loan %s assigned to customer %s", loan_id, customer_id)
        updated = self.loans.get(loan_id)
        if updated is None:
            raise StoreError(f"loan {loan_id} disappeared during assignment")
        return updated

    def auto_reconcile(self, min_confidence: float = 0.95) -> list[OrphanSuggestion]:
        """Assign every orphan whose suggestion meets min_confidence."""
        applied = []
        for suggestion in self.suggestions():
            match = suggestion.match
            if match is None or match.confidence < min_confidence:
                continue
            self.assign(suggestion.orphan.loan_id, match.customer_id)
            applied.append(suggestion)
        logger.info("auto-reconciled %d orphan loan(s)", len(applied))
        return applied

    def match_loan_rows(self, rows: Sequence[ImportRow]) -> LoanMatchReport:
        """Pre-resolve owners of loan rows; matched rows become action=link."""
        pool = self.customers.all()
        report = LoanMatchReport()
        for row in rows:
            if row.action is RowAction.SKIP:
                continue
            report.processed += 1
            if row.customer_id:
                report.linked += 1
                continue
            data = row.data
            match = None
            if data.borrower_id or data.full_name or data.nrc:
                match = find_matching_customer(data.borrower_id, data.full_name, data.nrc, pool, self.fuzzy_threshold)
            if match is None:
                report.orphaned += 1
                report.orphan_rows.append(row.row_index)
                continue
            row.customer_id = match.customer_id
            row.action = RowAction.LINK
            report.linked += 1
            report.matches[row.row_index] = match
        return report


def render_reconciliation_report(report: LoanMatchReport) -> str:
    lines = [
        "Loan Import Report",
        f"Total processed: {report.processed}",
        f"Automatically linked: {report.linked}",
        f"Orphan loans (need mapping): {report.orphaned}",
    ]
    if report.orphaned:
        lines.append("")
        lines.append(
            f"Action required: {report.orphaned} loan(s) need to be linked to customers. "
            "Run reconciliation now or later from the orphan loan list."
        )
    return "\n".join(lines)
