from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from .enums import LoanStatus

"""Target entity models: customers and loans as stored per agency.

Documents use snake_case keys. `id` is assigned by the store and is never part
of the document body.
"""

__all__ = [
    "CustomerRecord",
    "LoanRecord",
    "OrphanLoan",
]


def _opt_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


@dataclass(frozen=True)
class CustomerRecord:
    full_name: str
    phone: str | None
    nrc: str | None = None
    email: str | None = None
    address: str | None = None
    employment_status: str | None = None
    monthly_income: float | None = None
    employer: str | None = None
    job_title: str | None = None
    agency_id: str = ""
    created_by: str = ""
    status: str = "active"
    # aggregate counters, initialised to zero on creation
    total_loans: int = 0
    active_loans: int = 0
    total_borrowed: float = 0.0
    id: str | None = None

    def to_document(self) -> dict[str, Any]:
        doc = asdict(self)
        doc.pop("id")
        return doc

    @classmethod
    def from_document(cls, doc_id: str, doc: dict[str, Any]) -> CustomerRecord:
        return cls(
            id=doc_id,
            full_name=str(doc.get("full_name") or ""),
            phone=doc.get("phone"),
            nrc=doc.get("nrc"),
            email=doc.get("email"),
            address=doc.get("address"),
            employment_status=doc.get("employment_status"),
            monthly_income=_opt_float(doc.get("monthly_income")),
            employer=doc.get("employer"),
            job_title=doc.get("job_title"),
            agency_id=str(doc.get("agency_id") or ""),
            created_by=str(doc.get("created_by") or ""),
            status=str(doc.get("status") or "active"),
            total_loans=int(doc.get("total_loans") or 0),
            active_loans=int(doc.get("active_loans") or 0),
            total_borrowed=float(doc.get("total_borrowed") or 0.0),
        )


@dataclass(frozen=True)
class LoanRecord:
    """A loan; customer_id is None exactly when status is requires_mapping."""
    amount: float
    interest_rate: float
    duration_months: int
    loan_type: str
    customer_id: str | None
    status: LoanStatus = LoanStatus.DRAFT
    officer_id: str = ""
    agency_id: str = ""
    borrower_name: str | None = None
    borrower_id: str | None = None
    national_id: str | None = None
    disbursement_date: str | None = None
    collateral_included: bool = False
    import_batch_id: str | None = None
    repayments: list[dict[str, Any]] = field(default_factory=list)
    id: str | None = None

    @property
    def is_orphan(self) -> bool:
        return self.status is LoanStatus.REQUIRES_MAPPING

    def to_document(self) -> dict[str, Any]:
        doc = asdict(self)
        doc.pop("id")
        doc["status"] = self.status.value
        return doc

    @classmethod
    def from_document(cls, doc_id: str, doc: dict[str, Any]) -> LoanRecord:
        return cls(
            id=doc_id,
            amount=float(doc.get("amount") or 0.0),
            interest_rate=float(doc.get("interest_rate") or 0.0),
            duration_months=int(doc.get("duration_months") or 0),
            loan_type=str(doc.get("loan_type") or ""),
            customer_id=doc.get("customer_id"),
            status=LoanStatus(doc.get("status") or LoanStatus.DRAFT.value),
            officer_id=str(doc.get("officer_id") or ""),
            agency_id=str(doc.get("agency_id") or ""),
            borrower_name=doc.get("borrower_name"),
            borrower_id=doc.get("borrower_id"),
            national_id=doc.get("national_id"),
            disbursement_date=doc.get("disbursement_date"),
            collateral_included=bool(doc.get("collateral_included")),
            import_batch_id=doc.get("import_batch_id"),
            repayments=list(doc.get("repayments") or []),
        )


@dataclass(frozen=True)
class OrphanLoan:
    """Reconciliation view of a loan persisted without a resolvable customer."""
    loan_id: str
    borrower_id: str | None
    borrower_name: str
    national_id: str | None
    amount: float

    @classmethod
    def from_loan(cls, loan: LoanRecord) -> OrphanLoan:
        return cls(
            loan_id=loan.id or "",
            borrower_id=loan.borrower_id,
            borrower_name=loan.borrower_name or "",
            national_id=loan.national_id,
            amount=loan.amount,
        )
