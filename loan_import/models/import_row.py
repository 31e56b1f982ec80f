from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from .config_models import LoanFieldMappings
from .enums import RowAction, RowStatus, SectionType
from .normalized import NormalizedRecord

"""ImportRow model: the unit the bulk import executor consumes.

ImportPayload is a closed record of the fields the executor knows how to use,
plus `extras`, a side channel holding every original column so nothing from
the source row is lost.
"""

__all__ = [
    "ImportPayload",
    "ImportRow",
]

_EMPLOYMENT_STATUS = ("employmentStatus", "employment status")
_MONTHLY_INCOME = ("monthlyIncome", "monthly income", "income")
_EMPLOYER = ("employer", "company")
_JOB_TITLE = ("jobTitle", "job title", "position")


@dataclass(frozen=True)
class ImportPayload:
    # customer fields (normalized)
    full_name: str | None = None
    phone: str | None = None
    email: str | None = None
    nrc: str | None = None
    address: str | None = None
    employment_status: str | None = None
    monthly_income: str | None = None
    employer: str | None = None
    job_title: str | None = None
    # loan fields (raw text, parsed by the executor)
    amount: str | None = None
    interest_rate: str | None = None
    duration_months: str | None = None
    loan_type: str | None = None
    borrower_id: str | None = None
    disbursement_date: str | None = None
    collateral: str | None = None
    # provenance
    section: str = ""
    section_type: SectionType = SectionType.UNKNOWN
    confidence: float | None = None
    warnings: tuple[str, ...] = ()
    quarantine_id: str | None = None
    extras: dict[str, str] = field(default_factory=dict)

    @property
    def has_customer_data(self) -> bool:
        return bool(self.full_name or self.phone or self.nrc or self.email)

    @property
    def has_loan_data(self) -> bool:
        return bool(self.amount or self.interest_rate or self.duration_months or self.loan_type)

    def with_updates(self, **changes: Any) -> ImportPayload:
        return replace(self, **changes)

    @classmethod
    def from_record(
        cls,
        record: NormalizedRecord,
        loan_mappings: LoanFieldMappings | None = None,
        section_type: SectionType = SectionType.UNKNOWN,
    ) -> ImportPayload:
        """Merge normalized fields with the raw row.

        Normalized values win; a field the normalizer could not resolve falls
        back to nothing rather than the raw text so unvalidated values never
        reach the store.
        """
        lm = loan_mappings or LoanFieldMappings()
        raw = record.source
        return cls(
            full_name=record.full_name,
            phone=record.phone,
            email=record.email,
            nrc=record.nrc,
            address=record.address,
            employment_status=raw.first(_EMPLOYMENT_STATUS),
            monthly_income=raw.first(_MONTHLY_INCOME),
            employer=raw.first(_EMPLOYER),
            job_title=raw.first(_JOB_TITLE),
            amount=raw.first(lm.amount),
            interest_rate=raw.first(lm.interest_rate),
            duration_months=raw.first(lm.duration_months),
            loan_type=raw.first(lm.loan_type),
            borrower_id=raw.first(lm.borrower_id),
            disbursement_date=raw.first(lm.disbursement_date),
            collateral=raw.first(lm.collateral),
            section=raw.section,
            section_type=section_type,
            confidence=record.confidence,
            warnings=record.warnings,
            extras=raw.original(),
        )


@dataclass
class ImportRow:
    """Mutable per-row work item; customer_id is filled in as the batch links rows."""
    row_index: int
    data: ImportPayload
    status: RowStatus = RowStatus.READY
    action: RowAction = RowAction.CREATE
    errors: list[str] = field(default_factory=list)
    customer_id: str | None = None
    error_type: str = "VALIDATION_ERROR"  # reported when status is INVALID
