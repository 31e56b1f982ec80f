from __future__ import annotations

from enum import Enum

"""Closed enumerations shared across the import pipeline.

Every status / action / type that travels between the splitter, the router,
the executor and the quarantine workflow is one of these variants. Values are
the lowercase strings stored in documents and printed in reports.
"""

__all__ = [
    "SectionType",
    "RowStatus",
    "RowAction",
    "QuarantineStatus",
    "MatchType",
    "ImportType",
    "LoanStatus",
]


class SectionType(Enum):
    """Semantic type inferred for one file section."""
    CUSTOMERS = "customers"
    LOANS = "loans"
    BRANCHES = "branches"
    TRANSACTIONS = "transactions"
    UNKNOWN = "unknown"

    @property
    def importable(self) -> bool:
        # branches / transactions have no target entity
        return self in (SectionType.CUSTOMERS, SectionType.LOANS, SectionType.UNKNOWN)


class RowStatus(Enum):
    READY = "ready"
    NEEDS_REVIEW = "needs_review"
    INVALID = "invalid"


class RowAction(Enum):
    CREATE = "create"
    LINK = "link"
    SKIP = "skip"


class QuarantineStatus(Enum):
    """Quarantine item lifecycle.

    State transitions: pending → (fixed | approved | rejected), fixed → (fixed | approved | rejected)

    - PENDING: created by the router, waiting for a reviewer
    - FIXED: reviewer edited cleaned data; may be approved or re-imported directly
    - APPROVED: terminal for review; handed back to the executor
    - REJECTED: terminal; kept for audit, never imported
    """
    PENDING = "pending"
    FIXED = "fixed"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def importable(self) -> bool:
        return self in (QuarantineStatus.APPROVED, QuarantineStatus.FIXED)


class MatchType(Enum):
    EXACT = "exact"
    NATIONAL_ID = "national_id"
    FUZZY = "fuzzy"
    NONE = "none"


class ImportType(Enum):
    CUSTOMERS = "customers"
    LOANS = "loans"
    MIXED = "mixed"

    @property
    def handles_customers(self) -> bool:
        return self in (ImportType.CUSTOMERS, ImportType.MIXED)

    @property
    def handles_loans(self) -> bool:
        return self in (ImportType.LOANS, ImportType.MIXED)


class LoanStatus(Enum):
    DRAFT = "draft"
    REQUIRES_MAPPING = "requires_mapping"
