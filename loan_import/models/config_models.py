from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace

"""Config dataclasses for the loan import pipeline.

These are the typed forms of config/import.yml. The loader in
loan_import/config/loader.py validates the YAML and builds them; every other
module receives them as arguments instead of reading globals.
"""

__all__ = [
    "CUSTOMER_FIELDS",
    "FIELD_ATTRIBUTES",
    "CleaningConfig",
    "DatabaseConfig",
    "FieldMappings",
    "ImportConfig",
    "LoanDefaults",
    "LoanFieldMappings",
    "QuarantinePolicy",
]

# External field identifiers (messages, adapter wire format) -> attribute names
FIELD_ATTRIBUTES: dict[str, str] = {
    "phone": "phone",
    "email": "email",
    "fullName": "full_name",
    "nrc": "nrc",
    "address": "address",
}
CUSTOMER_FIELDS: tuple[str, ...] = tuple(FIELD_ATTRIBUTES)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection fallback configuration.

    Environment variables (DATABASE_URL / PGDSN / PG*) take precedence.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self.dsn or self.host or self.database)


@dataclass(frozen=True)
class FieldMappings:
    """Ordered candidate header names per target field; first non-empty wins."""
    phone: tuple[str, ...] = ("phone", "mobile", "phoneNumber", "phone number", "contact", "tel", "msisdn")
    email: tuple[str, ...] = ("email", "emailAddress", "email address", "eMail")
    full_name: tuple[str, ...] = (
        "fullName", "full name", "name", "customerName", "customer name",
        "borrowerName", "borrower name", "full_name",
    )
    nrc: tuple[str, ...] = ("nrc", "nrcNumber", "nrc/id", "idNumber", "id number", "nationalId", "national id")
    address: tuple[str, ...] = ("address", "location", "residence", "homeAddress")

    def candidates(self, field_name: str) -> tuple[str, ...]:
        """Candidate headers for an external field name (e.g. "fullName")."""
        return getattr(self, FIELD_ATTRIBUTES[field_name])

    def as_dict(self) -> dict[str, list[str]]:
        return {name: list(self.candidates(name)) for name in CUSTOMER_FIELDS}

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Sequence[str]] | None) -> FieldMappings:
        """Overlay caller-supplied lists on the defaults (missing fields keep defaults)."""
        base = cls()
        if not raw:
            return base
        overrides = {FIELD_ATTRIBUTES[k]: tuple(v) for k, v in raw.items() if k in FIELD_ATTRIBUTES and v}
        return replace(base, **overrides)


@dataclass(frozen=True)
class LoanFieldMappings:
    amount: tuple[str, ...] = ("amount", "loanAmount", "loan amount", "principal")
    interest_rate: tuple[str, ...] = ("interestRate", "interest rate", "rate", "interest")
    duration_months: tuple[str, ...] = ("durationMonths", "duration (months)", "duration", "months", "term")
    loan_type: tuple[str, ...] = ("loanType", "loan type", "type", "product")
    borrower_id: tuple[str, ...] = ("borrowerId", "borrower_id", "borrower id", "customerId", "customer id")
    disbursement_date: tuple[str, ...] = ("disbursementDate", "disbursement date", "date disbursed")
    collateral: tuple[str, ...] = ("collateral", "collateralIncluded", "collateral included")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Sequence[str]] | None) -> LoanFieldMappings:
        base = cls()
        if not raw:
            return base
        keys = {
            "amount": "amount",
            "interestRate": "interest_rate",
            "durationMonths": "duration_months",
            "loanType": "loan_type",
            "borrowerId": "borrower_id",
            "disbursementDate": "disbursement_date",
            "collateral": "collateral",
        }
        overrides = {keys[k]: tuple(v) for k, v in raw.items() if k in keys and v}
        return replace(base, **overrides)


@dataclass(frozen=True)
class QuarantinePolicy:
    """Router policy. Thresholds are tuned heuristics, so all of them are configurable."""
    enabled: bool = True
    required_fields: tuple[str, ...] = ("fullName", "phone")
    min_confidence: float = 0.6  # below -> quarantine
    auto_approve_confidence: float = 0.7  # at or above -> ready, else needs_review
    max_warnings: int = 2
    min_name_length: int = 3
    auto_approve: bool = False  # every non-quarantined row is ready
    country_code: str = "260"

    @property
    def phone_prefix(self) -> str:
        return f"+{self.country_code}"


@dataclass(frozen=True)
class CleaningConfig:
    use_ai: bool = False
    endpoint: str = "https://api.openai.com/v1/chat/completions"
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 15.0
    group_size: int = 10
    group_delay_seconds: float = 0.1


@dataclass(frozen=True)
class LoanDefaults:
    interest_rate: float = 15.0
    duration_months: int = 12
    loan_type: str = "Personal Loan"


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for one import run."""
    agency_id: str = "default"
    field_mappings: FieldMappings = field(default_factory=FieldMappings)
    loan_field_mappings: LoanFieldMappings = field(default_factory=LoanFieldMappings)
    quarantine: QuarantinePolicy = field(default_factory=QuarantinePolicy)
    cleaning: CleaningConfig = field(default_factory=CleaningConfig)
    loan_defaults: LoanDefaults = field(default_factory=LoanDefaults)
    fuzzy_threshold: float = 0.9
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
