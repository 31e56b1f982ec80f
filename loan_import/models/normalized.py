from __future__ import annotations

from dataclasses import dataclass, replace

from .config_models import FIELD_ATTRIBUTES
from .raw_row import RawRow

"""NormalizedRecord model: the cleaned view of one RawRow.

Produced by the rule-based normalizer (services/normalizer.py) and optionally
overridden by the cleaning adapter. Always references its originating RawRow.
"""

__all__ = [
    "NormalizedRecord",
]


@dataclass(frozen=True)
class NormalizedRecord:
    source: RawRow
    phone: str | None = None
    email: str | None = None
    full_name: str | None = None
    nrc: str | None = None
    address: str | None = None
    confidence: float = 1.0  # always within [0, 1]
    warnings: tuple[str, ...] = ()
    fixed_fields: tuple[str, ...] = ()  # fields changed by the cleaning adapter
    phone_from_email: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            object.__setattr__(self, "confidence", min(1.0, max(0.0, self.confidence)))

    @property
    def row_index(self) -> int:
        return self.source.index

    def value(self, field_name: str) -> str | None:
        """Value by external field name ("fullName", "phone", ...)."""
        return getattr(self, FIELD_ATTRIBUTES[field_name])

    def missing(self, field_names: tuple[str, ...] | list[str]) -> list[str]:
        return [f for f in field_names if not (self.value(f) or "").strip()]

    def with_updates(self, **changes: object) -> NormalizedRecord:
        return replace(self, **changes)

    def cleaned_data(self) -> dict[str, object]:
        """Wire form used for quarantine documents and the adapter response shape."""
        return {
            "phone": self.phone,
            "email": self.email,
            "fullName": self.full_name,
            "nrc": self.nrc,
            "address": self.address,
            "confidence": self.confidence,
            "warnings": list(self.warnings),
            "fixedFields": list(self.fixed_fields),
        }
