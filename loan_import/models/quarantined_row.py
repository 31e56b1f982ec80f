from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from .enums import QuarantineStatus

"""QuarantinedRow model: a persisted copy of a row that failed router policy.

Lifecycle: created pending by the router → fixed (reviewer edits cleaned_data)
or approved / rejected → approved and fixed rows are re-imported and deleted
once created; rejected rows stay for audit.
"""

__all__ = [
    "QuarantinedRow",
]


def _now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class QuarantinedRow:
    import_batch_id: str
    row_index: int
    original_data: dict[str, str]
    cleaned_data: dict[str, Any]
    quarantine_reasons: tuple[str, ...]
    status: QuarantineStatus = QuarantineStatus.PENDING
    agency_id: str = ""
    section: str = ""
    section_type: str = "unknown"
    fixed_by: str | None = None
    fixed_at: str | None = None
    notes: str | None = None
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    id: str | None = None

    def with_updates(self, **changes: Any) -> QuarantinedRow:
        changes.setdefault("updated_at", _now())
        return replace(self, **changes)

    def to_document(self) -> dict[str, Any]:
        return {
            "agency_id": self.agency_id,
            "import_batch_id": self.import_batch_id,
            "row_index": self.row_index,
            "section": self.section,
            "section_type": self.section_type,
            "original_data": dict(self.original_data),
            "cleaned_data": dict(self.cleaned_data),
            "quarantine_reasons": list(self.quarantine_reasons),
            "status": self.status.value,
            "fixed_by": self.fixed_by,
            "fixed_at": self.fixed_at,
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc_id: str, doc: dict[str, Any]) -> QuarantinedRow:
        return cls(
            id=doc_id,
            agency_id=str(doc.get("agency_id") or ""),
            import_batch_id=str(doc["import_batch_id"]),
            row_index=int(doc["row_index"]),
            section=str(doc.get("section") or ""),
            section_type=str(doc.get("section_type") or "unknown"),
            original_data=dict(doc.get("original_data") or {}),
            cleaned_data=dict(doc.get("cleaned_data") or {}),
            quarantine_reasons=tuple(doc.get("quarantine_reasons") or ()),
            status=QuarantineStatus(doc.get("status") or "pending"),
            fixed_by=doc.get("fixed_by"),
            fixed_at=doc.get("fixed_at"),
            notes=doc.get("notes"),
            created_at=str(doc.get("created_at") or _now()),
            updated_at=str(doc.get("updated_at") or _now()),
        )
