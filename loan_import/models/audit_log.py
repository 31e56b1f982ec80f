from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from .processing_result import ImportResult

"""AuditLogRecord: the one summary document written per batch to import_logs."""

__all__ = [
    "AuditLogRecord",
]


@dataclass(frozen=True)
class AuditLogRecord:
    batch_id: str
    user_id: str
    file_name: str
    file_size: int
    timestamp: str  # ISO8601 UTC
    result: dict[str, Any]  # {success, failed, skipped, created, linked}
    errors: tuple[dict[str, Any], ...]

    @classmethod
    def from_result(cls, result: ImportResult, *, user_id: str, file_name: str, file_size: int) -> AuditLogRecord:
        return cls(
            batch_id=result.batch_id,
            user_id=user_id,
            file_name=file_name,
            file_size=file_size,
            timestamp=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            result=result.counts(),
            errors=tuple(e.as_dict() for e in result.errors),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "user_id": self.user_id,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "timestamp": self.timestamp,
            "result": self.result,
            "errors": list(self.errors),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> AuditLogRecord:
        return cls(
            batch_id=str(doc.get("batch_id") or ""),
            user_id=str(doc.get("user_id") or ""),
            file_name=str(doc.get("file_name") or ""),
            file_size=int(doc.get("file_size") or 0),
            timestamp=str(doc.get("timestamp") or ""),
            result=dict(doc.get("result") or {}),
            errors=tuple(doc.get("errors") or ()),
        )
