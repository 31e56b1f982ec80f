from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON-Lines error log.

One record per failed row or dropped source line. row=-1 is the sentinel for
file-level entries where no specific row applies. The key set is fixed:
{timestamp, file, section, row, error_type, message}.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: uploaded file name
        section: section name within the file
        row: row index within the batch. -1 for file-level entries
        error_type: error classification in UPPER_SNAKE_CASE format
        message: human-readable reason
    """
    timestamp: str
    file: str
    section: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(file: str, section: str, row: int, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            section=section,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # dataclass -> dict so no extra keys can sneak in
        return json.dumps(asdict(self), ensure_ascii=False)
