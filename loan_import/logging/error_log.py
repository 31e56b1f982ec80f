from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord
from ..models.processing_result import RowError
from ..models.raw_row import DroppedLine

"""Error log generation & buffering module.

- JSON Lines 固定スキーマ (追加キー禁止): {timestamp, file, section, row, error_type, message}
- 起動ごとに `logs/errors-YYYYMMDD-HHMMSS.log` (UTC) を生成 (必要時)
- バッファリングして import 終了時に一括 flush

Failed rows, rows skipped with a reason and lines dropped by the section
splitter all end up here so a reviewer can trace every input line.
"""

__all__ = [
    "DROPPED_LINE",
    "ErrorLogBuffer",
    "ErrorRecord",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"

DROPPED_LINE = "DROPPED_LINE"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush writes JSON Lines.

    - flush() 呼び出し時にファイル (なければ生成) へ一括追記
    - ファイルパスは初回アクセスで決定
    - スレッド安全性不要 (パイプラインは単一スレッドで append する)
    """

    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir or LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    @property
    def records(self) -> tuple[ErrorRecord, ...]:
        return tuple(self._records)

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def add_row_errors(self, file: str, errors: Iterable[RowError], sections: dict[int, str]) -> None:
        """One record per row error; sections maps row index -> section name."""
        for err in errors:
            self.append(
                ErrorRecord.create(
                    file=file,
                    section=sections.get(err.row_index, ""),
                    row=err.row_index,
                    error_type=err.error_type,
                    message=err.error,
                )
            )

    def add_dropped_lines(self, file: str, dropped: Iterable[DroppedLine]) -> None:
        # dropped lines never became rows, so row=-1
        for line in dropped:
            self.append(
                ErrorRecord.create(
                    file=file,
                    section=line.section,
                    row=-1,
                    error_type=DROPPED_LINE,
                    message=f"line {line.line_number}: {line.reason}: {line.text}",
                )
            )

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records to the log file; None when nothing was buffered."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
