"""Domain models for the borrower / loan spreadsheet import pipeline.

This package contains the record types that travel through the pipeline:
raw rows and sections from the splitter, normalized records, import rows and
results, quarantine items, stored entities and matcher output.
"""

from .audit_log import AuditLogRecord
from .config_models import (
    CleaningConfig,
    DatabaseConfig,
    FieldMappings,
    ImportConfig,
    LoanDefaults,
    LoanFieldMappings,
    QuarantinePolicy,
)
from .entities import CustomerRecord, LoanRecord, OrphanLoan
from .enums import (
    ImportType,
    LoanStatus,
    MatchType,
    QuarantineStatus,
    RowAction,
    RowStatus,
    SectionType,
)
from .error_record import ErrorRecord
from .file_section import FileSection
from .import_row import ImportPayload, ImportRow
from .match_candidate import MatchCandidate
from .normalized import NormalizedRecord
from .processing_result import EntityCounts, ImportResult, ImportResultBuilder, RowError
from .quarantined_row import QuarantinedRow
from .raw_row import DroppedLine, RawRow

__all__ = [
    # Configuration models
    "CleaningConfig",
    "DatabaseConfig",
    "FieldMappings",
    "ImportConfig",
    "LoanDefaults",
    "LoanFieldMappings",
    "QuarantinePolicy",
    # Enumerations
    "ImportType",
    "LoanStatus",
    "MatchType",
    "QuarantineStatus",
    "RowAction",
    "RowStatus",
    "SectionType",
    # Parsing models
    "DroppedLine",
    "FileSection",
    "RawRow",
    # Processing models
    "EntityCounts",
    "ErrorRecord",
    "ImportPayload",
    "ImportResult",
    "ImportResultBuilder",
    "ImportRow",
    "NormalizedRecord",
    "RowError",
    # Persisted models
    "AuditLogRecord",
    "CustomerRecord",
    "LoanRecord",
    "MatchCandidate",
    "OrphanLoan",
    "QuarantinedRow",
]
