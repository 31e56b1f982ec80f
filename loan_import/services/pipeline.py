from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path

from ..db.repositories import CustomerStore, ImportLogStore, LoanStore, QuarantineStore
from ..db.store import DocumentStore, StoreError
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import ImportConfig, QuarantinePolicy
from ..models.enums import ImportType, RowAction, RowStatus, SectionType
from ..models.file_section import FileSection
from ..models.import_row import ImportPayload, ImportRow
from ..models.processing_result import ImportResult
from ..models.quarantined_row import QuarantinedRow
from ..parsing.reader import ImportSource, read_upload
from ..parsing.sections import describe_section, detect_import_type, split_sections
from .cleaning_adapter import CleaningAdapter, clean_rows
from .executor import BulkImportExecutor, generate_batch_id
from .progress import RowProgressTracker, SectionProgressIndicator
from .quarantine import QuarantineService, build_quarantined_row, classify_status, evaluate_quarantine
from .reconciliation import LoanMatchReport, ReconciliationService

"""Import pipeline orchestration.

run_import drives one uploaded file end to end:

1. split the text into sections
2. normalize every row (rule-based, then the cleaning adapter when given)
3. route each record: quarantine, or hand to the executor as ready / needs_review
4. save the quarantined rows in one bulk write
5. execute the remaining rows

Quarantine items and imported rows share one batch id. Row indexes are global
across the file (section order, then row order) so a row error, a quarantine
item and an error-log line for the same input row carry the same number.
"""

__all__ = [
    "CleaningStats",
    "PipelineResult",
    "SectionSummary",
    "import_file",
    "run_import",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SectionSummary:
    name: str
    section_type: SectionType
    label: str
    rows_processed: int
    rows_quarantined: int
    lines_dropped: int


@dataclass(frozen=True)
class CleaningStats:
    rows_cleaned: int
    rows_needing_review: int  # quarantined rows
    average_confidence: float


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one run_import call."""
    result: ImportResult
    import_type: ImportType
    file_name: str
    quarantined: int
    quarantine_ids: tuple[str, ...]
    sections: tuple[SectionSummary, ...]
    cleaning: CleaningStats
    match_report: LoanMatchReport | None = None
    error_log_path: Path | None = None

    @property
    def batch_id(self) -> str:
        return self.result.batch_id

    @property
    def fully_imported(self) -> bool:
        """True when no row failed and nothing was held for review."""
        return self.result.failed == 0 and self.quarantined == 0


def _section_policy(policy: QuarantinePolicy, section: FileSection) -> QuarantinePolicy:
    # ローン行は顧客フィールド必須チェック対象外 (金額は executor が検証)
    if section.inferred_type is SectionType.LOANS:
        return replace(policy, required_fields=())
    return policy


def _unsupported_row(section: FileSection, index: int, original: dict[str, str]) -> ImportRow:
    return ImportRow(
        row_index=index,
        data=ImportPayload(section=section.name, section_type=section.inferred_type, extras=original),
        status=RowStatus.READY,
        action=RowAction.SKIP,
        errors=[f"Unsupported section type: {section.inferred_type.value}"],
    )


def _is_loan_row(row: ImportRow, import_type: ImportType) -> bool:
    if row.action is RowAction.SKIP:
        return False
    if import_type is ImportType.LOANS:
        return True
    if import_type is ImportType.CUSTOMERS:
        return False
    data = row.data
    return data.section_type is SectionType.LOANS or (
        data.section_type is SectionType.UNKNOWN and data.has_loan_data
    )


def run_import(
    source: ImportSource,
    config: ImportConfig,
    store: DocumentStore,
    *,
    user_id: str,
    import_type: ImportType | None = None,
    dry_run: bool = False,
    adapter: CleaningAdapter | None = None,
    match_loans: bool = False,
    error_log: ErrorLogBuffer | None = None,
    show_progress: bool | None = None,
) -> PipelineResult:
    """Import one decoded upload.

    Args:
        source: decoded file text plus its name and size
        config: mappings, policy, cleaning and loan defaults
        store: document store (PostgreSQL or in-memory)
        user_id: importing user, recorded on created entities and the audit log
        import_type: executor mode; None detects it from the section types
        dry_run: classify, route and count without writing anything
        adapter: optional cleaning adapter; None means rule-based only
        match_loans: pre-match loan rows to stored customers (exact id,
            national id, fuzzy name) so matches link instead of orphaning
        error_log: buffer receiving failed rows and dropped lines; flushed
            before returning
        show_progress: force progress output on/off (None = TTY only)

    Returns:
        PipelineResult for the batch
    """
    agency_id = config.agency_id
    policy = config.quarantine
    batch_id = generate_batch_id()

    sections = split_sections(source.text)
    detected = detect_import_type(sections)
    import_type = import_type or detected
    logger.info(
        "file %s: %d section(s), import type %s%s",
        source.file_name,
        len(sections),
        import_type.value,
        "" if import_type is detected else f" (detected {detected.value})",
    )

    customers = CustomerStore(store, agency_id)
    loans = LoanStore(store, agency_id)
    quarantine_service = QuarantineService(
        QuarantineStore(store, agency_id),
        policy=policy,
        loan_mappings=config.loan_field_mappings,
    )

    import_rows: list[ImportRow] = []
    held: list[QuarantinedRow] = []
    held_payloads: dict[int, ImportPayload] = {}
    row_sections: dict[int, str] = {}
    summaries: list[SectionSummary] = []
    confidence_total = 0.0
    cleaned_count = 0
    next_index = 0
    indicator = SectionProgressIndicator(source.file_name, len(sections), enabled=show_progress)

    for section in sections:
        section_held = 0

        if not section.inferred_type.importable:
            logger.warning(
                "section %s (%s): %d row(s) skipped, section type is not importable",
                section.name,
                section.inferred_type.value,
                section.row_count,
            )
            for raw in section.rows:
                row_sections[next_index] = section.name
                import_rows.append(_unsupported_row(section, next_index, raw.original()))
                next_index += 1
        else:
            records = clean_rows(
                section.rows,
                config.field_mappings,
                adapter=adapter,
                config=config.cleaning,
                country_code=policy.country_code,
            )
            section_policy = _section_policy(policy, section)
            for record in records:
                index = next_index
                next_index += 1
                row_sections[index] = section.name
                cleaned_count += 1
                confidence_total += record.confidence

                decision = evaluate_quarantine(record, section_policy)
                payload = ImportPayload.from_record(record, config.loan_field_mappings, section.inferred_type)
                if decision.should_quarantine:
                    section_held += 1
                    held.append(
                        build_quarantined_row(
                            record,
                            batch_id=batch_id,
                            row_index=index,
                            reasons=decision.reasons,
                            agency_id=agency_id,
                            section_type=section.inferred_type,
                        )
                    )
                    held_payloads[index] = payload
                    continue
                import_rows.append(
                    ImportRow(
                        row_index=index,
                        data=payload,
                        status=classify_status(record, section_policy),
                        action=RowAction.CREATE,
                        errors=list(record.warnings),
                    )
                )

        indicator.section(describe_section(section), section.row_count, section_held)
        summaries.append(
            SectionSummary(
                name=section.name,
                section_type=section.inferred_type,
                label=describe_section(section),
                rows_processed=section.row_count,
                rows_quarantined=section_held,
                lines_dropped=len(section.dropped_lines),
            )
        )

    quarantine_ids: tuple[str, ...] = ()
    quarantined = len(held)
    if held:
        if dry_run:
            logger.info("dry run: %d row(s) would be quarantined", len(held))
        else:
            try:
                saved = quarantine_service.quarantine_rows(held)
            except StoreError as e:
                # 保存できなかった行は失敗行として監査ログ・エラーログに残す
                logger.error("could not save %d quarantined row(s): %s", len(held), e)
                quarantined = 0
                for item in held:
                    import_rows.append(
                        ImportRow(
                            row_index=item.row_index,
                            data=held_payloads[item.row_index],
                            status=RowStatus.INVALID,
                            errors=[f"Quarantine save failed: {e}", *item.quarantine_reasons],
                            error_type="STORE_ERROR",
                        )
                    )
            else:
                quarantine_ids = tuple(item.id for item in saved if item.id)

    match_report: LoanMatchReport | None = None
    if match_loans and import_type.handles_loans:
        reconciliation = ReconciliationService(customers, loans, fuzzy_threshold=config.fuzzy_threshold)
        match_report = reconciliation.match_loan_rows([r for r in import_rows if _is_loan_row(r, import_type)])
        logger.info(
            "pre-matched loan rows: %d linked, %d without a customer",
            match_report.linked,
            match_report.orphaned,
        )

    executor = BulkImportExecutor(
        customers,
        loans,
        ImportLogStore(store, agency_id),
        loan_defaults=config.loan_defaults,
        required_customer_fields=policy.required_fields,
    )
    with RowProgressTracker(len(import_rows), enabled=show_progress) as progress:
        result = executor.execute(
            import_rows,
            import_type,
            user_id=user_id,
            file_name=source.file_name,
            file_size=source.file_size,
            dry_run=dry_run,
            batch_id=batch_id,
            progress=progress,
        )

    error_log_path: Path | None = None
    if error_log is not None:
        error_log.add_row_errors(source.file_name, result.errors, row_sections)
        error_log.add_row_errors(
            source.file_name,
            [s for s in result.skips if s.error_type != "SKIPPED"],
            row_sections,
        )
        for section in sections:
            error_log.add_dropped_lines(source.file_name, section.dropped_lines)
        try:
            error_log_path = error_log.flush()
        except OSError as e:
            logger.warning("failed to write error log: %s", e)

    return PipelineResult(
        result=result,
        import_type=import_type,
        file_name=source.file_name,
        quarantined=quarantined,
        quarantine_ids=quarantine_ids,
        sections=tuple(summaries),
        cleaning=CleaningStats(
            rows_cleaned=cleaned_count,
            rows_needing_review=quarantined,
            average_confidence=confidence_total / cleaned_count if cleaned_count else 0.0,
        ),
        match_report=match_report,
        error_log_path=error_log_path,
    )


def import_file(path: Path, config: ImportConfig, store: DocumentStore, **options: object) -> PipelineResult:
    """read_upload + run_import. SourceReadError propagates to the caller."""
    return run_import(read_upload(path), config, store, **options)  # type: ignore[arg-type]
