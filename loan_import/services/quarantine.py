from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..db.repositories import QuarantineStore
from ..db.store import StoreError
from ..models.config_models import LoanFieldMappings, QuarantinePolicy
from ..models.enums import ImportType, QuarantineStatus, RowAction, RowStatus, SectionType
from ..models.import_row import ImportPayload, ImportRow
from ..models.normalized import NormalizedRecord
from ..models.processing_result import ImportResult
from ..models.quarantined_row import QuarantinedRow
from ..models.raw_row import RawRow
from .executor import BulkImportExecutor, generate_batch_id

"""Quarantine router and review workflow.

The router decides, per normalized record, whether the row is held for human
review. Any single reason is enough:

- a required field is missing
- confidence is below QuarantinePolicy.min_confidence
- more than QuarantinePolicy.max_warnings warnings
- the name is shorter than QuarantinePolicy.min_name_length
- the phone does not carry the expected international prefix

Rows that pass are `ready` at or above auto_approve_confidence and
`needs_review` below it (still imported, but flagged).

Quarantine items follow pending -> fixed | approved | rejected, and a fixed
item may be edited again, approved or rejected. approved and rejected are
final. Approved and fixed items are re-imported through the executor and
deleted once their row is created; rejected items stay for audit.
"""

__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidTransitionError",
    "QuarantineDecision",
    "QuarantineService",
    "build_quarantined_row",
    "classify_status",
    "evaluate_quarantine",
]

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[QuarantineStatus, frozenset[QuarantineStatus]] = {
    QuarantineStatus.PENDING: frozenset({QuarantineStatus.FIXED, QuarantineStatus.APPROVED, QuarantineStatus.REJECTED}),
    QuarantineStatus.FIXED: frozenset({QuarantineStatus.FIXED, QuarantineStatus.APPROVED, QuarantineStatus.REJECTED}),
    QuarantineStatus.APPROVED: frozenset(),
    QuarantineStatus.REJECTED: frozenset(),
}

# cleaned_data keys a reviewer may edit
EDITABLE_FIELDS = frozenset({"phone", "email", "fullName", "nrc", "address"})


class InvalidTransitionError(Exception):
    """A quarantine item was asked to move to a state its lifecycle forbids."""


@dataclass(frozen=True)
class QuarantineDecision:
    should_quarantine: bool
    reasons: tuple[str, ...]


def evaluate_quarantine(record: NormalizedRecord, policy: QuarantinePolicy | None = None) -> QuarantineDecision:
    """Apply required-field and confidence policy to one record.

    reasons is non-empty exactly when should_quarantine is True.
    """
    policy = policy or QuarantinePolicy()
    if not policy.enabled:
        return QuarantineDecision(False, ())

    reasons: list[str] = []
    missing = record.missing(policy.required_fields)
    if missing:
        reasons.append(f"Missing required fields: {', '.join(missing)}")
    if record.confidence < policy.min_confidence:
        reasons.append(f"Low confidence score: {record.confidence:.2f}")
    if len(record.warnings) > policy.max_warnings:
        reasons.append(f"Multiple warnings: {'; '.join(record.warnings)}")
    if record.full_name and len(record.full_name.strip()) < policy.min_name_length:
        reasons.append("Name too short or invalid")
    if record.phone and not record.phone.startswith(policy.phone_prefix):
        reasons.append("Phone number not in expected format")
    return QuarantineDecision(bool(reasons), tuple(reasons))


def classify_status(record: NormalizedRecord, policy: QuarantinePolicy | None = None) -> RowStatus:
    """ready / needs_review for a row the router let through."""
    policy = policy or QuarantinePolicy()
    if policy.auto_approve or record.confidence >= policy.auto_approve_confidence:
        return RowStatus.READY
    return RowStatus.NEEDS_REVIEW


def build_quarantined_row(
    record: NormalizedRecord,
    *,
    batch_id: str,
    row_index: int,
    reasons: Sequence[str],
    agency_id: str,
    section_type: SectionType = SectionType.UNKNOWN,
) -> QuarantinedRow:
    return QuarantinedRow(
        import_batch_id=batch_id,
        row_index=row_index,
        original_data=record.source.original(),
        cleaned_data=record.cleaned_data(),
        quarantine_reasons=tuple(reasons),
        agency_id=agency_id,
        section=record.source.section,
        section_type=section_type.value,
    )


def _now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class QuarantineService:
    """Review workflow over the import_quarantine collection.

    Args:
        store: agency-scoped quarantine repository
        executor: used by import_approved to re-import reviewed rows
        policy: required fields for re-imported rows
        loan_mappings: header candidates used to recover loan fields from original_data
    """

    def __init__(
        self,
        store: QuarantineStore,
        executor: BulkImportExecutor | None = None,
        *,
        policy: QuarantinePolicy | None = None,
        loan_mappings: LoanFieldMappings | None = None,
    ) -> None:
        self.store = store
        self.executor = executor
        self.policy = policy or QuarantinePolicy()
        self.loan_mappings = loan_mappings or LoanFieldMappings()

    # ---------------------------------------------------------------- queries

    def quarantine_rows(self, items: Sequence[QuarantinedRow]) -> list[QuarantinedRow]:
        """Persist a batch of new pending items in one bulk write."""
        if not items:
            return []
        saved = self.store.save_many(items)
        logger.info("quarantined %d row(s) for batch %s", len(saved), saved[0].import_batch_id)
        return saved

    def pending_for_batch(self, batch_id: str) -> list[QuarantinedRow]:
        return self.store.find(statuses=[QuarantineStatus.PENDING], batch_id=batch_id)

    def all_pending(self) -> list[QuarantinedRow]:
        return self.store.find(statuses=[QuarantineStatus.PENDING])

    # ------------------------------------------------------------ transitions

    def _load(self, item_id: str) -> QuarantinedRow:
        item = self.store.get(item_id)
        if item is None:
            raise StoreError(f"quarantine item {item_id} not found")
        return item

    @staticmethod
    def _check(item: QuarantinedRow, target: QuarantineStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[item.status]:
            raise InvalidTransitionError(
                f"quarantine item {item.id}: cannot move from {item.status.value} to {target.value}"
            )

    def _transition(
        self,
        item: QuarantinedRow,
        target: QuarantineStatus,
        *,
        user_id: str,
        notes: str | None,
        cleaned_data: dict[str, Any] | None = None,
    ) -> QuarantinedRow:
        self._check(item, target)
        changes: dict[str, Any] = {"status": target, "fixed_by": user_id}
        if target in (QuarantineStatus.FIXED, QuarantineStatus.APPROVED):
            changes["fixed_at"] = _now()
        if notes is not None:
            changes["notes"] = notes
        if cleaned_data is not None:
            changes["cleaned_data"] = cleaned_data
        updated = item.with_updates(**changes)
        self.store.save(updated)
        logger.info("quarantine item %s: %s -> %s", item.id, item.status.value, target.value)
        return updated

    def fix(
        self, item_id: str, updates: Mapping[str, Any], *, user_id: str, notes: str | None = None
    ) -> QuarantinedRow:
        """Edit cleaned_data in place and mark the item fixed."""
        unknown = set(updates) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot edit fields: {', '.join(sorted(unknown))}")
        item = self._load(item_id)
        cleaned = dict(item.cleaned_data)
        cleaned.update(updates)
        fixed_fields = list(dict.fromkeys([*cleaned.get("fixedFields", []), *updates]))
        cleaned["fixedFields"] = fixed_fields
        return self._transition(item, QuarantineStatus.FIXED, user_id=user_id, notes=notes, cleaned_data=cleaned)

    def approve(self, item_id: str, *, user_id: str, notes: str | None = None) -> QuarantinedRow:
        return self._transition(self._load(item_id), QuarantineStatus.APPROVED, user_id=user_id, notes=notes)

    def reject(self, item_id: str, *, user_id: str, notes: str | None = None) -> QuarantinedRow:
        return self._transition(self._load(item_id), QuarantineStatus.REJECTED, user_id=user_id, notes=notes)

    def bulk_approve(self, item_ids: Iterable[str], *, user_id: str) -> list[QuarantinedRow]:
        """Approve many items; every transition is checked before any is written."""
        items = [self._load(i) for i in item_ids]
        for item in items:
            self._check(item, QuarantineStatus.APPROVED)
        return [self._transition(item, QuarantineStatus.APPROVED, user_id=user_id, notes=None) for item in items]

    # ---------------------------------------------------------------- re-import

    def to_import_row(self, item: QuarantinedRow, row_index: int) -> ImportRow:
        """Rebuild an ImportRow from the reviewed cleaned_data and the original columns."""
        headers = list(item.original_data)
        raw = RawRow.from_fields(
            item.row_index,
            headers,
            [str(item.original_data[h]) for h in headers],
            section=item.section,
        )
        cleaned = item.cleaned_data
        record = NormalizedRecord(
            source=raw,
            phone=cleaned.get("phone") or None,
            email=cleaned.get("email") or None,
            full_name=cleaned.get("fullName") or None,
            nrc=cleaned.get("nrc") or None,
            address=cleaned.get("address") or None,
            confidence=float(cleaned.get("confidence", 1.0)),
            warnings=tuple(cleaned.get("warnings") or ()),
        )
        payload = ImportPayload.from_record(record, self.loan_mappings, SectionType(item.section_type))
        missing = record.missing(self.policy.required_fields)
        return ImportRow(
            row_index=row_index,
            data=payload.with_updates(quarantine_id=item.id),
            status=RowStatus.NEEDS_REVIEW if missing else RowStatus.READY,
            action=RowAction.CREATE,
            errors=[f"Missing: {', '.join(missing)}"] if missing else [],
        )

    def import_approved(
        self,
        item_ids: Iterable[str] | None = None,
        *,
        import_type: ImportType,
        user_id: str,
        dry_run: bool = False,
    ) -> ImportResult:
        """Re-import approved and fixed items; delete each one whose row succeeded.

        Args:
            item_ids: specific items (others are ignored); None means every
                approved or fixed item of the agency
            import_type: executor mode for the re-import
            user_id: reviewer running the import
            dry_run: preview only; nothing is written or deleted

        Returns:
            The executor's ImportResult (row indexes are positions in the
            re-imported list).
        """
        if self.executor is None:
            raise RuntimeError("QuarantineService.import_approved needs an executor")
        if item_ids is None:
            items = self.store.find(statuses=[QuarantineStatus.APPROVED, QuarantineStatus.FIXED])
        else:
            loaded = [self.store.get(i) for i in item_ids]
            items = [it for it in loaded if it is not None and it.status.importable]

        rows = [self.to_import_row(item, pos) for pos, item in enumerate(items)]
        result = self.executor.execute(
            rows,
            import_type,
            user_id=user_id,
            file_name="quarantine-import",
            dry_run=dry_run,
            batch_id=generate_batch_id(),
        )
        if not dry_run:
            removed = 0
            for pos, item in enumerate(items):
                if pos in result.succeeded_rows and item.id is not None:
                    self.store.delete(item.id)
                    removed += 1
            logger.info("removed %d of %d re-imported quarantine item(s)", removed, len(items))
        return result
