from __future__ import annotations

import logging
import random
import re
import string
import time
from collections.abc import Callable, Sequence
from typing import TypeVar

from ..db.repositories import CustomerStore, DuplicateCustomerError, ImportLogStore, LoanStore
from ..db.store import StoreError, TransactionConflictError
from ..models.audit_log import AuditLogRecord
from ..models.config_models import FIELD_ATTRIBUTES, LoanDefaults
from ..models.entities import CustomerRecord, LoanRecord
from ..models.enums import ImportType, LoanStatus, RowAction, RowStatus, SectionType
from ..models.import_row import ImportPayload, ImportRow
from ..models.processing_result import ImportResult, ImportResultBuilder
from .linking import CustomerKeyMap, resolve_loan_customer
from .progress import RowProgressTracker

"""Bulk import executor.

Creates or links customers and loans for one batch of ImportRows. Customer
rows run before loan rows so loans can attach to customers created earlier in
the same batch. Every row is isolated: a validation error, duplicate or store
conflict is recorded against its row index and processing moves on.

Dry runs go through the same classification and duplicate checks (read-only
store queries plus the in-batch key map) but never write, and use placeholder
customer ids.
"""

__all__ = [
    "BulkImportExecutor",
    "RowValidationError",
    "generate_batch_id",
    "parse_number",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BATCH_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_NON_NUMERIC = re.compile(r"[^\d.\-]")
_TRUTHY = frozenset({"yes", "y", "true", "1"})


class RowValidationError(Exception):
    """The row lacks what the requested action needs."""


def generate_batch_id() -> str:
    """`import-<epoch ms>-<9 random base36 chars>`, shared by a run and its quarantine rows."""
    suffix = "".join(random.choices(_BATCH_SUFFIX_ALPHABET, k=9))
    return f"import-{int(time.time() * 1000)}-{suffix}"


def parse_number(text: str | None) -> float | None:
    """Lenient numeric parse: "K 5,000" -> 5000.0, "15%" -> 15.0; garbage -> None."""
    if text is None:
        return None
    cleaned = _NON_NUMERIC.sub("", str(text))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


class BulkImportExecutor:
    """Transactional create-or-link over one batch.

    Args:
        customers: agency-scoped customer repository
        loans: agency-scoped loan repository
        logs: audit log repository (None disables the audit record)
        loan_defaults: rate / duration / type used when a row leaves them blank
        required_customer_fields: fields a customer row must carry to be created
    """

    def __init__(
        self,
        customers: CustomerStore,
        loans: LoanStore,
        logs: ImportLogStore | None = None,
        *,
        loan_defaults: LoanDefaults | None = None,
        required_customer_fields: Sequence[str] = ("fullName", "phone"),
    ) -> None:
        self.customers = customers
        self.loans = loans
        self.logs = logs
        self.loan_defaults = loan_defaults or LoanDefaults()
        self.required_customer_fields = tuple(required_customer_fields)

    # ------------------------------------------------------------------ public

    def execute(
        self,
        rows: Sequence[ImportRow],
        import_type: ImportType,
        *,
        user_id: str,
        file_name: str = "",
        file_size: int = 0,
        dry_run: bool = False,
        batch_id: str | None = None,
        progress: RowProgressTracker | None = None,
    ) -> ImportResult:
        """Import a batch.

        Args:
            rows: ImportRows in file order
            import_type: customers, loans or mixed
            user_id: recorded as creator / loan officer and in the audit log
            file_name: uploaded file name for the audit log
            file_size: uploaded file size in bytes for the audit log
            dry_run: classify and count without persisting anything
            batch_id: reuse an id (pipeline runs share it with quarantine rows)
            progress: optional progress bar advanced once per row

        Returns:
            Frozen ImportResult for the batch
        """
        builder = ImportResultBuilder(batch_id or generate_batch_id(), dry_run=dry_run)
        key_map = CustomerKeyMap()

        customer_rows: list[ImportRow] = []
        loan_rows: list[ImportRow] = []
        for row in rows:
            if row.action is RowAction.SKIP:
                error_type = "SKIPPED" if row.data.section_type.importable else "UNSUPPORTED_SECTION"
                builder.row_skipped(row.row_index, "; ".join(row.errors), error_type)
                self._advance(progress, True)
            elif row.status is RowStatus.INVALID:
                builder.row_failed(row.row_index, "; ".join(row.errors) or "Row marked invalid", row.error_type)
                self._advance(progress, False)
            else:
                kind = self._classify(row.data, import_type)
                if kind == "customer":
                    customer_rows.append(row)
                elif kind == "loan":
                    loan_rows.append(row)
                else:
                    builder.row_failed(row.row_index, "No importable customer or loan fields detected")
                    self._advance(progress, False)

        logger.info(
            "batch %s: %d customer row(s), %d loan row(s)%s",
            builder.batch_id,
            len(customer_rows),
            len(loan_rows),
            " [dry run]" if dry_run else "",
        )

        if progress is not None:
            progress.set_phase("customers")
        for row in customer_rows:
            ok = self._guarded(row, builder, lambda r: self._import_customer(r, builder, key_map, user_id, dry_run))
            self._advance(progress, ok)

        if progress is not None:
            progress.set_phase("loans")
        for row in loan_rows:
            ok = self._guarded(
                row,
                builder,
                lambda r: self._import_loan(r, builder, key_map, import_type, user_id, dry_run),
            )
            self._advance(progress, ok)

        result = builder.build()
        logger.info(
            "batch %s done: success=%d failed=%d skipped=%d created=%s linked=%s orphaned=%d",
            result.batch_id,
            result.success,
            result.failed,
            result.skipped,
            result.created.as_dict(),
            result.linked.as_dict(),
            result.orphaned,
        )
        if not dry_run:
            self._write_audit_log(result, user_id=user_id, file_name=file_name, file_size=file_size)
        return result

    # ----------------------------------------------------------------- helpers

    @staticmethod
    def _advance(progress: RowProgressTracker | None, ok: bool) -> None:
        if progress is not None:
            progress.advance(success=ok)

    @staticmethod
    def _classify(data: ImportPayload, import_type: ImportType) -> str | None:
        if not data.has_customer_data and not data.has_loan_data:
            return None
        if import_type is ImportType.CUSTOMERS:
            return "customer"
        if import_type is ImportType.LOANS:
            return "loan"
        if data.section_type is SectionType.CUSTOMERS:
            return "customer"
        if data.section_type is SectionType.LOANS or data.has_loan_data:
            return "loan"
        return "customer"

    def _guarded(self, row: ImportRow, builder: ImportResultBuilder, handler: Callable[[ImportRow], None]) -> bool:
        """Run one row; any row-level failure is recorded, never raised."""
        try:
            handler(row)
            return True
        except RowValidationError as e:
            builder.row_failed(row.row_index, str(e), "VALIDATION_ERROR")
        except DuplicateCustomerError as e:
            logger.warning("row %d: %s", row.row_index, e)
            builder.row_failed(row.row_index, str(e), "DUPLICATE_ERROR")
        except TransactionConflictError as e:
            logger.warning("row %d: transaction failed after retry: %s", row.row_index, e)
            builder.row_failed(row.row_index, f"Transaction conflict: {e}", "TRANSACTION_ERROR")
        except StoreError as e:
            logger.error("row %d: store error: %s", row.row_index, e)
            builder.row_failed(row.row_index, f"Store error: {e}", "STORE_ERROR")
        row.status = RowStatus.INVALID
        return False

    @staticmethod
    def _with_retry(row_index: int, write: Callable[[], T]) -> T:
        try:
            return write()
        except TransactionConflictError as e:
            logger.warning("row %d: transaction conflict (%s), retrying once", row_index, e)
            return write()

    def _missing_customer_fields(self, data: ImportPayload) -> list[str]:
        return [f for f in self.required_customer_fields if not getattr(data, FIELD_ATTRIBUTES[f], None)]

    def _customer_record(self, data: ImportPayload, user_id: str) -> CustomerRecord:
        missing = self._missing_customer_fields(data)
        if missing:
            raise RowValidationError(f"Missing required fields: {', '.join(missing)}")
        return CustomerRecord(
            full_name=data.full_name or "",
            phone=data.phone,
            nrc=data.nrc,
            email=data.email,
            address=data.address,
            employment_status=data.employment_status,
            monthly_income=parse_number(data.monthly_income),
            employer=data.employer,
            job_title=data.job_title,
            agency_id=self.customers.agency_id,
            created_by=user_id,
        )

    def _create_customer(self, record: CustomerRecord, key_map: CustomerKeyMap, dry_run: bool, row_index: int) -> str:
        if dry_run:
            for field_name, value in (("phone", record.phone), ("nrc", record.nrc)):
                if not value:
                    continue
                hit = key_map.lookup(value if field_name == "phone" else None, value if field_name == "nrc" else None)
                if hit:
                    raise DuplicateCustomerError(field_name, value, hit)
            found = self.customers.find_duplicate(record.phone, record.nrc)
            if found is not None:
                field_name, existing = found
                raise DuplicateCustomerError(field_name, getattr(record, field_name) or "", existing.id or "")
            customer_id = f"dry-run-customer-{row_index}"
        else:
            created = self._with_retry(row_index, lambda: self.customers.create_unique(record))
            customer_id = created.id or ""
        key_map.register(record.phone, record.nrc, customer_id)
        return customer_id

    def _loan_terms(self, data: ImportPayload) -> tuple[float, float, int, str]:
        if not data.amount:
            raise RowValidationError("Missing loan amount")
        amount = parse_number(data.amount)
        if amount is None or amount <= 0:
            raise RowValidationError(f"Invalid loan amount: {data.amount}")

        rate = self.loan_defaults.interest_rate
        if data.interest_rate:
            parsed_rate = parse_number(data.interest_rate)
            if parsed_rate is None or parsed_rate < 0:
                raise RowValidationError(f"Invalid interest rate: {data.interest_rate}")
            rate = parsed_rate

        duration = self.loan_defaults.duration_months
        if data.duration_months:
            parsed_duration = parse_number(data.duration_months)
            if parsed_duration is None or parsed_duration <= 0:
                raise RowValidationError(f"Invalid duration: {data.duration_months}")
            duration = int(round(parsed_duration))

        return amount, rate, duration, data.loan_type or self.loan_defaults.loan_type

    def _bump_counters(self, customer_id: str, amount: float) -> None:
        try:
            self.customers.increment_counters(customer_id, amount=amount)
        except StoreError as e:
            logger.warning("failed to update counters for customer %s: %s", customer_id, e)

    # -------------------------------------------------------------------- rows

    def _import_customer(
        self,
        row: ImportRow,
        builder: ImportResultBuilder,
        key_map: CustomerKeyMap,
        user_id: str,
        dry_run: bool,
    ) -> None:
        if row.action is RowAction.LINK:
            if not row.customer_id:
                raise RowValidationError("Customer ID is required for linking")
            builder.customer_linked(row.row_index)
            return
        record = self._customer_record(row.data, user_id)
        customer_id = self._create_customer(record, key_map, dry_run, row.row_index)
        row.customer_id = customer_id
        builder.customer_created(row.row_index, customer_id)

    def _import_loan(
        self,
        row: ImportRow,
        builder: ImportResultBuilder,
        key_map: CustomerKeyMap,
        import_type: ImportType,
        user_id: str,
        dry_run: bool,
    ) -> None:
        data = row.data
        amount, rate, duration, loan_type = self._loan_terms(data)

        if row.action is RowAction.LINK:
            if not row.customer_id:
                raise RowValidationError("Customer ID is required for linking")
            customer_id: str | None = row.customer_id
        else:
            customer_id = resolve_loan_customer(row, key_map, self.customers).customer_id
            if customer_id is None and import_type.handles_loans and not self._missing_customer_fields(data):
                record = self._customer_record(data, user_id)
                customer_id = self._create_customer(record, key_map, dry_run, row.row_index)
                builder.customer_created(row.row_index, customer_id, counts_as_row=False)

        loan = LoanRecord(
            amount=amount,
            interest_rate=rate,
            duration_months=duration,
            loan_type=loan_type,
            customer_id=customer_id,
            status=LoanStatus.DRAFT if customer_id else LoanStatus.REQUIRES_MAPPING,
            officer_id=user_id,
            agency_id=self.loans.agency_id,
            borrower_name=data.full_name,
            borrower_id=data.borrower_id,
            national_id=data.nrc,
            disbursement_date=data.disbursement_date,
            collateral_included=(data.collateral or "").strip().lower() in _TRUTHY,
            import_batch_id=builder.batch_id,
        )
        if not dry_run:
            self._with_retry(row.row_index, lambda: self.loans.create(loan))
            if customer_id:
                self._bump_counters(customer_id, amount)
        row.customer_id = customer_id

        if row.action is RowAction.LINK:
            builder.loan_linked(row.row_index)
        else:
            if customer_id is None:
                logger.warning("row %d: no customer resolved, loan stored as requires_mapping", row.row_index)
            builder.loan_created(row.row_index, orphan=customer_id is None)

    def _write_audit_log(self, result: ImportResult, *, user_id: str, file_name: str, file_size: int) -> None:
        if self.logs is None:
            return
        record = AuditLogRecord.from_result(result, user_id=user_id, file_name=file_name, file_size=file_size)
        try:
            self.logs.write(record)
        except Exception as e:  # audit failures never fail the import
            logger.warning("failed to write audit log for batch %s: %s", result.batch_id, e)
