from __future__ import annotations

from collections.abc import Iterable, Sequence

from ..models.audit_log import AuditLogRecord
from ..models.entities import CustomerRecord, LoanRecord
from ..models.enums import LoanStatus, QuarantineStatus
from ..models.quarantined_row import QuarantinedRow
from .store import DocumentStore, StoreError

"""Agency-scoped repositories over a DocumentStore.

Each repository binds one store to one agency and one collection and speaks
in model objects instead of raw documents. CustomerStore.create_unique is the
only way a customer is written: it checks phone and NRC and creates inside one
store transaction locked on those keys.
"""

__all__ = [
    "CUSTOMERS",
    "CustomerStore",
    "DuplicateCustomerError",
    "IMPORT_LOGS",
    "ImportLogStore",
    "LOANS",
    "LoanStore",
    "QUARANTINE",
    "QuarantineStore",
    "customer_lock_keys",
]

CUSTOMERS = "customers"
LOANS = "loans"
QUARANTINE = "import_quarantine"
IMPORT_LOGS = "import_logs"


class DuplicateCustomerError(Exception):
    """A customer with the same phone or NRC already exists in the agency."""

    def __init__(self, field_name: str, value: str, existing_id: str) -> None:
        self.field_name = field_name
        self.value = value
        self.existing_id = existing_id
        label = "phone" if field_name == "phone" else "NRC"
        super().__init__(f"Duplicate customer: {label} {value} already exists (customer {existing_id})")


def customer_lock_keys(phone: str | None, nrc: str | None) -> list[str]:
    keys = []
    if phone:
        keys.append(f"phone:{phone}")
    if nrc:
        keys.append(f"nrc:{nrc}")
    return keys


class CustomerStore:
    def __init__(self, store: DocumentStore, agency_id: str) -> None:
        self.store = store
        self.agency_id = agency_id

    def get(self, customer_id: str) -> CustomerRecord | None:
        doc = self.store.get(self.agency_id, CUSTOMERS, customer_id)
        return CustomerRecord.from_document(customer_id, doc) if doc is not None else None

    def all(self) -> list[CustomerRecord]:
        return [CustomerRecord.from_document(i, d) for i, d in self.store.query(self.agency_id, CUSTOMERS)]

    def _find(self, field_name: str, value: str) -> CustomerRecord | None:
        found = self.store.query(self.agency_id, CUSTOMERS, {field_name: value})
        if not found:
            return None
        doc_id, doc = found[0]
        return CustomerRecord.from_document(doc_id, doc)

    def find_by_phone(self, phone: str) -> CustomerRecord | None:
        return self._find("phone", phone)

    def find_by_nrc(self, nrc: str) -> CustomerRecord | None:
        return self._find("nrc", nrc)

    def find_duplicate(self, phone: str | None, nrc: str | None) -> tuple[str, CustomerRecord] | None:
        """Read-only duplicate probe (used by dry runs and loan linking)."""
        if phone:
            hit = self.find_by_phone(phone)
            if hit is not None:
                return "phone", hit
        if nrc:
            hit = self.find_by_nrc(nrc)
            if hit is not None:
                return "nrc", hit
        return None

    def create_unique(self, record: CustomerRecord) -> CustomerRecord:
        """Check phone / NRC uniqueness and create in one transaction.

        Raises:
            DuplicateCustomerError: phone or NRC already taken in this agency
            TransactionConflictError: the store rolled the transaction back
        """
        lock_keys = customer_lock_keys(record.phone, record.nrc)
        with self.store.transaction(self.agency_id, lock_keys) as tx:
            for field_name, value in (("phone", record.phone), ("nrc", record.nrc)):
                if not value:
                    continue
                existing = tx.query(CUSTOMERS, {field_name: value})
                if existing:
                    raise DuplicateCustomerError(field_name, value, existing[0][0])
            doc_id = tx.create(CUSTOMERS, record.to_document())
        return CustomerRecord.from_document(doc_id, record.to_document())

    def increment_counters(self, customer_id: str, *, amount: float, loans: int = 1) -> None:
        # new loans are draft, so active_loans is left alone
        self.store.increment(
            self.agency_id,
            CUSTOMERS,
            customer_id,
            {"total_loans": loans, "total_borrowed": amount},
        )


class LoanStore:
    def __init__(self, store: DocumentStore, agency_id: str) -> None:
        self.store = store
        self.agency_id = agency_id

    def create(self, record: LoanRecord) -> LoanRecord:
        doc_id = self.store.create(self.agency_id, LOANS, record.to_document())
        return LoanRecord.from_document(doc_id, record.to_document())

    def get(self, loan_id: str) -> LoanRecord | None:
        doc = self.store.get(self.agency_id, LOANS, loan_id)
        return LoanRecord.from_document(loan_id, doc) if doc is not None else None

    def all(self) -> list[LoanRecord]:
        return [LoanRecord.from_document(i, d) for i, d in self.store.query(self.agency_id, LOANS)]

    def for_batch(self, batch_id: str) -> list[LoanRecord]:
        found = self.store.query(self.agency_id, LOANS, {"import_batch_id": batch_id})
        return [LoanRecord.from_document(i, d) for i, d in found]

    def orphans(self) -> list[LoanRecord]:
        found = self.store.query(self.agency_id, LOANS, {"status": LoanStatus.REQUIRES_MAPPING.value})
        return [LoanRecord.from_document(i, d) for i, d in found]

    def assign_customer(self, loan_id: str, customer_id: str) -> None:
        self.store.update(
            self.agency_id,
            LOANS,
            loan_id,
            {"customer_id": customer_id, "status": LoanStatus.DRAFT.value},
        )


class QuarantineStore:
    def __init__(self, store: DocumentStore, agency_id: str) -> None:
        self.store = store
        self.agency_id = agency_id

    def save_many(self, items: Sequence[QuarantinedRow]) -> list[QuarantinedRow]:
        """One bulk write for a whole batch of quarantined rows."""
        ids = self.store.create_many(self.agency_id, QUARANTINE, [i.to_document() for i in items])
        return [item.with_updates(id=doc_id, updated_at=item.updated_at) for item, doc_id in zip(items, ids, strict=True)]

    def get(self, item_id: str) -> QuarantinedRow | None:
        doc = self.store.get(self.agency_id, QUARANTINE, item_id)
        return QuarantinedRow.from_document(item_id, doc) if doc is not None else None

    def find(
        self, *, statuses: Iterable[QuarantineStatus] | None = None, batch_id: str | None = None
    ) -> list[QuarantinedRow]:
        filters = {"import_batch_id": batch_id} if batch_id else None
        wanted = {s.value for s in statuses} if statuses is not None else None
        items = [
            QuarantinedRow.from_document(i, d)
            for i, d in self.store.query(self.agency_id, QUARANTINE, filters)
            if wanted is None or d.get("status") in wanted
        ]
        return sorted(items, key=lambda q: (q.created_at, q.row_index))

    def save(self, item: QuarantinedRow) -> None:
        if item.id is None:
            raise StoreError("quarantine item has no id")
        self.store.update(self.agency_id, QUARANTINE, item.id, item.to_document())

    def delete(self, item_id: str) -> bool:
        return self.store.delete(self.agency_id, QUARANTINE, item_id)


class ImportLogStore:
    def __init__(self, store: DocumentStore, agency_id: str) -> None:
        self.store = store
        self.agency_id = agency_id

    def write(self, record: AuditLogRecord) -> str:
        return self.store.create(self.agency_id, IMPORT_LOGS, record.to_document())

    def history(self, limit: int = 20) -> list[AuditLogRecord]:
        """Most recent audit records first."""
        docs = [d for _, d in self.store.query(self.agency_id, IMPORT_LOGS)]
        docs.sort(key=lambda d: str(d.get("timestamp") or ""), reverse=True)
        return [AuditLogRecord.from_document(d) for d in docs[:limit]]
