from __future__ import annotations

import copy
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

"""Document store interface and the in-memory implementation.

The pipeline needs a small document-oriented surface, scoped per agency and
collection: create with a generated id, get by id, equality query, partial
update, atomic numeric increment, delete, and a transaction that serializes
check-then-create on a set of lock keys. Uniqueness is never assumed to be
enforced by the store; callers query inside the transaction before writing.
"""

__all__ = [
    "Document",
    "DocumentStore",
    "InMemoryDocumentStore",
    "StoreError",
    "StoreTransaction",
    "TransactionConflictError",
    "new_document_id",
]

Document = dict[str, Any]


class StoreError(Exception):
    """Any store-level failure (connection, missing document, bad write)."""


class TransactionConflictError(StoreError):
    """A concurrent writer forced the transaction to roll back; safe to retry."""


def new_document_id() -> str:
    return uuid.uuid4().hex


def _matches(doc: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(doc.get(k) == v for k, v in filters.items())


class StoreTransaction(ABC):
    """Read / create handle valid only inside DocumentStore.transaction()."""

    @abstractmethod
    def query(self, collection: str, filters: Mapping[str, Any]) -> list[tuple[str, Document]]: ...

    @abstractmethod
    def create(self, collection: str, doc: Mapping[str, Any]) -> str: ...


class DocumentStore(ABC):
    @abstractmethod
    def create(self, agency_id: str, collection: str, doc: Mapping[str, Any]) -> str: ...

    @abstractmethod
    def create_many(self, agency_id: str, collection: str, docs: Sequence[Mapping[str, Any]]) -> list[str]: ...

    @abstractmethod
    def get(self, agency_id: str, collection: str, doc_id: str) -> Document | None: ...

    @abstractmethod
    def query(
        self, agency_id: str, collection: str, filters: Mapping[str, Any] | None = None
    ) -> list[tuple[str, Document]]:
        """Equality query, results in creation order."""

    @abstractmethod
    def update(self, agency_id: str, collection: str, doc_id: str, changes: Mapping[str, Any]) -> None: ...

    @abstractmethod
    def increment(self, agency_id: str, collection: str, doc_id: str, deltas: Mapping[str, float]) -> None:
        """Atomically add each delta to its numeric field (missing fields count as 0)."""

    @abstractmethod
    def delete(self, agency_id: str, collection: str, doc_id: str) -> bool: ...

    @abstractmethod
    def transaction(self, agency_id: str, lock_keys: Sequence[str] = ()) -> Any:
        """Context manager yielding a StoreTransaction.

        Transactions sharing a lock key are serialized; writes become visible
        only on successful exit and are discarded when the block raises.
        """


class _MemoryTransaction(StoreTransaction):
    def __init__(self, store: InMemoryDocumentStore, agency_id: str) -> None:
        self._store = store
        self._agency_id = agency_id
        self.staged: list[tuple[str, str, Document]] = []

    def query(self, collection: str, filters: Mapping[str, Any]) -> list[tuple[str, Document]]:
        found = self._store.query(self._agency_id, collection, filters)
        found.extend(
            (doc_id, copy.deepcopy(doc))
            for coll, doc_id, doc in self.staged
            if coll == collection and _matches(doc, filters)
        )
        return found

    def create(self, collection: str, doc: Mapping[str, Any]) -> str:
        doc_id = new_document_id()
        self.staged.append((collection, doc_id, copy.deepcopy(dict(doc))))
        return doc_id


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe dict-backed store.

    One re-entrant lock guards every operation and is held for the whole of a
    transaction, so check-then-create is serialized across threads.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._collections: dict[tuple[str, str], dict[str, Document]] = {}

    def _bucket(self, agency_id: str, collection: str) -> dict[str, Document]:
        return self._collections.setdefault((agency_id, collection), {})

    def create(self, agency_id: str, collection: str, doc: Mapping[str, Any]) -> str:
        with self._lock:
            doc_id = new_document_id()
            self._bucket(agency_id, collection)[doc_id] = copy.deepcopy(dict(doc))
            return doc_id

    def create_many(self, agency_id: str, collection: str, docs: Sequence[Mapping[str, Any]]) -> list[str]:
        with self._lock:
            return [self.create(agency_id, collection, d) for d in docs]

    def get(self, agency_id: str, collection: str, doc_id: str) -> Document | None:
        with self._lock:
            doc = self._bucket(agency_id, collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def query(
        self, agency_id: str, collection: str, filters: Mapping[str, Any] | None = None
    ) -> list[tuple[str, Document]]:
        with self._lock:
            return [
                (doc_id, copy.deepcopy(doc))
                for doc_id, doc in self._bucket(agency_id, collection).items()
                if _matches(doc, filters)
            ]

    def update(self, agency_id: str, collection: str, doc_id: str, changes: Mapping[str, Any]) -> None:
        with self._lock:
            bucket = self._bucket(agency_id, collection)
            if doc_id not in bucket:
                raise StoreError(f"{collection}/{doc_id} not found")
            bucket[doc_id].update(copy.deepcopy(dict(changes)))

    def increment(self, agency_id: str, collection: str, doc_id: str, deltas: Mapping[str, float]) -> None:
        with self._lock:
            bucket = self._bucket(agency_id, collection)
            if doc_id not in bucket:
                raise StoreError(f"{collection}/{doc_id} not found")
            doc = bucket[doc_id]
            for field_name, delta in deltas.items():
                doc[field_name] = (doc.get(field_name) or 0) + delta

    def delete(self, agency_id: str, collection: str, doc_id: str) -> bool:
        with self._lock:
            return self._bucket(agency_id, collection).pop(doc_id, None) is not None

    @contextmanager
    def transaction(self, agency_id: str, lock_keys: Sequence[str] = ()) -> Iterator[StoreTransaction]:
        with self._lock:
            tx = _MemoryTransaction(self, agency_id)
            yield tx
            for collection, doc_id, doc in tx.staged:
                self._bucket(agency_id, collection)[doc_id] = doc

    def count(self, agency_id: str, collection: str) -> int:
        with self._lock:
            return len(self._bucket(agency_id, collection))
