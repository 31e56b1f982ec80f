from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

import psycopg2
import psycopg2.extensions
from psycopg2.extras import Json, execute_values

from .store import (
    Document,
    DocumentStore,
    StoreError,
    StoreTransaction,
    TransactionConflictError,
    new_document_id,
)

"""PostgreSQL document store (psycopg2, one JSONB table).

All collections of all agencies live in `import_documents`; documents are
matched with `data @> %s::jsonb` so equality queries use the GIN index.
Bulk creation goes through psycopg2.extras.execute_values. Transactions take
`pg_advisory_xact_lock(hashtext(key))` for every phone / NRC lock key before
the caller's check-then-create runs, which serializes concurrent imports of
the same person; the locks are released by COMMIT / ROLLBACK.
"""

__all__ = [
    "PostgresDocumentStore",
    "SCHEMA_DDL",
]

TABLE = "import_documents"

SCHEMA_DDL = (
    f"""CREATE TABLE IF NOT EXISTS {TABLE} (
    agency_id text NOT NULL,
    collection text NOT NULL,
    id text NOT NULL,
    data jsonb NOT NULL,
    created_at timestamptz NOT NULL DEFAULT clock_timestamp(),
    PRIMARY KEY (agency_id, collection, id)
)""",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_data_gin ON {TABLE} USING gin (data jsonb_path_ops)",
)


def _increment_expression(deltas: Mapping[str, float]) -> tuple[str, list[Any]]:
    """Nested jsonb_set expression adding each delta to its field."""
    expr = "data"
    params: list[Any] = []
    for field_name, delta in deltas.items():
        expr = f"jsonb_set({expr}, %s, to_jsonb(COALESCE((data->>%s)::numeric, 0) + %s))"
        params.extend(["{" + field_name + "}", field_name, delta])
    return expr, params


class _PostgresTransaction(StoreTransaction):
    def __init__(self, cursor: Any, agency_id: str) -> None:
        self._cur = cursor
        self._agency_id = agency_id

    def query(self, collection: str, filters: Mapping[str, Any]) -> list[tuple[str, Document]]:
        self._cur.execute(
            f"SELECT id, data FROM {TABLE} WHERE agency_id = %s AND collection = %s AND data @> %s::jsonb "
            "ORDER BY created_at, id",
            (self._agency_id, collection, Json(dict(filters))),
        )
        return [(row[0], row[1]) for row in self._cur.fetchall()]

    def create(self, collection: str, doc: Mapping[str, Any]) -> str:
        doc_id = new_document_id()
        self._cur.execute(
            f"INSERT INTO {TABLE} (agency_id, collection, id, data) VALUES (%s, %s, %s, %s)",
            (self._agency_id, collection, doc_id, Json(dict(doc))),
        )
        return doc_id


class PostgresDocumentStore(DocumentStore):
    """Document store over a single psycopg2 connection.

    Each non-transactional call runs in its own short transaction and
    commits; failures roll back and surface as StoreError.
    """

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    @classmethod
    def connect(cls, dsn: str) -> PostgresDocumentStore:
        try:
            conn = psycopg2.connect(dsn)
        except psycopg2.Error as e:
            raise StoreError(f"cannot connect to database: {e}") from e
        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        cur = self._conn.cursor()
        try:
            yield cur
            self._conn.commit()
        except psycopg2.extensions.TransactionRollbackError as e:
            self._conn.rollback()
            raise TransactionConflictError(str(e)) from e
        except psycopg2.Error as e:
            self._conn.rollback()
            raise StoreError(str(e)) from e
        except BaseException:
            self._conn.rollback()
            raise
        finally:
            cur.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            for statement in SCHEMA_DDL:
                cur.execute(statement)

    def create(self, agency_id: str, collection: str, doc: Mapping[str, Any]) -> str:
        doc_id = new_document_id()
        with self._cursor() as cur:
            cur.execute(
                f"INSERT INTO {TABLE} (agency_id, collection, id, data) VALUES (%s, %s, %s, %s)",
                (agency_id, collection, doc_id, Json(dict(doc))),
            )
        return doc_id

    def create_many(self, agency_id: str, collection: str, docs: Sequence[Mapping[str, Any]]) -> list[str]:
        if not docs:
            return []
        ids = [new_document_id() for _ in docs]
        rows = [(agency_id, collection, doc_id, Json(dict(doc))) for doc_id, doc in zip(ids, docs, strict=True)]
        with self._cursor() as cur:
            execute_values(
                cur,
                f"INSERT INTO {TABLE} (agency_id, collection, id, data) VALUES %s",
                rows,
                page_size=1000,
            )
        return ids

    def get(self, agency_id: str, collection: str, doc_id: str) -> Document | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT data FROM {TABLE} WHERE agency_id = %s AND collection = %s AND id = %s",
                (agency_id, collection, doc_id),
            )
            row = cur.fetchone()
        return row[0] if row else None

    def query(
        self, agency_id: str, collection: str, filters: Mapping[str, Any] | None = None
    ) -> list[tuple[str, Document]]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT id, data FROM {TABLE} WHERE agency_id = %s AND collection = %s AND data @> %s::jsonb "
                "ORDER BY created_at, id",
                (agency_id, collection, Json(dict(filters or {}))),
            )
            rows = cur.fetchall()
        return [(row[0], row[1]) for row in rows]

    def update(self, agency_id: str, collection: str, doc_id: str, changes: Mapping[str, Any]) -> None:
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE {TABLE} SET data = data || %s::jsonb WHERE agency_id = %s AND collection = %s AND id = %s",
                (Json(dict(changes)), agency_id, collection, doc_id),
            )
            if cur.rowcount == 0:
                raise StoreError(f"{collection}/{doc_id} not found")

    def increment(self, agency_id: str, collection: str, doc_id: str, deltas: Mapping[str, float]) -> None:
        if not deltas:
            return
        expr, params = _increment_expression(deltas)
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE {TABLE} SET data = {expr} WHERE agency_id = %s AND collection = %s AND id = %s",
                (*params, agency_id, collection, doc_id),
            )
            if cur.rowcount == 0:
                raise StoreError(f"{collection}/{doc_id} not found")

    def delete(self, agency_id: str, collection: str, doc_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                f"DELETE FROM {TABLE} WHERE agency_id = %s AND collection = %s AND id = %s",
                (agency_id, collection, doc_id),
            )
            return cur.rowcount > 0

    @contextmanager
    def transaction(self, agency_id: str, lock_keys: Sequence[str] = ()) -> Iterator[StoreTransaction]:
        with self._cursor() as cur:
            # 固定順でロックしてデッドロックを避ける
            for key in sorted(set(lock_keys)):
                cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (f"{agency_id}:{key}",))
            yield _PostgresTransaction(cur, agency_id)
