from __future__ import annotations

import psycopg2
import psycopg2.extensions
import pytest

from loan_import.db.store import StoreError, TransactionConflictError


class DummyCursor:
    def __init__(self, conn: DummyConnection) -> None:
        self.conn = conn
        self.rowcount = 1
        self.closed = False

    def execute(self, sql, params=None):
        self.conn.executed.append((sql, params))
        if self.conn.fail_with is not None:
            raise self.conn.fail_with
        self.rowcount = self.conn.rowcount

    def fetchall(self):
        return self.conn.rows

    def fetchone(self):
        return self.conn.rows[0] if self.conn.rows else None

    def close(self):
        self.closed = True


class DummyConnection:
    def __init__(self) -> None:
        self.executed: list[tuple[str, object]] = []
        self.rows: list[tuple] = []
        self.rowcount = 1
        self.commits = 0
        self.rollbacks = 0
        self.fail_with: Exception | None = None

    def cursor(self):
        return DummyCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        pass


@pytest.fixture()
def conn() -> DummyConnection:
    return DummyConnection()


@pytest.fixture()
def store(conn):
    from loan_import.db.postgres_store import PostgresDocumentStore
    return PostgresDocumentStore(conn)


@pytest.fixture(autouse=True)
def patch_execute_values(monkeypatch):
    # execute_values はカーソルに直接依存するので差し替える
    import loan_import.db.postgres_store as ps
    calls = []

    def fake_execute_values(cursor, sql, rows, page_size=1000, template=None):
        calls.append((sql, list(rows), page_size))

    monkeypatch.setattr(ps, "execute_values", fake_execute_values)
    return calls


def test_ensure_schema_runs_ddl(store, conn):
    store.ensure_schema()
    statements = [sql for sql, _ in conn.executed]
    assert any(s.startswith("CREATE TABLE IF NOT EXISTS import_documents") for s in statements)
    assert any("USING gin" in s for s in statements)
    assert conn.commits == 1


def test_create_many_uses_execute_values(store, conn, patch_execute_values):
    ids = store.create_many("agency-1", "import_quarantine", [{"a": 1}, {"a": 2}])
    assert len(ids) == 2
    (sql, rows, page_size) = patch_execute_values[0]
    assert "INSERT INTO import_documents" in sql
    assert [r[:3] for r in rows] == [("agency-1", "import_quarantine", ids[0]), ("agency-1", "import_quarantine", ids[1])]
    assert page_size == 1000
    assert store.create_many("agency-1", "x", []) == []


def test_query_filters_with_jsonb_containment(store, conn):
    conn.rows = [("id-1", {"phone": "+260971234567"})]
    found = store.query("agency-1", "customers", {"phone": "+260971234567"})
    assert found == [("id-1", {"phone": "+260971234567"})]
    sql, params = conn.executed[-1]
    assert "data @> %s::jsonb" in sql
    assert params[0] == "agency-1"
    assert params[2].adapted == {"phone": "+260971234567"}


def test_get_missing_returns_none(store, conn):
    conn.rows = []
    assert store.get("agency-1", "customers", "nope") is None


def test_update_of_missing_document_raises(store, conn):
    conn.rowcount = 0
    with pytest.raises(StoreError):
        store.update("agency-1", "customers", "nope", {"x": 1})
    assert conn.rollbacks == 1


def test_increment_builds_nested_jsonb_set(store, conn):
    store.increment("agency-1", "customers", "c1", {"total_loans": 1, "total_borrowed": 500.0})
    sql, params = conn.executed[-1]
    assert sql.count("jsonb_set(") == 2
    assert list(params[:3]) == ["{total_loans}", "total_loans", 1]
    assert list(params[-3:]) == ["agency-1", "customers", "c1"]


def test_delete_reports_whether_a_row_went(store, conn):
    assert store.delete("agency-1", "customers", "c1") is True
    conn.rowcount = 0
    assert store.delete("agency-1", "customers", "c1") is False


def test_transaction_takes_sorted_advisory_locks(store, conn):
    conn.rows = []
    with store.transaction("agency-1", ["phone:+2609", "nrc:1", "phone:+2609"]) as tx:
        assert tx.query("customers", {"phone": "+2609"}) == []
        tx.create("customers", {"phone": "+2609"})
    lock_params = [params for sql, params in conn.executed if "pg_advisory_xact_lock" in sql]
    assert lock_params == [("agency-1:nrc:1",), ("agency-1:phone:+2609",)]
    assert conn.commits == 1


def test_serialization_failure_becomes_transaction_conflict(store, conn):
    conn.fail_with = psycopg2.extensions.TransactionRollbackError("could not serialize access")
    with pytest.raises(TransactionConflictError):
        with store.transaction("agency-1", ["phone:+2609"]):
            pass
    assert conn.rollbacks == 1


def test_other_driver_errors_become_store_error(store, conn):
    conn.fail_with = psycopg2.OperationalError("server closed the connection")
    with pytest.raises(StoreError) as excinfo:
        store.create("agency-1", "loans", {"amount": 1})
    assert not isinstance(excinfo.value, TransactionConflictError)
    assert conn.rollbacks == 1


def test_errors_inside_transaction_body_roll_back(store, conn):
    with pytest.raises(RuntimeError):
        with store.transaction("agency-1"):
            raise RuntimeError("caller failed")
    assert conn.rollbacks == 1
    assert conn.commits == 0


def test_connect_failure(monkeypatch):
    from loan_import.db.postgres_store import PostgresDocumentStore

    def refuse(dsn):
        raise psycopg2.OperationalError("connection refused")

    monkeypatch.setattr(psycopg2, "connect", refuse)
    with pytest.raises(StoreError, match="cannot connect to database"):
        PostgresDocumentStore.connect("postgresql://localhost/none")
