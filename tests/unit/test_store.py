from __future__ import annotations

import threading

import pytest

from loan_import.db.store import InMemoryDocumentStore, StoreError


def test_create_get_query_update_delete(memory_store):
    doc_id = memory_store.create("a1", "customers", {"phone": "+2601", "n": 1})
    assert memory_store.get("a1", "customers", doc_id) == {"phone": "+2601", "n": 1}
    memory_store.update("a1", "customers", doc_id, {"n": 2})
    assert memory_store.query("a1", "customers", {"phone": "+2601"}) == [(doc_id, {"phone": "+2601", "n": 2})]
    assert memory_store.delete("a1", "customers", doc_id) is True
    assert memory_store.delete("a1", "customers", doc_id) is False
    assert memory_store.get("a1", "customers", doc_id) is None


def test_agencies_are_isolated(memory_store):
    memory_store.create("a1", "customers", {"phone": "+2601"})
    assert memory_store.query("a2", "customers", {"phone": "+2601"}) == []
    assert memory_store.count("a1", "customers") == 1


def test_returned_documents_are_copies(memory_store):
    doc_id = memory_store.create("a1", "c", {"tags": ["x"]})
    memory_store.get("a1", "c", doc_id)["tags"].append("y")
    assert memory_store.get("a1", "c", doc_id) == {"tags": ["x"]}


def test_update_and_increment_of_missing_document(memory_store):
    with pytest.raises(StoreError):
        memory_store.update("a1", "c", "nope", {"x": 1})
    with pytest.raises(StoreError):
        memory_store.increment("a1", "c", "nope", {"x": 1})


def test_increment_treats_missing_fields_as_zero(memory_store):
    doc_id = memory_store.create("a1", "customers", {"total_loans": 2})
    memory_store.increment("a1", "customers", doc_id, {"total_loans": 1, "total_borrowed": 250.0})
    doc = memory_store.get("a1", "customers", doc_id)
    assert doc["total_loans"] == 3
    assert doc["total_borrowed"] == 250.0


def test_transaction_sees_its_own_staged_writes(memory_store):
    with memory_store.transaction("a1", ["phone:+2601"]) as tx:
        tx.create("customers", {"phone": "+2601"})
        assert len(tx.query("customers", {"phone": "+2601"})) == 1
        # not visible outside until commit
        assert memory_store.count("a1", "customers") == 0
    assert memory_store.count("a1", "customers") == 1


def test_transaction_discards_writes_when_block_raises(memory_store):
    with pytest.raises(RuntimeError):
        with memory_store.transaction("a1") as tx:
            tx.create("customers", {"phone": "+2601"})
            raise RuntimeError("abort")
    assert memory_store.count("a1", "customers") == 0


def test_concurrent_check_then_create_is_serialized():
    store = InMemoryDocumentStore()
    created = []

    def worker():
        with store.transaction("a1", ["phone:+2601"]) as tx:
            if not tx.query("customers", {"phone": "+2601"}):
                created.append(tx.create("customers", {"phone": "+2601"}))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(created) == 1
    assert store.count("a1", "customers") == 1
