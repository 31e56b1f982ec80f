from __future__ import annotations

from loan_import.db.repositories import IMPORT_LOGS
from loan_import.parsing.reader import ImportSource
from loan_import.services.pipeline import run_import

"""import_logs document shape: one document per non-dry-run batch."""

AUDIT_KEYS = {"batch_id", "user_id", "file_name", "file_size", "timestamp", "result", "errors"}
RESULT_KEYS = {"success", "failed", "skipped", "created", "linked"}


def test_audit_document_shape(mixed_csv, import_config, memory_store, existing_customer):
    text = mixed_csv.replace("0961112223", "0971234567")  # Mary collides with the seeded customer
    source = ImportSource(text=text, file_name="upload.csv", file_size=len(text))
    outcome = run_import(source, import_config, memory_store, user_id="officer-7", show_progress=False)

    ((_, doc),) = memory_store.query(import_config.agency_id, IMPORT_LOGS)
    assert set(doc) == AUDIT_KEYS
    assert set(doc["result"]) == RESULT_KEYS
    assert set(doc["result"]["created"]) == {"customers", "loans"}
    assert set(doc["result"]["linked"]) == {"customers", "loans"}
    assert doc["batch_id"] == outcome.batch_id
    assert doc["user_id"] == "officer-7"
    assert doc["file_size"] == len(text)
    assert doc["timestamp"].endswith("Z")
    assert doc["errors"]
    for err in doc["errors"]:
        assert set(err) == {"rowIndex", "error"}
