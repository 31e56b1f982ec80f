# Shared pytest fixtures
from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from loan_import.config.loader import build_config
from loan_import.db.repositories import CustomerStore, ImportLogStore, LoanStore, QuarantineStore
from loan_import.db.store import InMemoryDocumentStore
from loan_import.logging.init import reset_logging
from loan_import.models.config_models import ImportConfig
from loan_import.models.entities import CustomerRecord

AGENCY = "agency-1"


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    # ホスト環境の DB / API キー設定をテストに持ち込まない
    for name in ("DATABASE_URL", "PGDSN", "PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE",
                 "LLM_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    yield
    reset_logging()


@pytest.fixture()
def sample_config_yaml() -> str:
    return """agency_id: agency-1
quarantine:
  enabled: true
  required_fields: [fullName, phone]
  min_confidence: 0.6
  auto_approve_confidence: 0.7
phone:
  country_code: "260"
cleaning:
  use_ai: false
orphan_matching:
  fuzzy_threshold: 0.9
loan_defaults:
  interest_rate: 15
  duration_months: 12
  loan_type: Personal Loan
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def import_config() -> ImportConfig:
    return build_config({"agency_id": AGENCY})


@pytest.fixture()
def memory_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def customers(memory_store) -> CustomerStore:
    return CustomerStore(memory_store, AGENCY)


@pytest.fixture()
def loans(memory_store) -> LoanStore:
    return LoanStore(memory_store, AGENCY)


@pytest.fixture()
def quarantine_store(memory_store) -> QuarantineStore:
    return QuarantineStore(memory_store, AGENCY)


@pytest.fixture()
def import_logs(memory_store) -> ImportLogStore:
    return ImportLogStore(memory_store, AGENCY)


@pytest.fixture()
def existing_customer(customers) -> CustomerRecord:
    return customers.create_unique(
        CustomerRecord(
            full_name="Masheda Beleshi",
            phone="+260971234567",
            nrc="123456/10/1",
            agency_id=AGENCY,
            created_by="seed",
        )
    )


@pytest.fixture()
def mixed_csv() -> str:
    return (
        "=== BORROWERS ===\n"
        "Full Name,Phone,Email,NRC\n"
        "john banda,097-654-3210,john@example.com,234567/11/1\n"
        "Mary Phiri,0961112223,,345678/12/1\n"
        "\n"
        "=== LOANS ===\n"
        "Borrower Name,Phone,Amount,Interest Rate,Duration\n"
        "John Banda,0976543210,5000,10,6\n"
        "Mary Phiri,0961112223,\"K 2,500\",,\n"
    )
