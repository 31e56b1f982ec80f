from __future__ import annotations

from pathlib import Path

from loan_import.logging.error_log import ErrorLogBuffer
from loan_import.models.enums import ImportType, LoanStatus, SectionType
from loan_import.parsing.reader import ImportSource
from loan_import.services.pipeline import import_file, run_import

"""End-to-end import of a borrowers + loans upload into the in-memory store."""


def _source(text: str, name: str = "upload.csv") -> ImportSource:
    return ImportSource(text=text, file_name=name, file_size=len(text.encode("utf-8")))


def test_mixed_file_creates_and_links_everything(mixed_csv, import_config, memory_store, customers, loans, import_logs):
    outcome = run_import(_source(mixed_csv), import_config, memory_store, user_id="officer-1", show_progress=False)

    assert outcome.import_type is ImportType.MIXED
    assert outcome.fully_imported is True
    result = outcome.result
    assert result.created.as_dict() == {"customers": 2, "loans": 2}
    assert result.orphaned == 0
    assert result.failed == 0

    john = customers.find_by_phone("+260976543210")
    mary = customers.find_by_phone("+260961112223")
    assert john.full_name == "John Banda"
    assert john.email == "john@example.com"
    assert john.created_by == "officer-1"
    assert mary.nrc == "345678/12/1"

    by_customer = {loan.customer_id: loan for loan in loans.for_batch(outcome.batch_id)}
    assert by_customer[john.id].amount == 5000.0
    assert by_customer[john.id].interest_rate == 10.0
    assert by_customer[john.id].duration_months == 6
    assert by_customer[mary.id].amount == 2500.0
    assert by_customer[mary.id].interest_rate == 15.0
    assert all(loan.status is LoanStatus.DRAFT for loan in by_customer.values())

    assert customers.get(john.id).total_loans == 1
    assert customers.get(mary.id).total_borrowed == 2500.0

    (audit,) = import_logs.history()
    assert audit.batch_id == outcome.batch_id
    assert audit.file_name == "upload.csv"
    assert audit.result["created"] == {"customers": 2, "loans": 2}


def test_section_summaries_and_cleaning_stats(mixed_csv, import_config, memory_store):
    outcome = run_import(_source(mixed_csv), import_config, memory_store, user_id="u", show_progress=False)
    assert [(s.name, s.section_type, s.label) for s in outcome.sections] == [
        ("BORROWERS", SectionType.CUSTOMERS, "Borrowers - 2 rows"),
        ("LOANS", SectionType.LOANS, "Loans - 2 rows"),
    ]
    assert outcome.cleaning.rows_cleaned == 4
    assert outcome.cleaning.rows_needing_review == 0
    assert outcome.cleaning.average_confidence == 1.0


def test_dry_run_counts_without_writing(mixed_csv, import_config, memory_store, customers, loans, import_logs):
    outcome = run_import(_source(mixed_csv), import_config, memory_store, user_id="u", dry_run=True, show_progress=False)
    assert outcome.result.dry_run is True
    assert outcome.result.created.as_dict() == {"customers": 2, "loans": 2}
    assert customers.all() == []
    assert loans.all() == []
    assert import_logs.history() == []


def test_rerun_reports_duplicates(mixed_csv, import_config, memory_store, customers, tmp_path):
    run_import(_source(mixed_csv), import_config, memory_store, user_id="u", show_progress=False)
    second = run_import(
        _source(mixed_csv),
        import_config,
        memory_store,
        user_id="u",
        show_progress=False,
        error_log=ErrorLogBuffer(tmp_path),
    )
    assert second.result.failed == 2
    assert {e.error_type for e in second.result.errors} == {"DUPLICATE_ERROR"}
    # loans attach to the customers from the first run
    assert second.result.created.loans == 2
    assert len(customers.all()) == 2
    assert second.error_log_path is not None
    assert second.fully_imported is False


def test_import_file_reads_from_disk(temp_workdir: Path, mixed_csv, import_config, memory_store):
    path = temp_workdir / "data" / "upload.csv"
    path.write_text(mixed_csv, encoding="utf-8")
    outcome = import_file(path, import_config, memory_store, user_id="u", show_progress=False)
    assert outcome.file_name == "upload.csv"
    assert outcome.result.success == 4


def test_forced_customers_type_ignores_loan_sections(mixed_csv, import_config, memory_store, loans):
    outcome = run_import(
        _source(mixed_csv),
        import_config,
        memory_store,
        user_id="u",
        import_type=ImportType.CUSTOMERS,
        show_progress=False,
    )
    # loan rows are treated as customer rows and collide on phone
    assert outcome.result.created.customers == 2
    assert outcome.result.failed == 2
    assert loans.all() == []
