from __future__ import annotations

from pathlib import Path

from loan_import.cli.__main__ import main as cli_main
from loan_import.logging.init import reset_logging

"""Exit code contract: 0 all imported, 2 partial (failed or quarantined rows), 1 fatal."""


def test_exit_code_fatal_startup(temp_workdir: Path, capsys):
    # config/import.yml 無し → exit 1
    reset_logging()
    code = cli_main([str(temp_workdir / "data" / "any.csv")])
    assert code == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_all_success(temp_workdir: Path, write_config, mixed_csv, capsys):
    reset_logging()
    path = temp_workdir / "data" / "upload.csv"
    path.write_text(mixed_csv, encoding="utf-8")
    assert cli_main([str(path)]) == 0
    assert "failed=0 quarantined=0" in capsys.readouterr().out


def test_exit_code_partial_failure(temp_workdir: Path, write_config, capsys):
    reset_logging()
    path = temp_workdir / "data" / "loans.csv"
    path.write_text("=== Loans ===\nBorrower Name,Phone,Amount\nJohn Banda,0976543210,oops\n", encoding="utf-8")
    assert cli_main([str(path)]) == 2
    out = capsys.readouterr().out
    assert "failed=1" in out
    assert list((temp_workdir / "logs").glob("errors-*.log"))


def test_skipped_sections_do_not_fail_the_run(temp_workdir: Path, write_config, mixed_csv, capsys):
    reset_logging()
    path = temp_workdir / "data" / "with_branches.csv"
    path.write_text(mixed_csv + "=== Branches ===\nBranch Code,City\nLSK01,Lusaka\n", encoding="utf-8")
    assert cli_main([str(path)]) == 0
    assert "skipped=1" in capsys.readouterr().out
