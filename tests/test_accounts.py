from __future__ import annotations

import pytest

from bank_import.accounts import (
    BankAccountRecord,
    SqlBankAccountDirectory,
    StaticBankAccountDirectory,
)
from bank_import.db import session_scope
from bank_import.ofx import parse_ofx
from tests.helpers.db import bootstrap_sqlite_db, seed_bank_accounts

RECORDS = [
    BankAccountRecord("1518404", "Manulife Advantage", account_code="1061", currency="CAD"),
    BankAccountRecord("00123 4567890", "CIBC Savings"),
]


def test_static_directory_ignores_whitespace():
    directory = StaticBankAccountDirectory({r.account_number: r for r in RECORDS})

    assert directory.find_by_account_number("001234567890").bank_account_name == "CIBC Savings"
    assert directory.find_by_account_number(" 1518404 ").account_code == "1061"
    assert directory.find_by_account_number("") is None
    assert directory.find_by_account_number("42") is None


def test_sql_directory_lookup(tmp_path):
    url = bootstrap_sqlite_db(tmp_path / "accounts.db")
    seed_bank_accounts(database_url=url, records=RECORDS)
    directory = SqlBankAccountDirectory(database_url=url)

    record = directory.find_by_account_number(" 1518404 ")

    assert record == RECORDS[0]
    assert directory.find_by_account_number("9999999") is None
    assert directory.find_by_account_number("") is None


def test_sql_directory_reads_database_url_from_environment(tmp_path, monkeypatch):
    url = bootstrap_sqlite_db(tmp_path / "accounts.db")
    seed_bank_accounts(database_url=url, records=RECORDS)
    monkeypatch.setenv("DATABASE_URL", url)

    record = SqlBankAccountDirectory().find_by_account_number("00123 4567890")

    assert record is not None and record.bank_account_name == "CIBC Savings"


def test_session_scope_requires_database_url():
    with pytest.raises(RuntimeError):
        with session_scope():
            pass


def test_ofx_import_resolves_bank_from_database(tmp_path, data_dir):
    url = bootstrap_sqlite_db(tmp_path / "accounts.db")
    seed_bank_accounts(database_url=url, records=RECORDS)

    statements = parse_ofx(
        (data_dir / "manulife_multi_account.qfx").read_text(encoding="utf-8"),
        accounts=SqlBankAccountDirectory(database_url=url),
    )

    assert [(s.account, s.bank) for s in statements.values()] == [
        ("1518404", "Manulife Advantage"),
        ("1524001", "Manulife Bank of Canada"),
    ]
