"""DB helpers for tests: bootstrap a temporary SQLite DB and seed bank accounts."""

from __future__ import annotations

import os
from pathlib import Path

from bank_import.accounts import BankAccountRecord
from bank_import.db import Base, BankAccount, get_engine, session_scope


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)
    Base.metadata.create_all(bind=engine)

    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def seed_bank_accounts(*, database_url: str, records: list[BankAccountRecord]) -> None:
    with session_scope(database_url=database_url) as session:
        for r in records:
            session.add(
                BankAccount(
                    account_number=r.account_number,
                    bank_account_name=r.bank_account_name,
                    account_code=r.account_code,
                    currency=r.currency,
                )
            )
