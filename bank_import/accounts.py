"""Lookup primitives supplied by the host application.

The parsers call two collaborators:

- a :class:`BankAccountDirectory` that resolves an account number found in an
  export to the ledger's canonical bank account (used to prefer the ledger's
  display name over the one in the file), and
- an optional :data:`PayeeShortener` that trims a free-text payee/merchant
  string according to house conventions. When absent the raw name is used.

Two directories are provided: an in-memory one for tests and simple hosts, and
one backed by the ``bank_accounts`` table through SQLAlchemy.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select

from .db import BankAccount, session_scope

type PayeeShortener = Callable[[str], str]


@dataclass(frozen=True, slots=True)
class BankAccountRecord:
    account_number: str
    bank_account_name: str
    account_code: str | None = None
    currency: str | None = None


class BankAccountDirectory(Protocol):
    def find_by_account_number(self, account_number: str) -> BankAccountRecord | None: ...


def _norm_account_number(value: str) -> str:
    return "".join(value.split())


class StaticBankAccountDirectory:
    """Directory over a fixed set of records, matched ignoring whitespace."""

    def __init__(self, records: Mapping[str, BankAccountRecord] | None = None) -> None:
        self._records: dict[str, BankAccountRecord] = {
            _norm_account_number(k): v for k, v in (records or {}).items()
        }

    def add(self, record: BankAccountRecord) -> None:
        self._records[_norm_account_number(record.account_number)] = record

    def find_by_account_number(self, account_number: str) -> BankAccountRecord | None:
        if not account_number:
            return None
        return self._records.get(_norm_account_number(account_number))


class SqlBankAccountDirectory:
    """Directory backed by the host's ``bank_accounts`` table.

    ``database_url`` falls back to the ``DATABASE_URL`` environment variable.
    Lookups are exact on the stored account number.
    """

    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url

    def find_by_account_number(self, account_number: str) -> BankAccountRecord | None:
        if not account_number:
            return None
        with session_scope(database_url=self._database_url) as session:
            row = session.scalars(
                select(BankAccount).where(BankAccount.account_number == account_number.strip())
            ).first()
            if row is None:
                return None
            return BankAccountRecord(
                account_number=row.account_number,
                bank_account_name=row.bank_account_name,
                account_code=row.account_code,
                currency=row.currency,
            )


__all__ = [
    "BankAccountDirectory",
    "BankAccountRecord",
    "PayeeShortener",
    "SqlBankAccountDirectory",
    "StaticBankAccountDirectory",
]
