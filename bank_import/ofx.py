"""OFX/QFX statement extraction.

Pipeline: ``load_markup`` (SGML repair + XML parse) -> :class:`MarkupTree`
(typed view over the ``<OFX>`` element) -> :class:`OfxStatementExtractor`
(statements keyed by balance date and account ordinal).

Issuer quirks handled here
--------------------------
- Some issuers declare every transaction as ``CREDIT`` and carry the sign in
  ``TRNAMT``; a negative ``CREDIT`` is booked as a debit.
- Deposits and interest arrive as ``DEP`` or ``INT`` instead of ``CREDIT``.
- Savings exports often leave ``NAME`` empty and put the counterparty in a
  ``;``-separated ``MEMO`` (``E-TRANSFER 0113;JANE DOE;Internet Banking``).
  The display name is recovered from the memo by the first matching rule.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from .accounts import BankAccountDirectory, PayeeShortener
from .logging_setup import get_logger
from .models import Statement, Transaction, TransactionDC
from .sgml import load_markup

_logger = get_logger("bank_import.ofx")

DEFAULT_BANK_NAME = "Savings"
DEFAULT_BANK_ID = "1060"
TRANSACTION_TYPE = "TRF"

# YYYYMMDD[HHMMSS[.XXX]][[gmt offset[:tz name]]]
_OFX_DATE_RE = re.compile(
    r"^(\d{4})(\d{2})(\d{2})"
    r"(?:(\d{2})(\d{2})(?:(\d{2})(?:\.(\d{1,6}))?)?)?"
    r"\s*(?:\[\s*([+-]?\d+(?:\.\d+)?)\s*(?::[^\]]*)?\])?"
)

_ACCOUNT_PATHS = (
    ("BANKMSGSRSV1/STMTTRNRS", "STMTRS", "BANKACCTFROM"),
    ("CREDITCARDMSGSRSV1/CCSTMTTRNRS", "CCSTMTRS", "CCACCTFROM"),
)


def parse_ofx_date(value: str | None) -> datetime | None:
    """Parse an OFX date/time; returns ``None`` when absent or unparseable.

    A bracketed GMT offset (``[-5:EST]``) yields an aware datetime. Without one
    the value is returned naive, as written by the issuer.
    """

    if not value:
        return None
    m = _OFX_DATE_RE.match(value.strip())
    if m is None:
        return None
    year, month, day, hour, minute, second, frac, offset = m.groups()
    try:
        tz = timezone(timedelta(hours=float(offset))) if offset is not None else None
        return datetime(
            int(year),
            int(month),
            int(day),
            int(hour or 0),
            int(minute or 0),
            int(second or 0),
            int((frac or "0").ljust(6, "0")),
            tzinfo=tz,
        )
    except (ValueError, OverflowError):
        return None


def _text(parent: ET.Element | None, path: str) -> str | None:
    if parent is None:
        return None
    node = parent.find(path)
    if node is None or node.text is None:
        return None
    value = node.text.strip()
    return value or None


def _timestamp(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# Tree view
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OfxInstitute:
    name: str | None
    id: str | None


@dataclass(frozen=True, slots=True)
class OfxTransaction:
    type: str
    date_posted: datetime | None
    user_date: datetime | None
    amount: Decimal | None
    unique_id: str | None
    name: str
    memo: str
    sic: str | None = None
    check_number: str | None = None


@dataclass(frozen=True, slots=True)
class OfxAccount:
    account_number: str
    account_type: str | None
    routing_number: str | None
    branch_id: str | None
    currency: str | None
    transaction_uid: str | None
    start_date: datetime | None
    end_date: datetime | None
    balance: str | None
    balance_date: datetime | None
    transactions: tuple[OfxTransaction, ...] = ()


def _read_amount(raw: str | None) -> Decimal | None:
    if raw is None:
        return None
    try:
        value = Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def _read_transaction(node: ET.Element) -> OfxTransaction:
    # An empty "<NAME>" line is repaired as a container around the following
    # siblings, so fields are looked up at any depth below STMTTRN.
    def field(tag: str) -> str | None:
        return _text(node, f".//{tag}")

    return OfxTransaction(
        type=(field("TRNTYPE") or "").upper(),
        date_posted=parse_ofx_date(field("DTPOSTED")),
        user_date=parse_ofx_date(field("DTUSER")),
        amount=_read_amount(field("TRNAMT")),
        unique_id=field("FITID"),
        name=field("NAME") or "",
        memo=field("MEMO") or "",
        sic=field("SIC"),
        check_number=field("CHECKNUM"),
    )


def _read_account(trnrs: ET.Element, stmtrs: ET.Element, acct_tag: str) -> OfxAccount:
    acct = stmtrs.find(acct_tag)
    tranlist = stmtrs.find("BANKTRANLIST")
    ledger = stmtrs.find("LEDGERBAL")
    transactions: tuple[OfxTransaction, ...] = ()
    if tranlist is not None:
        transactions = tuple(_read_transaction(n) for n in tranlist.findall("STMTTRN"))
    return OfxAccount(
        account_number=_text(acct, "ACCTID") or "",
        account_type=_text(acct, "ACCTTYPE"),
        routing_number=_text(acct, "BANKID"),
        branch_id=_text(acct, "BRANCHID"),
        currency=_text(stmtrs, "CURDEF"),
        transaction_uid=_text(trnrs, "TRNUID"),
        start_date=parse_ofx_date(_text(tranlist, "DTSTART")),
        end_date=parse_ofx_date(_text(tranlist, "DTEND")),
        balance=_text(ledger, "BALAMT"),
        balance_date=parse_ofx_date(_text(ledger, "DTASOF")),
        transactions=transactions,
    )


class MarkupTree:
    """Navigable view over a parsed ``<OFX>`` element."""

    def __init__(self, root: ET.Element) -> None:
        self.root = root

    @classmethod
    def from_content(cls, content: str) -> MarkupTree:
        return cls(load_markup(content))

    @property
    def institute(self) -> OfxInstitute:
        fi = self.root.find("SIGNONMSGSRSV1/SONRS/FI")
        return OfxInstitute(name=_text(fi, "ORG"), id=_text(fi, "FID"))

    @property
    def bank_accounts(self) -> list[OfxAccount]:
        """Bank and credit card accounts, in document order per section."""

        accounts: list[OfxAccount] = []
        for trnrs_path, stmtrs_tag, acct_tag in _ACCOUNT_PATHS:
            for trnrs in self.root.findall(trnrs_path):
                stmtrs = trnrs.find(stmtrs_tag)
                if stmtrs is None:
                    continue
                accounts.append(_read_account(trnrs, stmtrs, acct_tag))
        return accounts


# ---------------------------------------------------------------------------
# Classification and memo backfill
# ---------------------------------------------------------------------------


def classify_transaction(trntype: str, amount: Decimal) -> tuple[TransactionDC, str]:
    """Return ``(debit/credit indicator, transaction type)`` for a declared type.

    ``CREDIT`` (payments and refunds alike), ``DEP`` and ``INT`` are credits;
    every other declared type is a debit. A ``CREDIT`` with a negative amount
    is a debit.
    """

    trntype = trntype.upper()
    if trntype == "CREDIT":
        dc = TransactionDC.DEBIT if amount < 0 else TransactionDC.CREDIT
    elif trntype in ("DEP", "INT"):
        dc = TransactionDC.CREDIT
    else:
        dc = TransactionDC.DEBIT
    return dc, TRANSACTION_TYPE


@dataclass(frozen=True, slots=True)
class MemoBackfill:
    """Outcome of the first memo rule that matched.

    ``name`` is ``None`` when the rule matched but the memo lacks the segment
    that carries the name. ``transfer`` re-flags the transaction as a bank
    transfer.
    """

    rule: str
    name: str | None
    transfer: bool = False


def _segment(parts: list[str], index: int) -> str | None:
    if index >= len(parts):
        return None
    return parts[index].strip() or None


def _deposit_name(parts: list[str]) -> str | None:
    eft = "Electronic Funds Transfer"
    if len(parts) > 3:
        # DEPOSIT;Square, Inc.;Square, Inc.;Electronic Funds Transfer
        return _segment(parts, 2) if eft in parts[3] else None
    if len(parts) > 2 and eft in parts[2]:
        # DEPOSIT;ALLIANZ;Electronic Funds Transfer
        return _segment(parts, 1)
    return None


def _external_transfer_name(memo: str) -> str | None:
    # "External Transfer to TD 1234" splits on spaces, not on ";"
    words = memo.split(" ")
    if len(words) < 3:
        return None
    return words[2].strip() or None


def backfill_payee_from_memo(memo: str) -> MemoBackfill | None:
    """Recover a display name from a ``;``-separated memo.

    Rules are tried in a fixed order against the first memo segment and only
    the first match applies. Returns ``None`` when no rule matches.
    """

    parts = memo.split(";")
    head = parts[0]
    if "E-TRANSFER" in head:
        return MemoBackfill("e_transfer", _segment(parts, 1))
    if "Interest Deposit" in head or "BONUS INTEREST" in head:
        return MemoBackfill("interest", _segment(parts, 0))
    if "INTERNET TRANSFER" in head:
        return MemoBackfill("internet_transfer", _segment(parts, 1), transfer=True)
    if "External Transfer" in head:
        return MemoBackfill("external_transfer", _external_transfer_name(memo), transfer=True)
    if "PAY" in head:
        return MemoBackfill("pay", _segment(parts, 1), transfer=True)
    if "Pay" in head:
        return MemoBackfill("pay_named", head.replace("Pay ", "").strip() or None, transfer=True)
    if "DEPOSIT" in head:
        return MemoBackfill("deposit", _deposit_name(parts))
    return None


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _BankIdentity:
    name: str
    id: str
    name_from_file: bool
    id_from_file: bool


def _resolve_bank(institute: OfxInstitute, static_defaults: Mapping[str, str]) -> _BankIdentity:
    if institute.name is not None:
        name, name_from_file = institute.name, True
    else:
        name, name_from_file = static_defaults.get("account_name") or DEFAULT_BANK_NAME, False
    if institute.id is not None:
        bank_id, id_from_file = institute.id, True
    else:
        bank_id, id_from_file = static_defaults.get("account_code") or DEFAULT_BANK_ID, False
    return _BankIdentity(name, bank_id, name_from_file, id_from_file)


@dataclass(slots=True)
class OfxStatementExtractor:
    """Turn a :class:`MarkupTree` into statements keyed by statement key.

    ``accounts`` resolves an account number to the ledger's display name for
    that bank account. ``shorten_payee`` trims transaction names; when absent
    the raw ``NAME`` is used.

    After :meth:`extract`, ``bank_from_file``/``bank_id_from_file`` tell
    whether the bank name/id came from the document or from defaults, and
    ``warnings`` lists skipped accounts and transactions.
    """

    accounts: BankAccountDirectory | None = None
    shorten_payee: PayeeShortener | None = None
    bank_from_file: bool = False
    bank_id_from_file: bool = False
    warnings: list[str] = field(default_factory=list)

    def extract(
        self, tree: MarkupTree, static_defaults: Mapping[str, str] | None = None
    ) -> dict[str, Statement]:
        static_defaults = static_defaults or {}
        identity = _resolve_bank(tree.institute, static_defaults)
        self.bank_from_file = identity.name_from_file
        self.bank_id_from_file = identity.id_from_file
        self.warnings = []

        statements: dict[str, Statement] = {}
        for ordinal, account in enumerate(tree.bank_accounts, start=1):
            if account.balance_date is None:
                self._warn(
                    "ofx:skip_account reason=no_balance_date account=%s",
                    account.account_number,
                )
                continue
            key = f"{_timestamp(account.balance_date)}-{ordinal}"
            statement = statements.get(key)
            if statement is None:
                statement = Statement(
                    bank=self._bank_name(account, identity),
                    account=account.account_number,
                    currency=account.currency or "",
                    timestamp=key,
                    end_balance=account.balance or "0.00",
                    bank_id=identity.id,
                )
                statements[key] = statement
            for trn in account.transactions:
                transaction = self._transaction(trn, account)
                if transaction is not None:
                    statement.add_transaction(transaction)

        _logger.debug(
            "ofx:extracted statements=%d bank=%s bank_from_file=%s bank_id_from_file=%s",
            len(statements),
            identity.name,
            self.bank_from_file,
            self.bank_id_from_file,
        )
        return statements

    # -- helpers ------------------------------------------------------------

    def _warn(self, msg: str, *args: object) -> None:
        _logger.warning(msg, *args)
        self.warnings.append(msg % args)

    def _bank_name(self, account: OfxAccount, identity: _BankIdentity) -> str:
        if self.accounts is None or not account.account_number:
            return identity.name
        record = self.accounts.find_by_account_number(account.account_number)
        if record is None:
            _logger.info("ofx:account_not_in_directory account=%s", account.account_number)
            return identity.name
        return record.bank_account_name

    def _payee(self, name: str) -> str:
        if self.shorten_payee is None or not name:
            return name
        return self.shorten_payee(name)

    def _transaction(self, trn: OfxTransaction, account: OfxAccount) -> Transaction | None:
        if trn.date_posted is None:
            self._warn("ofx:skip_transaction reason=no_date_posted fitid=%s", trn.unique_id)
            return None
        if trn.amount is None:
            self._warn("ofx:skip_transaction reason=bad_amount fitid=%s", trn.unique_id)
            return None

        dc, trn_type = classify_transaction(trn.type, trn.amount)
        payee = self._payee(trn.name)
        if len(payee) < 2 and len(trn.memo) > 2:
            backfill = backfill_payee_from_memo(trn.memo)
            if backfill is not None:
                _logger.debug("ofx:memo_backfill rule=%s fitid=%s", backfill.rule, trn.unique_id)
                if backfill.name is not None:
                    payee = backfill.name
                if backfill.transfer:
                    dc = TransactionDC.BANK_TRANSFER

        posted = _timestamp(trn.date_posted)
        return Transaction(
            value_timestamp=_timestamp(trn.user_date) if trn.user_date is not None else posted,
            date_posted=posted,
            amount=abs(trn.amount),
            memo=trn.memo,
            name=payee,
            transaction_dc=dc,
            check_number=trn.check_number,
            transaction_type=trn_type,
            reference=trn.unique_id,
            merchant=trn.name or None,
            sic=trn.sic,
            currency=account.currency,
        )


def parse_ofx(
    content: str,
    static_defaults: Mapping[str, str] | None = None,
    *,
    accounts: BankAccountDirectory | None = None,
    shorten_payee: PayeeShortener | None = None,
) -> dict[str, Statement]:
    """Parse an OFX/QFX document into statements keyed by statement key.

    Raises :class:`~bank_import.errors.MalformedDocument` when the document
    cannot be repaired into parseable markup.
    """

    tree = MarkupTree.from_content(content)
    extractor = OfxStatementExtractor(accounts=accounts, shorten_payee=shorten_payee)
    return extractor.extract(tree, static_defaults)


__all__ = [
    "DEFAULT_BANK_ID",
    "DEFAULT_BANK_NAME",
    "MarkupTree",
    "MemoBackfill",
    "OfxAccount",
    "OfxInstitute",
    "OfxStatementExtractor",
    "OfxTransaction",
    "backfill_payee_from_memo",
    "classify_transaction",
    "parse_ofx",
    "parse_ofx_date",
]
