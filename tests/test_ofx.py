from __future__ import annotations

import textwrap
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from bank_import.accounts import BankAccountRecord, StaticBankAccountDirectory
from bank_import.errors import MalformedDocument
from bank_import.models import TransactionDC
from bank_import.ofx import (
    MarkupTree,
    MemoBackfill,
    OfxStatementExtractor,
    backfill_payee_from_memo,
    classify_transaction,
    parse_ofx,
    parse_ofx_date,
)

MST = timezone(timedelta(hours=-7))


def _read(data_dir, name: str) -> str:
    return (data_dir / name).read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Dates and classification
# ---------------------------------------------------------------------------


def test_parse_ofx_date_variants():
    assert parse_ofx_date("20240205") == datetime(2024, 2, 5)
    assert parse_ofx_date("20240205120000") == datetime(2024, 2, 5, 12, 0, 0)
    assert parse_ofx_date("20241130000000.000[-7:MST]") == datetime(2024, 11, 30, tzinfo=MST)
    assert parse_ofx_date("20240101120000[+5.5:IST]").utcoffset() == timedelta(hours=5, minutes=30)


@pytest.mark.parametrize(
    "value", [None, "", "garbage", "20241340", "20240101120000[-24:XYZ]", "20240101[99999999999]"]
)
def test_parse_ofx_date_rejects_missing_or_invalid(value):
    assert parse_ofx_date(value) is None


@pytest.mark.parametrize(
    ("trntype", "amount", "expected"),
    [
        ("CREDIT", "10.00", TransactionDC.CREDIT),
        ("CREDIT", "-10.00", TransactionDC.DEBIT),
        ("credit", "1.00", TransactionDC.CREDIT),
        ("DEP", "5.00", TransactionDC.CREDIT),
        ("INT", "0.12", TransactionDC.CREDIT),
        ("DEBIT", "-5.00", TransactionDC.DEBIT),
        ("XFER", "5.00", TransactionDC.DEBIT),
        ("POS", "-5.00", TransactionDC.DEBIT),
        ("PAYMENT", "-5.00", TransactionDC.DEBIT),
    ],
)
def test_classify_transaction(trntype, amount, expected):
    assert classify_transaction(trntype, Decimal(amount)) == (expected, "TRF")


# ---------------------------------------------------------------------------
# Memo backfill
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("memo", "expected"),
    [
        (
            "E-TRANSFER 0113;JANE DOE;Internet Banking",
            MemoBackfill("e_transfer", "JANE DOE"),
        ),
        ("E-TRANSFER 0113", MemoBackfill("e_transfer", None)),
        ("Interest Deposit", MemoBackfill("interest", "Interest Deposit")),
        ("BONUS INTEREST;Savings", MemoBackfill("interest", "BONUS INTEREST")),
        (
            "INTERNET TRANSFER 000000239204;Internet Banking",
            MemoBackfill("internet_transfer", "Internet Banking", transfer=True),
        ),
        (
            "External Transfer CIBC 4567890",
            MemoBackfill("external_transfer", "CIBC", transfer=True),
        ),
        ("External Transfer", MemoBackfill("external_transfer", None, transfer=True)),
        ("PAY 1234;HYDRO ONE;Internet Banking", MemoBackfill("pay", "HYDRO ONE", transfer=True)),
        ("Pay Alberta Health", MemoBackfill("pay_named", "Alberta Health", transfer=True)),
        (
            "DEPOSIT;Square, Inc.;Square, Inc.;Electronic Funds Transfer",
            MemoBackfill("deposit", "Square, Inc."),
        ),
        ("DEPOSIT;ALLIANZ;Electronic Funds Transfer", MemoBackfill("deposit", "ALLIANZ")),
        ("DEPOSIT;ALLIANZ", MemoBackfill("deposit", None)),
        ("DEPOSIT;A;B;Cheque", MemoBackfill("deposit", None)),
        ("SERVICE CHARGE;Branch Transaction", None),
    ],
)
def test_backfill_payee_from_memo(memo, expected):
    assert backfill_payee_from_memo(memo) == expected


def test_backfill_first_matching_rule_wins():
    # "PAY" is checked before "DEPOSIT".
    assert backfill_payee_from_memo(
        "PAYROLL DEPOSIT;ACME;Electronic Funds Transfer"
    ) == MemoBackfill("pay", "ACME", transfer=True)
    # "INTERNET TRANSFER" is checked before "PAY".
    assert backfill_payee_from_memo("INTERNET TRANSFER PAY;Savings").rule == "internet_transfer"


def test_backfill_matches_anywhere_in_first_segment():
    result = backfill_payee_from_memo("MOBILE E-TRANSFER 77;SAM LEE")

    assert result == MemoBackfill("e_transfer", "SAM LEE")


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def test_sgml_savings_statement(data_dir):
    statements = parse_ofx(_read(data_dir, "cibc_savings.qfx"))

    assert list(statements) == ["2024-02-20T12:00:00-1"]
    s = statements["2024-02-20T12:00:00-1"]
    assert (s.bank, s.bank_id, s.account, s.currency) == ("CIBC", "00005", "00123 4567890", "CAD")
    assert s.end_balance == "1234.56"
    assert s.timestamp == "2024-02-20T12:00:00-1"

    got = [(t.name, t.amount, t.transaction_dc) for t in s.transactions]
    assert got == [
        ("CONNIE CRAIG", Decimal("100.00"), TransactionDC.DEBIT),
        ("Square, Inc.", Decimal("250.00"), TransactionDC.CREDIT),
        ("Internet Banking", Decimal("500.00"), TransactionDC.BANK_TRANSFER),
        ("", Decimal("1.23"), TransactionDC.CREDIT),
    ]

    first = s.transactions[0]
    assert first.value_timestamp == first.date_posted == "2024-02-05T12:00:00"
    assert first.reference == "25150154033310731052280000"
    assert first.transaction_type == "TRF"
    assert first.merchant is None
    assert first.currency == "CAD"
    assert first.memo == "E-TRANSFER 011337432529;CONNIE CRAIG;Internet Banking"

    # The empty <NAME> line does not hide the memo that follows it.
    assert s.transactions[3].memo == "SERVICE CHARGE;Branch Transaction"


def test_one_line_credit_card_export_uses_defaults(data_dir):
    extractor = OfxStatementExtractor()
    tree = MarkupTree.from_content(_read(data_dir, "visa_one_line.qfx"))

    statements = extractor.extract(tree)

    assert list(statements) == ["2024-05-31T00:00:00-1"]
    s = statements["2024-05-31T00:00:00-1"]
    assert (s.bank, s.bank_id) == ("Savings", "1060")
    assert extractor.bank_from_file is False
    assert extractor.bank_id_from_file is False
    assert s.account == "4503300016180307"
    assert s.end_balance == "-350.25"

    restaurant, payment = s.transactions
    # Negative CREDIT is a purchase.
    assert restaurant.transaction_dc is TransactionDC.DEBIT
    assert restaurant.amount == Decimal("50.00")
    assert restaurant.name == "A&W #1050 AIRDRIE"
    assert restaurant.merchant == "A&W #1050 AIRDRIE"
    assert restaurant.sic == "5814"
    assert restaurant.date_posted == "2024-05-03T00:00:00"
    assert payment.transaction_dc is TransactionDC.CREDIT
    assert payment.amount == Decimal("200.00")


def test_static_defaults_fill_missing_institute(data_dir):
    statements = parse_ofx(
        _read(data_dir, "visa_one_line.qfx"),
        {"account_name": "Visa", "account_code": "1090"},
    )

    s = next(iter(statements.values()))
    assert (s.bank, s.bank_id) == ("Visa", "1090")


def test_institute_in_file_wins_over_static_defaults(data_dir):
    extractor = OfxStatementExtractor()
    tree = MarkupTree.from_content(_read(data_dir, "cibc_savings.qfx"))

    statements = extractor.extract(tree, {"account_name": "Visa", "account_code": "1090"})

    s = next(iter(statements.values()))
    assert (s.bank, s.bank_id) == ("CIBC", "00005")
    assert extractor.bank_from_file is True
    assert extractor.bank_id_from_file is True


def test_xml_export_with_several_accounts(data_dir):
    extractor = OfxStatementExtractor()
    tree = MarkupTree.from_content(_read(data_dir, "manulife_multi_account.qfx"))

    statements = extractor.extract(tree)

    assert list(statements) == [
        "2024-11-30T00:00:00-07:00-1",
        "2024-11-30T00:00:00-07:00-2",
    ]
    savings = statements["2024-11-30T00:00:00-07:00-1"]
    chequing = statements["2024-11-30T00:00:00-07:00-2"]
    assert (savings.bank, savings.bank_id) == ("Manulife Bank of Canada", "1")
    assert savings.account == "1518404"
    assert savings.end_balance == "5012.34"
    assert chequing.account == "1524001"

    interest, transfer = savings.transactions
    assert interest.name == "Interest Deposit"
    assert interest.transaction_dc is TransactionDC.CREDIT
    assert interest.date_posted == "2024-11-30T00:00:00-07:00"

    assert transfer.name == "CIBC"
    assert transfer.transaction_dc is TransactionDC.BANK_TRANSFER
    assert transfer.amount == Decimal("1000.00")
    assert transfer.value_timestamp == "2024-11-14T09:30:00-07:00"
    assert transfer.date_posted == "2024-11-15T00:00:00-07:00"

    (tax,) = chequing.transactions
    assert tax.name == "TAX AIRDRIE Taxes"
    assert tax.transaction_dc is TransactionDC.DEBIT

    # The third account has no ledger balance and is skipped.
    assert extractor.warnings == [
        "ofx:skip_account reason=no_balance_date account=1530999"
    ]


def test_account_directory_overrides_bank_name(data_dir):
    directory = StaticBankAccountDirectory(
        {"001234567890": BankAccountRecord("001234567890", "CIBC Savings 7890")}
    )

    statements = parse_ofx(_read(data_dir, "cibc_savings.qfx"), accounts=directory)

    s = next(iter(statements.values()))
    assert s.bank == "CIBC Savings 7890"
    assert s.bank_id == "00005"


def test_account_directory_lookup_is_per_account(data_dir):
    directory = StaticBankAccountDirectory()
    directory.add(BankAccountRecord("1518404", "Manulife Advantage"))

    statements = parse_ofx(_read(data_dir, "manulife_multi_account.qfx"), accounts=directory)

    assert [s.bank for s in statements.values()] == [
        "Manulife Advantage",
        "Manulife Bank of Canada",
    ]


def test_shorten_payee_hook_applies_to_names(data_dir):
    statements = parse_ofx(
        _read(data_dir, "visa_one_line.qfx"),
        shorten_payee=lambda name: name.split(" #")[0],
    )

    names = [t.name for s in statements.values() for t in s.transactions]
    assert names == ["A&W", "PAYMENT - THANK YOU"]


def test_unusable_transactions_are_skipped_with_warnings():
    content = textwrap.dedent(
        """
        <OFX>
        <BANKMSGSRSV1>
        <STMTTRNRS>
        <STMTRS>
        <CURDEF>USD
        <BANKACCTFROM>
        <ACCTID>999
        </BANKACCTFROM>
        <BANKTRANLIST>
        <STMTTRN>
        <TRNTYPE>DEBIT
        <TRNAMT>-1.00
        <FITID>A1
        </STMTTRN>
        <STMTTRN>
        <TRNTYPE>DEBIT
        <DTPOSTED>20240102
        <TRNAMT>abc
        <FITID>A2
        </STMTTRN>
        <STMTTRN>
        <TRNTYPE>CHECK
        <DTPOSTED>20240103
        <TRNAMT>-1,250.00
        <FITID>A3
        <CHECKNUM>1042
        <NAME>LANDLORD
        </STMTTRN>
        <STMTTRN>
        <TRNTYPE>DEBIT
        <DTPOSTED>20240104120000[-24:XYZ]
        <TRNAMT>-2.00
        <FITID>A4
        </STMTTRN>
        <STMTTRN>
        <TRNTYPE>CREDIT
        <DTPOSTED>20240105
        <TRNAMT>NaN
        <FITID>A5
        </STMTTRN>
        <STMTTRN>
        <TRNTYPE>DEBIT
        <DTPOSTED>20240106
        <TRNAMT>-Infinity
        <FITID>A6
        </STMTTRN>
        </BANKTRANLIST>
        <LEDGERBAL>
        <BALAMT>10.00
        <DTASOF>20240131
        </LEDGERBAL>
        </STMTRS>
        </STMTTRNRS>
        </BANKMSGSRSV1>
        </OFX>
        """
    )
    extractor = OfxStatementExtractor()

    statements = extractor.extract(MarkupTree.from_content(content))

    (s,) = statements.values()
    assert (s.bank, s.bank_id, s.currency) == ("Savings", "1060", "USD")
    (rent,) = s.transactions
    assert rent.amount == Decimal("1250.00")
    assert rent.check_number == "1042"
    assert rent.transaction_dc is TransactionDC.DEBIT
    assert extractor.warnings == [
        "ofx:skip_transaction reason=no_date_posted fitid=A1",
        "ofx:skip_transaction reason=bad_amount fitid=A2",
        "ofx:skip_transaction reason=no_date_posted fitid=A4",
        "ofx:skip_transaction reason=bad_amount fitid=A5",
        "ofx:skip_transaction reason=bad_amount fitid=A6",
    ]


def test_malformed_document_raises():
    with pytest.raises(MalformedDocument):
        parse_ofx("<OFX>\n<1BAD>\n</OFX>")
