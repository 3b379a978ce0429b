"""CSV statement import driven by header-to-field mappings.

Flow for one file:

1. split the content on ``\\n``; the first line holds the headers
2. take up to five non-blank, well-shaped lines as samples
3. resolve a mapping: stored template, else a suggestion that evaluates as
   ``excellent`` (saved as a template on the spot), else :class:`NeedsReview`
4. map every remaining line and group the transactions by statement key

Rows with the wrong number of fields, without a date or description, or
without any amount column are skipped with a warning. Subclasses adapt a bank's
export by overriding the hooks (``statement_key``, ``normalize_date``,
``normalize_amount``, ``extract_payee_name``, ``create_statement``,
``create_transaction``).
"""

from __future__ import annotations

import csv
import re
from collections.abc import Mapping, Sequence
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar

from dateutil import parser as date_parser

from .accounts import PayeeShortener
from .errors import EmptyInput
from .fields import evaluate_mapping, suggest_mapping
from .logging_setup import get_logger
from .models import (
    HeaderMapping,
    MappingResolution,
    MappingTemplate,
    NeedsReview,
    ParsedStatements,
    Resolved,
    Row,
    Statement,
    Transaction,
    TransactionDC,
)
from .templates import TemplateStore

SAMPLE_ROW_COUNT = 5
DEFAULT_ACCOUNT = "UNKNOWN"
DEFAULT_CURRENCY = "CAD"
PAYEE_MAX_LENGTH = 50

_AMOUNT_STRIP_RE = re.compile(r"[^\d.\-+]")

_logger = get_logger("bank_import.csv_pipeline")


def normalize_amount(value: str) -> str:
    """Drop everything but digits, ``.``, ``-`` and ``+`` (``"$1,234.56"`` -> ``"1234.56"``)."""

    return _AMOUNT_STRIP_RE.sub("", value)


def normalize_date(value: str) -> str:
    """Return ``YYYY-MM-DD`` when ``value`` parses as a date, else ``value`` unchanged."""

    try:
        return date_parser.parse(value).strftime("%Y-%m-%d")
    except (ValueError, OverflowError):
        return value


def parse_csv_line(line: str) -> list[str]:
    return next(csv.reader([line.rstrip("\r")]), [])


def read_sample_rows(
    lines: Sequence[str], headers: Sequence[str], count: int = SAMPLE_ROW_COUNT
) -> list[Row]:
    """Up to ``count`` non-blank lines whose field count matches the headers."""

    samples: list[Row] = []
    for line in lines:
        if len(samples) >= count:
            break
        if not line.strip():
            continue
        fields = parse_csv_line(line)
        if len(fields) == len(headers):
            samples.append(dict(zip(headers, fields, strict=True)))
    return samples


class CsvRowPipeline:
    """Parse one CSV export into statements for ``bank_name``.

    ``auto_apply_template=False`` routes every file without an explicit
    mapping to review, even when a template or a good suggestion exists.
    """

    def __init__(
        self,
        bank_name: str,
        *,
        template_store: TemplateStore | None = None,
        auto_apply_template: bool = True,
        shorten_payee: PayeeShortener | None = None,
    ) -> None:
        if not bank_name or not bank_name.strip():
            raise ValueError("bank_name must be non-empty")
        self.bank_name = bank_name
        self.template_store = template_store if template_store is not None else TemplateStore()
        self.auto_apply_template = auto_apply_template
        self.shorten_payee = shorten_payee

    # -- mapping resolution -------------------------------------------------

    def sample_rows(self, lines: Sequence[str], headers: Sequence[str]) -> list[Row]:
        return read_sample_rows(lines, headers)

    def resolve_mapping(self, headers: Sequence[str], samples: Sequence[Row]) -> MappingResolution:
        template = self.template_store.find_matching_template(headers, self.bank_name)
        if template is not None and self.auto_apply_template:
            _logger.info(
                "csv:template_applied bank=%s template=%s created=%s",
                self.bank_name,
                template.bank_name,
                template.created,
            )
            return Resolved(mapping=dict(template.mapping), template=template)

        suggested = suggest_mapping(headers, samples)
        evaluation = evaluate_mapping(suggested)
        _logger.info(
            "csv:suggested bank=%s quality=%s score=%d mapped=%d",
            self.bank_name,
            evaluation.quality,
            evaluation.score,
            evaluation.mapped_count,
        )
        if evaluation.quality == "excellent" and self.auto_apply_template:
            saved = self._remember(
                headers,
                suggested,
                {"auto_created": True, "created_by": "system", "quality": evaluation.quality},
            )
            return Resolved(mapping=suggested, template=saved)

        return NeedsReview(
            bank_name=self.bank_name,
            headers=tuple(headers),
            sample_rows=tuple(samples),
            suggested=suggested,
            evaluation=evaluation,
        )

    def _remember(
        self, headers: Sequence[str], mapping: HeaderMapping, metadata: dict[str, Any]
    ) -> MappingTemplate | None:
        if not self.template_store.save(self.bank_name, headers, mapping, metadata):
            # save() has logged the failure.
            return None
        return self.template_store.load_template(self.bank_name)

    # -- parsing ------------------------------------------------------------

    def parse(
        self,
        content: str,
        static_data: Mapping[str, str] | None = None,
        *,
        mapping: Mapping[str, str] | None = None,
        remember_mapping: bool = False,
    ) -> ParsedStatements | NeedsReview:
        """Parse ``content`` (BOM already stripped).

        Pass ``mapping`` to apply a reviewed mapping; ``remember_mapping``
        saves it as the bank's template.

        Raises
        ------
        EmptyInput
            When the content holds no lines.
        """

        if not content.strip():
            raise EmptyInput("CSV content is empty")
        lines = content.split("\n")
        headers = parse_csv_line(lines[0])
        data_lines = lines[1:]
        _logger.debug("csv:headers bank=%s headers=%s", self.bank_name, headers)

        if mapping is not None:
            template = None
            if remember_mapping:
                template = self._remember(headers, dict(mapping), {"created_by": "user"})
            resolution: MappingResolution = Resolved(mapping=dict(mapping), template=template)
        else:
            resolution = self.resolve_mapping(headers, self.sample_rows(data_lines, headers))
        if isinstance(resolution, NeedsReview):
            return resolution

        return self.parse_rows(
            data_lines, headers, resolution, static_data or {}, first_line_number=2
        )

    def parse_rows(
        self,
        lines: Sequence[str],
        headers: Sequence[str],
        resolution: Resolved,
        static_data: Mapping[str, str],
        *,
        first_line_number: int,
    ) -> ParsedStatements:
        result = ParsedStatements(
            statements={}, mapping=dict(resolution.mapping), template=resolution.template
        )

        def warn(msg: str, *args: object) -> None:
            _logger.warning(msg, *args)
            result.warnings.append(msg % args)

        for offset, line in enumerate(lines):
            line_no = first_line_number + offset
            if not line.strip():
                continue
            fields = parse_csv_line(line)
            if len(fields) != len(headers):
                warn(
                    "csv:skip_row line=%d reason=shape fields=%d expected=%d",
                    line_no,
                    len(fields),
                    len(headers),
                )
                continue

            row = self.apply_mapping(dict(zip(headers, fields, strict=True)), result.mapping)
            missing = _missing_required(row)
            if missing is not None:
                warn("csv:skip_row line=%d reason=missing_%s", line_no, missing)
                continue
            try:
                amount = self.row_amount(row)
            except InvalidOperation:
                warn("csv:skip_row line=%d reason=bad_amount", line_no)
                continue

            key = self.statement_key(row)
            statement = result.statements.get(key)
            if statement is None:
                statement = self.create_statement(row, static_data)
                result.statements[key] = statement
            statement.add_transaction(self.create_transaction(row, amount, statement))

        _logger.info(
            "csv:parsed bank=%s statements=%d transactions=%d skipped=%d",
            self.bank_name,
            len(result.statements),
            result.transaction_count,
            len(result.warnings),
        )
        return result

    # -- hooks --------------------------------------------------------------

    @staticmethod
    def apply_mapping(row: Row, mapping: Mapping[str, str]) -> dict[str, str]:
        return {field: row[header] for header, field in mapping.items() if header in row}

    def statement_key(self, row: Mapping[str, str]) -> str:
        return self.normalize_date(row["date"])

    def normalize_date(self, value: str) -> str:
        return normalize_date(value)

    def normalize_amount(self, value: str) -> str:
        return normalize_amount(value)

    def row_amount(self, row: Mapping[str, str]) -> Decimal:
        """Signed amount: ``amount`` as-is, ``debit`` negative, ``credit`` positive."""

        if _present(row, "amount"):
            return Decimal(self.normalize_amount(row["amount"]))
        if _present(row, "debit"):
            return -abs(Decimal(self.normalize_amount(row["debit"])))
        return abs(Decimal(self.normalize_amount(row["credit"])))

    def extract_payee_name(self, memo: str) -> str:
        return memo[:PAYEE_MAX_LENGTH]

    def create_statement(self, row: Mapping[str, str], static_data: Mapping[str, str]) -> Statement:
        return Statement(
            bank=static_data.get("bank_name") or self.bank_name,
            account=static_data.get("account") or DEFAULT_ACCOUNT,
            currency=static_data.get("currency") or DEFAULT_CURRENCY,
            timestamp=self.normalize_date(row["date"]),
        )

    def create_transaction(
        self, row: Mapping[str, str], amount: Decimal, statement: Statement
    ) -> Transaction:
        date = self.normalize_date(row["date"])
        memo = row.get("description", "")
        name = self.extract_payee_name(memo)
        if self.shorten_payee is not None and name:
            name = self.shorten_payee(name)
        reference = row.get("reference") or None
        return Transaction(
            value_timestamp=date,
            date_posted=date,
            amount=amount,
            memo=memo,
            name=name,
            transaction_dc=TransactionDC.DEBIT if amount < 0 else TransactionDC.CREDIT,
            check_number=reference,
            transaction_type=row.get("category") or None,
            reference=reference,
            currency=statement.currency,
        )


def _present(row: Mapping[str, str], field: str) -> bool:
    return bool(row.get(field, "").strip())


def _missing_required(row: Mapping[str, str]) -> str | None:
    for field in ("date", "description"):
        if not _present(row, field):
            return field
    if not any(_present(row, f) for f in ("amount", "debit", "credit")):
        return "amount"
    return None


# ---------------------------------------------------------------------------
# Bank-specific variants
# ---------------------------------------------------------------------------


class ManulifeCsvPipeline(CsvRowPipeline):
    """Manulife Bank exports.

    The usual export has no header row::

        "Advantage Account 1518404",01/01/2025,131.01,"Transfer From 1524001"

    (account, ``MM/DD/YYYY`` date, signed amount, description). Files that do
    carry a header go through the regular template/suggestion flow.
    """

    HEADERS: ClassVar[tuple[str, ...]] = ("Account", "Date", "Amount", "Description")
    MAPPING: ClassVar[dict[str, str]] = {
        "Account": "account",
        "Date": "date",
        "Amount": "amount",
        "Description": "description",
    }
    BANK_DISPLAY_NAME = "Manulife Bank"

    _DATE_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
    _ACCOUNT_ROW_RE = re.compile(r"Advantage Account \d+")
    _ACCOUNT_DIGITS_RE = re.compile(r"(\d+)$")
    _PAYEE_PREFIX_RE = re.compile(
        r"^(Transfer From|Transfer To|BPY|TAX|POS SQ|Pay|Mobile Deposit)\s+"
    )
    _TRAILING_ID_RE = re.compile(r"\s+[A-Z0-9]{6,}$")

    def __init__(self, bank_name: str = "manulife", **kwargs: Any) -> None:
        super().__init__(bank_name, **kwargs)

    def has_header(self, line: str) -> bool:
        fields = parse_csv_line(line.strip())
        if len(fields) < 2:
            return False
        if self._DATE_RE.match(fields[1]):
            return False
        if self._ACCOUNT_ROW_RE.search(fields[0]):
            return False
        return True

    def parse(
        self,
        content: str,
        static_data: Mapping[str, str] | None = None,
        *,
        mapping: Mapping[str, str] | None = None,
        remember_mapping: bool = False,
    ) -> ParsedStatements | NeedsReview:
        if not content.strip():
            raise EmptyInput("CSV content is empty")
        lines = content.split("\n")
        if mapping is not None or self.has_header(lines[0]):
            return super().parse(
                content, static_data, mapping=mapping, remember_mapping=remember_mapping
            )

        _logger.debug("csv:headerless bank=%s", self.bank_name)
        return self.parse_rows(
            lines,
            self.HEADERS,
            Resolved(mapping=dict(self.MAPPING)),
            static_data or {},
            first_line_number=1,
        )

    def normalize_date(self, value: str) -> str:
        m = self._DATE_RE.match(value)
        if m:
            month, day, year = m.groups()
            return f"{year}-{month}-{day}"
        return super().normalize_date(value)

    def extract_payee_name(self, memo: str) -> str:
        """Payee without the transaction-type prefix or trailing reference.

        ``"POS SQ AIRDRIE CURLING CL SQ02W2VH"`` -> ``"AIRDRIE CURLING CL"``.
        """

        cleaned = self._PAYEE_PREFIX_RE.sub("", memo, count=1)
        cleaned = self._TRAILING_ID_RE.sub("", cleaned, count=1)
        name = " ".join(cleaned.strip().split(" ")[:3])
        return name or memo

    def create_statement(self, row: Mapping[str, str], static_data: Mapping[str, str]) -> Statement:
        statement = super().create_statement(row, static_data)
        statement.bank = self.BANK_DISPLAY_NAME
        if statement.account == DEFAULT_ACCOUNT and row.get("account"):
            m = self._ACCOUNT_DIGITS_RE.search(row["account"])
            statement.account = m.group(1) if m else row["account"]
        return statement

    def create_transaction(
        self, row: Mapping[str, str], amount: Decimal, statement: Statement
    ) -> Transaction:
        transaction = super().create_transaction(row, amount, statement)
        return replace(transaction, transaction_type="DEBIT" if amount < 0 else "CREDIT")


_PIPELINES: dict[str, type[CsvRowPipeline]] = {
    "manulife": ManulifeCsvPipeline,
}


def csv_pipeline_for(bank_name: str, **kwargs: Any) -> CsvRowPipeline:
    """Return the bank's pipeline, or the generic one when none is registered."""

    cls = _PIPELINES.get(bank_name.strip().lower(), CsvRowPipeline)
    return cls(bank_name, **kwargs)


__all__ = [
    "CsvRowPipeline",
    "ManulifeCsvPipeline",
    "csv_pipeline_for",
    "normalize_amount",
    "normalize_date",
    "parse_csv_line",
    "read_sample_rows",
]
