"""Data models for ``bank_import``.

Domain values (statements, transactions, mapping evaluations and pipeline
outcomes) are plain dataclasses. The on-disk JSON shape of a mapping template
is a strict Pydantic model so that a hand-edited or truncated file is rejected
as a whole instead of half-loaded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

type HeaderMapping = dict[str, str]
"""Raw CSV header (case preserved) -> canonical field name."""

type Row = dict[str, str]
"""A CSV data line keyed by header, in header order."""

type Quality = Literal["poor", "fair", "good", "excellent"]


class TransactionDC(StrEnum):
    """Debit/credit indicator, valued with the host ledger's one-letter codes."""

    CREDIT = "C"
    DEBIT = "D"
    BANK_TRANSFER = "B"


# ---------------------------------------------------------------------------
# Statements and transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transaction:
    """A single normalized transaction.

    ``amount`` is a signed decimal for CSV imports. OFX imports store the
    absolute amount and carry the direction in ``transaction_dc`` only.
    """

    value_timestamp: str
    date_posted: str
    amount: Decimal
    memo: str
    name: str
    transaction_dc: TransactionDC
    check_number: str | None = None
    transaction_type: str | None = None
    reference: str | None = None
    merchant: str | None = None
    sic: str | None = None
    currency: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "value_timestamp": self.value_timestamp,
            "date_posted": self.date_posted,
            "amount": str(self.amount),
            "memo": self.memo,
            "name": self.name,
            "transaction_dc": self.transaction_dc.value,
            "check_number": self.check_number,
            "transaction_type": self.transaction_type,
            "reference": self.reference,
            "merchant": self.merchant,
            "sic": self.sic,
            "currency": self.currency,
        }


@dataclass(slots=True)
class Statement:
    """A group of transactions sharing one statement key within a parse run."""

    bank: str
    account: str
    currency: str
    timestamp: str
    start_balance: str = "0"
    end_balance: str = "0"
    number: str = "00000"
    sequence: str = "0"
    bank_id: str | None = None
    transactions: list[Transaction] = field(default_factory=list)

    @property
    def statement_id(self) -> str:
        return f"{self.timestamp}-{self.number}-{self.sequence}"

    def add_transaction(self, transaction: Transaction) -> None:
        self.transactions.append(transaction)

    def to_dict(self) -> dict[str, Any]:
        return {
            "statement_id": self.statement_id,
            "bank": self.bank,
            "bank_id": self.bank_id,
            "account": self.account,
            "currency": self.currency,
            "timestamp": self.timestamp,
            "start_balance": self.start_balance,
            "end_balance": self.end_balance,
            "number": self.number,
            "sequence": self.sequence,
            "transactions": [t.to_dict() for t in self.transactions],
        }


# ---------------------------------------------------------------------------
# Mapping evaluation and pipeline outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MappingEvaluation:
    """Quality of a header mapping, measured against the required fields."""

    score: int
    missing_required: tuple[str, ...]
    quality: Quality
    mapped_count: int
    total_fields: int


@dataclass(frozen=True, slots=True)
class Resolved:
    """A mapping that can be applied without review.

    ``template`` is set when the mapping came from (or was just saved as) a
    stored template.
    """

    mapping: HeaderMapping
    template: MappingTemplate | None = None


@dataclass(frozen=True, slots=True)
class NeedsReview:
    """No template matched and the suggestion is not good enough to apply.

    The caller is expected to obtain a mapping out-of-band (e.g., a review
    screen) and re-run the pipeline with it.
    """

    bank_name: str
    headers: tuple[str, ...]
    sample_rows: tuple[Row, ...]
    suggested: HeaderMapping
    evaluation: MappingEvaluation


type MappingResolution = Resolved | NeedsReview


@dataclass(slots=True)
class ParsedStatements:
    """Statements produced by one parse run, keyed by statement key."""

    statements: dict[str, Statement]
    mapping: HeaderMapping
    template: MappingTemplate | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def transaction_count(self) -> int:
        return sum(len(s.transactions) for s in self.statements.values())


# ---------------------------------------------------------------------------
# Mapping template file schema
# ---------------------------------------------------------------------------


class MappingTemplate(BaseModel):
    """Top-level schema for a ``csv_mapping_<bank>.json`` file."""

    model_config = ConfigDict(strict=True, extra="forbid")

    bank_name: str
    version: str
    created: str
    updated: str
    header_fingerprint: str
    csv_headers: list[str]
    mapping: dict[str, str]
    metadata: dict[str, Any]

    @field_validator("mapping", "metadata", mode="before")
    @classmethod
    def _empty_list_as_empty_object(cls, v: Any) -> Any:
        # Older template files store an empty map as [].
        if isinstance(v, list) and not v:
            return {}
        return v

    @field_validator("bank_name")
    @classmethod
    def _bank_name_non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("bank_name must be non-empty")
        return v


@dataclass(frozen=True, slots=True)
class TemplateSummary:
    filename: str
    bank_name: str
    created: str
    updated: str
    header_count: int
    mapping_count: int


__all__ = [
    "HeaderMapping",
    "Row",
    "Quality",
    "TransactionDC",
    "Transaction",
    "Statement",
    "MappingEvaluation",
    "Resolved",
    "NeedsReview",
    "MappingResolution",
    "ParsedStatements",
    "MappingTemplate",
    "TemplateSummary",
]
