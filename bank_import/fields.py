"""Canonical CSV fields and header-to-field suggestion.

Scoring a header against a field (0..100):

- exact (case-insensitive, trimmed) match on the field name: 100
- exact match on a synonym: 95
- otherwise ``int(0.8 * best character similarity to any synonym)``, plus a
  flat +20 when at least 70% of the non-empty sample values in that column
  match the field's pattern.

Suggestion is greedy in catalog order: each field takes the best-scoring
header not yet claimed, provided the score exceeds 30. A header that would
score higher for a later field can be taken by an earlier one; this ordering
is part of the observable behavior and must not be "optimized".
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from difflib import SequenceMatcher

from .models import HeaderMapping, MappingEvaluation, Quality, Row

MIN_SUGGESTION_SCORE = 30
PATTERN_BONUS = 20
PATTERN_MATCH_RATIO = 0.7


@dataclass(frozen=True, slots=True)
class FieldDefinition:
    name: str
    required: bool
    synonyms: tuple[str, ...]
    pattern: re.Pattern[str] | None = None


_MONEY = r"^\$?\d+[\d,]*\.?\d*$"
_SIGNED_MONEY = r"^[\-+]?\$?\d+[\d,]*\.?\d*$"

FIELD_CATALOG: tuple[FieldDefinition, ...] = (
    FieldDefinition(
        "date",
        True,
        (
            "date",
            "transaction date",
            "trans date",
            "posted date",
            "posting date",
            "value date",
            "transaction_date",
            "trans_date",
        ),
        # mm/dd/yyyy or yyyy-mm-dd
        re.compile(r"^\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}$|^\d{4}[/\-]\d{1,2}[/\-]\d{1,2}$"),
    ),
    FieldDefinition(
        "description",
        True,
        (
            "description",
            "merchant",
            "merchant name",
            "payee",
            "memo",
            "details",
            "transaction details",
            "narrative",
            "particulars",
        ),
    ),
    FieldDefinition(
        "amount",
        True,
        ("amount", "value", "transaction amount", "debit", "credit"),
        re.compile(_SIGNED_MONEY),
    ),
    FieldDefinition(
        "debit",
        False,
        ("debit", "withdrawal", "payment", "debit amount", "withdrawals"),
        re.compile(_MONEY),
    ),
    FieldDefinition(
        "credit",
        False,
        ("credit", "deposit", "credit amount", "deposits"),
        re.compile(_MONEY),
    ),
    FieldDefinition(
        "balance",
        False,
        ("balance", "running balance", "account balance", "current balance", "available balance"),
        re.compile(_SIGNED_MONEY),
    ),
    FieldDefinition(
        "reference",
        False,
        (
            "reference",
            "ref",
            "reference number",
            "transaction id",
            "trans id",
            "check number",
            "cheque number",
        ),
        re.compile(r"^[A-Z0-9\-]+$"),
    ),
    FieldDefinition(
        "category",
        False,
        ("category", "type", "transaction type", "trans type", "activity type"),
    ),
    FieldDefinition(
        "account",
        False,
        ("account", "account number", "account name", "acct", "card number"),
    ),
)

FIELDS_BY_NAME: dict[str, FieldDefinition] = {f.name: f for f in FIELD_CATALOG}
REQUIRED_FIELDS: tuple[str, ...] = tuple(f.name for f in FIELD_CATALOG if f.required)


def character_similarity(a: str, b: str) -> float:
    """Percentage of matching characters between ``a`` and ``b`` (0..100).

    ``2 * M / (len(a) + len(b)) * 100`` where ``M`` is the number of characters
    in matching blocks. Symmetric: the larger of both argument orders is used.
    """

    if not a and not b:
        return 0.0
    forward = SequenceMatcher(None, a, b, autojunk=False).ratio()
    backward = SequenceMatcher(None, b, a, autojunk=False).ratio()
    return max(forward, backward) * 100


def _pattern_matches(header: str, pattern: re.Pattern[str], samples: Sequence[Row]) -> bool:
    tested = matched = 0
    for row in samples:
        value = row.get(header)
        if value is None:
            continue
        value = value.strip()
        if not value:
            continue
        tested += 1
        if pattern.search(value):
            matched += 1
    return tested > 0 and matched / tested >= PATTERN_MATCH_RATIO


def score_header(header: str, field: FieldDefinition, samples: Sequence[Row] = ()) -> int:
    """Confidence (0..100) that ``header`` holds values for ``field``."""

    needle = header.strip().lower()
    if needle == field.name.lower():
        return 100
    synonyms = [s.lower() for s in field.synonyms]
    if needle in synonyms:
        return 95

    best = max((character_similarity(needle, s) for s in synonyms), default=0.0)
    score = int(best * 0.8)
    if field.pattern is not None and samples and _pattern_matches(header, field.pattern, samples):
        score += PATTERN_BONUS
    return score


def suggest_mapping(headers: Iterable[str], samples: Sequence[Row] = ()) -> HeaderMapping:
    """Greedy one-header-per-field assignment in catalog order.

    Ties go to the header that appears first.
    """

    headers = list(headers)
    claimed: set[str] = set()
    mapping: HeaderMapping = {}
    for field in FIELD_CATALOG:
        best_header: str | None = None
        best_score = 0
        for header in headers:
            if header in claimed:
                continue
            score = score_header(header, field, samples)
            if score > best_score:
                best_header, best_score = header, score
        if best_header is not None and best_score > MIN_SUGGESTION_SCORE:
            mapping[best_header] = field.name
            claimed.add(best_header)
    return mapping


def _quality(score: int) -> Quality:
    if score >= 90:
        return "excellent"
    if score >= 70:
        return "good"
    if score >= 50:
        return "fair"
    return "poor"


def evaluate_mapping(mapping: Mapping[str, str]) -> MappingEvaluation:
    """Score a mapping by the share of required fields it covers."""

    mapped = set(mapping.values())
    missing = tuple(name for name in REQUIRED_FIELDS if name not in mapped)
    total = len(REQUIRED_FIELDS)
    score = int((total - len(missing)) / total * 100) if total else 0
    return MappingEvaluation(
        score=score,
        missing_required=missing,
        quality=_quality(score),
        mapped_count=len(mapping),
        total_fields=len(FIELD_CATALOG),
    )


__all__ = [
    "FIELD_CATALOG",
    "FIELDS_BY_NAME",
    "FieldDefinition",
    "REQUIRED_FIELDS",
    "character_similarity",
    "evaluate_mapping",
    "score_header",
    "suggest_mapping",
]
