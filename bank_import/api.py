"""Entry points for importing a statement file.

``import_statement_file`` reads a file, strips a UTF-8 BOM, detects the
format and dispatches to the OFX extractor or the CSV pipeline. Both paths
return :class:`~bank_import.models.ParsedStatements` (the OFX path with an
empty mapping) so callers handle a single shape, plus :class:`NeedsReview`
for CSV files whose mapping must be confirmed first.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from .accounts import BankAccountDirectory, PayeeShortener
from .csv_pipeline import csv_pipeline_for
from .logging_setup import get_logger
from .models import NeedsReview, ParsedStatements
from .ofx import MarkupTree, OfxStatementExtractor, parse_ofx
from .templates import TemplateStore

type StatementFormat = Literal["ofx", "csv"]

_OFX_MARKER_RE = re.compile(r"<OFX>", re.IGNORECASE)
_BOM = "\ufeff"

_logger = get_logger("bank_import.api")


def detect_format(content: str) -> StatementFormat:
    return "ofx" if _OFX_MARKER_RE.search(content) else "csv"


def parse_csv(
    content: str,
    bank_name: str,
    static_data: Mapping[str, str] | None = None,
    *,
    template_store: TemplateStore | None = None,
    mapping: Mapping[str, str] | None = None,
    remember_mapping: bool = False,
    shorten_payee: PayeeShortener | None = None,
) -> ParsedStatements | NeedsReview:
    """Parse CSV content with the pipeline registered for ``bank_name``."""

    pipeline = csv_pipeline_for(
        bank_name, template_store=template_store, shorten_payee=shorten_payee
    )
    return pipeline.parse(
        content, static_data, mapping=mapping, remember_mapping=remember_mapping
    )


def import_statement_file(
    path: str | os.PathLike[str],
    *,
    bank_name: str | None = None,
    static_data: Mapping[str, str] | None = None,
    accounts: BankAccountDirectory | None = None,
    shorten_payee: PayeeShortener | None = None,
    template_store: TemplateStore | None = None,
    mapping: Mapping[str, str] | None = None,
    remember_mapping: bool = False,
) -> ParsedStatements | NeedsReview:
    """Import one OFX/QFX or CSV file.

    For CSV, ``bank_name`` selects the pipeline and template; it defaults to
    ``static_data["bank_name"]`` and then to the file's stem.

    Raises
    ------
    MalformedDocument
        OFX content that cannot be repaired into parseable markup.
    EmptyInput
        A CSV file without lines.
    """

    p = Path(path)
    content = p.read_text(encoding="utf-8")
    if content.startswith(_BOM):
        content = content[len(_BOM) :]
    static_data = static_data or {}

    fmt = detect_format(content)
    _logger.info("import:start path=%s format=%s", os.fspath(p), fmt)
    if fmt == "ofx":
        extractor = OfxStatementExtractor(accounts=accounts, shorten_payee=shorten_payee)
        statements = extractor.extract(MarkupTree.from_content(content), static_data)
        return ParsedStatements(statements=statements, mapping={}, warnings=extractor.warnings)

    return parse_csv(
        content,
        bank_name or static_data.get("bank_name") or p.stem,
        static_data,
        template_store=template_store,
        mapping=mapping,
        remember_mapping=remember_mapping,
        shorten_payee=shorten_payee,
    )


__all__ = [
    "StatementFormat",
    "detect_format",
    "import_statement_file",
    "parse_csv",
    "parse_ofx",
]
