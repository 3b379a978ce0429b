"""Exceptions raised by the import pipelines.

Only conditions that abort a whole file are exceptions. Row-level problems
(shape mismatches, missing required values) are logged and skipped, a
mapping that needs human review is returned as a
:class:`bank_import.models.NeedsReview` value, and template persistence
failures are reported as ``False`` by :class:`bank_import.templates.TemplateStore`.
"""

from __future__ import annotations


class BankImportError(Exception):
    """Base class for fatal, per-file import errors."""


class MalformedDocument(BankImportError, ValueError):
    """OFX/QFX content that could not be turned into parseable markup.

    ``diagnostics`` carries the markup parser's message (or a short reason when
    the document was rejected before parsing).
    """

    def __init__(self, message: str, *, diagnostics: str | None = None) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics if diagnostics is not None else message


class EmptyInput(BankImportError, ValueError):
    """A CSV file with no lines to parse."""


__all__ = ["BankImportError", "MalformedDocument", "EmptyInput"]
