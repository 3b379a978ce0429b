"""Public interface for the ``bank_import`` package.

This module re-exports the import entry points, the statement/transaction
models and the error types. There is no runtime logic here.
"""

from .api import detect_format, import_statement_file, parse_csv, parse_ofx
from .csv_pipeline import CsvRowPipeline, ManulifeCsvPipeline, csv_pipeline_for
from .errors import BankImportError, EmptyInput, MalformedDocument
from .models import (
    MappingEvaluation,
    MappingTemplate,
    NeedsReview,
    ParsedStatements,
    Resolved,
    Statement,
    Transaction,
    TransactionDC,
)
from .templates import TemplateStore

__all__ = [
    # API
    "detect_format",
    "import_statement_file",
    "parse_csv",
    "parse_ofx",
    "CsvRowPipeline",
    "ManulifeCsvPipeline",
    "csv_pipeline_for",
    "TemplateStore",
    # Models / types
    "Statement",
    "Transaction",
    "TransactionDC",
    "MappingEvaluation",
    "MappingTemplate",
    "NeedsReview",
    "ParsedStatements",
    "Resolved",
    # Errors
    "BankImportError",
    "EmptyInput",
    "MalformedDocument",
]
