"""CLI for the ``bank_import`` package.

Environment variables (``BANK_IMPORT_TEMPLATE_DIR``, ``BANK_IMPORT_LOG_LEVEL``,
``DATABASE_URL``) are loaded from a local ``.env`` using ``python-dotenv``
before any command runs. Results are printed as JSON on stdout; logs go to
stderr. Business logic lives in ``bank_import.api`` and related modules.

Exit codes: 0 on success, 1 on errors, 2 when a CSV mapping needs review.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv

from .accounts import BankAccountDirectory, SqlBankAccountDirectory
from .errors import BankImportError
from .logging_setup import configure_logging
from .models import NeedsReview, ParsedStatements
from .templates import TemplateStore

EXIT_NEEDS_REVIEW = 2


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import OFX/QFX and CSV bank statements into normalized statements. "
        "Loads settings from a local .env before running."
    ),
)
templates_app = typer.Typer(no_args_is_help=True, help="Manage stored CSV mapping templates.")
app.add_typer(templates_app, name="templates")


FileArg = Annotated[
    Path, typer.Argument(exists=True, dir_okay=False, readable=True, help="Statement file")
]
TemplatesDirOpt = Annotated[
    Path | None,
    typer.Option("--templates-dir", help="Override BANK_IMPORT_TEMPLATE_DIR."),
]


# ---- Small module-level helpers used by CLI commands -------------------------


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(1)


def _read_mapping(path: Path) -> dict[str, str]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise _fail(f"cannot read mapping file {path}: {e}") from e
    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in data.items()
    ):
        raise _fail(f"mapping file {path} must be a JSON object of header -> field")
    return data


def _review_payload(review: NeedsReview) -> dict[str, Any]:
    return {
        "needs_review": True,
        "bank_name": review.bank_name,
        "headers": list(review.headers),
        "suggested": review.suggested,
        "evaluation": {
            "score": review.evaluation.score,
            "quality": review.evaluation.quality,
            "missing_required": list(review.evaluation.missing_required),
            "mapped_count": review.evaluation.mapped_count,
            "total_fields": review.evaluation.total_fields,
        },
        "sample_rows": list(review.sample_rows),
    }


def _account_directory(database_url: str | None) -> BankAccountDirectory | None:
    if database_url or os.getenv("DATABASE_URL"):
        return SqlBankAccountDirectory(database_url=database_url)
    return None


# ---- Commands ----------------------------------------------------------------


@app.command("parse")
def parse_cmd(
    file: FileArg,
    *,
    bank: Annotated[
        str | None, typer.Option(help="Bank name for CSV files (selects the template).")
    ] = None,
    account_name: Annotated[
        str | None, typer.Option(help="OFX bank name when the file has none.")
    ] = None,
    account_code: Annotated[
        str | None, typer.Option(help="OFX bank id when the file has none.")
    ] = None,
    account: Annotated[str | None, typer.Option(help="CSV statement account.")] = None,
    currency: Annotated[str | None, typer.Option(help="CSV statement currency.")] = None,
    mapping: Annotated[
        Path | None,
        typer.Option(help="JSON file with a reviewed header -> field mapping for CSV files."),
    ] = None,
    remember: Annotated[
        bool, typer.Option(help="Save the --mapping as the bank's template.")
    ] = False,
    templates_dir: TemplatesDirOpt = None,
    database_url: Annotated[
        str | None,
        typer.Option(help="Resolve account names from this database (falls back to env)."),
    ] = None,
) -> None:
    """Parse a statement file and print its statements as JSON."""

    from .api import import_statement_file

    static_data = {
        k: v
        for k, v in {
            "account_name": account_name,
            "account_code": account_code,
            "bank_name": bank,
            "account": account,
            "currency": currency,
        }.items()
        if v
    }
    try:
        result = import_statement_file(
            file,
            bank_name=bank,
            static_data=static_data,
            accounts=_account_directory(database_url),
            template_store=TemplateStore(templates_dir),
            mapping=_read_mapping(mapping) if mapping is not None else None,
            remember_mapping=remember,
        )
    except (BankImportError, UnicodeDecodeError) as e:
        raise _fail(f"{file}: {e}") from e

    if isinstance(result, NeedsReview):
        _echo_json(_review_payload(result))
        raise typer.Exit(EXIT_NEEDS_REVIEW)
    _echo_json(_statements_payload(result))


def _statements_payload(result: ParsedStatements) -> dict[str, Any]:
    return {
        "statements": {key: s.to_dict() for key, s in result.statements.items()},
        "transaction_count": result.transaction_count,
        "mapping": result.mapping,
        "template": result.template.bank_name if result.template is not None else None,
        "warnings": result.warnings,
    }


@app.command("suggest")
def suggest_cmd(file: FileArg) -> None:
    """Print the suggested mapping and its evaluation for a CSV file."""

    from .csv_pipeline import parse_csv_line, read_sample_rows
    from .fields import evaluate_mapping, suggest_mapping

    lines = file.read_text(encoding="utf-8").lstrip("\ufeff").split("\n")
    if not lines[0].strip():
        raise _fail(f"{file}: CSV content is empty")
    headers = parse_csv_line(lines[0])
    samples = read_sample_rows(lines[1:], headers)
    suggested = suggest_mapping(headers, samples)
    evaluation = evaluate_mapping(suggested)
    _echo_json(
        {
            "headers": headers,
            "suggested": suggested,
            "score": evaluation.score,
            "quality": evaluation.quality,
            "missing_required": list(evaluation.missing_required),
        }
    )


@templates_app.command("list")
def templates_list_cmd(templates_dir: TemplatesDirOpt = None) -> None:
    """List stored templates."""

    store = TemplateStore(templates_dir)
    _echo_json(
        [
            {
                "filename": s.filename,
                "bank_name": s.bank_name,
                "created": s.created,
                "updated": s.updated,
                "header_count": s.header_count,
                "mapping_count": s.mapping_count,
            }
            for s in store.get_all_templates()
        ]
    )


@templates_app.command("show")
def templates_show_cmd(bank: str, templates_dir: TemplatesDirOpt = None) -> None:
    """Print a bank's template."""

    template = TemplateStore(templates_dir).load_template(bank)
    if template is None:
        raise _fail(f"no template for bank {bank!r}")
    _echo_json(template.model_dump(mode="json"))


@templates_app.command("delete")
def templates_delete_cmd(bank: str, templates_dir: TemplatesDirOpt = None) -> None:
    """Delete a bank's template."""

    if not TemplateStore(templates_dir).delete_template(bank):
        raise _fail(f"no template deleted for bank {bank!r}")
    typer.echo(f"Deleted template for {bank}")


@templates_app.command("save")
def templates_save_cmd(
    bank: str,
    csv_file: FileArg,
    mapping: Annotated[
        Path, typer.Option(help="JSON file with the header -> field mapping.")
    ],
    templates_dir: TemplatesDirOpt = None,
) -> None:
    """Save a mapping for the headers of CSV_FILE as the bank's template."""

    from .csv_pipeline import parse_csv_line

    first_line = csv_file.read_text(encoding="utf-8").lstrip("\ufeff").split("\n", 1)[0]
    headers = parse_csv_line(first_line)
    mapping_data = _read_mapping(mapping)
    unknown = sorted(set(mapping_data) - set(headers))
    if unknown:
        raise _fail(f"mapping refers to headers not in {csv_file}: {', '.join(unknown)}")
    store = TemplateStore(templates_dir)
    if not store.save(bank, headers, mapping_data, {"created_by": "user"}):
        raise _fail(f"could not write template for bank {bank!r}")
    typer.echo(f"Saved template {store.path_for(bank)}")


@app.callback()
def _root(
    log_level: Annotated[
        str | None,
        typer.Option(help="Log level (DEBUG, INFO, ...); overrides BANK_IMPORT_LOG_LEVEL."),
    ] = None,
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)


if __name__ == "__main__":  # pragma: no cover
    app()
