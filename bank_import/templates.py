"""Persistent CSV mapping templates.

One JSON file per bank, ``csv_mapping_<sanitized bank name>.json``, under the
template directory:

- default: ``./csv_mappings`` under the current working directory
- override: ``BANK_IMPORT_TEMPLATE_DIR`` environment variable, or the
  ``template_dir`` argument

Lookup order for a header set (first hit wins):

1. the named bank's template, if its fingerprint equals the headers'
2. any template with an equal fingerprint (files scanned in name order)
3. the template with the highest Jaccard similarity of header sets, if >= 0.8

Write failures are logged and reported as ``False``; a file that cannot be
read or validated is treated as missing. Writes go to ``.tmp`` first and are
moved into place with ``os.replace``.
"""

from __future__ import annotations

import contextlib
import hashlib
import json
import os
import re
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .logging_setup import get_logger
from .models import HeaderMapping, MappingTemplate, TemplateSummary

TEMPLATE_VERSION = "1.0"
FUZZY_MATCH_THRESHOLD = 0.8

_FILENAME_UNSAFE_RE = re.compile(r"[^a-z0-9_-]")
_WHITESPACE_RE = re.compile(r"\s+")

_logger = get_logger("bank_import.templates")


def compute_header_fingerprint(headers: Iterable[str]) -> str:
    """Order-, case- and whitespace-insensitive MD5 digest of a header set."""

    normalized = sorted(_WHITESPACE_RE.sub(" ", h.strip().lower()) for h in headers)
    return hashlib.md5("|".join(normalized).encode("utf-8")).hexdigest()


def header_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard similarity (0..1) of two header sets after lowercase + trim."""

    set_a = {h.strip().lower() for h in a}
    set_b = {h.strip().lower() for h in b}
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def template_filename(bank_name: str) -> str:
    return f"csv_mapping_{_FILENAME_UNSAFE_RE.sub('_', bank_name.lower())}.json"


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _default_template_dir() -> Path:
    root = os.getenv("BANK_IMPORT_TEMPLATE_DIR")
    if root and root.strip():
        return Path(root).expanduser().resolve()
    return (Path.cwd() / "csv_mappings").resolve()


class TemplateStore:
    """File-backed store of :class:`~bank_import.models.MappingTemplate`."""

    def __init__(self, template_dir: str | os.PathLike[str] | None = None) -> None:
        self.template_dir = (
            Path(template_dir).expanduser() if template_dir is not None else _default_template_dir()
        )

    def path_for(self, bank_name: str) -> Path:
        return self.template_dir / template_filename(bank_name)

    # -- reads --------------------------------------------------------------

    def _load_file(self, path: Path) -> MappingTemplate | None:
        if not path.exists():
            return None
        try:
            return MappingTemplate.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError):
            _logger.warning("templates:unreadable path=%s", os.fspath(path), exc_info=True)
            return None

    def load_template(self, bank_name: str) -> MappingTemplate | None:
        return self._load_file(self.path_for(bank_name))

    def list_templates(self) -> list[str]:
        """Template file names in the directory, sorted."""

        if not self.template_dir.is_dir():
            return []
        return sorted(p.name for p in self.template_dir.iterdir() if p.suffix == ".json")

    def _iter_templates(self) -> Iterable[tuple[str, MappingTemplate]]:
        for filename in self.list_templates():
            template = self._load_file(self.template_dir / filename)
            if template is not None:
                yield filename, template

    def get_all_templates(self) -> list[TemplateSummary]:
        return [
            TemplateSummary(
                filename=filename,
                bank_name=t.bank_name,
                created=t.created,
                updated=t.updated,
                header_count=len(t.csv_headers),
                mapping_count=len(t.mapping),
            )
            for filename, t in self._iter_templates()
        ]

    def find_matching_template(
        self, headers: Iterable[str], bank_name: str | None = None
    ) -> MappingTemplate | None:
        headers = list(headers)
        fingerprint = compute_header_fingerprint(headers)

        if bank_name is not None:
            named = self.load_template(bank_name)
            if named is not None and named.header_fingerprint == fingerprint:
                _logger.debug("templates:match kind=named bank=%s", bank_name)
                return named

        templates = list(self._iter_templates())
        for filename, template in templates:
            if template.header_fingerprint == fingerprint:
                _logger.debug("templates:match kind=exact file=%s", filename)
                return template

        best: MappingTemplate | None = None
        best_score = 0.0
        for _filename, template in templates:
            score = header_similarity(headers, template.csv_headers)
            if score >= FUZZY_MATCH_THRESHOLD and score > best_score:
                best, best_score = template, score
        if best is not None:
            _logger.debug(
                "templates:match kind=fuzzy bank=%s score=%.3f", best.bank_name, best_score
            )
        return best

    # -- writes -------------------------------------------------------------

    def _write(self, template: MappingTemplate) -> bool:
        path = self.path_for(template.bank_name)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            self.template_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(
                json.dumps(template.model_dump(mode="json"), indent=4, ensure_ascii=False),
                encoding="utf-8",
            )
            os.replace(tmp, path)
        except OSError:
            with contextlib.suppress(OSError):
                tmp.unlink(missing_ok=True)
            _logger.warning("templates:write_failed path=%s", os.fspath(path), exc_info=True)
            return False
        return True

    def save(
        self,
        bank_name: str,
        headers: Iterable[str],
        mapping: Mapping[str, str],
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        """Create or replace the bank's template. ``created`` survives re-saves."""

        headers = list(headers)
        now = _now()
        existing = self.load_template(bank_name)
        try:
            template = MappingTemplate(
                bank_name=bank_name,
                version=TEMPLATE_VERSION,
                created=existing.created if existing is not None else now,
                updated=now,
                header_fingerprint=compute_header_fingerprint(headers),
                csv_headers=headers,
                mapping=dict(mapping),
                metadata=dict(metadata or {}),
            )
        except ValidationError as e:
            _logger.warning("templates:invalid bank=%r errors=%d", bank_name, e.error_count())
            return False
        ok = self._write(template)
        if ok:
            _logger.info("templates:saved bank=%s headers=%d", bank_name, len(headers))
        return ok

    def update_template(self, bank_name: str, mapping: HeaderMapping) -> bool:
        """Replace the mapping of an existing template; ``False`` if there is none."""

        template = self.load_template(bank_name)
        if template is None:
            return False
        updated = template.model_copy(update={"mapping": dict(mapping), "updated": _now()})
        return self._write(updated)

    def delete_template(self, bank_name: str) -> bool:
        path = self.path_for(bank_name)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError:
            _logger.warning("templates:delete_failed path=%s", os.fspath(path), exc_info=True)
            return False
        return True


__all__ = [
    "FUZZY_MATCH_THRESHOLD",
    "TemplateStore",
    "compute_header_fingerprint",
    "header_similarity",
    "template_filename",
]
