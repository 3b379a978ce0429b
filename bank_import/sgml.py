"""SGML (OFX 1.x / QFX) to well-formed markup conversion.

OFX 1.x is SGML: leaf elements are usually left open (``<TRNAMT>-12.50``) and
are closed implicitly by the next sibling or by the parent's close tag. This
module rewrites such documents line by line into markup that
:mod:`xml.etree.ElementTree` accepts.

Assumptions
-----------
- Every tag starts a line. Documents delivered on a single line are expanded
  by :func:`prepare_ofx_sgml` (a newline is inserted before every ``<``), so a
  one-line ``<NAME>foo</NAME>`` arrives as ``<NAME>foo`` / ``</NAME>``.
- A line carries at most one open/close tag pair plus optional text. Lines
  that pack several tags together are split before repair.

Repair strategy
---------------
Open tags are kept on an explicit stack of ``(line_index, tag)``. When a
close tag ``</X>`` arrives the stack is popped until ``X`` is found; every
popped element other than ``X`` is closed where it stands. Nesting is resolved
strictly LIFO. A close tag for an element that is not open is dropped.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET

from .errors import MalformedDocument
from .logging_setup import get_logger

_logger = get_logger("bank_import.sgml")

_BARE_AMPERSAND_RE = re.compile(r"&(?!#?[a-z0-9]+;)")
_ONE_LINE_OFX_RE = re.compile(r"<OFX>.*</OFX>", re.IGNORECASE)
_SELF_CLOSED_RE = re.compile(r"<[^<>/]+/>")
_TAG_START_RE = re.compile(r"(?=<)")


def extract_tag(line: str) -> str:
    """Return the first tag name on ``line`` (a leading ``/`` is stripped).

    Returns an empty string when the line carries no complete tag.
    """

    start = line.find("<")
    if start == -1:
        return ""
    end = line.find(">", start)
    if end == -1:
        return ""
    return line[start + 1 : end].lstrip("/")


class TagRepairer:
    """Stateful, line-at-a-time closer for implicitly closed SGML elements.

    The repairer buffers every line it has seen because closing an element
    rewrites the line on which that element was opened. Feed lines in
    document order with :meth:`repair`, then call :meth:`render`.
    """

    def __init__(self) -> None:
        self.lines: list[str | None] = []
        self.stack: list[tuple[int, str]] = []

    # -- public API ---------------------------------------------------------

    def repair(self, line: str) -> str | None:
        """Repair one line and append it to the buffer.

        Returns the line as currently buffered, or ``None`` when the line was
        dropped (a redundant or dangling close tag). Earlier lines may be
        rewritten as a side effect.
        """

        index = len(self.lines)
        repaired = self._repair_line(index, line.strip())
        self.lines.append(repaired)
        return repaired

    def finish(self) -> None:
        """Close everything still open at end of document (LIFO)."""

        trailing: list[str] = []
        while self.stack:
            open_index, tag = self.stack.pop()
            closing = self._close_in_place(open_index, tag)
            if closing is not None:
                trailing.append(closing)
        self.lines.extend(trailing)

    def render(self) -> str:
        self.finish()
        return "\n".join(line for line in self.lines if line)

    # -- internals ----------------------------------------------------------

    def _repair_line(self, index: int, line: str) -> str | None:
        if "<" not in line:
            # Free text or an empty line.
            return line
        if line.startswith(("<?", "<!")) or _SELF_CLOSED_RE.fullmatch(line):
            return line

        tag = extract_tag(line)
        if not tag:
            return line

        if line == f"<{tag}>":
            self.stack.append((index, tag))
            return line

        if line.startswith("</"):
            closed = self._close(tag)
            remainder = line[line.index(">") + 1 :].strip()
            if not remainder:
                return closed
            return f"{closed}{remainder}" if closed else remainder

        if f"</{tag}>" in line:
            return line

        # "<TAG>value": closed later, by its own close tag or by whichever
        # close tag pops it off the stack.
        self.stack.append((index, tag))
        return line

    def _close(self, tag: str) -> str | None:
        if all(open_tag != tag for _, open_tag in self.stack):
            _logger.debug("sgml:dangling_close tag=%s", tag)
            return None

        pending: list[str] = []
        while self.stack:
            open_index, open_tag = self.stack.pop()
            if open_tag == tag:
                opened = self.lines[open_index]
                if opened != f"<{tag}>":
                    # "<X>value" followed by its own "</X>" on the next line.
                    self.lines[open_index] = f"{opened}</{tag}>"
                    return "\n".join(pending) or None
                pending.append(f"</{tag}>")
                return "\n".join(pending)
            closing = self._close_in_place(open_index, open_tag)
            if closing is not None:
                pending.append(closing)
        return "\n".join(pending) or None

    def _close_in_place(self, open_index: int, tag: str) -> str | None:
        """Close an implicitly terminated element.

        Value elements are closed on their own line. Empty containers become
        self-closed. A container with children needs a close tag at the
        current position, which is returned for the caller to emit.
        """

        opened = self.lines[open_index]
        if opened != f"<{tag}>":
            self.lines[open_index] = f"{opened}</{tag}>"
            _logger.debug("sgml:closed_value tag=%s line=%d", tag, open_index)
            return None
        if any(self.lines[j] for j in range(open_index + 1, len(self.lines))):
            return f"</{tag}>"
        self.lines[open_index] = f"<{tag}/>"
        return None


def _split_tags(line: str) -> list[str]:
    # "<CODE>0<SEVERITY>INFO" -> ["<CODE>0", "<SEVERITY>INFO"]; a trailing
    # "</X>" lands on its own piece and is merged back by the repairer.
    pieces = [p.strip() for p in _TAG_START_RE.split(line)]
    return [p for p in pieces if p] or [line]


def convert_sgml_to_markup(sgml: str) -> str:
    """Convert an SGML OFX body into well-formed markup. Never raises."""

    sgml = _BARE_AMPERSAND_RE.sub("&amp;", sgml)
    repairer = TagRepairer()
    for line in sgml.split("\n"):
        for piece in _split_tags(line):
            repairer.repair(piece)
    return repairer.render()


def prepare_ofx_sgml(content: str) -> str:
    """Isolate the ``<OFX>`` body of an OFX/QFX export.

    Strips the SGML header block (``OFXHEADER:100`` ...) or the XML prolog
    and, for single-line documents, puts every tag on its own line.
    """

    if _ONE_LINE_OFX_RE.search(content):
        content = content.replace("<", "\n<")

    start = content.upper().find("<OFX>")
    if start == -1:
        raise MalformedDocument("no <OFX> element found", diagnostics="missing <OFX> marker")
    return content[start:].strip()


def load_markup(content: str) -> ET.Element:
    """Return the parsed ``<OFX>`` element for an OFX/QFX export.

    Raises
    ------
    MalformedDocument
        When the document has no ``<OFX>`` marker or the repaired markup is
        still rejected by the XML parser.
    """

    markup = convert_sgml_to_markup(prepare_ofx_sgml(content))
    try:
        return ET.fromstring(markup)
    except ET.ParseError as exc:
        line, column = exc.position
        raise MalformedDocument(
            f"failed to parse OFX markup: {exc}",
            diagnostics=f"{exc} (line {line}, column {column})",
        ) from exc


__all__ = [
    "TagRepairer",
    "convert_sgml_to_markup",
    "extract_tag",
    "load_markup",
    "prepare_ofx_sgml",
]
