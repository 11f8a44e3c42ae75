"""
Output formatting for health report sections.

Provides one formatter per output format, all sharing the same interface:
- document_header / document_footer: the format's envelope
- format_section: one check's result set as a fragment
- format_failed_section: a visible notice for a check that did not run

Formatters never write anywhere. They return strings and RenderedSection
values that the report builder hands to the sink.
"""

import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import jinja2

from pg_health_report.utils.errors import FormatterError
from pg_health_report.utils.json_utils import safe_json_dumps

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "postgres" / "templates"


class ReportFormat(Enum):
    """Available output formats."""
    HTML = "html"
    JSON = "json"
    TEXT = "text"


@dataclass(frozen=True)
class RenderedSection:
    """The formatted fragment for one check."""
    title: str
    body: str
    failed: bool = False
    error: Optional[str] = None


class BaseFormatter(ABC):
    """Shared behaviour of the three formatters.

    Subclasses set ``extension``, ``row_limit`` and the envelope template
    names, and implement ``_render_rows`` and ``_render_failure``.
    """

    extension = None
    row_limit = None
    section_separator = ""
    header_template = None
    footer_template = None
    autoescape = False

    def __init__(self, template_dir=None):
        self.template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(self.template_dir / "report_parts")),
            autoescape=self.autoescape,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def document_header(self, meta: Dict) -> str:
        return self._render_part(self.header_template, meta)

    def document_footer(self, meta: Dict, truncated=False, truncation_reason=None) -> str:
        context = dict(meta, truncated=truncated, truncation_reason=truncation_reason)
        return self._render_part(self.footer_template, context)

    def format_section(self, title: str, result) -> RenderedSection:
        """Formats a successful check result.

        Args:
            title: The check title.
            result: A ResultSet. Rows past ``row_limit`` are dropped.

        Returns:
            RenderedSection: The section fragment.

        Raises:
            FormatterError: If a row does not have one cell per column.
        """
        columns = list(result.columns)
        rows = list(result.rows[:self.row_limit])
        for index, row in enumerate(rows, start=1):
            if len(row) != len(columns):
                raise FormatterError(
                    f"Row {index} of '{title}' has {len(row)} cells for {len(columns)} columns"
                )
        return RenderedSection(title=title, body=self._render_rows(title, columns, rows))

    def format_failed_section(self, title: str, cause: str) -> RenderedSection:
        return RenderedSection(title=title, body=self._render_failure(title, cause), failed=True, error=cause)

    def _render_part(self, template_name, context):
        if template_name is None:
            return ""
        try:
            return self.env.get_template(template_name).render(context)
        except jinja2.exceptions.TemplateNotFound as e:
            raise FormatterError(f"Report part '{template_name}' not found in {self.template_dir / 'report_parts'}") from e

    @abstractmethod
    def _render_rows(self, title: str, columns: List[str], rows: List[Sequence[str]]) -> str:
        """Returns the body fragment for a result with at most ``row_limit`` rows."""
        pass

    @abstractmethod
    def _render_failure(self, title: str, cause: str) -> str:
        """Returns the body fragment noting that a check failed."""
        pass


class HtmlFormatter(BaseFormatter):
    """Formats sections as an <h2> heading and a <table>."""

    extension = "html"
    row_limit = 50
    header_template = "html_header.html.j2"
    footer_template = "html_footer.html.j2"
    autoescape = True

    def _render_rows(self, title, columns, rows):
        lines = [f"<h2>{html.escape(title)}</h2>", "<table>"]
        lines.append("<tr>" + "".join(f"<th>{html.escape(col)}</th>" for col in columns) + "</tr>")
        for row in rows:
            lines.append("<tr>" + "".join(f"<td>{html.escape(cell)}</td>" for cell in row) + "</tr>")
        lines.append("</table>")
        return "\n".join(lines) + "\n"

    def _render_failure(self, title, cause):
        return (
            f"<h2>{html.escape(title)}</h2>\n"
            f"<p class=\"failed\">Check failed: {html.escape(cause)}</p>\n"
        )


class JsonFormatter(BaseFormatter):
    """Formats sections as ``"title": [ {column: cell}, ... ]`` members of one object."""

    extension = "json"
    row_limit = 10
    section_separator = ",\n"

    def document_header(self, meta):
        return "{\n"

    def document_footer(self, meta, truncated=False, truncation_reason=None):
        if truncated:
            logger.warning(f"JSON report is incomplete: {truncation_reason}")
        return "\n}\n"

    def _render_rows(self, title, columns, rows):
        keys = _unique_keys(columns)
        objects = [dict(zip(keys, row)) for row in rows]
        return self._member(title, objects)

    def _render_failure(self, title, cause):
        return self._member(title, [{"status": "failed", "error": cause}])

    @staticmethod
    def _member(title, value):
        # Escaped JSON text holds no raw newlines, so indenting line starts is safe.
        body = safe_json_dumps(value, indent=2).replace("\n", "\n  ")
        return f"  {safe_json_dumps(title)}: {body}"


class TextFormatter(BaseFormatter):
    """Formats sections as ``== title ==`` followed by an indented, pipe-delimited dump."""

    extension = "txt"
    row_limit = 10
    header_template = "text_header.txt.j2"
    footer_template = "text_footer.txt.j2"

    def _render_rows(self, title, columns, rows):
        lines = ["", self._heading(title)]
        lines.append("  " + " | ".join(_single_line(col) for col in columns))
        for row in rows:
            lines.append("  " + " | ".join(_single_line(cell) for cell in row))
        lines.append(f"  ({len(rows)} {'row' if len(rows) == 1 else 'rows'})")
        return "\n".join(lines) + "\n"

    def _render_failure(self, title, cause):
        return "\n".join(["", self._heading(title), f"  FAILED: {_single_line(cause)}"]) + "\n"

    @staticmethod
    def _heading(title):
        return f"== {_single_line(title)} =="


FORMATTERS = {
    ReportFormat.HTML: HtmlFormatter,
    ReportFormat.JSON: JsonFormatter,
    ReportFormat.TEXT: TextFormatter,
}


def get_formatter(report_format, template_dir=None):
    """Returns a formatter instance for ``report_format`` (a ReportFormat or its value)."""
    return FORMATTERS[ReportFormat(report_format)](template_dir)


def _unique_keys(columns):
    """Disambiguates repeated column names: count, count -> count, count_2."""
    keys = []
    seen = {}
    for col in columns:
        if col in seen:
            seen[col] += 1
            key = f"{col}_{seen[col]}"
            while key in seen:
                seen[col] += 1
                key = f"{col}_{seen[col]}"
            seen[key] = 1
        else:
            seen[col] = 1
            key = col
        keys.append(key)
    return keys


def _single_line(text):
    return " ".join(str(text).split())
