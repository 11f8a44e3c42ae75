"""
Common utilities shared across all database plugins.

This module provides reusable components for:
- Output formatting (HTML tables, JSON documents, plain text dumps)
"""

from .output_formatters import (
    BaseFormatter,
    HtmlFormatter,
    JsonFormatter,
    TextFormatter,
    RenderedSection,
    ReportFormat,
    get_formatter,
)

__all__ = [
    # Formatters
    'BaseFormatter',
    'HtmlFormatter',
    'JsonFormatter',
    'TextFormatter',
    'RenderedSection',
    'ReportFormat',
    'get_formatter',
]
