"""Destinations for a rendered health report.

A sink is owned by exactly one report builder for the length of one
report. Every failure to write surfaces as SinkError, which ends the report.
"""

import logging
import os
from abc import ABC, abstractmethod
from datetime import date
from pathlib import Path

from pg_health_report.utils.errors import SinkError

logger = logging.getLogger(__name__)


def report_path(output_dir, mode, extension, report_date=None):
    """Builds ``<output_dir>/<YYYY-MM-DD>/report_<mode>.<extension>``.

    Args:
        output_dir (str | Path): Base directory for all reports. ``~`` is expanded.
        mode (str): The report mode value (e.g. 'full').
        extension (str): File extension of the output format.
        report_date (date, optional): Day folder to use. Defaults to today.

    Returns:
        Path: Full path of the report file.
    """
    report_date = report_date or date.today()
    return Path(output_dir).expanduser() / report_date.isoformat() / f"report_{mode}.{extension}"


class ReportSink(ABC):
    """Abstract base class for report sinks."""

    location = None

    @abstractmethod
    def write(self, text):
        """Appends ``text`` to the destination, raising SinkError on failure."""
        pass

    def close(self):
        """Flushes and releases the destination."""

    def abort(self):
        """Discards whatever was written, if the destination allows it."""
        self.close()


class FileSink(ReportSink):
    """Writes the report to a file, creating its parent directories."""

    def __init__(self, path):
        self.path = Path(path)
        self.location = str(self.path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.path, 'w', encoding='utf-8')
        except OSError as e:
            raise SinkError(f"Cannot open report file {self.path}: {e}") from e

    def write(self, text):
        try:
            self._handle.write(text)
            self._handle.flush()
        except (OSError, ValueError) as e:
            raise SinkError(f"Cannot write report file {self.path}: {e}") from e

    def close(self):
        if self._handle.closed:
            return
        try:
            self._handle.close()
        except OSError as e:
            raise SinkError(f"Cannot close report file {self.path}: {e}") from e

    def abort(self):
        if not self._handle.closed:
            self._handle.close()
        try:
            os.remove(self.path)
            logger.info(f"Removed incomplete report {self.path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove incomplete report {self.path}: {e}")


class StreamSink(ReportSink):
    """Writes the report to an already-open text stream such as stdout.

    The stream is flushed, never closed; its owner closes it.
    """

    def __init__(self, stream, location='<stream>'):
        self.stream = stream
        self.location = location

    def write(self, text):
        try:
            self.stream.write(text)
        except (OSError, ValueError) as e:
            raise SinkError(f"Cannot write report to {self.location}: {e}") from e

    def close(self):
        try:
            self.stream.flush()
        except (OSError, ValueError) as e:
            raise SinkError(f"Cannot flush report to {self.location}: {e}") from e

    def abort(self):
        logger.warning(f"Report written to {self.location} is incomplete")
