"""
Defines the ReportBuilder class, which assembles a health report by running
each catalogue check and streaming the formatted sections to a sink.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from pg_health_report.plugins.common.output_formatters import RenderedSection, ReportFormat, get_formatter
from pg_health_report.utils.errors import (
    FormatterError,
    MissingCheckBody,
    RunnerConnectivityError,
    RunnerError,
    SinkError,
)
from pg_health_report.utils.mode_filter import CRITICAL_TAGS, ReportMode, include

logger = logging.getLogger(__name__)

REPORT_TITLE = "PostgreSQL Master Health Check Report"


@dataclass(frozen=True)
class Report:
    """The assembled report and the facts stated in its header."""
    sections: Tuple[RenderedSection, ...]
    generated_at: datetime
    target: str
    mode: ReportMode
    report_format: ReportFormat
    location: Optional[str] = None
    truncated: bool = False
    truncation_reason: Optional[str] = None

    @property
    def failed_sections(self):
        return tuple(section for section in self.sections if section.failed)


class _StopReport(Exception):
    """Ends the check loop early; the report is still finished with a footer."""


class ReportBuilder:
    """Handles the construction of one health report.

    The builder walks the catalogue in order, skips checks with no query and
    checks the mode excludes, runs the rest through the query runner with the
    output format's row limit, and writes each formatted section to the sink
    as soon as it is available. A check that fails becomes a section marked
    as failed; it never stops the checks after it.

    Attributes:
        runner (object): Anything with ``run(query, row_limit, timeout)``
            returning a ResultSet or raising RunnerError.
        catalogue (CheckCatalogue): The ordered checks.
        mode (ReportMode): Selects all checks or the critical subset.
        report_format (ReportFormat): Output encoding.
        sink (ReportSink): Exclusive destination of the rendered report.
        target (str): Identity of the database shown in the header.
        timeout (float): Per-check timeout in seconds, or None.
        max_workers (int): Checks run concurrently; 1 runs them in sequence.
    """

    def __init__(self, runner, catalogue, mode, report_format, sink, target,
                 timeout=None, max_workers=1, critical_tags=CRITICAL_TAGS,
                 template_dir=None, clock=None, cancel_event=None,
                 report_title=REPORT_TITLE):
        self.runner = runner
        self.catalogue = catalogue
        self.mode = ReportMode(mode)
        self.report_format = ReportFormat(report_format)
        self.sink = sink
        self.target = target
        self.timeout = timeout
        self.max_workers = max(1, int(max_workers))
        self.critical_tags = frozenset(critical_tags)
        self.formatter = get_formatter(self.report_format, template_dir)
        self.clock = clock or (lambda: datetime.now().astimezone())
        self.cancel_event = cancel_event
        self.report_title = report_title

    def build(self):
        """Builds the full report and writes it to the sink.

        Returns:
            Report: The sections in catalogue order plus the header facts.

        Raises:
            RunnerConnectivityError: If the very first check cannot reach the
                target. The partial output is discarded.
            SinkError: If the report cannot be written.
            KeyboardInterrupt: If interrupted outside the check loop. The
                partial output is discarded.
        """
        generated_at = self.clock()
        sections = []
        truncation_reason = None

        try:
            self._write(self.formatter.document_header(self._metadata(generated_at)))
            outcomes = self._execute(self._select_checks())
            try:
                for check, outcome in outcomes:
                    section = self._render(check, outcome, first=not sections)
                    self._write(self.formatter.section_separator if sections else "")
                    self._write(section.body)
                    sections.append(section)
                    if isinstance(outcome, RunnerConnectivityError) and outcome.connection_lost:
                        raise _StopReport(f"connection lost after '{check.title}'")
            except _StopReport as stop:
                truncation_reason = str(stop)
            except KeyboardInterrupt:
                truncation_reason = "interrupted by operator"
            finally:
                outcomes.close()

            if truncation_reason:
                logger.warning(f"Report stopped early ({truncation_reason}); "
                               f"{len(sections)} section(s) written")

            footer_meta = self._metadata(self.clock())
            self._write(self.formatter.document_footer(
                footer_meta, truncated=bool(truncation_reason), truncation_reason=truncation_reason
            ))
            self.sink.close()
        except (SinkError, RunnerConnectivityError, FormatterError, KeyboardInterrupt):
            self.sink.abort()
            raise

        return Report(
            sections=tuple(sections),
            generated_at=generated_at,
            target=self.target,
            mode=self.mode,
            report_format=self.report_format,
            location=self.sink.location,
            truncated=bool(truncation_reason),
            truncation_reason=truncation_reason,
        )

    def _metadata(self, moment):
        return {
            'report_title': self.report_title,
            'generated_at': moment.strftime('%Y-%m-%d %H:%M:%S %Z').strip(),
            'target': self.target,
            'mode': self.mode.value,
        }

    def _select_checks(self):
        selected = []
        for check in self.catalogue.all_checks():
            if not check.has_query:
                logger.warning(f"{MissingCheckBody(check.title)}; skipping")
                continue
            if not include(check, self.mode, self.critical_tags):
                continue
            selected.append(check)
        logger.info(f"Running {len(selected)} of {len(self.catalogue)} checks "
                    f"(mode={self.mode.value}, format={self.report_format.value})")
        return selected

    def _execute(self, checks):
        """Yields ``(check, ResultSet | RunnerError)`` pairs in catalogue order."""
        if self.max_workers == 1:
            for check in checks:
                self._raise_if_cancelled()
                yield check, self._run_check(check)
            return

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="health-check")
        try:
            futures = [(check, executor.submit(self._run_check, check)) for check in checks]
            for check, future in futures:
                self._raise_if_cancelled()
                yield check, future.result()
        finally:
            # Queued checks are dropped; running ones are bounded by the per-check
            # timeout and must return their connections before the pool is closed.
            executor.shutdown(wait=True, cancel_futures=True)

    def _raise_if_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise _StopReport("cancelled")

    def _run_check(self, check):
        logger.debug(f"Running check {check.id}: {check.title}")
        try:
            return self.runner.run(check.query, self.formatter.row_limit, self.timeout)
        except RunnerError as e:
            return e
        except Exception as e:
            logger.exception(f"Query runner raised an unexpected error for '{check.title}'")
            return RunnerError(str(e))

    def _render(self, check, outcome, first):
        if isinstance(outcome, RunnerError):
            if isinstance(outcome, RunnerConnectivityError) and first:
                logger.error(f"Target unreachable on first check '{check.title}': {outcome}")
                raise outcome
            logger.warning(f"Check '{check.title}' failed ({outcome.category}): {outcome}")
            return self.formatter.format_failed_section(check.title, f"{outcome.category}: {outcome}")

        try:
            return self.formatter.format_section(check.title, outcome)
        except FormatterError as e:
            logger.exception(f"Could not format '{check.title}'")
            return self.formatter.format_failed_section(check.title, f"{e.category}: {e}")

    def _write(self, text):
        if text:
            self.sink.write(text)
