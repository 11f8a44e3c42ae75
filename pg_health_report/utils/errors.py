"""
Error taxonomy for the health report engine.

Only ConfigurationError, SinkError and a connectivity failure on the very
first check are allowed to end a report. Everything else is recorded against
the section that raised it and the report carries on.
"""


class HealthReportError(Exception):
    """Base class for all errors raised by the report engine."""


class ConfigurationError(HealthReportError):
    """Invalid settings or a catalogue that breaks its integrity rules."""


class MissingCheckBody(HealthReportError):
    """A catalogue entry has no query text. Logged and skipped, never raised past the builder."""

    def __init__(self, title):
        super().__init__(f"Missing SQL for '{title}'")
        self.title = title


class RunnerError(HealthReportError):
    """A diagnostic query could not be executed.

    Attributes:
        category (str): Short cause label shown in failed sections.
    """

    category = 'runner'


class RunnerConnectivityError(RunnerError):
    """The target could not be reached, or the connection was lost mid-report."""

    category = 'connection'

    def __init__(self, message, connection_lost=False):
        super().__init__(message)
        self.connection_lost = connection_lost


class RunnerStatementError(RunnerError):
    """The server rejected the statement (missing view, permission denied, ...)."""

    category = 'statement'

    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


class RunnerTimeoutError(RunnerError):
    """The statement ran past the per-check timeout and was cancelled."""

    category = 'timeout'


class FormatterError(HealthReportError):
    """A result set broke the formatter's input contract."""

    category = 'internal'


class SinkError(HealthReportError):
    """The report output could not be written."""
