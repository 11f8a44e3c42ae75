"""
Defines the check catalogue: the ordered list of diagnostic queries a report
is built from.

A catalogue is an explicit sequence of Check records. Its order is the
presentation order of every report, whatever the output format.
"""

import importlib.util
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Iterable, Optional, Tuple

from pg_health_report.utils.errors import ConfigurationError, MissingCheckBody

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Check:
    """A single named diagnostic query.

    Attributes:
        id: Stable ordinal, strictly increasing through the catalogue.
        title: Section heading, unique within the catalogue.
        query: Diagnostic statement text.
        tags: Category tags used by the report mode filter.
    """
    id: int
    title: str
    query: str
    tags: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        # Accept any iterable of tags in catalogue files.
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, 'tags', frozenset(self.tags))

    @property
    def has_query(self) -> bool:
        return bool(self.query and self.query.strip())


@dataclass(frozen=True)
class ResultSet:
    """Columns and stringified rows returned by one check's query."""
    columns: Tuple[str, ...]
    rows: Tuple[Tuple[str, ...], ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'columns', tuple(self.columns))
        object.__setattr__(self, 'rows', tuple(tuple(row) for row in self.rows))


class CheckCatalogue:
    """An immutable, ordered collection of checks.

    Construction validates the integrity rules and raises ConfigurationError
    on the first violation: ids must be positive and strictly increasing and
    titles must be non-empty and unique. A check without query text does not
    fail construction; it is reported here and skipped when the report runs.
    """

    def __init__(self, checks: Iterable[Check]):
        self._checks = tuple(checks)
        self._validate()

    def _validate(self):
        seen_titles = set()
        previous_id = 0
        for check in self._checks:
            if not isinstance(check, Check):
                raise ConfigurationError(f"Catalogue entries must be Check records, got {type(check).__name__}")
            if check.id <= previous_id:
                raise ConfigurationError(
                    f"Check ids must be strictly increasing: '{check.title}' has id {check.id} after {previous_id}"
                )
            if not check.title or not check.title.strip():
                raise ConfigurationError(f"Check {check.id} has an empty title")
            if check.title in seen_titles:
                raise ConfigurationError(f"Duplicate check title: '{check.title}'")
            if not check.has_query:
                logger.warning(str(MissingCheckBody(check.title)))
            seen_titles.add(check.title)
            previous_id = check.id

    def all_checks(self) -> Tuple[Check, ...]:
        return self._checks

    def __iter__(self):
        return iter(self._checks)

    def __len__(self):
        return len(self._checks)


def load_catalogue(catalogue_file: Optional[str] = None) -> CheckCatalogue:
    """Loads a catalogue definition module and validates it.

    The module must expose a ``CHECKS`` list of Check records. Without a
    path, the built-in PostgreSQL catalogue is used.

    Args:
        catalogue_file: Path to a Python file defining ``CHECKS``.

    Returns:
        CheckCatalogue: The validated catalogue.

    Raises:
        ConfigurationError: If the file is missing, has no ``CHECKS``, or the
            checks break the catalogue integrity rules.
    """
    if catalogue_file is None:
        from pg_health_report.plugins.postgres.reports.default import CHECKS
        return CheckCatalogue(CHECKS)

    config_path = Path(catalogue_file)
    if not config_path.is_file():
        raise ConfigurationError(f"Report configuration file not found: {config_path}")

    spec = importlib.util.spec_from_file_location("report_catalogue_module", config_path)
    catalogue_module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(catalogue_module)
    except Exception as e:
        raise ConfigurationError(f"Could not load report configuration {config_path}: {e}") from e

    checks = getattr(catalogue_module, 'CHECKS', None)
    if checks is None:
        raise ConfigurationError(f"Report configuration {config_path} does not define CHECKS")
    return CheckCatalogue(checks)
