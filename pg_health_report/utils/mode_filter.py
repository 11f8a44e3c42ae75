"""Report modes and the tag filter that decides which checks a mode runs."""

from enum import Enum

# Checks carrying any of these tags make up the "recommended" report.
CRITICAL_TAGS = frozenset({
    'bloat',
    'unused-index',
    'long-running',
    'slow-query',
    'replication-lag',
    'wraparound-risk',
    'cache-hit-ratio',
    'missing-key',
})


class ReportMode(Enum):
    """Available report modes."""
    FULL = "full"
    RECOMMENDED = "recommended"


def include(check, mode, critical_tags=CRITICAL_TAGS):
    """Returns True if ``check`` belongs in a report run in ``mode``.

    ``full`` admits every check. ``recommended`` admits a check only when its
    tags intersect ``critical_tags``.
    """
    mode = ReportMode(mode)
    if mode is ReportMode.FULL:
        return True
    return not check.tags.isdisjoint(critical_tags)
