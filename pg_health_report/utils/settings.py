"""
Loads and validates the health report settings.

Settings come from a YAML file (``config/config.yaml`` by default) and may
be overridden from the command line. Every problem is reported as a
ConfigurationError before any connection is attempted.
"""

import logging
import os
from pathlib import Path

import yaml

from pg_health_report.plugins.common.output_formatters import ReportFormat
from pg_health_report.utils.errors import ConfigurationError
from pg_health_report.utils.mode_filter import ReportMode

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ['host', 'database', 'user']

MAX_WORKERS_LIMIT = 8

DEFAULTS = {
    'db_type': 'postgres',
    'port': 5432,
    'password': None,
    'pgpass_file': '~/.pgpass',
    'report_mode': ReportMode.FULL.value,
    'format': ReportFormat.HTML.value,
    'output_dir': '~/pg_health_reports',
    'check_timeout_seconds': 60,
    'connect_timeout': 10,
    'max_workers': 1,
    'log_level': 'INFO',
    'log_file': None,
}


def load_settings(config_file, overrides=None):
    """Loads the YAML settings file, applies defaults and overrides, and validates.

    Args:
        config_file (str): Path to the YAML settings file.
        overrides (dict, optional): Values that win over the file, typically
            from command-line flags. ``None`` values are ignored.

    Returns:
        dict: The validated settings.

    Raises:
        ConfigurationError: If the file cannot be read or a setting is invalid.
    """
    try:
        with open(config_file, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Error loading settings from {config_file}: {e}") from e

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Settings file {config_file} must contain a mapping")

    settings = dict(DEFAULTS)
    settings.update(loaded)
    for key, value in (overrides or {}).items():
        if value is not None:
            settings[key] = value

    return validate_settings(settings)


def validate_settings(settings):
    """Checks required keys, enumerations and numeric limits in place."""
    missing = [s for s in REQUIRED_SETTINGS if not settings.get(s)]
    if missing:
        raise ConfigurationError(f"Missing required settings: {missing}")

    try:
        settings['report_mode'] = ReportMode(settings['report_mode']).value
    except ValueError:
        raise ConfigurationError(
            f"Invalid report_mode '{settings['report_mode']}'. Choose from {[m.value for m in ReportMode]}"
        ) from None

    try:
        settings['format'] = ReportFormat(settings['format']).value
    except ValueError:
        raise ConfigurationError(
            f"Invalid format '{settings['format']}'. Choose from {[f.value for f in ReportFormat]}"
        ) from None

    for key in ('port', 'connect_timeout', 'max_workers'):
        settings[key] = _positive_number(settings, key, int)
    settings['check_timeout_seconds'] = _positive_number(settings, 'check_timeout_seconds', float)

    if settings['max_workers'] > MAX_WORKERS_LIMIT:
        logger.warning(f"max_workers={settings['max_workers']} capped at {MAX_WORKERS_LIMIT}")
        settings['max_workers'] = MAX_WORKERS_LIMIT

    if not settings.get('password'):
        _require_pgpass_entry(settings)

    return settings


def _positive_number(settings, key, kind):
    try:
        value = kind(settings[key])
    except (TypeError, ValueError):
        raise ConfigurationError(f"Setting '{key}' must be a number, got {settings[key]!r}") from None
    if value <= 0:
        raise ConfigurationError(f"Setting '{key}' must be positive, got {value}")
    return value


def _require_pgpass_entry(settings):
    """Without a password, the pgpass file must hold a matching entry."""
    pgpass = Path(os.path.expanduser(settings['pgpass_file']))
    if not pgpass.is_file():
        raise ConfigurationError(f"No password configured and pgpass file not found: {pgpass}")

    wanted = [str(settings['host']), str(settings['port']), str(settings['database']), str(settings['user'])]
    try:
        lines = pgpass.read_text().splitlines()
    except OSError as e:
        raise ConfigurationError(f"Cannot read pgpass file {pgpass}: {e}") from e

    for line in lines:
        if not line.strip() or line.lstrip().startswith('#'):
            continue
        fields = _split_pgpass_line(line)
        if len(fields) < 5:
            continue
        if all(field == '*' or field == value for field, value in zip(fields[:4], wanted)):
            settings['pgpass_file'] = str(pgpass)
            return

    raise ConfigurationError(f"No matching line in {pgpass} for {':'.join(wanted)}")


def _split_pgpass_line(line):
    """Splits a pgpass line on unescaped colons; ``\\:`` and ``\\\\`` are literals."""
    fields = []
    current = []
    chars = iter(line)
    for char in chars:
        if char == '\\':
            current.append(next(chars, ''))
        elif char == ':':
            fields.append(''.join(current))
            current = []
        else:
            current.append(char)
    fields.append(''.join(current))
    return fields
