#!/usr/bin/env python3
"""
Main entrypoint for the PostgreSQL Health Report tool.

This script loads the settings, discovers the database plugins, connects to
the target and hands the check catalogue to the ReportBuilder, which writes
one report file per run.
"""

import argparse
import importlib
import logging
import pkgutil
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from pg_health_report.output_handlers.report_sink import FileSink, StreamSink, report_path
from pg_health_report.plugins.base import BasePlugin
from pg_health_report.plugins.common.output_formatters import ReportFormat, get_formatter
from pg_health_report.utils.errors import ConfigurationError, RunnerConnectivityError, SinkError
from pg_health_report.utils.report_builder import ReportBuilder
from pg_health_report.utils.settings import load_settings

try:
    APP_VERSION = version("pg-health-report")
except PackageNotFoundError:
    APP_VERSION = "unknown"

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def discover_plugins():
    """Finds and loads all available plugins from the 'plugins' package.

    Returns:
        dict: A dictionary of loaded plugin instances, keyed by technology name.
    """
    plugins_path = Path(__file__).parent / "plugins"
    discovered_plugins = {}
    for _, name, is_pkg in pkgutil.iter_modules([str(plugins_path)]):
        if not is_pkg or name == "common":
            continue
        try:
            module = importlib.import_module(f'pg_health_report.plugins.{name}')
        except ImportError as e:
            logger.warning(f"Could not import plugin '{name}'. Missing dependency: {e}. Skipping.")
            continue
        for item_name in dir(module):
            item = getattr(module, item_name)
            if isinstance(item, type) and issubclass(item, BasePlugin) and item is not BasePlugin:
                plugin_instance = item()
                discovered_plugins[plugin_instance.technology_name] = plugin_instance
                logger.debug(f"Discovered plugin: {plugin_instance.technology_name}")
    return discovered_plugins


def configure_logging(settings):
    """Sets up console logging, plus a log file when ``log_file`` is configured."""
    handlers = [logging.StreamHandler()]
    if settings.get('log_file'):
        handlers.append(logging.FileHandler(Path(settings['log_file']).expanduser()))
    logging.basicConfig(
        level=getattr(logging, str(settings.get('log_level', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


class HealthReport:
    """Orchestrates one health report run from settings to output file."""

    def __init__(self, settings, report_config_file=None, to_stdout=False):
        """Initializes the HealthReport application.

        Args:
            settings (dict): Validated settings (see utils.settings).
            report_config_file (str, optional): Path to a custom catalogue
                file. Defaults to the plugin's built-in catalogue.
            to_stdout (bool): Write the report to standard output instead of
                the dated report directory.

        Raises:
            ConfigurationError: If the plugin or the catalogue is invalid.
        """
        self.settings = settings
        self.app_version = APP_VERSION
        self.available_plugins = discover_plugins()
        active_tech = self.settings.get('db_type')
        self.active_plugin = self.available_plugins.get(active_tech)

        if not self.active_plugin:
            raise ConfigurationError(
                f"Unsupported or missing db_type: '{active_tech}'. "
                f"Available plugins: {list(self.available_plugins.keys())}"
            )

        self.catalogue = self.active_plugin.get_catalogue(report_config_file)
        self.connector = self.active_plugin.get_connector(self.settings)
        self.to_stdout = to_stdout

    def open_sink(self):
        """Opens the report destination for the configured mode and format."""
        if self.to_stdout:
            return StreamSink(sys.stdout, location='<stdout>')
        extension = get_formatter(self.settings['format'], self.active_plugin.get_template_path()).extension
        return FileSink(report_path(self.settings['output_dir'], self.settings['report_mode'], extension))

    def run_report(self):
        """Connects, builds the report and disconnects.

        Returns:
            Report: The assembled report.
        """
        self.connector.connect()
        try:
            builder = ReportBuilder(
                runner=self.connector,
                catalogue=self.catalogue,
                mode=self.settings['report_mode'],
                report_format=self.settings['format'],
                sink=self.open_sink(),
                target=self.connector.target_identity,
                timeout=self.settings['check_timeout_seconds'],
                max_workers=self.settings['max_workers'],
                template_dir=self.active_plugin.get_template_path(),
            )
            return builder.build()
        finally:
            self.connector.disconnect()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='PostgreSQL Health Report Tool')
    parser.add_argument('--config', default='config/config.yaml', help='Path to configuration file')
    parser.add_argument('--report-config', help='Path to a custom check catalogue file.')
    parser.add_argument('--report-mode', choices=['full', 'recommended'], help='Run every check or only the critical ones.')
    parser.add_argument('--format', choices=['html', 'json', 'text'], help='Output format.')
    parser.add_argument('--output-dir', help='Base directory for dated report folders.')
    parser.add_argument('--stdout', action='store_true', help='Write the report to standard output.')
    parser.add_argument('--version', action='version', version=f'%(prog)s {APP_VERSION}')
    return parser.parse_args(argv)


def main(argv=None):
    """Parses command line arguments and runs the health report."""
    args = parse_args(argv)
    overrides = {
        'report_mode': args.report_mode,
        'format': args.format,
        'output_dir': args.output_dir,
    }

    try:
        settings = load_settings(args.config, overrides)
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return EXIT_FAILURE

    configure_logging(settings)
    # Progress lines must not end up inside a report written to stdout.
    out = sys.stderr if args.stdout else sys.stdout
    print(f"--- Running PostgreSQL Health Report v{APP_VERSION} ---", file=out)

    try:
        health_report = HealthReport(settings, args.report_config, to_stdout=args.stdout)
        report = health_report.run_report()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FAILURE
    except RunnerConnectivityError as e:
        logger.error(f"Cannot reach the database: {e}")
        return EXIT_FAILURE
    except SinkError as e:
        logger.error(f"Cannot write the report: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        # Raised before any section was written; the builder discards the partial file.
        print("\n🛑 Interrupted before the report was started.", file=out)
        return EXIT_INTERRUPTED

    failed = len(report.failed_sections)
    if failed:
        print(f"⚠️  {failed} of {len(report.sections)} checks failed; see the marked sections.", file=out)
    print(f"\n{report.report_format.value.upper()} report saved: {report.location}", file=out)

    if report.truncated:
        print(f"⚠️  Report is incomplete: {report.truncation_reason}", file=out)
        if report.report_format is ReportFormat.JSON:
            print("⚠️  JSON reports carry no truncation marker; missing checks are simply absent.", file=out)
        if report.truncation_reason == "interrupted by operator":
            return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
