from pathlib import Path

# --- Import the components of this plugin ---
from .connector import PostgresConnector

# --- Import the base class it must implement ---
from pg_health_report.plugins.base import BasePlugin
from pg_health_report.utils.catalogue import load_catalogue


class PostgresPlugin(BasePlugin):
    """The PostgreSQL implementation of the plugin interface."""

    @property
    def technology_name(self):
        return "postgres"

    def get_connector(self, settings):
        """Returns an instance of the PostgreSQL connector."""
        return PostgresConnector(settings)

    def get_catalogue(self, catalogue_file=None):
        """
        Loads the check catalogue from a file.
        Falls back to the built-in catalogue in reports/default.py.
        """
        return load_catalogue(catalogue_file)

    def get_template_path(self) -> Path:
        """Returns the path to this plugin's templates directory."""
        return Path(__file__).parent / "templates"
