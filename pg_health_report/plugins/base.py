from abc import ABC, abstractmethod
from pathlib import Path


class BasePlugin(ABC):
    """Abstract base class for all database technology plugins."""

    @property
    @abstractmethod
    def technology_name(self):
        """A lowercase, URL-friendly name for the technology (e.g., 'postgres')."""
        pass

    @abstractmethod
    def get_connector(self, settings):
        """Returns an instance of the technology-specific query runner."""
        pass

    @abstractmethod
    def get_catalogue(self, catalogue_file=None):
        """Returns the ordered check catalogue, optionally loaded from a custom file."""
        pass

    @abstractmethod
    def get_template_path(self) -> Path:
        """Returns the path to this plugin's templates directory."""
        pass
