"""Base bibliography backend interface."""

from abc import ABC, abstractmethod
from enum import Enum

from mdbib.core.models import BibItem, CitationContext
from mdbib.exceptions import ConfigError


class BackendMode(Enum):
    """Which rendering backend formats citations and references."""

    CUSTOM = "custom"
    LEGACY = "legacy"
    CSL = "csl"

    @classmethod
    def from_str(cls, value: str) -> "BackendMode":
        """Parse a configuration value (case-insensitive).

        Raises:
            ConfigError: If the value names no backend
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(mode.value for mode in cls)
            raise ConfigError(
                "backend", f"unknown value '{value}', use one of [{choices}]"
            ) from None


class BibliographyBackend(ABC):
    """Abstract interface for bibliography rendering backends.

    Implementations must report rendering problems by raising
    ``BackendError`` subclasses so callers can substitute a visible
    marker and continue.
    """

    @abstractmethod
    def format_citation(self, item: BibItem, context: CitationContext) -> str:
        """Format the inline citation for one citation site.

        Args:
            item: The bibliography item being cited
            context: Link target and citing chapter

        Raises:
            BackendRenderError: If the citation cannot be rendered
        """
        pass

    @abstractmethod
    def format_reference(self, item: BibItem) -> str:
        """Format one full bibliography entry.

        Raises:
            BackendRenderError: If the reference cannot be rendered
        """
        pass

    @abstractmethod
    def name(self) -> str:
        """Backend name for logging."""
        pass
