"""Bibliography listing generation.

Orders the bibliography, filters it down to cited items when requested,
and concatenates the backend's reference rendering for each item.

Sort orders:
- none: parse order
- key: citation key
- author: family name of the first author; items without authors last
- index: first-seen citation index; uncited items first
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum

from mdbib.backends.base import BibliographyBackend
from mdbib.core.models import BibItem
from mdbib.exceptions import BackendError, ConfigError

logger = logging.getLogger(__name__)

# Sorts after any real family name.
NO_AUTHOR_SENTINEL = "\uffff"


class SortOrder(Enum):
    """Order of entries in a rendered bibliography."""

    NONE = "none"
    KEY = "key"
    AUTHOR = "author"
    INDEX = "index"

    @classmethod
    def from_str(cls, value: str) -> SortOrder:
        """Parse a configuration value (case-insensitive).

        Raises:
            ConfigError: If the value names no sort order
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(order.value for order in cls)
            raise ConfigError(
                "order", f"unknown value '{value}', use one of [{choices}]"
            ) from None


def _author_key(item: BibItem) -> str:
    return item.first_author_family or NO_AUTHOR_SENTINEL


def _index_key(item: BibItem) -> int:
    return item.index if item.index is not None else 0


def sort_items(items: Iterable[BibItem], order: SortOrder) -> list[BibItem]:
    """Return items in the requested order (stable for equal keys)."""
    items = list(items)
    match order:
        case SortOrder.KEY:
            return sorted(items, key=lambda item: item.citation_key)
        case SortOrder.AUTHOR:
            return sorted(items, key=_author_key)
        case SortOrder.INDEX:
            return sorted(items, key=_index_key)
        case _:
            return items


def error_block(key: str) -> str:
    return f"<div class='bib-error'>Error formatting reference {key}</div>"


def generate_bibliography_html(
    bibliography: dict[str, BibItem],
    cited: set[str],
    cited_only: bool,
    backend: BibliographyBackend,
    order: SortOrder = SortOrder.NONE,
) -> str:
    """Render the bibliography listing.

    Args:
        bibliography: Items keyed by citation key, in parse order
        cited: Keys cited in the scope being rendered
        cited_only: Whether to skip items absent from ``cited``
        backend: Backend rendering each reference
        order: Sort order applied before filtering

    Returns:
        Concatenated reference markup
    """
    parts = []
    for item in sort_items(bibliography.values(), order):
        if cited_only and item.citation_key not in cited:
            continue
        try:
            parts.append(backend.format_reference(item))
        except BackendError as e:
            logger.error("Failed to format reference '%s': %s", item.citation_key, e)
            parts.append(error_block(item.citation_key))

    content = "".join(parts)
    logger.debug("Generated bibliography content: %r", content)
    return content
