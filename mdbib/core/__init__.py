"""Core models for bibliography items and the chapter tree."""

# Models
from mdbib.core.models import (
    NOT_AVAILABLE,
    BibItem,
    Book,
    BookItem,
    Chapter,
    Citation,
    CitationContext,
    CitationResult,
    CitationVariant,
    PartTitle,
    Separator,
)

# Name parsing
from mdbib.core.names import (
    NameParser,
    ParsedName,
    parse_name_list,
)

__all__ = [
    # Models
    "NOT_AVAILABLE",
    "BibItem",
    "Citation",
    "CitationContext",
    "CitationResult",
    "CitationVariant",
    "Book",
    "BookItem",
    "Chapter",
    "Separator",
    "PartTitle",
    # Name parsing
    "NameParser",
    "ParsedName",
    "parse_name_list",
]
