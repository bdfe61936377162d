"""Citation placeholder scanning and citation style classification.

This module finds citation placeholders in chapter text, assigns
first-seen indices, and classifies citation styles as numeric, label
or author-date for the CSL backend.
"""

from mdbib.citations.parser import (
    BIB_OUT_FILE,
    BIB_PAGE,
    CitationIndexer,
    CitationSyntax,
    PlaceholderScanner,
    breadcrumbs_up_to_root,
    extract_citation_keys,
)
from mdbib.citations.styles import (
    AuthorFormatter,
    CitationFormat,
    DetectedStyleFormat,
    StyleInfo,
    StyleMetadata,
    StyleRegistry,
    detect_style_format,
    find_style_info,
    supported_style_aliases,
)

__all__ = [
    # Parser
    "BIB_OUT_FILE",
    "BIB_PAGE",
    "CitationIndexer",
    "CitationSyntax",
    "PlaceholderScanner",
    "breadcrumbs_up_to_root",
    "extract_citation_keys",
    # Styles
    "AuthorFormatter",
    "CitationFormat",
    "DetectedStyleFormat",
    "StyleInfo",
    "StyleMetadata",
    "StyleRegistry",
    "detect_style_format",
    "find_style_info",
    "supported_style_aliases",
]
