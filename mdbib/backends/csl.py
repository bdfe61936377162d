"""Style-driven backend with a built-in approximation of CSL output.

Styles are resolved by registry alias first, then as a path to a
``.csl`` file whose declared citation format is detected from its
metadata. Only the numeric/label/author-date classification and the
superscript hint shape the output; the full CSL layout language is not
interpreted. Author-date citations honour the citation variant:

- standard, parenthetical: ``([Author, 2020](link))``
- author in text: ``Author ([2020](link))``
- suppress author: ``([2020](link))``
"""

from __future__ import annotations

import logging
from pathlib import Path

from mdbib.backends.base import BibliographyBackend
from mdbib.citations.styles import (
    AuthorFormatter,
    DetectedStyleFormat,
    StyleInfo,
    StyleMetadata,
    alphanumeric_label,
    detect_style_format,
    find_style_info,
    supported_style_aliases,
)
from mdbib.core.models import BibItem, CitationContext, CitationVariant
from mdbib.exceptions import BackendConstructionError, BackendRenderError

logger = logging.getLogger(__name__)


class CslBackend(BibliographyBackend):
    """Backend formatting citations according to a named citation style."""

    def __init__(self, style_name: str, base_dir: Path | str | None = None):
        """Resolve the style.

        Args:
            style_name: Registry alias (e.g. "ieee", "apa") or path to a .csl file
            base_dir: Directory relative style paths are resolved against

        Raises:
            BackendConstructionError: If the style cannot be resolved
        """
        logger.info("Initializing CSL backend with style: %s", style_name)
        self.style_name = style_name
        self.style_info: StyleInfo | None = find_style_info(style_name)
        self.authors = AuthorFormatter()

        if self.style_info is not None:
            self.style_id = self.style_info.style_id
            self.format = DetectedStyleFormat.from_info(self.style_info)
        else:
            metadata = self._load_metadata(style_name, base_dir)
            self.style_id = metadata.style_id or Path(style_name).stem
            self.format = detect_style_format(metadata)
            logger.info(
                "Style '%s' not in registry, detected format: %s",
                style_name,
                metadata.citation_format.value if metadata.citation_format else "unknown",
            )

    @staticmethod
    def _load_metadata(style_name: str, base_dir: Path | str | None) -> StyleMetadata:
        path = Path(style_name)
        if base_dir is not None and not path.is_absolute():
            path = Path(base_dir) / path

        if path.suffix != ".csl" or not path.is_file():
            supported = ", ".join(supported_style_aliases())
            raise BackendConstructionError(
                f"Unknown CSL style '{style_name}'. Supported styles: {supported}"
            )

        try:
            return StyleMetadata.from_file(path)
        except (OSError, ValueError) as e:
            raise BackendConstructionError(
                f"Failed to load CSL style from {path}: {e}"
            ) from e

    @property
    def is_numeric(self) -> bool:
        return self.format.is_numeric

    @property
    def is_label(self) -> bool:
        return self.format.is_label

    @property
    def is_superscript(self) -> bool:
        return self.format.is_superscript

    def format_citation(self, item: BibItem, context: CitationContext) -> str:
        link = f"{context.bib_page_path}#{item.citation_key}"

        if self.is_numeric:
            if item.index is None:
                raise BackendRenderError(
                    item.citation_key, "numeric style requires a citation index"
                )
            if self.is_superscript:
                return f'<sup><a href="{link}">{item.index}</a></sup>'
            return f"[[{item.index}]({link})]"

        if self.is_label:
            return f"[[{self._label(item)}]({link})]"

        author, year = self._author_date(item)
        match context.variant:
            case CitationVariant.AUTHOR_IN_TEXT:
                return f"{author} ([{year}]({link}))"
            case CitationVariant.SUPPRESS_AUTHOR:
                return f"([{year}]({link}))"
            case _:
                return f"([{author}, {year}]({link}))"

    def format_reference(self, item: BibItem) -> str:
        if self.is_numeric and item.index is not None:
            prefix = f"{item.index}. " if self.is_superscript else f"[{item.index}] "
        elif self.is_label:
            prefix = f"[{self._label(item)}] "
        else:
            prefix = ""

        body = self._reference_body(item)
        return f"<div class='csl-entry' id='{item.citation_key}'>{prefix}{body}</div>"

    def name(self) -> str:
        return "CSL (built-in formatter)"

    def _label(self, item: BibItem) -> str:
        return alphanumeric_label(item.authors, item.year, item.citation_key)

    def _author_date(self, item: BibItem) -> tuple[str, str]:
        author = self.authors.format_short(item.authors) or item.citation_key
        return author, item.year or "n.d."

    def _reference_body(self, item: BibItem) -> str:
        parts = []

        authors = self.authors.format_multiple(
            item.authors, format="last-first", and_sep="and", et_al_min=7
        )
        if authors:
            parts.append(_terminate(authors))

        if item.title:
            parts.append(f'"{_terminate(item.title)}"')

        venue = item.publisher or item.organization
        if venue:
            parts.append(_terminate(f"{item.address}: {venue}" if item.address else venue))

        details = []
        if item.volume:
            details.append(f"vol. {item.volume}")
        if item.issue:
            details.append(f"no. {item.issue}")
        if item.pages:
            details.append(f"pp. {item.pages}")
        if details:
            parts.append(_terminate(", ".join(details)))

        if item.year:
            parts.append(f"{item.year}.")

        if item.doi:
            parts.append(f"doi: {item.doi}.")
        elif item.url:
            parts.append(f"[Online]. Available: {item.url}")

        return " ".join(parts)


def _terminate(text: str) -> str:
    """End a reference segment with a single period."""
    text = text.strip()
    if text.endswith((".", "?", "!")):
        return text
    return f"{text}."
