"""Book-level citation processing.

The preprocessor walks the chapter tree three times:

1. Every placeholder in every chapter is replaced, assigning first-seen
   indices across the whole book.
2. Optionally, each chapter that cites something gets its own listing.
3. The whole-book bibliography is appended as a final chapter.

Indices are final before any listing is rendered, so chapter listings
show the book-wide index of each item.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import msgspec
from jinja2 import Template, TemplateError

from mdbib.backends import BibliographyBackend, create_backend
from mdbib.backends.template import compile_template, create_environment
from mdbib.citations.parser import (
    BIB_OUT_FILE,
    CitationIndexer,
    CitationSyntax,
    PlaceholderScanner,
    breadcrumbs_up_to_root,
)
from mdbib.config import Config, merge_tables
from mdbib.core.models import BibItem, Book, Chapter, CitationResult
from mdbib.exceptions import (
    BibliographyError,
    BibliographyRetrievalError,
    ConfigError,
)
from mdbib.renderer import generate_bibliography_html
from mdbib.storage.loader import ZoteroClient, load_bibliography
from mdbib.storage.parser import BibFormat, parse_bibliography

logger = logging.getLogger(__name__)

NAME = "bib"
BIB_CHAPTER_PATH = f"{BIB_OUT_FILE}.md"
UNSUPPORTED_RENDERER = "not-supported"


class PreprocessorContext(msgspec.Struct, kw_only=True):
    """The context object the book tool passes to preprocessors."""

    root: str = "."
    config: dict[str, Any] = msgspec.field(default_factory=dict)
    renderer: str = "html"
    mdbook_version: str = ""

    @property
    def book_src(self) -> Path:
        """Absolute-or-relative path of the book's source directory."""
        src = self.config.get("book", {}).get("src", "src")
        return Path(self.root) / src

    def preprocessor_table(self, name: str) -> dict[str, Any] | None:
        """The ``preprocessor.<name>`` configuration table, if present."""
        table = self.config.get("preprocessor", {}).get(name)
        return table if isinstance(table, dict) else None


def validate_chapter_paths(book: Book) -> None:
    """Check every chapter path before anything is mutated.

    Raises:
        PathInvariantError: If a chapter path is absolute
    """
    def _check(chapter: Chapter) -> None:
        if not chapter.is_draft:
            breadcrumbs_up_to_root(chapter.path)

    book.for_each_chapter(_check)


def expand_cite_references_in_book(
    book: Book,
    bibliography: dict[str, BibItem],
    backend: BibliographyBackend,
    syntax: CitationSyntax = CitationSyntax.DEFAULT,
) -> CitationResult:
    """Replace placeholders in every chapter.

    Returns:
        Keys cited in the whole book and in each chapter
    """
    result = CitationResult()
    scanner = PlaceholderScanner(
        bibliography,
        backend,
        CitationIndexer.from_bibliography(bibliography),
        syntax=syntax,
    )

    for chapter in book.iter_chapters():
        if chapter.is_draft:
            continue
        logger.info("Replacing citations in chapter %s", chapter.path)

        cited: set[str] = set()
        chapter.content = scanner.replace_all_placeholders(
            chapter.content, chapter.path, cited
        )
        if cited:
            logger.debug("Keys cited in %s: %s", chapter.path, sorted(cited))
        result.record(chapter.path, cited)

    return result


def add_bib_at_end_of_chapters(
    book: Book,
    bibliography: dict[str, BibItem],
    result: CitationResult,
    backend: BibliographyBackend,
    config: Config,
    header: Template | None = None,
) -> None:
    """Append a chapter-scoped listing to each chapter that cites something."""
    if header is None:
        header = compile_template(
            create_environment(), "chapter_refs", config.chapter_refs_tpl
        )

    for chapter in book.iter_chapters():
        if chapter.is_draft:
            continue
        cited = result.cited_in(chapter.path)
        if not cited:
            continue

        logger.info("Adding bibliography at the end of chapter %s", chapter.path)
        listing = generate_bibliography_html(
            bibliography, cited, True, backend, config.order
        )
        try:
            header_html = header.render(title=config.title)
        except TemplateError as e:
            logger.error("Failed to render chapter references header: %s", e)
            header_html = ""

        chapter.content = config.css_html + chapter.content + header_html + listing


def create_bibliography_chapter(
    title: str, js_html: str, css_html: str, listing_html: str
) -> Chapter:
    """Build the terminal chapter holding the whole-book bibliography."""
    content = f"# {title}\n{js_html}\n{css_html}\n{listing_html}"
    return Chapter.new(title, content, BIB_CHAPTER_PATH)


class BibliographyPreprocessor:
    """Resolves citations and appends bibliographies to a book."""

    name = NAME

    def __init__(
        self,
        overrides: dict[str, Any] | None = None,
        zotero: ZoteroClient | None = None,
    ):
        """Initialize the preprocessor.

        Args:
            overrides: Values merged over the book's ``preprocessor.bib`` table
            zotero: Client used when the bibliography comes from Zotero
        """
        self.overrides = overrides
        self.zotero = zotero or ZoteroClient()

    def supports_renderer(self, renderer: str) -> bool:
        return renderer != UNSUPPORTED_RENDERER

    def retrieve_bibliography_content(self, config: Config) -> tuple[str, BibFormat]:
        """Fetch raw bibliography text from the configured source.

        Raises:
            BibliographyRetrievalError: If no source is configured or the
                source yields nothing
        """
        path = config.bibliography_path
        if path is not None:
            if not path.is_file():
                raise BibliographyRetrievalError(f"Bibliography file not found: {path}")
            return load_bibliography(path), BibFormat.from_path(path) or BibFormat.BIBTEX

        if config.zotero_uid:
            logger.info("Downloading bibliography of Zotero user %s", config.zotero_uid)
            content = self.zotero.download(config.zotero_uid)
            if not content.strip():
                raise BibliographyRetrievalError(
                    f"Zotero returned an empty bibliography for user {config.zotero_uid}"
                )
            return content, BibFormat.BIBTEX

        raise BibliographyRetrievalError(
            "No bibliography file or Zotero user id configured"
        )

    def run(self, context: PreprocessorContext, book: Book) -> Book:
        """Process a book, returning a new processed book.

        Missing configuration or bibliography data leaves the book
        unchanged. The input book is never modified.

        Raises:
            BackendConstructionError: If the configured backend cannot be built
            PathInvariantError: If a chapter path is absolute
        """
        logger.info("Processor Name: %s", self.name)

        table = merge_tables(context.preprocessor_table(self.name), self.overrides)
        try:
            config = Config.from_table(table, context.book_src)
        except ConfigError as e:
            logger.warning("Error reading configuration. Skipping processing: %s", e)
            return book

        try:
            raw, fmt = self.retrieve_bibliography_content(config)
        except BibliographyError as e:
            logger.warning(
                "Raw bibliography content couldn't be retrieved. Skipping processing: %s",
                e,
            )
            return book

        try:
            bibliography = parse_bibliography(raw, fmt)
        except BibliographyError as e:
            logger.warning(
                "Error building bibliography from raw content. Skipping render: %s", e
            )
            return book

        backend = create_backend(config)
        header = compile_template(
            create_environment(), "chapter_refs", config.chapter_refs_tpl
        )
        validate_chapter_paths(book)

        processed = Book.from_builtins(book.to_builtins())

        result = expand_cite_references_in_book(
            processed, bibliography, backend, config.citation_syntax
        )

        if config.add_bib_in_chapters:
            add_bib_at_end_of_chapters(
                processed, bibliography, result, backend, config, header
            )

        listing = generate_bibliography_html(
            bibliography, result.all_cited, config.cited_only, backend, config.order
        )
        processed.push_chapter(
            create_bibliography_chapter(
                config.title, config.js_html, config.css_html, listing
            )
        )

        return processed
