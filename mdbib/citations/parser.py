"""Citation placeholder scanning and first-seen index assignment.

Two placeholder syntaxes are always recognised in chapter text:

- Directive form: ``{{#cite key}}`` (whitespace-flexible). An escaped
  directive ``\\{{#...}}`` is emitted verbatim and nothing inside it is
  substituted.
- Shorthand form: ``@@key``, where the key may contain ``.``/``:``
  separated segments, e.g. ``@@smith.2020:ch1``.

With ``citation-syntax: pandoc`` three more forms follow the shorthand
sweep: ``[-@key]`` (suppress author), ``[@key]`` (parenthetical) and
``@key`` (author in text). ``@`` after a word character, ``/`` or ``@``
is left alone so e-mail addresses and URLs survive, and ``\\@`` produces
a literal ``@``.

Each sweep runs over the whole chapter before the next one, so directive
citations in a chapter are indexed before shorthand citations in the same
chapter regardless of their text position.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from pathlib import PurePath, PurePosixPath
from typing import TYPE_CHECKING

import msgspec

from mdbib.core.models import BibItem, CitationContext, CitationVariant
from mdbib.exceptions import BackendError, ConfigError, PathInvariantError

if TYPE_CHECKING:
    from mdbib.backends.base import BibliographyBackend

logger = logging.getLogger(__name__)

BIB_OUT_FILE = "bibliography"
BIB_PAGE = f"{BIB_OUT_FILE}.html"

ESCAPED_DIRECTIVE_PATTERN = re.compile(r"\\\{\{#.*?\}\}")
DIRECTIVE_PATTERN = re.compile(
    r"\{\{\s*#cite\s+([a-zA-Z0-9_\-:./@]+)\s*\}\}"
)
SHORTHAND_PATTERN = re.compile(
    r"(@@)([a-zA-Z0-9_\-/@]+(?:[.:][a-zA-Z0-9_\-/@]+)*)"
)

# Pandoc keys must start with a letter or underscore.
_PANDOC_KEY = r"[a-zA-Z_][a-zA-Z0-9_]*(?:[:.#$%&\-+?<>~/][a-zA-Z0-9_]+)*"
ESCAPED_AT_PATTERN = re.compile(r"\\@")
PANDOC_SUPPRESS_AUTHOR_PATTERN = re.compile(rf"\[-@({_PANDOC_KEY})\]")
PANDOC_BRACKETED_PATTERN = re.compile(rf"\[@({_PANDOC_KEY})\]")
PANDOC_CITE_PATTERN = re.compile(rf"(^|[^\\@\w/])@({_PANDOC_KEY})")

FENCED_CODE_PATTERN = re.compile(r"```[^\n]*\n.*?```|~~~[^\n]*\n.*?~~~", re.DOTALL)
INLINE_CODE_PATTERN = re.compile(r"`[^`\n]+`")
_CODE_PLACEHOLDER = "\ue000MDBIB_CODEBLOCK{}\ue001"
_CODE_PLACEHOLDER_PATTERN = re.compile("\ue000MDBIB_CODEBLOCK(\\d+)\ue001")
_ESCAPED_AT_PLACEHOLDER = "\ue000MDBIB_ESCAPED_AT\ue001"


class CitationSyntax(Enum):
    """Which placeholder forms are recognised."""

    DEFAULT = "default"
    PANDOC = "pandoc"

    @classmethod
    def from_str(cls, value: str) -> CitationSyntax:
        """Parse a configuration value (case-insensitive).

        Raises:
            ConfigError: If the value names no syntax
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(syntax.value for syntax in cls)
            raise ConfigError(
                "citation-syntax", f"unknown value '{value}', use one of [{choices}]"
            ) from None


def unknown_reference_marker(key: str) -> str:
    return f"\\[Unknown bib ref: {key}\\]"


def formatting_error_marker(key: str) -> str:
    return f"\\[Error formatting {key}\\]"


def breadcrumbs_up_to_root(source_file: str | PurePath) -> str:
    """
    Relative prefix leading from a chapter back to the book root.

    Normal path components count one level, ``..`` counts minus one and
    ``.`` is ignored; the chapter's own file name is not counted.

    Examples:
        >>> breadcrumbs_up_to_root("intro.md")
        ''
        >>> breadcrumbs_up_to_root("part/chapter.md")
        '../'

    Raises:
        PathInvariantError: If the path is absolute
    """
    if isinstance(source_file, PurePath):
        path = source_file
    else:
        if not source_file:
            return ""
        path = PurePosixPath(source_file.replace("\\", "/"))

    if path.is_absolute() or path.as_posix().startswith("/"):
        raise PathInvariantError(str(source_file))

    levels = 0
    for part in path.parts:
        match part:
            case "..":
                levels -= 1
            case "." | "":
                pass
            case _:
                levels += 1

    levels -= 1
    if levels <= 0:
        return ""
    return "../" * levels


def _stasher(blocks: list[str]):
    def _stash(match: re.Match[str]) -> str:
        blocks.append(match.group(0))
        return _CODE_PLACEHOLDER.format(len(blocks) - 1)

    return _stash


def protect_code_blocks(text: str) -> tuple[str, list[str]]:
    """Replace fenced blocks and inline code spans with opaque placeholders."""
    blocks: list[str] = []
    stash = _stasher(blocks)

    text = FENCED_CODE_PATTERN.sub(stash, text)
    text = INLINE_CODE_PATTERN.sub(stash, text)
    return text, blocks


def protect_escaped_directives(text: str, blocks: list[str]) -> str:
    """Stash escaped ``\\{{#...}}`` directives alongside protected code."""
    return ESCAPED_DIRECTIVE_PATTERN.sub(_stasher(blocks), text)


def restore_code_blocks(text: str, blocks: list[str]) -> str:
    """Undo :func:`protect_code_blocks` and :func:`protect_escaped_directives`."""
    if not blocks:
        return text
    # Escaped directive > inline span > fenced block is the deepest nesting.
    for _ in range(3):
        text = _CODE_PLACEHOLDER_PATTERN.sub(lambda m: blocks[int(m.group(1))], text)
    return text


def protect_placeholders(text: str, syntax: CitationSyntax) -> tuple[str, list[str]]:
    """Hide code, escaped directives and (Pandoc syntax) escaped ``@``."""
    text, blocks = protect_code_blocks(text)
    text = protect_escaped_directives(text, blocks)
    if syntax is CitationSyntax.PANDOC:
        text = ESCAPED_AT_PATTERN.sub(_ESCAPED_AT_PLACEHOLDER, text)
    return text, blocks


def placeholder_sweeps(
    syntax: CitationSyntax,
) -> list[tuple[re.Pattern[str], CitationVariant]]:
    """Patterns swept over a chapter, in order, with the variant each yields."""
    sweeps = [
        (DIRECTIVE_PATTERN, CitationVariant.STANDARD),
        (SHORTHAND_PATTERN, CitationVariant.STANDARD),
    ]
    if syntax is CitationSyntax.PANDOC:
        sweeps += [
            (PANDOC_SUPPRESS_AUTHOR_PATTERN, CitationVariant.SUPPRESS_AUTHOR),
            (PANDOC_BRACKETED_PATTERN, CitationVariant.PARENTHETICAL),
            # Most permissive, so last
            (PANDOC_CITE_PATTERN, CitationVariant.AUTHOR_IN_TEXT),
        ]
    return sweeps


class CitationIndexer:
    """Assigns 1-based first-seen indices to cited bibliography items."""

    def __init__(self, start: int = 0):
        """Initialize with the last index already handed out."""
        self.last_index = start

    @classmethod
    def from_bibliography(cls, bibliography: dict[str, BibItem]) -> CitationIndexer:
        """Continue numbering after any indices already present."""
        assigned = [item.index for item in bibliography.values() if item.index]
        return cls(max(assigned, default=0))

    def assign(self, item: BibItem) -> int:
        """Return the item's index, assigning the next one if it has none."""
        if item.index is None:
            self.last_index += 1
            item.assign_index(self.last_index)
            logger.debug("Assigned index %d to '%s'", item.index, item.citation_key)
        return item.index


class PlaceholderScanner:
    """Replaces citation placeholders in chapter text.

    The scanner shares one bibliography and one indexer across every
    chapter it processes, so indices reflect first use anywhere in the
    book.
    """

    def __init__(
        self,
        bibliography: dict[str, BibItem],
        backend: BibliographyBackend,
        indexer: CitationIndexer | None = None,
        bib_page: str = BIB_PAGE,
        syntax: CitationSyntax = CitationSyntax.DEFAULT,
    ):
        self.bibliography = bibliography
        self.backend = backend
        self.indexer = indexer or CitationIndexer.from_bibliography(bibliography)
        self.bib_page = bib_page
        self.syntax = syntax

    def replace_all_placeholders(
        self,
        content: str,
        chapter_path: str,
        cited: set[str],
    ) -> str:
        """Replace every placeholder in ``content``.

        Every referenced key, known or not, is added to ``cited``.
        """
        breadcrumbs = breadcrumbs_up_to_root(chapter_path)
        context = CitationContext(
            bib_page_path=f"{breadcrumbs}{self.bib_page}",
            chapter_path=chapter_path,
        )

        text, blocks = protect_placeholders(content, self.syntax)

        for pattern, variant in placeholder_sweeps(self.syntax):
            site = msgspec.structs.replace(context, variant=variant)

            def _replace(match: re.Match[str], pattern=pattern, site=site) -> str:
                # The key is always the last group
                key = match.group(pattern.groups).strip()
                prefix = match.group(1) if pattern is PANDOC_CITE_PATTERN else ""
                return prefix + self._substitute(key, site, cited)

            text = pattern.sub(_replace, text)

        text = text.replace(_ESCAPED_AT_PLACEHOLDER, "@")
        return restore_code_blocks(text, blocks)

    def _substitute(self, key: str, context: CitationContext, cited: set[str]) -> str:
        cited.add(key)

        item = self.bibliography.get(key)
        if item is None:
            logger.warning(
                "Unknown bibliography reference '%s' in %s", key, context.chapter_path
            )
            return unknown_reference_marker(key)

        self.indexer.assign(item)
        try:
            rendered = self.backend.format_citation(item, context)
        except BackendError as e:
            logger.error("Failed to format citation for '%s': %s", key, e)
            return formatting_error_marker(key)

        logger.info(
            "Citation replacement (%s): %s -> %s", context.variant.value, key, rendered
        )
        return rendered


def extract_citation_keys(
    content: str, syntax: CitationSyntax = CitationSyntax.DEFAULT
) -> list[str]:
    """Keys referenced by live placeholders, in sweep order.

    Does not touch any bibliography; useful for diagnostics.
    """
    text, _ = protect_placeholders(content, syntax)
    keys = []
    for pattern, _variant in placeholder_sweeps(syntax):
        keys.extend(m.group(pattern.groups) for m in pattern.finditer(text))
        # Substituted sites are gone before the next sweep runs
        text = pattern.sub("", text)
    return keys
