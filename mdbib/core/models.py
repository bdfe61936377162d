"""Core data models for bibliography items and the chapter tree.

This module defines the structures shared by every stage of the
citation pipeline:

- BibItem: one bibliography entry, mutable only through its first-seen index
- Citation: the context handed to inline citation templates
- CitationContext: the link target and variant for one citation site
- CitationResult: cited keys for the whole book and for each chapter
- Book/Chapter/Separator/PartTitle: the mdBook chapter tree, convertible
  to and from mdBook's JSON representation
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from enum import Enum
from typing import Any

import msgspec

NOT_AVAILABLE = "N/A"


class BibItem(msgspec.Struct, kw_only=True):
    """A single bibliography entry.

    ``authors`` holds one name-part list per author, ordered as
    ``[family, given, prefix, suffix]`` with trailing empty parts dropped.
    ``index`` is the 1-based first-seen citation index; it is set at most
    once while chapters are scanned and stays ``None`` for uncited items.
    """

    citation_key: str
    title: str = ""
    authors: list[list[str]] = msgspec.field(default_factory=list)
    pub_month: str = NOT_AVAILABLE
    pub_year: str = NOT_AVAILABLE
    summary: str = ""
    url: str | None = None
    index: int | None = None

    entry_type: str | None = None
    doi: str | None = None
    pages: str | None = None
    volume: str | None = None
    issue: str | None = None
    publisher: str | None = None
    address: str | None = None
    isbn: str | None = None
    issn: str | None = None
    editor: list[list[str]] | None = None
    edition: str | None = None
    note: str | None = None
    organization: str | None = None

    def assign_index(self, index: int) -> bool:
        """Set the first-seen index unless one is already assigned.

        Returns True if the index was assigned by this call.
        """
        if self.index is not None:
            return False
        self.index = index
        return True

    @property
    def first_author_family(self) -> str | None:
        """Family name of the first author, if any."""
        if self.authors and self.authors[0]:
            return self.authors[0][0] or None
        return None

    @property
    def year(self) -> str | None:
        """Publication year, or None when unknown."""
        if self.pub_year and self.pub_year != NOT_AVAILABLE:
            return self.pub_year
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary (template context)."""
        return msgspec.to_builtins(self)


class CitationVariant(Enum):
    """How an inline citation presents its author and year.

    Pandoc-style placeholders pick a variant: ``@key`` is author-in-text,
    ``[@key]`` parenthetical and ``[-@key]`` suppresses the author. The
    native placeholders are always standard.
    """

    STANDARD = "standard"
    AUTHOR_IN_TEXT = "author_in_text"
    PARENTHETICAL = "parenthetical"
    SUPPRESS_AUTHOR = "suppress_author"


class Citation(msgspec.Struct, kw_only=True):
    """Context for rendering one inline citation."""

    item: BibItem
    path: str
    variant: CitationVariant = CitationVariant.STANDARD

    def to_dict(self) -> dict[str, Any]:
        return {
            "item": self.item.to_dict(),
            "path": self.path,
            "variant": self.variant.value,
        }


class CitationContext(msgspec.Struct, frozen=True, kw_only=True):
    """Where a citation is being rendered.

    ``bib_page_path`` is the relative link from the citing chapter to the
    bibliography page; ``chapter_path`` is kept for diagnostics.
    """

    bib_page_path: str
    chapter_path: str
    variant: CitationVariant = CitationVariant.STANDARD


class CitationResult(msgspec.Struct, kw_only=True):
    """Keys cited across the whole book and per chapter path."""

    all_cited: set[str] = msgspec.field(default_factory=set)
    per_chapter: dict[str, set[str]] = msgspec.field(default_factory=dict)

    def record(self, chapter_path: str, cited: set[str]) -> None:
        """Record the keys cited in one chapter."""
        self.per_chapter[chapter_path] = set(cited)
        self.all_cited.update(cited)

    def cited_in(self, chapter_path: str) -> set[str]:
        """Keys cited in a chapter (empty if never scanned)."""
        return self.per_chapter.get(chapter_path, set())


class Separator(msgspec.Struct, frozen=True):
    """A separator line in the book summary."""


class PartTitle(msgspec.Struct, frozen=True):
    """A part heading in the book summary."""

    title: str


class Chapter(msgspec.Struct, kw_only=True):
    """A book chapter with mutable content.

    ``path`` is relative to the book source root. Draft chapters have no
    path and are never processed.
    """

    name: str
    content: str = ""
    number: list[int] | None = None
    sub_items: list[Any] = msgspec.field(default_factory=list)
    path: str | None = None
    source_path: str | None = None
    parent_names: list[str] = msgspec.field(default_factory=list)

    @classmethod
    def new(
        cls,
        name: str,
        content: str,
        path: str,
        parent_names: list[str] | None = None,
    ) -> Chapter:
        """Create a chapter whose source and output paths coincide."""
        return cls(
            name=name,
            content=content,
            path=path,
            source_path=path,
            parent_names=list(parent_names or []),
        )

    @classmethod
    def draft(cls, name: str, content: str = "") -> Chapter:
        """Create a draft chapter (no path)."""
        return cls(name=name, content=content)

    @property
    def is_draft(self) -> bool:
        return self.path is None

    @classmethod
    def from_builtins(cls, data: dict[str, Any]) -> Chapter:
        fields = dict(data)
        sub_items = fields.pop("sub_items", None) or []
        chapter = msgspec.convert(fields, cls)
        chapter.sub_items = [_item_from_builtins(item) for item in sub_items]
        return chapter

    def to_builtins(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "content": self.content,
            "number": self.number,
            "sub_items": [_item_to_builtins(item) for item in self.sub_items],
            "path": self.path,
            "source_path": self.source_path,
            "parent_names": list(self.parent_names),
        }


BookItem = Chapter | Separator | PartTitle


def _item_from_builtins(data: Any) -> BookItem:
    """Decode one mdBook section (``{"Chapter": ...}``, ``"Separator"``...)."""
    if data == "Separator":
        return Separator()
    if isinstance(data, dict):
        if "Chapter" in data:
            return Chapter.from_builtins(data["Chapter"])
        if "PartTitle" in data:
            return PartTitle(title=data["PartTitle"])
    raise ValueError(f"Unknown book item: {data!r}")


def _item_to_builtins(item: BookItem) -> Any:
    if isinstance(item, Chapter):
        return {"Chapter": item.to_builtins()}
    if isinstance(item, PartTitle):
        return {"PartTitle": item.title}
    return "Separator"


def _walk_chapters(items: list[BookItem]) -> Iterator[Chapter]:
    # Sub-items are visited before their parent chapter.
    for item in items:
        if isinstance(item, Chapter):
            yield from _walk_chapters(item.sub_items)
            yield item


class Book(msgspec.Struct, kw_only=True):
    """An ordered tree of book items."""

    sections: list[Any] = msgspec.field(default_factory=list)
    extra: dict[str, Any] = msgspec.field(default_factory=dict)

    def iter_chapters(self) -> Iterator[Chapter]:
        """Iterate over every chapter in traversal order."""
        return _walk_chapters(self.sections)

    def for_each_chapter(self, func: Callable[[Chapter], None]) -> None:
        """Call ``func`` on every chapter, sub-items before their parent."""
        for chapter in self.iter_chapters():
            func(chapter)

    def push_chapter(self, chapter: Chapter) -> None:
        """Append a chapter as the last top-level item."""
        self.sections.append(chapter)

    @classmethod
    def from_builtins(cls, data: dict[str, Any]) -> Book:
        extra = {k: v for k, v in data.items() if k != "sections"}
        sections = [_item_from_builtins(item) for item in data.get("sections", [])]
        return cls(sections=sections, extra=extra)

    def to_builtins(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "sections": [_item_to_builtins(item) for item in self.sections]
        }
        result.update(self.extra)
        return result
