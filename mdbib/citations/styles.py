"""Citation style registry, format detection and author formatting."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

CSL_NAMESPACE = "http://purl.org/net/xbiblio/csl"


class CitationFormat(Enum):
    """Citation format category declared by a style."""

    NUMERIC = "numeric"
    LABEL = "label"
    AUTHOR_DATE = "author-date"
    AUTHOR = "author"
    NOTE = "note"

    @classmethod
    def from_csl(cls, value: str | None) -> CitationFormat | None:
        """Map a CSL ``citation-format`` attribute, None if unrecognised."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class StyleInfo:
    """A registry entry: aliases, underlying style id and format flags.

    The first alias is the canonical short name.
    """

    aliases: tuple[str, ...]
    style_id: str
    is_numeric: bool = False
    is_label: bool = False
    is_superscript: bool = False

    @property
    def name(self) -> str:
        return self.aliases[0]


@dataclass(frozen=True)
class DetectedStyleFormat:
    """Format characteristics of a style, however they were obtained."""

    is_numeric: bool = False
    is_label: bool = False
    is_superscript: bool = False

    @classmethod
    def from_info(cls, info: StyleInfo) -> DetectedStyleFormat:
        return cls(info.is_numeric, info.is_label, info.is_superscript)


@dataclass(frozen=True)
class StyleMetadata:
    """The parts of a CSL style's ``<info>`` block used for detection."""

    style_id: str
    title: str
    citation_format: CitationFormat | None = None

    @classmethod
    def from_csl(cls, text: str) -> StyleMetadata:
        """Read metadata from CSL XML text.

        Raises:
            ValueError: If the text is not a CSL style document
        """
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise ValueError(f"Invalid CSL XML: {e}") from e

        ns = {"csl": CSL_NAMESPACE}
        if root.tag not in ("style", f"{{{CSL_NAMESPACE}}}style"):
            raise ValueError(f"Invalid CSL: root element is {root.tag!r}")

        info = root.find("csl:info", ns)
        if info is None:
            info = root.find("info")
        if info is None:
            raise ValueError("Invalid CSL: missing 'info' section")

        def _text(tag: str) -> str:
            node = info.find(f"csl:{tag}", ns)
            if node is None:
                node = info.find(tag)
            return (node.text or "").strip() if node is not None else ""

        citation_format = None
        for category in [*info.findall("csl:category", ns), *info.findall("category")]:
            fmt = CitationFormat.from_csl(category.get("citation-format"))
            if fmt is not None:
                citation_format = fmt
                break

        return cls(
            style_id=_text("id"),
            title=_text("title"),
            citation_format=citation_format,
        )

    @classmethod
    def from_file(cls, path: Path | str) -> StyleMetadata:
        """Load metadata from a ``.csl`` file."""
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_csl(f.read())


STYLE_TABLE: tuple[StyleInfo, ...] = (
    StyleInfo(("ieee",), "ieee", is_numeric=True),
    StyleInfo(
        ("apa", "american-psychological-association"),
        "apa",
    ),
    StyleInfo(("chicago-author-date",), "chicago-author-date"),
    StyleInfo(("chicago-notes",), "chicago-note-bibliography"),
    StyleInfo(
        ("mla", "modern-language-association"),
        "modern-language-association",
    ),
    StyleInfo(
        ("mla8", "modern-language-association-8"),
        "modern-language-association-8th-edition",
    ),
    StyleInfo(("nature",), "nature", is_numeric=True, is_superscript=True),
    StyleInfo(("vancouver",), "vancouver", is_numeric=True),
    StyleInfo(
        ("vancouver-superscript",),
        "vancouver-superscript",
        is_numeric=True,
        is_superscript=True,
    ),
    StyleInfo(("harvard", "harvard-cite-them-right"), "harvard-cite-them-right"),
    StyleInfo(
        ("acm", "association-for-computing-machinery"),
        "association-for-computing-machinery",
        is_numeric=True,
    ),
    StyleInfo(
        ("acs", "american-chemical-society"),
        "american-chemical-society",
        is_numeric=True,
    ),
    StyleInfo(
        ("ama", "american-medical-association"),
        "american-medical-association",
        is_numeric=True,
    ),
    StyleInfo(("springer-basic",), "springer-basic-brackets", is_numeric=True),
    StyleInfo(("springer-basic-author-date",), "springer-basic-author-date"),
    StyleInfo(("cell",), "cell", is_numeric=True),
    StyleInfo(("elsevier-harvard",), "elsevier-harvard"),
    StyleInfo(("elsevier-vancouver",), "elsevier-vancouver", is_numeric=True),
    StyleInfo(("alphanumeric",), "alphanumeric", is_label=True),
)


class StyleRegistry:
    """Read-only lookup over a table of known citation styles."""

    def __init__(self, entries: tuple[StyleInfo, ...] = STYLE_TABLE):
        """Initialize with a style table."""
        self._entries = entries
        self._aliases: dict[str, StyleInfo] = {}
        for entry in entries:
            for alias in entry.aliases:
                self._aliases[alias.lower()] = entry

    def __contains__(self, name: str) -> bool:
        """Check if a style alias is registered (case-insensitive)."""
        return name.strip().lower() in self._aliases

    def __len__(self) -> int:
        return len(self._entries)

    def find(self, name: str) -> StyleInfo | None:
        """Find a style by any of its aliases."""
        return self._aliases.get(name.strip().lower())

    def canonical_names(self) -> Iterator[str]:
        """Yield canonical aliases in table order."""
        for entry in self._entries:
            yield entry.name


_registry = StyleRegistry()


def find_style_info(name: str) -> StyleInfo | None:
    """Look up a style alias in the built-in registry."""
    return _registry.find(name)


def supported_style_aliases() -> Iterator[str]:
    """Canonical names of the built-in styles, in registry order."""
    return _registry.canonical_names()


def detect_style_format(metadata: StyleMetadata) -> DetectedStyleFormat:
    """
    Classify a style from its declared citation format.

    Superscript rendering is not part of a style's declared metadata, so
    detected styles never report it.
    """
    match metadata.citation_format:
        case CitationFormat.NUMERIC:
            return DetectedStyleFormat(is_numeric=True)
        case CitationFormat.LABEL:
            return DetectedStyleFormat(is_label=True)
        case _:
            return DetectedStyleFormat()


class AuthorFormatter:
    """Formats author name-part lists according to style rules.

    Each author is ``[family, given, prefix, suffix]`` with optional
    trailing parts.
    """

    def format(
        self,
        parts: list[str],
        format: str = "last-first",
        initialize: bool = True,
    ) -> str:
        """Format a single author.

        Args:
            parts: Name parts, family first
            format: Format style (last-first, first-last, last-only, full)
            initialize: Whether to use initials for given names

        Returns:
            Formatted author name
        """
        if not parts:
            return ""

        family = parts[0]
        given = parts[1] if len(parts) > 1 else ""
        prefix = parts[2] if len(parts) > 2 else ""
        suffix = parts[3] if len(parts) > 3 else ""
        last = f"{prefix} {family}" if prefix else family

        match format:
            case "last-first":
                if initialize and given:
                    result = f"{last}, {self._get_initials(given)}"
                elif given:
                    result = f"{last}, {given}"
                else:
                    result = last
                if suffix:
                    result += f", {suffix}"
                return result

            case "first-last":
                if initialize and given:
                    result = f"{self._get_initials(given)} {last}"
                elif given:
                    result = f"{given} {last}"
                else:
                    result = last
                if suffix:
                    result += f", {suffix}"
                return result

            case "last-only":
                return last

            case _:
                result = f"{last}, {given}" if given else last
                if suffix:
                    result += f", {suffix}"
                return result

    def format_multiple(
        self,
        authors: list[list[str]],
        format: str = "last-first",
        and_sep: str = "and",
        delimiter: str = ", ",
        et_al_min: int = 99,
        et_al_use_first: int = 1,
    ) -> str:
        """Format an author list."""
        if not authors:
            return ""

        if len(authors) >= et_al_min:
            shown = authors[:et_al_use_first]
            result = delimiter.join(self.format(a, format) for a in shown)
            return f"{result} et al."

        formatted = [self.format(a, format) for a in authors]

        if len(formatted) == 1:
            return formatted[0]
        elif len(formatted) == 2:
            return f"{formatted[0]} {and_sep} {formatted[1]}"
        else:
            return (
                f"{delimiter.join(formatted[:-1])}{delimiter}{and_sep} {formatted[-1]}"
            )

    def format_short(self, authors: list[list[str]]) -> str:
        """Family names for an author-date citation (``A``, ``A & B``, ``A et al.``)."""
        families = [self.format(a, "last-only") for a in authors if a]
        match len(families):
            case 0:
                return ""
            case 1:
                return families[0]
            case 2:
                return f"{families[0]} & {families[1]}"
            case _:
                return f"{families[0]} et al."

    def _get_initials(self, name: str) -> str:
        """Get initials from given names."""
        is_cjk = any(
            "\u4e00" <= c <= "\u9fff"  # CJK Unified Ideographs
            or "\u3400" <= c <= "\u4dbf"  # CJK Extension A
            or "\uac00" <= c <= "\ud7af"  # Hangul Syllables
            or "\u3040" <= c <= "\u309f"  # Hiragana
            or "\u30a0" <= c <= "\u30ff"  # Katakana
            for c in name
        )
        if is_cjk:
            return name

        parts = name.replace("-", " - ").split()
        initials = []
        for part in parts:
            if part == "-":
                initials.append("-")
            elif part:
                initials.append(f"{part[0].upper()}.")

        return " ".join(initials).replace(" - ", "-")


def alphanumeric_label(authors: list[list[str]], year: str | None, key: str) -> str:
    """
    Build an alphanumeric label such as ``Smi20`` or ``KN18``.

    One author contributes the first three letters of the family name;
    two to four authors contribute one initial each; more than four
    contribute three initials and a ``+``. Items without authors fall
    back to the citation key.
    """
    families = [a[0] for a in authors if a and a[0]]
    if not families:
        stem = key[:3]
    elif len(families) == 1:
        stem = families[0][:3]
    elif len(families) <= 4:
        stem = "".join(f[0] for f in families)
    else:
        stem = "".join(f[0] for f in families[:3]) + "+"

    suffix = year[-2:] if year and year.isdigit() else ""
    return f"{stem}{suffix}"
