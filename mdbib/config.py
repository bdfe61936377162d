"""Preprocessor configuration.

Configuration comes from the ``preprocessor.bib`` table of the book
configuration, optionally overridden by a YAML file. Template, CSS and
JavaScript paths are resolved against the book source directory; the
packaged defaults are used when a path is not given.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from mdbib.backends.base import BackendMode
from mdbib.citations.parser import CitationSyntax
from mdbib.exceptions import ConfigError
from mdbib.renderer import SortOrder

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Bibliography"
DEFAULT_CSL_STYLE = "ieee"
TEMPLATES_DIR = Path(__file__).parent / "templates"

DEFAULT_REFERENCES_TPL = "references.html.j2"
DEFAULT_CITE_TPL = "citation.html.j2"
DEFAULT_CHAPTER_REFS_TPL = "chapter_refs_header.html.j2"
DEFAULT_CSS = "style.css"
DEFAULT_JS = "copy2clipboard.js"


def read_default_asset(name: str) -> str:
    """Read a file shipped in the package templates directory."""
    return (TEMPLATES_DIR / name).read_text(encoding="utf-8")


def wrap_references_template(content: str) -> str:
    # Blank lines keep each reference a separate HTML block in Markdown.
    return f"\n\n{content}\n\n"


def wrap_css(content: str) -> str:
    return f"<style>{content}</style>\n\n"


def wrap_js(content: str) -> str:
    return f'<script type="text/javascript">\n{content}\n</script>\n\n'


@dataclass
class Config:
    """Resolved preprocessor configuration."""

    title: str = DEFAULT_TITLE
    bibliography: str | None = None
    zotero_uid: str | None = None
    add_bib_in_chapters: bool = False
    cited_only: bool = True
    order: SortOrder = SortOrder.NONE
    backend: BackendMode = BackendMode.CUSTOM
    csl_style: str = DEFAULT_CSL_STYLE
    citation_syntax: CitationSyntax = CitationSyntax.DEFAULT
    references_tpl: str = field(
        default_factory=lambda: wrap_references_template(
            read_default_asset(DEFAULT_REFERENCES_TPL)
        )
    )
    cite_tpl: str = field(default_factory=lambda: read_default_asset(DEFAULT_CITE_TPL))
    chapter_refs_tpl: str = field(
        default_factory=lambda: read_default_asset(DEFAULT_CHAPTER_REFS_TPL)
    )
    css_html: str = field(default_factory=lambda: wrap_css(read_default_asset(DEFAULT_CSS)))
    js_html: str = field(default_factory=lambda: wrap_js(read_default_asset(DEFAULT_JS)))
    book_src: Path = field(default_factory=Path)

    @classmethod
    def from_table(
        cls, table: dict[str, Any] | None, book_src: Path | str = "."
    ) -> Config:
        """Build configuration from a ``preprocessor.bib`` table.

        Unknown keys are ignored.

        Raises:
            ConfigError: If the table is missing, a value has the wrong
                type, or a referenced asset cannot be read
        """
        if table is None:
            raise ConfigError("preprocessor.bib", "no configuration provided")

        book_src = Path(book_src)

        render_bib = _get_str(table, "render-bib") or "cited"
        match render_bib:
            case "cited":
                cited_only = True
            case "all":
                cited_only = False
            case other:
                raise ConfigError(
                    "render-bib", f"unknown value '{other}', use one of [cited, all]"
                )

        order = _get_str(table, "order")
        backend = _get_str(table, "backend")
        syntax = _get_str(table, "citation-syntax")

        return cls(
            title=_get_str(table, "title") or DEFAULT_TITLE,
            bibliography=_get_str(table, "bibliography"),
            zotero_uid=_get_str(table, "zotero-uid"),
            add_bib_in_chapters=_get_bool(table, "add-bib-in-chapters", False),
            cited_only=cited_only,
            order=SortOrder.from_str(order) if order else SortOrder.NONE,
            backend=BackendMode.from_str(backend) if backend else BackendMode.CUSTOM,
            csl_style=_get_str(table, "csl-style") or DEFAULT_CSL_STYLE,
            citation_syntax=(
                CitationSyntax.from_str(syntax) if syntax else CitationSyntax.DEFAULT
            ),
            references_tpl=wrap_references_template(
                _load_asset(table, "references-tpl", book_src, DEFAULT_REFERENCES_TPL)
            ),
            cite_tpl=_load_asset(table, "cite-tpl", book_src, DEFAULT_CITE_TPL),
            chapter_refs_tpl=_load_asset(
                table, "chapter-refs-tpl", book_src, DEFAULT_CHAPTER_REFS_TPL
            ),
            css_html=wrap_css(_load_asset(table, "css", book_src, DEFAULT_CSS)),
            js_html=wrap_js(_load_asset(table, "js", book_src, DEFAULT_JS)),
            book_src=book_src,
        )

    @classmethod
    def from_file(cls, path: Path | str, book_src: Path | str = ".") -> Config:
        """Build configuration from a YAML file holding the table."""
        return cls.from_table(load_table(path), book_src)

    @property
    def bibliography_path(self) -> Path | None:
        if self.bibliography is None:
            return None
        return self.book_src / self.bibliography


def load_table(path: Path | str) -> dict[str, Any]:
    """Load a configuration table from a YAML file.

    Raises:
        ConfigError: If the file cannot be read or is not a YAML mapping
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(str(path), f"invalid YAML in config file: {e}") from e
    except OSError as e:
        raise ConfigError(str(path), f"error reading config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(str(path), "config file must contain a mapping")
    return data


def merge_tables(*tables: dict[str, Any] | None) -> dict[str, Any] | None:
    """Merge configuration tables, later ones taking precedence.

    Returns None when every table is None.
    """
    present = [t for t in tables if t is not None]
    if not present:
        return None

    result: dict[str, Any] = {}
    for table in present:
        result = _deep_merge(result, table)
    return result


def log_level_from_env(default: int = logging.INFO) -> int:
    """Log level named by ``MDBIB_LOG`` (e.g. ``debug``), else ``default``."""
    value = os.environ.get("MDBIB_LOG")
    if not value:
        return default
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else default


def _get_str(table: dict[str, Any], key: str) -> str | None:
    value = table.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(key, f"expected a string, got {type(value).__name__}")
    return value


def _get_bool(table: dict[str, Any], key: str, default: bool) -> bool:
    value = table.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(key, f"expected a boolean, got {type(value).__name__}")
    return value


def _load_asset(
    table: dict[str, Any], key: str, book_src: Path, default_name: str
) -> str:
    relative = _get_str(table, key)
    if relative is None:
        logger.debug("Using default %s", default_name)
        return read_default_asset(default_name)

    path = book_src / relative
    logger.info("Using %s from %s", key, path)
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(key, f"cannot read {path}: {e}") from e


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result
