"""Jinja2 template backends.

Both flavours render a ``citation`` template for inline citations and a
``references`` template for bibliography entries:

- citation context: ``item`` (all item fields), ``path`` (link to the
  bibliography page) and ``variant`` (``standard``, ``author_in_text``,
  ``parenthetical`` or ``suppress_author``)
- references context: the item fields at top level (``citation_key``,
  ``title``, ``authors``...)
"""

from __future__ import annotations

import logging

from jinja2 import Environment, StrictUndefined, Template, TemplateError

from mdbib.backends.base import BibliographyBackend
from mdbib.core.models import BibItem, Citation, CitationContext
from mdbib.exceptions import BackendConstructionError, BackendRenderError

logger = logging.getLogger(__name__)

CITATION_TEMPLATE = "citation"
REFERENCES_TEMPLATE = "references"


def create_environment() -> Environment:
    """Jinja2 environment for raw HTML/Markdown output."""
    return Environment(undefined=StrictUndefined, autoescape=False)


def compile_template(env: Environment, name: str, source: str) -> Template:
    """Compile a template, turning syntax errors into construction errors."""
    try:
        return env.from_string(source)
    except TemplateError as e:
        raise BackendConstructionError(
            f"Failed to register template '{name}': {e}"
        ) from e


class TemplateBackend(BibliographyBackend):
    """Backend delegating to a pair of Jinja2 templates."""

    display_name = "Template (Jinja2)"

    def __init__(self, references_tpl: str, cite_tpl: str):
        """Compile the reference and citation templates.

        Raises:
            BackendConstructionError: If either template fails to compile
        """
        self._env = create_environment()
        self._templates = {
            REFERENCES_TEMPLATE: compile_template(
                self._env, REFERENCES_TEMPLATE, references_tpl
            ),
            CITATION_TEMPLATE: compile_template(self._env, CITATION_TEMPLATE, cite_tpl),
        }

    def format_citation(self, item: BibItem, context: CitationContext) -> str:
        citation = Citation(
            item=item, path=context.bib_page_path, variant=context.variant
        )
        try:
            return self._render(CITATION_TEMPLATE, citation.to_dict(), item)
        except BackendRenderError:
            logger.error(
                "Failed to render citation for '%s' in %s",
                item.citation_key,
                context.chapter_path,
            )
            raise

    def format_reference(self, item: BibItem) -> str:
        return self._render(REFERENCES_TEMPLATE, item.to_dict(), item)

    def name(self) -> str:
        return self.display_name

    def _render(self, template: str, context: dict, item: BibItem) -> str:
        try:
            return self._templates[template].render(**context)
        except TemplateError as e:
            raise BackendRenderError(item.citation_key, str(e)) from e
        except Exception as e:
            # Expressions like {{ pub_year + 1 }} fail with plain Python errors
            raise BackendRenderError(
                item.citation_key, f"{type(e).__name__}: {e}"
            ) from e


class LegacyBackend(TemplateBackend):
    """Template backend kept for books written against the original templates."""

    display_name = "Legacy (Jinja2)"


class CustomBackend(TemplateBackend):
    """Template backend for user-supplied templates, CSS and JavaScript."""

    display_name = "Custom (Jinja2)"
