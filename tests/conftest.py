"""Pytest configuration and shared fixtures."""

import os

import pytest

from mdbib.backends.base import BibliographyBackend
from mdbib.backends.template import CustomBackend
from mdbib.core.models import BibItem, Book, Chapter, CitationContext
from mdbib.exceptions import BackendRenderError


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """Isolate environment variables for each test.

    This prevents test pollution where one test's environment
    changes affect other tests.
    """
    original_env = os.environ.copy()
    monkeypatch.delenv("MDBIB_LOG", raising=False)

    yield

    os.environ.clear()
    os.environ.update(original_env)


class RecordingBackend(BibliographyBackend):
    """Backend double rendering ``<key#index@link>`` and recording calls.

    Keys listed in ``fail_on`` raise ``BackendRenderError``.
    """

    def __init__(self, fail_on: set[str] | None = None):
        self.fail_on = fail_on or set()
        self.citations: list[tuple[str, CitationContext]] = []
        self.references: list[str] = []

    def format_citation(self, item: BibItem, context: CitationContext) -> str:
        if item.citation_key in self.fail_on:
            raise BackendRenderError(item.citation_key, "boom")
        self.citations.append((item.citation_key, context))
        return f"<{item.citation_key}#{item.index}>{context.bib_page_path}"

    def format_reference(self, item: BibItem) -> str:
        if item.citation_key in self.fail_on:
            raise BackendRenderError(item.citation_key, "boom")
        self.references.append(item.citation_key)
        return f"[ref:{item.citation_key}]"

    def name(self) -> str:
        return "Recording"


@pytest.fixture
def recording_backend():
    """Backend double with predictable output."""
    return RecordingBackend()


@pytest.fixture
def failing_backend():
    """Backend double that fails for the key ``rust_book``."""
    return RecordingBackend(fail_on={"rust_book"})


@pytest.fixture
def key_backend():
    """Template backend rendering citations as ``[key|path]``."""
    return CustomBackend(
        references_tpl="<li id='{{ citation_key }}'>{{ title }}</li>",
        cite_tpl="[{{ item.citation_key }}|{{ path }}]",
    )


@pytest.fixture
def sample_items():
    """A small bibliography in parse order."""
    return [
        BibItem(
            citation_key="fps",
            title="Functional Programming in Scala",
            authors=[["Chiusano", "Paul"], ["Bjarnason", "Runar"]],
            pub_year="2014",
            pub_month="September",
            publisher="Manning",
        ),
        BibItem(
            citation_key="rust_book",
            title="The Rust Programming Language",
            authors=[["Klabnik", "Steve"], ["Nichols", "Carol"]],
            pub_year="2018",
            url="https://doc.rust-lang.org/book/",
        ),
        BibItem(
            citation_key="anon",
            title="Anonymous Notes",
        ),
        BibItem(
            citation_key="doi:10.5555/12345",
            title="A Paper Keyed By DOI",
            authors=[["Adams", "Ann"]],
            pub_year="2021",
        ),
    ]


@pytest.fixture
def bibliography(sample_items):
    """Bibliography mapping keyed by citation key."""
    return {item.citation_key: item for item in sample_items}


@pytest.fixture
def sample_bibtex():
    """Sample BibTeX content for testing."""
    return """
@book{fps,
    title = {Functional Programming in Scala},
    author = {Chiusano, Paul and Bjarnason, Runar},
    publisher = {Manning},
    year = 2014,
    month = sep,
}

@book{rust_book,
    title = {The {Rust} Programming Language},
    author = {Steve Klabnik and Carol Nichols},
    year = {2018},
    url = {https://doc.rust-lang.org/book/},
    abstract = {An introductory book about Rust.},
}
"""


@pytest.fixture
def make_book():
    """Build a book from ``(path, content)`` pairs at the top level."""

    def _make(*chapters: tuple[str, str]) -> Book:
        return Book(
            sections=[
                Chapter.new(path.rsplit("/", 1)[-1], content, path)
                for path, content in chapters
            ]
        )

    return _make
