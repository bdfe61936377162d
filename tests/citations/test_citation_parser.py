"""Tests for citation placeholder scanning.

This module tests:
- Directive and shorthand placeholder substitution
- Sweep order and first-seen index assignment
- Escaped directives and code block protection
- Unknown keys and backend failures
- Breadcrumb computation
"""

import logging
from pathlib import PurePosixPath, PureWindowsPath

import pytest

from mdbib.backends import CustomBackend
from mdbib.citations.parser import (
    CitationIndexer,
    CitationSyntax,
    PlaceholderScanner,
    breadcrumbs_up_to_root,
    extract_citation_keys,
    formatting_error_marker,
    protect_code_blocks,
    restore_code_blocks,
    unknown_reference_marker,
)
from mdbib.core.models import BibItem, CitationVariant
from mdbib.exceptions import ConfigError, PathInvariantError


@pytest.fixture
def scanner(bibliography, recording_backend):
    return PlaceholderScanner(bibliography, recording_backend)


class TestDirectiveSubstitution:
    """Test the ``{{#cite key}}`` form."""

    def test_end_to_end_example(self, scanner, bibliography):
        cited = set()
        text = "cites {{#cite fps}} and {{#cite rust_book}} and {{#cite missing}}"

        result = scanner.replace_all_placeholders(text, "intro.md", cited)

        assert "<fps#1>bibliography.html" in result
        assert "<rust_book#2>bibliography.html" in result
        assert "Unknown bib ref: missing" in result
        assert cited == {"fps", "rust_book", "missing"}
        assert bibliography["fps"].index == 1
        assert bibliography["rust_book"].index == 2

    def test_flexible_whitespace(self, scanner):
        cited = set()
        result = scanner.replace_all_placeholders(
            "a {{  #cite   fps  }} b", "intro.md", cited
        )

        assert result == "a <fps#1>bibliography.html b"
        assert cited == {"fps"}

    def test_unknown_key_marker_and_no_index(self, scanner, bibliography):
        cited = set()
        result = scanner.replace_all_placeholders(
            "{{#cite nope}}", "intro.md", cited
        )

        assert result == unknown_reference_marker("nope")
        assert result == "\\[Unknown bib ref: nope\\]"
        assert cited == {"nope"}
        assert all(item.index is None for item in bibliography.values())

    def test_unknown_key_logged(self, scanner, caplog):
        with caplog.at_level(logging.WARNING, logger="mdbib.citations.parser"):
            scanner.replace_all_placeholders("{{#cite nope}}", "ch.md", set())

        assert "Unknown bibliography reference 'nope' in ch.md" in caplog.text

    def test_escaped_directive_left_untouched(self, scanner, bibliography):
        cited = set()
        text = "literal \\{{#cite fps}} and live {{#cite rust_book}}"

        result = scanner.replace_all_placeholders(text, "intro.md", cited)

        assert "\\{{#cite fps}}" in result
        assert "<rust_book#1>" in result
        assert cited == {"rust_book"}
        assert bibliography["fps"].index is None

    def test_escaped_directive_stops_at_first_close(self, scanner):
        text = "\\{{#include file.rs}} then {{#cite fps}}"

        result = scanner.replace_all_placeholders(text, "intro.md", set())

        assert result == "\\{{#include file.rs}} then <fps#1>bibliography.html"

    def test_shorthand_inside_escaped_directive_untouched(self, scanner, bibliography):
        cited = set()
        text = "\\{{#cite @@fps}} and \\{{#include @@rust_book}}"

        result = scanner.replace_all_placeholders(text, "intro.md", cited)

        assert result == text
        assert cited == set()
        assert bibliography["fps"].index is None

    def test_backend_failure_is_contained(self, bibliography, failing_backend, caplog):
        scanner = PlaceholderScanner(bibliography, failing_backend)
        cited = set()

        with caplog.at_level(logging.ERROR, logger="mdbib.citations.parser"):
            result = scanner.replace_all_placeholders(
                "{{#cite rust_book}} then {{#cite fps}}", "intro.md", cited
            )

        assert result.startswith(formatting_error_marker("rust_book"))
        assert "\\[Error formatting rust_book\\]" in result
        assert "<fps#2>" in result
        assert cited == {"rust_book", "fps"}
        assert "Failed to format citation for 'rust_book'" in caplog.text

    def test_template_python_error_is_contained(self, bibliography):
        backend = CustomBackend(references_tpl="x", cite_tpl="{{ item.pub_year + 1 }}")
        scanner = PlaceholderScanner(bibliography, backend)

        result = scanner.replace_all_placeholders(
            "see {{#cite fps}} and @@rust_book", "intro.md", set()
        )

        assert result == (
            "see \\[Error formatting fps\\] and \\[Error formatting rust_book\\]"
        )


class TestShorthandSubstitution:
    """Test the ``@@key`` form."""

    def test_basic_shorthand(self, scanner):
        cited = set()
        result = scanner.replace_all_placeholders("See @@fps.", "intro.md", cited)

        assert result == "See <fps#1>bibliography.html."
        assert cited == {"fps"}

    @pytest.mark.parametrize(
        "text,key",
        [
            ("@@fps, and more", "fps"),
            ("(@@fps)", "fps"),
            ("@@fps: a colon", "fps"),
            ("@@smith.2020:ch1.", "smith.2020:ch1"),
        ],
    )
    def test_trailing_punctuation_not_part_of_key(self, text, key):
        assert extract_citation_keys(text) == [key]

    @pytest.mark.parametrize(
        "key",
        [
            "doi:10.5555/12345",
            "arXiv:2301.12345",
            "user@domain",
            "10.1145/3508461",
            "smith-jones_2020",
        ],
    )
    def test_special_character_keys(self, key, recording_backend):
        bibliography = {key: BibItem(citation_key=key, title="T")}
        scanner = PlaceholderScanner(bibliography, recording_backend)

        for text in (f"see {{{{#cite {key}}}}} end", f"see @@{key} end"):
            bibliography[key].index = None
            cited = set()
            result = scanner.replace_all_placeholders(text, "intro.md", cited)

            assert cited == {key}
            assert result == f"see <{key}#{bibliography[key].index}>bibliography.html end"

    def test_mixed_syntax_sweep_order(self, scanner, bibliography):
        """Directives are swept before shorthand, whatever the text order."""
        cited = set()
        result = scanner.replace_all_placeholders(
            "@@fps and {{#cite rust_book}}", "intro.md", cited
        )

        assert cited == {"fps", "rust_book"}
        assert bibliography["rust_book"].index == 1
        assert bibliography["fps"].index == 2
        assert result == "<fps#2>bibliography.html and <rust_book#1>bibliography.html"


class TestPandocSyntax:
    """Test the ``[-@key]``, ``[@key]`` and ``@key`` forms."""

    @pytest.fixture
    def pandoc_scanner(self, bibliography, recording_backend):
        return PlaceholderScanner(
            bibliography, recording_backend, syntax=CitationSyntax.PANDOC
        )

    def test_disabled_by_default(self, scanner, bibliography):
        cited = set()
        text = "see [@fps], [-@fps] and @rust_book"

        result = scanner.replace_all_placeholders(text, "intro.md", cited)

        assert result == text
        assert cited == set()
        assert bibliography["fps"].index is None

    @pytest.mark.parametrize(
        "text,expected,variant",
        [
            (
                "see [-@fps].",
                "see <fps#1>bibliography.html.",
                CitationVariant.SUPPRESS_AUTHOR,
            ),
            (
                "see [@fps].",
                "see <fps#1>bibliography.html.",
                CitationVariant.PARENTHETICAL,
            ),
            (
                "as @fps shows",
                "as <fps#1>bibliography.html shows",
                CitationVariant.AUTHOR_IN_TEXT,
            ),
            (
                "@fps shows",
                "<fps#1>bibliography.html shows",
                CitationVariant.AUTHOR_IN_TEXT,
            ),
        ],
    )
    def test_forms_and_variants(
        self, pandoc_scanner, recording_backend, text, expected, variant
    ):
        cited = set()

        result = pandoc_scanner.replace_all_placeholders(text, "intro.md", cited)

        assert result == expected
        assert cited == {"fps"}
        assert recording_backend.citations[0][1].variant is variant

    def test_native_forms_stay_standard(self, pandoc_scanner, recording_backend):
        pandoc_scanner.replace_all_placeholders(
            "{{#cite fps}} @@rust_book", "intro.md", set()
        )

        variants = [ctx.variant for _, ctx in recording_backend.citations]
        assert variants == [CitationVariant.STANDARD, CitationVariant.STANDARD]

    @pytest.mark.parametrize(
        "text",
        [
            "mail me at someone@fps.org",
            "https://twitter.com/@fps",
            "a@fps and b@fps",
            "keys must not start with a digit: @2024fps",
            "`inline @fps`",
        ],
    )
    def test_left_alone(self, pandoc_scanner, text):
        cited = set()

        result = pandoc_scanner.replace_all_placeholders(text, "intro.md", cited)

        assert result == text
        assert cited == set()

    def test_escaped_at(self, pandoc_scanner, bibliography):
        cited = set()

        result = pandoc_scanner.replace_all_placeholders(
            "literal \\@fps and [\\@fps]", "intro.md", cited
        )

        assert result == "literal @fps and [@fps]"
        assert cited == set()
        assert bibliography["fps"].index is None

    def test_sweep_order(self, pandoc_scanner, bibliography):
        pandoc_scanner.replace_all_placeholders(
            "@rust_book [@fps] [-@anon] @@doi:10.5555/12345", "intro.md", set()
        )

        assert bibliography["doi:10.5555/12345"].index == 1
        assert bibliography["anon"].index == 2
        assert bibliography["fps"].index == 3
        assert bibliography["rust_book"].index == 4

    def test_pandoc_key_with_separators(self, pandoc_scanner):
        cited = set()

        result = pandoc_scanner.replace_all_placeholders(
            "[@doi:10.5555/12345]", "intro.md", cited
        )

        assert result == "<doi:10.5555/12345#1>bibliography.html"
        assert cited == {"doi:10.5555/12345"}

    def test_unknown_key_marker(self, pandoc_scanner):
        cited = set()

        result = pandoc_scanner.replace_all_placeholders(
            "by @nobody", "intro.md", cited
        )

        assert result == "by " + unknown_reference_marker("nobody")
        assert cited == {"nobody"}

    def test_syntax_from_str(self):
        assert CitationSyntax.from_str(" Pandoc ") is CitationSyntax.PANDOC
        with pytest.raises(ConfigError, match="citation-syntax"):
            CitationSyntax.from_str("latex")


class TestIndexing:
    """Test first-seen index assignment across chapters."""

    def test_indices_shared_across_chapters(self, scanner, bibliography):
        scanner.replace_all_placeholders("{{#cite rust_book}}", "a.md", set())
        scanner.replace_all_placeholders(
            "{{#cite fps}} {{#cite rust_book}}", "b.md", set()
        )

        assert bibliography["rust_book"].index == 1
        assert bibliography["fps"].index == 2

    def test_repeated_citation_keeps_index(self, scanner, bibliography):
        result = scanner.replace_all_placeholders(
            "{{#cite fps}} {{#cite fps}} @@fps", "a.md", set()
        )

        assert result.count("<fps#1>") == 3
        assert bibliography["fps"].index == 1

    def test_rerun_does_not_reassign(self, bibliography, recording_backend):
        text = "{{#cite fps}} {{#cite rust_book}}"
        PlaceholderScanner(bibliography, recording_backend).replace_all_placeholders(
            text, "a.md", set()
        )
        before = {key: item.index for key, item in bibliography.items()}

        PlaceholderScanner(bibliography, recording_backend).replace_all_placeholders(
            "{{#cite anon}} " + text, "a.md", set()
        )

        assert bibliography["fps"].index == before["fps"]
        assert bibliography["rust_book"].index == before["rust_book"]
        assert bibliography["anon"].index == 3

    def test_indexer_continues_after_existing(self):
        bibliography = {
            "a": BibItem(citation_key="a", index=4),
            "b": BibItem(citation_key="b"),
        }
        indexer = CitationIndexer.from_bibliography(bibliography)

        assert indexer.assign(bibliography["b"]) == 5
        assert indexer.assign(bibliography["a"]) == 4
        assert indexer.last_index == 5

    def test_indexer_starts_at_one(self):
        item = BibItem(citation_key="a")
        assert CitationIndexer().assign(item) == 1


class TestCodeProtection:
    """Placeholders inside code are never substituted."""

    def test_fenced_and_inline_code(self, scanner):
        cited = set()
        text = (
            "```markdown\n{{#cite fps}} and @@rust_book\n```\n"
            "inline `@@rust_book` and live {{#cite fps}}"
        )

        result = scanner.replace_all_placeholders(text, "intro.md", cited)

        assert "```markdown\n{{#cite fps}} and @@rust_book\n```\n" in result
        assert "`@@rust_book`" in result
        assert result.endswith("live <fps#1>bibliography.html")
        assert cited == {"fps"}

    def test_tilde_fence(self):
        text = "~~~\n@@fps\n~~~"
        assert extract_citation_keys(text) == []

    def test_protect_restore_round_trip(self):
        text = "a `x` b\n```\ncode\n```\n c `y`"
        protected, blocks = protect_code_blocks(text)

        assert "`" not in protected
        assert len(blocks) == 3
        assert restore_code_blocks(protected, blocks) == text


class TestBreadcrumbs:
    """Test relative paths from a chapter back to the book root."""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("", ""),
            ("intro.md", ""),
            ("./intro.md", ""),
            ("part/chapter.md", "../"),
            ("part/sub/chapter.md", "../../"),
            ("dir1/dir2/../source.md", "../"),
            ("part\\chapter.md", "../"),
        ],
    )
    def test_levels(self, path, expected):
        assert breadcrumbs_up_to_root(path) == expected

    def test_pure_paths(self):
        assert breadcrumbs_up_to_root(PurePosixPath("a/b/c.md")) == "../../"
        assert breadcrumbs_up_to_root(PureWindowsPath("a\\b.md")) == "../"

    def test_absolute_path_is_fatal(self):
        with pytest.raises(PathInvariantError, match="/abs/chapter.md"):
            breadcrumbs_up_to_root("/abs/chapter.md")

    def test_nested_chapter_links_up(self, scanner, recording_backend):
        result = scanner.replace_all_placeholders(
            "{{#cite fps}}", "part/sub/chapter.md", set()
        )

        assert result == "<fps#1>../../bibliography.html"
        context = recording_backend.citations[0][1]
        assert context.chapter_path == "part/sub/chapter.md"
        assert context.bib_page_path == "../../bibliography.html"


class TestExtractCitationKeys:
    """Test key extraction without a bibliography."""

    def test_sweep_order(self):
        text = "@@a then {{#cite b}} then \\{{#cite c}} then @@d"
        assert extract_citation_keys(text) == ["b", "a", "d"]

    def test_escaped_directive_hides_shorthand(self):
        assert extract_citation_keys("\\{{#cite @@a}} @@b") == ["b"]

    def test_pandoc_forms(self):
        text = "@rust_book [@fps] [-@anon] @@x and me@example.org \\@y"

        assert extract_citation_keys(text) == ["x"]
        assert extract_citation_keys(text, CitationSyntax.PANDOC) == [
            "x",
            "anon",
            "fps",
            "rust_book",
        ]
