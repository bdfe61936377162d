"""Tests for bibliography retrieval from files and Zotero."""

import logging
from unittest.mock import MagicMock, Mock, patch
from urllib.error import HTTPError, URLError

import pytest

from mdbib.exceptions import BibliographyRetrievalError
from mdbib.storage.loader import ZoteroClient, load_bibliography, next_page_url


class TestLoadBibliography:
    """Test reading local bibliography files."""

    def test_reads_bib_file(self, tmp_path, sample_bibtex):
        path = tmp_path / "refs.bib"
        path.write_text(sample_bibtex, encoding="utf-8")

        assert load_bibliography(path) == sample_bibtex

    def test_reads_yaml_file(self, tmp_path):
        path = tmp_path / "refs.yml"
        path.write_text("k:\n  title: T\n", encoding="utf-8")

        assert load_bibliography(str(path)) == "k:\n  title: T\n"

    def test_unsupported_extension(self, tmp_path, caplog):
        path = tmp_path / "refs.json"
        path.write_text("{}", encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="mdbib.storage.loader"):
            assert load_bibliography(path) == ""
        assert "ignoring" in caplog.text

    def test_latin1_fallback(self, tmp_path):
        path = tmp_path / "refs.bib"
        path.write_bytes("@book{k, author = {M\xfcller}}".encode("latin-1"))

        assert "Müller" in load_bibliography(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(BibliographyRetrievalError, match="Failed to read"):
            load_bibliography(tmp_path / "missing.bib")


class TestNextPageUrl:
    """Test Link header pagination parsing."""

    def test_next_link(self):
        header = (
            '<https://api.zotero.org/users/1/items?start=100>; rel="next", '
            '<https://api.zotero.org/users/1/items?start=200>; rel="last"'
        )
        assert next_page_url(header) == "https://api.zotero.org/users/1/items?start=100"

    def test_no_next_link(self):
        assert next_page_url('<https://x/items?start=0>; rel="first"') is None
        assert next_page_url(None) is None
        assert next_page_url("") is None


class TestZoteroClient:
    """Test Zotero downloads with an injected fetcher."""

    def test_library_url(self):
        client = ZoteroClient(fetcher=Mock())
        assert client.library_url("475425") == (
            "https://api.zotero.org/users/475425/items"
            "?format=biblatex&style=biblatex&limit=100&sort=creator&v=3"
        )

    def test_single_page(self):
        fetcher = Mock(return_value=("@book{a, title={A}}", {}))
        client = ZoteroClient(fetcher=fetcher, timeout=5)

        assert client.download("1") == "@book{a, title={A}}"
        fetcher.assert_called_once_with(client.library_url("1"), 5)

    def test_follows_pagination(self):
        pages = {
            "first": ("@book{a, title={A}}\n", {"link": '<second>; rel="next"'}),
            "second": ("@book{b, title={B}}\n", {"Link": '<first>; rel="prev"'}),
        }
        client = ZoteroClient(
            fetcher=lambda url, timeout: pages[url], base_url="https://example.org"
        )

        with patch.object(client, "library_url", return_value="first"):
            content = client.download("1")

        assert content == "@book{a, title={A}}\n@book{b, title={B}}\n"

    def test_pagination_loop_guard(self):
        fetcher = Mock(return_value=("x", {"Link": '<same>; rel="next"'}))
        client = ZoteroClient(fetcher=fetcher)

        with patch.object(client, "library_url", return_value="same"):
            assert client.download("1") == "x"
        assert fetcher.call_count == 1

    def test_fetcher_error_propagates(self):
        fetcher = Mock(side_effect=BibliographyRetrievalError("down"))
        client = ZoteroClient(fetcher=fetcher)

        with pytest.raises(BibliographyRetrievalError, match="down"):
            client.download("1")

    def test_http_error_translated(self):
        error = HTTPError("https://x", 403, "Forbidden", {}, None)
        with patch("mdbib.storage.loader.urlopen", side_effect=error):
            with pytest.raises(BibliographyRetrievalError, match="HTTP 403"):
                ZoteroClient().download("1")

    def test_url_error_translated(self):
        with patch("mdbib.storage.loader.urlopen", side_effect=URLError("offline")):
            with pytest.raises(BibliographyRetrievalError, match="offline"):
                ZoteroClient().download("1")

    def test_http_get_reads_body_and_headers(self):
        response = MagicMock()
        response.read.return_value = b"@book{a, title={A}}"
        response.headers.get_content_charset.return_value = "utf-8"
        response.headers.items.return_value = [("Link", "")]
        response.__enter__.return_value = response

        with patch("mdbib.storage.loader.urlopen", return_value=response):
            body, headers = ZoteroClient._http_get("https://x", 1.0)

        assert body == "@book{a, title={A}}"
        assert headers == {"Link": ""}
