"""Pytest configuration and fixtures for CLI tests."""

import logging

import msgspec
import pytest
from click.testing import CliRunner

from mdbib.cli.main import cli


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo the root logger changes made by ``setup_logging``."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level

    yield

    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def cli_runner():
    """Runner invoking the ``mdbib`` command group."""

    class Runner:
        def __init__(self):
            self.runner = CliRunner()

        def invoke(self, args, input=None, **kwargs):
            return self.runner.invoke(cli, args, input=input, **kwargs)

    return Runner()


@pytest.fixture
def book_dir(tmp_path, sample_bibtex):
    """Book root with ``src/refs.bib``."""
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "refs.bib").write_text(sample_bibtex, encoding="utf-8")
    return tmp_path


@pytest.fixture
def make_payload(book_dir):
    """Encode a ``[context, book]`` pair as mdBook sends it."""

    def _make(chapters, table=None, mdbook_version="0.4.40"):
        config = {"book": {"src": "src", "title": "Test Book"}}
        if table is not None:
            config["preprocessor"] = {"bib": table}
        context = {
            "root": str(book_dir),
            "config": config,
            "renderer": "html",
            "mdbook_version": mdbook_version,
        }
        book = {
            "sections": [
                {
                    "Chapter": {
                        "name": path,
                        "content": content,
                        "number": [i + 1],
                        "sub_items": [],
                        "path": path,
                        "source_path": path,
                        "parent_names": [],
                    }
                }
                for i, (path, content) in enumerate(chapters)
            ],
            "__non_exhaustive": None,
        }
        return msgspec.json.encode([context, book])

    return _make
