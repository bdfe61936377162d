"""Bibliography retrieval and parsing.

- **load_bibliography**: read a local ``.bib``/``.yaml`` file
- **ZoteroClient**: download a Zotero library as BibLaTeX
- **parse_bibliography**: turn raw text into ``BibItem``s keyed by citation key
"""

from .loader import ZoteroClient, load_bibliography
from .parser import (
    BibFormat,
    BibtexLexer,
    BibtexParser,
    parse_bibliography,
    parse_bibtex,
    parse_yaml,
)

__all__ = [
    "BibFormat",
    "BibtexLexer",
    "BibtexParser",
    "ZoteroClient",
    "load_bibliography",
    "parse_bibliography",
    "parse_bibtex",
    "parse_yaml",
]
