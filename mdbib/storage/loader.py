"""Raw bibliography retrieval from local files and the Zotero web API."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from pathlib import Path
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from mdbib.exceptions import BibliographyRetrievalError
from mdbib.storage.parser import BibFormat

logger = logging.getLogger(__name__)

ZOTERO_API = "https://api.zotero.org"

Fetcher = Callable[[str, float], tuple[str, dict[str, str]]]

_NEXT_LINK = re.compile(r'<([^>]+)>\s*;\s*rel="?next"?')


def load_bibliography(path: Path | str) -> str:
    """Read a ``.bib``/``.yaml``/``.yml`` bibliography file.

    Files with other extensions are ignored with a warning.

    Raises:
        BibliographyRetrievalError: If the file cannot be read
    """
    path = Path(path)
    if BibFormat.from_path(path) is None:
        logger.warning(
            "Only .bib, .yaml and .yml bibliographies are supported, ignoring %s", path
        )
        return ""

    logger.info("Loading bibliography from %s", path)
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        logger.warning("%s is not valid UTF-8, reading as latin-1", path)
        return path.read_text(encoding="latin-1")
    except OSError as e:
        raise BibliographyRetrievalError(f"Failed to read {path}: {e}") from e


def next_page_url(link_header: str | None) -> str | None:
    """Extract the ``rel="next"`` target from an HTTP ``Link`` header."""
    if not link_header:
        return None
    for part in link_header.split(","):
        match = _NEXT_LINK.search(part)
        if match:
            return match.group(1)
    return None


class ZoteroClient:
    """Minimal client downloading a user's library as BibLaTeX."""

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        timeout: float = 30.0,
        base_url: str = ZOTERO_API,
    ):
        self.fetcher = fetcher or self._http_get
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    def library_url(self, user_id: str) -> str:
        return (
            f"{self.base_url}/users/{user_id}/items"
            "?format=biblatex&style=biblatex&limit=100&sort=creator&v=3"
        )

    def download(self, user_id: str) -> str:
        """Download every page of a user's library.

        Raises:
            BibliographyRetrievalError: If any page cannot be fetched
        """
        url: str | None = self.library_url(user_id)
        pages = []
        seen: set[str] = set()

        while url and url not in seen:
            seen.add(url)
            logger.info("Downloading Zotero bibliography page: %s", url)
            body, headers = self.fetcher(url, self.timeout)
            pages.append(body)
            url = next_page_url(_header(headers, "Link"))

        content = "".join(pages)
        logger.debug("Downloaded %d page(s), %d characters", len(pages), len(content))
        return content

    @staticmethod
    def _http_get(url: str, timeout: float) -> tuple[str, dict[str, str]]:
        request = Request(url, headers={"User-Agent": "mdbib/0.1"})
        try:
            with urlopen(request, timeout=timeout) as response:
                charset = response.headers.get_content_charset() or "utf-8"
                body = response.read().decode(charset, errors="replace")
                return body, dict(response.headers.items())
        except HTTPError as e:
            raise BibliographyRetrievalError(
                f"Zotero request failed with HTTP {e.code}: {url}"
            ) from e
        except URLError as e:
            raise BibliographyRetrievalError(
                f"Zotero request failed: {e.reason}"
            ) from e


def _header(headers: dict[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None
