"""Build the bibliography backend selected by configuration."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mdbib.backends.base import BackendMode, BibliographyBackend
from mdbib.backends.csl import CslBackend
from mdbib.backends.template import CustomBackend, LegacyBackend

if TYPE_CHECKING:
    from mdbib.config import Config

logger = logging.getLogger(__name__)


def create_backend(config: Config) -> BibliographyBackend:
    """Create the configured backend.

    Raises:
        BackendConstructionError: If templates fail to compile or the
            CSL style cannot be resolved
    """
    match config.backend:
        case BackendMode.CSL:
            backend: BibliographyBackend = CslBackend(
                config.csl_style, base_dir=config.book_src
            )
        case BackendMode.LEGACY:
            backend = LegacyBackend(config.references_tpl, config.cite_tpl)
        case _:
            backend = CustomBackend(config.references_tpl, config.cite_tpl)

    logger.info("Using bibliography backend: %s", backend.name())
    return backend
