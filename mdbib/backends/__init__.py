"""Pluggable bibliography backends.

- **CustomBackend**: Jinja2 citation/reference templates (default)
- **LegacyBackend**: same templates, kept for existing books
- **CslBackend**: built-in formatting driven by a named citation style
"""

from .base import BackendMode, BibliographyBackend
from .csl import CslBackend
from .factory import create_backend
from .template import CustomBackend, LegacyBackend, TemplateBackend

__all__ = [
    "BackendMode",
    "BibliographyBackend",
    "CslBackend",
    "CustomBackend",
    "LegacyBackend",
    "TemplateBackend",
    "create_backend",
]
