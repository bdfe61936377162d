"""mdBook preprocessor for citations and bibliographies."""

__version__ = "0.1.0"
