"""mdbib command line.

Runs as an mdBook preprocessor: book JSON in on stdin, processed book
JSON out on stdout. Diagnostics go to stderr.
"""

from mdbib.cli.main import cli, main

__all__ = ["cli", "main"]
