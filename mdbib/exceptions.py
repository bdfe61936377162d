"""Exception classes for the citation preprocessor."""


class MdbibError(Exception):
    """Base exception for all preprocessor errors."""

    pass


class ConfigError(MdbibError, ValueError):
    """Raised when a configuration value is invalid."""

    def __init__(self, option: str, message: str):
        """Initialize with option name and message."""
        self.option = option
        super().__init__(f"Invalid value for option '{option}': {message}")


class BibliographyError(MdbibError):
    """Base exception for bibliography loading errors."""

    pass


class BibliographyParseError(BibliographyError):
    """Raised when bibliography content cannot be parsed."""

    def __init__(self, message: str, line: int = 0, column: int = 0):
        """Initialize with message and source location."""
        self.line = line
        self.column = column
        if line:
            message = f"Line {line}, column {column}: {message}"
        super().__init__(message)


class BibliographyRetrievalError(BibliographyError):
    """Raised when raw bibliography content cannot be retrieved."""

    pass


class BackendError(MdbibError):
    """Base exception for bibliography backend errors."""

    pass


class BackendConstructionError(BackendError):
    """Raised when a backend cannot be built (bad template, unknown style)."""

    pass


class BackendRenderError(BackendError):
    """Raised when a backend fails to render a citation or reference."""

    def __init__(self, key: str, message: str):
        """Initialize with the citation key being rendered."""
        self.key = key
        super().__init__(f"Failed to render '{key}': {message}")


class PathInvariantError(MdbibError):
    """Raised when a chapter path is absolute instead of book-relative."""

    def __init__(self, path: str):
        """Initialize with the offending path."""
        self.path = path
        super().__init__(
            f"Chapter paths must be relative to the book root, got absolute path: {path}"
        )
