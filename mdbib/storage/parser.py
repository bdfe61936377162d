"""Bibliography parsing for BibTeX/BibLaTeX and YAML sources.

Features:
- BibTeX lexer/parser with ``@string``, ``@comment`` and ``@preamble``
- Braced and quoted values, ``#`` concatenation and month macros
- Error recovery: malformed entries are skipped and reported
- Hayagriva-style YAML bibliographies
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any

import yaml

from mdbib.core.models import NOT_AVAILABLE, BibItem
from mdbib.core.names import parse_name_list, strip_braces
from mdbib.exceptions import BibliographyParseError

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Not Found"

MONTH_MACROS = {
    "jan": "January",
    "feb": "February",
    "mar": "March",
    "apr": "April",
    "may": "May",
    "jun": "June",
    "jul": "July",
    "aug": "August",
    "sep": "September",
    "oct": "October",
    "nov": "November",
    "dec": "December",
}


class BibFormat(Enum):
    """Supported bibliography source formats."""

    BIBTEX = "bibtex"
    YAML = "yaml"

    @classmethod
    def from_path(cls, path: Path | str) -> BibFormat | None:
        """Pick the format from a file extension, None if unsupported."""
        match Path(path).suffix.lower():
            case ".bib" | ".bibtex":
                return cls.BIBTEX
            case ".yaml" | ".yml":
                return cls.YAML
            case _:
                return None


class TokenType(Enum):
    """BibTeX token types."""

    AT = auto()
    ENTRY_TYPE = auto()
    STRING_DEF = auto()
    COMMENT = auto()
    PREAMBLE = auto()
    LBRACE = auto()
    RBRACE = auto()
    LPAREN = auto()
    RPAREN = auto()
    COMMA = auto()
    EQUALS = auto()
    CONCAT = auto()
    IDENTIFIER = auto()
    NUMBER = auto()
    STRING = auto()
    EOF = auto()


@dataclass
class Token:
    """A lexical token with position."""

    type: TokenType
    value: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.type.name}({self.value!r}) at {self.line}:{self.column}"


@dataclass
class ParseDiagnostic:
    """A problem found while parsing, with its location."""

    message: str
    line: int
    column: int
    severity: str = "error"  # error, warning

    def __str__(self) -> str:
        return f"Line {self.line}, column {self.column}: {self.message}"


@dataclass
class RawEntry:
    """An entry as written in the source, before field mapping."""

    key: str
    entry_type: str
    fields: dict[str, str] = field(default_factory=dict)


class BibtexLexer:
    """Lexical analyzer for BibTeX.

    A brace directly after ``=`` or ``#`` opens a field value and is read
    as one STRING token with its inner braces kept.
    """

    _IDENT_CHARS = "_-:./+@'"

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.line = 1
        self.column = 1
        self._last_type: TokenType | None = None

    def current_char(self) -> str | None:
        if self.pos >= len(self.text):
            return None
        return self.text[self.pos]

    def advance(self, count: int = 1) -> str:
        result = ""
        for _ in range(count):
            if self.pos >= len(self.text):
                break
            char = self.text[self.pos]
            result += char
            self.pos += 1
            if char == "\n":
                self.line += 1
                self.column = 1
            else:
                self.column += 1
        return result

    def read_until(self, predicate) -> str:
        start = self.pos
        while self.current_char() and predicate(self.current_char()):
            self.advance()
        return self.text[start : self.pos]

    def read_identifier(self) -> str:
        return self.read_until(lambda c: c.isalnum() or c in self._IDENT_CHARS)

    def read_quoted_string(self) -> str:
        """Read a quoted value; braces inside protect embedded quotes."""
        self.advance()  # Opening quote
        value = ""
        depth = 0

        while self.current_char() is not None:
            char = self.current_char()
            if char == '"' and depth == 0:
                break
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
            elif char == "\\":
                value += self.advance()
                if self.current_char() is None:
                    break
            value += self.advance()

        if self.current_char() == '"':
            self.advance()
        return value

    def read_braced_string(self) -> str:
        """Read a braced value with balanced inner braces."""
        self.advance()  # Opening brace
        value = ""
        depth = 1

        while self.current_char() is not None:
            char = self.current_char()
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    self.advance()
                    break
            elif char == "\\":
                value += self.advance()
                if self.current_char() is None:
                    break
            value += self.advance()

        return value

    def _emit(self, tokens: list[Token], token: Token) -> None:
        tokens.append(token)
        self._last_type = token.type

    def tokenize(self) -> list[Token]:
        tokens: list[Token] = []
        single = {
            "}": TokenType.RBRACE,
            "(": TokenType.LPAREN,
            ")": TokenType.RPAREN,
            ",": TokenType.COMMA,
            "=": TokenType.EQUALS,
            "#": TokenType.CONCAT,
        }

        while self.pos < len(self.text):
            line, column = self.line, self.column
            char = self.current_char()

            if char.isspace():
                self.advance()

            elif char == "%":
                self.read_until(lambda c: c != "\n")

            elif char == "@":
                self.advance()
                self._emit(tokens, Token(TokenType.AT, "@", line, column))

                if (self.current_char() or "").isalpha():
                    identifier = self.read_identifier().lower()
                    match identifier:
                        case "string":
                            kind = TokenType.STRING_DEF
                        case "comment":
                            kind = TokenType.COMMENT
                        case "preamble":
                            kind = TokenType.PREAMBLE
                        case _:
                            kind = TokenType.ENTRY_TYPE
                    self._emit(tokens, Token(kind, identifier, line, column + 1))

            elif char == "{":
                if self._last_type in {TokenType.EQUALS, TokenType.CONCAT}:
                    value = self.read_braced_string()
                    self._emit(tokens, Token(TokenType.STRING, value, line, column))
                else:
                    self.advance()
                    self._emit(tokens, Token(TokenType.LBRACE, "{", line, column))

            elif char in single:
                self.advance()
                self._emit(tokens, Token(single[char], char, line, column))

            elif char == '"':
                value = self.read_quoted_string()
                self._emit(tokens, Token(TokenType.STRING, value, line, column))

            elif char.isalnum() or char == "_":
                identifier = self.read_identifier()
                kind = TokenType.NUMBER if identifier.isdigit() else TokenType.IDENTIFIER
                self._emit(tokens, Token(kind, identifier, line, column))

            else:
                self.advance()
                self._emit(tokens, Token(TokenType.IDENTIFIER, char, line, column))

        tokens.append(Token(TokenType.EOF, "", self.line, self.column))
        return tokens


class BibtexParser:
    """BibTeX parser with error recovery."""

    def __init__(self):
        self.tokens: list[Token] = []
        self.pos = 0
        self.entries: list[RawEntry] = []
        self.errors: list[ParseDiagnostic] = []
        self.string_defs: dict[str, str] = {}

    def current_token(self) -> Token:
        if self.pos >= len(self.tokens):
            return self.tokens[-1]  # EOF
        return self.tokens[self.pos]

    def advance(self) -> Token:
        token = self.current_token()
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        return token

    def error(self, message: str, severity: str = "error", recover: bool = True):
        """Record a diagnostic, skipping to the next entry on errors."""
        token = self.current_token()
        self.errors.append(ParseDiagnostic(message, token.line, token.column, severity))

        if recover and severity == "error":
            self.recover()

    def recover(self):
        """Recover from a parse error by finding the next entry."""
        depth = 0
        while self.current_token().type != TokenType.EOF:
            token = self.current_token()

            if token.type in {TokenType.LBRACE, TokenType.LPAREN}:
                depth += 1
            elif token.type in {TokenType.RBRACE, TokenType.RPAREN}:
                depth -= 1
                if depth <= 0:
                    self.advance()
                    break
            elif token.type == TokenType.AT and depth <= 0:
                break

            self.advance()

    def parse(self, text: str) -> list[RawEntry]:
        """Parse BibTeX text into raw entries, in source order."""
        self.entries = []
        self.errors = []
        self.string_defs = dict(MONTH_MACROS)

        self.tokens = BibtexLexer(text).tokenize()
        self.pos = 0

        while self.current_token().type != TokenType.EOF:
            if self.current_token().type == TokenType.AT:
                self.advance()
                self.parse_at_command()
            else:
                self.advance()

        return self.entries

    def parse_at_command(self):
        """Parse @ command (entry, string, comment, preamble)."""
        token = self.current_token()

        match token.type:
            case TokenType.ENTRY_TYPE:
                self.parse_entry()
            case TokenType.STRING_DEF:
                self.parse_string_def()
            case TokenType.COMMENT | TokenType.PREAMBLE:
                self.advance()
                self.skip_block()
            case _:
                self.error(f"Unexpected token after @: {token.type.name}")

    def _open_block(self) -> TokenType | None:
        delimiter = self.current_token()
        if delimiter.type not in {TokenType.LBRACE, TokenType.LPAREN}:
            return None
        self.advance()
        return TokenType.RBRACE if delimiter.type == TokenType.LBRACE else TokenType.RPAREN

    def parse_entry(self):
        """Parse a bibliography entry."""
        entry_type = self.advance().value.lower()

        closing = self._open_block()
        if closing is None:
            self.error(f"Expected {{ or ( after @{entry_type}")
            return

        if self.current_token().type not in {TokenType.IDENTIFIER, TokenType.NUMBER}:
            self.error("Expected citation key")
            return
        key = self.advance().value

        if self.current_token().type == TokenType.COMMA:
            self.advance()
        elif self.current_token().type != closing:
            self.error("Expected comma after citation key", severity="warning")

        fields = self.parse_fields(closing)
        if fields is None:
            return

        self.entries.append(RawEntry(key=key, entry_type=entry_type, fields=fields))

    def parse_fields(self, closing: TokenType) -> dict[str, str] | None:
        """Parse entry fields up to the closing delimiter."""
        fields: dict[str, str] = {}

        while True:
            token = self.current_token()

            if token.type == closing:
                self.advance()
                return fields
            if token.type == TokenType.EOF:
                self.error("Unexpected end of file in entry")
                return None
            if token.type == TokenType.COMMA:
                self.advance()
                continue
            if token.type != TokenType.IDENTIFIER:
                self.error(f"Expected field name, got {token.type.name}")
                return None

            field_name = self.advance().value.lower()

            if self.current_token().type != TokenType.EQUALS:
                self.error(f"Expected = after field name '{field_name}'")
                return None
            self.advance()

            value = self.parse_field_value()
            if value is not None:
                fields[field_name] = value

            if self.current_token().type not in {TokenType.COMMA, closing}:
                self.error("Expected comma or closing delimiter", severity="warning")
                self.advance()

    def parse_field_value(self) -> str | None:
        """Parse a field value with concatenation support."""
        parts = []

        while True:
            token = self.current_token()

            match token.type:
                case TokenType.STRING | TokenType.NUMBER:
                    parts.append(token.value)
                case TokenType.IDENTIFIER:
                    macro = token.value.lower()
                    if macro in self.string_defs:
                        parts.append(self.string_defs[macro])
                    else:
                        self.error(
                            f"Undefined string macro: {token.value}",
                            severity="warning",
                        )
                        parts.append(token.value)
                case _:
                    break
            self.advance()

            if self.current_token().type == TokenType.CONCAT:
                self.advance()
            else:
                break

        if parts:
            return "".join(parts)
        return None

    def parse_string_def(self):
        """Parse an @string definition."""
        self.advance()  # Skip 'string'

        closing = self._open_block()
        if closing is None:
            self.error("Expected { or ( after @string")
            return

        if self.current_token().type != TokenType.IDENTIFIER:
            self.error("Expected string name")
            return
        name = self.advance().value.lower()

        if self.current_token().type != TokenType.EQUALS:
            self.error("Expected = after string name")
            return
        self.advance()

        value = self.parse_field_value()
        if value is not None:
            self.string_defs[name] = value

        if self.current_token().type == closing:
            self.advance()

    def skip_block(self):
        """Skip a @comment or @preamble block."""
        opening = self.current_token().type
        closing = self._open_block()
        if closing is None:
            return

        depth = 1
        while self.current_token().type != TokenType.EOF and depth > 0:
            if self.current_token().type == opening:
                depth += 1
            elif self.current_token().type == closing:
                depth -= 1
            self.advance()


def clean_text(value: str) -> str:
    """Collapse whitespace and drop protective braces from a display value."""
    text = strip_braces(value).replace("\\&", "&")
    return " ".join(text.split())


def split_date(value: str) -> tuple[str, str | None]:
    """Split ``YYYY[-MM[-DD]]`` into year and optional month."""
    pieces = value.strip().split("-")
    year = pieces[0] or NOT_AVAILABLE
    month = pieces[1] if len(pieces) > 1 and pieces[1] else None
    return year, month


def _bibtex_date(key: str, fields: dict[str, str]) -> tuple[str, str]:
    month = clean_text(fields["month"]) if "month" in fields else NOT_AVAILABLE

    if "date" in fields:
        year, date_month = split_date(clean_text(fields["date"]))
        logger.debug("Entry %s: date field gives year=%r month=%r", key, year, date_month)
        return year, date_month or month

    year = clean_text(fields["year"]) if "year" in fields else NOT_AVAILABLE
    return year, month


def bibtex_entry_to_item(entry: RawEntry) -> BibItem:
    """Map BibTeX fields onto a bibliography item."""
    fields = entry.fields
    key = entry.key

    def opt(*names: str) -> str | None:
        for name in names:
            if fields.get(name):
                return clean_text(fields[name])
        return None

    if "title" not in fields:
        logger.warning("Entry %s: missing title field, using '%s'", key, DEFAULT_TITLE)
    if "author" not in fields:
        logger.debug("Entry %s: missing author field", key)

    pub_year, pub_month = _bibtex_date(key, fields)
    editors = parse_name_list(fields.get("editor"))

    return BibItem(
        citation_key=key,
        title=opt("title") or DEFAULT_TITLE,
        authors=parse_name_list(fields.get("author")),
        pub_month=pub_month,
        pub_year=pub_year,
        summary=opt("abstract") or NOT_AVAILABLE,
        url=opt("url"),
        entry_type=entry.entry_type,
        doi=opt("doi"),
        pages=opt("pages"),
        volume=opt("volume"),
        issue=opt("number", "issue"),
        publisher=opt("publisher"),
        address=opt("address", "location"),
        isbn=opt("isbn"),
        issn=opt("issn"),
        editor=editors or None,
        edition=opt("edition"),
        note=opt("note"),
        organization=opt("organization", "institution"),
    )


def parse_bibtex(text: str) -> dict[str, BibItem]:
    """Parse BibTeX/BibLaTeX text.

    Malformed entries are skipped with a warning. Duplicate keys keep the
    last entry.

    Raises:
        BibliographyParseError: If the text is non-empty but no entry
            could be parsed because of errors
    """
    parser = BibtexParser()
    entries = parser.parse(text)

    for diagnostic in parser.errors:
        logger.warning("BibTeX %s: %s", diagnostic.severity, diagnostic)

    fatal = [d for d in parser.errors if d.severity == "error"]
    if not entries and fatal:
        first = fatal[0]
        raise BibliographyParseError(first.message, first.line, first.column)

    items: dict[str, BibItem] = {}
    for entry in entries:
        if entry.key in items:
            logger.warning("Duplicate citation key '%s', keeping the last entry", entry.key)
            del items[entry.key]
        items[entry.key] = bibtex_entry_to_item(entry)

    logger.info("%d bibliography items read", len(items))
    return items


def _yaml_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, dict):
        # Formattable strings may be given as {value: ..., short: ...}
        value = value.get("value")
        if value is None:
            return None
    return " ".join(str(value).split())


def _yaml_person(value: Any) -> list[str]:
    if isinstance(value, dict):
        parts = [
            str(value.get("name", "")),
            str(value.get("given-name", "")),
            str(value.get("prefix", "")),
            str(value.get("suffix", "")),
        ]
        while len(parts) > 1 and not parts[-1]:
            parts.pop()
        return parts

    names = parse_name_list(str(value))
    return names[0] if names else []


def _yaml_people(value: Any) -> list[list[str]]:
    if value is None:
        return []
    people = value if isinstance(value, list) else [value]
    return [parts for parts in (_yaml_person(p) for p in people) if parts]


def yaml_entry_to_item(key: str, entry: dict[str, Any]) -> BibItem:
    """Map a hayagriva-style YAML entry onto a bibliography item."""
    parent = entry.get("parent") or {}
    if isinstance(parent, list):
        parent = parent[0] if parent else {}

    def opt(name: str) -> str | None:
        value = _yaml_str(entry.get(name))
        if value is None and isinstance(parent, dict):
            value = _yaml_str(parent.get(name))
        return value

    title = _yaml_str(entry.get("title"))
    if title is None:
        logger.warning("Entry %s: missing title field, using '%s'", key, DEFAULT_TITLE)

    pub_year, pub_month = NOT_AVAILABLE, NOT_AVAILABLE
    date = _yaml_str(entry.get("date"))
    if date:
        pub_year, month = split_date(date)
        pub_month = month or NOT_AVAILABLE

    editors = _yaml_people(entry.get("editor"))
    serial = entry.get("serial-number")
    doi = serial.get("doi") if isinstance(serial, dict) else None
    isbn = serial.get("isbn") if isinstance(serial, dict) else None
    issn = serial.get("issn") if isinstance(serial, dict) else None

    return BibItem(
        citation_key=key,
        title=title or DEFAULT_TITLE,
        authors=_yaml_people(entry.get("author")),
        pub_month=pub_month,
        pub_year=pub_year,
        summary=_yaml_str(entry.get("abstract")) or NOT_AVAILABLE,
        url=_yaml_str(entry.get("url")),
        entry_type=_yaml_str(entry.get("type")),
        doi=opt("doi") or _yaml_str(doi),
        pages=opt("page-range"),
        volume=opt("volume"),
        issue=opt("issue"),
        publisher=opt("publisher"),
        address=opt("location"),
        isbn=opt("isbn") or _yaml_str(isbn),
        issn=opt("issn") or _yaml_str(issn),
        editor=editors or None,
        edition=opt("edition"),
        note=_yaml_str(entry.get("note")),
        organization=opt("organization"),
    )


def parse_yaml(text: str) -> dict[str, BibItem]:
    """Parse a hayagriva-style YAML bibliography.

    Raises:
        BibliographyParseError: If the YAML is invalid or not a mapping of entries
    """
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line = mark.line + 1 if mark else 0
        column = mark.column + 1 if mark else 0
        raise BibliographyParseError(f"Invalid YAML bibliography: {e}", line, column) from e

    if not isinstance(data, dict):
        raise BibliographyParseError("YAML bibliography must be a mapping of entries")

    items: dict[str, BibItem] = {}
    for key, entry in data.items():
        if not isinstance(entry, dict):
            logger.warning("Skipping YAML entry '%s': expected a mapping", key)
            continue
        items[str(key)] = yaml_entry_to_item(str(key), entry)

    logger.info("%d bibliography items read", len(items))
    return items


def parse_bibliography(text: str, fmt: BibFormat = BibFormat.BIBTEX) -> dict[str, BibItem]:
    """Parse raw bibliography text in the given format."""
    match fmt:
        case BibFormat.YAML:
            return parse_yaml(text)
        case _:
            return parse_bibtex(text)
