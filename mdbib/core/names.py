"""Author name splitting according to BibTeX rules."""

import re
from dataclasses import dataclass

_AND_SPLIT = re.compile(r"\s+and\s+")


@dataclass
class ParsedName:
    """Parsed name components."""

    first: list[str]
    von: list[str]
    last: list[str]
    jr: list[str]

    def is_empty(self) -> bool:
        """Check if name is empty."""
        return not any([self.first, self.von, self.last, self.jr])

    def to_parts(self) -> list[str]:
        """
        Convert to the ordered name-part list used by bibliography items.

        The list is ``[family, given, prefix, suffix]``; trailing empty
        prefix/suffix entries are dropped, so a plain ``"Klabnik, Steve"``
        becomes ``["Klabnik", "Steve"]``.
        """
        if self.is_empty():
            return []

        parts = [
            " ".join(self.last),
            " ".join(self.first),
            " ".join(self.von),
            " ".join(self.jr),
        ]
        while len(parts) > 1 and not parts[-1]:
            parts.pop()
        return parts


class NameParser:
    """Parse author names according to BibTeX rules."""

    @staticmethod
    def parse(name: str) -> ParsedName:
        """
        Parse name according to BibTeX's three formats.

        Format determined by comma count:
        - 0 commas: "First von Last"
        - 1 comma: "von Last, First"
        - 2 commas: "von Last, Jr, First"
        """
        name = name.strip()
        if not name:
            return ParsedName([], [], [], [])

        parts = [p.strip() for p in name.split(",", 2)]

        match len(parts):
            case 1:
                return NameParser._parse_first_von_last(name)
            case 2:
                von, last = NameParser._split_von_last(parts[0])
                return ParsedName(NameParser._tokenize(parts[1]), von, last, [])
            case _:
                von, last = NameParser._split_von_last(parts[0])
                return ParsedName(
                    NameParser._tokenize(parts[2]),
                    von,
                    last,
                    NameParser._tokenize(parts[1]),
                )

    @staticmethod
    def split_names(field: str) -> list[str]:
        """Split a BibTeX name list on ``and``, ignoring escaped ampersands."""
        temp = field.replace("\n", " ").replace(r"\&", "\x00")
        return [
            n.replace("\x00", "&").strip() for n in _AND_SPLIT.split(temp) if n.strip()
        ]

    @staticmethod
    def _tokenize(name: str) -> list[str]:
        """Split name into tokens, preserving braced groups."""
        tokens = []
        current: list[str] = []
        brace_level = 0

        for char in name:
            if char == "{":
                brace_level += 1
            elif char == "}":
                brace_level -= 1
            elif char in " \t\n~" and brace_level == 0:
                if current:
                    tokens.append("".join(current))
                    current = []
                continue
            current.append(char)

        if current:
            tokens.append("".join(current))
        return tokens

    @staticmethod
    def _starts_with_lowercase(word: str) -> bool:
        """
        Check if word starts with lowercase letter.

        Braced words are never considered lowercase, so ``{van} Gogh``
        keeps ``van`` in the last name.
        """
        if word.startswith("{") and word.endswith("}"):
            return False

        for char in word:
            if char.isalpha():
                return char.islower()
        return False

    @staticmethod
    def _split_von_last(von_last: str) -> tuple[list[str], list[str]]:
        """Split a 'von Last' fragment; Last keeps at least one token."""
        tokens = NameParser._tokenize(von_last)
        von_end = -1
        for i in range(len(tokens) - 1):
            if NameParser._starts_with_lowercase(tokens[i]):
                von_end = i
        return tokens[: von_end + 1], tokens[von_end + 1 :]

    @staticmethod
    def _parse_first_von_last(name: str) -> ParsedName:
        """Parse 'First von Last' format."""
        tokens = NameParser._tokenize(name)

        if len(tokens) <= 1:
            return ParsedName([], [], tokens, [])

        von_start = None
        von_end = None
        for i in range(len(tokens) - 1):
            if NameParser._starts_with_lowercase(tokens[i]):
                if von_start is None:
                    von_start = i
                von_end = i
            elif von_start is not None:
                break

        if von_start is not None and von_end is not None:
            return ParsedName(
                tokens[:von_start],
                tokens[von_start : von_end + 1],
                tokens[von_end + 1 :],
                [],
            )
        return ParsedName(tokens[:-1], [], tokens[-1:], [])


def parse_name_list(field: str | None) -> list[list[str]]:
    """Parse a BibTeX author/editor field into name-part lists."""
    if not field:
        return []
    parsed = (NameParser.parse(name) for name in NameParser.split_names(field))
    return [
        [strip_braces(part) for part in name.to_parts()]
        for name in parsed
        if not name.is_empty()
    ]


def strip_braces(text: str) -> str:
    """Remove BibTeX protective braces from a name part."""
    return text.replace("{", "").replace("}", "")
