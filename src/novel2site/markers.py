"""Reference-marker and asset-token lexer."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

LOG = logging.getLogger("novel2site")

TAG_LETTER = "F"

# [3], [3F], 3F and the Word artifact 3F3F; rId7 for embedded assets.
TOKEN_RE = re.compile(
    r"\[(?P<bracketed>\d+)F?\]"
    r"|(?<!\d)(?P<bare>\d+)F(?:(?P=bare)F)*(?![0-9A-Za-z])"
    r"|(?<![\w])(?P<asset>rId\d+)(?![\w])"
)
DUPLICATE_MARKER_RE = re.compile(r"(?<!\d)(\d+)F(?:\1F)+(?![0-9A-Za-z])")
MARKER_BODY_RE = re.compile(r"\d+F?")
WHITESPACE_RE = re.compile(r"\s+")


class TokenKind(Enum):
    TEXT = "text"
    REFERENCE = "reference"
    ASSET = "asset"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    raw: str
    value: str = ""


@dataclass
class ReferenceReport:
    """Collects resolution outcomes across one pipeline run.

    Unresolved numerals are logged once per distinct numeral, the first time
    they are looked up; later occurrences only bump the counter.
    """

    resolved: int = 0
    unresolved: Dict[str, int] = field(default_factory=dict)
    failed_sections: List[str] = field(default_factory=list)

    def lookup(self, numeral: str, footnotes: Mapping[str, str]) -> Tuple[str, bool]:
        annotation = footnotes.get(numeral)
        if annotation:
            self.resolved += 1
            return annotation, True
        if numeral not in self.unresolved:
            LOG.warning("Missing translation for reference %s", numeral)
            self.unresolved[numeral] = 0
        self.unresolved[numeral] += 1
        return missing_annotation(numeral), False


def canonical_numeral(value: str) -> str:
    return str(int(value))


def marker_label(numeral: str) -> str:
    return f"{numeral}{TAG_LETTER}"


def marker_token(numeral: str) -> str:
    """Canonical in-text token every reference form is normalized to."""
    return f"[{marker_label(canonical_numeral(numeral))}]"


def missing_annotation(numeral: str) -> str:
    return f"translation missing for {numeral}"


def is_marker_text(content: str) -> bool:
    return MARKER_BODY_RE.fullmatch(content.strip()) is not None


def collapse_duplicate_markers(text: str) -> str:
    return DUPLICATE_MARKER_RE.sub(r"\1F", text)


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    for match in TOKEN_RE.finditer(text):
        if match.start() > pos:
            tokens.append(Token(TokenKind.TEXT, text[pos : match.start()]))
        asset = match.group("asset")
        if asset:
            tokens.append(Token(TokenKind.ASSET, match.group(0), asset))
        else:
            numeral = canonical_numeral(match.group("bracketed") or match.group("bare"))
            tokens.append(Token(TokenKind.REFERENCE, match.group(0), numeral))
        pos = match.end()
    if pos < len(text):
        tokens.append(Token(TokenKind.TEXT, text[pos:]))
    return tokens


def has_special_tokens(tokens: List[Token]) -> bool:
    return any(token.kind is not TokenKind.TEXT for token in tokens)


def strip_markers(text: str) -> str:
    """Plain text with reference markers removed, used for titles."""
    kept = [token.raw for token in tokenize(text) if token.kind is not TokenKind.REFERENCE]
    return WHITESPACE_RE.sub(" ", "".join(kept)).strip()


def substitute_plain_text(
    text: str,
    footnotes: Mapping[str, str],
    report: Optional[ReferenceReport] = None,
) -> str:
    """Marker substitution for attribute values, which cannot carry markup."""
    report = report if report is not None else ReferenceReport()
    parts: List[str] = []
    for token in tokenize(text):
        if token.kind is TokenKind.REFERENCE:
            annotation, _ = report.lookup(token.value, footnotes)
            parts.append(f"{marker_label(token.value)} ({annotation})")
        else:
            parts.append(token.raw)
    return "".join(parts)
