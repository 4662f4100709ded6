"""
Tree-structured JSON parser used to read Spotify responses.

The parser copies every label and scalar value into the arena it is given, so a
parsed tree is only readable until that arena is cleared. Values are kept as
raw text: numbers are decoded on demand by `get_number`, strings by
`get_string`.

Known looseness: string literals may span several lines, and anything after
the top-level value is ignored.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple, Optional, Tuple, Union

from .arena import Arena


logger = logging.getLogger(__name__)


_SPACES = frozenset(b" \t\n\r\v")
_SEPARATORS = _SPACES | frozenset(b",[]{}:")
_DIGITS = frozenset(b"0123456789")
_HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")

_QUOTE = ord('"')
_BACKSLASH = ord("\\")
_MINUS = ord("-")
_PLUS = ord("+")
_DOT = ord(".")
_ZERO = ord("0")
_EXPONENT = frozenset(b"eE")

_REPLACEMENT = "\ufffd"
_ESCAPES = {
    ord('"'): '"',
    ord("\\"): "\\",
    ord("/"): "/",
    ord("b"): "\b",
    ord("f"): "\f",
    ord("n"): "\n",
    ord("r"): "\r",
    ord("t"): "\t",
}


class JsonTag(Enum):
    INVALID = "invalid"
    ARRAY = "array"
    OBJECT = "object"
    NUMBER = "number"
    STRING = "string"
    TRUE = "true"
    FALSE = "false"
    NULL = "null"


@dataclass(frozen=True, eq=False)
class JsonElement:
    """
    One node of a parsed document.

    `label` is set for members of an object. `value` holds the raw text of a
    number or string. `children` is only meaningful for arrays and objects.
    """

    tag: JsonTag = JsonTag.INVALID
    label: Optional[memoryview] = None
    value: Optional[memoryview] = None
    children: Tuple["JsonElement", ...] = ()

    @property
    def is_valid(self) -> bool:
        return self.tag is not JsonTag.INVALID


MISSING = JsonElement()


class TokenType(Enum):
    INVALID = "invalid"
    END = "end"
    OPEN_BRACE = "{"
    CLOSE_BRACE = "}"
    OPEN_BRACKET = "["
    CLOSE_BRACKET = "]"
    COLON = ":"
    COMMA = ","
    STRING = "string"
    TRUE = "true"
    FALSE = "false"
    NULL = "null"
    NUMBER = "number"


class Token(NamedTuple):
    type: TokenType
    start: int
    end: int


_PUNCTUATION = {
    ord("{"): TokenType.OPEN_BRACE,
    ord("}"): TokenType.CLOSE_BRACE,
    ord("["): TokenType.OPEN_BRACKET,
    ord("]"): TokenType.CLOSE_BRACKET,
    ord(":"): TokenType.COLON,
    ord(","): TokenType.COMMA,
}

_KEYWORDS = {
    ord("t"): (b"true", TokenType.TRUE),
    ord("f"): (b"false", TokenType.FALSE),
    ord("n"): (b"null", TokenType.NULL),
}


class Cursor:
    """Read position over the document text; a NUL byte also ends the input."""

    def __init__(self, text: bytes) -> None:
        self.text = text
        self.offset = 0
        self.error_occurred = False

    def at_end(self) -> bool:
        return self.offset >= len(self.text) or self.text[self.offset] == 0

    def peek(self) -> int:
        if self.offset >= len(self.text):
            return 0
        return self.text[self.offset]

    def error(self, message: str) -> None:
        # only the first error of a document is reported
        if not self.error_occurred:
            logger.error("JSON error: %s (offset %d)", message, self.offset)
        self.error_occurred = True

    def skip_spaces(self) -> None:
        while not self.at_end() and self.peek() in _SPACES:
            self.offset += 1

    def _scan_string(self) -> TokenType:
        self.offset += 1
        while not self.at_end() and self.peek() != _QUOTE:
            self.offset += 2 if self.peek() == _BACKSLASH else 1
        if not self.at_end() and self.peek() == _QUOTE:
            self.offset += 1
            return TokenType.STRING
        return TokenType.INVALID

    def _scan_keyword(self, keyword: bytes) -> bool:
        start = self.offset
        while not self.at_end() and self.peek() not in _SEPARATORS:
            self.offset += 1
        return self.text[start:self.offset] == keyword

    def _scan_digits(self) -> bool:
        if self.peek() not in _DIGITS:
            return False
        while self.peek() in _DIGITS:
            self.offset += 1
        return True

    def _scan_number(self) -> bool:
        if self.peek() == _MINUS:
            self.offset += 1
        if not self._scan_digits():
            return False
        if self.peek() == _DOT:
            self.offset += 1
            if not self._scan_digits():
                return False
        if self.peek() in _EXPONENT:
            self.offset += 1
            if self.peek() in (_PLUS, _MINUS):
                self.offset += 1
            if not self._scan_digits():
                return False
        return self.at_end() or self.peek() in _SEPARATORS

    def next_token(self) -> Token:
        self.skip_spaces()
        if self.at_end():
            return Token(TokenType.END, self.offset, self.offset)

        start = self.offset
        ch = self.peek()
        if ch in _PUNCTUATION:
            token_type = _PUNCTUATION[ch]
            self.offset += 1
        elif ch == _QUOTE:
            token_type = self._scan_string()
        elif ch in _KEYWORDS:
            keyword, keyword_type = _KEYWORDS[ch]
            token_type = keyword_type if self._scan_keyword(keyword) else TokenType.INVALID
        elif ch == _MINUS or ch in _DIGITS:
            token_type = TokenType.NUMBER if self._scan_number() else TokenType.INVALID
        else:
            token_type = TokenType.INVALID

        if self.offset == start:
            token_type = TokenType.INVALID
            self.offset += 1
        return Token(token_type, start, self.offset)


class _Parser:
    def __init__(self, arena: Arena, text: bytes) -> None:
        self.arena = arena
        self.cursor = Cursor(text)

    def _copy(self, start: int, end: int) -> memoryview:
        return self.arena.push_bytes(self.cursor.text[start:end])

    def parse_value(self, token: Token, label: Optional[memoryview]) -> JsonElement:
        if token.type is TokenType.NUMBER:
            return JsonElement(JsonTag.NUMBER, label, self._copy(token.start, token.end))
        if token.type is TokenType.STRING:
            return JsonElement(JsonTag.STRING, label, self._copy(token.start + 1, token.end - 1))
        if token.type is TokenType.TRUE:
            return JsonElement(JsonTag.TRUE, label)
        if token.type is TokenType.FALSE:
            return JsonElement(JsonTag.FALSE, label)
        if token.type is TokenType.NULL:
            return JsonElement(JsonTag.NULL, label)
        if token.type is TokenType.OPEN_BRACE:
            return self.parse_list(JsonTag.OBJECT, label)
        if token.type is TokenType.OPEN_BRACKET:
            return self.parse_list(JsonTag.ARRAY, label)
        self.cursor.error("invalid element value")
        return JsonElement(JsonTag.INVALID, label)

    def parse_list(self, tag: JsonTag, label: Optional[memoryview]) -> JsonElement:
        cursor = self.cursor
        closing = TokenType.CLOSE_BRACE if tag is JsonTag.OBJECT else TokenType.CLOSE_BRACKET

        token = cursor.next_token()
        if token.type is closing:
            return JsonElement(tag, label)

        children = []
        separator: Optional[Token] = None
        while not cursor.at_end():
            child_label = None
            if tag is JsonTag.OBJECT:
                label_token = token
                colon_token = cursor.next_token()
                if label_token.type is not TokenType.STRING:
                    cursor.error("expected string as label")
                elif colon_token.type is not TokenType.COLON:
                    cursor.error("expected colon after label")
                child_label = self._copy(label_token.start + 1, max(label_token.start + 1, label_token.end - 1))
                token = cursor.next_token()

            children.append(self.parse_value(token, child_label))

            separator = cursor.next_token()
            if separator.type is not TokenType.COMMA and separator.type is not closing:
                cursor.error("expected a comma")
            if separator.type is closing:
                break
            token = cursor.next_token()

        if separator is None or separator.type is not closing:
            cursor.error("list was not closed")
        return JsonElement(tag, label, children=tuple(children))


def parse_json(arena: Arena, text: Union[bytes, bytearray, memoryview]) -> JsonElement:
    """
    Parse a whole document whose top-level value is an object or an array.

    Never raises on malformed input: the first problem is logged and the best
    effort tree is returned. Callers must check the tag of what they read.
    """
    parser = _Parser(arena, bytes(text))
    token = parser.cursor.next_token()
    if token.type is not TokenType.OPEN_BRACE and token.type is not TokenType.OPEN_BRACKET:
        parser.cursor.error("expected opening list")
        return JsonElement(JsonTag.INVALID)
    return parser.parse_value(token, None)


def get_element(element: JsonElement, label: Union[str, bytes]) -> JsonElement:
    """Return the member of an object called `label`, or an invalid element."""
    if element.tag is not JsonTag.OBJECT:
        return MISSING
    key = label.encode("utf-8") if isinstance(label, str) else label
    for child in element.children:
        if child.label is not None and child.label == key:
            return child
    return MISSING


def get_array_count(element: JsonElement) -> int:
    if element.tag is not JsonTag.ARRAY:
        return 0
    return sum(1 for _ in element.children)


def _take_power(base: float, exponent: int) -> float:
    if base == 0:
        return 0.0
    negative = exponent < 0
    exponent = abs(exponent)
    # a * base**exponent stays constant through the loop
    a = 1.0
    while exponent > 0:
        if exponent % 2 == 0:
            base = base * base
            exponent //= 2
        else:
            a = a / base if negative else a * base
            exponent -= 1
    return a


def get_number(element: JsonElement) -> float:
    """
    Decode a number element; anything else reads as 0.0.

    The digits are accumulated in floating point and the exponent is applied
    by repeated squaring, so the result can differ from `float()` in the last
    bits for long mantissas or large exponents.
    """
    if element.tag is not JsonTag.NUMBER or element.value is None:
        return 0.0
    data = element.value.tobytes()
    count = len(data)
    if not count:
        return 0.0

    offset = 0
    last = data[0]
    sign = 1.0
    if last == _MINUS:
        sign = -1.0
        offset += 1

    integer_part = 0.0
    while offset < count:
        last = data[offset]
        offset += 1
        if last not in _DIGITS:
            break
        integer_part = (last - _ZERO) + 10 * integer_part

    decimal_part = 0.0
    if last == _DOT:
        weight = 1.0
        while offset < count:
            last = data[offset]
            offset += 1
            if last not in _DIGITS:
                break
            weight *= 0.1
            decimal_part += weight * (last - _ZERO)

    exponent = 0
    exponent_sign = 1
    if last in _EXPONENT:
        if offset < count and data[offset] in (_PLUS, _MINUS):
            if data[offset] == _MINUS:
                exponent_sign = -1
            offset += 1
        while offset < count:
            last = data[offset]
            offset += 1
            if last not in _DIGITS:
                break
            exponent = (last - _ZERO) + 10 * exponent

    result = integer_part + decimal_part
    result *= _take_power(10.0, exponent * exponent_sign)
    return result * sign


def get_count(element: JsonElement) -> Optional[int]:
    """Non-negative whole number of a number element; None when absent, negative or not finite."""
    if element.tag is not JsonTag.NUMBER:
        return None
    value = get_number(element)
    if not math.isfinite(value) or value < 0:
        return None
    return int(value)


def _read_hex4(raw: bytes, index: int) -> Optional[int]:
    digits = raw[index:index + 4]
    if len(digits) != 4 or any(d not in _HEX_DIGITS for d in digits):
        return None
    return int(digits, 16)


def get_string(element: JsonElement) -> Optional[str]:
    """Decode a string element, resolving escape sequences; None for anything else."""
    if element.tag is not JsonTag.STRING or element.value is None:
        return None
    raw = element.value.tobytes()
    if _BACKSLASH not in raw:
        return raw.decode("utf-8", errors="replace")

    pieces = []
    start = index = 0
    while index < len(raw):
        if raw[index] != _BACKSLASH:
            index += 1
            continue
        pieces.append(raw[start:index].decode("utf-8", errors="replace"))
        code = raw[index + 1] if index + 1 < len(raw) else None
        if code == ord("u"):
            point = _read_hex4(raw, index + 2)
            index += 6 if point is not None else 2
            if point is None:
                pieces.append(_REPLACEMENT)
            elif 0xD800 <= point < 0xDC00:
                low = _read_hex4(raw, index + 2) if raw[index:index + 2] == b"\\u" else None
                if low is not None and 0xDC00 <= low < 0xE000:
                    pieces.append(chr(0x10000 + ((point - 0xD800) << 10) + (low - 0xDC00)))
                    index += 6
                else:
                    pieces.append(_REPLACEMENT)
            elif 0xDC00 <= point < 0xE000:
                pieces.append(_REPLACEMENT)
            else:
                pieces.append(chr(point))
        elif code in _ESCAPES:
            pieces.append(_ESCAPES[code])
            index += 2
        else:
            pieces.append(raw[index:index + 2].decode("utf-8", errors="replace"))
            index += 2
        start = index
    pieces.append(raw[start:].decode("utf-8", errors="replace"))
    return "".join(pieces)


def to_python(element: JsonElement) -> Any:
    """Convert a parsed tree into plain dicts, lists and scalars."""
    if element.tag is JsonTag.OBJECT:
        return {
            (child.label.tobytes().decode("utf-8", errors="replace") if child.label is not None else ""): to_python(child)
            for child in element.children
        }
    if element.tag is JsonTag.ARRAY:
        return [to_python(child) for child in element.children]
    if element.tag is JsonTag.NUMBER:
        return get_number(element)
    if element.tag is JsonTag.STRING:
        return get_string(element)
    if element.tag is JsonTag.TRUE:
        return True
    if element.tag is JsonTag.FALSE:
        return False
    return None
