"""Lenient recursive-descent decoder for cloud service responses.

The accepted language is a superset of the JSON subset the cloud service
produces:

* strings may be quoted with ``"`` or ``'``; ``\\xXX`` escapes are allowed,
* arrays may be written with ``[]`` or ``()`` and decode to dicts keyed by
  element index,
* unquoted tokens are read as booleans, ``null``, numbers (hex ``0x``,
  octal on a leading ``0``, then decimal) or, failing all of those, as
  plain strings.

Containers may nest up to ``MAX_DEPTH`` levels. A decode either returns a
complete value or raises :class:`DecodeError`.
"""

from __future__ import annotations

from typing import Any

from dacloud.core.errors import DecodeError, DecodeErrorKind

KEY_PROPERTIES = "properties"

_DELIMITERS = ',:)]}/\\"[{;=#'
_SIMPLE_ESCAPES = {"b": "\b", "t": "\t", "n": "\n", "f": "\f", "r": "\r"}
_NUMBER_START = "0123456789.-+"
MAX_DEPTH = 128


class _Tokenizer:
    """Cursor over an immutable input string, shared by nested parsers."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0
        self.depth = 0

    def syntax_error(self, message: str) -> DecodeError:
        return DecodeError(DecodeErrorKind.BAD_DATA, f"{message} at character {self.pos}")

    def more(self) -> bool:
        return self.pos < len(self.text)

    def next(self) -> str:
        """Consume one character; returns an empty string at the end of input."""
        if not self.more():
            return ""
        c = self.text[self.pos]
        self.pos += 1
        return c

    def next_n(self, n: int) -> str:
        end = self.pos + n
        if end > len(self.text):
            raise self.syntax_error("Substring bounds error")
        chunk = self.text[self.pos : end]
        self.pos = end
        return chunk

    def next_clean(self) -> str:
        while True:
            c = self.next()
            if c == "" or not c.isspace():
                return c

    def back(self) -> None:
        if self.pos > 0:
            self.pos -= 1

    def next_string(self, quote: str) -> str:
        chars: list[str] = []
        while True:
            c = self.next()
            if c == "" or c < " ":
                raise self.syntax_error("Unterminated string")
            if c == "\\":
                chars.append(self._next_escaped())
            elif c == quote:
                return "".join(chars)
            else:
                chars.append(c)

    def _next_escaped(self) -> str:
        c = self.next()
        if c in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[c]
        if c in ("u", "x"):
            digits = self.next_n(4 if c == "u" else 2)
            try:
                return chr(int(digits, 16))
            except ValueError:
                raise self.syntax_error(f"Illegal escape '\\{c}{digits}'") from None
        if c == "":
            raise self.syntax_error("Unterminated string")
        return c

    def _next_container(self, opening: str) -> dict[Any, Any]:
        if self.depth >= MAX_DEPTH:
            raise self.syntax_error("Nesting too deep")
        self.depth += 1
        try:
            parser = _Parser(self)
            return parser.read_object() if opening == "{" else parser.read_array()
        finally:
            self.depth -= 1

    def next_value(self) -> Any:
        c = self.next_clean()
        if c in ('"', "'"):
            return self.next_string(c)
        if c in ("{", "[", "("):
            self.back()
            return self._next_container(c)

        chars: list[str] = []
        while c != "" and c >= " " and c not in _DELIMITERS:
            chars.append(c)
            c = self.next()
        if c != "":
            self.back()

        token = "".join(chars).strip()
        if not token:
            raise self.syntax_error("Missing value")
        return _resolve_token(token)


def _resolve_token(token: str) -> Any:
    lowered = token.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered == "null":
        return None

    if token[0] in _NUMBER_START and "_" not in token:
        return _parse_number(token)
    return token


def _parse_number(token: str) -> Any:
    if token[0] == "0" and len(token) > 2 and token[1] in "xX":
        try:
            return int(token[2:], 16)
        except ValueError:
            pass
    elif token[0] == "0":
        try:
            return int(token, 8)
        except ValueError:
            pass

    try:
        return int(token)
    except ValueError:
        pass
    try:
        return float(token)
    except ValueError:
        return token


class _Parser:
    def __init__(self, tokenizer: _Tokenizer) -> None:
        self._tok = tokenizer

    def read_object(self) -> dict[str, Any]:
        tok = self._tok
        tree: dict[str, Any] = {}
        if tok.next_clean() != "{":
            raise tok.syntax_error("A JSON object text must begin with '{'")

        while True:
            c = tok.next_clean()
            if c == "":
                raise tok.syntax_error("A JSON object text must end with '}'")
            if c == "}":
                return tree
            tok.back()
            key = _key_text(tok.next_value())

            if tok.next_clean() != ":":
                raise tok.syntax_error("Expected a ':' after a key")
            tree[key] = tok.next_value()

            c = tok.next_clean()
            if c == ",":
                if tok.next_clean() == "}":
                    return tree
                tok.back()
            elif c == "}":
                return tree
            else:
                raise tok.syntax_error("Expected a ',' or '}'")

    def read_array(self) -> dict[int, Any]:
        tok = self._tok
        items: dict[int, Any] = {}
        opening = tok.next_clean()
        if opening == "[":
            closing = "]"
        elif opening == "(":
            closing = ")"
        else:
            raise tok.syntax_error("A JSON array text must start with '['")

        if tok.next_clean() == closing:
            return items
        tok.back()

        index = 0
        while True:
            if tok.next_clean() == ",":
                tok.back()
                items[index] = None
            else:
                tok.back()
                items[index] = tok.next_value()
            index += 1

            c = tok.next_clean()
            if c == ",":
                if tok.next_clean() == closing:
                    return items
                tok.back()
            elif c in ("]", ")"):
                if c != closing:
                    raise tok.syntax_error(f"Expected a '{closing}'")
                return items
            else:
                raise tok.syntax_error("Expected a ',' or ']'")


def _key_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def decode(text: str) -> dict[str, Any]:
    """Decode a JSON object text into nested dicts."""
    if text is None:
        raise DecodeError(DecodeErrorKind.BAD_DATA, "Attempt to decode empty data.")
    return _Parser(_Tokenizer(text)).read_object()


def decode_properties(text: str | None) -> dict[str, Any] | None:
    """Decode a cloud response body and return its ``properties`` object."""
    if text is None:
        raise DecodeError(DecodeErrorKind.BAD_DATA, "Attempt to decode empty data.")
    trimmed = text.strip()
    if not (trimmed.startswith("{") and trimmed.endswith("}")):
        return None
    decoded = decode(trimmed)
    properties = decoded.get(KEY_PROPERTIES)
    if isinstance(properties, dict):
        return properties
    return None
