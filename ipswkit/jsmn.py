"""Minimal tokenizing JSON scanner.

The scanner does not build values. It splits a JSON text into tokens that
record the type, the span within the text and the number of direct children.
It works in the lenient mode: every unquoted run of printable characters is
a primitive, and a primitive may also end at a colon.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

__all__ = [
    "TokenType",
    "Token",
    "JsmnError",
    "NotEnoughTokensError",
    "InvalidCharacterError",
    "PartialInputError",
    "JsmnParser",
    "tokenize",
]

_NUL = "\0"
_PRIMITIVE_TERMINATORS = frozenset(":\t\r\n ,]}")
_WHITESPACE_AND_SEPARATORS = frozenset("\t\r\n :,")
_ALLOWED_ESCAPES = frozenset('"/\\bfrntu')


class TokenType(enum.IntEnum):
    """Kind of a token."""

    PRIMITIVE = 0
    OBJECT = 1
    ARRAY = 2
    STRING = 3


@dataclass
class Token:
    """A token: its type, the half-open span ``[start, end)`` and its child count."""

    type: TokenType
    start: int = -1
    end: int = -1
    size: int = 0

    @property
    def is_open(self) -> bool:
        """True for an object or array whose closing bracket has not been seen."""
        return self.start != -1 and self.end == -1


class JsmnError(ValueError):
    """Base class of all scanner errors."""

    def __init__(self, message: str, position: int) -> None:
        super().__init__(f"{message} (at offset {position})")
        self.position = position


class NotEnoughTokensError(JsmnError):
    """More tokens are needed than the given limit allows."""


class InvalidCharacterError(JsmnError):
    """An invalid character was found in the text."""


class PartialInputError(JsmnError):
    """The text ends before a complete JSON value was read."""


class JsmnParser:
    """Incremental scanner state.

    After a :class:`NotEnoughTokensError` the parser keeps its position and
    the tokens found so far, so calling :meth:`parse` again with a larger
    limit continues where it stopped.
    """

    def __init__(self) -> None:
        self.pos = 0
        self.toksuper = -1
        self.tokens: list[Token] = []

    def parse(self, js: str, max_tokens: int | None = None) -> list[Token]:
        """Scan ``js`` and return the tokens found.

        ``max_tokens`` limits how many tokens may exist in total; ``None``
        means no limit. Scanning stops at the end of the text or at a NUL
        character.
        """
        tokens = self.tokens
        while (c := self._char(js, self.pos)) != _NUL:
            if c in "{[":
                token = self._alloc_token(max_tokens)
                if token is None:
                    raise NotEnoughTokensError("not enough tokens", self.pos)
                if self.toksuper != -1:
                    tokens[self.toksuper].size += 1
                token.type = TokenType.OBJECT if c == "{" else TokenType.ARRAY
                token.start = self.pos
                self.toksuper = len(tokens) - 1
            elif c in "}]":
                self._close(TokenType.OBJECT if c == "}" else TokenType.ARRAY)
            elif c == '"':
                self._parse_string(js, max_tokens)
                if self.toksuper != -1:
                    tokens[self.toksuper].size += 1
            elif c in _WHITESPACE_AND_SEPARATORS:
                pass
            else:
                self._parse_primitive(js, max_tokens)
                if self.toksuper != -1:
                    tokens[self.toksuper].size += 1
            self.pos += 1

        if any(token.is_open for token in tokens):
            raise PartialInputError("unterminated object or array", self.pos)
        return list(tokens)

    @staticmethod
    def _char(js: str, index: int) -> str:
        return js[index] if index < len(js) else _NUL

    def _alloc_token(self, max_tokens: int | None) -> Token | None:
        if max_tokens is not None and len(self.tokens) >= max_tokens:
            return None
        token = Token(TokenType.PRIMITIVE)
        self.tokens.append(token)
        return token

    def _last_open(self, below: int) -> int:
        for index in reversed(range(below)):
            if self.tokens[index].is_open:
                return index
        return -1

    def _close(self, kind: TokenType) -> None:
        index = self._last_open(len(self.tokens))
        if index == -1:
            raise InvalidCharacterError("unmatched closing bracket", self.pos)
        token = self.tokens[index]
        if token.type != kind:
            raise InvalidCharacterError("mismatched closing bracket", self.pos)
        self.toksuper = -1
        token.end = self.pos + 1
        self.toksuper = self._last_open(index)

    def _parse_primitive(self, js: str, max_tokens: int | None) -> None:
        start = self.pos
        while (c := self._char(js, self.pos)) != _NUL:
            if c in _PRIMITIVE_TERMINATORS:
                break
            if ord(c) < 32 or ord(c) >= 127:
                self.pos = start
                raise InvalidCharacterError("invalid character in primitive", start)
            self.pos += 1

        token = self._alloc_token(max_tokens)
        if token is None:
            self.pos = start
            raise NotEnoughTokensError("not enough tokens", start)
        token.type = TokenType.PRIMITIVE
        token.start = start
        token.end = self.pos
        token.size = 0
        self.pos -= 1

    def _parse_string(self, js: str, max_tokens: int | None) -> None:
        start = self.pos
        self.pos += 1
        while (c := self._char(js, self.pos)) != _NUL:
            if c == '"':
                token = self._alloc_token(max_tokens)
                if token is None:
                    self.pos = start
                    raise NotEnoughTokensError("not enough tokens", start)
                token.type = TokenType.STRING
                token.start = start + 1
                token.end = self.pos
                token.size = 0
                return
            if c == "\\":
                self.pos += 1
                if self._char(js, self.pos) not in _ALLOWED_ESCAPES:
                    self.pos = start
                    raise InvalidCharacterError("invalid escape in string", start)
            self.pos += 1
        self.pos = start
        raise PartialInputError("unterminated string", start)


def tokenize(js: str, max_tokens: int | None = None) -> list[Token]:
    """Scan ``js`` with a fresh parser and return its tokens."""
    return JsmnParser().parse(js, max_tokens)