"""Conversion of JSON text into property-list style Python values.

Objects become dicts, arrays lists, strings str (taken verbatim, escape
sequences are not decoded), ``true``/``false`` bools and numbers unsigned
64-bit integers read from their leading integer part.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from .jsmn import JsmnParser, NotEnoughTokensError, Token, TokenType

__all__ = ["json_to_plist"]

log = logging.getLogger(__name__)

_TOKEN_BATCH = 256
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_UINT64_MASK = (1 << 64) - 1
_LEADING_INTEGER = re.compile(r"-?\d+")


def _text(js: str, token: Token) -> str:
    return js[token.start:token.end]


def _primitive_value(text: str) -> Any:
    first = text[:1]
    if first == "f":
        return False
    if first == "t":
        return True
    if first == "-" or first.isdigit():
        match = _LEADING_INTEGER.match(text)
        number = int(match.group()) if match else 0
        number = max(_INT64_MIN, min(_INT64_MAX, number))
        return number & _UINT64_MASK
    log.warning("invalid primitive value %r encountered, returning it as string", text)
    return text


def _parse_value(js: str, tokens: list[Token], index: int) -> tuple[Any, int]:
    """Convert the token at ``index``; return the value and the next index."""
    if index >= len(tokens):
        return None, index
    token = tokens[index]

    if token.type == TokenType.PRIMITIVE:
        return _primitive_value(_text(js, token)), index + 1
    if token.type == TokenType.STRING:
        return _text(js, token), index + 1

    if token.type == TokenType.ARRAY:
        items: list[Any] = []
        position = index + 1
        for _ in range(token.size):
            value, position = _parse_value(js, tokens, position)
            if value is not None:
                items.append(value)
        return items, position

    obj: dict[str, Any] = {}
    position = index + 1
    remaining = token.size
    while remaining > 0 and position < len(tokens):
        key_token = tokens[position]
        if key_token.type != TokenType.STRING:
            raise ValueError("JSON object keys must be strings")
        key = _text(js, key_token)
        remaining -= 2
        value, position = _parse_value(js, tokens, position + 1)
        if value is not None:
            obj[key] = value
    return obj, position


def json_to_plist(json_string: str) -> Any:
    """Convert JSON text to a plist value.

    Raises ValueError for a missing input or a non-string object key and the
    scanner's errors for malformed text. Returns None when the text holds no
    value at all.
    """
    if json_string is None:
        raise ValueError("no JSON string given")

    parser = JsmnParser()
    limit = _TOKEN_BATCH
    while True:
        try:
            tokens = parser.parse(json_string, limit)
            break
        except NotEnoughTokensError:
            limit += _TOKEN_BATCH

    value, _ = _parse_value(json_string, tokens, 0)
    return value