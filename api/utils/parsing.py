"""
Tagged-result parsing of model output.

Model replies are supposed to be JSON, but streams get cut, fences get added
and raw newlines end up inside string literals. `parse_model_json` tries a
strict decode first, then a bounded list of repair strategies, and returns an
`Ok` or `Err` instead of raising.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    strategy: str = "strict"

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: str
    attempts: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return False


ParseResult = Union[Ok[T], Err]
Strategy = Callable[[str], ParseResult]


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def escape_control_chars_in_strings(text: str) -> str:
    """Escape raw newlines, carriage returns and tabs that appear inside JSON string literals."""
    out: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ch == "\n":
                out.append("\\n")
                continue
            elif ch == "\r":
                out.append("\\r")
                continue
            elif ch == "\t":
                out.append("\\t")
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


def _decode_object(text: str) -> ParseResult:
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        return Err(f"invalid json: {e.msg} at pos {e.pos}")
    if not isinstance(value, dict):
        return Err(f"expected a JSON object, got {type(value).__name__}")
    return Ok(value)


def strict_json(text: str) -> ParseResult:
    return _decode_object(strip_code_fences(text))


def sanitized_json(text: str) -> ParseResult:
    result = _decode_object(escape_control_chars_in_strings(strip_code_fences(text)))
    if isinstance(result, Ok):
        return Ok(result.value, strategy="sanitized")
    return result


def embedded_object(text: str) -> ParseResult:
    """Decode the outermost {...} block when the model wrapped JSON in prose."""
    cleaned = strip_code_fences(text)
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        return Err("no JSON object found")
    result = _decode_object(escape_control_chars_in_strings(cleaned[start : end + 1]))
    if isinstance(result, Ok):
        return Ok(result.value, strategy="embedded")
    return result


def regex_fields(*names: str, required: Iterable[str] = ()) -> Strategy:
    """Build a strategy that pulls `"name": "value"` string pairs out of otherwise broken JSON."""
    required = tuple(required) or names[:1]

    def _extract(text: str) -> ParseResult:
        found: dict[str, Any] = {}
        for name in names:
            m = re.search(rf'"{re.escape(name)}"\s*:\s*"((?:[^"\\]|\\.)*)"', text or "")
            if m:
                found[name] = unescape_json_string(m.group(1))
        missing = [n for n in required if n not in found]
        if missing:
            return Err(f"regex extraction missing {', '.join(missing)}")
        return Ok(found, strategy="regex")

    return _extract


_ESCAPE_RE = re.compile(r'\\(u[0-9a-fA-F]{4}(?:\\u[0-9a-fA-F]{4})?|["\\/bfnrt])')
_SIMPLE_ESCAPES = {'"': '"', "\\": "\\", "/": "/", "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t"}
# An unescaped backslash at the end, optionally followed by a cut-off \uXXXX
# (or a high surrogate still waiting for its low half).
_PARTIAL_ESCAPE_RE = re.compile(
    r"(?:^|[^\\])(?:\\\\)*"
    r"(\\u[0-9a-fA-F]{0,3}|\\u[dD][89abAB][0-9a-fA-F]{2}(?:\\(?:u[0-9a-fA-F]{0,3})?)?|\\)$"
)


def _decode_escape(m: re.Match) -> str:
    token = m.group(1)
    if token[0] == "u":
        return json.loads(f'"\\{token}"')
    return _SIMPLE_ESCAPES[token]


def complete_escape_prefix(raw: str) -> str:
    """Cut a streamed string body back to its last complete escape sequence."""
    m = _PARTIAL_ESCAPE_RE.search(raw)
    return raw[: m.start(1)] if m else raw


def unescape_json_string(raw: str) -> str:
    """Decode the body of a JSON string literal, tolerating a dangling escape at the end."""
    try:
        return json.loads(f'"{raw}"')
    except json.JSONDecodeError:
        return _ESCAPE_RE.sub(_decode_escape, raw)


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (strict_json, sanitized_json, embedded_object)


def parse_model_json(text: str, strategies: Optional[Iterable[Strategy]] = None) -> ParseResult:
    """Run strategies in order; the first Ok wins."""
    attempts: list[str] = []
    for strategy in strategies or DEFAULT_STRATEGIES:
        result = strategy(text)
        if isinstance(result, Ok):
            return result
        attempts.append(f"{getattr(strategy, '__name__', 'strategy')}: {result.error}")
    return Err("all parse strategies failed", attempts=attempts)


def parse_model_as(
    text: str,
    schema: Type[M],
    strategies: Optional[Iterable[Strategy]] = None,
) -> ParseResult:
    """Like parse_model_json, then validate the decoded object against a pydantic schema."""
    attempts: list[str] = []
    for strategy in strategies or DEFAULT_STRATEGIES:
        result = strategy(text)
        if isinstance(result, Err):
            attempts.append(f"{getattr(strategy, '__name__', 'strategy')}: {result.error}")
            continue
        try:
            return Ok(schema.model_validate(result.value), strategy=result.strategy)
        except ValidationError as e:
            attempts.append(f"{result.strategy}: schema mismatch ({e.error_count()} errors)")
    return Err(f"could not parse output as {schema.__name__}", attempts=attempts)
