"""
Core prompt helpers: template filling and section assembly.
The app owns the template strings; these helpers only render them.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

RULE = "=" * 59


class _SafeFormatDict(dict):
    """Mapping that returns empty string for missing keys (for str.format_map)."""

    def __missing__(self, key: str) -> str:
        return ""


def build_from_template(template: str, **kwargs: Any) -> str:
    """
    Fill a template with the given keyword arguments.
    Missing keys and None values render as empty strings.
    """
    if not template:
        return ""
    safe = {k: ("" if v is None else v) for k, v in kwargs.items()}
    return template.format_map(_SafeFormatDict(safe))


def banner(title: str, subtitle: Optional[str] = None) -> str:
    lines = [RULE, title]
    if subtitle:
        lines.append(subtitle)
    lines.append(RULE)
    return "\n".join(lines)


def join_sections(sections: Iterable[Optional[str]], sep: str = "\n\n") -> str:
    """Join non-empty sections, dropping None and blank strings."""
    return sep.join(s.strip("\n") for s in sections if s and s.strip())


def bullet_list(items: Iterable[str], bullet: str = "- ") -> str:
    return "\n".join(f"{bullet}{item}" for item in items)
