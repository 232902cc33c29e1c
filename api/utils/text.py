"""Text clean-up helpers for model replies (escape sequences, diagram markup)."""

from __future__ import annotations

import re
from typing import NamedTuple, Optional

# LaTeX commands whose leading backslash must survive escape-sequence repair.
# Several of them start with n, r or t (\neq, \rho, \theta ...), which a naive
# "\n" -> newline replacement would corrupt.
LATEX_COMMANDS = (
    "frac", "sqrt", "cbrt",
    "times", "div", "pm", "mp", "cdot",
    "leq", "geq", "neq", "approx", "equiv",
    "sum", "prod", "int", "oint",
    "left", "right", "begin", "end",
    "text", "mathbf", "mathrm", "mathit", "mathcal",
    "alpha", "beta", "gamma", "delta", "epsilon", "zeta", "eta", "theta",
    "iota", "kappa", "lambda", "mu", "nu", "xi", "pi", "rho", "sigma",
    "tau", "upsilon", "phi", "chi", "psi", "omega",
    "Gamma", "Delta", "Theta", "Lambda", "Xi", "Pi", "Sigma", "Upsilon",
    "Phi", "Psi", "Omega",
    "ldots", "cdots", "vdots", "ddots",
    "infty", "partial", "nabla", "angle",
)

_PLACEHOLDER = "\x00LATEX\x00"
# Longest first so \theta is not split as \t + heta by a shorter alternative.
_LATEX_RE = re.compile(
    r"\\(" + "|".join(sorted(LATEX_COMMANDS, key=len, reverse=True)) + r")(?![A-Za-z])"
)
_SVG_BLOCK_RE = re.compile(r"\[SVG\]([\s\S]*?)\[/SVG\]", re.IGNORECASE)
_RAW_SVG_RE = re.compile(r"<svg[\s\S]*?</svg>", re.IGNORECASE)


class SvgExtraction(NamedTuple):
    svg: Optional[str]
    cleaned_text: str


def unescape_model_text(text: str) -> str:
    """Turn literal \\n, \\r and \\t sequences into real whitespace without touching LaTeX commands."""
    if not text or "\\" not in text:
        return text
    protected = _LATEX_RE.sub(lambda m: _PLACEHOLDER + m.group(1), text)
    protected = protected.replace("\\n", "\n").replace("\\r", "\r").replace("\\t", "\t")
    return protected.replace(_PLACEHOLDER, "\\")


def extract_svg(text: str) -> SvgExtraction:
    """
    Pull diagram markup out of text.
    Accepts a [SVG]...[/SVG] block (case-insensitive) or a bare <svg>...</svg> element.
    The first diagram found is returned; all diagram markup is removed from the text.
    """
    if not text:
        return SvgExtraction(None, text or "")

    svg: Optional[str] = None
    block = _SVG_BLOCK_RE.search(text)
    if block:
        svg = block.group(1).strip()
        text = _SVG_BLOCK_RE.sub("", text)
    raw = _RAW_SVG_RE.search(text)
    if raw:
        if svg is None:
            svg = raw.group(0).strip()
        text = _RAW_SVG_RE.sub("", text)

    cleaned = re.sub(r"\n{3,}", "\n\n", text).strip()
    return SvgExtraction(svg or None, cleaned)


def truncate(text: str, limit: int, suffix: str = "...") -> str:
    if text is None:
        return ""
    return text if len(text) <= limit else text[:limit] + suffix
