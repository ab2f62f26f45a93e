"""Literal token substitution for template files."""

import re
from pathlib import Path
from typing import Mapping, Tuple, Union

_MARKUP_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&apos;",
}
_MARKUP_PATTERN = re.compile("[&<>\"']")


def escape_markup(value: str) -> str:
    """Escape the five XML metacharacters for use in markup text or attributes."""
    return _MARKUP_PATTERN.sub(lambda m: _MARKUP_ESCAPES[m.group(0)], value)


def replace_tokens(text: str, replacements: Mapping[str, str]) -> Tuple[str, int]:
    """Replace every literal occurrence of each token in a single pass.

    Tokens are matched as plain strings (no pattern semantics) and inserted
    values are never scanned again, so a replacement containing another token
    is left untouched.
    """
    tokens = [t for t in replacements if t]
    if not tokens:
        return text, 0

    # Longest first so a token never loses to its own prefix
    tokens.sort(key=len, reverse=True)
    pattern = re.compile("|".join(re.escape(t) for t in tokens))
    return pattern.subn(lambda m: replacements[m.group(0)], text)


def substitute_tokens(path: Union[str, Path], replacements: Mapping[str, str]) -> int:
    """Rewrite ``path`` in place with ``replacements`` applied.

    Returns the number of replacements made. A file containing none of the
    tokens is left byte-for-byte unchanged.
    """
    path = Path(path)
    with open(path, encoding="utf-8", newline="") as f:
        content = f.read()

    updated, count = replace_tokens(content, replacements)
    if count:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(updated)
    return count
