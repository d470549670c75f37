"""Text sanitization for upstream and collaborator strings."""

import re
from collections.abc import Iterable

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def sanitize_text(text: str | None, max_length: int = 500) -> str | None:
    """
    Sanitize untrusted text fields.

    Removes control characters and truncates to max_length.
    Apply to: market titles, outcome labels, AI-written copy.

    Args:
        text: Text to sanitize (may be None)
        max_length: Maximum length before truncation

    Returns:
        Sanitized text or None if input was None
    """
    if text is None:
        return None

    text = _CONTROL_CHARS.sub("", str(text))

    if len(text) > max_length:
        text = text[:max_length] + "..."

    return text.strip()


def sanitize_lines(lines: Iterable[str] | None, max_items: int = 3, max_length: int = 200) -> tuple[str, ...]:
    """Sanitize a list of display lines, dropping empties and capping the count."""
    if not lines:
        return ()
    cleaned = (sanitize_text(line, max_length=max_length) for line in lines)
    return tuple(line for line in cleaned if line)[:max_items]
