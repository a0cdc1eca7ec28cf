"""Utility functions for the Quillnote MCP server."""
import re

_HTML_TAG = re.compile(r"<[^>]*>")

SNIPPET_RADIUS = 50
PREVIEW_LENGTH = 100


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Prevents SQL LIKE pattern injection where user input containing
    '%' or '_' could match unintended patterns.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for safe use in LIKE clauses

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\% complete'
        >>> escape_like_pattern("file_name")
        'file\\_name'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def strip_html(text: str) -> str:
    """Remove HTML tags, leaving the text between them."""
    return _HTML_TAG.sub("", text or "")


def make_snippet(content: str, query: str = "") -> str:
    """Build a short plain-text excerpt of note content.

    When the query occurs in the text, returns up to SNIPPET_RADIUS characters
    either side of the first (case-insensitive) occurrence, with "..." marking
    each truncated end. Otherwise returns the first PREVIEW_LENGTH characters.

    Examples:
        >>> make_snippet("<p>Hello world</p>", "world")
        'Hello world'
        >>> make_snippet("short")
        'short'
    """
    plain = strip_html(content)
    if query:
        index = plain.lower().find(query.lower())
        if index > -1:
            start = max(0, index - SNIPPET_RADIUS)
            end = min(len(plain), index + len(query) + SNIPPET_RADIUS)
            snippet = plain[start:end]
            if start > 0:
                snippet = "..." + snippet
            if end < len(plain):
                snippet += "..."
            return snippet
    return plain[:PREVIEW_LENGTH] + ("..." if len(plain) > PREVIEW_LENGTH else "")
