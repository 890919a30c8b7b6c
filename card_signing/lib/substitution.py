"""Placeholder substitution for the CSR skeleton.

Placeholders are upper-case names between ``@`` delimiters (``@NAMEDN@``).
Values are handed to the renderer escaped: every reserved character is
prefixed with a backslash, and the renderer consumes that escaping while
substituting. Substitution is a single pass, so inserted text is never
rescanned for placeholders.
"""

import re
from collections.abc import Mapping

from .errors import TemplateError

RESERVED_CHARACTERS = frozenset("\\@/&|")

PLACEHOLDER_PATTERN = re.compile(r"@([A-Z][A-Z0-9_]*)@")

_ESCAPED_CHARACTER = re.compile(r"\\(.)", re.DOTALL)


def escape_value(value: str) -> str:
    """Escape reserved substitution characters in a literal value."""
    return "".join("\\" + char if char in RESERVED_CHARACTERS else char for char in value)


def unescape_value(value: str) -> str:
    """Reverse escape_value, returning the literal value."""
    return _ESCAPED_CHARACTER.sub(r"\1", value)


def placeholders(template: str) -> set[str]:
    """Return the placeholder names referenced by a template."""
    return set(PLACEHOLDER_PATTERN.findall(template))


def render(template: str, escaped_values: Mapping[str, str]) -> str:
    """Substitute every placeholder with its unescaped value.

    Args:
        template: Skeleton text containing @NAME@ placeholders
        escaped_values: Placeholder name to escaped value

    Returns:
        Rendered text with literal values in place of placeholders

    Raises:
        TemplateError: If the template references a name with no value
    """
    missing = sorted(placeholders(template) - set(escaped_values))
    if missing:
        raise TemplateError(
            "no value for placeholder(s): " + ", ".join(f"@{name}@" for name in missing)
        )

    def _substitute(match: re.Match[str]) -> str:
        return unescape_value(escaped_values[match.group(1)])

    return PLACEHOLDER_PATTERN.sub(_substitute, template)
