"""
Utilities for string interpolation using environment variables.
"""
import re
from typing import Mapping

# ${VAR}, ${VAR:-default} or ${VAR:+value}
_PLACEHOLDER = re.compile(r'\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::(?P<op>[-+])(?P<alt>[^}]*))?\}')

MISSING_ERROR = "error"
MISSING_EMPTY = "empty"
MISSING_KEEP = "keep"


def interpolate(template: str, context: Mapping[str, str], missing: str = MISSING_ERROR) -> str:
    """
    Replaces ${VAR} placeholders in a string.

    ${VAR:-default} falls back to default when VAR is unset or empty,
    ${VAR:+value} yields value only when VAR is set and not empty.

    :param template: The string containing placeholders.
    :param context: Variables to substitute.
    :param missing: What to do with a bare ${VAR} that is not in the context:
        "error" raises KeyError, "empty" substitutes "", "keep" leaves it untouched.
    :return: The interpolated string.
    """
    def replace(match):
        value = context.get(match.group("name"))
        op = match.group("op")
        if op == "-":
            return value if value else match.group("alt")
        if op == "+":
            return match.group("alt") if value else ""
        if value is not None:
            return value
        if missing == MISSING_KEEP:
            return match.group(0)
        if missing == MISSING_EMPTY:
            return ""
        raise KeyError(f"Variable {match.group('name')} not found in context")

    return _PLACEHOLDER.sub(replace, template)


def placeholders(template: str):
    """
    Returns the variable names referenced by a template.
    """
    return [m.group("name") for m in _PLACEHOLDER.finditer(template)]
