"""
Utilities for string interpolation using environment variables.
"""
import re
from typing import Dict

# $$ | ${VAR} | ${VAR:-default} | ${VAR:+alt} | ${VAR:?message} | $VAR
PATTERN = re.compile(
    r'\$(?:(?P<escaped>\$)'
    r'|\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?::(?P<modifier>[-+?])(?P<alt>[^}]*))?\}'
    r'|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))'
)


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in recipe values.
    Supports ${VAR}, ${VAR:-default}, ${VAR:+value}, ${VAR:?message},
    bare $VAR and $$ for a literal dollar sign.
    """
    @staticmethod
    def interpolate(template: str, context: Dict[str, str]) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        :param template: The string containing placeholders.
        :param context: The environment variables context.
        :return: The interpolated string.
        :raises KeyError: If a variable without a default is unset, or a
                          ${VAR:?message} variable is unset or empty.
        """
        def replace(match):
            if match.group("escaped"):
                return "$"

            var_name = match.group("braced") or match.group("bare")
            modifier = match.group("modifier")
            alt_value = match.group("alt")
            value = context.get(var_name)

            if modifier == '-':
                return value if value else alt_value
            if modifier == '+':
                return alt_value if value else ''
            if modifier == '?':
                if not value:
                    raise KeyError(alt_value or f"Variable {var_name} is required")
                return value
            if value is None:
                raise KeyError(f"Variable {var_name} not found in context")
            return value

        return PATTERN.sub(replace, template)
