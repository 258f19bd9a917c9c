"""
Variable interpolation for template text.
"""
import re
from typing import Dict, List, Optional

# ${VAR}, ${VAR:-default}, ${VAR:+alt}, ${VAR:?message}; $$ escapes a dollar
_PATTERN = re.compile(r"\$\$|\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([-+?])([^}]*))?\}")


class InterpolationError(ValueError):
    """A ${VAR:?message} variable was unset or empty."""


class EnvironmentInterpolator:
    """
    Substitutes environment variables into a template before it is parsed.
    Unset variables without a modifier become empty strings and are
    remembered in `missing` so the caller can warn about them.
    """
    def __init__(self, context: Dict[str, str]):
        self.context = context
        self.missing: List[str] = []

    def interpolate(self, template: str) -> str:
        """
        :param template: Raw template text.
        :return: The text with every placeholder substituted.
        :raises InterpolationError: For a required variable that is unset.
        """
        return _PATTERN.sub(self._replace, template)

    def _replace(self, match) -> str:
        if match.group(0) == "$$":
            return "$"
        name, modifier, alt = match.group(1), match.group(2), match.group(3)
        value: Optional[str] = self.context.get(name)

        if modifier == "-":
            return value if value else alt
        if modifier == "+":
            return alt if value else ""
        if modifier == "?":
            if not value:
                raise InterpolationError(alt or f"required variable {name} is not set")
            return value
        if value is None:
            if name not in self.missing:
                self.missing.append(name)
            return ""
        return value
