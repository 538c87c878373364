"""Macro expansion for step parameters.

Supports the placeholder forms used by build environments:
- $NAME
- ${NAME} (braces also allow '.' in the name)
- $$ for a literal '$'

Expansion is best effort: a placeholder with no matching variable is
left in place.
"""

import re
from typing import Mapping, Optional

_VARIABLE = re.compile(r'\$([A-Za-z0-9_]+|\{[A-Za-z0-9_.]+\}|\$)')


def expand(template: Optional[str], variables: Mapping[str, str]) -> Optional[str]:
    """Substitute every resolvable placeholder in template."""
    if template is None or '$' not in template:
        return template

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key == '$':
            return '$'
        if key.startswith('{'):
            key = key[1:-1]
        value = variables.get(key)
        if value is None:
            return match.group(0)
        return str(value)

    return _VARIABLE.sub(_replace, template)


def expand_all(variables: Mapping[str, str], *templates: Optional[str]) -> list[Optional[str]]:
    """Expand several templates against the same variables."""
    return [expand(t, variables) for t in templates]


def has_placeholder(value: Optional[str]) -> bool:
    """True if value references a variable that is only known at build time."""
    return bool(value) and _VARIABLE.search(value) is not None
