"""Placeholder substitution for descriptor configuration.

Supports two placeholder forms:
- ${vars.NAME} - replaced at load time from the descriptor file's ``variables``
- ${RESOURCE_ID} - replaced at execution time with the provider handle of a
  dependency (e.g. the network self-link or the database connection name)
"""

import re
from typing import Any, Callable, Dict, Mapping, Set

from stackweaver.core.errors import ConfigError

PLACEHOLDER = re.compile(r"\$\{([A-Za-z0-9_.\-]+)\}")
VARS_PREFIX = "vars."


def _walk(value: Any, replace: Callable[[str], str]) -> Any:
    if isinstance(value, str):
        return replace(value)
    elif isinstance(value, Mapping):
        return {k: _walk(v, replace) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [_walk(item, replace) for item in value]
    else:
        # Numbers, booleans, None, etc. - return unchanged
        return value


class VariableSubstitutor:
    """Replaces ${vars.NAME} placeholders from a variables mapping."""

    def __init__(self, variables: Mapping[str, Any] | None = None):
        self.variables = {k: str(v) for k, v in (variables or {}).items()}

    def substitute(self, value: Any) -> Any:
        """Recursively substitute variables in strings, dicts and lists.

        Example:
            >>> sub = VariableSubstitutor({"region": "us-central1"})
            >>> sub.substitute({"region": "${vars.region}"})
            {'region': 'us-central1'}
        """
        return _walk(value, self._substitute_string)

    def _substitute_string(self, text: str) -> str:
        def replace_var(match: re.Match) -> str:
            token = match.group(1)
            if not token.startswith(VARS_PREFIX):
                return match.group(0)
            name = token[len(VARS_PREFIX):]
            if name not in self.variables:
                raise ConfigError("Undefined variable", details={"variable": name})
            return self.variables[name]

        return PLACEHOLDER.sub(replace_var, text)


def find_references(value: Any) -> Set[str]:
    """Collect the resource ids referenced as ${ID} anywhere in ``value``."""
    found: Set[str] = set()

    def collect(text: str) -> str:
        for match in PLACEHOLDER.finditer(text):
            if not match.group(1).startswith(VARS_PREFIX):
                found.add(match.group(1))
        return text

    _walk(value, collect)
    return found


def resolve_references(value: Any, handles: Dict[str, str]) -> Any:
    """Replace ${ID} placeholders with the provider handles of created resources."""

    def replace_ref(match: re.Match) -> str:
        token = match.group(1)
        if token not in handles:
            raise ConfigError("Unresolved resource reference", details={"reference": token})
        return handles[token]

    return _walk(value, lambda text: PLACEHOLDER.sub(replace_ref, text))
