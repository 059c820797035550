"""Template variable resolution for step inputs.

Handles patterns like ``{{ hostname }}`` or ``{{ trigger.data.severity }}``.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

_MISSING = object()


def lookup_path(context: Any, path: str, default: Any = None) -> Any:
    """Get a value by dotted path.

    Mappings are traversed by key and sequences by integer index.

    Args:
        context: Root object to look the path up in
        path: Dotted path like 'trigger.data.hostname' or 'hosts.0'
        default: Value returned when any segment is missing

    Returns:
        The value at the path or default
    """
    value = context
    for part in path.split("."):
        if isinstance(value, Mapping):
            value = value.get(part, _MISSING)
        elif isinstance(value, (list, tuple)) and part.lstrip("-").isdigit():
            index = int(part)
            value = value[index] if -len(value) <= index < len(value) else _MISSING
        else:
            return default
        if value is _MISSING:
            return default
    return value


def to_template_string(value: Any) -> str:
    """Render a looked-up value for substitution into a string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, default=str, sort_keys=True)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


class TemplateResolver:
    """Resolves ``{{ dotted.path }}`` placeholders against a context.

    Missing paths resolve to the empty string; resolution never raises.
    Substitution is a single pass: placeholders inside substituted values
    are dropped rather than expanded.
    The output never contains a placeholder, which makes resolution
    idempotent.

    Example:
        resolver = TemplateResolver()
        resolver.resolve({"message": "Alert on {{hostname}}"}, {"hostname": "ws01"})
        # {"message": "Alert on ws01"}
    """

    # Template variable pattern: {{ variable.path }}
    TEMPLATE_PATTERN = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_\-]*(?:\.[a-zA-Z0-9_\-]+)*)\s*\}\}")

    def resolve(self, data: Any, context: Mapping[str, Any]) -> Any:
        """Resolve template variables in data.

        Args:
            data: String, mapping or list with potential template variables
            context: Values available to placeholders

        Returns:
            Data with resolved variables; non-string leaves are returned as is
        """
        if isinstance(data, str):
            return self.resolve_string(data, context)
        if isinstance(data, Mapping):
            return {key: self.resolve(value, context) for key, value in data.items()}
        if isinstance(data, list):
            return [self.resolve(item, context) for item in data]
        if isinstance(data, tuple):
            return tuple(self.resolve(item, context) for item in data)
        return data

    def resolve_string(self, text: str, context: Mapping[str, Any]) -> str:
        """Resolve all placeholders in a single string."""

        def replace_match(match: re.Match[str]) -> str:
            return self.strip_placeholders(to_template_string(lookup_path(context, match.group(1))))

        if not self.TEMPLATE_PATTERN.search(text):
            return text
        # Substituted text can still form a placeholder with its surroundings
        return self.strip_placeholders(self.TEMPLATE_PATTERN.sub(replace_match, text))

    def strip_placeholders(self, text: str) -> str:
        """Remove placeholders without resolving them."""
        while self.TEMPLATE_PATTERN.search(text):
            text = self.TEMPLATE_PATTERN.sub("", text)
        return text

    def references(self, data: Any) -> list[str]:
        """Extract all template variable references from data."""
        refs: list[str] = []

        if isinstance(data, str):
            refs.extend(self.TEMPLATE_PATTERN.findall(data))
        elif isinstance(data, Mapping):
            for value in data.values():
                refs.extend(self.references(value))
        elif isinstance(data, (list, tuple)):
            for item in data:
                refs.extend(self.references(item))

        return refs

    def has_placeholders(self, data: Any) -> bool:
        """Return True if data still contains any placeholder."""
        return bool(self.references(data))
