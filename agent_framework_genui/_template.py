# Copyright (c) Microsoft. All rights reserved.

"""Minimal ``{variable}`` prompt templating."""

import re
from collections.abc import Mapping
from typing import Any

from .exceptions import TemplateFormatError

_VARIABLE = re.compile(r"\{([a-zA-Z0-9_\[\].]+)\}")
_ESCAPED_VARIABLE = re.compile(r"\\\{([a-zA-Z0-9_\[\].]+)\\\}")

TemplateParameters = Mapping[str, str | None]


def get_template_variables(template: Any) -> list[str]:
    """List the unique variable names used anywhere in a template, in order of appearance."""
    names: list[str] = []

    def _collect(value: Any) -> None:
        if isinstance(value, str):
            for match in _VARIABLE.finditer(_ESCAPED_VARIABLE.sub("", value)):
                if match.group(1) not in names:
                    names.append(match.group(1))
        elif isinstance(value, Mapping):
            for item in value.values():
                _collect(item)
        elif isinstance(value, (list, tuple)):
            for item in value:
                _collect(item)

    _collect(template)
    return names


def format_template(template: str, parameters: TemplateParameters) -> str:
    """Substitute ``{name}`` placeholders.

    ``\\{name\\}`` is left alone and unescaped to ``{name}``.

    Raises:
        TemplateFormatError: A referenced variable has no value.
    """

    def _replace(match: re.Match[str]) -> str:
        start = match.start()
        if start > 0 and template[start - 1] == "\\":
            return match.group(0)
        value = parameters.get(match.group(1))
        if value is None:
            raise TemplateFormatError(f"Can't format template, missing variable: {match.group(1)}")
        return value

    formatted = _VARIABLE.sub(_replace, template)
    return _ESCAPED_VARIABLE.sub(lambda m: "{" + m.group(1) + "}", formatted)


def format_object_template(template: Any, parameters: TemplateParameters) -> Any:
    """Apply :func:`format_template` to every string, list item and dict key/value."""
    if isinstance(template, str):
        return format_template(template, parameters)
    if isinstance(template, Mapping):
        return {
            format_template(key, parameters) if isinstance(key, str) else key: format_object_template(value, parameters)
            for key, value in template.items()
        }
    if isinstance(template, (list, tuple)):
        return [format_object_template(item, parameters) for item in template]
    return template
