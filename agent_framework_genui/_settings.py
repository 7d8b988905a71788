# Copyright (c) Microsoft. All rights reserved.

"""Settings resolution for the chat client and backend.

Settings are described by a ``TypedDict`` and filled from explicit keyword
overrides, environment variables (``<prefix><FIELD_NAME>``), a ``.env`` file
and finally the class-level defaults, in that order.

Usage::

    class ChatClientSettings(TypedDict, total=False):
        api_key: SecretString | None
        model: str | None


    settings = load_settings(ChatClientSettings, env_prefix="GENUI_", model="gpt-4.1")
"""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from typing import Any, Union, get_args, get_origin, get_type_hints

from dotenv import load_dotenv

from .exceptions import ServiceInitializationError

if sys.version_info >= (3, 13):
    from typing import TypeVar  # type: ignore # pragma: no cover
else:
    from typing_extensions import TypeVar  # type: ignore # pragma: no cover

__all__ = ["SecretString", "load_settings"]

SettingsT = TypeVar("SettingsT", default=dict[str, Any])


class SecretString(str):
    """A string whose repr() is masked so API keys do not end up in logs."""

    def __repr__(self) -> str:
        return "SecretString('**********')"

    def get_secret_value(self) -> str:
        return str(self)


def _coerce_value(value: str, target_type: Any) -> Any:
    """Coerce an environment string to the annotated type."""
    args = get_args(target_type)
    if args and type(None) in args:
        for arg in args:
            if arg is not type(None):
                with suppress(ValueError, TypeError):
                    return _coerce_value(value, arg)
        return value

    if isinstance(target_type, type) and issubclass(target_type, SecretString):
        return SecretString(value)
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is bool:
        return value.lower() in ("true", "1", "yes", "on")
    return value


def _allowed_types(field_type: Any) -> tuple[type, ...]:
    origin = get_origin(field_type)
    if origin is Union or origin is type(int | str):
        return tuple(
            get_origin(a) or a
            for a in get_args(field_type)
            if a is not type(None) and isinstance(get_origin(a) or a, type)
        )
    if isinstance(origin, type):
        return (origin,)
    if isinstance(field_type, type):
        return (field_type,)
    return ()


def _check_override_type(value: Any, field_type: Any, field_name: str) -> None:
    if value is None:
        return
    allowed = _allowed_types(field_type)
    if not allowed or isinstance(value, allowed):
        return
    if isinstance(value, str) and any(issubclass(a, str) for a in allowed):
        return
    if isinstance(value, int) and float in allowed:
        return
    allowed_names = ", ".join(t.__name__ for t in allowed)
    raise ServiceInitializationError(
        f"Invalid type for setting '{field_name}': expected {allowed_names}, got {type(value).__name__}."
    )


def load_settings(
    settings_type: type[SettingsT],
    *,
    env_prefix: str = "",
    env_file_path: str | None = None,
    env_file_encoding: str | None = None,
    **overrides: Any,
) -> SettingsT:
    """Load settings from overrides, environment variables and a ``.env`` file.

    Args:
        settings_type: A ``TypedDict`` class describing the settings schema.
        env_prefix: Prefix for environment variable lookup (e.g. ``"GENUI_"``).
        env_file_path: Path to the ``.env`` file. Defaults to ``".env"``.
        env_file_encoding: Encoding of the ``.env`` file. Defaults to ``"utf-8"``.
        **overrides: Explicit values. ``None`` values are ignored.

    Returns:
        A populated dict matching *settings_type*.

    Raises:
        ServiceInitializationError: An override has an incompatible type.
    """
    env_path = env_file_path or ".env"
    if os.path.isfile(env_path):
        load_dotenv(dotenv_path=env_path, encoding=env_file_encoding or "utf-8")

    overrides = {k: v for k, v in overrides.items() if v is not None}
    hints = get_type_hints(settings_type)

    result: dict[str, Any] = {}
    for field_name, field_type in hints.items():
        if field_name in overrides:
            value = overrides[field_name]
            _check_override_type(value, field_type, field_name)
            if isinstance(value, str) and not isinstance(value, SecretString):
                with suppress(ValueError, TypeError):
                    value = _coerce_value(value, field_type)
            result[field_name] = value
            continue

        env_value = os.getenv(f"{env_prefix}{field_name.upper()}")
        if env_value is not None:
            try:
                result[field_name] = _coerce_value(env_value, field_type)
            except (ValueError, TypeError):
                result[field_name] = env_value
            continue

        result[field_name] = getattr(settings_type, field_name, None)

    return result  # type: ignore[return-value]
