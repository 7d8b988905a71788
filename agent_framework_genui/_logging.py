# Copyright (c) Microsoft. All rights reserved.

import logging

from .exceptions import GenUIException

__all__ = ["get_logger", "setup_logging"]

ROOT_LOGGER_NAME = "agent_framework_genui"


def setup_logging(level: int = logging.INFO) -> None:
    """Setup the logging configuration for the streaming engine."""
    logging.basicConfig(
        format="[%(asctime)s - %(pathname)s:%(lineno)d - %(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(level)


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Get a logger in the package namespace.

    Args:
        name: Dotted logger name, usually a module's ``__name__``.

    Raises:
        GenUIException: The name is outside the package namespace.
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        raise GenUIException(f"Logger name must be '{ROOT_LOGGER_NAME}' or start with '{ROOT_LOGGER_NAME}.'.")
    return logging.getLogger(name)
