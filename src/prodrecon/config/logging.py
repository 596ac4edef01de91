"""Process-wide logging setup for the CLI and the HTTP server."""

from __future__ import annotations

import logging

from .env import optional_env_var
from .errors import ConfigurationError

# per-request INFO lines from httpx drown chunk progress
_CHATTY_LOGGERS = ("httpx", "httpcore", "hishel")


def _env_level() -> int:
    name = optional_env_var("PRODRECON_LOG_LEVEL")
    if name is None:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(name.upper())
    if level is None:
        raise ConfigurationError(f"PRODRECON_LOG_LEVEL must be a logging level, got {name!r}")
    return level


def configure_logging(*, level: int | None = None, force: bool = False) -> None:
    """Initialise the root logger once.

    ``level`` falls back to ``PRODRECON_LOG_LEVEL`` and then INFO. HTTP client
    libraries only log below WARNING when running at DEBUG.
    """

    resolved = _env_level() if level is None else level
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(
            logging.DEBUG if resolved <= logging.DEBUG else logging.WARNING
        )
