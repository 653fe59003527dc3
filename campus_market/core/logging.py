from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Floor applied to chatty library loggers unless debug mode is on.
LIBRARY_LEVELS = {
    "uvicorn.error": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "aiohttp.client": logging.WARNING,
    "aiohttp.access": logging.WARNING,
    "passlib": logging.ERROR,
}


def resolve_level(*, debug: bool, log_level: str | None = None) -> int:
    if log_level:
        level = logging.getLevelName(log_level.strip().upper())
        if isinstance(level, int):
            return level
    return logging.DEBUG if debug else logging.INFO


def configure_logging(*, debug: bool, log_level: str | None = None, sql_echo: bool = False) -> int:
    level = resolve_level(debug=debug, log_level=log_level)
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)

    for name, floor in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level if debug else max(level, floor))
    if sql_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    logging.getLogger(__name__).info(
        "Logging configured level=%s debug=%s sql_echo=%s",
        logging.getLevelName(level),
        debug,
        sql_echo,
    )
    return level
