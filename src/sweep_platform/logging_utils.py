"""Package loggers and user-facing error reporting."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import logging
from typing import Any, Optional, TypeVar, Union

from sweep_platform.errors import SweepPlatformError

ROOT_LOGGER = "sweep_platform"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

Level = Union[int, str]
_T = TypeVar("_T")


def _level(value: Level) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(str(value).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {value!r}")
    return resolved


def get_logger(area: Optional[str] = None) -> logging.Logger:
    """``sweep_platform`` or its ``sweep_platform.<area>`` child."""
    return logging.getLogger(f"{ROOT_LOGGER}.{area}" if area else ROOT_LOGGER)


def configure_logging(
    level: Level = logging.INFO,
    *,
    areas: Optional[Mapping[str, Level]] = None,
    fmt: str = LOG_FORMAT,
    force: bool = False,
) -> logging.Logger:
    """Install a root handler and set package (and per-area) levels.

    ``areas`` maps names such as ``"identity"`` or ``"sensitivity"`` to their
    own level, e.g. to trace store writes without debugging everything.
    """
    logging.basicConfig(level=_level(level), format=fmt, force=force)
    logger = get_logger()
    logger.setLevel(_level(level))
    for area, area_level in (areas or {}).items():
        get_logger(area).setLevel(_level(area_level))
    return logger


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, SweepPlatformError):
        return exc.user_message
    return f"Unexpected error: {exc}"


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    *,
    show_traceback: bool = False,
) -> str:
    """Log the user message at ERROR; context and traceback at DEBUG."""
    message = describe_error(exc)
    logger.error(message)
    if isinstance(exc, SweepPlatformError) and exc.context:
        logger.debug("Error context: %s", exc.log_message())
    logger.log(
        logging.ERROR if show_traceback else logging.DEBUG,
        "Detailed traceback:",
        exc_info=exc,
    )
    return message


def run_with_error_handling(
    func: Callable[..., _T],
    *args: Any,
    logger: logging.Logger,
    show_traceback: bool = False,
    **kwargs: Any,
) -> _T:
    try:
        return func(*args, **kwargs)
    except Exception as exc:
        log_exception(logger, exc, show_traceback=show_traceback)
        raise


__all__ = [
    "ROOT_LOGGER",
    "LOG_FORMAT",
    "configure_logging",
    "get_logger",
    "describe_error",
    "log_exception",
    "run_with_error_handling",
]
