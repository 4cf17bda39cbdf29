import logging
import traceback
from typing import Optional, Union

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


def parse_log_level(level: Union[str, int, None]) -> int:
    """Map a LOG_LEVEL string such as "debug" to a logging level.

    Unknown or empty values fall back to INFO.
    """
    if isinstance(level, int):
        return level
    if not level:
        return logging.INFO
    return _LEVELS.get(str(level).strip().lower(), logging.INFO)


def setup_logging(level: Union[str, int] = logging.INFO, fmt: Optional[str] = None) -> None:
    """Configure root logging once. Later calls only adjust the level.
    If fmt is not provided, a sensible default is used.
    """
    root = logging.getLogger()
    if root.handlers:
        # Already configured; keep handlers, honour the requested level
        root.setLevel(parse_log_level(level))
        return
    format_str = fmt or '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    logging.basicConfig(level=parse_log_level(level), format=format_str)
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module/logger by name, after ensuring logging is configured."""
    if not logging.getLogger().handlers:
        setup_logging()
    return logging.getLogger(name) if name else logging.getLogger(__name__)


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
    """Centralized exception logging with full traceback.

    Args:
        logger: Logger instance to use
        message: Custom error message to log before the traceback
        exc_info: Exception instance (if None, uses current exception context)
    """
    logger.error(message)
    if exc_info is not None:
        logger.error(f"Exception type: {type(exc_info).__name__}")
        logger.error(f"Exception message: {str(exc_info)}")
    logger.error("Full traceback:")
    logger.error(traceback.format_exc())
