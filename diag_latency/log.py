import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _coerce_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def get_logger(name: str | None = None, level: int | str = logging.INFO) -> logging.Logger:
    """
    Get a logger instance with the package's console format applied.

    Args:
        name: Logger name (defaults to the root package logger)
        level: Logging level as an int or a level name such as ``"DEBUG"``

    Returns:
        `logging.Logger`
    """
    resolved = _coerce_level(level)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logger = logging.getLogger(name or "diag_latency")
    logger.setLevel(resolved)
    return logger
