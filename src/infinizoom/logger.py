import logging
from pathlib import Path
from typing import List, Optional

from infinizoom.constants import LOG_DIR


def get_log_directory() -> Path:
    """
    Determine the log directory, creating it if needed.

    Returns:
        Path to log directory - ``INFINIZOOM_LOG_DIR`` if set, otherwise
        logs/ under the project root. Falls back to ./logs when the preferred
        location is not writable.
    """
    log_dir = LOG_DIR
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except (PermissionError, OSError):
        log_dir = Path.cwd() / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_log_file_path(log_filename: str = "infinizoom.log") -> str:
    """Return the full path for *log_filename* inside the log directory."""
    log_file = get_log_directory() / log_filename
    if not log_file.exists():
        log_file.touch(exist_ok=True)
    return str(log_file)


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level(level: int|str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Invalid log level: {level}")
    return resolved


def _build_handlers(level: int, log_filename: Optional[str], include_console: bool) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if log_filename is not None:
        handlers.append(logging.FileHandler(get_log_file_path(log_filename)))
    if include_console:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def setup_logging(
    name: str = __name__,
    level: int|str = logging.INFO,
    log_filename: Optional[str] = None,
    include_console: bool = True,
    external_level: int = logging.WARNING
) -> logging.Logger:
    """
    Configure logging for a command or a module.

    An empty *name* (or ``"root"``) replaces the root logger's handlers. Any
    other name gets its own handlers only while the root has none; after that
    it propagates to the root.

    Args:
        name: Logger name, usually ``__name__``
        level: Level for our loggers, as an int or a name such as ``"DEBUG"``
        log_filename: File under the log directory, or None for no file
        include_console: Also log to stderr
        external_level: Level applied to :data:`EXTERNAL_LOGGERS`

    Returns:
        The configured logger
    """
    level = _resolve_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    configure_external_loggers(external_level)

    if not name or name == "root":
        root_logger.handlers.clear()
        for handler in _build_handlers(level, log_filename, include_console):
            root_logger.addHandler(handler)
        return root_logger

    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not root_logger.hasHandlers():
        for handler in _build_handlers(level, log_filename, include_console):
            logger.addHandler(handler)
    return logger


# Third-party loggers that are chatty at INFO
EXTERNAL_LOGGERS = (
    "aiohttp",
    "urllib3",
    "asyncio",
    "PIL",
    "pyglet",
)


def configure_external_loggers(level: int = logging.WARNING) -> None:
    """Raise third-party loggers to *level*; their warnings still reach our handlers."""
    for logger_name in EXTERNAL_LOGGERS:
        logging.getLogger(logger_name).setLevel(level)
