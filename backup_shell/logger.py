import logging
import os
import sys

# Engine output is never written to a session log file; the engine keeps its own logs.

_LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "warn": logging.WARNING,
}


class CategoryFilter(logging.Filter):
    """Pass only records whose last logger-name segment is listed.

    ``backup_shell.process`` has category ``process``.
    """

    def __init__(self, categories) -> None:
        super().__init__()
        self.categories = frozenset(categories)

    def filter(self, record: logging.LogRecord) -> bool:
        return (record.name or "").rsplit(".", 1)[-1] in self.categories


def setup_logger(level: int = logging.INFO, name: str = "backup_shell") -> logging.Logger:
    """Create or update the project logger.

    - Respects env overrides BACKUP_SHELL_LOG_LEVEL/BACKUP_SHELL_LOG_CATS on every call
      (so late CLI parsing can still take effect).
    - Ensures there is exactly one StreamHandler on the base logger and updates
      its formatter/filters instead of bailing out early.
    """
    logger = logging.getLogger(name)

    env_level = (os.getenv("BACKUP_SHELL_LOG_LEVEL") or "").strip().lower()
    if env_level:
        level = _LEVEL_MAP.get(env_level, level)
    logger.setLevel(level)

    stream_handler: logging.StreamHandler | None = None
    for h in list(logger.handlers):
        if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr:
            stream_handler = h

    if stream_handler is None:
        stream_handler = logging.StreamHandler(stream=sys.stderr)
        logger.addHandler(stream_handler)

    fmt = logging.Formatter(
        fmt="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    stream_handler.setFormatter(fmt)

    # Category filter: BACKUP_SHELL_LOG_CATS=process,backend
    stream_handler.filters.clear()
    cats = (os.getenv("BACKUP_SHELL_LOG_CATS") or "").strip()
    if cats:
        stream_handler.addFilter(CategoryFilter(c.strip() for c in cats.split(",") if c.strip()))

    logger.propagate = False
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    base = setup_logger()
    return base if not name else base.getChild(name)
