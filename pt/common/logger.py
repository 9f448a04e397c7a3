import logging
import os
from pathlib import Path
from logging.handlers import RotatingFileHandler
from pt.common.setup import PATHS

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Overrides the level of the shared `log`, e.g. PILLTRACKER_LOG_LEVEL=WARNING
LOG_LEVEL_ENV = "PILLTRACKER_LOG_LEVEL"

def _level_from_env(default):
    raw = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    level = logging.getLevelName(raw) if raw else default
    return level if isinstance(level, int) else default

# Adds the handler built by `factory` unless one with the same name is already attached.
def _add_handler_once(logger, handler_name, factory, level, fmt):
    if any(h.get_name() == handler_name for h in logger.handlers):
        return
    handler = factory()
    handler.setLevel(level)
    handler.setFormatter(fmt)
    handler.set_name(handler_name)
    logger.addHandler(handler)

def get_logger(
        name = "pilltracker",
        level = logging.INFO,
        log_dir: Path | None = None,
        max_bytes = 2 * 1024 * 1024,
        backup_count = 3,
        persistent = True,
        console = False,
) -> logging.Logger:
    """Named logger writing to ``<name>.log`` (rotating) and ``latest.log`` (this run only).

    Calling it again for the same name reuses the handlers already attached.
    """
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(level)

    log_dir = log_dir or PATHS.logs
    log_dir.mkdir(parents=True, exist_ok=True)
    fmt = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    if persistent:
        _add_handler_once(logger, f"{name}:persistent", lambda: RotatingFileHandler(
            filename=log_dir / f"{name}.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        ), level, fmt)
    _add_handler_once(logger, f"{name}:latest", lambda: logging.FileHandler(
        filename=log_dir / "latest.log", mode="w", encoding="utf-8", delay=True,
    ), level, fmt)
    if console:
        _add_handler_once(logger, f"{name}:console", logging.StreamHandler, level, fmt)

    return logger

log = get_logger(level=_level_from_env(logging.DEBUG))
