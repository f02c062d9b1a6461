import logging
import os
import re
from pathlib import Path
from logging.handlers import RotatingFileHandler
from at.common.setup import PATHS
from datetime import datetime

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_DATA_URL = re.compile(r"(data:image/[\w.+-]+;base64,)([A-Za-z0-9+/=]+)")
_BEARER = re.compile(r"(Bearer\s+)\S+", re.IGNORECASE)

# Selfies travel as base64 data URLs and requests carry the API token, neither belongs in a log file.
class RedactFilter(logging.Filter):

    def filter(self, record):
        message = record.getMessage()
        redacted = _DATA_URL.sub(lambda m: f"{m.group(1)}<{len(m.group(2))} chars>", message)
        redacted = _BEARER.sub(r"\1***", redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True

def _has_handler(logger, handler_name):
    return any(h.get_name() == handler_name for h in logger.handlers)

def _attach(logger, handler_name, handler, level):
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT,LOG_DATE_FORMAT))
    handler.addFilter(RedactFilter())
    handler.set_name(handler_name)
    logger.addHandler(handler)
    return handler

# Keeps the newest `keep` per-run debug files.
def _prune_debug_runs(debug_dir: Path, name, keep):
    runs = sorted(debug_dir.glob(f"{name}_*.log"),key=lambda p: p.stat().st_mtime,reverse=True)
    for run in runs[keep:]:
        try:
            run.unlink()
        except OSError:
            logging.getLogger(name).debug(f"Could not prune old debug log {run}")

def _level_from_env(default):
    value = os.getenv("ATTENDANCE_TIMER_LOG_LEVEL")
    if not value:
        return default
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else default

def get_logger(
        name = "attendancetimer",
        level = logging.INFO,
        log_dir: Path | None = None,
        max_bytes = 5 * 1024 * 1024,
        backup_count = 5,
        keep_debug_runs: int = 10,
        console_level = None
) -> logging.Logger:
    """The service's logger.

    ``<name>.log`` rotates and holds everything at ``level`` across runs,
    ``latest.log`` only the current run.  Every run also gets its own full
    DEBUG file under ``debug/`` so a sync that went wrong can be traced after
    the fact; only the newest ``keep_debug_runs`` are kept.  Calling it again
    for the same name reuses the existing handlers.
    """
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(logging.DEBUG if keep_debug_runs > 0 else level)

    log_dir = log_dir or PATHS.logs
    log_dir.mkdir(parents=True,exist_ok=True)

    if not _has_handler(logger, f"{name}:persistent"):
        _attach(logger, f"{name}:persistent",
                RotatingFileHandler(log_dir / f"{name}.log", maxBytes=max_bytes, backupCount=backup_count,
                                    encoding="utf-8"),
                level)

    # Overwritten each run
    if not _has_handler(logger, f"{name}:latest"):
        _attach(logger, f"{name}:latest", logging.FileHandler(log_dir / "latest.log", mode="w", encoding="utf-8"), level)

    if keep_debug_runs > 0 and not _has_handler(logger, f"{name}:debug_run"):
        debug_dir = log_dir / "debug"
        debug_dir.mkdir(parents=True,exist_ok=True)
        this_run = debug_dir / f"{name}_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
        _attach(logger, f"{name}:debug_run", logging.FileHandler(this_run, encoding="utf-8"), logging.DEBUG)
        _prune_debug_runs(debug_dir, name, keep_debug_runs)

    if console_level is not None:
        enable_console(console_level, logger)

    return logger

# Console output for the command line. Raises or lowers the level if it's already on.
def enable_console(level = logging.WARNING, logger = None):
    logger = logger or log
    console_handler_name = f"{logger.name}:console"
    for handler in logger.handlers:
        if handler.get_name() == console_handler_name:
            handler.setLevel(level)
            return logger
    _attach(logger, console_handler_name, logging.StreamHandler(), level)
    return logger

log = get_logger(level=_level_from_env(logging.INFO))
log.debug(f"Logging to {PATHS.logs}")
