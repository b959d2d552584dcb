# common/logging.py
from __future__ import annotations
import logging, os
from logging.handlers import RotatingFileHandler
from typing import Optional

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"

def _level_from_env(default: str = "INFO") -> int:
    env = os.getenv("BOOTH_LOG_LEVEL") or os.getenv("LOG_LEVEL") or default
    return _LEVELS.get(env.upper(), logging.INFO)

def _log_dir_from_env(default: str = "logs") -> str:
    return os.getenv("BOOTH_LOG_DIR", default)

def get_logger(name: str, log_dir: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Booth logger writing to:
      - stdout (console)
      - <log_dir>/<name>.log (rotating: 5MB x 5 files)
    log_dir defaults to $BOOTH_LOG_DIR or ./logs, level to $BOOTH_LOG_LEVEL / $LOG_LEVEL.
    Idempotent: calling twice returns the same configured logger.
    """
    logger = logging.getLogger(name)
    if logger.handlers:  # already configured
        return logger

    log_dir = log_dir or _log_dir_from_env()
    os.makedirs(log_dir, exist_ok=True)
    log_level = _LEVELS.get(level.upper(), _level_from_env()) if level else _level_from_env()

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    # File (rotating)
    fh = RotatingFileHandler(
        filename=os.path.join(log_dir, f"{name}.log"),
        maxBytes=5_000_000,
        backupCount=5,
        encoding="utf-8",
    )
    fh.setFormatter(fmt)
    fh.setLevel(log_level)

    # Console
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    ch.setLevel(log_level)

    logger.addHandler(fh)
    logger.addHandler(ch)
    logger.setLevel(log_level)
    logger.propagate = False
    return logger

def set_level(level: str) -> None:
    """Re-level every booth logger created so far (used when config overrides the env)."""
    lvl = _LEVELS.get(str(level).upper(), logging.INFO)
    for logger in logging.Logger.manager.loggerDict.values():
        if isinstance(logger, logging.Logger) and logger.handlers and not logger.propagate:
            logger.setLevel(lvl)
            for h in logger.handlers:
                h.setLevel(lvl)
