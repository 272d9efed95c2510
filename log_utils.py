import logging
from logging.handlers import RotatingFileHandler
import os

import config

# Relative paths resolve against the working directory of the consumer process.
LOG_FILE = os.getenv("WATCHLIST_SYNC_LOG_FILE", os.path.join("logs", "watchlist_sync.log"))


class _ProgressNoiseFilter(logging.Filter):
    """Drop per-key progress chatter but keep cycle lifecycle lines and problems."""

    _DROP_SUBSTRS = (
        "Full fetch OK",
        "Fetching full record",
        "Price batch OK",
        "Waiting before next",
        "Timer tick",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        if not config.log_quiet():
            return True
        msg = record.getMessage()
        return not any(s in msg for s in self._DROP_SUBSTRS)


_NOISE_FILTER = _ProgressNoiseFilter()


def setup_logger(name: str) -> logging.Logger:
    """Configure and return a module-level logger.

    Logs are written to both console and a rotating file to persist
    information for debugging. Subsequent calls with the same name
    return the already configured logger.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_NOISE_FILTER)
    logger.addHandler(console_handler)
    if LOG_FILE:
        directory = os.path.dirname(LOG_FILE)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            # Rotating file handler keeps last 5 logs of ~1MB each
            file_handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5)
        except OSError:
            logger.warning("Log file %s not writable; logging to console only", LOG_FILE)
        else:
            file_handler.setFormatter(formatter)
            file_handler.addFilter(_NOISE_FILTER)
            logger.addHandler(file_handler)
    return logger


def read_logs(tail: int = 100) -> str:
    """Return the last ``tail`` lines from the log file.

    If the log file does not exist, an empty string is returned.

    Parameters
    ----------
    tail : int, optional
        The number of lines from the end of the log to return. Defaults
        to 100.

    Returns
    -------
    str
        The concatenated log lines.
    """
    if not LOG_FILE or not os.path.exists(LOG_FILE):
        return ""
    with open(LOG_FILE, "r") as f:
        lines = f.readlines()
    if tail <= 0:
        return "".join(lines)
    return "".join(lines[-tail:])
