import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import Config

# Third-party loggers that log every frame or connection at DEBUG
LIBRARY_LOGGERS: List[str] = ["websockets", "urllib3", "asyncio"]


def log_file_path(log_dir: Path, ticker: Optional[str] = None) -> Path:
    """polychart[_TICKER]_YYYYmmdd_HHMMSS.log; ':' in tickers is not filename-safe"""
    label: str = f"_{ticker.replace(':', '-')}" if ticker else ""
    return log_dir / f"polychart{label}_{datetime.now():%Y%m%d_%H%M%S}.log"


def setup_logging(
    config: Config,
    ticker: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    Configure the ``polychart`` logger from ``config``: console output always,
    plus a per-run file under ``log_dir`` (default ``config.LOG_DIR``) unless
    that is None. Client libraries are capped at ``config.LIBRARY_LOG_LEVEL``.
    """
    logger: logging.Logger = logging.getLogger("polychart")
    logger.setLevel(config.LOG_LEVEL)
    logger.propagate = False

    if logger.hasHandlers():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    formatter = logging.Formatter(config.LOG_FORMAT, config.LOG_DATE_FORMAT)

    console_handler: logging.StreamHandler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    directory: Optional[Path] = log_dir or (Path(config.LOG_DIR) if config.LOG_DIR else None)
    if directory is not None:
        directory.mkdir(parents=True, exist_ok=True)
        file_handler: logging.FileHandler = logging.FileHandler(
            log_file_path(directory, ticker), encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(config.LIBRARY_LOG_LEVEL, config.LOG_LEVEL))

    return logger
