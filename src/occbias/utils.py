"""
Shared helpers: logging setup, relative paths for log messages and
integer casting of summary tables.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from . import config

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

logger = logging.getLogger("occbias")


def rel(path: Path) -> str:
    """
    Return path as a string relative to the project root,
    so that absolute system paths do not appear in logs.
    """
    try:
        return str(Path(path).resolve().relative_to(config.PROJECT_ROOT))
    except ValueError:
        return str(path)


def setup_logging(name: str, log_dir: Optional[Path] = None) -> Path:
    """
    Attach a timestamped file handler to the package logger.

    One log file is created per run under logs/<name>/. Existing handlers
    are cleared to avoid duplicated entries when the pipeline is run more
    than once in the same interpreter (e.g. from a notebook).
    """
    log_dir = Path(log_dir) if log_dir is not None else config.LOG_DIR / name
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M")
    logfile = log_dir / f"{name}_{timestamp}.log"

    logger.setLevel(logging.INFO)
    if logger.hasHandlers():
        logger.handlers.clear()

    file_handler = logging.FileHandler(logfile, mode="a", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)

    return logfile


def log(msg: str) -> None:
    """Log message to stdout and to the run log file."""
    print(msg)
    logger.info(msg)


def cast_int_columns(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """
    Convert numeric columns (e.g. years, counts) to nullable integer (Int64)
    so that values are stored as plain integers in the CSV (e.g. 1998, not 1998.0).
    """
    for col in columns:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce").astype("Int64")
    return df
