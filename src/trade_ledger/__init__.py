"""Trade Ledger: customer credit, stock, and cash accounts in one workbook.

Importing the package wires a single package logger. Records go to a rotating
file under ``.logs/`` at the project root (or ``TRADE_LEDGER_LOG_DIR``) and
warnings also reach stderr so CLI users see rejected commands.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


__version__ = "1.0.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("TRADE_LEDGER_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "trade_ledger.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _file_handler(formatter: logging.Formatter) -> logging.Handler:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level_name = os.environ.get("TRADE_LEDGER_LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        logger.addHandler(_file_handler(formatter))
    except OSError as exc:
        # Read-only installs still get console output.
        print(f"Warning: ledger log disabled, cannot write '{LOG_FILE}': {exc}", file=sys.stderr)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.WARNING)
    console.setFormatter(formatter)
    logger.addHandler(console)
    return logger


log = _configure_logging()
log.debug("Trade Ledger %s logging to '%s'", __version__, LOG_FILE)
