"""Canteen point of sale and member ledger backed by an Excel workbook.

Importing the package sets up the shared ``log`` used by every layer. Ledger
activity is written to a rotating file under ``.logs/``. The console only
shows warnings and errors, so CLI output stays readable.

``CANTEEN_LEDGER_LOG_DIR`` moves the log directory and
``CANTEEN_LEDGER_LOG_LEVEL`` changes the file verbosity (``DEBUG`` shows
cache activity and balance recomputation).
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("CANTEEN_LEDGER_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "canteen_ledger.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUPS = 5


def _file_level() -> int:
    # getLevelName maps a known name to its number, anything else to a string
    level = logging.getLevelName(os.environ.get("CANTEEN_LEDGER_LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    file_level = _file_level()
    logger.setLevel(min(file_level, logging.WARNING))
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUPS,
            encoding="utf-8",
        )
    except OSError as exc:
        # read-only installs still get console logging
        print(f"Warning: ledger log disabled, cannot open '{LOG_FILE}': {exc}", file=sys.stderr)
    else:
        file_handler.setLevel(file_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Ledger logging ready (file=%s)", LOG_FILE)
