from __future__ import annotations

import os
from pathlib import Path

from .constants import DATA_DIR, DB_FILE_NAME

BASE_DIR = Path(__file__).resolve().parent
DATA_PATH = Path(os.environ.get("WHOLESALE_LEDGER_DATA_DIR", BASE_DIR / DATA_DIR))
DB_PATH = Path(os.environ.get("WHOLESALE_LEDGER_DB", DATA_PATH / DB_FILE_NAME))
TEMPLATES_DIR = BASE_DIR / "templates"

LOG_LEVEL = os.environ.get("WHOLESALE_LEDGER_LOG_LEVEL", "INFO").upper()

# seconds a caller waits for Database.open() before DatabaseNotReadyError
READY_TIMEOUT = float(os.environ.get("WHOLESALE_LEDGER_READY_TIMEOUT", "5.0"))

# upper bound for a single received payment; unset means no bound
_max_payment = os.environ.get("WHOLESALE_LEDGER_MAX_PAYMENT")
MAX_PAYMENT_AMOUNT: float | None = float(_max_payment) if _max_payment else None
