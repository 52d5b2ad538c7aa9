# wholesale_ledger/constants.py
APP_NAME = "Wholesale Ledger"

DATA_DIR = "data"
DB_FILE_NAME = "wholesale_ledger.db"

TABLE_SCHEMA_VERSION = "schema_version"
SCHEMA_VERSION = "1.1.0"

# ---- Stock movements ----
MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_TYPES: tuple[str, ...] = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT)

DEFAULT_PERFORMED_BY = "system"
DEFAULT_UNIT = "pcs"

# ---- Client ledger ----
ENTRY_SALE = "SALE"
ENTRY_PAYMENT = "PAYMENT"
ENTRY_ADJUSTMENT = "ADJUSTMENT"
ENTRY_RETURN = "RETURN"
LEDGER_ENTRY_TYPES: tuple[str, ...] = (ENTRY_SALE, ENTRY_PAYMENT, ENTRY_ADJUSTMENT, ENTRY_RETURN)
# types record_payment() may write
PAYMENT_ENTRY_TYPES: tuple[str, ...] = (ENTRY_PAYMENT, ENTRY_ADJUSTMENT)

# ---- Invoices ----
STATUS_UNPAID = "UNPAID"
STATUS_PARTIAL = "PARTIAL"
STATUS_PAID = "PAID"
INVOICE_STATUSES: tuple[str, ...] = (STATUS_UNPAID, STATUS_PARTIAL, STATUS_PAID)
OPEN_INVOICE_STATUSES: tuple[str, ...] = (STATUS_UNPAID, STATUS_PARTIAL)

# ---- Expenses ----
RECURRING_FREQUENCIES: tuple[str, ...] = ("DAILY", "WEEKLY", "MONTHLY")

# money/quantity comparisons
EPSILON = 1e-9
