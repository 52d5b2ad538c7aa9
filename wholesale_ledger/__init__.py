"""Wholesale trading back end: stock ledger, client balances and invoice settlement on SQLite."""
from .constants import APP_NAME

__version__ = "1.1.0"

__all__ = ["APP_NAME", "__version__"]
