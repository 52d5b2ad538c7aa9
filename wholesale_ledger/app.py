from __future__ import annotations

import logging
from pathlib import Path

from .database import Database
from .database.repositories import (
    CategoriesRepo,
    ClientsRepo,
    ExpensesRepo,
    InvoicesRepo,
    ReportingRepo,
    SettingsRepo,
    StockRepo,
)

_log = logging.getLogger(__name__)


class LedgerApp:
    """
    Application entry point: owns the Database lifecycle and hands the same
    instance to every repository.

        with LedgerApp("shop.db") as app:
            app.invoices.create_invoice(...)
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        *,
        ready_timeout: float | None = None,
        max_payment_amount: float | None = None,
    ):
        self.db = Database(db_path, ready_timeout=ready_timeout)
        self.categories = CategoriesRepo(self.db)
        self.stock = StockRepo(self.db)
        self.clients = ClientsRepo(self.db)
        self.invoices = InvoicesRepo(
            self.db, self.stock, self.clients, max_payment_amount=max_payment_amount
        )
        self.expenses = ExpensesRepo(self.db)
        self.settings = SettingsRepo(self.db)
        self.reporting = ReportingRepo(self.db)

    def open(self) -> "LedgerApp":
        self.db.open()
        return self

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "LedgerApp":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
