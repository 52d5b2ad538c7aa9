from __future__ import annotations

"""
Repository for expenses and expense categories.

Same validation and normalization style as `ClientsRepo`/`StockRepo`:
non-empty descriptions, non-negative amounts, ISO business dates.

Schema reference (see `database/schema.py`):

CREATE TABLE expense_categories (
    id TEXT PRIMARY KEY, name TEXT NOT NULL UNIQUE, icon TEXT, color TEXT, created_at TEXT NOT NULL
);

CREATE TABLE expenses (
    id TEXT PRIMARY KEY,
    category_id TEXT NOT NULL REFERENCES expense_categories(id) ON DELETE RESTRICT,
    amount REAL NOT NULL CHECK (amount >= 0),
    description TEXT NOT NULL,
    date TEXT NOT NULL,
    is_recurring INTEGER NOT NULL DEFAULT 0,
    recurring_frequency TEXT,   -- DAILY | WEEKLY | MONTHLY | NULL
    notes TEXT, created_at TEXT NOT NULL, updated_at TEXT NOT NULL
);

Deleting a category that still has expenses raises ConstraintViolationError.
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ...constants import RECURRING_FREQUENCIES
from ...modules.payments.payment_utilities.calculations import round_money
from ...utils.helpers import now_str, to_date_str
from ...utils.id_generator import generate_uuid
from ...utils.validators import non_empty, normalize_text, try_parse_float
from .errors import (
    CategoryNotFoundError,
    ConstraintViolationError,
    ExpenseNotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from .. import Database

_log = logging.getLogger(__name__)


@dataclass
class ExpenseCategory:
    id: str
    name: str
    icon: str | None
    color: str | None


@dataclass
class Expense:
    id: str
    category_id: str
    category_name: str | None
    amount: float
    description: str
    date: str
    is_recurring: bool
    recurring_frequency: str | None
    notes: str | None
    created_at: str


_EXPENSE_SELECT = """
    SELECT e.id,
           e.category_id,
           c.name AS category_name,
           e.amount,
           e.description,
           e.date,
           e.is_recurring,
           e.recurring_frequency,
           e.notes,
           e.created_at
    FROM expenses e
    LEFT JOIN expense_categories c ON c.id = e.category_id
"""
_ORDER = " ORDER BY e.date DESC, e.created_at DESC, e.rowid DESC"


def _row_to_expense(r: sqlite3.Row) -> Expense:
    return Expense(
        id=r["id"],
        category_id=r["category_id"],
        category_name=r["category_name"],
        amount=float(r["amount"]),
        description=r["description"],
        date=r["date"],
        is_recurring=bool(r["is_recurring"]),
        recurring_frequency=r["recurring_frequency"],
        notes=r["notes"],
        created_at=r["created_at"],
    )


def _date(value) -> str:
    try:
        return to_date_str(value)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def _recurrence(is_recurring: bool, frequency: Optional[str]) -> Optional[str]:
    if not is_recurring:
        return None
    freq = (frequency or "").strip().upper()
    if freq not in RECURRING_FREQUENCIES:
        raise ValidationError(
            "Recurring expenses need a frequency: " + ", ".join(RECURRING_FREQUENCIES)
        )
    return freq


class ExpensesRepo:
    """
    CRUD for expense categories and expenses, plus simple aggregates
    (total for a period, total per category).
    """

    def __init__(self, db: "Database"):
        self.db = db

    # ------------------------------------------------------------------
    # Category operations
    # ------------------------------------------------------------------

    def list_categories(self) -> List[ExpenseCategory]:
        """Return all expense categories ordered by name."""
        rows = self.db.query_all("SELECT id, name, icon, color FROM expense_categories ORDER BY name")
        return [ExpenseCategory(**dict(r)) for r in rows]

    def get_category(self, category_id: str) -> ExpenseCategory | None:
        r = self.db.query_one(
            "SELECT id, name, icon, color FROM expense_categories WHERE id=?", (category_id,)
        )
        return ExpenseCategory(**dict(r)) if r else None

    def _require_category(self, category_id: str) -> ExpenseCategory:
        cat = self.get_category(category_id)
        if cat is None:
            raise CategoryNotFoundError(f"Expense category {category_id} not found.")
        return cat

    def create_category(self, name: str, icon: str | None = None, color: str | None = None) -> ExpenseCategory:
        """Insert a new expense category. Duplicate names raise ConstraintViolationError."""
        if not non_empty(name):
            raise ValidationError("Name cannot be empty.")
        cat_id = generate_uuid()
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO expense_categories(id, name, icon, color, created_at) VALUES (?, ?, ?, ?, ?)",
                    (cat_id, normalize_text(name), normalize_text(icon), normalize_text(color), now_str()),
                )
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError(f"Expense category {name.strip()!r} already exists.") from e
        return self._require_category(cat_id)

    def update_category(
        self,
        category_id: str,
        name: str | None = None,
        icon: str | None = None,
        color: str | None = None,
    ) -> ExpenseCategory:
        current = self._require_category(category_id)
        if name is not None and not non_empty(name):
            raise ValidationError("Name cannot be empty.")
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "UPDATE expense_categories SET name=?, icon=?, color=? WHERE id=?",
                    (
                        normalize_text(name) if name is not None else current.name,
                        normalize_text(icon) if icon is not None else current.icon,
                        normalize_text(color) if color is not None else current.color,
                        category_id,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError("An expense category with that name already exists.") from e
        return self._require_category(category_id)

    def delete_category(self, category_id: str) -> None:
        """Remove a category. Translate FK violations into a domain error."""
        self._require_category(category_id)
        try:
            with self.db.transaction() as conn:
                conn.execute("DELETE FROM expense_categories WHERE id=?", (category_id,))
        except sqlite3.IntegrityError as e:
            # category is referenced by existing expenses
            raise ConstraintViolationError(
                "Cannot delete a category that is used by existing expenses."
            ) from e

    # ------------------------------------------------------------------
    # Expense operations
    # ------------------------------------------------------------------

    def list_expenses(self, category_id: Optional[str] = None) -> List[Expense]:
        """Expenses newest first, optionally for one category."""
        if category_id is not None:
            rows = self.db.query_all(_EXPENSE_SELECT + " WHERE e.category_id = ?" + _ORDER, (category_id,))
        else:
            rows = self.db.query_all(_EXPENSE_SELECT + _ORDER)
        return [_row_to_expense(r) for r in rows]

    def list_by_category(self, category_id: str) -> List[Expense]:
        self._require_category(category_id)
        return self.list_expenses(category_id)

    def list_by_date_range(self, date_from, date_to) -> List[Expense]:
        """Inclusive range on the business date."""
        rows = self.db.query_all(
            _EXPENSE_SELECT + " WHERE e.date BETWEEN ? AND ?" + _ORDER,
            (_date(date_from), _date(date_to)),
        )
        return [_row_to_expense(r) for r in rows]

    def get(self, expense_id: str) -> Expense | None:
        r = self.db.query_one(_EXPENSE_SELECT + " WHERE e.id = ?", (expense_id,))
        return _row_to_expense(r) if r else None

    def require(self, expense_id: str) -> Expense:
        exp = self.get(expense_id)
        if exp is None:
            raise ExpenseNotFoundError(f"Expense {expense_id} not found.")
        return exp

    @staticmethod
    def _amount(value: Any) -> float:
        ok, val = try_parse_float(value)
        if not ok or val is None or val < 0:
            raise ValidationError("Amount must be non-negative.")
        return round_money(val)

    def create(
        self,
        category_id: str,
        amount: float,
        description: str,
        *,
        date=None,
        is_recurring: bool = False,
        recurring_frequency: str | None = None,
        notes: str | None = None,
    ) -> Expense:
        """
        Insert a new expense. `description` must be non-empty and `amount`
        non-negative; `date` defaults to today.
        """
        if not non_empty(description):
            raise ValidationError("Description cannot be empty.")
        amount_v = self._amount(amount)
        freq = _recurrence(is_recurring, recurring_frequency)
        self._require_category(category_id)

        expense_id = generate_uuid()
        ts = now_str()
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO expenses(id, category_id, amount, description, date, is_recurring, "
                "recurring_frequency, notes, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    expense_id, category_id, amount_v, normalize_text(description), _date(date),
                    1 if freq else 0, freq, normalize_text(notes), ts, ts,
                ),
            )
        _log.info("Recorded expense %s: %g", expense_id, amount_v)
        return self.require(expense_id)

    def update(self, expense_id: str, **fields: Any) -> Expense:
        """
        Update any of: category_id, amount, description, date, is_recurring,
        recurring_frequency, notes. Same validation rules as `create`.
        """
        allowed = {"category_id", "amount", "description", "date", "is_recurring", "recurring_frequency", "notes"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError("Unknown expense field(s): " + ", ".join(sorted(unknown)))
        current = self.require(expense_id)

        category_id = fields.get("category_id", current.category_id)
        if category_id != current.category_id:
            self._require_category(category_id)
        description = fields.get("description", current.description)
        if not non_empty(description):
            raise ValidationError("Description cannot be empty.")
        amount_v = self._amount(fields.get("amount", current.amount))
        is_recurring = bool(fields.get("is_recurring", current.is_recurring))
        freq = _recurrence(is_recurring, fields.get("recurring_frequency", current.recurring_frequency))
        date_v = _date(fields.get("date", current.date))
        notes = fields.get("notes", current.notes)

        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE expenses
                SET category_id = ?, amount = ?, description = ?, date = ?,
                    is_recurring = ?, recurring_frequency = ?, notes = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    category_id, amount_v, normalize_text(description), date_v,
                    1 if freq else 0, freq, normalize_text(notes), now_str(), expense_id,
                ),
            )
        return self.require(expense_id)

    def delete(self, expense_id: str) -> None:
        """Delete an expense by ID."""
        self.require(expense_id)
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))
        _log.info("Deleted expense %s", expense_id)

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def total_by_period(self, date_from, date_to) -> float:
        r = self.db.query_one(
            "SELECT COALESCE(SUM(amount), 0) AS total FROM expenses WHERE date BETWEEN ? AND ?",
            (_date(date_from), _date(date_to)),
        )
        return round_money(r["total"])

    def total_by_category(self, date_from=None, date_to=None) -> List[Dict]:
        """
        Amount spent per category, optionally within an inclusive date range.

        Includes categories with no expenses (total = 0.0). Returns a list
        ordered by category name with keys: category_id, category_name,
        total_amount.
        """
        join_cond = "e.category_id = c.id"
        params: List[Any] = []
        if date_from is not None:
            join_cond += " AND e.date >= ?"
            params.append(_date(date_from))
        if date_to is not None:
            join_cond += " AND e.date <= ?"
            params.append(_date(date_to))
        rows = self.db.query_all(
            f"""
            SELECT c.id AS category_id,
                   c.name AS category_name,
                   CAST(COALESCE(SUM(e.amount), 0) AS REAL) AS total_amount
            FROM expense_categories c
            LEFT JOIN expenses e ON {join_cond}
            GROUP BY c.id, c.name
            ORDER BY c.name
            """,
            params,
        )
        return [dict(r) for r in rows]
