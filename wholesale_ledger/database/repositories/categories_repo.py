from __future__ import annotations
from dataclasses import dataclass
import logging
import sqlite3
from typing import TYPE_CHECKING

from ...utils.helpers import now_str
from ...utils.id_generator import generate_uuid
from ...utils.validators import non_empty, normalize_text
from .errors import CategoryNotFoundError, ConstraintViolationError, ValidationError

if TYPE_CHECKING:
    from .. import Database

_log = logging.getLogger(__name__)

PATH_SEPARATOR = " > "


@dataclass
class Category:
    id: str
    name: str
    parent_id: str | None
    level: int
    created_at: str
    updated_at: str


def _row_to_category(r: sqlite3.Row) -> Category:
    return Category(
        id=r["id"],
        name=r["name"],
        parent_id=r["parent_id"],
        level=int(r["level"]),
        created_at=r["created_at"],
        updated_at=r["updated_at"],
    )


class CategoriesRepo:
    """Hierarchical product taxonomy. Roots have level 0; children are parent.level + 1."""

    def __init__(self, db: "Database"):
        self.db = db

    # ---- Queries ----------------------------------------------------------

    def list_categories(self) -> list[Category]:
        rows = self.db.query_all(
            "SELECT id, name, parent_id, level, created_at, updated_at "
            "FROM categories ORDER BY level, name"
        )
        return [_row_to_category(r) for r in rows]

    def get(self, category_id: str) -> Category | None:
        r = self.db.query_one(
            "SELECT id, name, parent_id, level, created_at, updated_at "
            "FROM categories WHERE id=?",
            (category_id,),
        )
        return _row_to_category(r) if r else None

    def require(self, category_id: str) -> Category:
        cat = self.get(category_id)
        if cat is None:
            raise CategoryNotFoundError(f"Category {category_id} not found.")
        return cat

    def roots(self) -> list[Category]:
        rows = self.db.query_all(
            "SELECT id, name, parent_id, level, created_at, updated_at "
            "FROM categories WHERE parent_id IS NULL ORDER BY name"
        )
        return [_row_to_category(r) for r in rows]

    def children(self, parent_id: str) -> list[Category]:
        rows = self.db.query_all(
            "SELECT id, name, parent_id, level, created_at, updated_at "
            "FROM categories WHERE parent_id=? ORDER BY name",
            (parent_id,),
        )
        return [_row_to_category(r) for r in rows]

    def has_children(self, category_id: str) -> bool:
        r = self.db.query_one("SELECT 1 FROM categories WHERE parent_id=? LIMIT 1", (category_id,))
        return r is not None

    def full_path(self, category_id: str) -> str:
        """'Grocery > Rice > Basmati' style path from the root down."""
        names: list[str] = []
        seen: set[str] = set()
        current = self.require(category_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            names.append(current.name)
            current = self.get(current.parent_id) if current.parent_id else None
        return PATH_SEPARATOR.join(reversed(names))

    # ---- Mutations --------------------------------------------------------

    def create(self, name: str, parent_id: str | None = None) -> Category:
        if not non_empty(name):
            raise ValidationError("Category name cannot be empty.")
        level = 0
        if parent_id is not None:
            level = self.require(parent_id).level + 1

        cat_id = generate_uuid()
        ts = now_str()
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO categories(id, name, parent_id, level, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (cat_id, normalize_text(name), parent_id, level, ts, ts),
            )
        _log.info("Created category %s (level %d)", cat_id, level)
        return self.require(cat_id)

    def update(self, category_id: str, name: str) -> Category:
        if not non_empty(name):
            raise ValidationError("Category name cannot be empty.")
        self.require(category_id)
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE categories SET name=?, updated_at=? WHERE id=?",
                (normalize_text(name), now_str(), category_id),
            )
        return self.require(category_id)

    def _is_referenced(self, category_id: str) -> bool:
        r = self.db.query_one(
            "SELECT 1 FROM stock_items WHERE category_id=? LIMIT 1", (category_id,)
        )
        return r is not None

    def delete(self, category_id: str) -> None:
        """
        Hard delete. Refuses while sub-categories or stock items (including
        soft-deleted ones) still point at the category.
        """
        self.require(category_id)
        if self.has_children(category_id):
            raise ConstraintViolationError("Cannot delete a category that has sub-categories.")
        if self._is_referenced(category_id):
            raise ConstraintViolationError("Cannot delete a category that is used by stock items.")
        try:
            with self.db.transaction() as conn:
                conn.execute("DELETE FROM categories WHERE id=?", (category_id,))
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError("Category is still referenced.") from e
        _log.info("Deleted category %s", category_id)
