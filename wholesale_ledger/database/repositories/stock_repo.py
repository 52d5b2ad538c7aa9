from __future__ import annotations
from dataclasses import dataclass
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

from ...constants import (
    DEFAULT_PERFORMED_BY,
    DEFAULT_UNIT,
    EPSILON,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_TYPES,
)
from ...modules.payments.payment_utilities.calculations import units_from_packs
from ...utils.helpers import now_str
from ...utils.id_generator import generate_sku, generate_uuid
from ...utils.validators import non_empty, normalize_text, try_parse_float
from .errors import (
    CategoryNotFoundError,
    ConstraintViolationError,
    InsufficientStockError,
    StockItemNotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from .. import Database

_log = logging.getLogger(__name__)


@dataclass
class StockItem:
    id: str
    category_id: str
    name: str
    sku: str
    barcode: str | None
    purchase_price: float
    discountable_price: float
    sale_price: float
    current_quantity: float
    min_stock_level: float
    unit: str
    items_in_pack: int | None
    supplier_id: str | None
    description: str | None
    created_at: str
    updated_at: str
    deleted_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None


@dataclass
class StockMovement:
    id: str
    stock_item_id: str
    type: str
    quantity: float
    reason: str
    reference: str | None
    performed_by: str
    created_at: str


@dataclass
class LowStockAlert:
    stock_item: StockItem
    current_quantity: float
    min_level: float
    deficit: float  # min_level - current_quantity, raw


@dataclass
class StockValue:
    item_count: int
    total_quantity: float
    purchase_value: float
    sale_value: float


@dataclass
class CategoryStockValue:
    category_id: str
    category_name: str
    item_count: int
    total_quantity: float
    purchase_value: float
    sale_value: float


_ITEM_COLS = (
    "id, category_id, name, sku, barcode, purchase_price, discountable_price, sale_price, "
    "current_quantity, min_stock_level, unit, items_in_pack, supplier_id, description, "
    "created_at, updated_at, deleted_at"
)

# fields update() may touch; current_quantity changes only through adjust_quantity()
_UPDATABLE = {
    "category_id", "name", "sku", "barcode", "purchase_price", "discountable_price",
    "sale_price", "min_stock_level", "unit", "items_in_pack", "supplier_id", "description",
}
_NON_NEGATIVE = {"purchase_price", "discountable_price", "sale_price", "min_stock_level"}


def _row_to_item(r: sqlite3.Row) -> StockItem:
    return StockItem(
        id=r["id"],
        category_id=r["category_id"],
        name=r["name"],
        sku=r["sku"],
        barcode=r["barcode"],
        purchase_price=float(r["purchase_price"]),
        discountable_price=float(r["discountable_price"]),
        sale_price=float(r["sale_price"]),
        current_quantity=float(r["current_quantity"]),
        min_stock_level=float(r["min_stock_level"]),
        unit=r["unit"],
        items_in_pack=r["items_in_pack"],
        supplier_id=r["supplier_id"],
        description=r["description"],
        created_at=r["created_at"],
        updated_at=r["updated_at"],
        deleted_at=r["deleted_at"],
    )


def _row_to_movement(r: sqlite3.Row) -> StockMovement:
    return StockMovement(
        id=r["id"],
        stock_item_id=r["stock_item_id"],
        type=r["type"],
        quantity=float(r["quantity"]),
        reason=r["reason"],
        reference=r["reference"],
        performed_by=r["performed_by"],
        created_at=r["created_at"],
    )


def _number(value: Any, label: str, *, minimum: float = 0.0, strict: bool = False) -> float:
    ok, val = try_parse_float(value)
    if not ok or val is None:
        raise ValidationError(f"{label} must be a number.")
    if strict and val <= minimum:
        raise ValidationError(f"{label} must be greater than {minimum:g}.")
    if val < minimum:
        raise ValidationError(f"{label} cannot be negative.")
    return val


def _pack_size(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        size = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError("Items in pack must be a whole number.") from e
    if size <= 0:
        raise ValidationError("Items in pack must be positive.")
    return size


class StockRepo:
    """
    Stock items and the append-only movement log.

    Every quantity change is one stock_movements row written in the same
    transaction as the stock_items update.
    """

    def __init__(self, db: "Database"):
        self.db = db

    # ---- Queries ----------------------------------------------------------

    def list_items(self, include_deleted: bool = False) -> list[StockItem]:
        where = "" if include_deleted else "WHERE deleted_at IS NULL "
        rows = self.db.query_all(f"SELECT {_ITEM_COLS} FROM stock_items {where}ORDER BY name")
        return [_row_to_item(r) for r in rows]

    def get(self, stock_item_id: str, include_deleted: bool = False) -> StockItem | None:
        sql = f"SELECT {_ITEM_COLS} FROM stock_items WHERE id=?"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        r = self.db.query_one(sql, (stock_item_id,))
        return _row_to_item(r) if r else None

    def require(self, stock_item_id: str) -> StockItem:
        """Active item or StockItemNotFoundError."""
        item = self.get(stock_item_id)
        if item is None:
            raise StockItemNotFoundError(f"Stock item {stock_item_id} not found.")
        return item

    def get_by_sku(self, sku: str) -> StockItem | None:
        r = self.db.query_one(
            f"SELECT {_ITEM_COLS} FROM stock_items WHERE sku=? AND deleted_at IS NULL",
            ((sku or "").strip(),),
        )
        return _row_to_item(r) if r else None

    def get_by_barcode(self, barcode: str) -> StockItem | None:
        r = self.db.query_one(
            f"SELECT {_ITEM_COLS} FROM stock_items WHERE barcode=? AND deleted_at IS NULL",
            ((barcode or "").strip(),),
        )
        return _row_to_item(r) if r else None

    def list_by_category(self, category_id: str) -> list[StockItem]:
        rows = self.db.query_all(
            f"SELECT {_ITEM_COLS} FROM stock_items "
            "WHERE category_id=? AND deleted_at IS NULL ORDER BY name",
            (category_id,),
        )
        return [_row_to_item(r) for r in rows]

    def search(self, term: str) -> list[StockItem]:
        """LIKE match over name / sku / barcode / description of active items."""
        pattern = f"%{(term or '').strip()}%"
        rows = self.db.query_all(
            f"SELECT {_ITEM_COLS} FROM stock_items "
            "WHERE deleted_at IS NULL AND ("
            "  name LIKE ? OR sku LIKE ? OR "
            "  COALESCE(barcode, '') LIKE ? OR COALESCE(description, '') LIKE ?"
            ") ORDER BY name",
            (pattern, pattern, pattern, pattern),
        )
        return [_row_to_item(r) for r in rows]

    def movements(self, stock_item_id: str) -> list[StockMovement]:
        """Movement log for one item, newest first."""
        if self.get(stock_item_id, include_deleted=True) is None:
            raise StockItemNotFoundError(f"Stock item {stock_item_id} not found.")
        rows = self.db.query_all(
            "SELECT id, stock_item_id, type, quantity, reason, reference, performed_by, created_at "
            "FROM stock_movements WHERE stock_item_id=? "
            "ORDER BY created_at DESC, rowid DESC",
            (stock_item_id,),
        )
        return [_row_to_movement(r) for r in rows]

    def movements_by_reference(self, reference: str) -> list[StockMovement]:
        rows = self.db.query_all(
            "SELECT id, stock_item_id, type, quantity, reason, reference, performed_by, created_at "
            "FROM stock_movements WHERE reference=? ORDER BY created_at, rowid",
            (reference,),
        )
        return [_row_to_movement(r) for r in rows]

    def low_stock_alerts(self) -> list[LowStockAlert]:
        """Active items at or below their minimum level, lowest quantity first."""
        rows = self.db.query_all(
            f"SELECT {_ITEM_COLS} FROM stock_items "
            "WHERE deleted_at IS NULL AND current_quantity <= min_stock_level "
            "ORDER BY current_quantity ASC, name"
        )
        alerts = []
        for r in rows:
            item = _row_to_item(r)
            alerts.append(
                LowStockAlert(
                    stock_item=item,
                    current_quantity=item.current_quantity,
                    min_level=item.min_stock_level,
                    deficit=item.min_stock_level - item.current_quantity,
                )
            )
        return alerts

    # ---- Aggregates (advisory) -------------------------------------------

    def stock_value(self) -> StockValue:
        try:
            r = self.db.query_one(
                "SELECT COUNT(*) AS n, "
                "       COALESCE(SUM(current_quantity), 0) AS qty, "
                "       COALESCE(SUM(current_quantity * purchase_price), 0) AS pv, "
                "       COALESCE(SUM(current_quantity * sale_price), 0) AS sv "
                "FROM stock_items WHERE deleted_at IS NULL"
            )
        except sqlite3.Error:
            _log.exception("stock_value failed; returning zeros")
            return StockValue(0, 0.0, 0.0, 0.0)
        return StockValue(int(r["n"]), float(r["qty"]), float(r["pv"]), float(r["sv"]))

    def stock_value_by_category(self) -> list[CategoryStockValue]:
        try:
            rows = self.db.query_all(
                "SELECT c.id AS category_id, c.name AS category_name, "
                "       COUNT(s.id) AS n, "
                "       COALESCE(SUM(s.current_quantity), 0) AS qty, "
                "       COALESCE(SUM(s.current_quantity * s.purchase_price), 0) AS pv, "
                "       COALESCE(SUM(s.current_quantity * s.sale_price), 0) AS sv "
                "FROM categories c "
                "JOIN stock_items s ON s.category_id = c.id AND s.deleted_at IS NULL "
                "GROUP BY c.id, c.name "
                "ORDER BY pv DESC, c.name"
            )
        except sqlite3.Error:
            _log.exception("stock_value_by_category failed; returning empty list")
            return []
        return [
            CategoryStockValue(
                category_id=r["category_id"],
                category_name=r["category_name"],
                item_count=int(r["n"]),
                total_quantity=float(r["qty"]),
                purchase_value=float(r["pv"]),
                sale_value=float(r["sv"]),
            )
            for r in rows
        ]

    # ---- Stock ledger -----------------------------------------------------

    def adjust_quantity(
        self,
        stock_item_id: str,
        quantity: float,
        *,
        movement_type: str,
        reason: str,
        performed_by: str = DEFAULT_PERFORMED_BY,
        reference: str | None = None,
    ) -> StockItem:
        """
        IN adds `quantity`, OUT subtracts it, ADJUSTMENT sets it as the new
        absolute level. The item update and the movement row commit together;
        an OUT that would go negative raises InsufficientStockError and
        writes nothing.
        """
        mtype = (movement_type or "").strip().upper()
        if mtype not in MOVEMENT_TYPES:
            raise ValidationError("movement_type must be one of: " + ", ".join(MOVEMENT_TYPES))
        qty = _number(quantity, "Quantity", strict=mtype != MOVEMENT_ADJUSTMENT)
        if not non_empty(reason):
            raise ValidationError("Reason cannot be empty.")

        with self.db.transaction() as conn:
            r = conn.execute(
                "SELECT name, current_quantity FROM stock_items WHERE id=? AND deleted_at IS NULL",
                (stock_item_id,),
            ).fetchone()
            if r is None:
                raise StockItemNotFoundError(f"Stock item {stock_item_id} not found.")
            current = float(r["current_quantity"])

            if mtype == MOVEMENT_IN:
                new_qty = current + qty
            elif mtype == MOVEMENT_OUT:
                new_qty = current - qty
                if new_qty < -EPSILON:
                    _log.warning(
                        "Rejected OUT of %g for %s: only %g available", qty, stock_item_id, current
                    )
                    raise InsufficientStockError(stock_item_id, current, qty, name=r["name"])
                new_qty = max(new_qty, 0.0)
            else:
                new_qty = qty

            ts = now_str()
            conn.execute(
                "UPDATE stock_items SET current_quantity=?, updated_at=? WHERE id=?",
                (new_qty, ts, stock_item_id),
            )
            conn.execute(
                "INSERT INTO stock_movements(id, stock_item_id, type, quantity, reason, reference, performed_by, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    generate_uuid(),
                    stock_item_id,
                    mtype,
                    qty,
                    normalize_text(reason),
                    reference,
                    normalize_text(performed_by) or DEFAULT_PERFORMED_BY,
                    ts,
                ),
            )
        _log.info("Stock %s %s %g -> %g (%s)", stock_item_id, mtype, qty, new_qty, reason)
        return self.require(stock_item_id)

    def receive_packs(
        self,
        stock_item_id: str,
        packs: float,
        loose: float = 0.0,
        *,
        reason: str = "Restock",
        performed_by: str = DEFAULT_PERFORMED_BY,
        reference: str | None = None,
    ) -> StockItem:
        """IN movement for whole packs plus loose units, using the item's items_in_pack."""
        packs_v = _number(packs, "Packs", strict=False)
        loose_v = _number(loose, "Loose quantity", strict=False)
        item = self.require(stock_item_id)
        units = units_from_packs(packs_v, loose_v, item.items_in_pack)
        if units <= EPSILON:
            raise ValidationError("Nothing to receive: packs and loose quantity are both 0.")
        return self.adjust_quantity(
            stock_item_id,
            units,
            movement_type=MOVEMENT_IN,
            reason=reason,
            performed_by=performed_by,
            reference=reference,
        )

    # ---- CRUD -------------------------------------------------------------

    def _category_name(self, category_id: str) -> str:
        r = self.db.query_one("SELECT name FROM categories WHERE id=?", (category_id,))
        if r is None:
            raise CategoryNotFoundError(f"Category {category_id} not found.")
        return r["name"]

    def create(
        self,
        category_id: str,
        name: str,
        sku: str | None = None,
        *,
        barcode: str | None = None,
        purchase_price: float = 0.0,
        discountable_price: float = 0.0,
        sale_price: float = 0.0,
        current_quantity: float = 0.0,
        min_stock_level: float = 0.0,
        unit: str = DEFAULT_UNIT,
        items_in_pack: int | None = None,
        supplier_id: str | None = None,
        description: str | None = None,
        performed_by: str = DEFAULT_PERFORMED_BY,
    ) -> StockItem:
        """
        Insert a stock item. A positive opening quantity is recorded as an IN
        movement ("Opening stock") in the same transaction.
        """
        if not non_empty(name):
            raise ValidationError("Name cannot be empty.")
        prices = {
            "purchase_price": _number(purchase_price, "Purchase price"),
            "discountable_price": _number(discountable_price, "Discountable price"),
            "sale_price": _number(sale_price, "Sale price"),
            "min_stock_level": _number(min_stock_level, "Minimum stock level"),
        }
        opening = _number(current_quantity, "Opening quantity")
        pack = _pack_size(items_in_pack)
        category_name = self._category_name(category_id)
        sku_n = normalize_text(sku) or generate_sku(category_name, name)

        item_id = generate_uuid()
        ts = now_str()
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO stock_items("
                    "  id, category_id, name, sku, barcode, purchase_price, discountable_price, sale_price, "
                    "  current_quantity, min_stock_level, unit, items_in_pack, supplier_id, description, "
                    "  created_at, updated_at"
                    ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        item_id,
                        category_id,
                        normalize_text(name),
                        sku_n,
                        normalize_text(barcode),
                        prices["purchase_price"],
                        prices["discountable_price"],
                        prices["sale_price"],
                        prices["min_stock_level"],
                        normalize_text(unit) or DEFAULT_UNIT,
                        pack,
                        supplier_id,
                        normalize_text(description),
                        ts,
                        ts,
                    ),
                )
                if opening > EPSILON:
                    self.adjust_quantity(
                        item_id,
                        opening,
                        movement_type=MOVEMENT_IN,
                        reason="Opening stock",
                        performed_by=performed_by,
                    )
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError(f"SKU or barcode already in use: {e}") from e
        _log.info("Created stock item %s (%s)", item_id, sku_n)
        return self.require(item_id)

    def update(self, stock_item_id: str, **fields: Any) -> StockItem:
        if "current_quantity" in fields:
            raise ValidationError("current_quantity changes only through adjust_quantity().")
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValidationError("Unknown stock item field(s): " + ", ".join(sorted(unknown)))
        self.require(stock_item_id)
        if not fields:
            return self.require(stock_item_id)

        values: dict[str, Any] = {}
        for key, value in fields.items():
            if key == "name":
                if not non_empty(value):
                    raise ValidationError("Name cannot be empty.")
                values[key] = normalize_text(value)
            elif key == "sku":
                if not non_empty(value):
                    raise ValidationError("SKU cannot be empty.")
                values[key] = normalize_text(value)
            elif key == "unit":
                values[key] = normalize_text(value) or DEFAULT_UNIT
            elif key in _NON_NEGATIVE:
                values[key] = _number(value, key.replace("_", " ").capitalize())
            elif key == "items_in_pack":
                values[key] = _pack_size(value)
            elif key == "category_id":
                self._category_name(value)
                values[key] = value
            elif key in ("barcode", "description"):
                values[key] = normalize_text(value)
            else:
                values[key] = value

        assignments = ", ".join(f"{k}=?" for k in values)
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    f"UPDATE stock_items SET {assignments}, updated_at=? WHERE id=?",
                    (*values.values(), now_str(), stock_item_id),
                )
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError(f"SKU or barcode already in use: {e}") from e
        return self.require(stock_item_id)

    def delete(self, stock_item_id: str) -> None:
        """Soft delete: history (movements, invoice lines) keeps pointing at the row."""
        self.require(stock_item_id)
        ts = now_str()
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE stock_items SET deleted_at=?, updated_at=? WHERE id=?",
                (ts, ts, stock_item_id),
            )
        _log.info("Soft-deleted stock item %s", stock_item_id)
