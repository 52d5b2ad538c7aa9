from __future__ import annotations
from dataclasses import dataclass, field
import logging
import sqlite3
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from ...constants import (
    ENTRY_ADJUSTMENT,
    ENTRY_SALE,
    EPSILON,
    LEDGER_ENTRY_TYPES,
)
from ...modules.payments.payment_utilities.calculations import line_total, round_money
from ...utils.helpers import now_str, to_date_str
from ...utils.id_generator import generate_uuid
from ...utils.validators import non_empty, normalize_text, try_parse_float
from .errors import (
    ClientNotFoundError,
    ConstraintViolationError,
    InvoiceNotFoundError,
    StockItemNotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from .. import Database

_log = logging.getLogger(__name__)


@dataclass
class Client:
    id: str
    name: str
    phone: str
    shop_name: str
    whatsapp: str | None
    email: str | None
    dob: str | None
    address: str | None
    area: str | None
    balance: float
    total_business_value: float
    created_at: str
    updated_at: str
    deleted_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None


@dataclass
class LedgerItem:
    stock_item_id: str
    stock_item_name: str
    quantity: float
    unit_price: float
    total: float


@dataclass
class LedgerEntry:
    id: str
    client_id: str
    date: str
    type: str
    description: str
    debit: float
    credit: float
    balance: float
    invoice_id: str | None
    notes: str | None
    created_at: str
    items: list[LedgerItem] = field(default_factory=list)


@dataclass
class BalanceAudit:
    client_id: str
    stored_balance: float
    derived_balance: float
    last_snapshot: float | None
    entry_count: int
    first_bad_snapshot_id: str | None = None

    @property
    def consistent(self) -> bool:
        last_ok = self.last_snapshot is None or abs(self.last_snapshot - self.stored_balance) <= EPSILON
        return (
            abs(self.stored_balance - self.derived_balance) <= EPSILON
            and last_ok
            and self.first_bad_snapshot_id is None
        )


@dataclass
class ReceivablesSummary:
    total_receivable: float
    total_payable: float
    clients_owing: int
    clients_in_credit: int


_CLIENT_COLS = (
    "id, name, phone, shop_name, whatsapp, email, dob, address, area, "
    "balance, total_business_value, created_at, updated_at, deleted_at"
)
_ENTRY_COLS = (
    "id, client_id, date, type, description, debit, credit, balance, "
    "invoice_id, notes, created_at"
)
_PROFILE_FIELDS = {"name", "phone", "shop_name", "whatsapp", "email", "dob", "address", "area"}
_REQUIRED_FIELDS = {"name": "Name", "phone": "Phone", "shop_name": "Shop name"}
_LEDGER_MAINTAINED = {"balance", "total_business_value"}


def _row_to_client(r: sqlite3.Row) -> Client:
    return Client(
        id=r["id"],
        name=r["name"],
        phone=r["phone"],
        shop_name=r["shop_name"],
        whatsapp=r["whatsapp"],
        email=r["email"],
        dob=r["dob"],
        address=r["address"],
        area=r["area"],
        balance=float(r["balance"]),
        total_business_value=float(r["total_business_value"]),
        created_at=r["created_at"],
        updated_at=r["updated_at"],
        deleted_at=r["deleted_at"],
    )


def _row_to_entry(r: sqlite3.Row, items: list[LedgerItem] | None = None) -> LedgerEntry:
    return LedgerEntry(
        id=r["id"],
        client_id=r["client_id"],
        date=r["date"],
        type=r["type"],
        description=r["description"],
        debit=float(r["debit"]),
        credit=float(r["credit"]),
        balance=float(r["balance"]),
        invoice_id=r["invoice_id"],
        notes=r["notes"],
        created_at=r["created_at"],
        items=items or [],
    )


def _row_to_item(r: sqlite3.Row) -> LedgerItem:
    return LedgerItem(
        stock_item_id=r["stock_item_id"],
        stock_item_name=r["stock_item_name"],
        quantity=float(r["quantity"]),
        unit_price=float(r["unit_price"]),
        total=float(r["total"]),
    )


def _coerce_item(item: LedgerItem | Mapping[str, Any]) -> LedgerItem:
    if isinstance(item, LedgerItem):
        stock_item_id, name = item.stock_item_id, item.stock_item_name
        raw_qty, raw_price, total = item.quantity, item.unit_price, item.total
    else:
        try:
            stock_item_id, raw_qty, raw_price = item["stock_item_id"], item["quantity"], item["unit_price"]
        except KeyError as e:
            raise ValidationError(f"Ledger item is missing {e.args[0]!r}.") from e
        name, total = item.get("stock_item_name"), item.get("total")
    ok_q, qty = try_parse_float(raw_qty)
    ok_p, price = try_parse_float(raw_price)
    if not ok_q or qty is None or qty <= 0:
        raise ValidationError("Ledger item quantity must be greater than 0.")
    if not ok_p or price is None or price < 0:
        raise ValidationError("Ledger item unit price cannot be negative.")
    ok_t, total_v = try_parse_float(total) if total is not None else (True, line_total(qty, price))
    if not ok_t or total_v is None:
        raise ValidationError("Ledger item total must be a number.")
    return LedgerItem(
        stock_item_id=stock_item_id,
        stock_item_name=name or "",
        quantity=qty,
        unit_price=price,
        total=total_v,
    )


def _amount(value: Any, label: str) -> float:
    ok, val = try_parse_float(value)
    if not ok or val is None:
        raise ValidationError(f"{label} must be a number.")
    if val < 0:
        raise ValidationError(f"{label} cannot be negative.")
    return round_money(val)


class ClientsRepo:
    """
    Clients and the Client Balance Ledger.

    `clients.balance` is maintained incrementally by append_entry(); it is
    never recomputed from the entries on read. audit_balance() recomputes
    it for checking only.
    """

    def __init__(self, db: "Database"):
        self.db = db

    # ---- Internal helpers -------------------------------------------------

    @staticmethod
    def _ensure_non_empty(value: str | None, field_label: str) -> None:
        if not non_empty(value):
            raise ValidationError(f"{field_label} cannot be empty.")

    # ---- Queries ----------------------------------------------------------

    def list_clients(self, active_only: bool = True) -> list[Client]:
        """
        Returns clients ordered by name. By default only rows without a
        deleted_at marker; active_only=False includes soft-deleted ones.
        """
        where = "WHERE deleted_at IS NULL " if active_only else ""
        rows = self.db.query_all(f"SELECT {_CLIENT_COLS} FROM clients {where}ORDER BY name")
        return [_row_to_client(r) for r in rows]

    def get(self, client_id: str) -> Client | None:
        r = self.db.query_one(f"SELECT {_CLIENT_COLS} FROM clients WHERE id=?", (client_id,))
        return _row_to_client(r) if r else None

    def require(self, client_id: str, *, active: bool = False) -> Client:
        client = self.get(client_id)
        if client is None or (active and not client.is_active):
            raise ClientNotFoundError(f"Client {client_id} not found.")
        return client

    def get_by_phone(self, phone: str) -> Client | None:
        r = self.db.query_one(
            f"SELECT {_CLIENT_COLS} FROM clients WHERE phone=?", ((phone or "").strip(),)
        )
        return _row_to_client(r) if r else None

    def search(self, term: str, active_only: bool = True) -> list[Client]:
        """LIKE match over name / phone / shop_name / area."""
        pattern = f"%{(term or '').strip()}%"
        active = "deleted_at IS NULL AND " if active_only else ""
        rows = self.db.query_all(
            f"SELECT {_CLIENT_COLS} FROM clients "
            f"WHERE {active}("
            "  name LIKE ? OR phone LIKE ? OR shop_name LIKE ? OR COALESCE(area, '') LIKE ?"
            ") ORDER BY name",
            (pattern, pattern, pattern, pattern),
        )
        return [_row_to_client(r) for r in rows]

    def top_clients(self, limit: int = 5) -> list[Client]:
        rows = self.db.query_all(
            f"SELECT {_CLIENT_COLS} FROM clients WHERE deleted_at IS NULL "
            "ORDER BY total_business_value DESC, name LIMIT ?",
            (int(limit),),
        )
        return [_row_to_client(r) for r in rows]

    def receivables_summary(self) -> ReceivablesSummary:
        r = self.db.query_one(
            "SELECT "
            "  COALESCE(SUM(CASE WHEN balance > 0 THEN balance ELSE 0 END), 0) AS receivable, "
            "  COALESCE(SUM(CASE WHEN balance < 0 THEN -balance ELSE 0 END), 0) AS payable, "
            "  COALESCE(SUM(CASE WHEN balance > 0 THEN 1 ELSE 0 END), 0) AS owing, "
            "  COALESCE(SUM(CASE WHEN balance < 0 THEN 1 ELSE 0 END), 0) AS in_credit "
            "FROM clients WHERE deleted_at IS NULL"
        )
        return ReceivablesSummary(
            total_receivable=round_money(r["receivable"]),
            total_payable=round_money(r["payable"]),
            clients_owing=int(r["owing"]),
            clients_in_credit=int(r["in_credit"]),
        )

    # ---- Ledger -----------------------------------------------------------

    def append_entry(
        self,
        client_id: str,
        *,
        entry_type: str,
        description: str,
        debit: float = 0.0,
        credit: float = 0.0,
        date=None,
        items: Iterable[LedgerItem | Mapping[str, Any]] | None = None,
        invoice_id: str | None = None,
        notes: str | None = None,
        receipt: bool = False,
    ) -> LedgerEntry:
        """
        Append one ledger entry and move the client's running balance.

        In one transaction: read balance, compute balance + debit - credit,
        insert the entry with that snapshot, insert its items, store the new
        balance, and for SALE entries add the debit to total_business_value.
        Nests as a savepoint inside a caller's transaction. `receipt` marks the
        credit as money actually received (set by InvoicesRepo.record_payment).
        """
        etype = (entry_type or "").strip().upper()
        if etype not in LEDGER_ENTRY_TYPES:
            raise ValidationError("entry_type must be one of: " + ", ".join(LEDGER_ENTRY_TYPES))
        self._ensure_non_empty(description, "Description")
        debit_v = _amount(debit, "Debit")
        credit_v = _amount(credit, "Credit")
        if debit_v <= EPSILON and credit_v <= EPSILON:
            raise ValidationError("A ledger entry needs a debit or a credit.")
        try:
            entry_date = to_date_str(date)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        line_items = [_coerce_item(i) for i in (items or [])]

        entry_id = generate_uuid()
        try:
            with self.db.transaction() as conn:
                r = conn.execute(
                    "SELECT balance, total_business_value FROM clients WHERE id=?", (client_id,)
                ).fetchone()
                if r is None:
                    _log.warning("Ledger entry rejected: client %s not found", client_id)
                    raise ClientNotFoundError(f"Client {client_id} not found.")
                if invoice_id is not None and conn.execute(
                    "SELECT 1 FROM invoices WHERE id=?", (invoice_id,)
                ).fetchone() is None:
                    raise InvoiceNotFoundError(f"Invoice {invoice_id} not found.")
                for i in line_items:
                    if conn.execute("SELECT 1 FROM stock_items WHERE id=?", (i.stock_item_id,)).fetchone() is None:
                        raise StockItemNotFoundError(f"Stock item {i.stock_item_id} not found.")

                new_balance = round_money(float(r["balance"]) + debit_v - credit_v)
                ts = now_str()
                conn.execute(
                    f"INSERT INTO ledger_entries({_ENTRY_COLS}, is_receipt) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        entry_id,
                        client_id,
                        entry_date,
                        etype,
                        normalize_text(description),
                        debit_v,
                        credit_v,
                        new_balance,
                        invoice_id,
                        normalize_text(notes),
                        ts,
                        1 if receipt else 0,
                    ),
                )
                conn.executemany(
                    "INSERT INTO ledger_items(id, ledger_entry_id, stock_item_id, stock_item_name, quantity, unit_price, total) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    [
                        (generate_uuid(), entry_id, i.stock_item_id, i.stock_item_name, i.quantity, i.unit_price, i.total)
                        for i in line_items
                    ],
                )
                if etype == ENTRY_SALE:
                    conn.execute(
                        "UPDATE clients SET balance=?, total_business_value=total_business_value + ?, updated_at=? "
                        "WHERE id=?",
                        (new_balance, debit_v, ts, client_id),
                    )
                else:
                    conn.execute(
                        "UPDATE clients SET balance=?, updated_at=? WHERE id=?",
                        (new_balance, ts, client_id),
                    )
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError("Ledger entry violates a storage constraint.") from e

        _log.info(
            "Ledger %s for client %s: +%g -%g -> balance %g", etype, client_id, debit_v, credit_v, new_balance
        )
        return LedgerEntry(
            id=entry_id,
            client_id=client_id,
            date=entry_date,
            type=etype,
            description=normalize_text(description) or "",
            debit=debit_v,
            credit=credit_v,
            balance=new_balance,
            invoice_id=invoice_id,
            notes=normalize_text(notes),
            created_at=ts,
            items=line_items,
        )

    def get_entry(self, entry_id: str) -> LedgerEntry | None:
        r = self.db.query_one(f"SELECT {_ENTRY_COLS} FROM ledger_entries WHERE id=?", (entry_id,))
        if r is None:
            return None
        items = self.db.query_all(
            "SELECT stock_item_id, stock_item_name, quantity, unit_price, total "
            "FROM ledger_items WHERE ledger_entry_id=? ORDER BY rowid",
            (entry_id,),
        )
        return _row_to_entry(r, [_row_to_item(i) for i in items])

    def get_ledger(self, client_id: str, date_from=None, date_to=None) -> list[LedgerEntry]:
        """
        Entries newest first: date DESC, then created_at DESC, then insertion
        order DESC. Date bounds are inclusive. Each entry carries its items.
        """
        self.require(client_id)
        where = ["client_id=?"]
        params: list[Any] = [client_id]
        try:
            if date_from is not None:
                where.append("date >= ?")
                params.append(to_date_str(date_from))
            if date_to is not None:
                where.append("date <= ?")
                params.append(to_date_str(date_to))
        except ValueError as e:
            raise ValidationError(str(e)) from e

        rows = self.db.query_all(
            f"SELECT {_ENTRY_COLS} FROM ledger_entries WHERE {' AND '.join(where)} "
            "ORDER BY date DESC, created_at DESC, rowid DESC",
            params,
        )
        if not rows:
            return []

        items_by_entry: dict[str, list[LedgerItem]] = {}
        for i in self.db.query_all(
            "SELECT li.ledger_entry_id, li.stock_item_id, li.stock_item_name, li.quantity, li.unit_price, li.total "
            "FROM ledger_items li JOIN ledger_entries le ON le.id = li.ledger_entry_id "
            "WHERE le.client_id=? ORDER BY li.rowid",
            (client_id,),
        ):
            items_by_entry.setdefault(i["ledger_entry_id"], []).append(_row_to_item(i))
        return [_row_to_entry(r, items_by_entry.get(r["id"])) for r in rows]

    def audit_balance(self, client_id: str) -> BalanceAudit:
        """
        Recompute the balance from the entry stream in insertion order and
        compare it with the stored balance and each entry's snapshot.
        """
        client = self.require(client_id)
        rows = self.db.query_all(
            "SELECT id, debit, credit, balance FROM ledger_entries WHERE client_id=? ORDER BY rowid",
            (client_id,),
        )
        running = 0.0
        first_bad = None
        for r in rows:
            running = round_money(running + float(r["debit"]) - float(r["credit"]))
            if first_bad is None and abs(running - float(r["balance"])) > EPSILON:
                first_bad = r["id"]
        return BalanceAudit(
            client_id=client_id,
            stored_balance=client.balance,
            derived_balance=running,
            last_snapshot=float(rows[-1]["balance"]) if rows else None,
            entry_count=len(rows),
            first_bad_snapshot_id=first_bad,
        )

    # ---- Mutations --------------------------------------------------------

    def create(
        self,
        name: str,
        phone: str,
        shop_name: str,
        *,
        whatsapp: str | None = None,
        email: str | None = None,
        dob: str | None = None,
        address: str | None = None,
        area: str | None = None,
        opening_balance: float = 0.0,
        date=None,
    ) -> Client:
        """
        Insert a client. A non-zero opening balance becomes an ADJUSTMENT
        entry ("Opening balance") so the ledger explains it from day one.
        """
        self._ensure_non_empty(name, "Name")
        self._ensure_non_empty(phone, "Phone")
        self._ensure_non_empty(shop_name, "Shop name")
        ok, opening = try_parse_float(opening_balance)
        if not ok or opening is None:
            raise ValidationError("Opening balance must be a number.")
        opening = round_money(opening)

        client_id = generate_uuid()
        ts = now_str()
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    f"INSERT INTO clients({_CLIENT_COLS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?, NULL)",
                    (
                        client_id,
                        normalize_text(name),
                        normalize_text(phone),
                        normalize_text(shop_name),
                        normalize_text(whatsapp),
                        normalize_text(email),
                        normalize_text(dob),
                        normalize_text(address),
                        normalize_text(area),
                        ts,
                        ts,
                    ),
                )
                if abs(opening) > EPSILON:
                    self.append_entry(
                        client_id,
                        entry_type=ENTRY_ADJUSTMENT,
                        description="Opening balance",
                        debit=opening if opening > 0 else 0.0,
                        credit=-opening if opening < 0 else 0.0,
                        date=date,
                    )
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError(f"Phone number {phone!r} is already registered.") from e
        _log.info("Created client %s", client_id)
        return self.require(client_id)

    def update(self, client_id: str, **fields: Any) -> Client:
        """
        Update profile fields. balance and total_business_value are rejected:
        they change only through ledger entries.
        """
        blocked = set(fields) & _LEDGER_MAINTAINED
        if blocked:
            raise ValidationError(
                ", ".join(sorted(blocked)) + " can only change through ledger entries."
            )
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValidationError("Unknown client field(s): " + ", ".join(sorted(unknown)))
        for key, label in _REQUIRED_FIELDS.items():
            if key in fields:
                self._ensure_non_empty(fields[key], label)
        self.require(client_id)
        if not fields:
            return self.require(client_id)

        values = {k: normalize_text(v) for k, v in fields.items()}
        assignments = ", ".join(f"{k}=?" for k in values)
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    f"UPDATE clients SET {assignments}, updated_at=? WHERE id=?",
                    (*values.values(), now_str(), client_id),
                )
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError("Phone number is already registered.") from e
        return self.require(client_id)

    def delete(self, client_id: str) -> None:
        """Soft delete; ledger history and invoices stay intact."""
        self.require(client_id, active=True)
        ts = now_str()
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE clients SET deleted_at=?, updated_at=? WHERE id=?", (ts, ts, client_id)
            )
        _log.info("Soft-deleted client %s", client_id)
