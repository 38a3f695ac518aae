"""
Data access layer for the POS application.

All stores share a single in-memory SQLite connection created by
:func:`connect` at process start.  Nothing is written to disk: products,
sales and users are rebuilt from the seed data every time the process
starts, and discarded when it exits.

The DAO classes receive the connection explicitly instead of reaching for a
module-level singleton, so tests (and the application facade) can build as
many isolated stores as they need.
"""

from __future__ import annotations
import hashlib, math, sqlite3, logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS Product (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    price REAL NOT NULL CHECK (price >= 0),
    quantity INTEGER NOT NULL CHECK (quantity >= 0)
);
CREATE TABLE IF NOT EXISTS Sale (
    id TEXT PRIMARY KEY,
    subtotal REAL NOT NULL,
    discount REAL NOT NULL,
    total REAL NOT NULL,
    payment_received REAL NOT NULL,
    change REAL NOT NULL,
    date TEXT NOT NULL,
    cashier TEXT NOT NULL,
    store_location TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS SaleItem (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sale_id TEXT NOT NULL,
    product_id TEXT NOT NULL,
    quantity INTEGER NOT NULL,
    price REAL NOT NULL,
    FOREIGN KEY (sale_id) REFERENCES Sale(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS User (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    is_super_admin INTEGER NOT NULL DEFAULT 0
);
"""


# ------------------------------------------------------------------------------
# Connection
# ------------------------------------------------------------------------------
def connect() -> sqlite3.Connection:
    """Create the process-wide in-memory database and apply the schema.

    Returns:
        A configured :class:`sqlite3.Connection`.  Rows behave like
        dictionaries and foreign keys are enforced.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.executescript(_SCHEMA)
    logger.debug("In-memory store initialised")
    return conn


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


# ------------------------------------------------------------------------------
# Domain models
# ------------------------------------------------------------------------------

@dataclass
class Product:
    id: str
    name: str
    price: float
    quantity: int


@dataclass(frozen=True)
class SaleItemData:
    product_id: str
    quantity: int
    price: float


@dataclass(frozen=True)
class Sale:
    """A finalized sale.  Immutable once created."""
    id: str
    items: Tuple[SaleItemData, ...]
    subtotal: float
    discount: float
    total: float
    payment_received: float
    change: float
    date: datetime
    cashier: str
    store_location: str


@dataclass
class User:
    id: int
    username: str
    password_hash: str = field(repr=False)
    is_super_admin: bool = False


# ------------------------------------------------------------------------------
# Base DAO
# ------------------------------------------------------------------------------

class BaseDAO:
    """Base class for all DAOs.  Holds the shared connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn


# ------------------------------------------------------------------------------
# Product DAO (catalog store)
# ------------------------------------------------------------------------------

class ProductDAO(BaseDAO):
    """Catalog store: source of truth for product price and availability."""

    _COLUMNS = "id, name, price, quantity"

    def add_product(
        self,
        name: str,
        price: float,
        quantity: int,
        product_id: str | None = None,
    ) -> str:
        """Insert a product and return its id.

        When ``product_id`` is omitted the next free numeric id is used,
        rendered as a string.
        """
        if not math.isfinite(price):
            raise ValueError("Price must be a finite number")
        if price < 0 or quantity < 0:
            raise ValueError("Price and quantity must be non-negative")
        with self.conn:
            if product_id is None:
                (count,) = self.conn.execute("SELECT COUNT(*) FROM Product;").fetchone()
                product_id = str(count + 1)
                while self.get_product(product_id) is not None:
                    product_id = str(int(product_id) + 1)
            self.conn.execute(
                "INSERT INTO Product (id, name, price, quantity) VALUES (?, ?, ?, ?);",
                (product_id, name, float(price), int(quantity)),
            )
        return product_id

    def get_product(self, product_id: str) -> Optional[Product]:
        row = self.conn.execute(
            f"SELECT {self._COLUMNS} FROM Product WHERE id = ?;", (product_id,)
        ).fetchone()
        return Product(*row) if row else None

    def list_products(self) -> List[Product]:
        """All products in render (insertion) order."""
        cur = self.conn.execute(f"SELECT {self._COLUMNS} FROM Product ORDER BY rowid;")
        return [Product(*r) for r in cur.fetchall()]

    def search_products(self, term: str) -> List[Product]:
        """Case-insensitive substring match on the product name."""
        needle = term.strip().lower()
        return [p for p in self.list_products() if needle in p.name.lower()]

    def decrement_quantity(self, product_id: str, amount: int) -> bool:
        """
        Decrease the stored quantity by ``amount`` only if enough stock is
        available.  Returns True if the row was updated, False when the
        product is missing or the decrement would go below zero.
        """
        if amount < 0:
            raise ValueError("Quantity to decrease must be non-negative")
        with self.conn:
            cur = self.conn.execute(
                "UPDATE Product SET quantity = quantity - ? WHERE id = ? AND quantity >= ?;",
                (amount, product_id, amount),
            )
        return cur.rowcount > 0

    def delete_all_products(self) -> int:
        with self.conn:
            cur = self.conn.execute("DELETE FROM Product;")
        return cur.rowcount


# ------------------------------------------------------------------------------
# Sale DAO (sale ledger)
# ------------------------------------------------------------------------------

class SaleDAO(BaseDAO):
    """Append-only ledger of finalized sales, kept in insertion order."""

    def append(self, sale: Sale) -> None:
        with self.conn:
            self.conn.execute(
                "INSERT INTO Sale (id, subtotal, discount, total, payment_received, change,"
                " date, cashier, store_location) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);",
                (
                    sale.id,
                    sale.subtotal,
                    sale.discount,
                    sale.total,
                    sale.payment_received,
                    sale.change,
                    sale.date.isoformat(),
                    sale.cashier,
                    sale.store_location,
                ),
            )
            self.conn.executemany(
                "INSERT INTO SaleItem (sale_id, product_id, quantity, price) VALUES (?, ?, ?, ?);",
                [(sale.id, it.product_id, it.quantity, it.price) for it in sale.items],
            )

    def _items_for(self, sale_id: str) -> Tuple[SaleItemData, ...]:
        rows = self.conn.execute(
            "SELECT product_id, quantity, price FROM SaleItem WHERE sale_id = ? ORDER BY id;",
            (sale_id,),
        ).fetchall()
        return tuple(SaleItemData(product_id=r[0], quantity=r[1], price=r[2]) for r in rows)

    def _from_row(self, row: sqlite3.Row) -> Sale:
        return Sale(
            id=row["id"],
            items=self._items_for(row["id"]),
            subtotal=row["subtotal"],
            discount=row["discount"],
            total=row["total"],
            payment_received=row["payment_received"],
            change=row["change"],
            date=datetime.fromisoformat(row["date"]),
            cashier=row["cashier"],
            store_location=row["store_location"],
        )

    def get_by_id(self, sale_id: str) -> Optional[Sale]:
        row = self.conn.execute("SELECT * FROM Sale WHERE id = ?;", (sale_id,)).fetchone()
        return self._from_row(row) if row else None

    def list_sales(self) -> List[Sale]:
        rows = self.conn.execute("SELECT * FROM Sale ORDER BY rowid;").fetchall()
        return [self._from_row(r) for r in rows]

    def count(self) -> int:
        (n,) = self.conn.execute("SELECT COUNT(*) FROM Sale;").fetchone()
        return n

    def clear(self) -> None:
        with self.conn:
            self.conn.execute("DELETE FROM SaleItem;")
            self.conn.execute("DELETE FROM Sale;")


# ------------------------------------------------------------------------------
# User DAO
# ------------------------------------------------------------------------------

class UserDAO(BaseDAO):
    """Data Access Object for the User table."""

    _COLUMNS = "id, username, password_hash, is_super_admin"

    def _from_row(self, row: sqlite3.Row) -> User:
        return User(row[0], row[1], row[2], bool(row[3]))

    def register_user(self, username: str, password: str, is_super_admin: bool = False) -> Optional[int]:
        """Insert a user.  Returns the new id, or None if the name is taken."""
        try:
            with self.conn:
                cur = self.conn.execute(
                    "INSERT INTO User (username, password_hash, is_super_admin) VALUES (?, ?, ?);",
                    (username, hash_password(password), 1 if is_super_admin else 0),
                )
            return cur.lastrowid
        except sqlite3.IntegrityError:
            return None

    def authenticate(self, username: str, password: str) -> Optional[User]:
        row = self.conn.execute(
            f"SELECT {self._COLUMNS} FROM User WHERE username = ? AND password_hash = ?;",
            (username, hash_password(password)),
        ).fetchone()
        return self._from_row(row) if row else None

    def get_user(self, user_id: int) -> Optional[User]:
        row = self.conn.execute(
            f"SELECT {self._COLUMNS} FROM User WHERE id = ?;", (user_id,)
        ).fetchone()
        return self._from_row(row) if row else None

    def list_users(self) -> List[User]:
        rows = self.conn.execute(f"SELECT {self._COLUMNS} FROM User ORDER BY id;").fetchall()
        return [self._from_row(r) for r in rows]

    def set_password(self, user_id: int, password: str) -> bool:
        with self.conn:
            cur = self.conn.execute(
                "UPDATE User SET password_hash = ? WHERE id = ?;",
                (hash_password(password), user_id),
            )
        return cur.rowcount > 0

    def set_super_admin_passwords(self, password: str) -> int:
        """Reset the password of every super-admin account."""
        with self.conn:
            cur = self.conn.execute(
                "UPDATE User SET password_hash = ? WHERE is_super_admin = 1;",
                (hash_password(password),),
            )
        return cur.rowcount

    def delete_user(self, user_id: int) -> bool:
        with self.conn:
            cur = self.conn.execute("DELETE FROM User WHERE id = ?;", (user_id,))
        return cur.rowcount > 0


# ------------------------------------------------------------------------------
# Seed data
# ------------------------------------------------------------------------------

DEFAULT_USERS = [
    # (username, password, is_super_admin)
    ("admin", "admin", False),
    ("Easytech", "easytech", True),
    ("cashier1", "cashier1", False),
]

DEMO_PRODUCTS = [
    # (name, price, quantity)
    ("USB-C Cable", 9.99, 25),
    ("Wireless Mouse", 24.50, 10),
    ("Mechanical Keyboard", 79.00, 5),
    ("HDMI Adapter", 14.25, 0),
]


def seed_users(conn: sqlite3.Connection) -> None:
    users = UserDAO(conn)
    for username, password, is_super_admin in DEFAULT_USERS:
        users.register_user(username, password, is_super_admin)


def seed_demo_products(conn: sqlite3.Connection) -> None:
    products = ProductDAO(conn)
    for name, price, quantity in DEMO_PRODUCTS:
        products.add_product(name, price, quantity)
