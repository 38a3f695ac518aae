"""
In-progress sale state and the finalize step.

A :class:`SaleBuilder` accumulates line items, a discount and the payment
received for one transaction.  Totals are derived on every read, never
cached.  :meth:`SaleBuilder.finalize` validates the transaction, records an
immutable :class:`~dao.Sale` in the ledger, decrements catalog stock and
resets the builder.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List

from dao import Product, ProductDAO, Sale, SaleDAO, SaleItemData
from metrics import (
    SALES_FINALIZED_TOTAL,
    SALE_FINALIZE_DURATION_SECONDS,
    SALE_FINALIZE_ERROR_TOTAL,
)

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """User-correctable input problem.  Raised before any state is mutated.

    ``code`` is a stable identifier (``empty_cart``, ``insufficient_payment``,
    ...) and ``str(error)`` is the message shown to the user.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class OutOfStockError(ValidationError):
    """A line item asks for more units than the catalog holds."""

    def __init__(self, product_id: str, name: str, requested: int, available: int) -> None:
        super().__init__(
            "out_of_stock",
            f"Only {available} in stock for {name} (requested {requested})",
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


@dataclass
class LineItem:
    """A line in the current sale."""
    product_id: str
    name: str
    price: float
    quantity: int

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


@dataclass(frozen=True)
class Totals:
    subtotal: float
    discount: float
    total: float
    payment_received: float
    change: float


class SaleBuilder:
    """
    Transient state for a single transaction.

    The catalog and ledger are injected so that one process-wide pair of
    stores can be shared by the builder, the renderer and the admin panel.
    """

    def __init__(
        self,
        catalog: ProductDAO,
        ledger: SaleDAO,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.catalog = catalog
        self.ledger = ledger
        self._clock = clock
        # Line items keyed by product id; dicts keep selection order
        self._items: Dict[str, LineItem] = {}
        self.discount: float = 0.0
        self.payment_received: float = 0.0
        self._last_sale_ms = 0

    # ---- Line items ----

    def select_product(self, product: Product) -> LineItem:
        """Add one unit of ``product``, creating the line item if needed.

        Stock is not checked here; callers must not offer products whose
        catalog quantity is zero.
        """
        line = self._items.get(product.id)
        if line:
            line.quantity += 1
        else:
            line = LineItem(product.id, product.name, product.price, 1)
            self._items[product.id] = line
        return line

    def set_quantity(self, product_id: str, quantity: int) -> bool:
        """Set a line's quantity.  Returns False when no line matches.

        Zero is accepted and the line is kept; negatives are ignored.
        """
        line = self._items.get(product_id)
        if line is None:
            return False
        if quantity >= 0:
            line.quantity = quantity
        return True

    def remove_item(self, product_id: str) -> None:
        self._items.pop(product_id, None)

    def line_items(self) -> List[LineItem]:
        return list(self._items.values())

    def is_empty(self) -> bool:
        return not self._items

    # ---- Scalars ----

    def set_discount(self, amount: float) -> None:
        self.discount = float(amount)

    def set_payment_received(self, amount: float) -> None:
        self.payment_received = float(amount)

    # ---- Derived values ----

    @property
    def subtotal(self) -> float:
        return sum(line.line_total for line in self._items.values())

    @property
    def total(self) -> float:
        return self.subtotal - self.discount

    @property
    def change(self) -> float:
        return self.payment_received - self.total

    def totals(self) -> Totals:
        subtotal = self.subtotal
        total = subtotal - self.discount
        return Totals(
            subtotal=subtotal,
            discount=self.discount,
            total=total,
            payment_received=self.payment_received,
            change=self.payment_received - total,
        )

    def clear(self) -> None:
        self._items.clear()
        self.discount = 0.0
        self.payment_received = 0.0

    # ---- Finalize ----

    def _next_sale_id(self) -> str:
        # Millisecond timestamp, bumped when two sales land in the same ms
        ms = max(int(time.time() * 1000), self._last_sale_ms + 1)
        while self.ledger.get_by_id(f"SALE-{ms}") is not None:
            ms += 1
        self._last_sale_ms = ms
        return f"SALE-{ms}"

    def _check_stock(self) -> None:
        for line in self._items.values():
            product = self.catalog.get_product(line.product_id)
            if product is None:
                raise ValidationError("unknown_product", f"{line.name} is no longer in the catalog")
            if line.quantity > product.quantity:
                raise OutOfStockError(product.id, product.name, line.quantity, product.quantity)

    def validate(self) -> Totals:
        """Raise :class:`ValidationError` if the sale cannot be finalized."""
        if not self._items:
            raise ValidationError("empty_cart", "Please select at least one product")
        totals = self.totals()
        # NaN compares False against everything, so check before comparing
        if not all(math.isfinite(v) for v in (totals.subtotal, totals.discount, totals.total,
                                               totals.payment_received, totals.change)):
            raise ValidationError("invalid_amount", "Amounts must be finite numbers")
        if totals.payment_received < totals.total:
            raise ValidationError(
                "insufficient_payment", "Payment received is less than the total amount"
            )
        self._check_stock()
        return totals

    def finalize(self, cashier: str, store_location: str) -> Sale:
        """Convert the current transaction into a recorded :class:`Sale`.

        Args:
            cashier: Name of the user ringing up the sale.
            store_location: Location printed on the ticket.

        Returns:
            The immutable Sale appended to the ledger.

        Raises:
            ValidationError: Empty cart, a non-finite amount, insufficient
                payment, or a product that disappeared from the catalog.
                Nothing is mutated.
            OutOfStockError: A line item exceeds available stock.  Nothing
                is mutated.
        """
        start_time = time.perf_counter()
        try:
            totals = self.validate()
        except ValidationError as err:
            SALE_FINALIZE_ERROR_TOTAL.inc(type=err.code)
            logger.warning(
                "Sale rejected",
                extra={"user_id": cashier, "extra": {"code": err.code, "reason": str(err)}},
            )
            raise

        sale = Sale(
            id=self._next_sale_id(),
            items=tuple(
                SaleItemData(product_id=ln.product_id, quantity=ln.quantity, price=ln.price)
                for ln in self._items.values()
            ),
            subtotal=totals.subtotal,
            discount=totals.discount,
            total=totals.total,
            payment_received=totals.payment_received,
            change=totals.change,
            date=self._clock(),
            cashier=cashier,
            store_location=store_location,
        )
        self.ledger.append(sale)
        # One decrement per line; stock was checked above so these succeed
        # in the single-threaded model.  A failure is logged, not rolled back.
        for item in sale.items:
            if not self.catalog.decrement_quantity(item.product_id, item.quantity):
                logger.error(
                    "Stock decrement failed after sale was recorded",
                    extra={"request_id": sale.id, "extra": {"product_id": item.product_id}},
                )
        self.clear()

        SALES_FINALIZED_TOTAL.inc()
        SALE_FINALIZE_DURATION_SECONDS.observe(time.perf_counter() - start_time)
        logger.info(
            "Sale finalized",
            extra={
                "request_id": sale.id,
                "user_id": cashier,
                "extra": {"total": sale.total, "items": len(sale.items)},
            },
        )
        return sale
