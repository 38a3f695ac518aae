# src/app.py
from __future__ import annotations

import logging
import os
import sqlite3
from typing import List, Optional, Tuple

from dao import (
    Product,
    ProductDAO,
    Sale,
    SaleDAO,
    User,
    UserDAO,
    connect,
    seed_users,
)
from sale_builder import LineItem, SaleBuilder, Totals, ValidationError
from admin_service import AdminService, PermissionDeniedError
from external_services import PrinterService, printer_service
from receipt import (
    DEFAULT_STORE_NAME,
    RenderError,
    Ticket,
    build_ticket,
    print_ticket,
    render_text,
    save_ticket,
)
from metrics import RECEIPT_RENDER_ERROR_TOTAL, RECEIPT_RENDER_TOTAL

logger = logging.getLogger(__name__)

DEFAULT_STORE_LOCATION = "Main Street Store"


class PosApp:
    """
    Business logic for the point of sale.  Owns the process-wide stores,
    the current sale and the logged-in user, and exposes tuple-returning
    operations ``(ok, message)`` for the interactive shell.
    """

    def __init__(
        self,
        conn: Optional[sqlite3.Connection] = None,
        store_name: Optional[str] = None,
        store_location: Optional[str] = None,
        ticket_dir: Optional[str] = None,
        printer: Optional[PrinterService] = None,
    ) -> None:
        # One in-memory database per process, shared by every store
        if conn is None:
            conn = connect()
            seed_users(conn)
        self.conn = conn
        self.product_dao = ProductDAO(conn)
        self.sale_dao = SaleDAO(conn)
        self.user_dao = UserDAO(conn)

        self.store_name = store_name or os.environ.get("POS_STORE_NAME", DEFAULT_STORE_NAME)
        self.store_location = store_location or os.environ.get("POS_STORE_LOCATION", DEFAULT_STORE_LOCATION)
        self.ticket_dir = ticket_dir or os.environ.get("POS_TICKET_DIR", os.getcwd())
        self.printer = printer or printer_service

        self.builder = SaleBuilder(self.product_dao, self.sale_dao)
        self.admin = AdminService(self.user_dao, self.product_dao, self.sale_dao)

        self.current_user: User | None = None
        # Last finalized sale, shown in the ticket view
        self.current_sale: Sale | None = None

    # ---- Authentication ----

    def login(self, username: str, password: str) -> bool:
        self.current_user = self.user_dao.authenticate(username, password)
        if self.current_user:
            logger.info("Login", extra={"user_id": username})
        return self.current_user is not None

    def logout(self) -> None:
        self.current_user = None

    def current_user_is_super_admin(self) -> bool:
        return bool(self.current_user and self.current_user.is_super_admin)

    # ---- Product catalogue ----

    def list_products(self) -> List[Product]:
        return self.product_dao.list_products()

    def search_products(self, term: str) -> List[Product]:
        return self.product_dao.search_products(term)

    def add_product(self, name: str, price: float, quantity: int) -> Tuple[bool, str]:
        if not name.strip():
            return False, "Product name is required."
        try:
            pid = self.product_dao.add_product(name.strip(), price, quantity)
        except ValueError as ex:
            return False, str(ex)
        return True, pid

    # ---- Current sale ----

    def add_to_sale(self, product_id: str) -> Tuple[bool, str]:
        p = self.product_dao.get_product(product_id)
        if not p:
            return False, "Product not found."
        if p.quantity == 0:
            return False, f"{p.name} is out of stock."
        line = self.builder.select_product(p)
        return True, f"{line.name} x {line.quantity} in current sale"

    def set_quantity(self, product_id: str, quantity: int) -> Tuple[bool, str]:
        if quantity < 0:
            return False, "Quantity cannot be negative."
        if not self.builder.set_quantity(product_id, quantity):
            return False, "Product not in current sale."
        return True, "Quantity updated."

    def remove_from_sale(self, product_id: str) -> None:
        self.builder.remove_item(product_id)

    def set_discount(self, amount: float) -> None:
        self.builder.set_discount(amount)

    def set_payment_received(self, amount: float) -> None:
        self.builder.set_payment_received(amount)

    def view_sale(self) -> List[LineItem]:
        return self.builder.line_items()

    def compute_totals(self) -> Totals:
        return self.builder.totals()

    def clear_sale(self) -> None:
        self.builder.clear()

    def complete_sale(self) -> Tuple[bool, str]:
        """Finalize the current sale and return its on-screen ticket.

        The sale is recorded before the ticket is rendered; if rendering
        fails the sale stays in the ledger and the message says so.
        """
        if not self.current_user:
            return False, "You must be logged in."
        try:
            sale = self.builder.finalize(self.current_user.username, self.store_location)
        except ValidationError as ex:
            return False, str(ex)
        self.current_sale = sale
        ok, text = self.show_ticket()
        if not ok:
            return True, f"Sale {sale.id} recorded. {text}"
        return True, text

    # ---- Tickets ----

    def _ticket(self, sale_id: str | None) -> Tuple[Optional[Ticket], str]:
        sale = self.current_sale if sale_id is None else self.sale_dao.get_by_id(sale_id)
        if sale is None:
            return None, "Sale not found."
        return build_ticket(sale, self.product_dao, self.store_name), ""

    def _render(self, mode: str, sale_id: str | None, action) -> Tuple[bool, str]:
        try:
            ticket, reason = self._ticket(sale_id)
            if ticket is None:
                return False, reason
            result = action(ticket)
        except RenderError:
            RECEIPT_RENDER_ERROR_TOTAL.inc(mode=mode)
            logger.exception(
                "Ticket rendering failed",
                extra={"request_id": sale_id or (self.current_sale.id if self.current_sale else None),
                       "extra": {"mode": mode}},
            )
            verb = {"display": "generating", "print": "trying to print", "download": "trying to download"}[mode]
            return False, f"An error occurred while {verb} the ticket. Please try again."
        RECEIPT_RENDER_TOTAL.inc(mode=mode)
        return True, result

    def show_ticket(self, sale_id: str | None = None) -> Tuple[bool, str]:
        return self._render("display", sale_id, render_text)

    def print_ticket(self, sale_id: str | None = None) -> Tuple[bool, str]:
        ok, result = self._render("print", sale_id, lambda t: print_ticket(t, self.printer))
        return (ok, "Ticket sent to printer.") if ok else (ok, result)

    def download_ticket(self, sale_id: str | None = None, directory: str | None = None) -> Tuple[bool, str]:
        return self._render("download", sale_id, lambda t: save_ticket(t, directory or self.ticket_dir))

    def list_sales(self) -> List[Sale]:
        return self.sale_dao.list_sales()

    # ---- Settings ----

    def change_password(self, old_password: str, new_password: str, confirm_password: str) -> Tuple[bool, str]:
        if not self.current_user:
            return False, "You must be logged in."
        try:
            if self.admin.change_password(self.current_user, old_password, new_password, confirm_password):
                return True, "Password changed successfully"
        except ValidationError as ex:
            return False, str(ex)
        return False, "Failed to change password"

    def reset_super_admin_password(self, new_password: str, confirm_password: str) -> Tuple[bool, str]:
        try:
            if self.admin.reset_super_admin_password(self.current_user, new_password, confirm_password):
                return True, "Superadmin password reset successfully"
        except (ValidationError, PermissionDeniedError) as ex:
            return False, str(ex)
        return False, "Failed to reset superadmin password"

    def list_users(self) -> Tuple[bool, List[User] | str]:
        try:
            return True, self.admin.list_users(self.current_user)
        except PermissionDeniedError as ex:
            return False, str(ex)

    def add_user(self, username: str, password: str, is_super_admin: bool = False) -> Tuple[bool, str]:
        try:
            self.admin.add_user(self.current_user, username, password, is_super_admin)
        except (ValidationError, PermissionDeniedError) as ex:
            return False, str(ex)
        return True, "User added successfully"

    def delete_user(self, user_id: int) -> Tuple[bool, str]:
        try:
            if self.admin.delete_user(self.current_user, user_id):
                return True, "User deleted successfully"
        except PermissionDeniedError as ex:
            return False, str(ex)
        return False, "User not found."

    def reset_system(self) -> Tuple[bool, str]:
        try:
            self.admin.reset_system(self.current_user)
        except PermissionDeniedError as ex:
            return False, str(ex)
        self.builder.clear()
        self.current_sale = None
        return True, "System has been completely reset"
