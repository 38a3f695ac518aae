# --- path bootstrap (keep this at the very top) ---
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
# --- end path bootstrap ---

import tempfile
import unittest
from datetime import datetime
from unittest import mock

from dao import ProductDAO, SaleDAO, UserDAO, connect, seed_users
from sale_builder import OutOfStockError, SaleBuilder, ValidationError
from admin_service import AdminService, PermissionDeniedError
from app import PosApp
from receipt import RenderError
from metrics import SALE_FINALIZE_ERROR_TOTAL, SALES_FINALIZED_TOTAL, generate_metrics_text


def fresh_stores():
    """A brand-new in-memory database with the default users."""
    conn = connect()
    seed_users(conn)
    return conn, ProductDAO(conn), SaleDAO(conn), UserDAO(conn)


class TestSaleBuilder(unittest.TestCase):
    """Line items, derived totals and the finalize step against real stores."""

    def setUp(self):
        self.conn, self.catalog, self.ledger, _ = fresh_stores()
        self.clock = lambda: datetime(2024, 3, 1, 14, 30, 5)
        self.builder = SaleBuilder(self.catalog, self.ledger, clock=self.clock)
        self.ten = self.catalog.get_product(self.catalog.add_product("Widget", 10.0, 5))
        self.fifty = self.catalog.get_product(self.catalog.add_product("Gadget", 50.0, 3))

    def test_select_product_twice_increments_quantity(self):
        self.builder.select_product(self.ten)
        self.builder.select_product(self.ten)
        self.builder.select_product(self.fifty)
        lines = self.builder.line_items()
        self.assertEqual([(l.product_id, l.quantity) for l in lines],
                         [(self.ten.id, 2), (self.fifty.id, 1)])

    def test_totals_follow_line_items(self):
        self.builder.select_product(self.ten)
        self.builder.set_quantity(self.ten.id, 2)
        self.builder.set_discount(5)
        self.builder.set_payment_received(20)
        self.assertAlmostEqual(self.builder.subtotal, 20.0)
        self.assertAlmostEqual(self.builder.total, 15.0)
        self.assertAlmostEqual(self.builder.change, 5.0)
        totals = self.builder.totals()
        self.assertEqual((totals.subtotal, totals.total, totals.change), (20.0, 15.0, 5.0))

    def test_negative_quantity_is_ignored(self):
        self.builder.select_product(self.ten)
        self.builder.set_quantity(self.ten.id, 3)
        self.builder.set_quantity(self.ten.id, -1)
        self.assertEqual(self.builder.line_items()[0].quantity, 3)

    def test_zero_quantity_line_is_kept(self):
        self.builder.select_product(self.ten)
        self.builder.set_quantity(self.ten.id, 0)
        lines = self.builder.line_items()
        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].quantity, 0)
        self.assertEqual(self.builder.subtotal, 0)

    def test_remove_item(self):
        self.builder.select_product(self.ten)
        self.builder.select_product(self.fifty)
        self.builder.remove_item(self.ten.id)
        self.builder.remove_item("does-not-exist")
        self.assertEqual([l.product_id for l in self.builder.line_items()], [self.fifty.id])

    def test_negative_discount_and_payment_accepted_until_finalize(self):
        self.builder.set_discount(-3)
        self.builder.set_payment_received(-1)
        self.assertEqual(self.builder.discount, -3)
        self.assertEqual(self.builder.payment_received, -1)

    def test_finalize_success(self):
        self.builder.select_product(self.ten)
        self.builder.set_quantity(self.ten.id, 2)
        self.builder.set_discount(5)
        self.builder.set_payment_received(20)
        before = SALES_FINALIZED_TOTAL.value()

        sale = self.builder.finalize("cashier1", "Main Street Store")

        self.assertTrue(sale.id.startswith("SALE-"))
        self.assertEqual(sale.subtotal, 20.0)
        self.assertEqual(sale.total, 15.0)
        self.assertEqual(sale.change, 5.0)
        self.assertEqual(sale.cashier, "cashier1")
        self.assertEqual(sale.store_location, "Main Street Store")
        self.assertEqual(sale.date, self.clock())
        self.assertEqual(len(sale.items), 1)
        self.assertEqual((sale.items[0].quantity, sale.items[0].price), (2, 10.0))

        # Ledger gained exactly one sale, stored as finalized
        self.assertEqual(self.ledger.count(), 1)
        self.assertEqual(self.ledger.get_by_id(sale.id), sale)
        # Stock decremented
        self.assertEqual(self.catalog.get_product(self.ten.id).quantity, 3)
        # Builder reset
        self.assertTrue(self.builder.is_empty())
        self.assertEqual((self.builder.discount, self.builder.payment_received), (0, 0))
        self.assertEqual(SALES_FINALIZED_TOTAL.value(), before + 1)

    def test_finalize_decrements_every_line(self):
        self.builder.select_product(self.ten)
        self.builder.set_quantity(self.ten.id, 4)
        self.builder.select_product(self.fifty)
        self.builder.set_quantity(self.fifty.id, 2)
        self.builder.set_payment_received(140)
        self.builder.finalize("cashier1", "Main Street Store")
        self.assertEqual(self.catalog.get_product(self.ten.id).quantity, 1)
        self.assertEqual(self.catalog.get_product(self.fifty.id).quantity, 1)

    def test_finalize_records_zero_quantity_line(self):
        self.builder.select_product(self.ten)
        self.builder.set_quantity(self.ten.id, 0)
        self.builder.select_product(self.fifty)
        self.builder.set_payment_received(50)
        sale = self.builder.finalize("cashier1", "Main Street Store")
        self.assertEqual(
            [(i.product_id, i.quantity, i.price) for i in sale.items],
            [(self.ten.id, 0, 10.0), (self.fifty.id, 1, 50.0)],
        )
        self.assertEqual(sale.subtotal, 50.0)
        self.assertEqual(self.ledger.get_by_id(sale.id), sale)
        self.assertEqual(self.catalog.get_product(self.ten.id).quantity, 5)
        self.assertEqual(self.catalog.get_product(self.fifty.id).quantity, 2)

    def test_non_finite_amounts_are_rejected(self):
        self.builder.select_product(self.ten)
        for discount, payment in ((0, float("nan")), (float("nan"), 100), (float("-inf"), float("inf"))):
            self.builder.set_discount(discount)
            self.builder.set_payment_received(payment)
            with self.assertRaises(ValidationError) as ctx:
                self.builder.finalize("cashier1", "Main Street Store")
            self.assertEqual(ctx.exception.code, "invalid_amount")
        self.assertEqual(self.ledger.count(), 0)
        self.assertEqual(self.catalog.get_product(self.ten.id).quantity, 5)
        self.assertFalse(self.builder.is_empty())

    def test_set_quantity_reports_unknown_line(self):
        self.builder.select_product(self.ten)
        self.assertTrue(self.builder.set_quantity(self.ten.id, 2))
        self.assertFalse(self.builder.set_quantity(self.fifty.id, 2))
        self.assertEqual([l.product_id for l in self.builder.line_items()], [self.ten.id])

    def test_finalize_empty_cart_fails(self):
        self.builder.set_payment_received(100)
        before = SALE_FINALIZE_ERROR_TOTAL.value(type="empty_cart")
        with self.assertRaises(ValidationError) as ctx:
            self.builder.finalize("cashier1", "Main Street Store")
        self.assertEqual(ctx.exception.code, "empty_cart")
        self.assertEqual(self.ledger.count(), 0)
        self.assertEqual(self.builder.payment_received, 100)
        self.assertEqual(SALE_FINALIZE_ERROR_TOTAL.value(type="empty_cart"), before + 1)

    def test_finalize_insufficient_payment_leaves_state_untouched(self):
        self.builder.select_product(self.fifty)
        self.builder.set_payment_received(40)
        with self.assertRaises(ValidationError) as ctx:
            self.builder.finalize("cashier1", "Main Street Store")
        self.assertEqual(ctx.exception.code, "insufficient_payment")
        self.assertEqual(self.ledger.count(), 0)
        self.assertEqual(len(self.builder.line_items()), 1)
        self.assertEqual(self.builder.payment_received, 40)
        self.assertEqual(self.catalog.get_product(self.fifty.id).quantity, 3)

    def test_exact_payment_succeeds_with_zero_change(self):
        self.builder.select_product(self.fifty)
        self.builder.set_payment_received(50)
        sale = self.builder.finalize("cashier1", "Main Street Store")
        self.assertEqual(sale.change, 0)

    def test_finalize_out_of_stock_fails_without_mutation(self):
        self.builder.select_product(self.fifty)
        self.builder.set_quantity(self.fifty.id, 4)
        self.builder.set_payment_received(1000)
        with self.assertRaises(OutOfStockError) as ctx:
            self.builder.finalize("cashier1", "Main Street Store")
        self.assertEqual(ctx.exception.code, "out_of_stock")
        self.assertEqual(ctx.exception.available, 3)
        self.assertIsInstance(ctx.exception, ValidationError)
        self.assertEqual(self.ledger.count(), 0)
        self.assertEqual(self.catalog.get_product(self.fifty.id).quantity, 3)
        self.assertFalse(self.builder.is_empty())

    def test_sale_ids_are_unique_within_same_millisecond(self):
        with mock.patch("sale_builder.time.time", return_value=1700000000.0):
            ids = []
            for _ in range(3):
                self.builder.select_product(self.ten)
                self.builder.set_payment_received(10)
                ids.append(self.builder.finalize("cashier1", "Main Street Store").id)
        self.assertEqual(len(set(ids)), 3)
        self.assertEqual([s.id for s in self.ledger.list_sales()], ids)


class TestStores(unittest.TestCase):
    """Catalog, ledger and user stores over the in-memory database."""

    def setUp(self):
        self.conn, self.catalog, self.ledger, self.users = fresh_stores()
        self.p1 = self.catalog.add_product("Apple Juice", 3.50, 10)
        self.p2 = self.catalog.add_product("Banana", 1.25, 4)

    def test_listing_keeps_insertion_order(self):
        self.assertEqual([p.id for p in self.catalog.list_products()], [self.p1, self.p2])

    def test_search_is_case_insensitive(self):
        self.assertEqual([p.name for p in self.catalog.search_products("JUICE")], ["Apple Juice"])
        self.assertEqual(len(self.catalog.search_products("")), 2)

    def test_decrement_has_floor_at_zero(self):
        self.assertTrue(self.catalog.decrement_quantity(self.p2, 4))
        self.assertEqual(self.catalog.get_product(self.p2).quantity, 0)
        self.assertFalse(self.catalog.decrement_quantity(self.p2, 1))
        self.assertEqual(self.catalog.get_product(self.p2).quantity, 0)
        self.assertFalse(self.catalog.decrement_quantity("missing", 1))

    def test_add_product_rejects_non_finite_price(self):
        for price in (float("nan"), float("inf")):
            with self.assertRaises(ValueError):
                self.catalog.add_product("Widget", price, 5)
        self.assertEqual(len(self.catalog.list_products()), 2)

    def test_get_product_absent_returns_none(self):
        self.assertIsNone(self.catalog.get_product("999999"))

    def test_ledger_lookup_and_clear(self):
        builder = SaleBuilder(self.catalog, self.ledger)
        builder.select_product(self.catalog.get_product(self.p1))
        builder.set_payment_received(5)
        sale = builder.finalize("admin", "Main Street Store")
        self.assertEqual(self.ledger.get_by_id(sale.id).total, 3.50)
        self.assertIsNone(self.ledger.get_by_id("SALE-0"))
        self.ledger.clear()
        self.assertEqual(self.ledger.list_sales(), [])

    def test_seeded_users_authenticate(self):
        self.assertTrue(self.users.authenticate("Easytech", "easytech").is_super_admin)
        self.assertFalse(self.users.authenticate("admin", "admin").is_super_admin)
        self.assertIsNone(self.users.authenticate("admin", "wrong"))
        self.assertIsNone(self.users.register_user("admin", "x"))


class TestAdminService(unittest.TestCase):

    def setUp(self):
        self.conn, self.catalog, self.ledger, self.users = fresh_stores()
        self.admin = AdminService(self.users, self.catalog, self.ledger)
        self.super = self.users.authenticate("Easytech", "easytech")
        self.cashier = self.users.authenticate("cashier1", "cashier1")

    def test_change_password(self):
        self.assertTrue(self.admin.change_password(self.cashier, "cashier1", "n3w", "n3w"))
        self.assertIsNotNone(self.users.authenticate("cashier1", "n3w"))
        self.assertFalse(self.admin.change_password(self.cashier, "wrong", "a", "a"))

    def test_change_password_mismatch(self):
        with self.assertRaises(ValidationError) as ctx:
            self.admin.change_password(self.cashier, "cashier1", "a", "b")
        self.assertEqual(ctx.exception.code, "password_mismatch")
        self.assertIsNotNone(self.users.authenticate("cashier1", "cashier1"))

    def test_reset_super_admin_password(self):
        self.assertTrue(self.admin.reset_super_admin_password(self.super, "root", "root"))
        self.assertIsNotNone(self.users.authenticate("Easytech", "root"))
        with self.assertRaises(PermissionDeniedError):
            self.admin.reset_super_admin_password(self.cashier, "x", "x")

    def test_user_management_requires_super_admin(self):
        with self.assertRaises(PermissionDeniedError):
            self.admin.add_user(self.cashier, "bob", "pw")
        with self.assertRaises(PermissionDeniedError):
            self.admin.list_users(None)

        bob = self.admin.add_user(self.super, "bob", "pw")
        self.assertIn("bob", [u.username for u in self.admin.list_users(self.super)])
        with self.assertRaises(ValidationError) as ctx:
            self.admin.add_user(self.super, "bob", "pw")
        self.assertEqual(ctx.exception.code, "duplicate_user")
        with self.assertRaises(ValidationError):
            self.admin.add_user(self.super, "  ", "pw")

        self.assertTrue(self.admin.delete_user(self.super, bob.id))
        self.assertFalse(self.admin.delete_user(self.super, bob.id))

    def test_reset_system_clears_products_and_sales(self):
        pid = self.catalog.add_product("Cable", 5.0, 2)
        builder = SaleBuilder(self.catalog, self.ledger)
        builder.select_product(self.catalog.get_product(pid))
        builder.set_payment_received(5)
        builder.finalize("Easytech", "Main Street Store")

        with self.assertRaises(PermissionDeniedError):
            self.admin.reset_system(self.cashier)
        self.admin.reset_system(self.super)
        self.assertEqual(self.catalog.list_products(), [])
        self.assertEqual(self.ledger.count(), 0)
        self.assertEqual(len(self.users.list_users()), 3)


class FakePrinter:
    def __init__(self):
        self.printed = []

    def print_file(self, path):
        self.printed.append(path)


class TestPosApp(unittest.TestCase):
    """End-to-end flows through the facade used by the shell."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.printer = FakePrinter()
        self.app = PosApp(store_location="Test Store", ticket_dir=self.tmpdir.name, printer=self.printer)
        self.pid = self.app.add_product("Widget", 10.0, 5)[1]
        self.empty_pid = self.app.add_product("Sold Out", 1.0, 0)[1]
        self.assertTrue(self.app.login("cashier1", "cashier1"))

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_complete_sale_returns_ticket(self):
        self.assertTrue(self.app.add_to_sale(self.pid)[0])
        self.app.set_quantity(self.pid, 2)
        self.app.set_discount(5)
        self.app.set_payment_received(20)
        ok, text = self.app.complete_sale()
        self.assertTrue(ok, text)
        self.assertIn("Cashier: cashier1", text)
        self.assertIn("Store: Test Store", text)
        self.assertIn("$15.00", text)
        self.assertEqual(len(self.app.list_sales()), 1)
        self.assertEqual(self.app.list_products()[0].quantity, 3)

    def test_out_of_stock_product_cannot_be_added(self):
        ok, msg = self.app.add_to_sale(self.empty_pid)
        self.assertFalse(ok)
        self.assertIn("out of stock", msg)
        self.assertFalse(self.app.add_to_sale("nope")[0])
        self.assertEqual(self.app.view_sale(), [])

    def test_complete_sale_requires_login(self):
        self.app.logout()
        self.app.add_to_sale(self.pid)
        self.app.set_payment_received(10)
        ok, msg = self.app.complete_sale()
        self.assertFalse(ok)
        self.assertIn("logged in", msg)

    def test_validation_errors_become_messages(self):
        ok, msg = self.app.complete_sale()
        self.assertEqual((ok, msg), (False, "Please select at least one product"))
        self.app.add_to_sale(self.pid)
        self.app.set_payment_received(1)
        ok, msg = self.app.complete_sale()
        self.assertEqual((ok, msg), (False, "Payment received is less than the total amount"))

    def test_nan_amounts_become_messages(self):
        ok, msg = self.app.add_product("Gizmo", float("nan"), 5)
        self.assertFalse(ok)
        self.assertIn("finite", msg)

        self.app.add_to_sale(self.pid)
        self.app.set_payment_received(float("nan"))
        ok, msg = self.app.complete_sale()
        self.assertEqual((ok, msg), (False, "Amounts must be finite numbers"))
        self.assertEqual(self.app.list_sales(), [])

    def test_set_quantity_for_product_not_in_sale(self):
        self.assertEqual(self.app.set_quantity(self.pid, 2), (False, "Product not in current sale."))
        self.app.add_to_sale(self.pid)
        self.assertEqual(self.app.set_quantity(self.pid, 2), (True, "Quantity updated."))

    def test_print_and_download_ticket(self):
        self.app.add_to_sale(self.pid)
        self.app.set_payment_received(10)
        self.assertTrue(self.app.complete_sale()[0])
        sale_id = self.app.current_sale.id

        ok, path = self.app.download_ticket()
        self.assertTrue(ok, path)
        self.assertTrue(path.endswith(f"sales_ticket_{sale_id}.pdf"))
        with open(path, "rb") as f:
            self.assertTrue(f.read().startswith(b"%PDF"))

        ok, msg = self.app.print_ticket(sale_id)
        self.assertTrue(ok, msg)
        self.assertEqual(len(self.printer.printed), 1)

    def test_ticket_without_sale(self):
        ok, msg = self.app.show_ticket()
        self.assertFalse(ok)
        self.assertIn("not found", msg)

    def test_render_failure_keeps_the_sale(self):
        self.app.add_to_sale(self.pid)
        self.app.set_payment_received(10)
        with mock.patch("app.render_text", side_effect=RenderError("boom")):
            ok, msg = self.app.complete_sale()
        self.assertTrue(ok)
        self.assertIn("An error occurred while generating the ticket", msg)
        self.assertEqual(len(self.app.list_sales()), 1)
        self.assertIn(b"receipt_render_error_total", generate_metrics_text())

    def test_print_failure_is_reported(self):
        self.app.add_to_sale(self.pid)
        self.app.set_payment_received(10)
        self.app.complete_sale()
        self.printer.print_file = mock.Mock(side_effect=OSError("no printer"))
        ok, msg = self.app.print_ticket()
        self.assertFalse(ok)
        self.assertIn("trying to print", msg)

    def test_settings_through_facade(self):
        ok, msg = self.app.change_password("cashier1", "a", "b")
        self.assertEqual((ok, msg), (False, "New passwords do not match"))
        self.assertFalse(self.app.reset_system()[0])
        self.assertFalse(self.app.list_users()[0])

        self.assertTrue(self.app.login("Easytech", "easytech"))
        self.assertTrue(self.app.add_user("dave", "pw")[0])
        self.assertTrue(self.app.reset_system()[0])
        self.assertEqual(self.app.list_products(), [])


if __name__ == "__main__":
    unittest.main(verbosity=2)
