"""
Command-line interface for the POS application.

This script wires :class:`app.PosApp` into an interactive menu loop.  It
prompts for input, calls the facade and prints results; all business rules
live in the facade and the modules behind it.
"""

import math
import os
import sys

import logging_config
from app import PosApp
from dao import seed_demo_products
from metrics import generate_metrics_text


def _read_float(prompt: str) -> float | None:
    try:
        value = float(input(prompt))
    except ValueError:
        value = math.nan
    if not math.isfinite(value):
        print("Please enter a valid number.")
        return None
    return value


def _print_products(products) -> None:
    if not products:
        print("No products available.")
        return
    print("\nAvailable Products:")
    for p in products:
        flag = "" if p.quantity else "  [out of stock]"
        print(f"{p.id}. {p.name} - ${p.price:.2f} (Stock: {p.quantity}){flag}")


def _print_sale(app: PosApp) -> None:
    lines = app.view_sale()
    if not lines:
        print("Current sale is empty.")
    for ln in lines:
        print(f"{ln.product_id}. {ln.name} x {ln.quantity} @ ${ln.price:.2f} = ${ln.line_total:.2f}")
    t = app.compute_totals()
    print(f"Subtotal: ${t.subtotal:.2f}")
    print(f"Discount: ${t.discount:.2f}")
    print(f"Total: ${t.total:.2f}")
    print(f"Payment Received: ${t.payment_received:.2f}")
    print(f"Change: ${t.change:.2f}")


def settings_menu(app: PosApp) -> None:
    """Password changes, and for super admins user management and reset."""
    while True:
        print("\n-- Settings --")
        print("1. Change Password")
        if app.current_user_is_super_admin():
            print("2. Reset Superadmin Password")
            print("3. List Users")
            print("4. Add User")
            print("5. Delete User")
            print("6. Reset Entire System")
        print("0. Back")
        choice = input("Select an option: ").strip()
        if choice == "1":
            old = input("Old Password: ")
            new = input("New Password: ")
            confirm = input("Confirm New Password: ")
            print(app.change_password(old, new, confirm)[1])
        elif choice == "2":
            new = input("New Superadmin Password: ")
            confirm = input("Confirm New Superadmin Password: ")
            print(app.reset_super_admin_password(new, confirm)[1])
        elif choice == "3":
            ok, users = app.list_users()
            if not ok:
                print(users)
                continue
            for u in users:
                print(f"{u.id}. {u.username} ({'Super Admin' if u.is_super_admin else 'Cashier'})")
        elif choice == "4":
            username = input("Username: ").strip()
            password = input("Password: ")
            is_super = input("Super Admin? [y/N]: ").strip().lower() == "y"
            print(app.add_user(username, password, is_super)[1])
        elif choice == "5":
            try:
                uid = int(input("User ID: "))
            except ValueError:
                print("Please enter a valid numeric ID.")
                continue
            if input("Are you sure you want to delete this user? [y/N]: ").strip().lower() == "y":
                print(app.delete_user(uid)[1])
        elif choice == "6":
            answer = input(
                "This will delete all products and sales data and cannot be undone. Continue? [y/N]: "
            )
            if answer.strip().lower() == "y":
                print(app.reset_system()[1])
        elif choice == "0":
            return
        else:
            print("Invalid option. Please try again.")


def interactive_cli() -> None:
    """Provide a simple command-line interface to ring up sales."""
    logging_config.configure_logging(console=False)
    app = PosApp()
    if os.environ.get("POS_SEED_DEMO", "1") == "1":
        seed_demo_products(app.conn)

    def print_menu() -> None:
        print("\n-- EasyTech POS --")
        print("1. Login")
        print("2. List Products")
        print("3. Search Products")
        print("4. Add Product to Sale")
        print("5. Set Line Quantity")
        print("6. Remove Line")
        print("7. Set Discount")
        print("8. Set Payment Received")
        print("9. View Current Sale")
        print("10. Complete Sale")
        print("11. Print Ticket")
        print("12. Download Ticket")
        print("13. Add New Product")
        print("14. Settings")
        print("15. Show Metrics")
        print("0. Exit")

    while True:
        print_menu()
        choice = input("Select an option: ").strip()
        if choice == "1":
            username = input("Username: ").strip()
            password = input("Password: ").strip()
            if app.login(username, password):
                print(f"Welcome, {username}!")
            else:
                print("Invalid credentials.")
        elif choice == "2":
            _print_products(app.list_products())
        elif choice == "3":
            _print_products(app.search_products(input("Search: ")))
        elif choice == "4":
            print(app.add_to_sale(input("Enter Product ID: ").strip())[1])
        elif choice == "5":
            pid = input("Enter Product ID: ").strip()
            try:
                qty = int(input("Quantity: "))
            except ValueError:
                print("Please enter a valid whole number.")
                continue
            print(app.set_quantity(pid, qty)[1])
        elif choice == "6":
            app.remove_from_sale(input("Enter Product ID: ").strip())
        elif choice == "7":
            amount = _read_float("Discount: ")
            if amount is not None:
                app.set_discount(amount)
        elif choice == "8":
            amount = _read_float("Payment Received: ")
            if amount is not None:
                app.set_payment_received(amount)
        elif choice == "9":
            _print_sale(app)
        elif choice == "10":
            ok, msg = app.complete_sale()
            print(f"\n{msg}" if ok else f"Error: {msg}")
        elif choice == "11":
            print(app.print_ticket()[1])
        elif choice == "12":
            ok, msg = app.download_ticket()
            print(f"Ticket saved to {msg}" if ok else msg)
        elif choice == "13":
            if not app.current_user:
                print("Please log in first.")
                continue
            name = input("Product name: ").strip()
            price = _read_float("Price: ")
            try:
                stock = int(input("Initial stock: "))
            except ValueError:
                print("Please enter a valid whole number for stock.")
                continue
            if price is None:
                continue
            ok, msg = app.add_product(name, price, stock)
            print(f"Added product with ID {msg}." if ok else msg)
        elif choice == "14":
            if not app.current_user:
                print("Please log in first.")
                continue
            settings_menu(app)
        elif choice == "15":
            print(generate_metrics_text().decode("utf-8"))
        elif choice == "0":
            print("Exiting application.")
            break
        else:
            print("Invalid option. Please try again.")


def main() -> None:
    try:
        interactive_cli()
    except KeyboardInterrupt:
        print("\nInterrupted by user. Exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
