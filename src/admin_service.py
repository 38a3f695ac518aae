"""
Settings panel operations: password changes, user management and the
system reset.

Every operation that changes someone other than the caller requires the
acting user to be a super admin.  Passwords are compared and stored as
SHA-256 hashes through :class:`~dao.UserDAO`.
"""

from __future__ import annotations

import logging
from typing import List

from dao import ProductDAO, SaleDAO, User, UserDAO
from sale_builder import ValidationError

logger = logging.getLogger(__name__)


class PermissionDeniedError(Exception):
    """The acting user is not allowed to perform this operation."""


def _check_confirmation(new_password: str, confirm_password: str) -> None:
    if new_password != confirm_password:
        raise ValidationError("password_mismatch", "New passwords do not match")
    if not new_password:
        raise ValidationError("missing_fields", "Please fill in all fields")


class AdminService:
    """Administrative operations over the shared stores."""

    def __init__(self, users: UserDAO, catalog: ProductDAO, ledger: SaleDAO) -> None:
        self.users = users
        self.catalog = catalog
        self.ledger = ledger

    @staticmethod
    def _require_super_admin(actor: User | None, action: str) -> User:
        if actor is None or not actor.is_super_admin:
            logger.warning(
                "Permission denied",
                extra={"user_id": actor.username if actor else None, "extra": {"action": action}},
            )
            raise PermissionDeniedError(f"Only a super admin can {action}")
        return actor

    # ---- Passwords ----

    def change_password(
        self, user: User, old_password: str, new_password: str, confirm_password: str
    ) -> bool:
        """Change ``user``'s own password.

        Returns:
            True on success, False if ``old_password`` is wrong.

        Raises:
            ValidationError: The confirmation does not match.
        """
        _check_confirmation(new_password, confirm_password)
        if self.users.authenticate(user.username, old_password) is None:
            logger.info("Password change refused", extra={"user_id": user.username})
            return False
        self.users.set_password(user.id, new_password)
        logger.info("Password changed", extra={"user_id": user.username})
        return True

    def reset_super_admin_password(self, actor: User, new_password: str, confirm_password: str) -> bool:
        self._require_super_admin(actor, "reset the superadmin password")
        _check_confirmation(new_password, confirm_password)
        updated = self.users.set_super_admin_passwords(new_password)
        logger.info("Superadmin password reset", extra={"user_id": actor.username,
                                                         "extra": {"accounts": updated}})
        return updated > 0

    # ---- User management ----

    def list_users(self, actor: User) -> List[User]:
        self._require_super_admin(actor, "list users")
        return self.users.list_users()

    def add_user(self, actor: User, username: str, password: str, is_super_admin: bool = False) -> User:
        self._require_super_admin(actor, "add users")
        username = username.strip()
        if not username or not password:
            raise ValidationError("missing_fields", "Please fill in all fields")
        user_id = self.users.register_user(username, password, is_super_admin)
        if user_id is None:
            raise ValidationError("duplicate_user", f"Username {username!r} already exists")
        logger.info("User added", extra={"user_id": actor.username,
                                         "extra": {"new_user": username, "super_admin": is_super_admin}})
        return self.users.get_user(user_id)

    def delete_user(self, actor: User, user_id: int) -> bool:
        self._require_super_admin(actor, "delete users")
        deleted = self.users.delete_user(user_id)
        if deleted:
            logger.info("User deleted", extra={"user_id": actor.username, "extra": {"deleted_id": user_id}})
        return deleted

    # ---- System reset ----

    def reset_system(self, actor: User) -> None:
        """Delete every product and clear the sales ledger.  Users are kept."""
        self._require_super_admin(actor, "reset the system")
        removed = self.catalog.delete_all_products()
        self.ledger.clear()
        logger.warning("System reset", extra={"user_id": actor.username,
                                              "extra": {"products_removed": removed}})
