from __future__ import annotations

from dataclasses import dataclass
import logging
import re
import sqlite3

from salesdesk.domain.errors import AuthorizationError
from salesdesk.domain.models import ROLES, User

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginPolicy:
    min_password_length: int = 8


def _validate_secret_strength(secret: str, *, min_len: int) -> None:
    if len(secret) < min_len:
        raise AuthorizationError(f"Password must have at least {min_len} characters.")
    if not re.search(r"[A-Za-z]", secret):
        raise AuthorizationError("Password must include at least one letter.")
    if not re.search(r"\d", secret):
        raise AuthorizationError("Password must include at least one number.")


PERMISSIONS: dict[str, set[str]] = {
    "create_sale": {"agent"},
    "cancel_sale": {"agent"},
    "validate_sale": {"controller"},
    "list_sales": {"admin", "agent", "controller"},
    "view_stats": {"admin"},
    "export_sales": {"admin"},
    "manage_users": {"admin"},
}


class AuthService:
    def __init__(self, repo, policy: LoginPolicy | None = None):
        self.repo = repo
        self.policy = policy or LoginPolicy()

    def list_users(self, actor: User) -> list[User]:
        self.require_action(actor, "manage_users")
        return self.repo.list_users()

    def login(self, username: str, password: str) -> User:
        username_clean = username.strip()
        if not username_clean:
            raise AuthorizationError("Username is required.")

        user = self.repo.authenticate_user(username_clean, (password or "").strip())
        if not user:
            log.warning("login_failed username=%s", username_clean)
            raise AuthorizationError("Invalid username or password.")
        return user

    def resolve_user(self, user_id: int | None) -> User:
        """Session lookup: turns the id carried by the session into a user."""
        if user_id is None:
            raise AuthorizationError("Not authenticated.")
        user = self.repo.get_user(int(user_id))
        if not user:
            raise AuthorizationError("Not authenticated.")
        return user

    def can(self, user: User, action: str) -> bool:
        allowed_roles = PERMISSIONS.get(action)
        if not allowed_roles:
            return False
        return user.role in allowed_roles

    def require_action(self, user: User, action: str) -> None:
        if not self.can(user, action):
            raise AuthorizationError(f"Role '{user.role}' is not allowed to perform '{action}'.")

    def create_user(self, actor: User, username: str, password: str, name: str, role: str) -> int:
        self.require_action(actor, "manage_users")

        login = username.strip()
        display = name.strip()
        secret = password.strip()
        target_role = role.strip().lower()
        if not login or not display:
            raise AuthorizationError("Username and name are required.")
        _validate_secret_strength(secret, min_len=self.policy.min_password_length)
        if target_role not in ROLES:
            raise AuthorizationError(f"Unknown role: {role!r}")

        try:
            uid = self.repo.create_user(login, secret, display, target_role)
        except sqlite3.IntegrityError as exc:
            raise AuthorizationError(f"Username '{login}' already exists.") from exc
        log.info("user_created id=%s username=%s role=%s actor=%s", uid, login, target_role, actor.id)
        return uid
