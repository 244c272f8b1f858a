"""Management of general (non-banking) users."""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from .database import Database
from .errors import EmailTaken, InvalidCredentials, PasswordMismatch, UserNotFound
from .models import Page, User
from .passwords import PasswordHasher

logger = logging.getLogger("bankapi.users")

SEARCH_FIELDS = ("email", "name", "id")
SORT_FIELDS = ("email", "name", "created_at")


def _split_query(value: Optional[str]) -> Optional[Tuple[str, str]]:
    if not value or ":" not in value:
        return None
    field, term = value.split(":", 1)
    field = field.strip()
    if not field or not term:
        return None
    return field, term


def filter_users(users: List[User], search: Optional[str]) -> List[User]:
    """Apply a ``field:term`` substring filter. Matching is case sensitive."""

    parsed = _split_query(search)
    if parsed is None:
        return users
    field, term = parsed
    if field not in SEARCH_FIELDS:
        return users
    return [user for user in users if term in str(getattr(user, field))]


def sort_users(users: List[User], sort: Optional[str]) -> List[User]:
    """Order by ``field:asc`` or ``field:desc``; unknown fields keep store order."""

    parsed = _split_query(sort)
    if parsed is None:
        return users
    field, direction = parsed
    if field not in SORT_FIELDS:
        return users
    return sorted(users, key=lambda user: getattr(user, field), reverse=direction.strip().lower() == "desc")


class UserService:
    def __init__(self, database: Database, hasher: PasswordHasher) -> None:
        self._database = database
        self._hasher = hasher

    def create_user(self, name: str, email: str, password: str, password_confirm: str) -> User:
        if password != password_confirm:
            raise PasswordMismatch()
        if self._database.get_user_by_email(email) is not None:
            raise EmailTaken(email.strip().lower())
        user = self._database.create_user(name, email, self._hasher.hash(password))
        logger.info("Created user %s", user.id)
        return user

    def list_users(self, *, search: Optional[str] = None, sort: Optional[str] = None) -> List[User]:
        users = self._database.list_users()
        return sort_users(filter_users(users, search), sort)

    def page_users(
        self,
        page_number: int,
        page_size: int,
        *,
        search: Optional[str] = None,
        sort: Optional[str] = None,
    ) -> Page[User]:
        if page_number < 1 or page_size < 1:
            raise ValueError("page_number and page_size must be positive")
        users = self.list_users(search=search, sort=sort)
        start = (page_number - 1) * page_size
        return Page(
            page_number=page_number,
            page_size=page_size,
            count=len(users),
            data=users[start:start + page_size],
        )

    def get_user(self, user_id: str) -> User:
        user = self._database.get_user(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    def update_user(self, user_id: str, *, name: str, email: str) -> User:
        existing = self._database.get_user_by_email(email)
        if existing is not None and existing.id != user_id:
            raise EmailTaken(existing.email)
        user = self._database.update_user(user_id, name=name, email=email)
        if user is None:
            raise UserNotFound(user_id)
        return user

    def change_password(self, user_id: str, old_password: str, new_password: str, confirm_password: str) -> None:
        if new_password != confirm_password:
            raise PasswordMismatch()
        stored_hash = self._database.get_user_password_hash(user_id)
        if stored_hash is None:
            raise UserNotFound(user_id)
        if not self._hasher.verify(old_password, stored_hash):
            raise InvalidCredentials("Wrong password")
        if not self._database.set_user_password(user_id, self._hasher.hash(new_password)):
            raise UserNotFound(user_id)
        logger.info("Password changed for user %s", user_id)

    def delete_user(self, user_id: str) -> None:
        if not self._database.delete_user(user_id):
            raise UserNotFound(user_id)
        logger.info("Deleted user %s", user_id)


__all__ = ["SEARCH_FIELDS", "SORT_FIELDS", "UserService", "filter_users", "sort_users"]
