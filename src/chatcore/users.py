from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List
from urllib.parse import quote

from .errors import NotFoundError, ValidationError
from .models import USERS, User, _now_ms, new_id

logger = logging.getLogger(__name__)

DEFAULT_STATUS_MESSAGE = "Hey there! I am using WhatsApp."
UNKNOWN_NAME = "Unknown"


def default_avatar_url(email: str) -> str:
    return f"https://api.dicebear.com/7.x/avataaars/svg?seed={quote(email)}"


class UserDirectory:
    """Looks up users in the record store and registers them on first sign-in."""

    def __init__(self, store, *, now_func: Callable[[], int] = _now_ms) -> None:
        self._store = store
        self._now = now_func

    async def sign_in(self, email: str, display_name: str | None = None, avatar_url: str | None = None) -> User:
        email = (email or "").strip()
        if not email:
            raise ValidationError("email is required")
        now_ms = self._now()
        existing = await self._store.list(USERS, {"email": email}, limit=1)
        if existing:
            record = await self._store.update(
                USERS, existing[0]["id"], {"is_online": True, "last_seen_ms": now_ms}
            )
            return User.from_record(record)

        user = User(
            user_id=new_id("user"),
            display_name=(display_name or "").strip() or email.split("@")[0],
            email=email,
            avatar_url=avatar_url or default_avatar_url(email),
            status_message=DEFAULT_STATUS_MESSAGE,
            is_online=True,
            last_seen_ms=now_ms,
            created_at_ms=now_ms,
        )
        await self._store.create(USERS, user.to_record())
        logger.info("registered user %s", user.user_id)
        return user

    async def get(self, user_id: str) -> User | None:
        records = await self._store.list(USERS, {"id": user_id}, limit=1)
        if not records:
            return None
        return User.from_record(records[0])

    async def require(self, user_id: str) -> User:
        user = await self.get(user_id)
        if user is None:
            raise NotFoundError(f"user {user_id} not found")
        return user

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, User]:
        wanted = sorted(set(user_ids))
        if not wanted:
            return {}
        records = await self._store.list(USERS, {"id": {"in": wanted}})
        return {record["id"]: User.from_record(record) for record in records}

    async def list_contacts(self, user_id: str, *, query: str | None = None) -> List[User]:
        records = await self._store.list(
            USERS, {"id": {"not": user_id}}, order_by=("display_name", "asc")
        )
        users = [User.from_record(record) for record in records]
        needle = (query or "").strip().lower()
        if needle:
            users = [u for u in users if needle in u.display_name.lower() or needle in u.email.lower()]
        return users


def display_name(users: Dict[str, User], user_id: str) -> str:
    user = users.get(user_id)
    return user.display_name if user is not None and user.display_name else UNKNOWN_NAME
