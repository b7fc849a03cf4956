from __future__ import annotations

import asyncio
from typing import Callable, List, Tuple

from chatcore.errors import StoreError
from chatcore.models import CONVERSATIONS, PARTICIPANTS, USERS, Conversation, Participant, User
from chatcore.store import InMemoryRecordStore
from chatcore.uploads import InMemoryUploader


class FakeClock:
    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now_ms = start_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)

    def now(self) -> int:
        return self.now_ms


class FlakyStore:
    """Wraps an in-memory store, records calls and fails the ones it is told to.

    ``yield_each_call`` makes every operation await the event loop first so
    concurrent callers interleave between store round trips.
    """

    def __init__(self, inner: InMemoryRecordStore | None = None, *, yield_each_call: bool = False) -> None:
        self.inner = inner or InMemoryRecordStore()
        self.yield_each_call = yield_each_call
        self.calls: List[Tuple[str, str]] = []
        self.on_call: Callable[[str, str], None] | None = None
        self._failures: List[list] = []

    def fail_next(self, op: str, collection: str | None = None, *, exc: Exception | None = None, skip: int = 0) -> None:
        self._failures.append([op, collection, exc or StoreError(f"{op} failed"), skip])

    def count(self, op: str, collection: str | None = None) -> int:
        return sum(1 for o, c in self.calls if o == op and (collection is None or c == collection))

    async def _enter(self, op: str, collection: str) -> None:
        self.calls.append((op, collection))
        if self.on_call is not None:
            self.on_call(op, collection)
        if self.yield_each_call:
            await asyncio.sleep(0)
        for failure in self._failures:
            f_op, f_collection, exc, skip = failure
            if f_op != op or (f_collection is not None and f_collection != collection):
                continue
            if skip:
                failure[3] -= 1
                return
            self._failures.remove(failure)
            raise exc

    async def list(self, collection, where=None, *, order_by=None, limit=None):
        await self._enter("list", collection)
        return await self.inner.list(collection, where, order_by=order_by, limit=limit)

    async def create(self, collection, record):
        await self._enter("create", collection)
        return await self.inner.create(collection, record)

    async def update(self, collection, record_id, patch):
        await self._enter("update", collection)
        return await self.inner.update(collection, record_id, patch)

    async def delete(self, collection, record_id):
        await self._enter("delete", collection)
        return await self.inner.delete(collection, record_id)

    async def create_if_absent(self, collection, record, key):
        await self._enter("create_if_absent", collection)
        return await self.inner.create_if_absent(collection, record, key)


class FlakyUploader(InMemoryUploader):
    def __init__(self) -> None:
        super().__init__()
        self.failure: Exception | None = None
        self.keys: List[str] = []

    async def upload(self, data, destination_key, *, content_type=None):
        self.keys.append(destination_key)
        if self.failure is not None:
            exc, self.failure = self.failure, None
            raise exc
        return await super().upload(data, destination_key, content_type=content_type)


async def add_user(store, user_id: str, display_name: str, **fields) -> User:
    user = User(user_id=user_id, display_name=display_name, email=f"{user_id}@example.com", **fields)
    await store.create(USERS, user.to_record())
    return user


async def add_conversation(store, conversation: Conversation, member_ids, joined_at_ms: int = 0) -> Conversation:
    await store.create(CONVERSATIONS, conversation.to_record())
    for user_id in member_ids:
        participant = Participant(conv_id=conversation.conv_id, user_id=user_id, role="member", joined_at_ms=joined_at_ms)
        await store.create(PARTICIPANTS, participant.to_record())
    return conversation
