from __future__ import annotations

from dataclasses import dataclass
from typing import List

from .models import CALLS, CallRecord
from .users import UserDirectory, display_name

CALL_LOG_PAGE_SIZE = 50


@dataclass
class CallLogEntry:
    call: CallRecord
    caller_name: str
    receiver_name: str
    direction: str


class CallLog:
    """Read-only call history with both parties' names resolved."""

    def __init__(self, store, users: UserDirectory, *, page_size: int = CALL_LOG_PAGE_SIZE) -> None:
        self._store = store
        self._users = users
        self.page_size = page_size

    async def list_for_user(self, user_id: str, *, query: str | None = None) -> List[CallLogEntry]:
        records = await self._store.list(
            CALLS,
            {"OR": [{"caller_id": user_id}, {"receiver_id": user_id}]},
            order_by=("started_at_ms", "desc"),
            limit=self.page_size,
        )
        calls = [CallRecord.from_record(record) for record in records]
        users = await self._users.get_many(
            [call.caller_id for call in calls] + [call.receiver_id for call in calls]
        )
        entries = [
            CallLogEntry(
                call=call,
                caller_name=display_name(users, call.caller_id),
                receiver_name=display_name(users, call.receiver_id),
                direction="outgoing" if call.caller_id == user_id else "incoming",
            )
            for call in calls
        ]
        needle = (query or "").strip().lower()
        if needle:
            entries = [
                e for e in entries if needle in e.caller_name.lower() or needle in e.receiver_name.lower()
            ]
        return entries
