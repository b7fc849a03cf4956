import unittest

from chatcore.calls import CALL_LOG_PAGE_SIZE, CallLog
from chatcore.models import CallRecord
from chatcore.store import InMemoryRecordStore
from chatcore.users import UserDirectory

from .helpers import add_user


class CallLogTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = InMemoryRecordStore()
        await add_user(self.store, "ann", "Ann")
        await add_user(self.store, "bob", "Bob")
        self.calls = CallLog(self.store, UserDirectory(self.store))

    async def _call(self, call_id, caller, receiver, started_at_ms, outcome="answered", duration_s=30):
        call = CallRecord(
            call_id=call_id,
            caller_id=caller,
            receiver_id=receiver,
            kind="voice",
            outcome=outcome,
            started_at_ms=started_at_ms,
            duration_s=duration_s,
        )
        await self.store.create("calls", call.to_record())

    async def test_newest_first_with_names_and_direction(self):
        await self._call("c1", "ann", "bob", 100)
        await self._call("c2", "bob", "ann", 300, outcome="missed", duration_s=12)
        await self._call("c3", "bob", "ghost", 200)

        entries = await self.calls.list_for_user("ann")

        self.assertEqual([e.call.call_id for e in entries], ["c2", "c1"])
        self.assertEqual([e.direction for e in entries], ["incoming", "outgoing"])
        self.assertEqual((entries[0].caller_name, entries[0].receiver_name), ("Bob", "Ann"))
        self.assertEqual(entries[0].call.duration_s, 0)
        self.assertEqual(entries[1].call.duration_s, 30)

    async def test_unknown_party_and_query(self):
        await self._call("c1", "bob", "ghost", 100)
        await self._call("c2", "bob", "ann", 200)

        entries = await self.calls.list_for_user("bob")
        searched = await self.calls.list_for_user("bob", query="unk")

        self.assertEqual(entries[1].receiver_name, "Unknown")
        self.assertEqual([e.call.call_id for e in searched], ["c1"])

    async def test_page_is_capped(self):
        for index in range(CALL_LOG_PAGE_SIZE + 5):
            await self._call(f"c{index}", "ann", "bob", index)

        entries = await self.calls.list_for_user("bob")

        self.assertEqual(len(entries), CALL_LOG_PAGE_SIZE)
        self.assertEqual(entries[0].call.call_id, f"c{CALL_LOG_PAGE_SIZE + 4}")


if __name__ == "__main__":
    unittest.main()
