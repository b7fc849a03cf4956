import unittest

from chatcore.errors import NotFoundError, ValidationError
from chatcore.store import InMemoryRecordStore
from chatcore.users import DEFAULT_STATUS_MESSAGE, UNKNOWN_NAME, UserDirectory, display_name

from .helpers import FakeClock, add_user


class UserDirectoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = FakeClock()
        self.store = InMemoryRecordStore()
        self.users = UserDirectory(self.store, now_func=self.clock.now)

    async def test_first_sign_in_registers_with_defaults(self):
        user = await self.users.sign_in("ann@example.com")

        self.assertEqual(user.display_name, "ann")
        self.assertEqual(user.status_message, DEFAULT_STATUS_MESSAGE)
        self.assertTrue(user.is_online)
        self.assertEqual(user.created_at_ms, self.clock.now())
        self.assertIn("seed=ann%40example.com", user.avatar_url)
        self.assertEqual(await self.users.get(user.user_id), user)

    async def test_repeat_sign_in_reuses_the_account(self):
        first = await self.users.sign_in("ann@example.com", "Ann")
        await self.store.update("users", first.user_id, {"is_online": False})
        self.clock.advance(60)

        second = await self.users.sign_in("ann@example.com", "Someone Else")

        self.assertEqual(second.user_id, first.user_id)
        self.assertEqual(second.display_name, "Ann")
        self.assertTrue(second.is_online)
        self.assertEqual(second.last_seen_ms, self.clock.now())
        self.assertEqual(len(await self.store.list("users")), 1)

    async def test_sign_in_requires_email(self):
        with self.assertRaises(ValidationError):
            await self.users.sign_in("  ")

    async def test_require_and_get_many(self):
        await add_user(self.store, "u1", "Ann")
        await add_user(self.store, "u2", "Bob")

        found = await self.users.get_many(["u2", "u1", "u2", "ghost"])

        self.assertEqual(sorted(found), ["u1", "u2"])
        self.assertEqual(await self.users.get_many([]), {})
        with self.assertRaises(NotFoundError):
            await self.users.require("ghost")

    async def test_contacts_exclude_self_and_filter(self):
        await add_user(self.store, "u1", "Ann")
        await add_user(self.store, "u2", "Zed")
        await add_user(self.store, "u3", "Bob")

        contacts = await self.users.list_contacts("u1")
        filtered = await self.users.list_contacts("u1", query="ZE")

        self.assertEqual([u.display_name for u in contacts], ["Bob", "Zed"])
        self.assertEqual([u.user_id for u in filtered], ["u2"])

    def test_display_name_falls_back_to_unknown(self):
        self.assertEqual(display_name({}, "ghost"), UNKNOWN_NAME)


if __name__ == "__main__":
    unittest.main()
