import os
import tempfile
import unittest

from aiohttp.test_utils import TestServer

from chatcore.config import EngineConfig
from chatcore.engine import build_engine
from chatcore.http_store import HttpRecordStore
from chatcore.models import UploadFile
from chatcore.sqlite_store import SQLiteRecordStore
from chatcore.store import InMemoryRecordStore
from chatcore.store_app import create_app
from chatcore.uploads import HttpUploader, InMemoryUploader

from .helpers import FakeClock


class BuildEngineTests(unittest.IsolatedAsyncioTestCase):
    async def test_defaults_to_in_memory_collaborators(self):
        engine = build_engine()
        try:
            self.assertIsInstance(engine.store, InMemoryRecordStore)
            self.assertIsInstance(engine.uploader, InMemoryUploader)
            session = engine.playback("u1", autoplay=False)
            self.assertEqual(session.ticks_per_story, 50)
        finally:
            await engine.close()

    async def test_sqlite_engine_persists_between_instances(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = EngineConfig(db_path=os.path.join(tmpdir, "chat.db"))
            engine = build_engine(config)
            self.assertIsInstance(engine.store, SQLiteRecordStore)
            user = await engine.users.sign_in("ann@example.com", "Ann")
            await engine.close()

            engine = build_engine(config)
            try:
                self.assertEqual((await engine.users.require(user.user_id)).display_name, "Ann")
            finally:
                await engine.close()

    async def test_engine_over_http_store_service(self):
        server = TestServer(create_app())
        await server.start_server()
        base_url = str(server.make_url(""))
        clock = FakeClock()
        engine = build_engine(EngineConfig(store_url=base_url, upload_url=base_url), now_func=clock.now)
        try:
            self.assertIsInstance(engine.store, HttpRecordStore)
            self.assertIsInstance(engine.uploader, HttpUploader)
            ann = await engine.users.sign_in("ann@example.com", "Ann")
            bob = await engine.users.sign_in("bob@example.com", "Bob")
            chat = await engine.directory.resolve_or_create_individual(ann.user_id, bob.user_id)
            pipeline = engine.pipeline(chat.conv_id)
            await pipeline.send(ann.user_id, "over the wire")
            await pipeline.attach(bob.user_id, UploadFile(name="a.txt", media_type="text/plain", data=b"hi"))

            views = await engine.pipeline(chat.conv_id).load()

            self.assertEqual([v.message.body for v in views], ["over the wire", "a.txt"])
            self.assertTrue(views[1].message.attachment.url.startswith(base_url.rstrip("/")))
        finally:
            await engine.close()
            await server.close()


if __name__ == "__main__":
    unittest.main()
