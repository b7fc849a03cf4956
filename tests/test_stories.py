import asyncio
import unittest

from chatcore.errors import UploadError, ValidationError
from chatcore.models import IMAGE, VIDEO, UploadFile
from chatcore.stories import STORY_TTL_MS, StoryService
from chatcore.users import UserDirectory

from .helpers import FakeClock, FlakyStore, FlakyUploader, add_user

HOUR_S = 60 * 60


def _photo(name: str = "sunset.jpg") -> UploadFile:
    return UploadFile(name=name, media_type="image/jpeg", data=b"jpeg")


class StoryServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = FakeClock()
        self.store = FlakyStore()
        self.uploader = FlakyUploader()
        for user_id, name in (("xia", "Xia"), ("yan", "Yan"), ("zoe", "Zoe")):
            await add_user(self.store.inner, user_id, name)
        self.users = UserDirectory(self.store, now_func=self.clock.now)
        self.stories = StoryService(self.store, self.uploader, self.users, now_func=self.clock.now)

    async def test_publish_sets_expiry_and_kind(self):
        published_at = self.clock.now()
        photo = await self.stories.publish("xia", _photo(), caption="  golden hour ")
        clip = await self.stories.publish("xia", UploadFile(name="clip.mp4", media_type="video/mp4", data=b"mp4"))

        self.assertEqual(photo.expires_at_ms, published_at + STORY_TTL_MS)
        self.assertEqual(photo.kind, IMAGE)
        self.assertEqual(photo.caption, "golden hour")
        self.assertEqual(clip.kind, VIDEO)
        self.assertIsNone(clip.caption)
        self.assertEqual(self.uploader.keys[0], f"stories/xia/{published_at}_sunset.jpg")

    async def test_publish_requires_file_and_upload(self):
        with self.assertRaises(ValidationError):
            await self.stories.publish("xia", None)
        self.uploader.failure = ConnectionError("offline")
        with self.assertRaises(UploadError):
            await self.stories.publish("xia", _photo())

        self.assertEqual(await self.store.inner.list("stories"), [])

    async def test_publish_rejects_media_other_than_photo_or_video(self):
        for media_type in ("application/pdf", "audio/mpeg", ""):
            with self.subTest(media_type=media_type):
                with self.assertRaises(ValidationError):
                    await self.stories.publish("xia", UploadFile(name="file", media_type=media_type, data=b"x"))

        self.assertEqual(self.uploader.keys, [])
        self.assertEqual(await self.store.inner.list("stories"), [])

    async def test_active_window_excludes_the_expiry_instant(self):
        story = await self.stories.publish("xia", _photo())

        visible_at_start = await self.stories.list_active("yan")
        self.clock.now_ms = story.expires_at_ms - 1
        visible_before_expiry = await self.stories.list_active("yan")
        self.clock.now_ms = story.expires_at_ms
        visible_at_expiry = await self.stories.list_active("yan")

        self.assertEqual(visible_at_start.playlist(), [story])
        self.assertEqual(visible_before_expiry.playlist(), [story])
        self.assertEqual(visible_at_expiry.playlist(), [])

    async def test_expired_story_keeps_its_view_records(self):
        story = await self.stories.publish("xia", _photo())
        self.clock.advance(HOUR_S)
        await self.stories.view(story, "yan")

        feed = await self.stories.list_active("xia")
        self.assertEqual([v.viewer.display_name for v in feed.mine[0].views], ["Yan"])

        self.clock.advance(24 * HOUR_S)
        self.assertEqual((await self.stories.list_active("xia")).mine, [])
        self.assertEqual(len(await self.store.inner.list("story_views")), 1)

    async def test_views_are_deduplicated_and_authors_record_nothing(self):
        story = await self.stories.publish("xia", _photo())

        first = await self.stories.view(story, "yan")
        self.clock.advance(5)
        second = await self.stories.view(story, "yan")
        own = await self.stories.view(story, "xia")

        self.assertEqual(first, second)
        self.assertIsNone(own)
        self.assertEqual(len(await self.store.inner.list("story_views")), 1)

    async def test_concurrent_views_record_once(self):
        story = await self.stories.publish("xia", _photo())
        self.store.yield_each_call = True

        await asyncio.gather(*(self.stories.view(story, "yan") for _ in range(3)))

        self.assertEqual(len(await self.store.inner.list("story_views")), 1)

    async def test_feed_groups_by_author_with_unseen_flag(self):
        mine = await self.stories.publish("yan", _photo("me.jpg"))
        self.clock.advance(1)
        xia_old = await self.stories.publish("xia", _photo("x1.jpg"))
        self.clock.advance(1)
        zoe = await self.stories.publish("zoe", _photo("z1.jpg"))
        self.clock.advance(1)
        xia_new = await self.stories.publish("xia", _photo("x2.jpg"))
        await self.stories.view(zoe, "yan")

        feed = await self.stories.list_active("yan")

        self.assertEqual([e.story for e in feed.mine], [mine])
        self.assertEqual([g.author_id for g in feed.others], ["xia", "zoe"])
        self.assertEqual([e.story for e in feed.others[0].stories], [xia_new, xia_old])
        self.assertTrue(feed.others[0].has_unseen)
        self.assertFalse(feed.others[1].has_unseen)
        self.assertEqual(feed.others[0].author.display_name, "Xia")
        self.assertEqual(feed.playlist(), [mine, xia_new, xia_old, zoe])


if __name__ == "__main__":
    unittest.main()
