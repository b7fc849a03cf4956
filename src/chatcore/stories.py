from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from .errors import UploadError, ValidationError
from .models import (
    STORIES,
    STORY_KINDS,
    STORY_VIEWS,
    Story,
    StoryView,
    UploadFile,
    User,
    _now_ms,
    classify_media_type,
    new_id,
)
from .users import UserDirectory

logger = logging.getLogger(__name__)

STORY_TTL_MS = 24 * 60 * 60 * 1000


@dataclass
class ViewerEntry:
    view: StoryView
    viewer: User | None = None


@dataclass
class StoryEntry:
    story: Story
    author: User | None = None
    views: List[ViewerEntry] = field(default_factory=list)

    def seen_by(self, viewer_id: str) -> bool:
        return any(entry.view.viewer_id == viewer_id for entry in self.views)


@dataclass
class StoryGroup:
    author_id: str
    author: User | None
    stories: List[StoryEntry]
    has_unseen: bool


@dataclass
class StoryFeed:
    mine: List[StoryEntry] = field(default_factory=list)
    others: List[StoryGroup] = field(default_factory=list)

    def playlist(self) -> List[Story]:
        """Stories in playback order: own stories, then each author group in turn."""

        ordered = [entry.story for entry in self.mine]
        for group in self.others:
            ordered.extend(entry.story for entry in group.stories)
        return ordered


class StoryService:
    """Publishes ephemeral stories, lists the active ones and records views.

    Expiry is evaluated when stories are listed; expired stories stay in the
    store but are never returned.
    """

    def __init__(
        self,
        store,
        uploader,
        users: UserDirectory,
        *,
        ttl_ms: int = STORY_TTL_MS,
        now_func: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._uploader = uploader
        self._users = users
        self.ttl_ms = ttl_ms
        self._now = now_func

    async def publish(self, author_id: str, file: UploadFile, caption: str | None = None) -> Story:
        if file is None or not file.name:
            raise ValidationError("a photo or video is required")
        kind = classify_media_type(file.media_type)
        if kind not in STORY_KINDS:
            raise ValidationError(f"stories must be a photo or video, not {file.media_type or 'unknown'}")
        now_ms = self._now()
        key = f"stories/{author_id}/{now_ms}_{file.name}"
        try:
            result = await self._uploader.upload(file.data, key, content_type=file.media_type)
        except UploadError:
            raise
        except Exception as exc:
            raise UploadError(f"upload of {key} failed: {exc}") from exc

        story = Story(
            story_id=new_id("story"),
            author_id=author_id,
            content_url=result.public_url,
            kind=kind,
            created_at_ms=now_ms,
            expires_at_ms=now_ms + self.ttl_ms,
            caption=(caption or "").strip() or None,
        )
        await self._store.create(STORIES, story.to_record())
        logger.info("published story %s for %s", story.story_id, author_id)
        return story

    async def list_active(self, viewer_id: str) -> StoryFeed:
        now_ms = self._now()
        records = await self._store.list(
            STORIES, {"expires_at_ms": {"gt": now_ms}}, order_by=("created_at_ms", "desc")
        )
        stories = [Story.from_record(record) for record in records]
        stories = [story for story in stories if story.is_active(now_ms)]
        if not stories:
            return StoryFeed()

        view_records = await self._store.list(
            STORY_VIEWS, {"story_id": {"in": [story.story_id for story in stories]}}
        )
        views = [StoryView.from_record(record) for record in view_records]
        user_ids = {story.author_id for story in stories} | {view.viewer_id for view in views}
        users = await self._users.get_many(user_ids)

        views_by_story: Dict[str, List[ViewerEntry]] = {}
        for view in views:
            views_by_story.setdefault(view.story_id, []).append(
                ViewerEntry(view=view, viewer=users.get(view.viewer_id))
            )

        feed = StoryFeed()
        grouped: Dict[str, List[StoryEntry]] = {}
        for story in stories:
            entry = StoryEntry(
                story=story,
                author=users.get(story.author_id),
                views=views_by_story.get(story.story_id, []),
            )
            if story.author_id == viewer_id:
                feed.mine.append(entry)
            else:
                grouped.setdefault(story.author_id, []).append(entry)

        for author_id, entries in grouped.items():
            feed.others.append(
                StoryGroup(
                    author_id=author_id,
                    author=users.get(author_id),
                    stories=entries,
                    has_unseen=any(not entry.seen_by(viewer_id) for entry in entries),
                )
            )
        return feed

    async def view(self, story: Story, viewer_id: str) -> StoryView | None:
        """Record that ``viewer_id`` saw ``story``; authors viewing their own story record nothing."""

        if viewer_id == story.author_id:
            return None
        key = {"story_id": story.story_id, "viewer_id": viewer_id}
        existing = await self._store.list(STORY_VIEWS, key, limit=1)
        if existing:
            return StoryView.from_record(existing[0])
        candidate = StoryView(
            view_id=new_id("view"),
            story_id=story.story_id,
            viewer_id=viewer_id,
            viewed_at_ms=self._now(),
        )
        record, _ = await self._store.create_if_absent(STORY_VIEWS, candidate.to_record(), key)
        return StoryView.from_record(record)
