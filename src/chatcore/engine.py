from __future__ import annotations

from typing import Callable

from .calls import CallLog
from .config import EngineConfig
from .directory import ConversationDirectory
from .http_store import HttpRecordStore
from .messages import MessagePipeline
from .models import _now_ms
from .playback import PlaybackSession
from .presence import PresenceTracker
from .sqlite_backend import SQLiteBackend
from .sqlite_store import SQLiteRecordStore
from .store import InMemoryRecordStore
from .stories import StoryService
from .uploads import HttpUploader, InMemoryUploader
from .users import UserDirectory


class ChatEngine:
    """Bundles the store collaborators with the services built on them.

    Services are shared; pipelines, presence trackers and playback sessions
    are per-caller objects created on demand.
    """

    def __init__(
        self,
        *,
        store,
        uploader,
        config: EngineConfig | None = None,
        backend: SQLiteBackend | None = None,
        now_func: Callable[[], int] = _now_ms,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store
        self.uploader = uploader
        self.backend = backend
        self._now = now_func
        self.users = UserDirectory(store, now_func=now_func)
        self.directory = ConversationDirectory(store, self.users, now_func=now_func)
        self.stories = StoryService(
            store, uploader, self.users, ttl_ms=self.config.story_ttl_ms, now_func=now_func
        )
        self.calls = CallLog(store, self.users, page_size=self.config.call_log_page_size)

    def pipeline(self, conv_id: str) -> MessagePipeline:
        return MessagePipeline(self.store, self.uploader, self.users, conv_id, now_func=self._now)

    def presence(self, user_id: str) -> PresenceTracker:
        return PresenceTracker(
            self.store,
            user_id,
            heartbeat_interval_s=self.config.heartbeat_interval_s,
            now_func=self._now,
        )

    def playback(self, viewer_id: str, *, autoplay: bool = True) -> PlaybackSession:
        return PlaybackSession(
            self.stories,
            viewer_id,
            tick_interval_s=self.config.playback_tick_s,
            ticks_per_story=self.config.ticks_per_story,
            autoplay=autoplay,
        )

    async def close(self) -> None:
        for collaborator in (self.store, self.uploader):
            close = getattr(collaborator, "close", None)
            if close is not None:
                await close()
        if self.backend is not None:
            self.backend.close()
            self.backend = None


def build_engine(config: EngineConfig | None = None, *, now_func: Callable[[], int] = _now_ms) -> ChatEngine:
    config = config or EngineConfig()
    backend: SQLiteBackend | None = None
    if config.store_url:
        store = HttpRecordStore(config.store_url, timeout_s=config.request_timeout_s)
    elif config.db_path:
        backend = SQLiteBackend(config.db_path)
        store = SQLiteRecordStore(backend)
    else:
        store = InMemoryRecordStore()
    if config.upload_url:
        uploader = HttpUploader(config.upload_url, timeout_s=config.request_timeout_s)
    else:
        uploader = InMemoryUploader()
    return ChatEngine(store=store, uploader=uploader, config=config, backend=backend, now_func=now_func)
