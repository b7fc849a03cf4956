from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Sequence

from .errors import ChatError
from .models import Story
from .stories import StoryService

logger = logging.getLogger(__name__)

CLOSED = "closed"
PLAYING = "playing"


@dataclass(frozen=True)
class PlaybackState:
    status: str
    story: Story | None = None
    index: int = 0
    progress: float = 0.0


class PlaybackSession:
    """Auto-advancing story viewer owned by the caller.

    At most one timer task is alive at a time. Every transition that changes
    the current story cancels the running timer before starting a new one.
    Tests can leave ``autoplay`` off and drive ``tick`` directly.
    """

    def __init__(
        self,
        stories: StoryService,
        viewer_id: str,
        *,
        tick_interval_s: float = 0.1,
        ticks_per_story: int = 50,
        autoplay: bool = True,
    ) -> None:
        if ticks_per_story < 1:
            raise ValueError("ticks_per_story must be positive")
        self._stories = stories
        self.viewer_id = viewer_id
        self.tick_interval_s = tick_interval_s
        self.ticks_per_story = ticks_per_story
        self.autoplay = autoplay
        self._playlist: List[Story] = []
        self._index = 0
        self._ticks = 0
        self._status = CLOSED
        self._timer: asyncio.Task | None = None

    @property
    def state(self) -> PlaybackState:
        if self._status == CLOSED:
            return PlaybackState(status=CLOSED)
        return PlaybackState(
            status=PLAYING,
            story=self._playlist[self._index],
            index=self._index,
            progress=self._ticks * 100.0 / self.ticks_per_story,
        )

    @property
    def playlist(self) -> List[Story]:
        return list(self._playlist)

    @property
    def timer_active(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def open(self, playlist: Sequence[Story], index: int = 0) -> PlaybackState:
        if not playlist or not 0 <= index < len(playlist):
            return self.state
        self._playlist = list(playlist)
        await self._go_to(index)
        return self.state

    async def tick(self) -> PlaybackState:
        if self._status == CLOSED:
            return self.state
        self._ticks = min(self._ticks + 1, self.ticks_per_story)
        if self._ticks >= self.ticks_per_story:
            await self.next()
        return self.state

    async def next(self) -> PlaybackState:
        if self._status == CLOSED:
            return self.state
        if self._index + 1 < len(self._playlist):
            await self._go_to(self._index + 1)
        else:
            await self.close()
        return self.state

    async def previous(self) -> PlaybackState:
        if self._status == CLOSED or self._index == 0:
            return self.state
        await self._go_to(self._index - 1)
        return self.state

    async def close(self) -> PlaybackState:
        await self._stop_timer()
        self._status = CLOSED
        self._playlist = []
        self._index = 0
        self._ticks = 0
        return self.state

    async def _go_to(self, index: int) -> None:
        await self._stop_timer()
        self._status = PLAYING
        self._index = index
        self._ticks = 0
        story = self._playlist[index]
        try:
            await self._stories.view(story, self.viewer_id)
        except ChatError as exc:
            logger.warning("recording view of %s failed: %s", story.story_id, exc)
        if self.autoplay and self._status == PLAYING and self._index == index:
            self._timer = asyncio.create_task(self._run_timer())

    async def _stop_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is None or timer is asyncio.current_task():
            # the timer task itself is advancing; its loop exits once detached
            return
        timer.cancel()
        try:
            await timer
        except asyncio.CancelledError:
            pass

    async def _run_timer(self) -> None:
        me = asyncio.current_task()
        try:
            while self._timer is me:
                await asyncio.sleep(self.tick_interval_s)
                if self._timer is not me:
                    return
                await self.tick()
        except asyncio.CancelledError:
            return
