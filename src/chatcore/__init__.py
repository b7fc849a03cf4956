"""Conversation-state engine: directory, message pipeline, stories, presence and call log."""

from .calls import CallLog, CallLogEntry
from .config import EngineConfig, load_config_from_env
from .directory import ConversationDirectory, ConversationSummary
from .engine import ChatEngine, build_engine
from .errors import ChatError, NotFoundError, PermissionDenied, StoreError, UploadError, ValidationError
from .messages import MessagePipeline, MessageView
from .playback import PlaybackSession, PlaybackState
from .presence import PresenceTracker
from .store import InMemoryRecordStore
from .stories import StoryFeed, StoryService
from .users import UserDirectory

__all__ = [
    "CallLog",
    "CallLogEntry",
    "ChatEngine",
    "ChatError",
    "ConversationDirectory",
    "ConversationSummary",
    "EngineConfig",
    "InMemoryRecordStore",
    "MessagePipeline",
    "MessageView",
    "NotFoundError",
    "PermissionDenied",
    "PlaybackSession",
    "PlaybackState",
    "PresenceTracker",
    "StoreError",
    "StoryFeed",
    "StoryService",
    "UploadError",
    "UserDirectory",
    "ValidationError",
    "build_engine",
    "load_config_from_env",
]
