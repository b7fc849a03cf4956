from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict

INDIVIDUAL = "individual"
GROUP = "group"

TEXT = "text"
IMAGE = "image"
VIDEO = "video"
AUDIO = "audio"
DOCUMENT = "document"
STORY_KINDS = (IMAGE, VIDEO)

ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"

USERS = "users"
CONVERSATIONS = "conversations"
PARTICIPANTS = "participants"
MESSAGES = "messages"
STORIES = "stories"
STORY_VIEWS = "story_views"
CALLS = "calls"

Record = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_urlsafe(12)}"


def classify_media_type(media_type: str | None) -> str:
    """Map a declared MIME type onto a message content kind."""

    media_type = (media_type or "").lower()
    if media_type.startswith("image/"):
        return IMAGE
    if media_type.startswith("video/"):
        return VIDEO
    if media_type.startswith("audio/"):
        return AUDIO
    return DOCUMENT


@dataclass
class User:
    user_id: str
    display_name: str
    email: str = ""
    avatar_url: str | None = None
    status_message: str = ""
    is_online: bool = False
    last_seen_ms: int = 0
    created_at_ms: int = 0

    def to_record(self) -> Record:
        return {
            "id": self.user_id,
            "display_name": self.display_name,
            "email": self.email,
            "avatar_url": self.avatar_url,
            "status_message": self.status_message,
            "is_online": self.is_online,
            "last_seen_ms": self.last_seen_ms,
            "created_at_ms": self.created_at_ms,
        }

    @classmethod
    def from_record(cls, record: Record) -> "User":
        return cls(
            user_id=record["id"],
            display_name=record.get("display_name") or "",
            email=record.get("email") or "",
            avatar_url=record.get("avatar_url"),
            status_message=record.get("status_message") or "",
            is_online=bool(record.get("is_online")),
            last_seen_ms=int(record.get("last_seen_ms") or 0),
            created_at_ms=int(record.get("created_at_ms") or 0),
        )


@dataclass
class Conversation:
    conv_id: str
    kind: str
    created_by: str
    created_at_ms: int
    name: str | None = None
    avatar_url: str | None = None
    last_message_at_ms: int = 0
    pair_key: str | None = None

    @property
    def last_activity_ms(self) -> int:
        return max(self.created_at_ms, self.last_message_at_ms)

    def to_record(self) -> Record:
        return {
            "id": self.conv_id,
            "kind": self.kind,
            "name": self.name,
            "avatar_url": self.avatar_url,
            "created_by": self.created_by,
            "created_at_ms": self.created_at_ms,
            "last_message_at_ms": self.last_message_at_ms,
            "pair_key": self.pair_key,
        }

    @classmethod
    def from_record(cls, record: Record) -> "Conversation":
        return cls(
            conv_id=record["id"],
            kind=record.get("kind") or INDIVIDUAL,
            created_by=record.get("created_by") or "",
            created_at_ms=int(record.get("created_at_ms") or 0),
            name=record.get("name"),
            avatar_url=record.get("avatar_url"),
            last_message_at_ms=int(record.get("last_message_at_ms") or 0),
            pair_key=record.get("pair_key"),
        )


def pair_key(user_a: str, user_b: str) -> str:
    first, second = sorted((user_a, user_b))
    return f"{first}|{second}"


@dataclass
class Participant:
    conv_id: str
    user_id: str
    role: str
    joined_at_ms: int

    @property
    def record_id(self) -> str:
        return f"cp_{self.conv_id}_{self.user_id}"

    def to_record(self) -> Record:
        return {
            "id": self.record_id,
            "conversation_id": self.conv_id,
            "user_id": self.user_id,
            "role": self.role,
            "joined_at_ms": self.joined_at_ms,
        }

    @classmethod
    def from_record(cls, record: Record) -> "Participant":
        return cls(
            conv_id=record["conversation_id"],
            user_id=record["user_id"],
            role=record.get("role") or ROLE_MEMBER,
            joined_at_ms=int(record.get("joined_at_ms") or 0),
        )


@dataclass(frozen=True)
class Attachment:
    url: str
    file_name: str
    size_bytes: int


@dataclass
class Message:
    msg_id: str
    conv_id: str
    sender_id: str
    body: str
    created_at_ms: int
    kind: str = TEXT
    attachment: Attachment | None = None
    reply_to_id: str | None = None
    forwarded: bool = False
    starred: bool = False

    def to_record(self) -> Record:
        attachment = self.attachment
        return {
            "id": self.msg_id,
            "conversation_id": self.conv_id,
            "sender_id": self.sender_id,
            "body": self.body,
            "kind": self.kind,
            "file_url": attachment.url if attachment else None,
            "file_name": attachment.file_name if attachment else None,
            "file_size": attachment.size_bytes if attachment else None,
            "reply_to_id": self.reply_to_id,
            "forwarded": self.forwarded,
            "starred": self.starred,
            "created_at_ms": self.created_at_ms,
        }

    @classmethod
    def from_record(cls, record: Record) -> "Message":
        attachment = None
        if record.get("file_url"):
            attachment = Attachment(
                url=record["file_url"],
                file_name=record.get("file_name") or "",
                size_bytes=int(record.get("file_size") or 0),
            )
        return cls(
            msg_id=record["id"],
            conv_id=record["conversation_id"],
            sender_id=record["sender_id"],
            body=record.get("body") or "",
            created_at_ms=int(record.get("created_at_ms") or 0),
            kind=record.get("kind") or TEXT,
            attachment=attachment,
            reply_to_id=record.get("reply_to_id") or None,
            forwarded=bool(record.get("forwarded")),
            starred=bool(record.get("starred")),
        )


@dataclass
class Story:
    story_id: str
    author_id: str
    content_url: str
    kind: str
    created_at_ms: int
    expires_at_ms: int
    caption: str | None = None

    def is_active(self, now_ms: int) -> bool:
        return now_ms < self.expires_at_ms

    def to_record(self) -> Record:
        return {
            "id": self.story_id,
            "author_id": self.author_id,
            "content_url": self.content_url,
            "kind": self.kind,
            "caption": self.caption,
            "created_at_ms": self.created_at_ms,
            "expires_at_ms": self.expires_at_ms,
        }

    @classmethod
    def from_record(cls, record: Record) -> "Story":
        return cls(
            story_id=record["id"],
            author_id=record["author_id"],
            content_url=record.get("content_url") or "",
            kind=record.get("kind") or IMAGE,
            created_at_ms=int(record.get("created_at_ms") or 0),
            expires_at_ms=int(record.get("expires_at_ms") or 0),
            caption=record.get("caption") or None,
        )


@dataclass
class StoryView:
    view_id: str
    story_id: str
    viewer_id: str
    viewed_at_ms: int

    def to_record(self) -> Record:
        return {
            "id": self.view_id,
            "story_id": self.story_id,
            "viewer_id": self.viewer_id,
            "viewed_at_ms": self.viewed_at_ms,
        }

    @classmethod
    def from_record(cls, record: Record) -> "StoryView":
        return cls(
            view_id=record["id"],
            story_id=record["story_id"],
            viewer_id=record["viewer_id"],
            viewed_at_ms=int(record.get("viewed_at_ms") or 0),
        )


@dataclass
class CallRecord:
    call_id: str
    caller_id: str
    receiver_id: str
    kind: str
    outcome: str
    started_at_ms: int
    duration_s: int = 0

    def to_record(self) -> Record:
        return {
            "id": self.call_id,
            "caller_id": self.caller_id,
            "receiver_id": self.receiver_id,
            "kind": self.kind,
            "outcome": self.outcome,
            "duration_s": self.duration_s,
            "started_at_ms": self.started_at_ms,
        }

    @classmethod
    def from_record(cls, record: Record) -> "CallRecord":
        outcome = record.get("outcome") or "missed"
        return cls(
            call_id=record["id"],
            caller_id=record["caller_id"],
            receiver_id=record["receiver_id"],
            kind=record.get("kind") or "voice",
            outcome=outcome,
            started_at_ms=int(record.get("started_at_ms") or 0),
            duration_s=int(record.get("duration_s") or 0) if outcome == "answered" else 0,
        )


@dataclass
class UploadFile:
    """A blob handed to the engine by its caller, as picked from disk or recorded."""

    name: str
    media_type: str
    data: bytes = field(repr=False, default=b"")

    @property
    def size_bytes(self) -> int:
        return len(self.data)
