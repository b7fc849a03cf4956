from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List

from .errors import ChatError, NotFoundError, PermissionDenied, UploadError, ValidationError
from .models import (
    AUDIO,
    CONVERSATIONS,
    MESSAGES,
    PARTICIPANTS,
    Attachment,
    Message,
    UploadFile,
    _now_ms,
    classify_media_type,
    new_id,
)
from .uploads import UploadResult
from .users import UserDirectory, display_name

logger = logging.getLogger(__name__)

ACTIONS = ("reply", "star", "copy", "delete", "download")

PENDING = "pending"
CONFIRMED = "confirmed"
REVERTED = "reverted"


@dataclass(frozen=True)
class ReplyPreview:
    msg_id: str
    body: str
    sender_name: str


@dataclass
class MessageView:
    """A message as the caller observes it, with its sender and quoted reply."""

    message: Message
    sender_name: str | None = None
    reply_preview: ReplyPreview | None = None
    pending: bool = False

    @property
    def msg_id(self) -> str:
        return self.message.msg_id


@dataclass
class PendingWrite:
    write_id: int
    op: str
    msg_id: str
    undo: Callable[[], None]
    state: str = PENDING


class PendingWriteLog:
    """Tracks optimistic local mutations until the store confirms or rejects them.

    Each write is settled exactly once; settling it again raises
    ``RuntimeError`` so an undo can never run twice.
    """

    def __init__(self) -> None:
        self._writes: Dict[int, PendingWrite] = {}
        self._next_id = 1

    def begin(self, op: str, msg_id: str, undo: Callable[[], None]) -> PendingWrite:
        write = PendingWrite(write_id=self._next_id, op=op, msg_id=msg_id, undo=undo)
        self._next_id += 1
        self._writes[write.write_id] = write
        return write

    def confirm(self, write: PendingWrite) -> None:
        self._settle(write, CONFIRMED)

    def revert(self, write: PendingWrite) -> None:
        self._settle(write, REVERTED)
        write.undo()

    def outstanding(self) -> List[PendingWrite]:
        return list(self._writes.values())

    def _settle(self, write: PendingWrite, state: str) -> None:
        if write.state != PENDING:
            raise RuntimeError(f"pending write {write.write_id} already {write.state}")
        write.state = state
        self._writes.pop(write.write_id, None)


class MessagePipeline:
    """Message operations for one resolved conversation.

    ``messages`` is the locally observable sequence. Text sends appear there
    before the store confirms them and are removed again if the store
    rejects the write. Attachments and voice notes only appear once both
    the upload and the store write have succeeded.
    """

    def __init__(
        self,
        store,
        uploader,
        users: UserDirectory,
        conv_id: str,
        *,
        now_func: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._uploader = uploader
        self._users = users
        self.conv_id = conv_id
        self._now = now_func
        self._messages: List[MessageView] = []
        self._pending = PendingWriteLog()
        self._reply_to: Message | None = None
        self._names: Dict[str, str] = {}
        self._last_created_ms = 0

    @property
    def messages(self) -> List[MessageView]:
        return list(self._messages)

    @property
    def reply_to(self) -> Message | None:
        return self._reply_to

    @property
    def pending_writes(self) -> List[PendingWrite]:
        return self._pending.outstanding()

    def cancel_reply(self) -> None:
        self._reply_to = None

    def _next_timestamp(self) -> int:
        created_at_ms = max(self._now(), self._last_created_ms)
        self._last_created_ms = created_at_ms
        return created_at_ms

    def _index_of(self, msg_id: str) -> int | None:
        for index, view in enumerate(self._messages):
            if view.msg_id == msg_id:
                return index
        return None

    def _remove_local(self, msg_id: str) -> None:
        index = self._index_of(msg_id)
        if index is not None:
            del self._messages[index]

    def _local_preview(self, reply_to_id: str | None) -> ReplyPreview | None:
        if reply_to_id is None:
            return None
        index = self._index_of(reply_to_id)
        if index is None:
            return None
        quoted = self._messages[index]
        return ReplyPreview(
            msg_id=quoted.msg_id,
            body=quoted.message.body,
            sender_name=quoted.sender_name or display_name({}, quoted.message.sender_id),
        )

    async def load(self) -> List[MessageView]:
        """Re-read the conversation from the store, resolving senders and quoted replies.

        A reply whose quoted message no longer exists is shown as a plain
        message.
        """

        conversations = await self._store.list(CONVERSATIONS, {"id": self.conv_id}, limit=1)
        if not conversations:
            raise NotFoundError(f"conversation {self.conv_id} not found")
        records = await self._store.list(
            MESSAGES, {"conversation_id": self.conv_id}, order_by=("created_at_ms", "asc")
        )
        messages = [Message.from_record(record) for record in records]
        by_id = {message.msg_id: message for message in messages}

        missing = sorted({m.reply_to_id for m in messages if m.reply_to_id and m.reply_to_id not in by_id})
        if missing:
            quoted = await self._store.list(
                MESSAGES, {"id": {"in": missing}, "conversation_id": self.conv_id}
            )
            for record in quoted:
                by_id[record["id"]] = Message.from_record(record)

        users = await self._users.get_many(m.sender_id for m in by_id.values())
        self._names.update({user_id: user.display_name for user_id, user in users.items()})

        views: List[MessageView] = []
        for message in messages:
            preview = None
            quoted_message = by_id.get(message.reply_to_id) if message.reply_to_id else None
            if quoted_message is not None:
                preview = ReplyPreview(
                    msg_id=quoted_message.msg_id,
                    body=quoted_message.body,
                    sender_name=display_name(users, quoted_message.sender_id),
                )
            views.append(
                MessageView(
                    message=message,
                    sender_name=display_name(users, message.sender_id),
                    reply_preview=preview,
                )
            )

        loaded_ids = {view.msg_id for view in views}
        for write in self._pending.outstanding():
            if write.op != "append" or write.msg_id in loaded_ids:
                continue
            index = self._index_of(write.msg_id)
            if index is not None:
                views.append(self._messages[index])

        self._messages = views
        if messages:
            self._last_created_ms = max(self._last_created_ms, messages[-1].created_at_ms)
        return list(views)

    async def send(self, sender_id: str, body: str, reply_to_id: str | None = None) -> MessageView:
        if not (body or "").strip():
            raise ValidationError("message body must not be empty")
        consumed_reply = self._reply_to
        if reply_to_id is None and consumed_reply is not None:
            reply_to_id = consumed_reply.msg_id

        message = Message(
            msg_id=new_id("msg"),
            conv_id=self.conv_id,
            sender_id=sender_id,
            body=body,
            created_at_ms=self._next_timestamp(),
            reply_to_id=reply_to_id,
        )
        view = MessageView(
            message=message,
            sender_name=self._names.get(sender_id),
            reply_preview=self._local_preview(reply_to_id),
            pending=True,
        )
        self._messages.append(view)
        self._reply_to = None

        def undo() -> None:
            self._remove_local(message.msg_id)
            self._reply_to = consumed_reply

        write = self._pending.begin("append", message.msg_id, undo)
        try:
            await self._store.create(MESSAGES, message.to_record())
        except Exception as exc:
            self._pending.revert(write)
            logger.warning("send %s in %s rolled back: %s", message.msg_id, self.conv_id, exc)
            raise
        self._pending.confirm(write)
        view.pending = False
        await self._touch_conversation(self.conv_id, message.created_at_ms)
        return view

    async def attach(self, sender_id: str, file: UploadFile) -> MessageView:
        if file is None or not file.name:
            raise ValidationError("a file is required")
        key = f"chat-files/{self.conv_id}/{self._now()}_{file.name}"
        result = await self._upload(file.data, key, file.media_type)
        message = Message(
            msg_id=new_id("msg"),
            conv_id=self.conv_id,
            sender_id=sender_id,
            body=file.name,
            created_at_ms=self._next_timestamp(),
            kind=classify_media_type(file.media_type),
            attachment=Attachment(url=result.public_url, file_name=file.name, size_bytes=file.size_bytes),
        )
        return await self._create_confirmed(message)

    async def record_voice_note(self, sender_id: str, audio: bytes, duration_s: int) -> MessageView:
        if not audio:
            raise ValidationError("voice note is empty")
        if duration_s < 0:
            raise ValidationError("duration must be non-negative")
        now_ms = self._now()
        result = await self._upload(audio, f"voice-messages/{self.conv_id}/{now_ms}.wav", "audio/wav")
        message = Message(
            msg_id=new_id("msg"),
            conv_id=self.conv_id,
            sender_id=sender_id,
            body=f"Voice message ({duration_s}s)",
            created_at_ms=self._next_timestamp(),
            kind=AUDIO,
            attachment=Attachment(url=result.public_url, file_name=f"voice_{now_ms}.wav", size_bytes=len(audio)),
        )
        return await self._create_confirmed(message)

    async def _upload(self, data: bytes, key: str, content_type: str | None) -> UploadResult:
        try:
            return await self._uploader.upload(data, key, content_type=content_type)
        except UploadError:
            raise
        except Exception as exc:
            raise UploadError(f"upload of {key} failed: {exc}") from exc

    async def _create_confirmed(self, message: Message) -> MessageView:
        await self._store.create(MESSAGES, message.to_record())
        view = MessageView(message=message, sender_name=self._names.get(message.sender_id))
        if message.conv_id == self.conv_id:
            self._messages.append(view)
        await self._touch_conversation(message.conv_id, message.created_at_ms)
        return view

    async def _touch_conversation(self, conv_id: str, at_ms: int) -> None:
        try:
            await self._store.update(CONVERSATIONS, conv_id, {"last_message_at_ms": at_ms})
        except ChatError as exc:
            logger.warning("could not bump last activity of %s: %s", conv_id, exc)

    async def apply_action(self, action: str, message: Message, acting_user_id: str):
        """Run a message menu action.

        Returns the copied body for ``copy``, the attachment URL (or ``None``)
        for ``download`` and the new starred flag for ``star``.
        """

        if action not in ACTIONS:
            raise ValidationError(f"unknown message action: {action}")
        if action == "reply":
            self._reply_to = message
            return None
        if action == "copy":
            return message.body
        if action == "download":
            return message.attachment.url if message.attachment is not None else None
        if action == "star":
            return await self._toggle_star(message)
        await self._delete(message, acting_user_id)
        return None

    async def _toggle_star(self, message: Message) -> bool:
        index = self._index_of(message.msg_id)
        local = self._messages[index].message if index is not None else None
        previous = local.starred if local is not None else message.starred
        starred = not previous
        if local is not None:
            local.starred = starred

        def undo() -> None:
            if local is not None:
                local.starred = previous

        write = self._pending.begin("star", message.msg_id, undo)
        try:
            await self._store.update(MESSAGES, message.msg_id, {"starred": starred})
        except Exception as exc:
            self._pending.revert(write)
            logger.warning("star of %s rolled back: %s", message.msg_id, exc)
            raise
        self._pending.confirm(write)
        return starred

    async def _delete(self, message: Message, acting_user_id: str) -> None:
        if acting_user_id != message.sender_id:
            raise PermissionDenied("only the sender can delete a message")
        try:
            await self._store.delete(MESSAGES, message.msg_id)
        except NotFoundError:
            self._remove_local(message.msg_id)
            raise
        self._remove_local(message.msg_id)

    async def forward(self, message: Message, target_conv_ids: Iterable[str], acting_user_id: str) -> List[Message]:
        targets = list(dict.fromkeys(t for t in target_conv_ids if t))
        if not targets:
            raise ValidationError("at least one target conversation is required")
        for conv_id in targets:
            membership = await self._store.list(
                PARTICIPANTS, {"conversation_id": conv_id, "user_id": acting_user_id}, limit=1
            )
            if not membership:
                raise PermissionDenied(f"not a participant of {conv_id}")

        forwarded: List[Message] = []
        for conv_id in targets:
            copy = Message(
                msg_id=new_id("msg"),
                conv_id=conv_id,
                sender_id=acting_user_id,
                body=message.body,
                created_at_ms=self._next_timestamp(),
                kind=message.kind,
                attachment=message.attachment,
                forwarded=True,
            )
            await self._create_confirmed(copy)
            forwarded.append(copy)
        return forwarded
