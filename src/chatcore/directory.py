from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List

from .errors import ChatError, NotFoundError, ValidationError
from .models import (
    CONVERSATIONS,
    GROUP,
    INDIVIDUAL,
    MESSAGES,
    PARTICIPANTS,
    ROLE_ADMIN,
    ROLE_MEMBER,
    TEXT,
    Conversation,
    Message,
    Participant,
    User,
    _now_ms,
    new_id,
    pair_key,
)
from .users import UserDirectory, display_name

logger = logging.getLogger(__name__)

MAX_GROUP_MEMBERS = 1024


@dataclass
class LastMessage:
    body: str
    sender_name: str
    timestamp_ms: int
    kind: str


@dataclass
class ConversationSummary:
    conversation: Conversation
    title: str
    avatar_url: str | None
    joined_at_ms: int
    last_message: LastMessage | None = None
    is_online: bool = False
    last_seen_ms: int = 0

    @property
    def last_activity_ms(self) -> int:
        if self.last_message is not None:
            return max(self.conversation.last_activity_ms, self.last_message.timestamp_ms)
        return self.conversation.last_activity_ms


@dataclass
class ConversationDetail:
    conversation: Conversation
    title: str
    avatar_url: str | None
    participants: List[User] = field(default_factory=list)
    is_online: bool = False
    last_seen_ms: int = 0


class ConversationDirectory:
    """Finds, creates and lists conversations and their rosters."""

    def __init__(self, store, users: UserDirectory, *, now_func: Callable[[], int] = _now_ms) -> None:
        self._store = store
        self._users = users
        self._now = now_func

    async def get(self, conv_id: str) -> Conversation | None:
        records = await self._store.list(CONVERSATIONS, {"id": conv_id}, limit=1)
        if not records:
            return None
        return Conversation.from_record(records[0])

    async def require(self, conv_id: str) -> Conversation:
        conversation = await self.get(conv_id)
        if conversation is None:
            raise NotFoundError(f"conversation {conv_id} not found")
        return conversation

    async def participants(self, conv_id: str) -> List[Participant]:
        records = await self._store.list(
            PARTICIPANTS, {"conversation_id": conv_id}, order_by=("joined_at_ms", "asc")
        )
        return [Participant.from_record(record) for record in records]

    async def is_participant(self, conv_id: str, user_id: str) -> bool:
        records = await self._store.list(
            PARTICIPANTS, {"conversation_id": conv_id, "user_id": user_id}, limit=1
        )
        return bool(records)

    async def find_individual(self, user_a: str, user_b: str) -> Conversation | None:
        """Return the first individual conversation of ``user_a`` that ``user_b`` also belongs to."""

        memberships = await self._store.list(PARTICIPANTS, {"user_id": user_a})
        conv_ids = [record["conversation_id"] for record in memberships]
        if not conv_ids:
            return None
        records = await self._store.list(CONVERSATIONS, {"id": {"in": conv_ids}, "kind": INDIVIDUAL})
        individual = {record["id"]: Conversation.from_record(record) for record in records}
        for conv_id in conv_ids:
            conversation = individual.get(conv_id)
            if conversation is None:
                continue
            if await self.is_participant(conv_id, user_b):
                return conversation
        return None

    async def resolve_or_create_individual(self, user_a: str, user_b: str) -> Conversation:
        if not user_a or not user_b:
            raise ValidationError("both user ids are required")
        if user_a == user_b:
            raise ValidationError("an individual conversation needs two distinct users")

        existing = await self.find_individual(user_a, user_b)
        if existing is not None:
            return existing

        now_ms = self._now()
        candidate = Conversation(
            conv_id=new_id("chat"),
            kind=INDIVIDUAL,
            created_by=user_a,
            created_at_ms=now_ms,
            pair_key=pair_key(user_a, user_b),
        )
        record, created = await self._store.create_if_absent(
            CONVERSATIONS, candidate.to_record(), {"pair_key": candidate.pair_key, "kind": INDIVIDUAL}
        )
        conversation = Conversation.from_record(record)
        roster = [
            Participant(conv_id=conversation.conv_id, user_id=user_a, role=ROLE_MEMBER, joined_at_ms=now_ms),
            Participant(conv_id=conversation.conv_id, user_id=user_b, role=ROLE_MEMBER, joined_at_ms=now_ms),
        ]
        if not created:
            await self._repair_roster(conversation, roster)
            return conversation

        await self._insert_roster(conversation, roster)
        logger.info("created individual conversation %s", conversation.conv_id)
        return conversation

    async def create_group(self, creator_id: str, name: str, member_ids: Iterable[str]) -> Conversation:
        name = (name or "").strip()
        if not name:
            raise ValidationError("group name must not be empty")
        member_ids = [m for m in (member_ids or []) if m]
        if not member_ids:
            raise ValidationError("a group needs at least one member besides its creator")

        roster_ids = [creator_id]
        for user_id in member_ids:
            if user_id not in roster_ids:
                roster_ids.append(user_id)
        if len(roster_ids) < 2:
            raise ValidationError("a group needs at least one member besides its creator")
        if len(roster_ids) > MAX_GROUP_MEMBERS:
            raise ValidationError("too many members")

        creator = await self._users.require(creator_id)
        now_ms = self._now()
        conversation = Conversation(
            conv_id=new_id("chat"),
            kind=GROUP,
            created_by=creator_id,
            created_at_ms=now_ms,
            name=name,
            last_message_at_ms=now_ms,
        )
        await self._store.create(CONVERSATIONS, conversation.to_record())
        roster = [
            Participant(
                conv_id=conversation.conv_id,
                user_id=user_id,
                role=ROLE_ADMIN if user_id == creator_id else ROLE_MEMBER,
                joined_at_ms=now_ms,
            )
            for user_id in roster_ids
        ]
        await self._insert_roster(conversation, roster)

        announcement = Message(
            msg_id=new_id("msg"),
            conv_id=conversation.conv_id,
            sender_id=creator_id,
            body=f'{creator.display_name} created group "{name}"',
            created_at_ms=now_ms,
            kind=TEXT,
        )
        try:
            await self._store.create(MESSAGES, announcement.to_record())
        except Exception:
            logger.warning("announcement for group %s failed; removing the group", conversation.conv_id)
            await self._discard(conversation, roster)
            raise
        logger.info("created group %s with %d members", conversation.conv_id, len(roster))
        return conversation

    async def _add_participant(self, participant: Participant) -> bool:
        _, created = await self._store.create_if_absent(
            PARTICIPANTS, participant.to_record(), {"id": participant.record_id}
        )
        return created

    async def _insert_roster(self, conversation: Conversation, roster: List[Participant]) -> None:
        written: List[Participant] = []
        try:
            for participant in roster:
                if await self._add_participant(participant):
                    written.append(participant)
        except Exception:
            logger.warning("roster insert for %s failed; removing partial records", conversation.conv_id)
            await self._discard(conversation, written)
            raise

    async def _repair_roster(self, conversation: Conversation, roster: List[Participant]) -> None:
        """Insert members missing from an individual conversation left behind by a failed create."""

        present = {p.user_id for p in await self.participants(conversation.conv_id)}
        for participant in roster:
            if participant.user_id not in present:
                await self._add_participant(participant)
                logger.info("restored %s to conversation %s", participant.user_id, conversation.conv_id)

    async def _discard(self, conversation: Conversation, roster: List[Participant]) -> None:
        """Best-effort removal; failures are logged so the caller can re-raise the original error."""

        doomed = [(PARTICIPANTS, participant.record_id) for participant in roster]
        doomed.append((CONVERSATIONS, conversation.conv_id))
        for collection, record_id in doomed:
            try:
                await self._store.delete(collection, record_id)
            except ChatError as exc:
                logger.warning("cleanup of %s record %s failed: %s", collection, record_id, exc)

    async def _counterpart(self, conv_id: str, user_id: str) -> User | None:
        others = await self._store.list(
            PARTICIPANTS,
            {"AND": [{"conversation_id": conv_id}, {"user_id": {"not": user_id}}]},
            limit=1,
        )
        if not others:
            return None
        return await self._users.get(others[0]["user_id"])

    async def _last_message(self, conv_id: str) -> LastMessage | None:
        records = await self._store.list(
            MESSAGES, {"conversation_id": conv_id}, order_by=("created_at_ms", "desc"), limit=1
        )
        if not records:
            return None
        message = Message.from_record(records[0])
        users = await self._users.get_many([message.sender_id])
        return LastMessage(
            body=message.body,
            sender_name=display_name(users, message.sender_id),
            timestamp_ms=message.created_at_ms,
            kind=message.kind,
        )

    async def list_for_user(
        self, user_id: str, *, query: str | None = None, order: str = "joined"
    ) -> List[ConversationSummary]:
        """Annotated conversations of ``user_id``, most recently joined first.

        ``order="activity"`` sorts by the latest message or creation time
        instead.
        """

        if order not in ("joined", "activity"):
            raise ValidationError("order must be 'joined' or 'activity'")
        memberships = await self._store.list(
            PARTICIPANTS, {"user_id": user_id}, order_by=("joined_at_ms", "desc")
        )
        summaries: List[ConversationSummary] = []
        for membership in memberships:
            conversation = await self.get(membership["conversation_id"])
            if conversation is None:
                continue
            summary = ConversationSummary(
                conversation=conversation,
                title=conversation.name or "",
                avatar_url=conversation.avatar_url,
                joined_at_ms=int(membership.get("joined_at_ms") or 0),
                last_message=await self._last_message(conversation.conv_id),
            )
            if conversation.kind == INDIVIDUAL:
                other = await self._counterpart(conversation.conv_id, user_id)
                if other is not None:
                    summary.title = other.display_name
                    summary.avatar_url = other.avatar_url
                    summary.is_online = other.is_online
                    summary.last_seen_ms = other.last_seen_ms
            summaries.append(summary)

        needle = (query or "").strip().lower()
        if needle:
            summaries = [s for s in summaries if needle in s.title.lower()]
        if order == "activity":
            summaries.sort(key=lambda s: s.last_activity_ms, reverse=True)
        return summaries

    async def describe(self, conv_id: str, viewer_id: str) -> ConversationDetail:
        conversation = await self.require(conv_id)
        roster = await self.participants(conv_id)
        users = await self._users.get_many(p.user_id for p in roster)
        detail = ConversationDetail(
            conversation=conversation,
            title=conversation.name or "",
            avatar_url=conversation.avatar_url,
            participants=[users[p.user_id] for p in roster if p.user_id in users],
        )
        if conversation.kind == INDIVIDUAL:
            other = next((u for u in detail.participants if u.user_id != viewer_id), None)
            if other is not None:
                detail.title = other.display_name
                detail.avatar_url = other.avatar_url
                detail.is_online = other.is_online
                detail.last_seen_ms = other.last_seen_ms
        return detail
