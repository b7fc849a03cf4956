"""Command line entry points: a frame-driven engine simulator and the dev store service."""

from __future__ import annotations

import argparse
import asyncio
import base64
import binascii
import json
import logging
import sys
from dataclasses import asdict
from typing import Any, Dict, Iterable, TextIO

from aiohttp import web

from .config import EngineConfig, load_config_from_env
from .engine import ChatEngine, build_engine
from .errors import ChatError, NotFoundError, ValidationError
from .messages import MessagePipeline, MessageView
from .models import STORIES, Story, UploadFile
from .store_app import create_app


def _resolve_refs(value: Any, refs: Dict[str, str]) -> Any:
    if isinstance(value, str) and value.startswith("$") and value[1:] in refs:
        return refs[value[1:]]
    if isinstance(value, list):
        return [_resolve_refs(item, refs) for item in value]
    if isinstance(value, dict):
        return {key: _resolve_refs(item, refs) for key, item in value.items()}
    return value


def _decode_b64(frame: dict, field: str = "data_b64") -> bytes:
    try:
        return base64.b64decode(frame.get(field) or "", validate=True)
    except (ValueError, binascii.Error) as exc:
        raise ValidationError(f"{field} must be base64") from exc


def _message_frame(view: MessageView) -> dict:
    message = asdict(view.message)
    message["sender_name"] = view.sender_name
    message["reply_preview"] = asdict(view.reply_preview) if view.reply_preview else None
    return message


class Simulator:
    """Runs JSON command frames against an engine and reports one result per frame."""

    def __init__(self, engine: ChatEngine) -> None:
        self.engine = engine
        self.refs: Dict[str, str] = {}
        self._pipelines: Dict[str, MessagePipeline] = {}

    def _pipeline(self, conv_id: str) -> MessagePipeline:
        if conv_id not in self._pipelines:
            self._pipelines[conv_id] = self.engine.pipeline(conv_id)
        return self._pipelines[conv_id]

    async def _find_message(self, pipeline: MessagePipeline, msg_id: str):
        for view in pipeline.messages:
            if view.msg_id == msg_id:
                return view.message
        for view in await pipeline.load():
            if view.msg_id == msg_id:
                return view.message
        raise NotFoundError(f"message {msg_id} not found")

    async def run_frame(self, frame: dict) -> tuple[dict, str | None]:
        engine = self.engine
        t = frame.get("t")
        if t == "user.sign_in":
            user = await engine.users.sign_in(frame.get("email", ""), frame.get("display_name"))
            return {"t": "user", **asdict(user)}, user.user_id
        if t in ("presence.online", "presence.heartbeat", "presence.offline"):
            tracker = engine.presence(frame["user_id"])
            action = {
                "presence.online": tracker.mark_online,
                "presence.heartbeat": tracker.heartbeat,
                "presence.offline": tracker.mark_offline,
            }[t]
            last_seen_ms = await action()
            return {"t": "presence", "user_id": tracker.user_id, "last_seen_ms": last_seen_ms}, None
        if t == "chat.resolve":
            conversation = await engine.directory.resolve_or_create_individual(frame["user_a"], frame["user_b"])
            return {"t": "chat", **asdict(conversation)}, conversation.conv_id
        if t == "group.create":
            conversation = await engine.directory.create_group(
                frame["creator_id"], frame.get("name", ""), frame.get("member_ids") or []
            )
            return {"t": "chat", **asdict(conversation)}, conversation.conv_id
        if t == "chat.list":
            summaries = await engine.directory.list_for_user(
                frame["user_id"], query=frame.get("query"), order=frame.get("order", "joined")
            )
            chats = [
                {
                    "conv_id": s.conversation.conv_id,
                    "kind": s.conversation.kind,
                    "title": s.title,
                    "is_online": s.is_online,
                    "last_message": asdict(s.last_message) if s.last_message else None,
                }
                for s in summaries
            ]
            return {"t": "chat.list", "chats": chats}, None
        if t == "msg.send":
            view = await self._pipeline(frame["conv_id"]).send(
                frame["sender_id"], frame.get("body", ""), frame.get("reply_to_id")
            )
            return {"t": "msg", **_message_frame(view)}, view.msg_id
        if t == "msg.attach":
            file = UploadFile(
                name=frame.get("name", ""),
                media_type=frame.get("media_type", "application/octet-stream"),
                data=_decode_b64(frame),
            )
            view = await self._pipeline(frame["conv_id"]).attach(frame["sender_id"], file)
            return {"t": "msg", **_message_frame(view)}, view.msg_id
        if t == "msg.voice":
            view = await self._pipeline(frame["conv_id"]).record_voice_note(
                frame["sender_id"], _decode_b64(frame), int(frame.get("duration_s", 0))
            )
            return {"t": "msg", **_message_frame(view)}, view.msg_id
        if t == "msg.action":
            pipeline = self._pipeline(frame["conv_id"])
            message = await self._find_message(pipeline, frame["msg_id"])
            result = await pipeline.apply_action(frame["action"], message, frame["user_id"])
            return {"t": "msg.action", "action": frame["action"], "msg_id": message.msg_id, "result": result}, None
        if t == "msg.forward":
            pipeline = self._pipeline(frame["conv_id"])
            message = await self._find_message(pipeline, frame["msg_id"])
            copies = await pipeline.forward(message, frame.get("targets") or [], frame["user_id"])
            return {"t": "msg.forwarded", "msg_ids": [c.msg_id for c in copies]}, None
        if t == "msg.list":
            views = await self._pipeline(frame["conv_id"]).load()
            return {"t": "msg.list", "messages": [_message_frame(v) for v in views]}, None
        if t == "story.publish":
            file = UploadFile(
                name=frame.get("name", ""),
                media_type=frame.get("media_type", "image/jpeg"),
                data=_decode_b64(frame),
            )
            story = await engine.stories.publish(frame["author_id"], file, frame.get("caption"))
            return {"t": "story", **asdict(story)}, story.story_id
        if t == "story.list":
            feed = await engine.stories.list_active(frame["viewer_id"])
            return {
                "t": "story.list",
                "mine": [entry.story.story_id for entry in feed.mine],
                "others": [
                    {
                        "author_id": group.author_id,
                        "has_unseen": group.has_unseen,
                        "stories": [entry.story.story_id for entry in group.stories],
                    }
                    for group in feed.others
                ],
            }, None
        if t == "story.view":
            records = await engine.store.list(STORIES, {"id": frame["story_id"]}, limit=1)
            if not records:
                raise NotFoundError(f"story {frame['story_id']} not found")
            view = await engine.stories.view(Story.from_record(records[0]), frame["viewer_id"])
            return {"t": "story.view", "view": asdict(view) if view else None}, view.view_id if view else None
        if t == "call.list":
            entries = await engine.calls.list_for_user(frame["user_id"], query=frame.get("query"))
            calls = [
                {
                    **asdict(entry.call),
                    "caller_name": entry.caller_name,
                    "receiver_name": entry.receiver_name,
                    "direction": entry.direction,
                }
                for entry in entries
            ]
            return {"t": "call.list", "calls": calls}, None
        raise ValidationError(f"unsupported frame type: {t}")

    async def run(self, frames: Iterable[dict], output: TextIO) -> None:
        for raw_frame in frames:
            frame = _resolve_refs(raw_frame, self.refs)
            try:
                result, primary_id = await self.run_frame(frame)
            except ChatError as exc:
                result, primary_id = {"t": "error", "code": exc.code, "message": str(exc)}, None
            except KeyError as exc:
                result, primary_id = {"t": "error", "code": "invalid_request", "message": f"missing {exc}"}, None
            ref = frame.get("ref")
            if ref and primary_id:
                self.refs[ref] = primary_id
            output.write(json.dumps(result, sort_keys=True) + "\n")


async def simulate(frames: Iterable[dict], output: TextIO, engine: ChatEngine | None = None) -> None:
    """Process JSON frames through a fresh in-memory engine unless one is given."""

    owned = engine is None
    engine = engine or build_engine(EngineConfig())
    try:
        await Simulator(engine).run(frames, output)
    finally:
        if owned:
            await engine.close()


def _load_frames(handle: TextIO) -> Iterable[dict]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        frames: list[dict] = []
        for line in content.splitlines():
            if line.strip():
                frames.append(json.loads(line))
        return frames

    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    frames = _load_frames(args.file or sys.stdin)
    asyncio.run(simulate(frames, output))
    return 0


def _run_serve(args: argparse.Namespace, config: EngineConfig) -> int:
    app = create_app(db_path=args.db or config.db_path)
    web.run_app(app, host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Conversation engine tools")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser("simulate", help="Run JSON command frames through the engine")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP record store and upload service")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to bind")
    serve_parser.add_argument("--db", type=str, default=None, help="Path to SQLite database for durability")

    args = parser.parse_args(argv)
    config = load_config_from_env()
    logging.basicConfig(level=config.log_level, stream=sys.stderr)

    if args.command == "serve":
        return _run_serve(args, config)
    return _run_simulation(args, output or sys.stdout)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
