"""实时网关 - 基于 Socket.IO 的房间订阅、聊天、输入状态与在线状态广播。"""

from __future__ import annotations

import functools
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import socketio

from app.config import CORS_ORIGINS
from app.services import auth_service, room_service, user_service, validators
from app.services.errors import AppError
from app.services.presence_service import Identity, PresenceRegistry

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "服务器内部错误，请稍后重试"


def utc_iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _guarded(handler: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """捕获事件处理中的异常，记录日志并仅通知发送者。"""

    @functools.wraps(handler)
    async def wrapper(self: "RealtimeGateway", sid: str, *args: Any) -> Any:
        try:
            return await handler(self, sid, *args)
        except Exception as exc:
            logger.error("实时事件 %s 处理失败 (sid=%s): %s", handler.__name__, sid, exc, exc_info=True)
            await self.emit_error(sid, GENERIC_ERROR_MESSAGE)
            return None

    return wrapper


def _read_room_id(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    room_id = data.get("roomId")
    if not isinstance(room_id, (str, int)):
        return ""
    # 与 REST 广播使用的房间号保持一致（大写）
    return str(room_id).strip().upper()


class RealtimeGateway:
    """实时网关。

    由应用入口显式创建，并通过 ``app.state.gateway`` 注入到 REST 层使用。
    """

    def __init__(self, sio: socketio.AsyncServer | None = None, presence: PresenceRegistry | None = None):
        cors = "*" if "*" in CORS_ORIGINS else CORS_ORIGINS
        self.sio = sio or socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=cors)
        self.presence = presence or PresenceRegistry()
        self._register_handlers()

    def _register_handlers(self) -> None:
        self.sio.on("connect", self.on_connect)
        self.sio.on("disconnect", self.on_disconnect)
        self.sio.on("join-room", self.on_join_room)
        self.sio.on("leave-room", self.on_leave_room)
        self.sio.on("send-message", self.on_send_message)
        self.sio.on("typing-start", self.on_typing_start)
        self.sio.on("typing-stop", self.on_typing_stop)

    def asgi_app(self, other_asgi_app: Any) -> socketio.ASGIApp:
        """把 Socket.IO 挂载到 HTTP 应用前面。"""
        return socketio.ASGIApp(self.sio, other_asgi_app=other_asgi_app)

    async def emit_error(self, sid: str, message: str) -> None:
        await self.sio.emit("error", {"message": message}, to=sid)

    # ---------- 连接生命周期 ----------

    async def on_connect(self, sid: str, environ: dict[str, Any], auth: Any = None) -> None:
        raw_token = auth.get("token") if isinstance(auth, dict) else None
        token = auth_service.extract_bearer_token(raw_token)
        if not token:
            raise socketio.exceptions.ConnectionRefusedError("Authentication error: 缺少令牌")

        try:
            token_identity = auth_service.decode_access_token(token)
        except AppError as exc:
            raise socketio.exceptions.ConnectionRefusedError(f"Authentication error: {exc.message}") from exc

        username = token_identity.username
        if not username:
            user = await user_service.get_user_by_id(token_identity.user_id)
            if not user:
                raise socketio.exceptions.ConnectionRefusedError("Authentication error: 用户不存在")
            username = user.username

        identity = Identity(user_id=token_identity.user_id, username=username)
        first = self.presence.connect(sid, identity)
        logger.info("实时连接建立: %s (%s)", identity.username, sid)
        # 连接确认包发出后再推送在线列表
        self.sio.start_background_task(self.announce_presence, sid, identity, first)

    async def announce_presence(self, sid: str, identity: Identity, first_connection: bool) -> None:
        await self.sio.emit("online-users", [item.to_dict() for item in self.presence.online_users()], to=sid)
        if first_connection:
            await self.sio.emit("user-online", identity.to_dict(), skip_sid=sid)
            await self._store_online_flag(identity.user_id, True)

    async def on_disconnect(self, sid: str, *_args: Any) -> None:
        identity, channels, last_connection = self.presence.disconnect(sid)
        if identity is None:
            return

        for channel in channels:
            await self._announce_leave(sid, channel, identity)

        if last_connection:
            await self.sio.emit("user-offline", identity.to_dict())
            await self._store_online_flag(identity.user_id, False)
        logger.info("实时连接断开: %s (%s)", identity.username, sid)

    async def _store_online_flag(self, user_id: str, is_online: bool) -> None:
        try:
            await user_service.set_online(user_id, is_online)
        except Exception as exc:
            logger.warning("更新用户 %s 在线状态失败: %s", user_id, exc)

    async def _announce_leave(self, sid: str, channel: str, identity: Identity) -> None:
        still_present = self.presence.user_in_channel(identity.user_id, channel)
        if not still_present and self.presence.set_typing(channel, identity.user_id, False):
            await self.sio.emit(
                "user-typing",
                {"userId": identity.user_id, "username": identity.username, "isTyping": False},
                to=channel,
                skip_sid=sid,
            )
        await self.sio.emit(
            "user-left",
            {"userId": identity.user_id, "username": identity.username, "timestamp": utc_iso_now()},
            to=channel,
            skip_sid=sid,
        )

    def _require_identity(self, sid: str) -> Identity | None:
        return self.presence.identity(sid)

    # ---------- 频道事件 ----------

    @_guarded
    async def on_join_room(self, sid: str, data: Any = None) -> None:
        identity = self._require_identity(sid)
        if identity is None:
            await self.emit_error(sid, "未认证的连接")
            return
        room_id = _read_room_id(data)
        if not room_id:
            await self.emit_error(sid, "缺少房间 ID")
            return

        await self.sio.enter_room(sid, room_id)
        self.presence.join(sid, room_id)
        await self.sio.emit(
            "user-joined",
            {"userId": identity.user_id, "username": identity.username, "timestamp": utc_iso_now()},
            to=room_id,
            skip_sid=sid,
        )
        await self.sio.emit("joined-room", {"roomId": room_id}, to=sid)
        logger.info("%s 加入频道 %s", identity.username, room_id)

    @_guarded
    async def on_leave_room(self, sid: str, data: Any = None) -> None:
        identity = self._require_identity(sid)
        if identity is None:
            await self.emit_error(sid, "未认证的连接")
            return
        room_id = _read_room_id(data)
        if not room_id:
            await self.emit_error(sid, "缺少房间 ID")
            return

        await self.sio.leave_room(sid, room_id)
        self.presence.leave(sid, room_id)
        await self._announce_leave(sid, room_id, identity)
        logger.info("%s 离开频道 %s", identity.username, room_id)

    @_guarded
    async def on_send_message(self, sid: str, data: Any = None) -> None:
        identity = self._require_identity(sid)
        if identity is None:
            await self.emit_error(sid, "未认证的连接")
            return
        room_id = _read_room_id(data)
        if not room_id:
            await self.emit_error(sid, "缺少房间 ID")
            return
        raw_message = data.get("message")
        error = validators.validate_chat_message(raw_message)
        if error:
            await self.emit_error(sid, error)
            return

        timestamp = data.get("timestamp")
        payload = {
            "id": uuid.uuid4().hex,
            "userId": identity.user_id,
            "username": identity.username,
            "roomId": room_id,
            "message": raw_message.strip(),
            "timestamp": timestamp if isinstance(timestamp, str) and timestamp else utc_iso_now(),
            "type": "text",
        }

        try:
            await room_service.append_chat_message(room_id, identity.user_id, identity.username, payload["message"])
        except AppError as exc:
            logger.warning("房间 %s 聊天记录写入失败: %s", room_id, exc.message)

        await self.sio.emit("new-message", payload, to=room_id)
        await self.sio.emit("message-sent", payload, to=sid)

    async def _handle_typing(self, sid: str, data: Any, is_typing: bool) -> None:
        identity = self._require_identity(sid)
        if identity is None:
            await self.emit_error(sid, "未认证的连接")
            return
        room_id = _read_room_id(data)
        if not room_id:
            await self.emit_error(sid, "缺少房间 ID")
            return

        self.presence.set_typing(room_id, identity.user_id, is_typing)
        await self.sio.emit(
            "user-typing",
            {"userId": identity.user_id, "username": identity.username, "isTyping": is_typing},
            to=room_id,
            skip_sid=sid,
        )

    @_guarded
    async def on_typing_start(self, sid: str, data: Any = None) -> None:
        await self._handle_typing(sid, data, True)

    @_guarded
    async def on_typing_stop(self, sid: str, data: Any = None) -> None:
        await self._handle_typing(sid, data, False)

    # ---------- 供 REST 层调用的广播 ----------

    async def publish(self, room_id: str, event: str, data: dict[str, Any]) -> None:
        """向房间频道广播事件；广播失败只记录日志，不影响接口响应。"""
        try:
            await self.sio.emit(event, data, to=room_id)
        except Exception as exc:
            logger.warning("广播 %s 到房间 %s 失败: %s", event, room_id, exc)

    async def publish_table_status(self, room_id: str, status: str, player_count: int) -> None:
        try:
            await self.sio.emit(
                "table-status-changed",
                {"roomId": room_id, "status": status, "playerCount": player_count},
            )
        except Exception as exc:
            logger.warning("广播房间 %s 状态失败: %s", room_id, exc)
