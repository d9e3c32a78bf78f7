"""在线状态登记表：连接身份、频道成员与输入状态均由服务端维护。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Identity:
    """连接握手时解析出的用户身份。"""

    user_id: str
    username: str

    def to_dict(self) -> dict[str, Any]:
        return {"userId": self.user_id, "username": self.username}


class PresenceRegistry:
    """连接 → 身份、频道 → 连接、用户 → 连接 的映射。

    频道成员按加入顺序保存（dict 保序），同一用户可以有多个连接。
    """

    def __init__(self):
        self._sessions: dict[str, Identity] = {}
        self._channels: dict[str, dict[str, None]] = {}
        self._sid_channels: dict[str, dict[str, None]] = {}
        self._user_sids: dict[str, dict[str, None]] = {}
        self._typing: dict[str, set[str]] = {}

    def connect(self, sid: str, identity: Identity) -> bool:
        """登记连接，返回是否为该用户的第一个连接。"""
        self._sessions[sid] = identity
        self._sid_channels.setdefault(sid, {})
        sids = self._user_sids.setdefault(identity.user_id, {})
        first = not sids
        sids[sid] = None
        return first

    def disconnect(self, sid: str) -> tuple[Identity | None, list[str], bool]:
        """注销连接。

        Returns:
            (身份, 该连接离开的频道列表, 是否为该用户最后一个连接)
        """
        identity = self._sessions.pop(sid, None)
        channels = list(self._sid_channels.pop(sid, {}))
        for channel in channels:
            self._discard_member(channel, sid)
        if identity is None:
            return None, channels, False

        sids = self._user_sids.get(identity.user_id, {})
        sids.pop(sid, None)
        last = not sids
        if last:
            self._user_sids.pop(identity.user_id, None)
        return identity, channels, last

    def identity(self, sid: str) -> Identity | None:
        return self._sessions.get(sid)

    def join(self, sid: str, channel: str) -> bool:
        """加入频道，返回是否为新加入。"""
        members = self._channels.setdefault(channel, {})
        if sid in members:
            return False
        members[sid] = None
        self._sid_channels.setdefault(sid, {})[channel] = None
        return True

    def leave(self, sid: str, channel: str) -> bool:
        joined = self._sid_channels.get(sid, {})
        if channel not in joined:
            return False
        joined.pop(channel, None)
        self._discard_member(channel, sid)
        return True

    def _discard_member(self, channel: str, sid: str) -> None:
        members = self._channels.get(channel)
        if members is None:
            return
        members.pop(sid, None)
        if not members:
            self._channels.pop(channel, None)
            self._typing.pop(channel, None)

    def channels_of(self, sid: str) -> list[str]:
        return list(self._sid_channels.get(sid, {}))

    def members(self, channel: str) -> list[Identity]:
        """频道内的用户（按首次加入顺序去重）。"""
        seen: dict[str, Identity] = {}
        for sid in self._channels.get(channel, {}):
            identity = self._sessions.get(sid)
            if identity is not None and identity.user_id not in seen:
                seen[identity.user_id] = identity
        return list(seen.values())

    def user_in_channel(self, user_id: str, channel: str) -> bool:
        return any(
            self._sessions.get(sid) is not None and self._sessions[sid].user_id == user_id
            for sid in self._channels.get(channel, {})
        )

    def set_typing(self, channel: str, user_id: str, is_typing: bool) -> bool:
        """更新输入状态，返回状态是否发生变化。"""
        typing = self._typing.setdefault(channel, set())
        if is_typing:
            if user_id in typing:
                return False
            typing.add(user_id)
            return True
        if user_id not in typing:
            if not typing:
                self._typing.pop(channel, None)
            return False
        typing.discard(user_id)
        if not typing:
            self._typing.pop(channel, None)
        return True

    def typing_users(self, channel: str) -> set[str]:
        return set(self._typing.get(channel, set()))

    def online_users(self) -> list[Identity]:
        users: list[Identity] = []
        for sids in self._user_sids.values():
            sid = next(iter(sids), None)
            if sid is not None and sid in self._sessions:
                users.append(self._sessions[sid])
        return users

    def is_online(self, user_id: str) -> bool:
        return bool(self._user_sids.get(user_id))

    def connection_count(self) -> int:
        return len(self._sessions)
