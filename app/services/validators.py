"""统一字段校验工具。"""

from __future__ import annotations

import re

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20
PASSWORD_MIN_LENGTH = 6
EMAIL_MAX_LENGTH = 128
ROOM_NAME_MAX_LENGTH = 50
CHAT_MESSAGE_MAX_LENGTH = 500

EMAIL_PATTERN = re.compile(r"^\w+(?:[.-]\w+)*@\w+(?:[.-]\w+)*\.\w{2,3}$")

GAME_TYPES = ("okey", "batak", "tavla", "pisti")
MIN_PLAYERS = 2
MAX_PLAYERS = 4
MIN_BET_AMOUNT = 10
MAX_BET_AMOUNT = 10000


def normalize_username(value: str | None) -> str:
    """标准化用户名（去除首尾空白）。"""

    return str(value or "").strip()


def validate_username(value: str | None) -> str:
    """校验用户名长度，不合法时返回错误信息。"""

    username = normalize_username(value)
    if not username:
        return "用户名不能为空"
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        return f"用户名长度需在 {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} 个字符之间"
    return ""


def normalize_email(value: str | None) -> str:
    """标准化邮箱值，统一去空白并转为小写。"""

    return str(value or "").strip().lower()


def validate_email(value: str | None) -> str:
    email = normalize_email(value)
    if not email:
        return "邮箱不能为空"
    if len(email) > EMAIL_MAX_LENGTH:
        return f"邮箱最多 {EMAIL_MAX_LENGTH} 个字符"
    if EMAIL_PATTERN.fullmatch(email):
        return ""
    return "邮箱格式不合法"


def validate_password(value: str | None) -> str:
    password = str(value or "")
    if not password:
        return "密码不能为空"
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"密码至少需要 {PASSWORD_MIN_LENGTH} 个字符"
    return ""


def validate_game_type(value: str | None) -> str:
    if str(value or "").strip().lower() in GAME_TYPES:
        return ""
    return "无效的游戏类型"


def validate_max_players(value: int) -> str:
    if MIN_PLAYERS <= value <= MAX_PLAYERS:
        return ""
    return f"玩家人数需在 {MIN_PLAYERS}-{MAX_PLAYERS} 之间"


def validate_bet_amount(value: int) -> str:
    if MIN_BET_AMOUNT <= value <= MAX_BET_AMOUNT:
        return ""
    return f"下注金额需在 {MIN_BET_AMOUNT}-{MAX_BET_AMOUNT} 之间"


def validate_room_name(value: str | None) -> str:
    name = str(value or "").strip()
    if len(name) > ROOM_NAME_MAX_LENGTH:
        return f"房间名称最多 {ROOM_NAME_MAX_LENGTH} 个字符"
    return ""


def validate_chat_message(value: object) -> str:
    """校验聊天消息：必须为非空字符串且不超过长度上限。"""

    if not isinstance(value, str) or not value.strip():
        return "消息内容不能为空"
    if len(value) > CHAT_MESSAGE_MAX_LENGTH:
        return f"消息长度不能超过 {CHAT_MESSAGE_MAX_LENGTH} 个字符"
    return ""
