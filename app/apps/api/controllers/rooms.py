"""房间接口 - 列表、创建、加入、离开、开局与结算。

房间写操作完成后通过实时网关通知房间频道与大厅。
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from app.apps.api.deps import get_current_identity, get_current_user, get_gateway
from app.models import Room, User
from app.services import room_service
from app.services.auth_service import TokenIdentity
from app.services.realtime_gateway import RealtimeGateway

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


class CreateRoomBody(BaseModel):
    gameType: str | None = None
    maxPlayers: Any = None
    betAmount: Any = None
    name: str | None = None
    settings: dict[str, Any] | None = None
    password: str = ""


class JoinRoomBody(BaseModel):
    password: str = ""


class EndGameBody(BaseModel):
    winnerId: str | None = None
    finalScores: dict[str, Any] = Field(default_factory=dict)


async def _notify_table(gateway: RealtimeGateway, room: Room) -> None:
    await gateway.publish_table_status(room.room_id, room.status, room.current_player_count)


@router.get("")
async def list_rooms(gameType: str | None = None) -> dict[str, Any]:
    """活跃房间列表（等待中/进行中）。"""
    rooms = await room_service.list_active_rooms(gameType)
    return {"success": True, "data": await room_service.serialize_rooms(rooms)}


@router.get("/my-rooms")
async def list_my_rooms(identity: TokenIdentity = Depends(get_current_identity)) -> dict[str, Any]:
    rooms = await room_service.list_user_rooms(identity.user_id)
    return {"success": True, "data": await room_service.serialize_rooms(rooms)}


@router.get("/search")
async def search_rooms(q: str = "", gameType: str | None = None, status: str | None = None) -> dict[str, Any]:
    rooms = await room_service.search_rooms(q, gameType, status)
    return {"success": True, "data": await room_service.serialize_rooms(rooms)}


@router.get("/{room_id}")
async def get_room(room_id: str) -> dict[str, Any]:
    room = await room_service.require_room(room_id)
    return {"success": True, "data": await room_service.serialize_room(room)}


@router.post("")
async def create_room(
    body: CreateRoomBody,
    user: User = Depends(get_current_user),
    gateway: RealtimeGateway = Depends(get_gateway),
) -> JSONResponse:
    room = await room_service.create_room(
        user,
        body.gameType,
        max_players=body.maxPlayers,
        bet_amount=body.betAmount,
        name=body.name,
        settings=body.settings,
        password=body.password,
    )
    await _notify_table(gateway, room)
    return JSONResponse(
        content=jsonable_encoder(
            {"success": True, "message": "房间创建成功", "data": await room_service.serialize_room(room)}
        ),
        status_code=201,
    )


@router.post("/{room_id}/join")
async def join_room(
    room_id: str,
    body: JoinRoomBody | None = None,
    user: User = Depends(get_current_user),
    gateway: RealtimeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    password = body.password if body else ""
    room = await room_service.join_room(room_id, str(user.id), password)
    await gateway.publish(
        room.room_id,
        "player-joined-game",
        {"roomId": room.room_id, "userId": str(user.id), "username": user.username, "playerCount": room.current_player_count},
    )
    await _notify_table(gateway, room)
    return {
        "success": True,
        "message": "已加入房间",
        "roomId": room.room_id,
        "data": await room_service.serialize_room(room),
    }


@router.delete("/{room_id}/leave")
async def leave_room(
    room_id: str,
    user: User = Depends(get_current_user),
    gateway: RealtimeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    room = await room_service.leave_room(room_id, str(user.id))
    await gateway.publish(
        room.room_id,
        "player-left-game",
        {"roomId": room.room_id, "userId": str(user.id), "username": user.username, "playerCount": room.current_player_count},
    )
    await _notify_table(gateway, room)
    return {"success": True, "message": "已离开房间", "roomId": room.room_id}


@router.put("/{room_id}/settings")
async def update_room_settings(
    room_id: str,
    payload: dict[str, Any],
    identity: TokenIdentity = Depends(get_current_identity),
) -> dict[str, Any]:
    room = await room_service.update_settings(room_id, identity.user_id, payload)
    return {"success": True, "message": "房间设置已更新", "data": await room_service.serialize_room(room)}


@router.post("/{room_id}/start")
async def start_game(
    room_id: str,
    identity: TokenIdentity = Depends(get_current_identity),
    gateway: RealtimeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    room = await room_service.start_game(room_id, identity.user_id)
    data = await room_service.serialize_room(room)
    await gateway.publish(room.room_id, "game-started", jsonable_encoder({"roomId": room.room_id, "currentGame": data["currentGame"]}))
    await _notify_table(gateway, room)
    return {"success": True, "message": "游戏已开始", "data": data}


@router.post("/{room_id}/end")
async def end_game(
    room_id: str,
    body: EndGameBody,
    identity: TokenIdentity = Depends(get_current_identity),
    gateway: RealtimeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    room = await room_service.end_game(room_id, identity.user_id, body.winnerId, body.finalScores)
    data = await room_service.serialize_room(room)
    await gateway.publish(room.room_id, "game-ended", jsonable_encoder({"roomId": room.room_id, "currentGame": data["currentGame"]}))
    await _notify_table(gateway, room)
    return {"success": True, "message": "游戏已结束", "data": data}


@router.get("/{room_id}/stats")
async def get_room_stats(room_id: str) -> dict[str, Any]:
    room = await room_service.require_room(room_id)
    return {"success": True, "data": room_service.room_stats(room)}


@router.get("/{room_id}/messages")
async def get_room_messages(room_id: str) -> dict[str, Any]:
    room = await room_service.require_room(room_id)
    return {"success": True, "data": room_service.chat_history(room)}
