"""房间清理服务 - 定期取消长时间无人开局的房间，并下线已结束的旧房间。"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from app import config as app_config
from app.models import Room
from app.services import room_service

logger = logging.getLogger(__name__)


def get_cleanup_config() -> dict[str, Any]:
    """读取清理参数并裁剪到合理范围。"""
    return {
        "enabled": app_config.CLEANUP_ENABLED,
        "interval_minutes": max(1, app_config.CLEANUP_INTERVAL_MINUTES),
        "waiting_timeout_minutes": max(5, app_config.CLEANUP_WAITING_TIMEOUT_MINUTES),
        "retention_days": max(1, app_config.CLEANUP_RETENTION_DAYS),
        "playing_timeout_minutes": max(30, app_config.CLEANUP_PLAYING_TIMEOUT_MINUTES),
    }


async def cancel_stale_waiting_rooms(cutoff: datetime) -> int:
    """取消创建时间早于 cutoff 且仍在等待中的房间。"""
    rooms = await Room.find({"status": "waiting", "is_active": True, "created_at": {"$lt": cutoff}}).to_list()
    cancelled = 0
    for room in rooms:
        try:
            await room_service.cancel_room(room.room_id)
        except Exception as exc:
            # 单个房间失败不影响其余房间
            logger.warning("取消超时房间 %s 失败: %s", room.room_id, exc)
            continue
        cancelled += 1
    return cancelled


async def _deactivate_rooms(rooms: list[Room], status: str, idle_before: datetime | None = None) -> int:
    deactivated = 0
    for room in rooms:
        try:
            if await room_service.deactivate_room(room.room_id, status, idle_before):
                deactivated += 1
        except Exception as exc:
            logger.warning("下线房间 %s 失败: %s", room.room_id, exc)
    return deactivated


async def deactivate_finished_rooms(cutoff: datetime) -> int:
    """下线结束时间早于 cutoff 的房间（保留数据，仅从列表中隐藏）。"""
    rooms = await Room.find({"status": "finished", "is_active": True, "updated_at": {"$lt": cutoff}}).to_list()
    return await _deactivate_rooms(rooms, "finished")


async def deactivate_abandoned_playing_rooms(idle_before: datetime) -> int:
    """下线所有玩家都已离开、或长时间没有任何更新的进行中房间。"""
    rooms = await Room.find(
        {
            "status": "playing",
            "is_active": True,
            "$or": [{"players": {"$size": 0}}, {"updated_at": {"$lt": idle_before}}],
        }
    ).to_list()
    return await _deactivate_rooms(rooms, "playing", idle_before)


async def cleanup_rooms(now: datetime | None = None) -> dict[str, int]:
    """执行一次清理，返回统计信息。"""
    config = get_cleanup_config()
    now = now or datetime.now(timezone.utc)
    waiting_cutoff = now - timedelta(minutes=config["waiting_timeout_minutes"])
    finished_cutoff = now - timedelta(days=config["retention_days"])
    playing_cutoff = now - timedelta(minutes=config["playing_timeout_minutes"])

    stats = {
        "cancelled_waiting_rooms": await cancel_stale_waiting_rooms(waiting_cutoff),
        "deactivated_finished_rooms": await deactivate_finished_rooms(finished_cutoff),
        "deactivated_playing_rooms": await deactivate_abandoned_playing_rooms(playing_cutoff),
    }
    logger.info(
        "房间清理完成：取消等待超时房间 %d 个，下线已结束房间 %d 个，下线无人进行中房间 %d 个",
        stats["cancelled_waiting_rooms"],
        stats["deactivated_finished_rooms"],
        stats["deactivated_playing_rooms"],
    )
    return stats


# 调度器任务引用
_cleanup_task: asyncio.Task | None = None


async def _cleanup_scheduler_loop() -> None:
    """清理调度循环。"""
    while True:
        config = get_cleanup_config()
        try:
            await asyncio.sleep(config["interval_minutes"] * 60)
            await cleanup_rooms()
        except asyncio.CancelledError:
            logger.info("房间清理调度器已停止")
            break
        except Exception as exc:
            logger.error("房间清理调度器异常: %s", exc, exc_info=True)


def start_cleanup_scheduler() -> None:
    """启动房间清理调度器。"""
    global _cleanup_task
    if not get_cleanup_config()["enabled"]:
        logger.info("房间清理已禁用")
        return
    if _cleanup_task is not None and not _cleanup_task.done():
        return
    _cleanup_task = asyncio.create_task(_cleanup_scheduler_loop())
    logger.info("房间清理调度器已启动")


def stop_cleanup_scheduler() -> None:
    """停止房间清理调度器。"""
    global _cleanup_task
    if _cleanup_task is not None and not _cleanup_task.done():
        _cleanup_task.cancel()
        logger.info("房间清理调度器已请求停止")
    _cleanup_task = None
