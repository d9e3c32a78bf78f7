"""集成测试 fixture。"""

from __future__ import annotations

import pytest_asyncio


@pytest_asyncio.fixture
async def initialized_db(monkeypatch, mongo_cleanup, test_mongo_url: str, test_mongo_db_name: str):
    from app import db as app_db
    from app.services import room_service

    monkeypatch.setattr(app_db, "MONGO_URL", test_mongo_url)
    monkeypatch.setattr(app_db, "MONGO_DB", test_mongo_db_name)
    # 房间锁绑定在创建时的事件循环上，每个用例使用新的锁表
    monkeypatch.setattr(room_service, "_room_locks", {})
    monkeypatch.setattr(room_service, "_room_lock_users", {})

    await app_db.init_db()
    try:
        yield
    finally:
        await app_db.close_db()
