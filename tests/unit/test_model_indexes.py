from __future__ import annotations

import pytest

from app.models import Room, User


def _index_names(model) -> set[str]:
    return {index.document.get("name") for index in model.Settings.indexes}


@pytest.mark.unit
def test_user_unique_indexes_defined() -> None:
    indexes = User.Settings.indexes
    assert indexes, "User 模型未定义索引"
    unique_names = {index.document.get("name") for index in indexes if index.document.get("unique")}
    assert {"uniq_username", "uniq_email"} <= unique_names


@pytest.mark.unit
def test_room_id_unique_index_defined() -> None:
    assert any(
        index.document.get("unique") and index.document.get("name") == "uniq_room_id"
        for index in Room.Settings.indexes
    )


@pytest.mark.unit
def test_room_lookup_indexes_defined() -> None:
    assert {"idx_room_type_status", "idx_room_creator", "idx_room_created_at"} <= _index_names(Room)


@pytest.mark.unit
def test_room_uses_revision_check() -> None:
    assert Room.Settings.use_revision is True
