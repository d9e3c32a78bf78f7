from __future__ import annotations

import pytest

from app.models import User
from app.models.user import compute_win_rate, default_avatar_url


def _user(**overrides) -> User:
    data = {"username": "alice", "email": "alice@example.com", "password_hash": "x" * 20}
    data.update(overrides)
    return User.model_construct(**data)


@pytest.mark.unit
def test_win_rate_is_zero_without_games() -> None:
    assert compute_win_rate(0, 0) == 0.0
    assert compute_win_rate(1, 4) == pytest.approx(25.0)


@pytest.mark.unit
def test_update_stats_recomputes_win_rate() -> None:
    user = _user()

    user.update_stats("win", 120)
    user.update_stats("loss", 30)

    assert user.stats.games_played == 2
    assert user.stats.games_won == 1
    assert user.stats.total_score == 150
    assert user.stats.win_rate == pytest.approx(50.0)


@pytest.mark.unit
def test_mark_login_sets_online() -> None:
    user = _user(is_online=False)

    user.mark_login()

    assert user.is_online is True


@pytest.mark.unit
def test_profile_excludes_password_hash() -> None:
    user = _user(avatar=default_avatar_url("alice"))

    profile = user.profile()

    assert profile["username"] == "alice"
    assert profile["avatar"].endswith("seed=alice")
    assert profile["stats"]["winRate"] == 0.0
    assert "password_hash" not in profile
    assert "passwordHash" not in profile
