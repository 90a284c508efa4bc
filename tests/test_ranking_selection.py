from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from loyalty.services.ranking_service import RankingCandidate, run_ranking, select_winners

BASE = datetime(2026, 9, 1, tzinfo=UTC)


def _candidate(post_id: int, user_id: int, likes: int, minutes: int = 0) -> RankingCandidate:
    return RankingCandidate(
        post_id=post_id,
        user_id=user_id,
        like_count=likes,
        created_at=BASE + timedelta(minutes=minutes),
    )


def test_select_winners_takes_first_post_per_author() -> None:
    candidates = [
        _candidate(1, user_id=10, likes=50),
        _candidate(2, user_id=10, likes=40),
        _candidate(3, user_id=20, likes=30),
        _candidate(4, user_id=30, likes=20),
    ]

    winners = select_winners(candidates, winners_count=2)

    assert [(w.post_id, w.user_id) for w in winners] == [(1, 10), (3, 20)]


def test_select_winners_with_single_author() -> None:
    candidates = [_candidate(1, user_id=10, likes=5), _candidate(2, user_id=10, likes=3)]

    assert [w.post_id for w in select_winners(candidates, winners_count=2)] == [1]


def test_select_winners_empty() -> None:
    assert select_winners([], winners_count=2) == []


def test_select_winners_respects_zero_count() -> None:
    assert select_winners([_candidate(1, user_id=10, likes=5)], winners_count=0) == []


@pytest.mark.asyncio
async def test_run_ranking_rejects_mid_month_start() -> None:
    def _unused_factory():
        raise AssertionError("database must not be touched")

    with pytest.raises(ValueError):
        await run_ranking(
            datetime(2026, 9, 15, tzinfo=UTC),
            datetime(2026, 10, 1, tzinfo=UTC),
            session_factory=_unused_factory,
        )
