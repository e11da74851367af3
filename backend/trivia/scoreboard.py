from __future__ import annotations

from typing import Any, Awaitable, Callable, List, Optional, Sequence

import structlog
from pydantic import BaseModel

from .events import Subscription
from .models import Score
from .store import TOP_SCORES
from .utils import format_time, sort_leaderboard

logger = structlog.get_logger(__name__)

MEDALS = ("🥇", "🥈", "🥉")


class ScoreboardRow(BaseModel):
    rank: int
    marker: str
    player_name: str
    score: int
    total_questions: int
    time: int
    time_display: str
    language: str


def rank_marker(position: int) -> str:
    """Marker for a 0-based leaderboard position."""
    return MEDALS[position] if position < len(MEDALS) else f"#{position + 1}"


def build_rows(scores: Sequence[Score], limit: int = TOP_SCORES) -> List[ScoreboardRow]:
    ranked = sort_leaderboard([s.model_dump() for s in scores])[:limit]
    return [
        ScoreboardRow(
            rank=i + 1,
            marker=rank_marker(i),
            player_name=s["player_name"],
            score=s["score"],
            total_questions=s["total_questions"],
            time=s["time"],
            time_display=format_time(s["time"]),
            language=s["language"],
        )
        for i, s in enumerate(ranked)
    ]


class ScoreboardView:
    """Live top-10 for one quiz.

    Opening subscribes to score changes and then fetches the current leaderboard;
    every change re-fetches the whole top-10, so the latest refresh always wins.
    """

    def __init__(
        self,
        store: Any,
        quiz_id: str,
        on_update: Optional[Callable[[List[ScoreboardRow]], Awaitable[None]]] = None,
        limit: int = TOP_SCORES,
    ):
        self._store = store
        self.quiz_id = quiz_id
        self._on_update = on_update
        self._limit = limit
        self._subscription: Optional[Subscription] = None
        self.rows: List[ScoreboardRow] = []
        self._refreshed = False

    @property
    def is_open(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def open(self) -> List[ScoreboardRow]:
        if self.is_open:
            return self.rows
        # Subscribe before the first fetch so a score landing in between still triggers a refresh.
        self._subscription = self._store.subscribe_scores(self.quiz_id, self._refresh, self._limit)
        try:
            scores = await self._store.top_scores(self.quiz_id, self._limit)
        except Exception:
            self.close()
            raise
        if not self._refreshed:
            # A refresh that already ran started later than this fetch, so it wins.
            self.rows = build_rows(scores, self._limit)
        logger.info("Scoreboard opened", quiz_id=self.quiz_id)
        return self.rows

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            logger.info("Scoreboard closed", quiz_id=self.quiz_id)

    async def _refresh(self, scores: List[Score]) -> None:
        self._refreshed = True
        self.rows = build_rows(scores, self._limit)
        if self._on_update is not None:
            await self._on_update(self.rows)

    async def __aenter__(self) -> "ScoreboardView":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()
