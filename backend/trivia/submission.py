from __future__ import annotations

from enum import Enum
from typing import Any

import structlog

from .models import GameResult

logger = structlog.get_logger(__name__)

MAX_ATTEMPTS = 2


class SubmissionState(str, Enum):
    NOT_SUBMITTED = "not_submitted"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"
    SKIPPED = "skipped"


# States: not_submitted -> submitting -> submitted | failed; failed -> submitting once more
class ResultSubmitter:
    """Uploads one finished session's result to the leaderboard, at most once.

    ``submit`` is safe to call on every results poll: the state moves to
    ``submitting`` before the store is awaited, so overlapping calls never send
    twice. A failed upload may be attempted once more; after that the
    submitter stays ``failed``. Failures are logged, never raised.
    """

    def __init__(self, store: Any, result: GameResult):
        self._store = store
        self.result = result
        self.state = SubmissionState.NOT_SUBMITTED
        self.attempts = 0

    @property
    def can_submit(self) -> bool:
        if self.state == SubmissionState.NOT_SUBMITTED:
            return True
        return self.state == SubmissionState.FAILED and self.attempts < MAX_ATTEMPTS

    async def submit(self) -> SubmissionState:
        if not self.result.quiz_id:
            if self.state == SubmissionState.NOT_SUBMITTED:
                logger.info("No quiz id, skipping score upload", player=self.result.player_name)
                self.state = SubmissionState.SKIPPED
            return self.state

        if not self.can_submit:
            return self.state

        self.state = SubmissionState.SUBMITTING
        self.attempts += 1
        try:
            await self._store.create_score(self.result)
        except Exception:
            logger.exception("Failed to upload score", quiz_id=self.result.quiz_id, attempt=self.attempts)
            self.state = SubmissionState.FAILED
        else:
            self.state = SubmissionState.SUBMITTED
            logger.info("Score uploaded", quiz_id=self.result.quiz_id, score=self.result.score)
        return self.state
