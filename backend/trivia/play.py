from __future__ import annotations

import asyncio
import random
from typing import Any, Callable, Dict, List, Optional

import structlog

from .db import Settings
from .fallback import fallback_questions
from .models import GameResult, Language, Question
from .session import QuizSession
from .submission import ResultSubmitter, SubmissionState
from .utils import now_ms

logger = structlog.get_logger(__name__)


class SessionNotFound(LookupError):
    pass


async def load_play_questions(store: Any, quiz_id: Optional[str], *, use_fallback: bool = True) -> List[Question]:
    """Questions for a quiz, or the bundled set when the quiz yields none."""

    questions: List[Question] = []
    if quiz_id:
        try:
            questions = [Question.from_record(doc) for doc in await store.list_questions(quiz_id)]
        except Exception:
            logger.exception("Error fetching questions", quiz_id=quiz_id)
            questions = []

    if questions:
        return questions
    if use_fallback:
        logger.info("Using fallback questions", quiz_id=quiz_id)
        return fallback_questions()
    return []


class PlayManager:
    """Owns the running play sessions and their timer tasks."""

    def __init__(
        self,
        store: Any,
        settings: Settings,
        *,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._settings = settings
        self._rng = rng
        self._clock = clock
        self.sessions: Dict[str, QuizSession] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._submitters: Dict[str, ResultSubmitter] = {}

    def start(self, player_name: str, language: Language, quiz_id: Optional[str] = None) -> QuizSession:
        player_name = player_name.strip()
        if not player_name:
            raise ValueError("A player name is required")

        session = QuizSession(player_name, language, quiz_id=quiz_id, rng=self._rng, clock=self._clock)
        self.sessions[session.id] = session

        async def load() -> List[Question]:
            return await load_play_questions(
                self._store, quiz_id, use_fallback=self._settings.FALLBACK_QUESTIONS_ENABLED
            )

        task = asyncio.create_task(
            session.run(
                load,
                preload_delay_ms=self._settings.PRELOAD_DELAY_MS,
                countdown_interval_ms=self._settings.COUNTDOWN_INTERVAL_MS,
                tick_interval_ms=self._settings.CLOCK_TICK_MS,
                idle_timeout_ms=self._settings.SESSION_IDLE_TIMEOUT_MS,
            )
        )
        task.add_done_callback(lambda t, sid=session.id: self._task_done(sid, t))
        self._tasks[session.id] = task
        logger.info("Session started", session_id=session.id, quiz_id=quiz_id, language=language)
        return session

    def _task_done(self, session_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(session_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session task failed", session_id=session_id, error=repr(exc))

    def get(self, session_id: str) -> QuizSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    async def result(self, session_id: str) -> tuple[Optional[GameResult], Optional[SubmissionState]]:
        """Return the session's result, uploading it to the leaderboard if not done yet."""

        session = self.get(session_id)
        session.touch()
        if session.result is None:
            return None, None

        submitter = self._submitters.get(session_id)
        if submitter is None:
            submitter = self._submitters[session_id] = ResultSubmitter(self._store, session.result)
        state = await submitter.submit()
        return session.result, state

    async def close(self, session_id: str) -> None:
        self.get(session_id)
        task = self._tasks.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.sessions.pop(session_id, None)
        self._submitters.pop(session_id, None)
        logger.info("Session closed", session_id=session_id)

    async def close_all(self) -> None:
        for session_id in list(self.sessions):
            await self.close(session_id)

    async def reap(self) -> int:
        """Close sessions nobody has polled within the idle timeout; return how many."""

        timeout = self._settings.SESSION_IDLE_TIMEOUT_MS
        expired = [sid for sid, session in self.sessions.items() if session.idle_ms() > timeout]
        for session_id in expired:
            if session_id not in self.sessions:
                continue
            logger.info("Session expired", session_id=session_id)
            await self.close(session_id)
        return len(expired)

    async def reap_forever(self) -> None:
        while True:
            await asyncio.sleep(self._settings.SESSION_REAP_INTERVAL_MS / 1000)
            try:
                await self.reap()
            except Exception:
                logger.exception("Session reaper failed")
