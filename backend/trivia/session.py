from __future__ import annotations

import asyncio
import random
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

import structlog

from .models import GameResult, Language, Question, ShuffledQuestion
from .shuffle import shuffle_questions
from .utils import now_ms

logger = structlog.get_logger(__name__)

COUNTDOWN_START = 3


class Phase(str, Enum):
    PRELOADING = "preloading"
    COUNTDOWN = "countdown"
    ACTIVE = "active"
    COMPLETE = "complete"


class SessionError(ValueError):
    pass


# States: preloading -> countdown(3, 2, 1) -> active -> complete
class QuizSession:
    def __init__(
        self,
        player_name: str,
        language: Language,
        *,
        quiz_id: Optional[str] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = now_ms,
        on_event: Optional[Callable[[Dict[str, Any]], None]] = None,
    ):
        self.id = uuid4().hex
        self.player_name = player_name
        self.language = language
        self.quiz_id = quiz_id
        self._rng = rng
        self._clock = clock
        self._on_event = on_event

        self.phase = Phase.PRELOADING
        self.loaded = False
        self.no_questions = False
        self.questions: List[ShuffledQuestion] = []
        self.current_index = 0
        self.score = 0
        self.countdown: Optional[int] = None
        self.started_at_ms: Optional[int] = None
        self.elapsed_ms = 0
        self.result: Optional[GameResult] = None
        self.last_seen_ms = clock()

    def touch(self) -> None:
        """Record client activity; idle sessions stop ticking and are reaped."""
        self.last_seen_ms = self._clock()

    def idle_ms(self) -> int:
        return self._clock() - self.last_seen_ms

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[ShuffledQuestion]:
        if self.phase != Phase.ACTIVE:
            return None
        return self.questions[self.current_index]

    def load(self, questions: Sequence[Question]) -> bool:
        """Fix question and option order for the whole session and start the countdown.

        Returns False when there is nothing to play; the session then stays in
        ``preloading`` for good.
        """
        if self.loaded:
            raise SessionError("Questions are already loaded for this session")
        self.loaded = True

        if not questions:
            self.no_questions = True
            logger.warning("No questions available", session_id=self.id, quiz_id=self.quiz_id)
            return False

        self.questions = shuffle_questions(questions, self.language, self._rng)
        self._set_phase(Phase.COUNTDOWN)
        self.countdown = COUNTDOWN_START
        self._emit("countdown", value=self.countdown)
        return True

    def tick_countdown(self) -> Optional[int]:
        if self.phase != Phase.COUNTDOWN:
            raise SessionError("Countdown is not running")

        assert self.countdown is not None
        self.countdown -= 1
        if self.countdown > 0:
            self._emit("countdown", value=self.countdown)
            return self.countdown

        self.countdown = None
        self.started_at_ms = self._clock()
        self._set_phase(Phase.ACTIVE)
        return None

    def tick_clock(self) -> int:
        # Display only; the result time is taken from the start/end instants.
        if self.phase == Phase.ACTIVE and self.started_at_ms is not None:
            self.elapsed_ms = self._clock() - self.started_at_ms
        return self.elapsed_ms

    def answer(self, option_index: int, question_id: Optional[int] = None) -> bool:
        self.touch()
        question = self.current_question
        if question is None:
            raise SessionError(f"Cannot answer while the session is {self.phase.value}")
        if question_id is not None and question_id != question.question_id:
            raise SessionError("Answer is for a question that is no longer current")
        if not 0 <= option_index < len(question.options):
            raise SessionError(f"Option index {option_index} is out of range")

        is_correct = option_index == question.correct_index
        if is_correct:
            self.score += 1
        self._emit("answer", question_id=question.question_id, option_index=option_index, correct=is_correct)

        if self.current_index + 1 < len(self.questions):
            self.current_index += 1
        else:
            self._complete()
        return is_correct

    def _complete(self) -> None:
        assert self.started_at_ms is not None
        end = self._clock()
        self.elapsed_ms = end - self.started_at_ms
        self.result = GameResult(
            player_name=self.player_name,
            score=self.score,
            total_questions=len(self.questions),
            time=self.elapsed_ms,
            language=self.language,
            timestamp=end,
            quiz_id=self.quiz_id,
        )
        self._set_phase(Phase.COMPLETE)
        self._emit("complete", score=self.score, time=self.elapsed_ms)
        logger.info(
            "Session complete",
            session_id=self.id,
            quiz_id=self.quiz_id,
            score=self.score,
            total=len(self.questions),
            time_ms=self.elapsed_ms,
        )

    async def run(
        self,
        load_questions: Callable[[], Awaitable[Sequence[Question]]],
        *,
        preload_delay_ms: int = 500,
        countdown_interval_ms: int = 1000,
        tick_interval_ms: int = 10,
        idle_timeout_ms: Optional[int] = None,
    ) -> None:
        """Drive the session timers until completion; cancel the task to tear down."""

        questions, _ = await asyncio.gather(load_questions(), asyncio.sleep(preload_delay_ms / 1000))
        if not self.load(questions):
            return

        while self.phase == Phase.COUNTDOWN:
            await asyncio.sleep(countdown_interval_ms / 1000)
            self.tick_countdown()

        while self.phase == Phase.ACTIVE:
            self.tick_clock()
            if idle_timeout_ms and self.idle_ms() > idle_timeout_ms:
                # Nobody is watching; snapshot() still recomputes the clock on demand.
                logger.info("Session idle, display clock stopped", session_id=self.id)
                return
            await asyncio.sleep(tick_interval_ms / 1000)

    def snapshot(self) -> Dict[str, Any]:
        self.touch()
        question = self.current_question
        return {
            "id": self.id,
            "phase": self.phase.value,
            "player_name": self.player_name,
            "language": self.language,
            "quiz_id": self.quiz_id,
            "no_questions": self.no_questions,
            "countdown": self.countdown,
            "question": question.model_dump(exclude={"correct_index", "option_order"}) if question else None,
            "question_number": self.current_index + 1 if question else None,
            "total_questions": self.total_questions,
            "score": self.score,
            "elapsed_ms": self.tick_clock(),
        }

    def _set_phase(self, phase: Phase) -> None:
        self.phase = phase
        self._emit("phase", value=phase.value)

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self._on_event is not None:
            self._on_event({"type": event_type, **payload})
