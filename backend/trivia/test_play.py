from __future__ import annotations

import asyncio
from unittest import IsolatedAsyncioTestCase

from .db import InMemoryDatabase, Settings
from .events import ChangeFeed
from .fallback import FALLBACK_QUESTIONS
from .models import QuizRecord
from .play import PlayManager, SessionNotFound, load_play_questions
from .session import Phase
from .store import QuizStore
from .submission import SubmissionState


def fast_settings(**overrides) -> Settings:
    values = dict(PRELOAD_DELAY_MS=0, COUNTDOWN_INTERVAL_MS=0, CLOCK_TICK_MS=1)
    values.update(overrides)
    return Settings(**values)


async def wait_for_phase(session, phase, attempts: int = 200):
    for _ in range(attempts):
        if session.phase == phase or session.no_questions:
            return
        await asyncio.sleep(0.001)


class _BrokenStore:
    async def list_questions(self, quiz_id):
        raise RuntimeError("db down")


class LoadPlayQuestionsTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        db = InMemoryDatabase()
        self.store = QuizStore(db, ChangeFeed(db))
        await self.store.create_quiz(QuizRecord(id="quiz-1"))

    async def test_quiz_questions_preferred(self):
        await self.store.create_question(
            "quiz-1",
            {
                "question_en": "Only one?",
                "question_ar": "واحد فقط؟",
                "options_en": ["a", "b", "c", "d"],
                "options_ar": ["أ", "ب", "ج", "د"],
                "correct_answer": 1,
            },
        )
        questions = await load_play_questions(self.store, "quiz-1")
        self.assertEqual([q.prompt("en") for q in questions], ["Only one?"])

    async def test_fallback_when_quiz_is_empty_missing_or_failing(self):
        for store, quiz_id in ((self.store, "quiz-1"), (self.store, None), (_BrokenStore(), "quiz-1")):
            questions = await load_play_questions(store, quiz_id)
            self.assertEqual(len(questions), len(FALLBACK_QUESTIONS))

    async def test_no_fallback_gives_nothing(self):
        self.assertEqual(await load_play_questions(self.store, "quiz-1", use_fallback=False), [])


class PlayManagerTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        db = InMemoryDatabase()
        self.store = QuizStore(db, ChangeFeed(db))
        await self.store.create_quiz(QuizRecord(id="quiz-1"))

    async def asyncTearDown(self) -> None:
        await self.plays.close_all()

    async def _play_through(self, quiz_id):
        self.plays = PlayManager(self.store, fast_settings())
        session = self.plays.start("Nour", "ar", quiz_id)
        await wait_for_phase(session, Phase.ACTIVE)
        self.assertEqual(session.phase, Phase.ACTIVE)
        while session.phase == Phase.ACTIVE:
            session.answer(session.current_question.correct_index)
        return session

    async def test_completed_session_submits_once(self):
        session = await self._play_through("quiz-1")

        result, state = await self.plays.result(session.id)
        self.assertEqual(state, SubmissionState.SUBMITTED)
        self.assertEqual(result.score, len(FALLBACK_QUESTIONS))
        self.assertEqual(result.quiz_id, "quiz-1")

        await self.plays.result(session.id)
        await self.plays.result(session.id)
        top = await self.store.top_scores("quiz-1")
        self.assertEqual(len(top), 1)
        self.assertEqual(top[0].player_name, "Nour")

    async def test_local_session_not_persisted(self):
        session = await self._play_through(None)
        _, state = await self.plays.result(session.id)
        self.assertEqual(state, SubmissionState.SKIPPED)

    async def test_result_not_ready_while_playing(self):
        self.plays = PlayManager(self.store, fast_settings(PRELOAD_DELAY_MS=1000))
        session = self.plays.start("Nour", "en", "quiz-1")
        self.assertEqual(await self.plays.result(session.id), (None, None))

    async def test_no_questions_dead_end(self):
        self.plays = PlayManager(self.store, fast_settings(FALLBACK_QUESTIONS_ENABLED=False))
        session = self.plays.start("Nour", "en", "quiz-1")
        await wait_for_phase(session, Phase.COUNTDOWN)
        self.assertTrue(session.no_questions)
        self.assertEqual(session.phase, Phase.PRELOADING)

    async def test_close_cancels_timers_and_forgets_session(self):
        self.plays = PlayManager(self.store, fast_settings(PRELOAD_DELAY_MS=1000))
        session = self.plays.start("Nour", "en", "quiz-1")
        await self.plays.close(session.id)
        with self.assertRaises(SessionNotFound):
            self.plays.get(session.id)
        with self.assertRaises(SessionNotFound):
            await self.plays.close(session.id)

    async def test_blank_player_name_rejected(self):
        self.plays = PlayManager(self.store, fast_settings())
        with self.assertRaises(ValueError):
            self.plays.start("   ", "en", None)


class _Clock:
    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


class SessionExpiryTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        db = InMemoryDatabase()
        self.store = QuizStore(db, ChangeFeed(db))
        self.clock = _Clock()
        self.plays = PlayManager(self.store, fast_settings(SESSION_IDLE_TIMEOUT_MS=1000), clock=self.clock)

    async def asyncTearDown(self) -> None:
        await self.plays.close_all()

    async def test_idle_sessions_are_reaped(self):
        sessions = [self.plays.start(f"p{i}", "en", None) for i in range(3)]
        await wait_for_phase(sessions[0], Phase.ACTIVE)

        self.clock.now += 600
        self.plays.get(sessions[0].id).snapshot()
        self.clock.now += 600

        self.assertEqual(await self.plays.reap(), 2)
        self.assertEqual(list(self.plays.sessions), [sessions[0].id])
        self.assertEqual(list(self.plays._tasks), [sessions[0].id])
        with self.assertRaises(SessionNotFound):
            self.plays.get(sessions[1].id)

    async def test_completed_sessions_are_reaped_too(self):
        session = self.plays.start("p", "en", None)
        await wait_for_phase(session, Phase.ACTIVE)
        while session.phase == Phase.ACTIVE:
            session.answer(0)
        await self.plays.result(session.id)

        self.clock.now += 1001
        self.assertEqual(await self.plays.reap(), 1)
        self.assertEqual(self.plays.sessions, {})

    async def test_display_clock_stops_when_nobody_polls(self):
        session = self.plays.start("p", "en", None)
        await wait_for_phase(session, Phase.ACTIVE)
        self.assertIn(session.id, self.plays._tasks)

        self.clock.now += 1001
        for _ in range(100):
            if session.id not in self.plays._tasks:
                break
            await asyncio.sleep(0.001)

        self.assertNotIn(session.id, self.plays._tasks)
        self.assertEqual(session.phase, Phase.ACTIVE)
        self.assertEqual(session.snapshot()["elapsed_ms"], 1001)
