from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from .events import ChangeFeed, Subscription
from .models import GameResult, Question, QuizRecord, Score

logger = structlog.get_logger(__name__)

TOP_SCORES = 10


class RecordNotFound(LookupError):
    pass


class DuplicateRecord(ValueError):
    pass


def scores_topic(quiz_id: str) -> str:
    return f"scores:{quiz_id}"


def _clean(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc.pop("_id", None)
    return doc


class QuizStore:
    """Quizzes, their question banks and their leaderboards."""

    def __init__(self, db: Any, feed: ChangeFeed):
        self.quizzes = db.quizzes
        self.questions = db.questions
        self.scores = db.scores
        self.counters = db.counters
        self.feed = feed

    async def _next_id(self, name: str) -> int:
        doc = await self.counters.find_one_and_update(
            {"_id": f"ids:{name}"},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            doc = await self.counters.find_one({"_id": f"ids:{name}"})
        return int(doc["value"])

    # quizzes

    async def list_quizzes(self) -> List[QuizRecord]:
        cursor = self.quizzes.find({}).sort("created_at", DESCENDING)
        return [QuizRecord(**_clean(doc)) async for doc in cursor]

    async def get_quiz(self, quiz_id: str) -> Optional[QuizRecord]:
        doc = await self.quizzes.find_one({"id": quiz_id})
        return QuizRecord(**_clean(doc)) if doc else None

    async def create_quiz(self, quiz: QuizRecord) -> QuizRecord:
        if await self.quizzes.find_one({"id": quiz.id}):
            raise DuplicateRecord(f"Quiz '{quiz.id}' already exists")
        await self.quizzes.insert_one(quiz.model_dump())
        logger.info("Quiz created", quiz_id=quiz.id)
        return quiz

    async def update_quiz(self, quiz_id: str, changes: Dict[str, Any]) -> QuizRecord:
        changes = {k: v for k, v in changes.items() if k not in ("id", "created_at")}
        current = await self.quizzes.find_one({"id": quiz_id})
        if not current:
            raise RecordNotFound(f"Quiz '{quiz_id}' not found")
        # Raises before anything is written when the merged record is invalid.
        merged = QuizRecord(**{**_clean(current), **changes})
        if not changes:
            return merged

        doc = await self.quizzes.find_one_and_update(
            {"id": quiz_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise RecordNotFound(f"Quiz '{quiz_id}' not found")
        logger.info("Quiz updated", quiz_id=quiz_id, fields=sorted(changes))
        return QuizRecord(**_clean(doc))

    async def delete_quiz(self, quiz_id: str) -> None:
        if not await self.quizzes.find_one({"id": quiz_id}):
            raise RecordNotFound(f"Quiz '{quiz_id}' not found")

        # Questions and scores go with their quiz.
        await self.questions.delete_many({"quiz_id": quiz_id})
        await self.scores.delete_many({"quiz_id": quiz_id})
        await self.quizzes.delete_one({"id": quiz_id})
        await self.feed.append(scores_topic(quiz_id), {"type": "scores_changed", "reason": "quiz_deleted"})
        logger.info("Quiz deleted", quiz_id=quiz_id)

    # questions

    async def list_questions(self, quiz_id: str) -> List[Dict[str, Any]]:
        cursor = self.questions.find({"quiz_id": quiz_id}).sort("id", ASCENDING)
        return [_clean(doc) async for doc in cursor]

    async def get_question(self, question_id: int) -> Optional[Dict[str, Any]]:
        doc = await self.questions.find_one({"id": question_id})
        return _clean(doc) if doc else None

    async def create_question(self, quiz_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if not await self.quizzes.find_one({"id": quiz_id}):
            raise RecordNotFound(f"Quiz '{quiz_id}' not found")
        doc = {**fields, "quiz_id": quiz_id, "id": await self._next_id("questions")}
        await self.questions.insert_one(dict(doc))
        logger.info("Question created", quiz_id=quiz_id, question_id=doc["id"])
        return doc

    async def update_question(self, question_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        changes = {k: v for k, v in changes.items() if k not in ("id", "quiz_id")}
        current = await self.questions.find_one({"id": question_id})
        if not current:
            raise RecordNotFound(f"Question {question_id} not found")
        Question.from_record({**current, **changes})
        if not changes:
            return _clean(current)

        doc = await self.questions.find_one_and_update(
            {"id": question_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise RecordNotFound(f"Question {question_id} not found")
        logger.info("Question updated", question_id=question_id)
        return _clean(doc)

    async def delete_question(self, question_id: int) -> None:
        if not await self.questions.find_one({"id": question_id}):
            raise RecordNotFound(f"Question {question_id} not found")
        await self.questions.delete_one({"id": question_id})
        logger.info("Question deleted", question_id=question_id)

    # scores

    async def create_score(self, result: GameResult) -> Score:
        if not result.quiz_id:
            raise ValueError("A quiz id is required to record a score")

        score = Score(
            id=await self._next_id("scores"),
            quiz_id=result.quiz_id,
            player_name=result.player_name,
            score=result.score,
            total_questions=result.total_questions,
            time=result.time,
            language=result.language,
        )
        await self.scores.insert_one(score.model_dump())
        await self.feed.append(scores_topic(result.quiz_id), {"type": "scores_changed", "score_id": score.id})
        return score

    async def top_scores(self, quiz_id: str, limit: int = TOP_SCORES) -> List[Score]:
        cursor = (
            self.scores.find({"quiz_id": quiz_id})
            .sort([("score", DESCENDING), ("time", ASCENDING)])
            .limit(limit)
        )
        return [Score(**_clean(doc)) async for doc in cursor]

    def subscribe_scores(
        self,
        quiz_id: str,
        callback: Callable[[List[Score]], Awaitable[None]],
        limit: int = TOP_SCORES,
    ) -> Subscription:
        """Call ``callback`` with the refreshed top scores whenever the quiz's scores change."""

        async def refresh(_event: Dict[str, Any]) -> None:
            await callback(await self.top_scores(quiz_id, limit))

        return self.feed.subscribe(scores_topic(quiz_id), refresh)
