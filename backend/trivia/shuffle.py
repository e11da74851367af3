from __future__ import annotations

import random
from typing import List, Optional, Sequence, TypeVar

from .models import Language, Question, ShuffledQuestion

T = TypeVar("T")

_default_rng = random.Random()


def shuffle(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """Return a uniformly shuffled copy of ``items`` (Fisher-Yates, backwards)."""

    rng = rng or _default_rng
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def shuffle_question(question: Question, language: Language, rng: Optional[random.Random] = None) -> ShuffledQuestion:
    # Shuffle (canonical index, text) pairs so identical option texts stay distinguishable.
    pairs = shuffle(list(enumerate(question.options_for(language))), rng)
    order = [idx for idx, _ in pairs]
    return ShuffledQuestion(
        question_id=question.id,
        language=language,
        prompt=question.prompt(language),
        options=[text for _, text in pairs],
        correct_index=order.index(question.correct_answer),
        option_order=order,
    )


def shuffle_questions(
    questions: Sequence[Question], language: Language, rng: Optional[random.Random] = None
) -> List[ShuffledQuestion]:
    return [shuffle_question(q, language, rng) for q in shuffle(questions, rng)]
