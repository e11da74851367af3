from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Language = Literal["en", "ar"]
LANGUAGES: tuple = ("en", "ar")
OPTION_COUNT = 4

AnswerIndex = int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocalizedText(BaseModel):
    en: str
    ar: str


class LocalizedOptions(BaseModel):
    en: List[str]
    ar: List[str]

    @field_validator("en", "ar")
    @classmethod
    def _four_options(cls, value: List[str]) -> List[str]:
        if len(value) != OPTION_COUNT:
            raise ValueError(f"exactly {OPTION_COUNT} options are required, got {len(value)}")
        return value


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    question: LocalizedText
    options: LocalizedOptions
    correct_answer: AnswerIndex = Field(ge=0, lt=OPTION_COUNT)

    @classmethod
    def from_record(cls, doc: Dict[str, Any]) -> "Question":
        return cls(
            id=doc["id"],
            question=LocalizedText(en=doc["question_en"], ar=doc["question_ar"]),
            options=LocalizedOptions(en=doc.get("options_en") or [], ar=doc.get("options_ar") or []),
            correct_answer=doc["correct_answer"],
        )

    def prompt(self, language: Language) -> str:
        return getattr(self.question, language)

    def options_for(self, language: Language) -> List[str]:
        return list(getattr(self.options, language))

    def correct_option(self, language: Language) -> str:
        return self.options_for(language)[self.correct_answer]


class ShuffledQuestion(BaseModel):
    """A question as one session shows it: one locale, options in session order."""

    model_config = ConfigDict(frozen=True)

    question_id: int
    language: Language
    prompt: str
    options: List[str]
    correct_index: AnswerIndex
    # canonical index of each displayed option
    option_order: List[int]


class GameResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    player_name: str
    score: int
    total_questions: int
    time: int  # milliseconds
    language: Language
    timestamp: int  # epoch milliseconds
    quiz_id: Optional[str] = None


class QuizRecord(BaseModel):
    """Stored quiz skin, as edited through the admin forms."""

    id: str = Field(min_length=1)
    title: str = ""
    background_image_path: Optional[str] = None
    gradient_color_1: str = "#667eea"
    gradient_color_2: str = "#764ba2"
    logo_path: Optional[str] = None
    button_color_arabic: str = "#10b981"
    button_color_english: str = "#3b82f6"
    scoreboard_background_image_path: Optional[str] = None
    scoreboard_gradient_color_1: str = "#667eea"
    scoreboard_gradient_color_2: str = "#764ba2"
    scoreboard_logo_path: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class QuizConfig(BaseModel):
    """A quiz skin with image paths resolved to public URLs."""

    id: str
    title: str
    background_image_url: Optional[str] = None
    gradient_color_1: Optional[str] = None
    gradient_color_2: Optional[str] = None
    logo_url: Optional[str] = None
    button_color_arabic: Optional[str] = None
    button_color_english: Optional[str] = None
    scoreboard_background_image_url: Optional[str] = None
    scoreboard_gradient_color_1: Optional[str] = None
    scoreboard_gradient_color_2: Optional[str] = None
    scoreboard_logo_url: Optional[str] = None


class Score(BaseModel):
    id: int
    quiz_id: str
    player_name: str
    score: int
    total_questions: int
    time: int  # milliseconds
    language: str
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _score_within_total(self) -> "Score":
        if self.score < 0 or self.score > self.total_questions:
            raise ValueError("score must be between 0 and total_questions")
        return self
