
from pydantic import AfterValidator, BaseModel, Field
from typing import Annotated, Any, Dict, List, Optional

from .models import GameResult, Language, OPTION_COUNT
from .scoreboard import ScoreboardRow


def _check_options(value: List[str]) -> List[str]:
    if len(value) != OPTION_COUNT:
        raise ValueError(f"exactly {OPTION_COUNT} options are required")
    return value


FourOptions = Annotated[List[str], AfterValidator(_check_options)]
AnswerChoice = Annotated[int, Field(ge=0, lt=OPTION_COUNT)]


class StartPlayIn(BaseModel):
    player_name: str = Field(min_length=1, max_length=80)
    language: Language = "en"
    quiz_id: Optional[str] = None


class AnswerIn(BaseModel):
    option_index: int
    question_id: Optional[int] = None


class PublicQuestionOut(BaseModel):
    question_id: int
    language: Language
    prompt: str
    options: List[str]


class PlayStateOut(BaseModel):
    id: str
    phase: str
    player_name: str
    language: Language
    quiz_id: Optional[str]
    no_questions: bool
    countdown: Optional[int]
    question: Optional[PublicQuestionOut]
    question_number: Optional[int]
    total_questions: int
    score: int
    elapsed_ms: int


class AnswerOut(BaseModel):
    accepted: bool
    correct: bool
    state: PlayStateOut


class ResultOut(BaseModel):
    ready: bool
    result: Optional[GameResult] = None
    time_display: Optional[str] = None
    percentage: Optional[int] = None
    submission: Optional[str] = None


class ScoreboardOut(BaseModel):
    quiz_id: str
    rows: List[ScoreboardRow]


class LoginIn(BaseModel):
    email: str
    password: str


class LoginOut(BaseModel):
    token: str
    subject: str


def _reject_null(value: Any) -> Any:
    if value is None:
        raise ValueError("may not be null")
    return value


# Optional in a partial update, but an explicit null is refused.
Required = AfterValidator(_reject_null)


class QuizUpdateIn(BaseModel):
    title: Annotated[Optional[str], Required] = None
    background_image_path: Optional[str] = None
    gradient_color_1: Annotated[Optional[str], Required] = None
    gradient_color_2: Annotated[Optional[str], Required] = None
    logo_path: Optional[str] = None
    button_color_arabic: Annotated[Optional[str], Required] = None
    button_color_english: Annotated[Optional[str], Required] = None
    scoreboard_background_image_path: Optional[str] = None
    scoreboard_gradient_color_1: Annotated[Optional[str], Required] = None
    scoreboard_gradient_color_2: Annotated[Optional[str], Required] = None
    scoreboard_logo_path: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class QuestionIn(BaseModel):
    question_en: str = Field(min_length=1)
    question_ar: str = Field(min_length=1)
    options_en: FourOptions
    options_ar: FourOptions
    correct_answer: AnswerChoice


class QuestionUpdateIn(BaseModel):
    question_en: Annotated[Optional[str], Required] = None
    question_ar: Annotated[Optional[str], Required] = None
    options_en: Annotated[Optional[FourOptions], Required] = None
    options_ar: Annotated[Optional[FourOptions], Required] = None
    correct_answer: Annotated[Optional[AnswerChoice], Required] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class QuestionOut(BaseModel):
    id: int
    quiz_id: str
    question_en: str
    question_ar: str
    options_en: List[str]
    options_ar: List[str]
    correct_answer: int


class ImageOut(BaseModel):
    bucket: str
    path: str
    url: str
