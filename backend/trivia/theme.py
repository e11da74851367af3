from __future__ import annotations

from typing import Any, Dict, Literal, Optional

import structlog
from pydantic import BaseModel

from .models import Language, QuizConfig
from .storage import BlobStorage, Bucket

logger = structlog.get_logger(__name__)

View = Literal["play", "scoreboard"]

DEFAULT_TITLE = "Speed Trivia"
DEFAULT_GRADIENT_COLOR_1 = "#667eea"
DEFAULT_GRADIENT_COLOR_2 = "#764ba2"
DEFAULT_BUTTON_COLOR_ARABIC = "#10b981"
DEFAULT_BUTTON_COLOR_ENGLISH = "#3b82f6"


class Theme(BaseModel):
    title: str
    gradient_color_1: str
    gradient_color_2: str
    background: Dict[str, str]
    background_image_url: Optional[str] = None
    logo_url: Optional[str] = None
    button_color: str
    button_color_arabic: str
    button_color_english: str
    direction: Literal["ltr", "rtl"]


def background_style(color_1: str, color_2: str, image_url: Optional[str]) -> Dict[str, str]:
    gradient = f"linear-gradient(135deg, {color_1} 0%, {color_2} 100%)"
    if not image_url:
        return {"background": gradient}
    return {
        "backgroundImage": f"{gradient}, url({image_url})",
        "backgroundSize": "cover",
        "backgroundPosition": "center",
        "backgroundBlendMode": "overlay",
    }


def build_theme(config: Optional[QuizConfig], *, view: View = "play", language: Language = "en") -> Theme:
    """Render parameters for a view; a missing config yields the defaults."""

    if view == "scoreboard":
        color_1 = config and config.scoreboard_gradient_color_1
        color_2 = config and config.scoreboard_gradient_color_2
        image_url = config and config.scoreboard_background_image_url
        logo_url = config and (config.scoreboard_logo_url or config.logo_url)
    else:
        color_1 = config and config.gradient_color_1
        color_2 = config and config.gradient_color_2
        image_url = config and config.background_image_url
        logo_url = config and config.logo_url

    color_1 = color_1 or DEFAULT_GRADIENT_COLOR_1
    color_2 = color_2 or DEFAULT_GRADIENT_COLOR_2
    arabic = (config and config.button_color_arabic) or DEFAULT_BUTTON_COLOR_ARABIC
    english = (config and config.button_color_english) or DEFAULT_BUTTON_COLOR_ENGLISH

    return Theme(
        title=(config and config.title) or DEFAULT_TITLE,
        gradient_color_1=color_1,
        gradient_color_2=color_2,
        background=background_style(color_1, color_2, image_url or None),
        background_image_url=image_url or None,
        logo_url=logo_url or None,
        button_color=arabic if language == "ar" else english,
        button_color_arabic=arabic,
        button_color_english=english,
        direction="rtl" if language == "ar" else "ltr",
    )


async def _resolve_image(blobs: BlobStorage, bucket: Bucket, path: Optional[str], **context: Any) -> Optional[str]:
    if not path:
        return None
    try:
        return await blobs.public_url(bucket, path)
    except Exception as exc:
        # The view falls back to the plain gradient.
        logger.warning("Image URL could not be resolved", bucket=bucket, path=path, error=str(exc), **context)
        return None


async def resolve_quiz_config(store: Any, blobs: BlobStorage, quiz_id: Optional[str]) -> Optional[QuizConfig]:
    """Load a quiz skin with public image URLs; ``None`` when it cannot be loaded."""

    if not quiz_id:
        return None

    try:
        record = await store.get_quiz(quiz_id)
    except Exception:
        logger.exception("Error fetching quiz config", quiz_id=quiz_id)
        return None

    if record is None:
        logger.info("Quiz not found", quiz_id=quiz_id)
        return None

    return QuizConfig(
        id=record.id,
        title=record.title,
        background_image_url=await _resolve_image(
            blobs, "quiz-backgrounds", record.background_image_path, quiz_id=quiz_id
        ),
        gradient_color_1=record.gradient_color_1 or DEFAULT_GRADIENT_COLOR_1,
        gradient_color_2=record.gradient_color_2 or DEFAULT_GRADIENT_COLOR_2,
        logo_url=await _resolve_image(blobs, "quiz-logos", record.logo_path, quiz_id=quiz_id),
        button_color_arabic=record.button_color_arabic or DEFAULT_BUTTON_COLOR_ARABIC,
        button_color_english=record.button_color_english or DEFAULT_BUTTON_COLOR_ENGLISH,
        scoreboard_background_image_url=await _resolve_image(
            blobs, "quiz-backgrounds", record.scoreboard_background_image_path, quiz_id=quiz_id
        ),
        scoreboard_gradient_color_1=record.scoreboard_gradient_color_1 or DEFAULT_GRADIENT_COLOR_1,
        scoreboard_gradient_color_2=record.scoreboard_gradient_color_2 or DEFAULT_GRADIENT_COLOR_2,
        scoreboard_logo_url=await _resolve_image(blobs, "quiz-logos", record.scoreboard_logo_path, quiz_id=quiz_id),
    )
