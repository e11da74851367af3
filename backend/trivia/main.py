import asyncio
import hmac
from contextlib import asynccontextmanager
from typing import Any, List, Literal, Optional

import structlog
from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    Header,
    HTTPException,
    Query,
    Request,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.middleware.cors import CORSMiddleware

from .auth import AuthError, AuthService
from .db import Settings, create_database, get_settings
from .events import ChangeFeed
from .logging_config import configure_logging
from .models import Language, QuizRecord
from .play import PlayManager, SessionNotFound
from .schemas import (
    AnswerIn,
    AnswerOut,
    ImageOut,
    LoginIn,
    LoginOut,
    PlayStateOut,
    QuestionIn,
    QuestionOut,
    QuestionUpdateIn,
    QuizUpdateIn,
    ResultOut,
    ScoreboardOut,
    StartPlayIn,
)
from .scoreboard import ScoreboardRow, ScoreboardView, build_rows
from .session import SessionError
from .storage import BUCKETS, BlobStorage, StorageNotConfigured
from .store import DuplicateRecord, QuizStore, RecordNotFound, scores_topic
from .theme import Theme, View, build_theme, resolve_quiz_config
from .utils import format_time, now_ms

logger = structlog.get_logger(__name__)


def get_store(request: Request) -> QuizStore:
    return request.app.state.store


def get_blobs(request: Request) -> BlobStorage:
    return request.app.state.blobs


def get_auth(request: Request) -> AuthService:
    return request.app.state.auth


def get_plays(request: Request) -> PlayManager:
    return request.app.state.plays


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    return token.strip() if scheme.lower() == "bearer" else None


def require_admin(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    x_admin_key: Optional[str] = Header(default=None),
) -> str:
    settings: Settings = request.app.state.settings
    if x_admin_key and hmac.compare_digest(x_admin_key.encode(), settings.ADMIN_KEY.encode()):
        return "admin-key"

    subject = get_auth(request).current_subject(_bearer_token(authorization))
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid admin credentials")
    return subject


def create_app(
    settings: Optional[Settings] = None,
    *,
    db: Any = None,
    blobs: Optional[BlobStorage] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    db = db if db is not None else create_database(settings)
    feed = ChangeFeed(db)
    store = QuizStore(db, feed)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reaper = asyncio.create_task(app.state.plays.reap_forever())
        yield
        reaper.cancel()
        await app.state.plays.close_all()
        app.state.feed.close()

    app = FastAPI(title="Speed Trivia API", lifespan=lifespan)
    app.state.settings = settings
    app.state.feed = feed
    app.state.store = store
    app.state.blobs = blobs if blobs is not None else BlobStorage(settings.AZURE_STORAGE_CONNECTION_STRING)
    app.state.auth = AuthService(settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    app.state.plays = PlayManager(store, settings)

    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_origin_regex=settings.CORS_ORIGIN_REGEX or None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_public_routes(app)
    _register_admin_routes(app)
    return app


def _register_public_routes(app: FastAPI) -> None:
    @app.get("/api/theme", response_model=Theme)
    async def theme(
        quiz: Optional[str] = None,
        view: View = "play",
        language: Language = "en",
        store: QuizStore = Depends(get_store),
        blobs: BlobStorage = Depends(get_blobs),
    ):
        config = await resolve_quiz_config(store, blobs, quiz)
        return build_theme(config, view=view, language=language)

    @app.post("/api/play", response_model=PlayStateOut)
    async def start_play(payload: StartPlayIn, plays: PlayManager = Depends(get_plays)):
        try:
            session = plays.start(payload.player_name, payload.language, payload.quiz_id or None)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return PlayStateOut(**session.snapshot())

    @app.get("/api/play/{session_id}", response_model=PlayStateOut)
    async def play_state(session_id: str, plays: PlayManager = Depends(get_plays)):
        try:
            session = plays.get(session_id)
        except SessionNotFound as exc:
            raise HTTPException(status_code=404, detail="Session not found") from exc
        return PlayStateOut(**session.snapshot())

    @app.post("/api/play/{session_id}/answer", response_model=AnswerOut)
    async def answer(session_id: str, payload: AnswerIn, plays: PlayManager = Depends(get_plays)):
        try:
            session = plays.get(session_id)
        except SessionNotFound as exc:
            raise HTTPException(status_code=404, detail="Session not found") from exc
        try:
            correct = session.answer(payload.option_index, payload.question_id)
        except SessionError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return AnswerOut(accepted=True, correct=correct, state=PlayStateOut(**session.snapshot()))

    @app.get("/api/play/{session_id}/result", response_model=ResultOut)
    async def result(session_id: str, plays: PlayManager = Depends(get_plays)):
        try:
            game_result, submission = await plays.result(session_id)
        except SessionNotFound as exc:
            raise HTTPException(status_code=404, detail="Session not found") from exc
        if game_result is None:
            return ResultOut(ready=False)
        percentage = round(game_result.score / game_result.total_questions * 100) if game_result.total_questions else 0
        return ResultOut(
            ready=True,
            result=game_result,
            time_display=format_time(game_result.time),
            percentage=percentage,
            submission=submission.value if submission else None,
        )

    @app.delete("/api/play/{session_id}")
    async def end_play(session_id: str, plays: PlayManager = Depends(get_plays)):
        try:
            await plays.close(session_id)
        except SessionNotFound as exc:
            raise HTTPException(status_code=404, detail="Session not found") from exc
        return {"ok": True}

    @app.get("/api/scoreboard", response_model=ScoreboardOut)
    async def scoreboard(quiz: str, request: Request, store: QuizStore = Depends(get_store)):
        limit = request.app.state.settings.SCOREBOARD_LIMIT
        return ScoreboardOut(quiz_id=quiz, rows=build_rows(await store.top_scores(quiz, limit), limit))

    @app.get("/api/scoreboard/events")
    async def scoreboard_events(quiz: str, request: Request, after: Optional[int] = None, limit: int = 200):
        events = await request.app.state.feed.list(scores_topic(quiz), after=after, limit=limit)
        latest_seq = events[-1]["seq"] if events else after
        return {"events": events, "latest_seq": latest_seq}

    @app.websocket("/api/scoreboard/live")
    async def scoreboard_live(websocket: WebSocket, quiz: str = Query(...)):
        await websocket.accept()
        store: QuizStore = websocket.app.state.store
        limit = websocket.app.state.settings.SCOREBOARD_LIMIT

        async def push(rows: List[ScoreboardRow]) -> None:
            await websocket.send_json({"quiz_id": quiz, "rows": [r.model_dump() for r in rows]})

        async with ScoreboardView(store, quiz, on_update=push, limit=limit) as view:
            await push(view.rows)
            try:
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info("Scoreboard client disconnected", quiz_id=quiz)


def _register_admin_routes(app: FastAPI) -> None:
    @app.post("/api/admin/login", response_model=LoginOut)
    async def login(payload: LoginIn, auth: AuthService = Depends(get_auth)):
        try:
            session = auth.sign_in(payload.email, payload.password)
        except AuthError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        return LoginOut(token=session.token, subject=session.subject)

    @app.post("/api/admin/logout")
    async def logout(authorization: Optional[str] = Header(default=None), auth: AuthService = Depends(get_auth)):
        token = _bearer_token(authorization)
        if token:
            auth.sign_out(token)
        return {"ok": True}

    @app.get("/api/admin/verify")
    async def verify(subject: str = Depends(require_admin)):
        return {"ok": True, "subject": subject}

    @app.get("/api/admin/quizzes", response_model=List[QuizRecord])
    async def list_quizzes(_: str = Depends(require_admin), store: QuizStore = Depends(get_store)):
        return await store.list_quizzes()

    @app.post("/api/admin/quizzes", response_model=QuizRecord, status_code=201)
    async def create_quiz(payload: QuizRecord, _: str = Depends(require_admin), store: QuizStore = Depends(get_store)):
        try:
            return await store.create_quiz(payload)
        except DuplicateRecord as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    @app.get("/api/admin/quizzes/{quiz_id}", response_model=QuizRecord)
    async def get_quiz(quiz_id: str, _: str = Depends(require_admin), store: QuizStore = Depends(get_store)):
        quiz = await store.get_quiz(quiz_id)
        if quiz is None:
            raise HTTPException(status_code=404, detail="Quiz not found")
        return quiz

    @app.put("/api/admin/quizzes/{quiz_id}", response_model=QuizRecord)
    async def update_quiz(
        quiz_id: str,
        payload: QuizUpdateIn,
        _: str = Depends(require_admin),
        store: QuizStore = Depends(get_store),
    ):
        try:
            return await store.update_quiz(quiz_id, payload.changes())
        except RecordNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.delete("/api/admin/quizzes/{quiz_id}")
    async def delete_quiz(quiz_id: str, _: str = Depends(require_admin), store: QuizStore = Depends(get_store)):
        try:
            await store.delete_quiz(quiz_id)
        except RecordNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"ok": True}

    @app.get("/api/admin/quizzes/{quiz_id}/questions", response_model=List[QuestionOut])
    async def list_questions(quiz_id: str, _: str = Depends(require_admin), store: QuizStore = Depends(get_store)):
        return await store.list_questions(quiz_id)

    @app.post("/api/admin/quizzes/{quiz_id}/questions", response_model=QuestionOut, status_code=201)
    async def create_question(
        quiz_id: str,
        payload: QuestionIn,
        _: str = Depends(require_admin),
        store: QuizStore = Depends(get_store),
    ):
        try:
            return await store.create_question(quiz_id, payload.model_dump())
        except RecordNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.put("/api/admin/questions/{question_id}", response_model=QuestionOut)
    async def update_question(
        question_id: int,
        payload: QuestionUpdateIn,
        _: str = Depends(require_admin),
        store: QuizStore = Depends(get_store),
    ):
        try:
            return await store.update_question(question_id, payload.changes())
        except RecordNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.delete("/api/admin/questions/{question_id}")
    async def delete_question(question_id: int, _: str = Depends(require_admin), store: QuizStore = Depends(get_store)):
        try:
            await store.delete_question(question_id)
        except RecordNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"ok": True}

    @app.post("/api/admin/images", response_model=ImageOut)
    async def upload_image(
        bucket: Literal["quiz-backgrounds", "quiz-logos"] = Form(...),
        file: UploadFile = File(...),
        _: str = Depends(require_admin),
        blobs: BlobStorage = Depends(get_blobs),
    ):
        if not blobs.configured:
            raise HTTPException(status_code=500, detail="Image storage is not configured")

        data = await file.read()
        path = f"{now_ms()}-{file.filename or 'upload'}"
        try:
            url = await blobs.upload(bucket, path, data, file.content_type)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except Exception as exc:
            logger.exception("Image upload failed", bucket=bucket, path=path)
            raise HTTPException(status_code=500, detail="Failed to upload image") from exc

        return ImageOut(bucket=bucket, path=path, url=url)

    @app.delete("/api/admin/images/{bucket}/{path:path}")
    async def delete_image(
        bucket: str,
        path: str,
        _: str = Depends(require_admin),
        blobs: BlobStorage = Depends(get_blobs),
    ):
        if bucket not in BUCKETS:
            raise HTTPException(status_code=400, detail=f"Unknown bucket: {bucket}")
        try:
            await blobs.delete(bucket, path)
        except StorageNotConfigured as exc:
            raise HTTPException(status_code=500, detail="Image storage is not configured") from exc
        except Exception as exc:
            logger.exception("Image delete failed", bucket=bucket, path=path)
            raise HTTPException(status_code=500, detail="Failed to delete image") from exc
        return {"ok": True}


app = create_app()
