"""
Mock Exam Router

HTTP endpoints for the German A1 mock exam. Each session owns a
SessionController (quiz progress and scoring) and a QuestionMedia helper
(listening audio and vocabulary pictures for the question on screen).

Sessions live in memory for the lifetime of the process; nothing is
persisted beyond the optional result row sent to Google Sheets.
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..composer import compose_quiz
from ..errors import (
    AudioDecodeFailure,
    GeminiError,
    ImageFetchFailure,
    QuizStateError,
    SpeechFetchFailure,
    StaleMediaResult,
)
from ..gemini_client import GeminiClient
from ..media import QuestionMedia
from ..models import (
    AnswerFeedback,
    ExamCategory,
    ExamResult,
    Question,
    QuestionType,
    QuizStatus,
    UserInfo,
)
from ..reporter import SheetsReporter
from ..session import SessionController
from ..settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quiz", tags=["quiz"])


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PublicQuestion(_ApiModel):
    """Question as shown to the candidate: no answer, explanation or script."""

    id: str
    type: QuestionType
    category: ExamCategory
    question_text: str
    options: Optional[List[str]] = None
    context_text: Optional[str] = None
    has_audio: bool = False
    has_image: bool = False


class SessionView(_ApiModel):
    session_id: str
    status: QuizStatus
    current_index: int
    total: int
    score: int
    progress: float
    question: Optional[PublicQuestion] = None
    error: Optional[str] = None
    user_info: Optional[UserInfo] = None
    result: Optional[ExamResult] = None
    warnings: List[str] = []


class AnswerRequest(BaseModel):
    answer: str


class AnswerResponse(_ApiModel):
    feedback: AnswerFeedback
    session: SessionView


class ImageResponse(_ApiModel):
    image_url: Optional[str] = None


# ============================================================================
# GEMINI COLLABORATORS
# ============================================================================

async def _generate_quiz() -> List[Question]:
    client = GeminiClient()
    try:
        return await compose_quiz(client)
    finally:
        await client.aclose()


async def _fetch_speech(text: str) -> bytes:
    client = GeminiClient(model=settings.gemini_tts_model)
    try:
        return await client.generate_speech(text)
    finally:
        await client.aclose()


async def _fetch_image(prompt: str) -> str:
    client = GeminiClient(model=settings.gemini_image_model)
    try:
        return await client.generate_image(prompt)
    except GeminiError as err:
        raise ImageFetchFailure(str(err)) from err
    finally:
        await client.aclose()


# ============================================================================
# SESSION MANAGEMENT
# ============================================================================

class QuizRuntime:
    """One candidate's quiz: state machine, media and reporting warnings."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.warnings: List[str] = []
        self.controller = SessionController(
            compose=_generate_quiz,
            reporter=SheetsReporter(),
            on_report_warning=self.warnings.append,
        )
        self.media = QuestionMedia(fetch_speech=_fetch_speech, fetch_image=_fetch_image)

    def sync_media(self) -> None:
        state = self.controller.state
        question = state.current_question if state.status is QuizStatus.ACTIVE else None
        self.media.switch_to(question.id if question else None)

    def view(self) -> SessionView:
        state = self.controller.state
        question = state.current_question if state.status is QuizStatus.ACTIVE else None
        result = None
        if state.status in (QuizStatus.COLLECTING_INFO, QuizStatus.COMPLETED):
            result = self.controller.result()
        progress = min(100.0, state.current_index / state.total * 100) if state.total else 0.0
        return SessionView(
            session_id=self.session_id,
            status=state.status,
            current_index=state.current_index,
            total=state.total,
            score=state.score,
            progress=progress,
            question=_public(question) if question else None,
            error=state.error,
            user_info=state.user_info,
            result=result,
            warnings=list(self.warnings),
        )


_sessions: Dict[str, QuizRuntime] = {}


def _public(question: Question) -> PublicQuestion:
    return PublicQuestion(
        id=question.id,
        type=question.type,
        category=question.category,
        question_text=question.question_text,
        options=question.options,
        context_text=question.context_text,
        has_audio=bool(question.listening_script),
        has_image=bool(question.image_description),
    )


def _runtime(session_id: str) -> QuizRuntime:
    runtime = _sessions.get(session_id)
    if runtime is None:
        raise HTTPException(status_code=404, detail="Session not found or expired")
    return runtime


def _question(runtime: QuizRuntime, question_id: str) -> Question:
    for question in runtime.controller.state.questions:
        if question.id == question_id:
            return question
    raise HTTPException(status_code=404, detail="Unknown question_id for this session")


def _conflict(err: QuizStateError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(err))


# ============================================================================
# API ENDPOINTS
# ============================================================================

@router.post("/sessions", response_model=SessionView, status_code=201)
async def create_session():
    runtime = QuizRuntime(uuid.uuid4().hex)
    _sessions[runtime.session_id] = runtime
    return runtime.view()


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str):
    return _runtime(session_id).view()


@router.post("/sessions/{session_id}/start", response_model=SessionView)
async def start(session_id: str):
    """
    Generate a fresh exam for the session.

    Also used for "try again" after an error and for a new exam after
    completion. Generation problems never surface as HTTP errors; the
    session moves to ``error`` with a generic message instead.
    """
    runtime = _runtime(session_id)
    try:
        await runtime.controller.start()
    except QuizStateError as err:
        raise _conflict(err)
    runtime.media.clear()
    runtime.warnings.clear()
    runtime.sync_media()
    return runtime.view()


@router.post("/sessions/{session_id}/check", response_model=AnswerFeedback)
async def check(session_id: str, req: AnswerRequest):
    runtime = _runtime(session_id)
    try:
        return runtime.controller.check_answer(req.answer)
    except QuizStateError as err:
        raise _conflict(err)


@router.post("/sessions/{session_id}/answer", response_model=AnswerResponse)
async def answer(session_id: str, req: AnswerRequest):
    runtime = _runtime(session_id)
    try:
        feedback = runtime.controller.check_answer(req.answer)
        runtime.controller.submit_answer(req.answer)
    except QuizStateError as err:
        raise _conflict(err)
    runtime.sync_media()
    return AnswerResponse(feedback=feedback, session=runtime.view())


@router.post("/sessions/{session_id}/user-info", response_model=SessionView)
async def submit_user_info(session_id: str, info: UserInfo):
    runtime = _runtime(session_id)
    try:
        runtime.controller.submit_user_info(info)
    except QuizStateError as err:
        raise _conflict(err)
    # The session is already completed; waiting only lets warnings reach this response
    await runtime.controller.wait_for_reports()
    return runtime.view()


@router.post("/sessions/{session_id}/reset", response_model=SessionView)
async def reset(session_id: str):
    runtime = _runtime(session_id)
    runtime.controller.reset()
    runtime.media.clear()
    runtime.warnings.clear()
    return runtime.view()


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    runtime = _sessions.pop(session_id, None)
    if runtime is None:
        raise HTTPException(status_code=404, detail="Session not found or expired")
    runtime.media.clear()
    return {"deleted": True}


@router.get("/sessions/{session_id}/questions/{question_id}/audio")
async def question_audio(session_id: str, question_id: str):
    runtime = _runtime(session_id)
    question = _question(runtime, question_id)
    if not question.listening_script:
        raise HTTPException(status_code=404, detail="Question has no audio")
    try:
        audio = await runtime.media.audio_for(question)
    except StaleMediaResult:
        raise HTTPException(status_code=409, detail="Question is no longer current")
    except (SpeechFetchFailure, AudioDecodeFailure) as err:
        logger.warning("Audio load failed for %s: %s", question_id, err)
        raise HTTPException(status_code=502, detail="Audio could not be loaded")
    return Response(content=audio.to_wav(), media_type="audio/wav")


@router.get("/sessions/{session_id}/questions/{question_id}/image", response_model=ImageResponse)
async def question_image(session_id: str, question_id: str):
    runtime = _runtime(session_id)
    question = _question(runtime, question_id)
    try:
        url = await runtime.media.image_for(question)
    except StaleMediaResult:
        raise HTTPException(status_code=409, detail="Question is no longer current")
    return ImageResponse(image_url=url)


async def close_all_sessions() -> None:
    for runtime in list(_sessions.values()):
        runtime.media.clear()
        await runtime.controller.wait_for_reports()
    _sessions.clear()
