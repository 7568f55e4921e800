"""
Quiz session state machine.

The session moves through ``idle -> loading -> active -> collecting_info ->
completed``, with ``error`` reachable from ``loading`` and ``reset`` returning
to ``idle`` from anywhere. Transitions are plain functions from one immutable
``QuizSnapshot`` to the next; ``SessionController`` owns the current snapshot
and the asynchronous edges (composition and result reporting).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, Set

from .errors import GenerationFailure, QuizStateError, ReportingFailure
from .evaluator import evaluate_answer
from .models import AnswerFeedback, ExamResult, Question, QuizSnapshot, QuizStatus, ResultTier, UserInfo

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Failed to generate quiz. Please try again."
REPORT_WARNING = "There was an error saving your results to the sheet. Please check your internet connection."

Composer = Callable[[], Awaitable[Sequence[Question]]]
Reporter = Callable[[UserInfo, int, int], Awaitable[None]]
WarningSink = Callable[[str], None]

TIER_FEEDBACK = {
    "excellent": "Outstanding performance! You mastered the A1 level.",
    "pass": "You passed the exam. Ready for the next step!",
    "fail": "Keep practicing. Review your vocabulary and grammar.",
}


# ============================================================================
# TRANSITIONS
# ============================================================================

def _require(state: QuizSnapshot, operation: str, *allowed: QuizStatus) -> None:
    if state.status not in allowed:
        raise QuizStateError(operation, state.status.value)


def initial_state() -> QuizSnapshot:
    return QuizSnapshot()


def begin_loading(state: QuizSnapshot) -> QuizSnapshot:
    if state.status is QuizStatus.LOADING:
        raise QuizStateError("start", state.status.value)
    return QuizSnapshot(status=QuizStatus.LOADING)


def activate(state: QuizSnapshot, questions: Sequence[Question]) -> QuizSnapshot:
    _require(state, "activate", QuizStatus.LOADING)
    return QuizSnapshot(questions=tuple(questions), status=QuizStatus.ACTIVE)


def fail(state: QuizSnapshot, message: str) -> QuizSnapshot:
    _require(state, "fail", QuizStatus.LOADING)
    return QuizSnapshot(status=QuizStatus.ERROR, error=message)


def apply_answer(state: QuizSnapshot, answer: str) -> QuizSnapshot:
    _require(state, "submit_answer", QuizStatus.ACTIVE)
    question = state.current_question
    if question is None:
        raise QuizStateError("submit_answer", state.status.value)
    correct = evaluate_answer(answer, question.correct_answer)
    next_index = state.current_index + 1
    return state.model_copy(
        update={
            "answers": {**state.answers, question.id: answer},
            "score": state.score + 1 if correct else state.score,
            "current_index": next_index,
            "status": QuizStatus.COLLECTING_INFO if next_index >= state.total else QuizStatus.ACTIVE,
        }
    )


def attach_user_info(state: QuizSnapshot, info: UserInfo) -> QuizSnapshot:
    _require(state, "submit_user_info", QuizStatus.COLLECTING_INFO)
    return state.model_copy(update={"user_info": info, "status": QuizStatus.COMPLETED})


def percentage(score: int, total: int) -> int:
    if total <= 0:
        return 0
    return int(score * 100 / total + 0.5)


def _tier(score_percentage: int) -> ResultTier:
    if score_percentage >= 80:
        return "excellent"
    if score_percentage >= 60:
        return "pass"
    return "fail"


def summarize_result(state: QuizSnapshot) -> ExamResult:
    _require(state, "result", QuizStatus.COLLECTING_INFO, QuizStatus.COMPLETED)
    score_percentage = percentage(state.score, state.total)
    tier = _tier(score_percentage)
    return ExamResult(
        total_questions=state.total,
        correct_answers=state.score,
        score_percentage=score_percentage,
        tier=tier,
        feedback=TIER_FEEDBACK[tier],
    )


# ============================================================================
# CONTROLLER
# ============================================================================

class SessionController:
    """Owns one quiz session and applies transitions to it atomically."""

    def __init__(
        self,
        compose: Composer,
        reporter: Optional[Reporter] = None,
        *,
        on_report_warning: Optional[WarningSink] = None,
    ) -> None:
        self._state = initial_state()
        self._compose = compose
        self._reporter = reporter
        self._on_report_warning = on_report_warning
        # Bumped by start/reset so a composition that outlives its run is dropped
        self._generation = 0
        self._reports: Set[asyncio.Task] = set()

    @property
    def state(self) -> QuizSnapshot:
        return self._state

    async def start(self) -> QuizSnapshot:
        self._state = begin_loading(self._state)
        self._generation += 1
        generation = self._generation
        try:
            questions = list(await self._compose())
            if not questions:
                raise GenerationFailure("composer returned no questions")
        except asyncio.CancelledError:
            if generation == self._generation:
                self._state = initial_state()
            raise
        except Exception:
            logger.exception("Quiz generation failed")
            if generation == self._generation:
                self._state = fail(self._state, GENERIC_ERROR)
            return self._state

        if generation != self._generation:
            logger.info("Discarding quiz composed for a run that was reset")
            return self._state
        self._state = activate(self._state, questions)
        logger.info("Quiz started with %d questions", len(questions))
        return self._state

    def check_answer(self, answer: str) -> AnswerFeedback:
        _require(self._state, "check_answer", QuizStatus.ACTIVE)
        question = self._state.current_question
        return AnswerFeedback(
            correct=evaluate_answer(answer, question.correct_answer),
            correct_answer=question.correct_answer,
            explanation=question.explanation,
        )

    def submit_answer(self, answer: str) -> QuizSnapshot:
        self._state = apply_answer(self._state, answer)
        return self._state

    def submit_user_info(self, info: UserInfo) -> QuizSnapshot:
        """Complete the session and hand the result to the reporter.

        Must be called from inside the running event loop, otherwise it raises
        RuntimeError before the state changes. Reporting runs as its own task
        and cannot hold up or undo the transition.
        """
        loop = asyncio.get_running_loop() if self._reporter is not None else None
        self._state = attach_user_info(self._state, info)
        if loop is not None:
            task = loop.create_task(
                self._report(info, self._state.score, self._state.total)
            )
            self._reports.add(task)
            task.add_done_callback(self._reports.discard)
        return self._state

    async def _report(self, info: UserInfo, score: int, total: int) -> None:
        try:
            await self._reporter(info, score, total)
        except Exception as err:
            logger.warning("Result reporting failed: %s", err)
            if self._on_report_warning is not None:
                self._on_report_warning(str(err) if isinstance(err, ReportingFailure) else REPORT_WARNING)

    async def wait_for_reports(self) -> None:
        if self._reports:
            await asyncio.gather(*list(self._reports))

    def result(self) -> ExamResult:
        return summarize_result(self._state)

    def reset(self) -> QuizSnapshot:
        self._generation += 1
        self._state = initial_state()
        return self._state
