from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional, Sequence

from .errors import GenerationFailure
from .gemini_client import GeminiClient
from .generator import SECTION_INSTRUCTIONS, generate_section
from .models import ExamCategory, Question
from .settings import settings

logger = logging.getLogger(__name__)

# Order in which sections appear in the exam
SECTION_ORDER: Sequence[ExamCategory] = (
    ExamCategory.LISTENING,
    ExamCategory.READING,
    ExamCategory.GRAMMAR,
    ExamCategory.VOCABULARY,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


async def compose_quiz(
    client: GeminiClient,
    *,
    per_section: Optional[int] = None,
    clock: Callable[[], int] = _now_ms,
) -> List[Question]:
    """Generate all sections concurrently and merge them into one exam.

    A section that fails contributes nothing; the exam only fails when the
    merged set is empty. Ids are reassigned as ``q-<run>-<position>``.
    """
    count = per_section or settings.questions_per_section
    run = clock()

    results = await asyncio.gather(
        *(
            generate_section(client, category, count, SECTION_INSTRUCTIONS[category], run)
            for category in SECTION_ORDER
        ),
        return_exceptions=True,
    )

    merged: List[Question] = []
    short: List[str] = []
    for category, result in zip(SECTION_ORDER, results):
        if isinstance(result, BaseException):
            logger.error("Section %s raised unexpectedly", category.value, exc_info=result)
            result = []
        if len(result) < count:
            short.append(f"{category.value}={len(result)}")
        merged.extend(result)

    if not merged:
        raise GenerationFailure("Failed to generate exam data.")
    if short:
        logger.warning("Exam composed with short sections: %s", ", ".join(short))

    return [q.model_copy(update={"id": f"q-{run}-{index}"}) for index, q in enumerate(merged)]
