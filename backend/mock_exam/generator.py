"""
Section question generation.

Each exam section (Listening, Reading, Grammar, Vocabulary) is produced by a
single structured-output Gemini call. The section rules live in the prompt;
the response is then normalized and validated item by item so that only
well-formed questions reach the quiz session.

A section call never raises: any transport, parse or validation problem
yields fewer (possibly zero) questions, which is what lets the composer
tolerate one broken section.
"""

from __future__ import annotations

import json
import logging
import random
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .evaluator import evaluate_answer
from .gemini_client import GeminiClient
from .models import ExamCategory, Question, QuestionType, TRUE_FALSE_OPTIONS

logger = logging.getLogger(__name__)


# ============================================================================
# PROMPT MATERIAL
# ============================================================================

THEMES: List[str] = [
    "Public Transport (Bahnhof, Zug, Ticket)",
    "Shopping (Supermarkt, Kleidung, Preis)",
    "Housing (Wohnung, Möbel, Miete)",
    "Food & Dining (Restaurant, Essen, Trinken)",
    "Work & Professions (Büro, Beruf, Kollegen)",
    "Health (Arzt, Termin, Apotheke)",
    "Daily Routine (Uhrzeit, Aufstehen, Schule)",
    "Travel & Hotel (Urlaub, Rezeption, Flughafen)",
]

SECTION_INSTRUCTIONS: Dict[ExamCategory, str] = {
    ExamCategory.LISTENING: """
Type: LISTENING.
Requirements:
- Provide 'listeningScript' for every question.
- 1 question: Short dialogue (2 people).
- 1 question: Public announcement (Train/Airport).
- 1 question: Phone message.
- Question text should ask about specific details (Time, Place, Who, Price).
- Provide 3-4 'options' for every question.
""".strip(),
    ExamCategory.READING: """
Type: MULTIPLE_CHOICE or TRUE_FALSE.
Requirements:
- Provide 'contextText' (Emails, Notes, Ads, Signs) for every question.
- 2 questions: True/False (Richtig/Falsch) based on a short email.
- 1 question: Multiple Choice based on an advertisement or sign.
""".strip(),
    ExamCategory.GRAMMAR: """
Type: MULTIPLE_CHOICE.
Requirements:
- Focus on: Verb conjugation, Articles (der/die/das/den), Prepositions (in, an, auf, bei), Modal verbs (können, müssen).
- No images or long context needed, just the sentence with a blank.
""".strip(),
    ExamCategory.VOCABULARY: """
Type: MULTIPLE_CHOICE or FILL_BLANK.
Requirements:
- 2 questions: Image-based (Provide 'imageDescription'). Ask "Was ist das?". VARY the objects (Furniture, Food, Clothing, Office). DO NOT USE APPLES.
- 1 question: Sentence completion (vocabulary in context), type FILL_BLANK without options.
""".strip(),
}

# OpenAPI-subset schema accepted by Gemini's responseSchema
QUESTION_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "id": {"type": "STRING"},
        "category": {"type": "STRING", "enum": [c.value for c in ExamCategory]},
        "type": {"type": "STRING", "enum": [t.value for t in QuestionType]},
        "questionText": {"type": "STRING"},
        "options": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": (
                "List of options. MUST provide 3-4 options for Multiple Choice and Listening. "
                "MUST provide ['Richtig', 'Falsch'] for True/False."
            ),
        },
        "correctAnswer": {"type": "STRING"},
        "explanation": {"type": "STRING", "description": "Short explanation in English."},
        "listeningScript": {
            "type": "STRING",
            "description": "German text that will be spoken. Required ONLY for 'Listening (Hören)' questions.",
        },
        "contextText": {
            "type": "STRING",
            "description": "A short German paragraph, email, or advertisement. Required for 'Reading (Lesen)'.",
        },
        "imageDescription": {
            "type": "STRING",
            "description": "Visual description for 'Vocabulary (Wortschatz)' images. E.g., 'A red sofa in a living room'.",
        },
    },
    "required": ["id", "category", "type", "questionText", "correctAnswer", "explanation"],
}

QUIZ_SCHEMA: Dict[str, Any] = {"type": "ARRAY", "items": QUESTION_SCHEMA}


def pick_theme(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(THEMES)


def build_section_prompt(category: ExamCategory, count: int, instructions: str, seed: int, theme: str) -> str:
    return f"""
Generate exactly {count} German A1 Level questions for the category: "{category.value}".
Theme focus: "{theme}" (but vary context slightly).
Timestamp Seed: {seed}-{category.value}

{instructions}

IMPORTANT:
- Strictly CEFR A1 level (Beginner).
- Ensure 'options' are ALWAYS provided for Multiple Choice, Listening, and True/False.
- 'correctAnswer' must be copied exactly from 'options' whenever options are given.
- Do not repeat questions.
""".strip()


# ============================================================================
# RESPONSE PARSING AND VALIDATION
# ============================================================================

def _extract_json_array(text: str) -> List[Any]:
    """
    Extract the question array from model output.

    Structured output normally returns bare JSON, but fenced blocks and a
    ``{"questions": [...]}`` wrapper are accepted as well.

    Raises:
        ValueError: If no JSON array can be recovered
    """
    candidates = [text]
    code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
    if code_block:
        candidates.append(code_block.group(1))
    first, last = text.find("["), text.rfind("]")
    if first != -1 and last > first:
        candidates.append(text[first : last + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict) and isinstance(data.get("questions"), list):
            data = data["questions"]
        if isinstance(data, list):
            return data
    raise ValueError("Gemini output did not contain a JSON array of questions")


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_item(raw: Dict[str, Any], category: ExamCategory, index: int) -> Dict[str, Any]:
    qtype = str(raw.get("type") or "").strip().lower()
    options = raw.get("options")
    if isinstance(options, list):
        options = [str(o).strip() for o in options if str(o).strip()]
    else:
        options = None

    if category is ExamCategory.LISTENING:
        # Every listening-section item is played from its script
        qtype = QuestionType.LISTENING.value
    elif not qtype:
        qtype = (QuestionType.MULTIPLE_CHOICE if options else QuestionType.FILL_BLANK).value

    if qtype == QuestionType.FILL_BLANK.value:
        options = None
    elif qtype == QuestionType.TRUE_FALSE.value and not options:
        options = list(TRUE_FALSE_OPTIONS)

    answer = str(raw.get("correctAnswer") or "").strip()
    if options:
        # Snap to the exact option text when only case/spacing differ
        match = next((opt for opt in options if evaluate_answer(answer, opt)), None)
        if match is not None:
            answer = match

    script = _clean(raw.get("listeningScript")) if qtype == QuestionType.LISTENING.value else None

    return {
        "id": str(raw.get("id") or f"{category.name.lower()}-{index}"),
        "category": category.value,
        "type": qtype,
        "questionText": _clean(raw.get("questionText")) or "",
        "options": options or None,
        "correctAnswer": answer,
        "explanation": str(raw.get("explanation") or "").strip(),
        "listeningScript": script,
        "contextText": _clean(raw.get("contextText")),
        "imageDescription": _clean(raw.get("imageDescription")),
    }


def _section_problem(question: Question, category: ExamCategory) -> Optional[str]:
    """Content rule of the section that ``question`` breaks, if any."""
    if category is ExamCategory.READING and not question.context_text:
        return "reading questions need a contextText passage"
    if category is ExamCategory.GRAMMAR and question.type is not QuestionType.MULTIPLE_CHOICE:
        return "grammar questions must be multiple_choice"
    return None


def parse_section(items: List[Any], category: ExamCategory) -> List[Question]:
    """Normalize raw generator items and keep only valid questions."""
    questions: List[Question] = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            logger.info("Dropping non-object item %d from %s", index, category.value)
            continue
        try:
            question = Question.model_validate(_normalize_item(raw, category, index))
        except ValidationError as err:
            logger.info(
                "Dropping malformed %s item %d: %s",
                category.value,
                index,
                "; ".join(e["msg"] for e in err.errors()),
            )
            continue
        problem = _section_problem(question, category)
        if problem:
            logger.info("Dropping %s item %d: %s", category.value, index, problem)
            continue
        questions.append(question)
    return questions


# ============================================================================
# SECTION GENERATION
# ============================================================================

async def generate_section(
    client: GeminiClient,
    category: ExamCategory,
    count: int,
    instructions: str,
    seed: int,
    *,
    theme: Optional[str] = None,
) -> List[Question]:
    """
    Generate up to ``count`` validated questions for one exam section.

    Args:
        client: Gemini client used for the single structured call
        category: Section to generate
        count: Number of questions requested
        instructions: Section-specific content rules
        seed: Generation-run seed that decorrelates repeated runs
        theme: Contextual theme; drawn at random when omitted

    Returns:
        List[Question]: Valid questions, empty on any failure
    """
    prompt = build_section_prompt(category, count, instructions, seed, theme or pick_theme())
    try:
        raw = await client.generate(prompt, response_schema=QUIZ_SCHEMA)
        items = _extract_json_array(raw)
    except Exception:
        logger.warning("Failed to generate section %s", category.value, exc_info=True)
        return []

    questions = parse_section(items, category)
    if len(questions) < count:
        logger.info("Section %s produced %d of %d questions", category.value, len(questions), count)
    return questions[:count]
