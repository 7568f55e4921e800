"""Shared fixtures for the mock exam tests."""
import json
from typing import Any, Dict, List, Optional, Union

import pytest

from mock_exam.models import ExamCategory, Question, QuestionType, UserInfo


def make_question(index: int = 0, **overrides: Any) -> Question:
    """Valid grammar multiple-choice question; override any field."""
    data: Dict[str, Any] = dict(
        id=f"q{index}",
        type=QuestionType.MULTIPLE_CHOICE,
        category=ExamCategory.GRAMMAR,
        question_text="Ich ___ aus Berlin.",
        options=["komme", "kommst", "kommt"],
        correct_answer="komme",
        explanation="First person singular of kommen.",
    )
    data.update(overrides)
    return Question(**data)


def raw_items(category: ExamCategory, count: int = 3) -> List[Dict[str, Any]]:
    """Generator-shaped items (camelCase dicts) that pass validation."""
    items: List[Dict[str, Any]] = []
    for i in range(count):
        if category is ExamCategory.LISTENING:
            item = {
                "type": "listening",
                "questionText": "Wann fährt der Zug?",
                "options": ["8 Uhr", "9 Uhr", "10 Uhr"],
                "correctAnswer": "9 Uhr",
                "listeningScript": "Achtung: Der Zug nach München fährt um 9 Uhr.",
            }
        elif category is ExamCategory.READING:
            item = {
                "type": "true_false",
                "questionText": "Anna kommt am Montag.",
                "options": ["Richtig", "Falsch"],
                "correctAnswer": "Richtig",
                "contextText": "Hallo Tom, ich komme am Montag. Liebe Grüße, Anna",
            }
        elif category is ExamCategory.GRAMMAR:
            item = {
                "type": "multiple_choice",
                "questionText": "Ich ___ Deutsch lernen.",
                "options": ["muss", "musst", "müssen"],
                "correctAnswer": "muss",
            }
        else:
            item = {
                "type": "multiple_choice",
                "questionText": "Was ist das?",
                "options": ["der Stuhl", "der Tisch", "das Sofa"],
                "correctAnswer": "das Sofa",
                "imageDescription": "A red sofa in a living room",
            }
        item.update({"id": str(i + 1), "category": category.value, "explanation": "Because."})
        items.append(item)
    return items


class FakeGemini:
    """Stands in for GeminiClient.generate, answering per exam section."""

    def __init__(self, responses: Dict[ExamCategory, Union[str, Exception]]):
        self.responses = responses
        self.prompts: List[str] = []
        self.schemas: List[Optional[Dict[str, Any]]] = []

    async def generate(self, prompt: str, *, response_schema: Optional[Dict[str, Any]] = None) -> str:
        self.prompts.append(prompt)
        self.schemas.append(response_schema)
        category = next(c for c in ExamCategory if f'category: "{c.value}"' in prompt)
        response = self.responses.get(category, "[]")
        if isinstance(response, Exception):
            raise response
        return response


def full_responses(count: int = 3) -> Dict[ExamCategory, str]:
    return {category: json.dumps(raw_items(category, count)) for category in ExamCategory}


@pytest.fixture
def question_factory():
    return make_question


@pytest.fixture
def twelve_questions() -> List[Question]:
    return [make_question(i) for i in range(12)]


@pytest.fixture
def user_info() -> UserInfo:
    return UserInfo(name="Maria Schmidt", native_language="Spanish", phone="+49 151 2345678")
