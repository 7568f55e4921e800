from __future__ import annotations
import re
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class QuestionType(str, Enum):
	MULTIPLE_CHOICE = "multiple_choice"
	FILL_BLANK = "fill_blank"
	LISTENING = "listening"
	TRUE_FALSE = "true_false"


class ExamCategory(str, Enum):
	LISTENING = "Listening (Hören)"
	READING = "Reading (Lesen)"
	GRAMMAR = "Grammar (Grammatik)"
	VOCABULARY = "Vocabulary (Wortschatz)"


# Question types answered by picking one of the listed options
OPTION_TYPES = frozenset({QuestionType.MULTIPLE_CHOICE, QuestionType.LISTENING, QuestionType.TRUE_FALSE})

TRUE_FALSE_OPTIONS: List[str] = ["Richtig", "Falsch"]

PHONE_PATTERN = re.compile(r"^\+?[\d\s-]{8,}$")


class _WireModel(BaseModel):
	# camelCase on the wire (Gemini schema and HTTP API), snake_case in Python
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Question(_WireModel):
	id: str
	type: QuestionType
	category: ExamCategory
	question_text: str = Field(min_length=1)
	options: Optional[List[str]] = None
	correct_answer: str = Field(min_length=1)
	explanation: str
	listening_script: Optional[str] = None
	context_text: Optional[str] = None
	image_description: Optional[str] = None

	@property
	def requires_options(self) -> bool:
		return self.type in OPTION_TYPES

	@model_validator(mode="after")
	def _check_shape(self) -> "Question":
		if self.requires_options and not self.options:
			raise ValueError(f"{self.type.value} questions need options")
		if self.type is QuestionType.FILL_BLANK and self.options is not None:
			raise ValueError("fill_blank questions take a free-text answer, not options")
		if self.options is not None and self.correct_answer not in self.options:
			raise ValueError("correctAnswer must be one of the options")
		has_script = bool((self.listening_script or "").strip())
		if self.type is QuestionType.LISTENING and not has_script:
			raise ValueError("listening questions need a listeningScript")
		if self.type is not QuestionType.LISTENING and has_script:
			raise ValueError("only listening questions carry a listeningScript")
		return self


class UserInfo(_WireModel):
	name: str
	native_language: str
	phone: str

	@field_validator("name", "native_language", "phone")
	@classmethod
	def _required(cls, value: str) -> str:
		value = value.strip()
		if not value:
			raise ValueError("field is required")
		return value

	@field_validator("phone")
	@classmethod
	def _valid_phone(cls, value: str) -> str:
		if not PHONE_PATTERN.match(value):
			raise ValueError("Please enter a valid phone number")
		return value


class QuizStatus(str, Enum):
	IDLE = "idle"
	LOADING = "loading"
	ACTIVE = "active"
	COLLECTING_INFO = "collecting_info"
	COMPLETED = "completed"
	ERROR = "error"


class QuizSnapshot(_WireModel):
	"""Immutable view of one quiz session; every transition yields a new snapshot."""

	questions: Tuple[Question, ...] = ()
	current_index: int = 0
	answers: Dict[str, str] = Field(default_factory=dict)
	score: int = 0
	status: QuizStatus = QuizStatus.IDLE
	user_info: Optional[UserInfo] = None
	error: Optional[str] = None

	@property
	def total(self) -> int:
		return len(self.questions)

	@property
	def current_question(self) -> Optional[Question]:
		if 0 <= self.current_index < len(self.questions):
			return self.questions[self.current_index]
		return None


ResultTier = Literal["excellent", "pass", "fail"]


class ExamResult(_WireModel):
	total_questions: int
	correct_answers: int
	score_percentage: int
	tier: ResultTier
	feedback: str


class AnswerFeedback(_WireModel):
	correct: bool
	correct_answer: str
	explanation: str
