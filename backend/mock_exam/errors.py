"""
Exceptions raised by the mock exam core.

Only GenerationFailure is fatal to a quiz session; every other failure is
local to a single question (media) or to the reporting side channel.
"""


class MockExamError(Exception):
	"""Base exception for all mock exam errors."""
	pass


class GeminiError(MockExamError):
	"""Raised when a Gemini call fails or returns an unusable payload."""

	def __init__(self, message: str, raw_text: str | None = None):
		self.raw_text = raw_text
		super().__init__(message)


class GenerationFailure(MockExamError):
	"""Raised when no section produced a single usable question."""
	pass


class QuizStateError(MockExamError):
	"""Raised when an operation is not valid in the session's current status."""

	def __init__(self, operation: str, status: str):
		self.operation = operation
		self.status = status
		super().__init__(f"{operation} is not allowed while the quiz is {status}")


class AudioDecodeFailure(MockExamError):
	"""Raised when a speech payload cannot be decoded as 16-bit PCM."""
	pass


class SpeechFetchFailure(MockExamError):
	"""Raised when the speech capability returns no audio."""
	pass


class ImageFetchFailure(MockExamError):
	"""Raised when the image capability returns no image."""
	pass


class ReportingFailure(MockExamError):
	"""Raised when the result row could not be delivered to the sheet."""
	pass


class StaleMediaResult(MockExamError):
	"""Raised when a media fetch resolves after its question stopped being current."""

	def __init__(self, question_id: str):
		self.question_id = question_id
		super().__init__(f"media for question {question_id} is no longer current")
