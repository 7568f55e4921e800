from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from .audio import DecodedAudio, PlaybackSlot, decode_pcm
from .errors import SpeechFetchFailure, StaleMediaResult
from .models import Question

logger = logging.getLogger(__name__)

T = TypeVar("T")

SpeechFetcher = Callable[[str], Awaitable[bytes]]
ImageFetcher = Callable[[str], Awaitable[str]]

_TaskKey = Tuple[str, str]  # (kind, question id)


class QuestionMedia:
    """Per-session image and audio fetches for the question currently shown.

    Fetches run as tasks keyed by question id. Moving to another question
    cancels the old tasks and stops playback; a fetch that still resolves
    for a question that is no longer current is discarded.
    """

    def __init__(self, fetch_speech: SpeechFetcher, fetch_image: ImageFetcher) -> None:
        self._fetch_speech = fetch_speech
        self._fetch_image = fetch_image
        self._current_id: Optional[str] = None
        self._tasks: Dict[_TaskKey, asyncio.Task] = {}
        self._audio: Dict[str, DecodedAudio] = {}  # keyed by listening script
        self._images: Dict[str, str] = {}  # keyed by question id
        self.playback = PlaybackSlot()

    @property
    def current_id(self) -> Optional[str]:
        return self._current_id

    def switch_to(self, question_id: Optional[str]) -> None:
        if question_id == self._current_id:
            return
        self._current_id = question_id
        self.playback.stop()
        for key, task in list(self._tasks.items()):
            if key[1] != question_id:
                task.cancel()
                self._tasks.pop(key, None)

    def clear(self) -> None:
        """Drop everything tied to the current quiz run."""
        self.switch_to(None)
        self._audio.clear()
        self._images.clear()

    async def audio_for(self, question: Question) -> DecodedAudio:
        script = question.listening_script
        if not script:
            raise SpeechFetchFailure(f"question {question.id} has no listening script")
        self._ensure_current(question.id)
        cached = self._audio.get(script)
        if cached is not None:
            return cached
        audio = await self._run(("audio", question.id), lambda: self._load_audio(script))
        self._audio[script] = audio
        return audio

    async def image_for(self, question: Question) -> Optional[str]:
        """Return an image URL, or None when the question has none or the fetch failed."""
        if not question.image_description:
            return None
        self._ensure_current(question.id)
        if question.id in self._images:
            return self._images[question.id]
        description = question.image_description
        try:
            url = await self._run(("image", question.id), lambda: self._fetch_image(description))
        except StaleMediaResult:
            raise
        except Exception as err:
            logger.warning("No image available for %s: %s", question.id, err)
            return None
        self._images[question.id] = url
        return url

    async def _load_audio(self, script: str) -> DecodedAudio:
        try:
            payload = await self._fetch_speech(script)
        except Exception as err:
            raise SpeechFetchFailure(str(err)) from err
        return decode_pcm(payload)

    def _ensure_current(self, question_id: str) -> None:
        if question_id != self._current_id:
            raise StaleMediaResult(question_id)

    async def _run(self, key: _TaskKey, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        try:
            # Shielded so a disconnecting caller does not cancel a shared fetch
            result = await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise StaleMediaResult(key[1]) from None
            raise
        if key[1] != self._current_id:
            raise StaleMediaResult(key[1])
        return result

    def _forget(self, key: _TaskKey, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Media fetch %s failed", key, exc_info=task.exception())
