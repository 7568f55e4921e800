"""
Speech audio decoding and playback ownership.

Gemini TTS returns headerless signed 16-bit little-endian PCM, mono, at
24 kHz. ``decode_pcm`` turns that payload into normalized float samples;
``DecodedAudio.to_wav`` wraps the same samples in a WAV container so a
browser can play them, and ``PlaybackSlot`` keeps at most one playable
source alive at a time.
"""

from __future__ import annotations

import io
import logging
import wave
from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np

from .errors import AudioDecodeFailure

logger = logging.getLogger(__name__)

SAMPLE_RATE = 24000
SAMPLE_WIDTH = 2  # bytes per int16 sample
PCM_SCALE = 32768.0


@dataclass(frozen=True, eq=False)
class DecodedAudio:
    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        return self.frame_count / self.sample_rate

    def to_wav(self) -> bytes:
        """Encode the samples as a 16-bit mono WAV file."""
        pcm = np.clip(np.round(self.samples * PCM_SCALE), -32768, 32767).astype("<i2")
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(SAMPLE_WIDTH)
            wav.setframerate(self.sample_rate)
            wav.writeframes(pcm.tobytes())
        return buffer.getvalue()


def decode_pcm(data: bytes, sample_rate: int = SAMPLE_RATE) -> DecodedAudio:
    """
    Decode raw mono int16 little-endian PCM into samples in [-1, 1).

    Args:
        data: Raw PCM bytes as returned by the speech capability
        sample_rate: Rate the payload was recorded at; no resampling is done

    Returns:
        DecodedAudio: One float sample per int16 in ``data``

    Raises:
        AudioDecodeFailure: If the payload is empty or not a whole number of samples
    """
    if not data:
        raise AudioDecodeFailure("speech payload is empty")
    if len(data) % SAMPLE_WIDTH:
        raise AudioDecodeFailure(f"speech payload has odd length {len(data)}")
    ints = np.frombuffer(data, dtype="<i2")
    samples = ints.astype(np.float32) / np.float32(PCM_SCALE)
    samples.setflags(write=False)
    return DecodedAudio(samples=samples, sample_rate=sample_rate)


class PlayableSource(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


class PlaybackSlot:
    """Holds the single source currently playing for a rendered question.

    The HTTP API only serves WAV bytes, so on the server the slot stays empty;
    a client that plays ``DecodedAudio`` itself registers its source here so
    that switching or closing the question stops it.
    """

    def __init__(self) -> None:
        self._active: Optional[PlayableSource] = None

    @property
    def active(self) -> Optional[PlayableSource]:
        return self._active

    def play(self, source: PlayableSource) -> None:
        self.stop()
        self._active = source
        source.start()

    def stop(self) -> None:
        source, self._active = self._active, None
        if source is None:
            return
        try:
            source.stop()
        except Exception:
            # A source that already finished may refuse a second stop
            logger.debug("Playback source failed to stop cleanly", exc_info=True)
