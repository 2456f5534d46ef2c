"""Speech-to-text providers used for subtitle generation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import openai
import structlog

from ..core.config import Settings
from ..core.errors import MediaProcessingError, TransientIOError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SpeechSegment:
    start: float
    end: float
    text: str
    confidence: float | None = None


class SpeechToTextProvider(Protocol):
    """Turns a mono 16 kHz WAV file into time-coded segments ordered by start."""

    def transcribe(self, audio_path: Path, language: str) -> list[SpeechSegment]: ...


def _confidence_from_logprob(logprob: float | None) -> float | None:
    if logprob is None:
        return None
    # Map average log probability (typically -5..0) into a 0..1 heuristic range.
    score = 1.0 + (logprob / 5.0)
    return max(0.0, min(1.0, score))


def _segment_value(segment: object, attr: str, default: float | str | None = ""):
    if isinstance(segment, dict):
        return segment.get(attr, default)
    return getattr(segment, attr, default)


class StubSpeechProvider:
    """Deterministic transcript used when no speech API is configured."""

    SEGMENTS: tuple[SpeechSegment, ...] = (
        SpeechSegment(0.0, 5.0, "Welcome to this lesson.", 0.95),
        SpeechSegment(5.0, 10.0, "Today we will learn about important concepts.", 0.92),
        SpeechSegment(10.0, 15.0, "Let's start with the basics.", 0.94),
    )

    def transcribe(self, audio_path: Path, language: str) -> list[SpeechSegment]:
        logger.warning("speech.stub_transcript", audio_path=str(audio_path), language=language)
        return list(self.SEGMENTS)


class OpenAIWhisperProvider:
    """OpenAI audio transcription with segment timestamps."""

    def __init__(self, api_key: str, model: str = "whisper-1", client: object | None = None) -> None:
        if client is None:
            client = openai.OpenAI(api_key=api_key)
        self._client = client
        self._model = model

    def transcribe(self, audio_path: Path, language: str) -> list[SpeechSegment]:
        logger.info("speech.whisper.request", audio_path=str(audio_path), model=self._model, language=language)
        try:
            with open(audio_path, "rb") as f:
                resp = self._client.audio.transcriptions.create(
                    model=self._model,
                    file=f,
                    language=language,
                    response_format="verbose_json",
                )
        except (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as exc:
            raise TransientIOError(f"Speech API unavailable: {exc}") from exc
        except openai.APIError as exc:
            raise MediaProcessingError(f"Speech API rejected the request: {exc}") from exc

        segments: list[SpeechSegment] = []
        for seg in getattr(resp, "segments", None) or []:
            text = str(_segment_value(seg, "text", "")).strip()
            if not text:
                continue
            start = float(_segment_value(seg, "start", 0.0) or 0.0)
            end = float(_segment_value(seg, "end", start) or start)
            segments.append(
                SpeechSegment(
                    start=max(0.0, start),
                    end=max(start, end),
                    text=text,
                    confidence=_confidence_from_logprob(_segment_value(seg, "avg_logprob", None)),
                )
            )
        return sorted(segments, key=lambda s: s.start)


def build_speech_provider(settings: Settings) -> SpeechToTextProvider:
    provider = settings.resolved_speech_provider
    if provider == "openai":
        if not settings.openai_api_key:
            raise RuntimeError("OPENAI_API_KEY is required when SPEECH_PROVIDER=openai")
        return OpenAIWhisperProvider(settings.openai_api_key, settings.openai_whisper_model)
    if provider == "stub":
        logger.warning("speech.no_api_key", msg="speech provider not configured, using stub transcript")
        return StubSpeechProvider()
    raise RuntimeError(f"Unknown SPEECH_PROVIDER {provider!r}")
