"""Media operations behind the background queues: probe, transcode, thumbnail, subtitles."""

from __future__ import annotations

import traceback
from contextlib import contextmanager
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Callable, Iterator, Sequence
from uuid import UUID

import structlog
from sqlalchemy.orm import Session, sessionmaker

from ..core.config import Settings
from ..core.errors import MediaProcessingError, NotFoundError, TransientIOError
from ..domain.jobs import LadderRung, QualityTier
from ..domain.media import (
    ArtifactStatus,
    ProbeResult,
    Rendition,
    SubtitleDocument,
    SubtitleSegment,
    VideoProcessingStatus,
)
from ..repositories.jobs import SqlAlchemyJobsRepository
from ..repositories.media import SqlAlchemyMediaRepository
from .ffmpeg_tools import FFmpegTools, ensure_dir, parse_offset
from .speech import SpeechSegment, SpeechToTextProvider
from .subtitles import average_confidence, chunk_ranges, count_words, write_srt

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[float, str], None]

# quality tier -> (crf, x264 preset)
TIER_ENCODING: dict[QualityTier, tuple[int, str]] = {
    QualityTier.HIGH: (20, "medium"),
    QualityTier.MEDIUM: (23, "medium"),
    QualityTier.LOW: (26, "veryfast"),
}

THUMBNAIL_SIZE = (1280, 720)


class MediaProcessingEngine:
    """Stateless media operations; every artifact row write is committed immediately."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: Settings,
        speech_provider: SpeechToTextProvider,
        tools: FFmpegTools | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._speech = speech_provider
        self._tools = tools or FFmpegTools(settings.ffmpeg_bin, settings.ffprobe_bin)
        self._media_root = settings.media_root_path

    @contextmanager
    def _media(self) -> Iterator[SqlAlchemyMediaRepository]:
        with self._session_factory() as session:
            yield SqlAlchemyMediaRepository(session)
            session.commit()

    # Output layout, partitioned by asset so concurrent jobs never share a path.

    def rendition_path(self, asset_id: UUID, resolution: str) -> Path:
        return self._media_root / "transcoded" / str(asset_id) / f"{resolution}.mp4"

    def thumbnail_path(self, asset_id: UUID) -> Path:
        return self._media_root / "thumbnails" / str(asset_id) / "thumb.jpg"

    def subtitle_path(self, asset_id: UUID, language: str, fmt: str = "srt") -> Path:
        return self._media_root / "subtitles" / str(asset_id) / f"{language}.{fmt}"

    # Operations -------------------------------------------------------------

    def extract_metadata(self, path: str) -> ProbeResult:
        info = self._tools.probe_metadata(path)
        probe = ProbeResult.model_validate(info)
        logger.info(
            "media.metadata.extracted",
            path=path,
            duration=probe.duration,
            resolution=probe.resolution,
            bitrate=probe.bitrate,
        )
        return probe

    def transcode(
        self,
        asset_id: UUID,
        source_path: str,
        ladder: Sequence[LadderRung],
        on_progress: ProgressCallback | None = None,
    ) -> list[UUID]:
        """Encode every rung of the ladder; rungs succeed or fail independently.

        Rungs already completed on a previous run are kept. Raises
        MediaProcessingError after all rungs ran if any of them failed.
        """

        renditions: list[Rendition] = []
        with self._media() as media:
            for rung in ladder:
                renditions.append(
                    media.upsert_rendition(asset_id, rung, str(self.rendition_path(asset_id, rung.resolution)))
                )

        pending = [
            (rung, rendition)
            for rung, rendition in zip(ladder, renditions)
            if not (rendition.status == ArtifactStatus.COMPLETED and Path(rendition.file_path).exists())
        ]
        if not pending:
            logger.info("media.transcode.up_to_date", asset_id=str(asset_id))
            return [r.id for r in renditions]

        try:
            duration = self._tools.probe_metadata(source_path)["duration"]
        except Exception as exc:
            with self._media() as media:
                for _, rendition in pending:
                    media.fail_rendition(rendition.id, str(exc))
            raise

        failed: list[str] = []
        for index, (rung, rendition) in enumerate(pending):
            width, height = rung.dimensions
            crf, preset = TIER_ENCODING[rung.quality]
            output = Path(rendition.file_path)
            logger.info("media.transcode.rung_start", asset_id=str(asset_id), resolution=rung.resolution)

            def rung_progress(
                fraction: float,
                message: str,
                *,
                _rid: UUID = rendition.id,
                _idx: int = index,
                _label: str = rung.resolution,
            ) -> None:
                with self._media() as media:
                    media.update_rendition_progress(_rid, fraction * 100)
                if on_progress:
                    on_progress((_idx + fraction) / len(pending), f"{_label}: {message}")

            try:
                with self._media() as media:
                    media.mark_rendition_processing(rendition.id)
                ensure_dir(output.parent)
                self._tools.encode_rendition(
                    source_path,
                    str(output),
                    width=width,
                    height=height,
                    video_bitrate_kbps=rung.bitrate,
                    crf=crf,
                    preset=preset,
                    duration_sec=duration,
                    progress_callback=rung_progress,
                )
                file_size = output.stat().st_size
                with self._media() as media:
                    media.complete_rendition(rendition.id, file_size)
            except Exception as exc:
                failed.append(rung.resolution)
                logger.warning(
                    "media.transcode.rung_failed",
                    asset_id=str(asset_id),
                    resolution=rung.resolution,
                    error=str(exc) or exc.__class__.__name__,
                    traceback=traceback.format_exc(),
                )
                with self._media() as media:
                    media.fail_rendition(rendition.id, str(exc) or exc.__class__.__name__)
                continue

            logger.info(
                "media.transcode.rung_completed",
                asset_id=str(asset_id),
                resolution=rung.resolution,
                file_size=file_size,
            )

        if failed:
            raise MediaProcessingError(f"Transcoding failed for {', '.join(failed)}")
        return [r.id for r in renditions]

    def generate_thumbnail(self, asset_id: UUID, path: str, offset: float | str = "00:00:05") -> str:
        output = self.thumbnail_path(asset_id)
        ensure_dir(output.parent)
        width, height = THUMBNAIL_SIZE
        self._tools.render_thumbnail(path, str(output), parse_offset(offset), width=width, height=height)
        with self._media() as media:
            media.set_thumbnail(asset_id, str(output))
        logger.info("media.thumbnail.generated", asset_id=str(asset_id), path=str(output))
        return str(output)

    def generate_subtitles(
        self,
        asset_id: UUID,
        path: str,
        language: str = "en",
        on_progress: ProgressCallback | None = None,
    ) -> UUID:
        output = self.subtitle_path(asset_id, language)
        with self._media() as media:
            subtitle = media.upsert_subtitle_set(asset_id, language, "srt", str(output))

        try:
            segments = self._transcribe(path, language, on_progress)
            ordered = [
                SubtitleSegment(
                    start_time=seg.start,
                    end_time=seg.end,
                    text=seg.text,
                    confidence=seg.confidence,
                    segment_order=order,
                )
                for order, seg in enumerate(segments, 1)
            ]
            write_srt(ordered, output)
        except Exception as exc:
            with self._media() as media:
                media.fail_subtitle_set(subtitle.id, str(exc) or exc.__class__.__name__)
            if isinstance(exc, OSError):
                raise TransientIOError(f"Subtitle generation failed: {exc}") from exc
            raise

        with self._media() as media:
            media.replace_segments(subtitle.id, ordered)
            media.complete_subtitle_set(
                subtitle.id,
                average_confidence(segments),
                count_words(seg.text for seg in segments),
            )
        logger.info(
            "media.subtitles.generated",
            asset_id=str(asset_id),
            language=language,
            segments=len(ordered),
        )
        return subtitle.id

    def _transcribe(
        self,
        path: str,
        language: str,
        on_progress: ProgressCallback | None,
    ) -> list[SpeechSegment]:
        """Extract audio into a temporary directory and run speech-to-text over it."""

        info = self._tools.probe(path)
        try:
            duration = float((info.get("format") or {}).get("duration") or 0.0)
        except (TypeError, ValueError):
            duration = 0.0
        ranges = chunk_ranges(duration, self._settings.speech_chunk_seconds) if duration else [(0.0, None)]

        segments: list[SpeechSegment] = []
        with TemporaryDirectory(prefix="mediaflow-audio-") as tmpdir:
            for idx, (start, length) in enumerate(ranges):
                audio_path = Path(tmpdir) / f"chunk_{idx:03d}.wav"
                self._tools.extract_audio(path, str(audio_path), start=start, duration=length)
                for seg in self._speech.transcribe(audio_path, language):
                    segments.append(
                        SpeechSegment(
                            start=seg.start + start,
                            end=seg.end + start,
                            text=seg.text,
                            confidence=seg.confidence,
                        )
                    )
                audio_path.unlink(missing_ok=True)
                if on_progress:
                    on_progress((idx + 1) / len(ranges), f"Transcribed chunk {idx + 1}/{len(ranges)}")
        return sorted(segments, key=lambda s: s.start)

    # Queries ----------------------------------------------------------------

    def get_video_processing_status(self, asset_id: UUID) -> VideoProcessingStatus:
        with self._session_factory() as session:
            media = SqlAlchemyMediaRepository(session)
            asset = media.get_asset(asset_id)
            if asset is None:
                raise NotFoundError(f"Media asset {asset_id} not found")
            return VideoProcessingStatus(
                asset=asset,
                renditions=media.list_renditions(asset_id),
                subtitles=media.list_subtitle_sets(asset_id),
                jobs=SqlAlchemyJobsRepository(session).list_for_content(asset_id),
            )

    def get_available_qualities(self, asset_id: UUID) -> list[Rendition]:
        with self._session_factory() as session:
            return SqlAlchemyMediaRepository(session).list_renditions(asset_id, ArtifactStatus.COMPLETED)

    def get_subtitles(self, asset_id: UUID, language: str = "en", fmt: str = "srt") -> SubtitleDocument:
        with self._session_factory() as session:
            found = SqlAlchemyMediaRepository(session).find_completed_subtitles(asset_id, language, fmt)
        if found is None:
            raise NotFoundError(f"No {language}/{fmt} subtitles for asset {asset_id}")
        subtitle, segments = found
        return SubtitleDocument(subtitle=subtitle, segments=segments)
