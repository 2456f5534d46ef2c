"""Shared fakes and database helpers for the test suite."""

from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mediaflow import models  # noqa: F401
from mediaflow.core.errors import MediaProcessingError
from mediaflow.db.base import Base
from mediaflow.db.session import build_session_factory
from mediaflow.repositories.content import SqlAlchemyContentDirectory
from mediaflow.services.speech import SpeechSegment

PROBE_DURATION = 600.0


def create_test_db():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


def make_session_factory() -> sessionmaker:
    return build_session_factory(create_test_db())


def create_lesson(session_factory, title: str = "Intro lesson"):
    with session_factory() as session:
        lesson = SqlAlchemyContentDirectory(session).create_lesson(title)
        session.commit()
    return lesson


class FakeFFmpegTools:
    """Writes placeholder outputs instead of invoking ffmpeg."""

    def __init__(self, fail_resolutions=(), probe_error: Exception | None = None, crash_resolutions=()):
        self.fail_resolutions = set(fail_resolutions)
        self.crash_resolutions = set(crash_resolutions)
        self.probe_error = probe_error
        self.encoded: list[str] = []
        self.extracted: list[str] = []

    def probe(self, path: str) -> dict:
        if self.probe_error is not None:
            raise self.probe_error
        return {
            "format": {
                "duration": str(PROBE_DURATION),
                "bit_rate": "4500000",
                "size": "337500000",
                "format_name": "mov,mp4,m4a,3gp,3g2,mj2",
            },
            "streams": [
                {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080, "r_frame_rate": "30/1"},
                {"codec_type": "audio", "codec_name": "aac", "channels": 2, "sample_rate": "48000"},
            ],
        }

    def probe_metadata(self, path: str) -> dict:
        self.probe(path)
        return {
            "duration": PROBE_DURATION,
            "size": 337500000,
            "bitrate": 4500,
            "format": "mov,mp4,m4a,3gp,3g2,mj2",
            "resolution": "1920x1080",
            "video_codec": "h264",
            "audio_codec": "aac",
            "frame_rate": 30.0,
            "audio_channels": 2,
            "audio_sample_rate": 48000,
        }

    def encode_rendition(self, source_path, output_path, *, width, height, video_bitrate_kbps, crf, preset,
                         duration_sec, progress_callback=None):
        resolution = f"{width}x{height}"
        self.encoded.append(resolution)
        if resolution in self.fail_resolutions:
            raise MediaProcessingError(f"ffmpeg exited with code 1 while encoding {resolution}")
        if resolution in self.crash_resolutions:
            raise RuntimeError(f"encoder wrapper crashed on {resolution}")
        if progress_callback:
            progress_callback(0.5, "Encoding: 50%")
            progress_callback(1.0, "Encoding: 100%")
        Path(output_path).write_bytes(b"\x00" * 64)

    def extract_audio(self, source_path, output_path, start=0.0, duration=None):
        self.extracted.append(output_path)
        Path(output_path).write_bytes(b"RIFF")
        return output_path

    def render_thumbnail(self, source_path, output_path, timestamp, width=1280, height=720):
        Path(output_path).write_bytes(b"\xff\xd8")
        return output_path


class RecordingSpeechProvider:
    """Returns fixed segments and remembers the audio files it was given."""

    def __init__(self, segments=None, error: Exception | None = None):
        self.segments = segments if segments is not None else [
            SpeechSegment(0.0, 2.5, "Hello and welcome.", 0.9),
            SpeechSegment(2.5, 6.0, "This lesson covers queues.", 0.8),
        ]
        self.error = error
        self.calls: list[Path] = []

    def transcribe(self, audio_path: Path, language: str) -> list[SpeechSegment]:
        self.calls.append(Path(audio_path))
        assert Path(audio_path).exists()
        if self.error is not None:
            raise self.error
        return list(self.segments)
