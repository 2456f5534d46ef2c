"""Pytest configuration and fixtures for mediaflow tests."""

import pytest

from mediaflow.bootstrap import build_pipeline
from mediaflow.core.config import Settings
from mediaflow.db.session import build_session_factory

from support import FakeFFmpegTools, RecordingSpeechProvider, create_lesson, create_test_db


@pytest.fixture
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    return create_test_db()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite://",
        media_root=str(tmp_path / "media"),
        speech_provider="stub",
        job_backoff_scale=0.0,
        queue_poll_interval_seconds=0.05,
    )


@pytest.fixture
def ffmpeg_tools():
    return FakeFFmpegTools()


@pytest.fixture
def speech_provider():
    return RecordingSpeechProvider()


@pytest.fixture
def pipeline(settings, session_factory, ffmpeg_tools, speech_provider):
    """All services wired against the in-memory database; workers are not started."""
    return build_pipeline(
        settings,
        session_factory=session_factory,
        speech_provider=speech_provider,
        tools=ffmpeg_tools,
    )


@pytest.fixture
def lesson(session_factory):
    return create_lesson(session_factory)


@pytest.fixture
def source_video(tmp_path):
    path = tmp_path / "upload" / "lecture.mp4"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"\x00" * 2048)
    return path
