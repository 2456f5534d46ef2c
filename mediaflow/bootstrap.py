"""Wires the store, engine, queues, workflow service and upload orchestrator together."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from .core.config import Settings
from .db.session import build_session_factory, engine_from_settings, init_db
from .services.ffmpeg_tools import FFmpegTools
from .services.job_handlers import MediaJobHandlers
from .services.job_queue import JobQueueManager, policies_from_settings
from .services.media_processing import MediaProcessingEngine
from .services.speech import SpeechToTextProvider, build_speech_provider
from .services.uploads import UploadOrchestrator
from .services.workflow import ContentWorkflowService


@dataclass
class MediaPipeline:
    settings: Settings
    session_factory: sessionmaker[Session]
    media: MediaProcessingEngine
    handlers: MediaJobHandlers
    job_queue: JobQueueManager
    workflows: ContentWorkflowService
    uploads: UploadOrchestrator
    db_engine: Engine | None = None

    def start(self) -> None:
        self.job_queue.start()

    def stop(self, timeout: float | None = None) -> None:
        self.job_queue.stop(wait=True, timeout=timeout)


def build_pipeline(
    settings: Settings,
    *,
    session_factory: sessionmaker[Session] | None = None,
    speech_provider: SpeechToTextProvider | None = None,
    tools: FFmpegTools | None = None,
) -> MediaPipeline:
    """Build every service for ``settings``; tables are created when no session factory is given."""

    db_engine = None
    if session_factory is None:
        db_engine = engine_from_settings(settings)
        init_db(db_engine)
        session_factory = build_session_factory(db_engine)

    media = MediaProcessingEngine(
        session_factory,
        settings,
        speech_provider or build_speech_provider(settings),
        tools=tools,
    )
    handlers = MediaJobHandlers(session_factory, media)
    job_queue = JobQueueManager(
        session_factory,
        handlers.registry(),
        policies_from_settings(settings),
        poll_interval=settings.queue_poll_interval_seconds,
        backoff_scale=settings.job_backoff_scale,
        on_finished=handlers.job_finished,
        stall_timeout=settings.job_stall_timeout_seconds,
    )
    workflows = ContentWorkflowService(session_factory)
    uploads = UploadOrchestrator(session_factory, job_queue, workflows)
    return MediaPipeline(
        settings=settings,
        session_factory=session_factory,
        media=media,
        handlers=handlers,
        job_queue=job_queue,
        workflows=workflows,
        uploads=uploads,
        db_engine=db_engine,
    )
