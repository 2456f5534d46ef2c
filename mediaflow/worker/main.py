import signal
import threading

import structlog

from mediaflow.bootstrap import build_pipeline
from mediaflow.core.config import get_settings
from mediaflow.core.logging import configure_logging
from mediaflow.telemetry import configure_worker_telemetry

logger = structlog.get_logger(__name__)


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, json=settings.log_json)
    configure_worker_telemetry(settings)

    pipeline = build_pipeline(settings)
    stop = threading.Event()

    def _shutdown(signum, _frame):
        logger.info("worker.shutdown_requested", signal=signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    logger.info("worker.start", env=settings.app_env, database=settings.database_url.split("://", 1)[0])
    pipeline.start()
    try:
        while not stop.wait(timeout=60):
            stats = pipeline.job_queue.get_queue_statistics()
            logger.info("worker.queue_stats", **{name: s.model_dump() for name, s in stats.items()})
    finally:
        pipeline.stop(timeout=30)
        logger.info("worker.stopped")


if __name__ == "__main__":
    main()
