"""
Celery worker for document processing

One queue, `documents`. The API enqueues by task name (apps/api/tasks.py) and
never imports this module. Time limits follow the OCR timeout so a stuck
Tesseract run is reported by the pipeline before Celery kills the worker.
"""
from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown
import structlog

from packages.common.config import get_settings
from packages.common.log_config import configure_logging

configure_logging()

logger = structlog.get_logger()
settings = get_settings()

DOCUMENT_QUEUE = "documents"

# Classification and the final commit run after OCR; give them room
SOFT_LIMIT_SECONDS = int(settings.ocr_timeout_seconds) + 120
HARD_LIMIT_SECONDS = SOFT_LIMIT_SECONDS + 60

app = Celery(
    "financepro_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Africa/Luanda",
    enable_utc=True,

    # Redelivery after a killed worker finds the document still in processing and
    # is skipped; cancel moves it to error so it can be retried
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_soft_time_limit=SOFT_LIMIT_SECONDS,
    task_time_limit=HARD_LIMIT_SECONDS,

    result_expires=24 * 3600,

    # Tesseract is CPU bound: one document per worker process at a time
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,

    task_default_queue=DOCUMENT_QUEUE,
    task_routes={
        "services.worker.tasks.process_document.*": {"queue": DOCUMENT_QUEUE},
    },
)

# Registers the tasks on `app`
from services.worker.tasks import process_document  # noqa: E402,F401


@worker_process_init.connect
def init_worker(**kwargs):
    # No engine here: each task opens one on its own event loop
    logger.info("document_worker_started",
                environment=settings.environment,
                queue=DOCUMENT_QUEUE,
                max_retries=settings.max_processing_retries,
                ocr_timeout_seconds=settings.ocr_timeout_seconds)


@worker_process_shutdown.connect
def shutdown_worker(**kwargs):
    logger.info("document_worker_stopped")


if __name__ == "__main__":
    app.start()
