"""Task queue wrappers - API sends task names, never imports worker code."""
from celery import Celery
from packages.common.config import get_settings

settings = get_settings()

celery_app = Celery('financepro')
celery_app.conf.broker_url = settings.celery_broker_url
celery_app.conf.result_backend = settings.celery_result_backend


def queue_document_processing(document_id: str) -> str:
    """Queue a document for OCR and classification."""
    task = celery_app.send_task(
        'services.worker.tasks.process_document.process_document_task',
        args=[document_id]
    )
    return task.id
