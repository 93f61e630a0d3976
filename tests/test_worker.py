import uuid

import pytest

from services.worker.tasks import process_document


@pytest.mark.parametrize("outcome,expected", [
    ({"status": "error", "error_reason": "extraction_failed", "retry_count": 1}, True),
    ({"status": "error", "error_reason": "cancelled", "error_detail": "timeout: OCR exceeded 120s", "retry_count": 2}, True),
    ({"status": "error", "error_reason": "cancelled", "error_detail": "timeout: OCR exceeded 120s", "retry_count": 3}, False),
    ({"status": "error", "error_reason": "cancelled", "error_detail": "Processing cancelled", "retry_count": 1}, False),
    ({"status": "error", "error_reason": "no_line_items", "retry_count": 1}, False),
    ({"status": "awaiting_validation", "error_reason": None, "retry_count": 0}, False),
    ({"success": False, "status": None, "error": "not_found"}, False),
])
def test_should_retry(outcome, expected):
    assert process_document.should_retry(outcome) is expected


async def test_run_pipeline_reports_outcome(monkeypatch, sessions, pipeline, upload):
    document = await upload()
    monkeypatch.setattr(process_document, "sessionmanager", sessions)
    monkeypatch.setattr(process_document, "document_pipeline", pipeline)

    outcome = await process_document.run_pipeline(str(document.id))

    assert outcome == {
        "success": True,
        "document_id": str(document.id),
        "status": "awaiting_validation",
        "error_reason": None,
        "error_detail": None,
        "retry_count": 0,
    }


async def test_run_pipeline_skips_unknown_document(monkeypatch, sessions, pipeline):
    monkeypatch.setattr(process_document, "sessionmanager", sessions)
    monkeypatch.setattr(process_document, "document_pipeline", pipeline)

    outcome = await process_document.run_pipeline(str(uuid.uuid4()))

    assert outcome["success"] is False
    assert outcome["error"] == "not_found"
