import asyncio
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from packages.common.errors import ExtractionError, InvalidStateError, NotFoundError, ValidationError
from packages.common.models import Document, DocumentFeedback, DocumentItem, ItemSuggestion
from packages.common.schemas.document import DocumentConfirmation, DocumentType, ItemConfirmation, ItemKind
from packages.domain.classification.lexicon import lexicon_repository
from packages.domain.documents.pipeline import item_kind_for
from packages.domain.mapping.reconciler import FeedbackReconciler


async def count(sessions, model, document_id=None):
    async with sessions.session() as db:
        query = select(func.count()).select_from(model)
        if document_id is not None and hasattr(model, "document_id"):
            query = query.where(model.document_id == document_id)
        return await db.scalar(query)


async def wait_for_ocr(pipeline, document_id):
    for _ in range(200):
        if document_id in pipeline._inflight:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("OCR never started")


async def test_fuel_receipt_end_to_end(pipeline, upload, sessions):
    document = await upload()
    assert document.status == "uploaded"

    processed = await pipeline.process(document.id)

    assert processed.status == "awaiting_validation"
    assert processed.item_kind == "cost"
    assert processed.ocr_confidence == pytest.approx(0.92)
    assert processed.suggested_summary["document_type"] == "saida"
    assert processed.suggested_summary["statistics"]["total_items"] == 1

    async with sessions.session() as db:
        item = await db.scalar(select(DocumentItem).where(DocumentItem.document_id == document.id))
        feedback = await db.scalar(select(DocumentFeedback).where(DocumentFeedback.document_id == document.id))

    assert item.original_description == "Compra de combustível"
    assert (item.suggested_code, item.suggested_name, item.suggestion_confidence) == (
        "613", "Combustíveis e Lubrificantes", 41,
    )
    assert feedback.suggested_type == "saida"

    confirmation = DocumentConfirmation(
        document_type=DocumentType.SAIDA,
        items=[ItemConfirmation(item_id=item.id, account_code="625")],
    )
    async with sessions.session() as db:
        validated = await FeedbackReconciler().confirm_document(db, document.id, confirmation, "user-2")
    assert validated.status == "validated"

    async with sessions.session() as db:
        item = await db.get(DocumentItem, item.id)
        first = await db.scalar(select(ItemSuggestion).where(
            ItemSuggestion.item_id == item.id, ItemSuggestion.version == 1,
        ))

    assert item.confirmed_code == "625"
    assert item.adjusted_by_user is True
    assert item.suggested_code == "613"
    assert first.account_code == "613"
    assert first.confidence == 41


async def test_explicit_item_kind_wins(pipeline, upload, sessions, fake_ocr):
    fake_ocr.text = "Venda de milho 120.000,00 Kz"
    document = await upload(item_kind="revenue")

    processed = await pipeline.process(document.id)

    assert processed.item_kind == "revenue"
    async with sessions.session() as db:
        item = await db.scalar(select(DocumentItem).where(DocumentItem.document_id == document.id))
    assert item.suggested_code.startswith("7")


async def test_ocr_failure_moves_to_error(pipeline, upload, sessions, fake_ocr):
    fake_ocr.error = RuntimeError("tesseract crashed")
    document = await upload()

    failed = await pipeline.process(document.id)

    assert failed.status == "error"
    assert failed.error_reason == "extraction_failed"
    assert "tesseract crashed" in failed.error_detail
    assert failed.retry_count == 1
    assert await count(sessions, DocumentItem, document.id) == 0


async def test_extraction_error_passes_through(pipeline, upload, fake_ocr):
    fake_ocr.error = ExtractionError("Unsupported file type: image/gif")
    document = await upload()

    failed = await pipeline.process(document.id)

    assert failed.error_reason == "extraction_failed"
    assert failed.error_detail == "Unsupported file type: image/gif"


async def test_ocr_timeout(pipeline, upload, fake_ocr):
    fake_ocr.delay = 5
    pipeline.ocr_timeout = 0.05
    document = await upload()

    failed = await pipeline.process(document.id)

    assert failed.status == "error"
    assert failed.error_reason == "cancelled"
    assert failed.error_detail.startswith("timeout")
    assert failed.retry_count == 1
    assert document.id not in pipeline._inflight


async def test_no_line_items_keeps_text(pipeline, upload, sessions, fake_ocr):
    fake_ocr.text = "TOTAL 100,00\nIVA 14,00"
    document = await upload()

    failed = await pipeline.process(document.id)

    assert failed.error_reason == "no_line_items"
    assert failed.extracted_text == "TOTAL 100,00\nIVA 14,00"
    assert await count(sessions, DocumentItem, document.id) == 0


async def test_local_cancel(pipeline, upload, fake_ocr):
    fake_ocr.delay = 5
    document = await upload()

    task = asyncio.create_task(pipeline.process(document.id))
    await wait_for_ocr(pipeline, document.id)
    assert await pipeline.cancel(document.id) is True

    failed = await task
    assert failed.status == "error"
    assert failed.error_reason == "cancelled"


async def test_outer_cancellation_records_error(pipeline, upload, sessions, fake_ocr):
    fake_ocr.delay = 5
    document = await upload()

    task = asyncio.create_task(pipeline.process(document.id))
    await wait_for_ocr(pipeline, document.id)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    async with sessions.session() as db:
        stored = await db.get(Document, document.id)
    assert stored.status == "error"
    assert stored.error_reason == "cancelled"


async def test_cancel_without_local_task(pipeline, upload, sessions):
    document = await upload()
    async with sessions.session() as db:
        stored = await db.get(Document, document.id)
        stored.status = "processing"

    assert await pipeline.cancel(document.id) is True

    async with sessions.session() as db:
        stored = await db.get(Document, document.id)
    assert stored.error_reason == "cancelled"

    with pytest.raises(InvalidStateError):
        await pipeline.cancel(document.id)


async def test_retry_replaces_previous_results(pipeline, upload, sessions):
    document = await upload()
    await pipeline.process(document.id)
    async with sessions.session() as db:
        first_item = await db.scalar(select(DocumentItem.id).where(DocumentItem.document_id == document.id))

    rejected = await pipeline.reject(document.id, "wrong receipt", "user-2")
    assert rejected.error_reason == "rejected"
    assert rejected.retry_count == 0

    retried = await pipeline.retry(document.id)

    assert retried.status == "awaiting_validation"
    async with sessions.session() as db:
        items = (await db.execute(
            select(DocumentItem.id).where(DocumentItem.document_id == document.id)
        )).scalars().all()
    assert len(items) == 1
    assert items[0] != first_item
    assert await count(sessions, ItemSuggestion) == 1
    assert await count(sessions, DocumentFeedback, document.id) == 1


async def test_retries_exhausted(pipeline, upload, fake_ocr):
    fake_ocr.error = RuntimeError("unreadable scan")
    document = await upload()

    failed = await pipeline.process(document.id)
    while failed.retry_count < 3:
        failed = await pipeline.retry(document.id)

    assert failed.status == "error"
    with pytest.raises(InvalidStateError):
        await pipeline.retry(document.id)
    assert fake_ocr.calls == 3


async def test_process_requires_uploaded_or_error(pipeline, upload):
    document = await upload()
    await pipeline.process(document.id)

    with pytest.raises(InvalidStateError):
        await pipeline.process(document.id)
    with pytest.raises(InvalidStateError):
        await pipeline.retry(document.id)
    with pytest.raises(NotFoundError):
        await pipeline.process(uuid.uuid4())


@pytest.mark.parametrize("kwargs", [
    {"filename": " "},
    {"mime_type": "text/plain"},
    {"content": b""},
    {"item_kind": "liability"},
])
async def test_upload_validation(upload, kwargs):
    with pytest.raises(ValidationError):
        await upload(**kwargs)


async def test_upload_size_limit(upload, monkeypatch):
    from packages.common.config import settings

    monkeypatch.setattr(settings, "max_upload_bytes", 4)
    with pytest.raises(ValidationError):
        await upload(content=b"12345")


def test_item_kind_for_document_type():
    assert item_kind_for(DocumentType.ENTRADA) == ItemKind.REVENUE
    assert item_kind_for(DocumentType.SAIDA) == ItemKind.COST
    assert item_kind_for(DocumentType.CONTRATO) == ItemKind.COST
    assert item_kind_for(DocumentType.ENTRADA, "asset") == ItemKind.ASSET


async def test_database_failure_while_classifying_moves_to_error(pipeline, upload, monkeypatch):
    async def locked(db, capacity=None):
        raise OperationalError("SELECT lexicon", {}, Exception("database is locked"))

    monkeypatch.setattr(lexicon_repository, "load", locked)
    document = await upload()

    failed = await pipeline.process(document.id)

    assert failed.status == "error"
    assert failed.error_reason == "classification_failed"
    assert "database is locked" in failed.error_detail
    assert failed.retry_count == 1
    assert failed.extracted_text == "Compra de combustível 5000 AOA"


async def test_unexpected_failure_is_recorded_then_raised(pipeline, upload, sessions, monkeypatch):
    async def disk_full(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(pipeline, "_complete", disk_full)
    document = await upload()

    with pytest.raises(RuntimeError):
        await pipeline.process(document.id)

    async with sessions.session() as db:
        stored = await db.get(Document, document.id)
    assert stored.status == "error"
    assert stored.error_reason == "classification_failed"
    assert stored.error_detail == "RuntimeError: disk full"
    assert stored.retry_count == 1

    monkeypatch.undo()
    retried = await pipeline.retry(document.id)
    assert retried.status == "awaiting_validation"


async def test_ocr_setup_failure_is_an_extraction_failure(pipeline, upload, sessions, monkeypatch):
    from packages.parsers.ocr import factory

    def missing_binary():
        raise FileNotFoundError("tesseract not installed")

    monkeypatch.setattr(factory, "get_ocr_provider", missing_binary)
    pipeline._ocr = None
    document = await upload()

    with pytest.raises(FileNotFoundError):
        await pipeline.process(document.id)

    async with sessions.session() as db:
        stored = await db.get(Document, document.id)
    assert stored.status == "error"
    assert stored.error_reason == "extraction_failed"


async def test_stale_attempt_cannot_overwrite_retry(upload, make_pipeline, sessions):
    document = await upload()
    first = make_pipeline(error=RuntimeError("scanner jammed"), delay=0.3)
    api = make_pipeline()
    second = make_pipeline(delay=0.8)

    stale = asyncio.create_task(first.process(document.id))
    await wait_for_ocr(first, document.id)

    # No local OCR task in this pipeline, so the cancel goes through the database
    assert await api.cancel(document.id) is True
    retry = asyncio.create_task(second.retry(document.id))

    await stale
    retried = await retry

    assert retried.status == "awaiting_validation"
    assert retried.retry_count == 1
    async with sessions.session() as db:
        stored = await db.get(Document, document.id)
    assert stored.status == "awaiting_validation"
    assert stored.error_reason is None
    assert await count(sessions, DocumentItem, document.id) == 1
