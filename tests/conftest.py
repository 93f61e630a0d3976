import asyncio
import uuid
from decimal import Decimal
from typing import Optional

import pytest

from packages.common.database import DatabaseSessionManager
from packages.common.schemas.mapping import BudgetItem
from packages.common.storage import LocalBlobStorage
from packages.domain.classification.catalog import catalog_repository, seed_snapshot
from packages.domain.documents.pipeline import DocumentPipeline
from packages.parsers.ocr.base import OcrResult

FUEL_RECEIPT = "Compra de combustível 5000 AOA"


class FakeOcr:
    """OCR collaborator double: returns fixed text, raises, or stalls"""

    def __init__(self, text: str = FUEL_RECEIPT, confidence: float = 0.92,
                 error: Optional[Exception] = None, delay: float = 0.0):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.delay = delay
        self.calls = 0

    async def extract(self, content: bytes, mime_type: str) -> OcrResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return OcrResult(text=self.text, confidence=self.confidence, page_count=1, method="fake")


@pytest.fixture
def catalog():
    return seed_snapshot()


@pytest.fixture
async def sessions(tmp_path):
    manager = DatabaseSessionManager()
    await manager.init(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}")
    await manager.create_all()
    async with manager.session() as db:
        await catalog_repository.seed(db)
    yield manager
    await manager.close()


@pytest.fixture
def blob_storage(tmp_path):
    return LocalBlobStorage(str(tmp_path / "blobs"))


@pytest.fixture
def fake_ocr():
    return FakeOcr()


@pytest.fixture
def pipeline(sessions, blob_storage, fake_ocr):
    return DocumentPipeline(
        sessions=sessions,
        ocr=fake_ocr,
        blob_storage=blob_storage,
        ocr_timeout=5,
    )


@pytest.fixture
def make_pipeline(sessions, blob_storage):
    """Extra pipelines sharing the database and storage, each with its own OCR double"""

    def _make(**ocr_kwargs):
        return DocumentPipeline(
            sessions=sessions,
            ocr=FakeOcr(**ocr_kwargs),
            blob_storage=blob_storage,
            ocr_timeout=5,
        )

    return _make


@pytest.fixture
def upload(pipeline):
    """Upload a small PNG on behalf of a test user"""

    async def _upload(**kwargs):
        params = {
            "filename": "recibo.png",
            "mime_type": "image/png",
            "content": b"\x89PNG fake image bytes",
            "uploaded_by": "user-1",
        }
        params.update(kwargs)
        return await pipeline.upload(**params)

    return _upload


@pytest.fixture
def budget_item():
    """Build a BudgetItem with a fresh item id"""

    def _budget_item(description: str, kind: str = "cost", amount: Optional[str] = None, **kwargs):
        return BudgetItem(
            item_id=kwargs.pop("item_id", uuid.uuid4()),
            kind=kind,
            description=description,
            amount=Decimal(amount) if amount is not None else None,
            **kwargs,
        )

    return _budget_item
