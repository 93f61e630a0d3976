import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from packages.common.errors import (
    ConflictError,
    InvalidStateError,
    ItemAlreadyConfirmedError,
    NotFoundError,
    ValidationError,
)
from packages.common.models import Document, DocumentItem, ItemSuggestion, PgcMapping
from packages.common.schemas.document import DocumentStatus, ItemKind
from packages.domain.classification.classifier import Classifier
from packages.domain.classification.normalizer import normalize
from packages.domain.mapping.mapping_store import MappingStore

store = MappingStore()
classifier = Classifier(max_candidates=5, min_confidence=30)


def classify(description, catalog, kind=ItemKind.COST, lexicon=None):
    return classifier.classify(normalize(description), kind, catalog, lexicon=lexicon)


@pytest.fixture
async def suggested_item(sessions, catalog):
    """Fuel purchase item on a document awaiting validation, suggested as 613"""
    document_id = uuid.uuid4()
    item_id = uuid.uuid4()
    async with sessions.session() as db:
        db.add(Document(
            id=document_id,
            filename="recibo.png",
            storage_path="2026/10/recibo.png",
            mime_type="image/png",
            size_bytes=10,
            uploaded_by="user-1",
            status=DocumentStatus.AWAITING_VALIDATION.value,
            retry_count=0,
        ))
        item = DocumentItem(
            id=item_id,
            document_id=document_id,
            line_number=1,
            original_description="Compra de combustível",
            amount=Decimal("5000.00"),
            adjusted_by_user=False,
            version=1,
        )
        db.add(item)
        await store.create_suggestion(db, item, classify("Compra de combustível", catalog))
    return item_id


async def test_create_suggestion_writes_top_candidate(sessions, suggested_item):
    async with sessions.session() as db:
        item = await db.get(DocumentItem, suggested_item)
        suggestion = await store.latest_suggestion(db, suggested_item)

    assert (item.suggested_code, item.suggestion_confidence) == ("613", 41)
    assert item.requires_manual_review is False
    assert suggestion.version == 1
    assert suggestion.account_code == "613"
    assert suggestion.candidates[0]["account_code"] == "613"


async def test_create_suggestion_only_once(sessions, suggested_item, catalog):
    async with sessions.session() as db:
        item = await db.get(DocumentItem, suggested_item)
        with pytest.raises(ConflictError):
            await store.create_suggestion(db, item, classify("frete", catalog))


async def test_reclassify_appends_version(sessions, suggested_item, catalog):
    lexicon = {"625": frozenset({"compra", "combustivel"})}
    async with sessions.session() as db:
        row = await store.reclassify(db, suggested_item, classify("Compra de combustível", catalog, lexicon=lexicon))

    async with sessions.session() as db:
        item = await db.get(DocumentItem, suggested_item)
        versions = (await db.execute(
            select(ItemSuggestion.version, ItemSuggestion.account_code)
            .where(ItemSuggestion.item_id == suggested_item)
            .order_by(ItemSuggestion.version)
        )).all()

    assert row.version == 2
    assert [tuple(v) for v in versions] == [(1, "613"), (2, "625")]
    # The item's own suggestion is the first one
    assert item.suggested_code == "613"


async def test_confirm_with_override_marks_adjusted(sessions, suggested_item, catalog):
    async with sessions.session() as db:
        item = await store.confirm(db, suggested_item, "625", "user-2", catalog)

    assert item.confirmed_code == "625"
    assert item.confirmed_name == "Deslocações, Estadas e Transportes"
    assert item.confirmed_by == "user-2"
    assert item.adjusted_by_user is True
    assert item.suggested_code == "613"
    assert item.version == 2


async def test_confirm_matching_suggestion_is_not_adjusted(sessions, suggested_item, catalog):
    async with sessions.session() as db:
        item = await store.confirm(db, suggested_item, "613", "user-2", catalog)
    assert item.adjusted_by_user is False


async def test_repeat_confirmation(sessions, suggested_item, catalog):
    async with sessions.session() as db:
        await store.confirm(db, suggested_item, "625", "user-2", catalog)

    async with sessions.session() as db:
        with pytest.raises(ItemAlreadyConfirmedError) as exc_info:
            await store.confirm(db, suggested_item, "625", "user-3", catalog)
    assert exc_info.value.item.confirmed_by == "user-2"

    async with sessions.session() as db:
        with pytest.raises(ConflictError):
            await store.confirm(db, suggested_item, "613", "user-3", catalog)


async def test_stale_confirmation_loses_compare_and_set(sessions, suggested_item, catalog):
    async with sessions.session() as late:
        stale = await late.get(DocumentItem, suggested_item)
        assert stale.confirmed_code is None

        async with sessions.session() as early:
            await store.confirm(early, suggested_item, "625", "user-a", catalog)

        with pytest.raises(ConflictError):
            await store.confirm(late, suggested_item, "613", "user-b", catalog)

    async with sessions.session() as db:
        item = await db.get(DocumentItem, suggested_item)
    assert (item.confirmed_code, item.confirmed_by, item.version) == ("625", "user-a", 2)


async def test_confirm_rejects_unknown_code(sessions, suggested_item, catalog):
    async with sessions.session() as db:
        with pytest.raises(ValidationError):
            await store.confirm(db, suggested_item, "999", "user-2", catalog)

    async with sessions.session() as db:
        item = await db.get(DocumentItem, suggested_item)
    assert item.confirmed_code is None
    assert item.version == 1


async def test_confirm_requires_awaiting_validation(sessions, suggested_item, catalog):
    async with sessions.session() as db:
        item = await db.get(DocumentItem, suggested_item)
        document = await db.get(Document, item.document_id)
        document.status = DocumentStatus.VALIDATED.value

    async with sessions.session() as db:
        with pytest.raises(InvalidStateError):
            await store.confirm(db, suggested_item, "613", "user-2", catalog)


async def test_confirm_unknown_item(sessions, catalog):
    async with sessions.session() as db:
        with pytest.raises(NotFoundError):
            await store.confirm(db, uuid.uuid4(), "613", "user-2", catalog)


# ---- Budget mappings ---------------------------------------------------------

async def test_mapping_snapshot_is_frozen(sessions, catalog, budget_item):
    budget_id = uuid.uuid4()
    item = budget_item("Compra de combustível", amount="5000")
    result = classify(item.description, catalog)

    async with sessions.session() as db:
        mapping = await store.create_mapping(db, budget_id, item, result)
        with pytest.raises(ConflictError):
            store.snapshot_original(mapping, result, item)
        with pytest.raises(ConflictError):
            await store.create_mapping(db, budget_id, item, result)

    assert mapping.original_mapping["account_code"] == "613"
    assert mapping.original_mapping["confidence"] == 41
    assert mapping.original_mapping["description"] == "Compra de combustível"


async def test_reclassify_untouched_mapping_updates_account(sessions, catalog, budget_item):
    item = budget_item("Compra de combustível")
    async with sessions.session() as db:
        mapping = await store.create_mapping(db, uuid.uuid4(), item, classify(item.description, catalog))

    lexicon = {"625": frozenset({"compra", "combustivel"})}
    async with sessions.session() as db:
        mapping = await store.reclassify_mapping(db, mapping.id, classify(item.description, catalog, lexicon=lexicon))

    assert mapping.account_code == "625"
    assert mapping.pending_candidate is None
    assert mapping.original_mapping["account_code"] == "613"


async def test_reclassify_adjusted_mapping_only_proposes(sessions, catalog, budget_item):
    item = budget_item("Compra de combustível")
    async with sessions.session() as db:
        mapping = await store.create_mapping(db, uuid.uuid4(), item, classify(item.description, catalog))
    async with sessions.session() as db:
        await store.confirm_mapping(db, mapping.id, "622", "user-1", catalog)

    lexicon = {"625": frozenset({"compra", "combustivel"})}
    async with sessions.session() as db:
        mapping = await store.reclassify_mapping(db, mapping.id, classify(item.description, catalog, lexicon=lexicon))

    assert mapping.account_code == "622"
    assert mapping.pending_candidate["account_code"] == "625"
    assert mapping.original_mapping["account_code"] == "613"

    # Accepting the pending candidate is the one allowed re-confirmation
    async with sessions.session() as db:
        mapping = await store.confirm_mapping(db, mapping.id, "625", "user-1", catalog)
    assert mapping.account_code == "625"
    assert mapping.pending_candidate is None


async def test_confirm_mapping(sessions, catalog, budget_item):
    item = budget_item("Compra de combustível")
    async with sessions.session() as db:
        mapping = await store.create_mapping(db, uuid.uuid4(), item, classify(item.description, catalog))

    async with sessions.session() as db:
        confirmed = await store.confirm_mapping(db, mapping.id, "613", "user-1", catalog)
    assert confirmed.confidence == 100
    assert confirmed.adjusted_by_user is False
    assert confirmed.confirmed_by == "user-1"

    async with sessions.session() as db:
        with pytest.raises(ItemAlreadyConfirmedError):
            await store.confirm_mapping(db, mapping.id, "613", "user-1", catalog)
        with pytest.raises(ConflictError):
            await store.confirm_mapping(db, mapping.id, "625", "user-1", catalog)

    async with sessions.session() as db:
        stored = await db.get(PgcMapping, mapping.id)
    assert stored.account_code == "613"
