import pytest
from sqlalchemy import update

from packages.common.errors import ClassificationError, ValidationError
from packages.common.models import PgcAccount
from packages.common.schemas.document import ItemKind
from packages.domain.classification.catalog import PGC_SEED, catalog_repository


def test_seed_snapshot_covers_every_seed(catalog):
    assert len(catalog) == len(PGC_SEED)
    assert catalog.get("613").account_class == 6
    assert "gasoleo" in catalog.get("613").tokens


def test_require_rejects_unknown_code(catalog):
    assert catalog.require("625").description == "Deslocações, Estadas e Transportes"
    with pytest.raises(ValidationError):
        catalog.require("999")


def test_kind_compatibility(catalog):
    assert catalog.is_compatible("613", ItemKind.COST)
    assert not catalog.is_compatible("613", ItemKind.REVENUE)
    assert catalog.is_compatible("711", ItemKind.REVENUE)
    assert catalog.is_compatible("114", ItemKind.ASSET)
    assert not catalog.is_compatible("999", ItemKind.COST)
    assert {a.account_class for a in catalog.for_kind(ItemKind.ASSET)} == {1}


def test_fallback_accounts_present(catalog):
    assert catalog.fallback_for(ItemKind.COST).code == "69"
    assert catalog.fallback_for(ItemKind.REVENUE).code == "79"
    assert catalog.fallback_for(ItemKind.ASSET).code == "11"


async def test_load_skips_accounts_in_error(sessions):
    async with sessions.session() as db:
        await db.execute(update(PgcAccount).where(PgcAccount.code == "626").values(status="erro"))

    async with sessions.session() as db:
        snapshot = await catalog_repository.load(db)

    assert snapshot.get("626") is None
    assert snapshot.get("613") is not None


async def test_load_empty_catalog_raises(tmp_path):
    from packages.common.database import DatabaseSessionManager

    manager = DatabaseSessionManager()
    await manager.init(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    await manager.create_all()
    try:
        async with manager.session() as db:
            with pytest.raises(ClassificationError):
                await catalog_repository.load(db)
    finally:
        await manager.close()


async def test_seed_is_idempotent(sessions):
    async with sessions.session() as db:
        assert await catalog_repository.seed(db) == 0


async def test_list_accounts_filters(sessions):
    async with sessions.session() as db:
        class_seven = await catalog_repository.list_accounts(db, account_class=7)
        by_prefix = await catalog_repository.list_accounts(db, search="62")
        by_word = await catalog_repository.list_accounts(db, search="Gasóleo")

    assert class_seven and all(a.account_class == 7 for a in class_seven)
    assert {a.code for a in by_prefix} >= {"62", "621", "622", "626"}
    assert [a.code for a in by_word] == ["613"]
