from sqlalchemy import func, select

from packages.common.models import LexiconEntry
from packages.domain.classification.lexicon import BoundedLexicon, lexicon_repository


def test_merge_is_a_union():
    lexicon = BoundedLexicon(capacity=10)
    lexicon.merge("625", ["compra", "combustivel"])
    lexicon.merge("625", ["combustivel", "frete"])

    assert lexicon.tokens("625") == frozenset({"compra", "combustivel", "frete"})
    assert len(lexicon) == 3


def test_oldest_token_evicted_first():
    lexicon = BoundedLexicon(capacity=3)
    lexicon.merge("613", ["a1", "b1", "c1"])
    lexicon.merge("613", ["a1"])  # refreshed, b1 is now the oldest

    evicted = lexicon.merge("613", ["d1"])

    assert evicted == ["b1"]
    assert lexicon.tokens("613") == frozenset({"a1", "c1", "d1"})


def test_snapshot_is_detached():
    lexicon = BoundedLexicon(capacity=5)
    lexicon.merge("622", ["consultor"])
    snapshot = lexicon.snapshot()
    lexicon.merge("622", ["fiscal"])

    assert snapshot["622"] == frozenset({"consultor"})


async def test_repository_merge_and_load(sessions):
    async with sessions.session() as db:
        assert await lexicon_repository.merge(db, "625", ["compra", "combustivel"], capacity=10) == 0
        assert await lexicon_repository.merge(db, "625", ["combustivel"], capacity=10) == 0

    async with sessions.session() as db:
        lexicon = await lexicon_repository.load(db, capacity=10)
        rows = await db.scalar(select(func.count()).select_from(LexiconEntry))

    assert lexicon.tokens("625") == frozenset({"compra", "combustivel"})
    assert rows == 2


async def test_repository_evicts_beyond_capacity(sessions):
    async with sessions.session() as db:
        await lexicon_repository.merge(db, "613", ["t1", "t2"], capacity=3)
    async with sessions.session() as db:
        evicted = await lexicon_repository.merge(db, "613", ["t3", "t4"], capacity=3)

    async with sessions.session() as db:
        tokens = set((await db.execute(
            select(LexiconEntry.token).where(LexiconEntry.account_code == "613")
        )).scalars())

    assert evicted == 1
    assert len(tokens) == 3
    assert {"t3", "t4"} <= tokens
