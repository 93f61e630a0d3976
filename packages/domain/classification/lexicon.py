"""
Learned account lexicon

Tokens from user-confirmed corrections are added to the confirmed account's
lexicon so later classifications of similar descriptions score higher. Each
account keeps at most `capacity` tokens; the least recently touched token is
evicted first. Merges are per (account, token) upserts, so concurrent writers
never need a lock beyond the row they touch.
"""
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common.config import settings
from packages.common.models import LexiconEntry

logger = structlog.get_logger()


class BoundedLexicon:
    """In-memory per-account token sets with oldest-first eviction"""

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = capacity or settings.lexicon_capacity
        self._entries: Dict[str, "OrderedDict[str, None]"] = {}

    def merge(self, account_code: str, tokens: Iterable[str]) -> List[str]:
        """
        Add tokens to an account, refreshing ones already present.

        Returns:
            Tokens evicted to stay within capacity
        """
        entries = self._entries.setdefault(account_code, OrderedDict())
        for token in tokens:
            if token in entries:
                entries.move_to_end(token)
            else:
                entries[token] = None

        evicted = []
        while len(entries) > self.capacity:
            token, _ = entries.popitem(last=False)
            evicted.append(token)
        return evicted

    def tokens(self, account_code: str) -> FrozenSet[str]:
        return frozenset(self._entries.get(account_code, ()))

    def snapshot(self) -> Mapping[str, FrozenSet[str]]:
        return {code: frozenset(entries) for code, entries in self._entries.items()}

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())


class LexiconRepository:
    """Persistence for pgc_lexicon_entries"""

    async def load(self, db: AsyncSession, capacity: Optional[int] = None) -> BoundedLexicon:
        lexicon = BoundedLexicon(capacity)
        result = await db.execute(
            select(LexiconEntry.account_code, LexiconEntry.token)
            .order_by(LexiconEntry.touched_at, LexiconEntry.id)
        )
        for account_code, token in result.all():
            lexicon.merge(account_code, (token,))
        return lexicon

    async def merge(
        self,
        db: AsyncSession,
        account_code: str,
        tokens: Iterable[str],
        capacity: Optional[int] = None,
    ) -> int:
        """
        Upsert tokens for an account and evict the oldest beyond capacity.

        Returns:
            Number of tokens evicted
        """
        capacity = capacity or settings.lexicon_capacity
        now = datetime.now(timezone.utc)

        for token in dict.fromkeys(tokens):
            existing = await db.scalar(
                select(LexiconEntry).where(
                    LexiconEntry.account_code == account_code,
                    LexiconEntry.token == token,
                )
            )
            if existing is not None:
                existing.touched_at = now
                continue
            try:
                async with db.begin_nested():
                    db.add(LexiconEntry(account_code=account_code, token=token, touched_at=now))
            except IntegrityError:
                # Another writer inserted the same token; the union is unchanged
                logger.debug("lexicon_token_exists", account_code=account_code, token=token)

        await db.flush()

        total = await db.scalar(
            select(func.count()).select_from(LexiconEntry).where(LexiconEntry.account_code == account_code)
        )
        overflow = (total or 0) - capacity
        if overflow <= 0:
            return 0

        oldest = (await db.execute(
            select(LexiconEntry.id)
            .where(LexiconEntry.account_code == account_code)
            .order_by(LexiconEntry.touched_at, LexiconEntry.id)
            .limit(overflow)
        )).scalars().all()
        await db.execute(delete(LexiconEntry).where(LexiconEntry.id.in_(oldest)))
        logger.info("lexicon_evicted", account_code=account_code, evicted=len(oldest))
        return len(oldest)


lexicon_repository = LexiconRepository()
