"""
SQLAlchemy ORM models.

Flat tables with explicit foreign keys. Column types are portable so the same
models run on PostgreSQL (asyncpg) and SQLite (aiosqlite).
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from packages.common.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ────────────────────────────────────────────────────────────
# CATALOG
# ────────────────────────────────────────────────────────────
class PgcAccount(Base):
    __tablename__ = "pgc_accounts"

    code: Mapped[str] = mapped_column(String(20), primary_key=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    account_class: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    account_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)  # debit, credit
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    subcategory: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="validada")
    keywords: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class LexiconEntry(Base):
    """Token learned for an account from user corrections"""
    __tablename__ = "pgc_lexicon_entries"
    __table_args__ = (
        UniqueConstraint("account_code", "token", name="uq_lexicon_account_token"),
        Index("idx_lexicon_account_touched", "account_code", "touched_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_code: Mapped[str] = mapped_column(String(20), nullable=False)
    token: Mapped[str] = mapped_column(String(100), nullable=False)
    touched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ────────────────────────────────────────────────────────────
# DOCUMENTS
# ────────────────────────────────────────────────────────────
class Document(Base):
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    uploaded_by: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="uploaded", index=True)
    error_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    error_detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Token of the processing attempt that owns the document; stale attempts may not write
    attempt_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    item_kind: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    ocr_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    suggested_summary: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    risk_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    items: Mapped[List["DocumentItem"]] = relationship(
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentItem.line_number",
    )
    feedback: Mapped[Optional["DocumentFeedback"]] = relationship(
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )


class DocumentItem(Base):
    __tablename__ = "document_items"
    __table_args__ = (
        Index("idx_document_items_document", "document_id", "line_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    original_description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)

    # Written once by the classifier
    suggested_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    suggested_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    suggestion_confidence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    requires_manual_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Written by the reconciler
    confirmed_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    confirmed_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    confirmed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    adjusted_by_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    suggestions: Mapped[List["ItemSuggestion"]] = relationship(
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ItemSuggestion.version",
    )


class ItemSuggestion(Base):
    """Versioned classifier output for an item (v1 mirrors the item's suggested fields)"""
    __tablename__ = "document_item_suggestions"
    __table_args__ = (
        UniqueConstraint("item_id", "version", name="uq_item_suggestion_version"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("document_items.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    account_code: Mapped[str] = mapped_column(String(20), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    requires_manual_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    candidates: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class DocumentFeedback(Base):
    __tablename__ = "document_feedbacks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    suggested_type: Mapped[str] = mapped_column(String(20), nullable=False)
    confirmed_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    classification_confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    confirmed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ────────────────────────────────────────────────────────────
# BUDGET MAPPINGS
# ────────────────────────────────────────────────────────────
class PgcMapping(Base):
    __tablename__ = "pgc_mappings"
    __table_args__ = (
        UniqueConstraint("budget_id", "item_kind", "item_id", name="uq_pgc_mapping_item"),
        Index("idx_pgc_mappings_budget", "budget_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    budget_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    item_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    item_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    original_description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    account_code: Mapped[str] = mapped_column(String(20), nullable=False)  # weak reference to pgc_accounts
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    custom_category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    adjusted_by_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_manual_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    original_mapping: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    pending_candidate: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    confirmed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


# ────────────────────────────────────────────────────────────
# LEARNING SIGNALS
# ────────────────────────────────────────────────────────────
class ReconciliationMarker(Base):
    """Set once a confirmation has fed the learning signal"""
    __tablename__ = "reconciliation_markers"
    __table_args__ = (
        UniqueConstraint("record_kind", "record_id", "account_code", name="uq_reconciliation_record"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_kind: Mapped[str] = mapped_column(String(30), nullable=False)  # document_item, pgc_mapping, document_feedback
    record_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    account_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class DocumentTypeTerm(Base):
    __tablename__ = "document_type_terms"
    __table_args__ = (
        UniqueConstraint("document_type", "token", name="uq_document_type_term"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_type: Mapped[str] = mapped_column(String(20), nullable=False)
    token: Mapped[str] = mapped_column(String(100), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class DocumentTypeTotal(Base):
    __tablename__ = "document_type_totals"

    document_type: Mapped[str] = mapped_column(String(20), primary_key=True)
    docs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
