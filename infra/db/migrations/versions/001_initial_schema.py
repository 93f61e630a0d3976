"""Initial schema for the classification and mapping engine

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Chart of accounts (PGC)
    op.create_table(
        'pgc_accounts',
        sa.Column('code', sa.String(20), primary_key=True),
        sa.Column('description', sa.String(255), nullable=False),
        sa.Column('account_class', sa.Integer, nullable=False),
        sa.Column('account_type', sa.String(10)),  # debit, credit
        sa.Column('category', sa.String(100)),
        sa.Column('subcategory', sa.String(100)),
        sa.Column('status', sa.String(20), nullable=False, server_default='validada'),  # pendente, validada, erro, revisao
        sa.Column('keywords', sa.JSON, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_pgc_accounts_account_class', 'pgc_accounts', ['account_class'])

    op.create_table(
        'pgc_lexicon_entries',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('account_code', sa.String(20), nullable=False),
        sa.Column('token', sa.String(100), nullable=False),
        sa.Column('touched_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('account_code', 'token', name='uq_lexicon_account_token'),
    )
    op.create_index('idx_lexicon_account_touched', 'pgc_lexicon_entries', ['account_code', 'touched_at'])

    # Documents
    op.create_table(
        'documents',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('filename', sa.String(255), nullable=False),
        sa.Column('storage_path', sa.Text, nullable=False),
        sa.Column('mime_type', sa.String(100), nullable=False),
        sa.Column('size_bytes', sa.Integer, nullable=False),
        sa.Column('uploaded_by', sa.String(100), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='uploaded'),
        sa.Column('error_reason', sa.String(50)),
        sa.Column('error_detail', sa.Text),
        sa.Column('retry_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('attempt_id', sa.Uuid),
        sa.Column('item_kind', sa.String(20)),
        sa.Column('ocr_confidence', sa.Float),
        sa.Column('extracted_text', sa.Text),
        sa.Column('suggested_summary', sa.JSON),
        sa.Column('processed_at', sa.DateTime(timezone=True)),
        sa.Column('risk_id', sa.String(100)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('uploaded', 'processing', 'awaiting_validation', 'validated', 'error')",
            name='ck_documents_status',
        ),
    )
    op.create_index('ix_documents_status', 'documents', ['status'])

    op.create_table(
        'document_items',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('document_id', sa.Uuid, sa.ForeignKey('documents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('line_number', sa.Integer, nullable=False),
        sa.Column('original_description', sa.Text, nullable=False),
        sa.Column('amount', sa.Numeric(18, 2)),
        sa.Column('suggested_code', sa.String(20)),
        sa.Column('suggested_name', sa.String(255)),
        sa.Column('suggestion_confidence', sa.Integer),
        sa.Column('requires_manual_review', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('confirmed_code', sa.String(20)),
        sa.Column('confirmed_name', sa.String(255)),
        sa.Column('confirmed_by', sa.String(100)),
        sa.Column('confirmed_at', sa.DateTime(timezone=True)),
        sa.Column('adjusted_by_user', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            'suggestion_confidence IS NULL OR suggestion_confidence BETWEEN 0 AND 100',
            name='ck_document_items_confidence',
        ),
        sa.CheckConstraint(
            '(confirmed_code IS NULL) = (confirmed_name IS NULL)',
            name='ck_document_items_confirmed_pair',
        ),
    )
    op.create_index('idx_document_items_document', 'document_items', ['document_id', 'line_number'])

    op.create_table(
        'document_item_suggestions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('item_id', sa.Uuid, sa.ForeignKey('document_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('version', sa.Integer, nullable=False),
        sa.Column('account_code', sa.String(20), nullable=False),
        sa.Column('account_name', sa.String(255), nullable=False),
        sa.Column('confidence', sa.Integer, nullable=False),
        sa.Column('requires_manual_review', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('candidates', sa.JSON, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('item_id', 'version', name='uq_item_suggestion_version'),
    )

    op.create_table(
        'document_feedbacks',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('document_id', sa.Uuid, sa.ForeignKey('documents.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('suggested_type', sa.String(20), nullable=False),
        sa.Column('confirmed_type', sa.String(20)),
        sa.Column('classification_confidence', sa.Integer, nullable=False),
        sa.Column('confirmed_by', sa.String(100)),
        sa.Column('confirmed_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # Budget mappings
    op.create_table(
        'pgc_mappings',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('budget_id', sa.Uuid, nullable=False),
        sa.Column('item_kind', sa.String(20), nullable=False),  # revenue, cost, asset
        sa.Column('item_id', sa.Uuid, nullable=False),
        sa.Column('original_description', sa.Text, nullable=False),
        sa.Column('amount', sa.Numeric(18, 2)),
        sa.Column('account_code', sa.String(20), nullable=False),
        sa.Column('account_name', sa.String(255), nullable=False),
        sa.Column('confidence', sa.Integer, nullable=False),
        sa.Column('custom_category', sa.String(100)),
        sa.Column('adjusted_by_user', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('requires_manual_review', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('original_mapping', sa.JSON),
        sa.Column('pending_candidate', sa.JSON),
        sa.Column('confirmed_by', sa.String(100)),
        sa.Column('confirmed_at', sa.DateTime(timezone=True)),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('budget_id', 'item_kind', 'item_id', name='uq_pgc_mapping_item'),
        sa.CheckConstraint('confidence BETWEEN 0 AND 100', name='ck_pgc_mappings_confidence'),
    )
    op.create_index('idx_pgc_mappings_budget', 'pgc_mappings', ['budget_id'])

    # Learning signals
    op.create_table(
        'reconciliation_markers',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('record_kind', sa.String(30), nullable=False),  # document_item, pgc_mapping, document_feedback
        sa.Column('record_id', sa.Uuid, nullable=False),
        sa.Column('account_code', sa.String(20)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('record_kind', 'record_id', 'account_code', name='uq_reconciliation_record'),
    )

    op.create_table(
        'document_type_terms',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('document_type', sa.String(20), nullable=False),
        sa.Column('token', sa.String(100), nullable=False),
        sa.Column('count', sa.Integer, nullable=False, server_default='0'),
        sa.UniqueConstraint('document_type', 'token', name='uq_document_type_term'),
    )

    op.create_table(
        'document_type_totals',
        sa.Column('document_type', sa.String(20), primary_key=True),
        sa.Column('docs', sa.Integer, nullable=False, server_default='0'),
    )


def downgrade() -> None:
    op.drop_table('document_type_totals')
    op.drop_table('document_type_terms')
    op.drop_table('reconciliation_markers')
    op.drop_index('idx_pgc_mappings_budget', table_name='pgc_mappings')
    op.drop_table('pgc_mappings')
    op.drop_table('document_feedbacks')
    op.drop_table('document_item_suggestions')
    op.drop_index('idx_document_items_document', table_name='document_items')
    op.drop_table('document_items')
    op.drop_index('ix_documents_status', table_name='documents')
    op.drop_table('documents')
    op.drop_index('idx_lexicon_account_touched', table_name='pgc_lexicon_entries')
    op.drop_table('pgc_lexicon_entries')
    op.drop_index('ix_pgc_accounts_account_class', table_name='pgc_accounts')
    op.drop_table('pgc_accounts')
