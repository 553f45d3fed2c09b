"""create validation schema

Revision ID: 3f1c9a7b2d10
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f1c9a7b2d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'validation_sessions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('org_code', sa.String(), nullable=False),
        sa.Column('unit_code', sa.String(), nullable=False),
        sa.Column('namespace', sa.String(), nullable=False,
                  comment='Per-session token scoping document retrieval'),
        sa.Column('requirement_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('progress', sa.Float(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(), nullable=False, server_default='pending',
                  comment='pending, document_processing, validating_in_background, completed, failed'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('failed_requirement_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('source_session_id', sa.UUID(), nullable=True,
                  comment='Session this one was re-triggered from'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('namespace'),
        sa.ForeignKeyConstraint(['source_session_id'], ['validation_sessions.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_validation_sessions_unit_code', 'validation_sessions', ['unit_code'])

    op.create_table(
        'documents',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('session_id', sa.UUID(), nullable=False),
        sa.Column('storage_ref', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('indexing_operation_id', sa.String(), nullable=True),
        sa.Column('indexing_status', sa.String(), nullable=False, server_default='pending',
                  comment='pending, processing, completed, failed, timeout'),
        sa.Column('indexing_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['validation_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_documents_session_id', 'documents', ['session_id'])

    op.create_table(
        'requirements',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('unit_code', sa.String(), nullable=False),
        sa.Column('category', sa.String(), nullable=False),
        sa.Column('number', sa.String(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('element_text', sa.Text(), nullable=True),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('unit_code', 'category', 'number', name='uq_requirement_unit_category_number'),
    )
    op.create_index('ix_requirements_unit_code', 'requirements', ['unit_code'])

    op.create_table(
        'requirement_outcomes',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('session_id', sa.UUID(), nullable=False),
        sa.Column('category', sa.String(), nullable=False),
        sa.Column('requirement_number', sa.String(), nullable=False),
        sa.Column('namespace', sa.String(), nullable=False),
        sa.Column('requirement_text', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', sa.String(), nullable=False, comment='met, partially_met, not_met'),
        sa.Column('reasoning', sa.Text(), nullable=False, server_default=''),
        sa.Column('mapped_content', sa.Text(), nullable=False, server_default=''),
        sa.Column('unmapped_content', sa.Text(), nullable=False, server_default=''),
        sa.Column('citations', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('smart_questions', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('validation_error', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('parse_tier', sa.String(), nullable=False, server_default='strict'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['validation_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'category', 'requirement_number', 'namespace',
                            name='uq_outcome_session_requirement_namespace'),
    )
    op.create_index('ix_requirement_outcomes_session_id', 'requirement_outcomes', ['session_id'])

    op.create_table(
        'trigger_log',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('session_id', sa.UUID(), nullable=False),
        sa.Column('source', sa.String(), nullable=False, comment='auto, manual, poll'),
        sa.Column('succeeded', sa.Boolean(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('triggered_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['validation_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_trigger_log_session_id', 'trigger_log', ['session_id'])

    op.create_table(
        'outbox_events',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('session_id', sa.UUID(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column('status', sa.String(), nullable=False, server_default='pending',
                  comment='pending, published, failed'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('published_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['validation_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_outbox_events_status_created', 'outbox_events', ['status', 'created_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_outbox_events_status_created', table_name='outbox_events')
    op.drop_table('outbox_events')
    op.drop_index('ix_trigger_log_session_id', table_name='trigger_log')
    op.drop_table('trigger_log')
    op.drop_index('ix_requirement_outcomes_session_id', table_name='requirement_outcomes')
    op.drop_table('requirement_outcomes')
    op.drop_index('ix_requirements_unit_code', table_name='requirements')
    op.drop_table('requirements')
    op.drop_index('ix_documents_session_id', table_name='documents')
    op.drop_table('documents')
    op.drop_index('ix_validation_sessions_unit_code', table_name='validation_sessions')
    op.drop_table('validation_sessions')
