"""initial ledger schema

Revision ID: 2026_10_17_0000
Revises:
Create Date: 2026-10-17 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_17_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, AI catalog, credit ledger and usage tables."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('credits >= 0', name='ck_user_credits_non_negative'),
        sa.CheckConstraint("role IN ('user', 'admin')", name='ck_user_role'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    # ========================================================================
    # Create AI provider / model catalog
    # ========================================================================
    op.create_table(
        'ai_providers',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('slug', name='uq_ai_providers_slug'),
    )

    op.create_table(
        'ai_models',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('provider_id', sa.String(64), sa.ForeignKey('ai_providers.id'), nullable=False),
        sa.Column('pricing', JSONB(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('slug', name='uq_ai_models_slug'),
    )
    op.create_index('ix_ai_models_provider_id', 'ai_models', ['provider_id'])

    # ========================================================================
    # Create credit_transactions table
    # ========================================================================
    op.create_table(
        'credit_transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('provider_id', sa.String(64), sa.ForeignKey('ai_providers.id'), nullable=True),
        sa.Column('provider_slug', sa.String(100), nullable=True),
        sa.Column('model_id', sa.String(64), sa.ForeignKey('ai_models.id'), nullable=True),
        sa.Column('model_slug', sa.String(100), nullable=True),
        sa.Column('delta', sa.BigInteger(), nullable=False),
        sa.Column('reason', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('request_id', sa.String(255), nullable=True),
        sa.Column('metadata', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint(
            "status IN ('pending', 'success', 'failed', 'refunded')",
            name='ck_credit_transaction_status',
        ),
    )

    # Stale pending lookups scan (status, created_at)
    op.create_index('idx_credit_transactions_user_created', 'credit_transactions', ['user_id', 'created_at'])
    op.create_index('idx_credit_transactions_status_created', 'credit_transactions', ['status', 'created_at'])
    op.create_index(
        'idx_credit_transactions_request_id',
        'credit_transactions',
        ['request_id'],
        postgresql_where=sa.text('request_id IS NOT NULL'),
    )

    # ========================================================================
    # Create ai_usage table
    # ========================================================================
    op.create_table(
        'ai_usage',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('request_id', sa.String(255), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('model_id', sa.String(64), nullable=True),
        sa.Column('model_slug', sa.String(100), nullable=True),
        sa.Column('provider_slug', sa.String(100), nullable=True),
        sa.Column('kind', sa.String(32), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('input_tokens', sa.Integer(), nullable=True),
        sa.Column('output_tokens', sa.Integer(), nullable=True),
        sa.Column('cost', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('request_id', name='uq_ai_usage_request_id'),
    )
    op.create_index('ix_ai_usage_user_id', 'ai_usage', ['user_id'])
    op.create_index('idx_ai_usage_created_at', 'ai_usage', ['created_at'])


def downgrade() -> None:
    """Drop all ledger tables."""
    op.drop_index('idx_ai_usage_created_at', table_name='ai_usage')
    op.drop_index('ix_ai_usage_user_id', table_name='ai_usage')
    op.drop_table('ai_usage')

    op.drop_index('idx_credit_transactions_request_id', table_name='credit_transactions')
    op.drop_index('idx_credit_transactions_status_created', table_name='credit_transactions')
    op.drop_index('idx_credit_transactions_user_created', table_name='credit_transactions')
    op.drop_table('credit_transactions')

    op.drop_index('ix_ai_models_provider_id', table_name='ai_models')
    op.drop_table('ai_models')
    op.drop_table('ai_providers')
    op.drop_table('users')
