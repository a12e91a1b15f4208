"""create_contract_workflow_tables

Revision ID: 5c2f9a7d31b0
Revises:
Create Date: 2026-10-19 10:12:03.418221

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '5c2f9a7d31b0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # verticals
    op.create_table('verticals',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('slug', sa.String(), nullable=False),
    sa.Column('display_name', sa.String(), nullable=False),
    sa.Column('default_prompt_name', sa.String(), nullable=False),
    sa.Column('base_required_fields', postgresql.ARRAY(sa.String()), nullable=False, server_default='{}'),
    sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('slug')
    )

    # providers
    op.create_table('providers',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('slug', sa.String(), nullable=False),
    sa.Column('display_name', sa.String(), nullable=False),
    sa.Column('vertical_id', sa.UUID(), nullable=False),
    sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
    sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.ForeignKeyConstraint(['vertical_id'], ['verticals.id']),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('slug')
    )
    op.create_index(op.f('ix_providers_vertical_id'), 'providers', ['vertical_id'], unique=False)

    # provider_configs
    op.create_table('provider_configs',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('provider_id', sa.UUID(), nullable=False),
    sa.Column('product_type', sa.String(), nullable=False, server_default='default'),
    sa.Column('required_fields', postgresql.ARRAY(sa.String()), nullable=True),
    sa.Column('validation_rules', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='field -> {min?, max?}'),
    sa.Column('langfuse_prompt_name', sa.String(), nullable=True),
    sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.ForeignKeyConstraint(['provider_id'], ['providers.id']),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('provider_id', 'product_type', name='uq_provider_configs_provider_product')
    )
    op.create_index(op.f('ix_provider_configs_provider_id'), 'provider_configs', ['provider_id'], unique=False)

    # workflows
    op.create_table('workflows',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('vertical_id', sa.UUID(), nullable=False),
    sa.Column('provider_id', sa.UUID(), nullable=True),
    sa.Column('pdf_storage_path', sa.String(), nullable=False, server_default=''),
    sa.Column('pdf_filename', sa.String(), nullable=True),
    sa.Column('state', sa.String(), nullable=False, server_default='pending'),
    sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.ForeignKeyConstraint(['provider_id'], ['providers.id']),
    sa.ForeignKeyConstraint(['vertical_id'], ['verticals.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_workflows_state', 'workflows', ['state'], unique=False)

    # contracts
    op.create_table('contracts',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('workflow_id', sa.UUID(), nullable=False),
    sa.Column('vertical_id', sa.UUID(), nullable=False),
    sa.Column('provider_id', sa.UUID(), nullable=True),
    sa.Column('extracted_data', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('llm_confidence', sa.Numeric(precision=5, scale=2), nullable=False),
    sa.Column('final_confidence', sa.Numeric(precision=5, scale=2), nullable=False),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.ForeignKeyConstraint(['provider_id'], ['providers.id']),
    sa.ForeignKeyConstraint(['vertical_id'], ['verticals.id']),
    sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_contracts_workflow_id'), 'contracts', ['workflow_id'], unique=False)

    # review_tasks
    op.create_table('review_tasks',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('workflow_id', sa.UUID(), nullable=False),
    sa.Column('contract_id', sa.UUID(), nullable=False),
    sa.Column('status', sa.String(), nullable=False, server_default='pending'),
    sa.Column('corrected_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('reviewer_notes', sa.Text(), nullable=True),
    sa.Column('timeout_at', sa.TIMESTAMP(timezone=True), nullable=True),
    sa.Column('reviewed_at', sa.TIMESTAMP(timezone=True), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.ForeignKeyConstraint(['contract_id'], ['contracts.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_review_tasks_workflow_id'), 'review_tasks', ['workflow_id'], unique=False)
    op.create_index('idx_review_tasks_status_timeout', 'review_tasks', ['status', 'timeout_at'], unique=False)

    # workflow_state_log
    op.create_table('workflow_state_log',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('workflow_id', sa.UUID(), nullable=False),
    sa.Column('from_state', sa.String(), nullable=True),
    sa.Column('to_state', sa.String(), nullable=False),
    sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_state_log_workflow_id'), 'workflow_state_log', ['workflow_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_workflow_state_log_workflow_id'), table_name='workflow_state_log')
    op.drop_table('workflow_state_log')
    op.drop_index('idx_review_tasks_status_timeout', table_name='review_tasks')
    op.drop_index(op.f('ix_review_tasks_workflow_id'), table_name='review_tasks')
    op.drop_table('review_tasks')
    op.drop_index(op.f('ix_contracts_workflow_id'), table_name='contracts')
    op.drop_table('contracts')
    op.drop_index('idx_workflows_state', table_name='workflows')
    op.drop_table('workflows')
    op.drop_index(op.f('ix_provider_configs_provider_id'), table_name='provider_configs')
    op.drop_table('provider_configs')
    op.drop_index(op.f('ix_providers_vertical_id'), table_name='providers')
    op.drop_table('providers')
    op.drop_table('verticals')
