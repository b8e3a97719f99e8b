"""create_production_flow_tables

Revision ID: 3f9a1c2d7b40
Revises:
Create Date: 2026-10-19 10:12:44.201377

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f9a1c2d7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('production_order_master',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('frontend_id', sa.String(length=50), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('order_quantity', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('unit', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_production_order_master_id'), 'production_order_master', ['id'], unique=False)
    op.create_index(op.f('ix_production_order_master_frontend_id'), 'production_order_master', ['frontend_id'], unique=True)

    op.create_table('stage_instance',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('frontend_id', sa.String(length=50), nullable=True),
        sa.Column('lot_number', sa.String(length=100), nullable=False),
        sa.Column('production_order_id', sa.Uuid(), nullable=True),
        sa.Column('process_type', sa.String(length=50), nullable=False),
        sa.Column('stage_number', sa.Integer(), nullable=False),
        sa.Column('stage_name', sa.String(length=255), nullable=True),
        sa.Column('unit', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('planned_start_time', sa.DateTime(), nullable=True),
        sa.Column('planned_end_time', sa.DateTime(), nullable=True),
        sa.Column('actual_start_time', sa.DateTime(), nullable=True),
        sa.Column('actual_end_time', sa.DateTime(), nullable=True),
        sa.Column('actual_duration_minutes', sa.Integer(), nullable=True),
        sa.Column('input_quantity', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('produced_quantity', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('defect_quantity', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('loss_quantity', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('quality_grade', sa.String(length=5), nullable=True),
        sa.Column('quality_notes', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['production_order_id'], ['production_order_master.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_stage_instance_id'), 'stage_instance', ['id'], unique=False)
    op.create_index(op.f('ix_stage_instance_frontend_id'), 'stage_instance', ['frontend_id'], unique=True)
    op.create_index(op.f('ix_stage_instance_lot_number'), 'stage_instance', ['lot_number'], unique=False)
    op.create_index(op.f('ix_stage_instance_production_order_id'), 'stage_instance', ['production_order_id'], unique=False)
    op.create_index(op.f('ix_stage_instance_process_type'), 'stage_instance', ['process_type'], unique=False)
    op.create_index(op.f('ix_stage_instance_status'), 'stage_instance', ['status'], unique=False)

    op.create_table('lot_ledger_entry',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('lot_number', sa.String(length=100), nullable=False),
        sa.Column('source_stage_instance_id', sa.Uuid(), nullable=False),
        sa.Column('consuming_stage_instance_id', sa.Uuid(), nullable=True),
        sa.Column('quantity', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('unit', sa.String(length=20), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('released_entry_id', sa.Uuid(), nullable=True),
        sa.Column('actor_id', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['source_stage_instance_id'], ['stage_instance.id'], ),
        sa.ForeignKeyConstraint(['consuming_stage_instance_id'], ['stage_instance.id'], ),
        sa.ForeignKeyConstraint(['released_entry_id'], ['lot_ledger_entry.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('released_entry_id')
    )
    op.create_index(op.f('ix_lot_ledger_entry_id'), 'lot_ledger_entry', ['id'], unique=False)
    op.create_index(op.f('ix_lot_ledger_entry_lot_number'), 'lot_ledger_entry', ['lot_number'], unique=False)
    op.create_index(op.f('ix_lot_ledger_entry_source_stage_instance_id'), 'lot_ledger_entry', ['source_stage_instance_id'], unique=False)
    op.create_index(op.f('ix_lot_ledger_entry_consuming_stage_instance_id'), 'lot_ledger_entry', ['consuming_stage_instance_id'], unique=False)
    op.create_index(op.f('ix_lot_ledger_entry_kind'), 'lot_ledger_entry', ['kind'], unique=False)
    op.create_index('ix_lot_ledger_entry_source_key', 'lot_ledger_entry', ['lot_number', 'source_stage_instance_id'], unique=False)

    op.create_table('lot_source_balance',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('lot_number', sa.String(length=100), nullable=False),
        sa.Column('source_stage_instance_id', sa.Uuid(), nullable=False),
        sa.Column('unit', sa.String(length=20), nullable=False),
        sa.Column('produced_units', sa.BigInteger(), nullable=False),
        sa.Column('allocated_units', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['source_stage_instance_id'], ['stage_instance.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('lot_number', 'source_stage_instance_id', name='uq_lot_source_balance_key')
    )

    op.create_table('stage_status_log',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('stage_instance_id', sa.Uuid(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('from_status', sa.String(length=50), nullable=False),
        sa.Column('to_status', sa.String(length=50), nullable=False),
        sa.Column('actor_id', sa.String(length=100), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('process_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stage_instance_id', 'sequence', name='uq_stage_status_log_sequence')
    )
    op.create_index(op.f('ix_stage_status_log_id'), 'stage_status_log', ['id'], unique=False)
    op.create_index(op.f('ix_stage_status_log_stage_instance_id'), 'stage_status_log', ['stage_instance_id'], unique=False)
    op.create_index(op.f('ix_stage_status_log_to_status'), 'stage_status_log', ['to_status'], unique=False)
    op.create_index(op.f('ix_stage_status_log_actor_id'), 'stage_status_log', ['actor_id'], unique=False)
    op.create_index(op.f('ix_stage_status_log_created_at'), 'stage_status_log', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_table('stage_status_log')
    op.drop_table('lot_source_balance')
    op.drop_table('lot_ledger_entry')
    op.drop_table('stage_instance')
    op.drop_table('production_order_master')
