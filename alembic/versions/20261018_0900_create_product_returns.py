"""Create product return lifecycle tables

Revision ID: 20261018_0900_create_product_returns
Revises:
Create Date: 2026-10-18 09:00:00.000000

This migration adds the return lifecycle tables:
- product_returns: Return record with optimistic version counter
- return_status_events: Append-only status history
- return_inspections: Append-only inspection history
- return_dispatch_attempts: Append-only log of collaborator calls
- return_number_sequences: Per-day counter behind RET-YYYYMMDD-NNNN
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '20261018_0900_create_product_returns'
down_revision = None
branch_labels = None
depends_on = None


RETURN_STATUS = (
    'RECEIVED', 'INSPECTING', 'PENDING_APPROVAL', 'APPROVED', 'REJECTED',
    'PROCESSING', 'COMPLETED', 'CANCELLED', 'REPLACEMENT_SENT',
)
RESOLUTION_TYPES = (
    'REFUND_PROCESSED', 'RESTOCKED_BRANCH', 'RETURNED_SUPPLIER',
    'TRANSFERRED_WAREHOUSE', 'SCRAPPED', 'STORE_CREDIT', 'EXCHANGE_PROCESSED',
    'WARRANTY_REPLACEMENT', 'DONATION', 'RECYCLING', 'OTHER',
)
PRODUCT_CONDITIONS = (
    'NEW_SEALED', 'NEW_OPEN_BOX', 'USED_EXCELLENT', 'USED_GOOD', 'USED_FAIR',
    'DEFECTIVE', 'DAMAGED', 'PARTS_MISSING', 'DESTROYED',
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create product return tables."""

    # Shared enum types are created once here, not per table
    return_source_type = postgresql.ENUM(
        'SALE', 'WARRANTY_CLAIM', 'JOB_SHEET', 'STOCK_CHECK', 'DIRECT', 'GOODS_RECEIPT',
        name='return_source_type',
        create_type=False
    )
    return_category = postgresql.ENUM(
        'CUSTOMER_RETURN', 'WARRANTY_RETURN', 'DEFECTIVE', 'EXCESS_STOCK',
        'QUALITY_FAILURE', 'DAMAGED', 'INTERNAL_TRANSFER',
        name='return_category',
        create_type=False
    )
    return_status = postgresql.ENUM(*RETURN_STATUS, name='return_status', create_type=False)
    resolution_type = postgresql.ENUM(*RESOLUTION_TYPES, name='resolution_type', create_type=False)
    approved_resolution_type = postgresql.ENUM(
        *RESOLUTION_TYPES, name='approved_resolution_type', create_type=False
    )
    product_condition = postgresql.ENUM(*PRODUCT_CONDITIONS, name='product_condition', create_type=False)
    recommended_action = postgresql.ENUM('APPROVE', 'REJECT', name='recommended_action', create_type=False)
    refund_method = postgresql.ENUM(
        'CASH', 'CARD', 'BANK_TRANSFER', 'MOBILE_PAYMENT', 'CHECK', 'OTHER',
        name='refund_method',
        create_type=False
    )
    dispatch_outcome = postgresql.ENUM('SUCCEEDED', 'FAILED', name='dispatch_outcome', create_type=False)

    for enum_type in (
        return_source_type, return_category, return_status, resolution_type,
        approved_resolution_type, product_condition, recommended_action,
        refund_method, dispatch_outcome,
    ):
        enum_type.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'product_returns',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('return_number', sa.String(40), nullable=False, comment='Human readable, e.g. RET-20260118-0001'),
        sa.Column('source_type', return_source_type, nullable=False),
        sa.Column('source_id', sa.String(64), nullable=True, comment='Originating sale, warranty claim or job sheet'),
        sa.Column('return_category', return_category, nullable=False),
        sa.Column('return_reason', sa.String(255), nullable=False),
        sa.Column('location_id', sa.String(64), nullable=False),
        sa.Column('product_id', sa.String(64), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=True),
        sa.Column('product_code', sa.String(100), nullable=True),
        sa.Column('product_serial_number', sa.String(100), nullable=True),
        sa.Column('product_batch_number', sa.String(100), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('product_value', sa.Numeric(15, 2), nullable=False, comment='Unit value at return time'),
        sa.Column('refund_amount', sa.Numeric(15, 2), nullable=True, comment='Only for SALE returns'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('customer_id', sa.String(64), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('customer_phone', sa.String(30), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('status', return_status, nullable=False),
        sa.Column('product_condition', product_condition, nullable=True),
        sa.Column('inspection_notes', sa.Text(), nullable=True),
        sa.Column('recommended_action', recommended_action, nullable=True),
        sa.Column('approved_resolution_type', approved_resolution_type, nullable=True),
        sa.Column('approval_notes', sa.Text(), nullable=True),
        sa.Column('resolution_type', resolution_type, nullable=True),
        sa.Column('resolution_details', sa.Text(), nullable=True),
        sa.Column('refund_method', refund_method, nullable=True),
        sa.Column('supplier_id', sa.String(64), nullable=True),
        sa.Column('supplier_return_reason', sa.String(255), nullable=True),
        sa.Column('supplier_return_description', sa.Text(), nullable=True),
        sa.Column('supplier_return_id', sa.String(64), nullable=True,
                  comment='Reference returned by the supplier-return service'),
        sa.Column('transfer_to_location_id', sa.String(64), nullable=True),
        sa.Column('transfer_notes', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.String(255), nullable=True),
        sa.Column('rejection_notes', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.String(255), nullable=True),
        sa.Column('cancellation_notes', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=False),
        sa.Column('inspected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('inspected_by_id', sa.Uuid(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by_id', sa.Uuid(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_by_id', sa.Uuid(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_by_id', sa.Uuid(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by_id', sa.Uuid(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_product_returns'),
        sa.UniqueConstraint('return_number', name='uq_product_returns_return_number'),
    )
    op.create_index('ix_product_returns_return_number', 'product_returns', ['return_number'])
    op.create_index('ix_product_returns_source_type', 'product_returns', ['source_type'])
    op.create_index('ix_product_returns_source_id', 'product_returns', ['source_id'])
    op.create_index('ix_product_returns_return_category', 'product_returns', ['return_category'])
    op.create_index('ix_product_returns_location_id', 'product_returns', ['location_id'])
    op.create_index('ix_product_returns_product_id', 'product_returns', ['product_id'])
    op.create_index('ix_product_returns_customer_id', 'product_returns', ['customer_id'])
    op.create_index('ix_product_returns_status', 'product_returns', ['status'])
    op.create_index('ix_product_returns_resolution_type', 'product_returns', ['resolution_type'])
    op.create_index('ix_product_returns_created_at', 'product_returns', ['created_at'])

    op.create_table(
        'return_status_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('return_id', sa.Uuid(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('from_status', return_status, nullable=True),
        sa.Column('to_status', return_status, nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['return_id'], ['product_returns.id'],
            name='fk_return_status_events_return_id_product_returns', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_return_status_events'),
        sa.UniqueConstraint('return_id', 'sequence', name='uq_return_status_events_return_sequence'),
    )
    op.create_index('ix_return_status_events_return_id', 'return_status_events', ['return_id'])
    op.create_index('ix_return_status_events_created_at', 'return_status_events', ['created_at'])

    op.create_table(
        'return_inspections',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('return_id', sa.Uuid(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('product_condition', product_condition, nullable=False),
        sa.Column('inspection_notes', sa.Text(), nullable=False),
        sa.Column('recommended_action', recommended_action, nullable=True),
        sa.Column('inspection_complete', sa.Boolean(), nullable=False),
        sa.Column('inspected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('inspected_by_id', sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['return_id'], ['product_returns.id'],
            name='fk_return_inspections_return_id_product_returns', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_return_inspections'),
        sa.UniqueConstraint('return_id', 'sequence', name='uq_return_inspections_return_sequence'),
    )
    op.create_index('ix_return_inspections_return_id', 'return_inspections', ['return_id'])
    op.create_index('ix_return_inspections_created_at', 'return_inspections', ['created_at'])

    op.create_table(
        'return_dispatch_attempts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('return_id', sa.Uuid(), nullable=False),
        sa.Column('resolution_type', resolution_type, nullable=False),
        sa.Column('idempotency_key', sa.String(120), nullable=False),
        sa.Column('collaborator', sa.String(50), nullable=False),
        sa.Column('outcome', dispatch_outcome, nullable=False),
        sa.Column('reference', sa.String(120), nullable=True, comment='Identifier returned by the collaborator'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('attempted_by_id', sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['return_id'], ['product_returns.id'],
            name='fk_return_dispatch_attempts_return_id_product_returns', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_return_dispatch_attempts'),
    )
    op.create_index('ix_return_dispatch_attempts_return_id', 'return_dispatch_attempts', ['return_id'])
    op.create_index('ix_return_dispatch_attempts_idempotency_key', 'return_dispatch_attempts', ['idempotency_key'])
    op.create_index('ix_return_dispatch_attempts_created_at', 'return_dispatch_attempts', ['created_at'])

    op.create_table(
        'return_number_sequences',
        sa.Column('sequence_date', sa.Date(), nullable=False),
        sa.Column('current_number', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('sequence_date', name='pk_return_number_sequences'),
    )


def downgrade() -> None:
    """Drop product return tables."""
    op.drop_table('return_number_sequences')
    op.drop_table('return_dispatch_attempts')
    op.drop_table('return_inspections')
    op.drop_table('return_status_events')
    op.drop_table('product_returns')

    bind = op.get_bind()
    for enum_name in (
        'dispatch_outcome', 'refund_method', 'recommended_action', 'product_condition',
        'approved_resolution_type', 'resolution_type', 'return_category',
        'return_source_type', 'return_status',
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
