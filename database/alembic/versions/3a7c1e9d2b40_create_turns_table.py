"""create turns table

Revision ID: 3a7c1e9d2b40
Revises:
Create Date: 2026-10-19 10:12:44.318702

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3a7c1e9d2b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


service_type = postgresql.ENUM(
    'haircut', 'beard-trim', 'haircut-beard', 'shampoo', 'styling',
    name='service_type',
    create_type=False,
)
turn_status = postgresql.ENUM(
    'waiting', 'confirmed', 'completed', 'cancelled',
    name='turn_status',
    create_type=False,
)
cancelled_by = postgresql.ENUM(
    'customer', 'admin',
    name='cancelled_by',
    create_type=False,
)


def upgrade() -> None:
    # Create enum types
    service_type.create(op.get_bind(), checkfirst=True)
    turn_status.create(op.get_bind(), checkfirst=True)
    cancelled_by.create(op.get_bind(), checkfirst=True)

    # Create turns table
    op.create_table(
        'turns',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('customer_name', sa.String(length=50), nullable=False),
        sa.Column('mobile_number', sa.String(length=15), nullable=False),
        sa.Column('service_type', service_type, nullable=False),
        sa.Column('turn_number', sa.Integer(), nullable=False),
        sa.Column('status', turn_status, nullable=False, server_default='waiting'),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancelled_by', cancelled_by, nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),

        # Constraints
        sa.CheckConstraint('turn_number >= 1', name='check_turn_number_positive'),
        sa.CheckConstraint('notes IS NULL OR length(notes) <= 500', name='check_turn_notes_length'),
        sa.CheckConstraint(
            "(status = 'completed' AND completed_at IS NOT NULL) "
            "OR (status <> 'completed' AND completed_at IS NULL)",
            name='check_turn_completed_at',
        ),
        sa.CheckConstraint(
            "(status = 'cancelled' AND cancelled_at IS NOT NULL AND cancelled_by IS NOT NULL) "
            "OR (status <> 'cancelled' AND cancelled_at IS NULL AND cancelled_by IS NULL)",
            name='check_turn_cancellation_fields',
        ),

        sa.PrimaryKeyConstraint('id'),
    )

    # Lookup indexes
    op.create_index('ix_turns_mobile_number', 'turns', ['mobile_number'])
    op.create_index('ix_turns_turn_number', 'turns', ['turn_number'])
    op.create_index('ix_turns_status', 'turns', ['status'])
    op.create_index('ix_turns_completed_at', 'turns', ['completed_at'])
    op.create_index('ix_turns_created_at', 'turns', ['created_at'])
    op.create_index('idx_turns_status_created_at', 'turns', ['status', 'created_at'])

    # Partial unique indexes
    op.create_index(
        'uq_turns_waiting_turn_number',
        'turns',
        ['turn_number'],
        unique=True,
        postgresql_where=sa.text("status = 'waiting'"),
    )
    op.create_index(
        'uq_turns_active_mobile_number',
        'turns',
        ['mobile_number'],
        unique=True,
        postgresql_where=sa.text("status IN ('waiting', 'confirmed')"),
    )


def downgrade() -> None:
    # Drop indexes
    op.drop_index('uq_turns_active_mobile_number', table_name='turns')
    op.drop_index('uq_turns_waiting_turn_number', table_name='turns')
    op.drop_index('idx_turns_status_created_at', table_name='turns')
    op.drop_index('ix_turns_created_at', table_name='turns')
    op.drop_index('ix_turns_completed_at', table_name='turns')
    op.drop_index('ix_turns_status', table_name='turns')
    op.drop_index('ix_turns_turn_number', table_name='turns')
    op.drop_index('ix_turns_mobile_number', table_name='turns')

    # Drop table
    op.drop_table('turns')

    # Drop enum types
    cancelled_by.drop(op.get_bind(), checkfirst=True)
    turn_status.drop(op.get_bind(), checkfirst=True)
    service_type.drop(op.get_bind(), checkfirst=True)
