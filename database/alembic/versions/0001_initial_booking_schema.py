"""Initial booking schema: catalog, staff schedules, appointments, payments, notifications

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


user_role = postgresql.ENUM('customer', 'staff', 'owner', 'admin', name='user_role', create_type=False)
appointment_status = postgresql.ENUM(
    'pending', 'confirmed', 'in_progress', 'completed', 'cancelled',
    name='appointment_status', create_type=False,
)
payment_method = postgresql.ENUM('cash', 'card', 'transfer', 'online', name='payment_method', create_type=False)
payment_status = postgresql.ENUM(
    'pending', 'completed', 'partial', 'refunded', 'cancelled',
    name='payment_status', create_type=False,
)
notification_category = postgresql.ENUM(
    'appointment', 'reminder', 'system', 'promotion',
    name='notification_category', create_type=False,
)

ENUMS = (user_role, appointment_status, payment_method, payment_status, notification_category)


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]
    if updated:
        columns.append(
            sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False)
        )
    return columns


def upgrade() -> None:
    # gist index over (uuid =, tstzrange &&) needs btree_gist
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table('users',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('role', user_role, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )

    op.create_table('service_categories',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table('services',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category_id', sa.UUID(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('duration_minutes > 0', name='check_duration_positive'),
        sa.CheckConstraint('price >= 0', name='check_price_non_negative'),
        sa.ForeignKeyConstraint(['category_id'], ['service_categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_services_active', 'services', ['is_active'], postgresql_where=sa.text('is_active = true'))

    op.create_table('specialties',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table('staff',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('title', sa.String(length=100), nullable=True),
        sa.Column('biography', sa.Text(), nullable=True),
        sa.Column('google_calendar_id', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )

    op.create_table('staff_services',
        sa.Column('staff_id', sa.UUID(), nullable=False),
        sa.Column('service_id', sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('staff_id', 'service_id'),
    )
    op.create_index('idx_staff_services_service', 'staff_services', ['service_id'])

    op.create_table('staff_specialties',
        sa.Column('staff_id', sa.UUID(), nullable=False),
        sa.Column('specialty_id', sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['specialty_id'], ['specialties.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('staff_id', 'specialty_id'),
    )

    op.create_table('staff_working_hours',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('staff_id', sa.UUID(), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.TIME(), nullable=False),
        sa.Column('end_time', sa.TIME(), nullable=False),
        sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='valid_working_day_of_week'),
        sa.CheckConstraint('end_time > start_time', name='check_working_end_after_start'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_staff_working_hours_staff_day', 'staff_working_hours', ['staff_id', 'day_of_week'])

    op.create_table('staff_absences',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('staff_id', sa.UUID(), nullable=False),
        sa.Column('start_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint('end_time > start_time', name='check_absence_end_after_start'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_staff_absences_staff_time', 'staff_absences', ['staff_id', 'start_time', 'end_time'])

    op.create_table('customers',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('birth_date', sa.DATE(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )

    op.create_table('appointments',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('customer_id', sa.UUID(), nullable=False),
        sa.Column('staff_id', sa.UUID(), nullable=False),
        sa.Column('start_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('status', appointment_status, nullable=False),
        sa.Column('google_calendar_event_id', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('reminder_sent_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('end_time > start_time', name='check_appointment_end_after_start'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_appointments_customer_id', 'appointments', ['customer_id'])
    op.create_index('ix_appointments_status', 'appointments', ['status'])
    op.create_index('idx_appointments_staff_start', 'appointments', ['staff_id', 'start_time'])
    op.create_index(
        'idx_appointments_reminder_pending', 'appointments', ['start_time'],
        postgresql_where=sa.text('reminder_sent_at IS NULL'),
    )

    # No two non-cancelled appointments of the same staff member may overlap
    op.execute("""
        ALTER TABLE appointments
        ADD CONSTRAINT excl_appointments_staff_no_overlap
        EXCLUDE USING gist (
            staff_id WITH =,
            tstzrange(start_time, end_time, '[)') WITH &&
        )
        WHERE (status <> 'cancelled');
    """)

    op.create_table('appointment_services',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('appointment_id', sa.UUID(), nullable=False),
        sa.Column('service_id', sa.UUID(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('discount', sa.Numeric(precision=10, scale=2), server_default='0', nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.CheckConstraint('quantity >= 1', name='check_line_item_quantity_positive'),
        sa.CheckConstraint('discount >= 0', name='check_line_item_discount_non_negative'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_appointment_services_appointment_id', 'appointment_services', ['appointment_id'])

    op.create_table('payments',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('appointment_id', sa.UUID(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('tax', sa.Numeric(precision=10, scale=2), server_default='0', nullable=False),
        sa.Column('tip', sa.Numeric(precision=10, scale=2), server_default='0', nullable=False),
        sa.Column('method', payment_method, nullable=False),
        sa.Column('status', payment_status, nullable=False),
        sa.Column('reference_code', sa.String(length=100), nullable=True),
        sa.Column('invoice_issued', sa.Boolean(), nullable=False),
        sa.Column('paid_at', sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount >= 0', name='check_payment_amount_non_negative'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_appointment_id', 'payments', ['appointment_id'])

    op.create_table('notifications',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('category', notification_category, nullable=False),
        sa.Column('link', sa.String(length=255), nullable=True),
        sa.Column('appointment_id', sa.UUID(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('read_at', sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_notifications_user_read', 'notifications', ['user_id', 'is_read'])
    op.create_index(
        'idx_notifications_created_at_desc', 'notifications', ['created_at'],
        postgresql_ops={'created_at': 'DESC'},
    )

    op.create_table('device_tokens',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('token', sa.String(length=512), nullable=False),
        sa.Column('platform', sa.String(length=20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token'),
    )
    op.create_index('ix_device_tokens_user_id', 'device_tokens', ['user_id'])


def downgrade() -> None:
    op.drop_table('device_tokens')
    op.drop_table('notifications')
    op.drop_table('payments')
    op.drop_table('appointment_services')
    op.drop_table('appointments')
    op.drop_table('customers')
    op.drop_table('staff_absences')
    op.drop_table('staff_working_hours')
    op.drop_table('staff_specialties')
    op.drop_table('staff_services')
    op.drop_table('staff')
    op.drop_table('specialties')
    op.drop_table('services')
    op.drop_table('service_categories')
    op.drop_table('users')

    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
