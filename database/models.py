"""
SQLAlchemy ORM models for the barbershop booking database.

This module defines the tables:
- users: Accounts authenticated by the identity provider, with a closed role
- service_categories / services: Bookable catalog with duration and price
- specialties: Descriptive staff specialties
- staff: Staff members (empleados) with offered services and calendar id
- staff_working_hours / staff_absences: Weekly schedule and unavailability
- customers: Customer profiles (clientes), created lazily on first booking
- appointments / appointment_services: Citas and their snapshotted line items
- payments: Payment attempts for an appointment
- notifications / device_tokens: In-app inbox and push delivery targets

All models use:
- UUID primary keys (auto-generated)
- TIMESTAMP WITH TIME ZONE for datetime fields
- Proper indexes and constraints

The no-overlap rule for appointments is enforced by a PostgreSQL exclusion
constraint (``excl_appointments_staff_no_overlap``) created in the initial
migration; it cannot be expressed portably in ``__table_args__``.
"""

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    DATE,
    TIME,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    func,
    text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class UserRole(str, PyEnum):
    """Closed set of account roles."""

    CUSTOMER = "customer"   # Cliente
    STAFF = "staff"         # Empleado
    OWNER = "owner"         # Dueño
    ADMIN = "admin"         # Administrador


class AppointmentStatus(str, PyEnum):
    """Appointment lifecycle status."""

    PENDING = "pending"          # Pendiente: reservada, sin confirmar
    CONFIRMED = "confirmed"      # Confirmada
    IN_PROGRESS = "in_progress"  # En proceso
    COMPLETED = "completed"      # Completada
    CANCELLED = "cancelled"      # Cancelada

    def __str__(self):
        return self.value


class PaymentMethod(str, PyEnum):
    """How a payment was (or will be) made."""

    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    ONLINE = "online"


class PaymentStatus(str, PyEnum):
    """Payment attempt status."""

    PENDING = "pending"
    COMPLETED = "completed"
    PARTIAL = "partial"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class NotificationCategory(str, PyEnum):
    """Category tag of an in-app notification."""

    APPOINTMENT = "appointment"
    REMINDER = "reminder"
    SYSTEM = "system"
    PROMOTION = "promotion"


# Statuses that occupy the staff member's time
ACTIVE_APPOINTMENT_STATUSES = (
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
    AppointmentStatus.COMPLETED,
)


def _enum_column(enum_cls: type[PyEnum], name: str) -> SQLEnum:
    # values_callable stores .value ("pending") instead of .name ("PENDING")
    return SQLEnum(
        enum_cls,
        name=name,
        create_type=False,
        values_callable=lambda x: [e.value for e in x],
    )


# ============================================================================
# Association tables
# ============================================================================


staff_services = Table(
    "staff_services",
    Base.metadata,
    Column(
        "staff_id",
        PGUUID(as_uuid=True),
        ForeignKey("staff.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "service_id",
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Index("idx_staff_services_service", "service_id"),
)

staff_specialties = Table(
    "staff_specialties",
    Base.metadata,
    Column(
        "staff_id",
        PGUUID(as_uuid=True),
        ForeignKey("staff.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "specialty_id",
        PGUUID(as_uuid=True),
        ForeignKey("specialties.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


# ============================================================================
# Accounts
# ============================================================================


class User(Base):
    """
    User model - Accounts known to the API.

    Credentials live with the identity provider; this table only keeps the
    profile and the role used for authorization.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole, "user_role"),
        default=UserRole.CUSTOMER,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role.value}')>"


# ============================================================================
# Catalog
# ============================================================================


class ServiceCategory(Base):
    """ServiceCategory model - Groups services in the catalog."""

    __tablename__ = "service_categories"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    services: Mapped[list["Service"]] = relationship(back_populates="category")

    def __repr__(self) -> str:
        return f"<ServiceCategory(id={self.id}, name='{self.name}')>"


class Service(Base):
    """
    Service model - Individual barbershop services with pricing and duration.

    Rows referenced by past appointments are never edited in place for
    booking purposes: price and duration are snapshotted onto line items.
    """

    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )

    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("service_categories.id", ondelete="SET NULL"),
        nullable=True,
    )
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False,
    )

    category: Mapped[Optional["ServiceCategory"]] = relationship(back_populates="services")

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
        CheckConstraint("price >= 0", name="check_price_non_negative"),
        Index(
            "idx_services_active",
            "is_active",
            postgresql_where=text("is_active = true"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}', duration={self.duration_minutes})>"


class Specialty(Base):
    """Specialty model - Descriptive only, never used to gate bookings."""

    __tablename__ = "specialties"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Specialty(id={self.id}, name='{self.name}')>"


# ============================================================================
# Staff
# ============================================================================


class Staff(Base):
    """
    Staff model - Barbers and other professionals (empleados).

    ``services`` is authoritative: a service can only be booked with a staff
    member that offers it. ``specialties`` is display information.
    """

    __tablename__ = "staff"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False,
    )

    title: Mapped[str | None] = mapped_column(String(100), nullable=True)
    biography: Mapped[str | None] = mapped_column(Text, nullable=True)
    google_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False,
    )

    user: Mapped["User"] = relationship()
    services: Mapped[list["Service"]] = relationship(secondary=staff_services)
    specialties: Mapped[list["Specialty"]] = relationship(secondary=staff_specialties)
    working_hours: Mapped[list["StaffWorkingHours"]] = relationship(
        back_populates="staff", cascade="all, delete-orphan"
    )
    absences: Mapped[list["StaffAbsence"]] = relationship(
        back_populates="staff", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Staff(id={self.id}, user_id={self.user_id}, active={self.is_active})>"


class StaffWorkingHours(Base):
    """
    Weekly working-hour window of a staff member.

    Several windows per weekday are allowed (split shifts).
    Day of week: 0=Monday, 1=Tuesday, ..., 6=Sunday
    """

    __tablename__ = "staff_working_hours"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    staff_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(TIME, nullable=False)
    end_time: Mapped[time] = mapped_column(TIME, nullable=False)

    staff: Mapped["Staff"] = relationship(back_populates="working_hours")

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="valid_working_day_of_week"),
        CheckConstraint("end_time > start_time", name="check_working_end_after_start"),
        Index("idx_staff_working_hours_staff_day", "staff_id", "day_of_week"),
    )

    def __repr__(self) -> str:
        return (
            f"<StaffWorkingHours(staff_id={self.staff_id}, day={self.day_of_week}, "
            f"{self.start_time:%H:%M}-{self.end_time:%H:%M})>"
        )


class StaffAbsence(Base):
    """StaffAbsence model - Unavailability interval overriding working hours."""

    __tablename__ = "staff_absences"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    staff_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    staff: Mapped["Staff"] = relationship(back_populates="absences")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_absence_end_after_start"),
        # Composite index for efficient overlap queries
        Index("idx_staff_absences_staff_time", "staff_id", "start_time", "end_time"),
    )

    def __repr__(self) -> str:
        return f"<StaffAbsence(id={self.id}, staff_id={self.staff_id}, {self.start_time} - {self.end_time})>"


# ============================================================================
# Customers and appointments
# ============================================================================


class Customer(Base):
    """Customer model - One profile per user, created on first booking."""

    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False,
    )
    birth_date: Mapped[date | None] = mapped_column(DATE, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    user: Mapped["User"] = relationship()
    appointments: Mapped[list["Appointment"]] = relationship(back_populates="customer")

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, user_id={self.user_id})>"


class Appointment(Base):
    """
    Appointment model - Citas between a customer and a staff member.

    end_time is always start_time + the snapshotted duration of the line items.
    Appointments are never deleted; cancellation is a status.
    """

    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    customer_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    staff_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("staff.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Scheduling
    start_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    status: Mapped[AppointmentStatus] = mapped_column(
        _enum_column(AppointmentStatus, "appointment_status"),
        default=AppointmentStatus.PENDING,
        nullable=False,
        index=True,
    )

    # External integration IDs
    google_calendar_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Lifecycle tracking
    reminder_sent_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False,
    )

    customer: Mapped["Customer"] = relationship(back_populates="appointments")
    staff: Mapped["Staff"] = relationship()
    line_items: Mapped[list["AppointmentService"]] = relationship(
        back_populates="appointment", cascade="all, delete-orphan"
    )
    payments: Mapped[list["Payment"]] = relationship(back_populates="appointment")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_appointment_end_after_start"),
        # Availability lookups: one staff member, one day
        Index("idx_appointments_staff_start", "staff_id", "start_time"),
        # Reminder sweep
        Index(
            "idx_appointments_reminder_pending",
            "start_time",
            postgresql_where=text("reminder_sent_at IS NULL"),
        ),
    )

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, staff_id={self.staff_id}, status='{self.status.value}')>"


class AppointmentService(Base):
    """
    AppointmentService model - Line item (cita-servicio) of an appointment.

    unit_price and duration_minutes are copied from the service at booking
    time and never recomputed from the live catalog.
    """

    __tablename__ = "appointment_services"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    appointment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    discount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), server_default="0", nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    appointment: Mapped["Appointment"] = relationship(back_populates="line_items")
    service: Mapped["Service"] = relationship()

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="check_line_item_quantity_positive"),
        CheckConstraint("discount >= 0", name="check_line_item_discount_non_negative"),
    )

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity - (self.discount or Decimal("0"))

    def __repr__(self) -> str:
        return f"<AppointmentService(appointment_id={self.appointment_id}, service_id={self.service_id})>"


class Payment(Base):
    """
    Payment model - A payment attempt for an appointment.

    One row is created with the appointment (status pending); later attempts
    add rows, so an appointment keeps its payment history.
    """

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    appointment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), server_default="0", nullable=False
    )
    tip: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), server_default="0", nullable=False
    )
    method: Mapped[PaymentMethod] = mapped_column(
        _enum_column(PaymentMethod, "payment_method"),
        default=PaymentMethod.CASH,
        nullable=False,
    )
    status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    reference_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_issued: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False,
    )

    appointment: Mapped["Appointment"] = relationship(back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, appointment_id={self.appointment_id}, status='{self.status.value}')>"


# ============================================================================
# Notifications
# ============================================================================


class Notification(Base):
    """
    Notification model - In-app inbox entry owned by its recipient.

    Created by the notification dispatcher as a side effect of appointment
    lifecycle events; only read state changes afterwards.
    """

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[NotificationCategory] = mapped_column(
        _enum_column(NotificationCategory, "notification_category"),
        default=NotificationCategory.SYSTEM,
        nullable=False,
    )
    link: Mapped[str | None] = mapped_column(String(255), nullable=True)
    appointment_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="SET NULL"),
        nullable=True,
    )

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_notifications_user_read", "user_id", "is_read"),
        Index("idx_notifications_created_at_desc", "created_at", postgresql_ops={"created_at": "DESC"}),
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, user_id={self.user_id}, is_read={self.is_read})>"


class DeviceToken(Base):
    """DeviceToken model - Push (FCM) registration of a user's device."""

    __tablename__ = "device_tokens"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    platform: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<DeviceToken(id={self.id}, user_id={self.user_id}, active={self.is_active})>"
