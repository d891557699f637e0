"""
Unit tests for booking_transaction.py - Atomic booking transaction handler.

Tests coverage:
- BookingTransaction.execute() success path: appointment, line items, pending payment
- Duration and total recomputed from the catalog (price x quantity)
- SERIALIZABLE isolation and staff row lock
- Validation failures never write (unoffered service, past start, outside hours)
- Conflicts: overlap check, IntegrityError and serialization failures -> ConflictError
- Two bookings of one slot: the loser rolls back with no line items or payment
- Side effects only after a successful commit
- create_for_customer() permissions and unknown customer
- reschedule() of a closed appointment, staff reassignment hands over the old calendar
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError

from booking.errors import (
    ConflictError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from booking.transactions.booking_transaction import (
    BookingTransaction,
    compute_totals,
    is_conflict_error,
)
from booking.validators.transaction_validators import SelectedService, ServiceSelection
from database.models import (
    Appointment,
    AppointmentService,
    AppointmentStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Staff,
)

MODULE = "booking.transactions.booking_transaction"


class FakePgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def staff_id():
    return UUID("660e8400-e29b-41d4-a716-446655440001")


@pytest.fixture
def customer():
    customer = MagicMock()
    customer.id = UUID("550e8400-e29b-41d4-a716-446655440000")
    return customer


@pytest.fixture
def selected_services():
    corte = MagicMock(id=uuid4(), duration_minutes=30, price=Decimal("10.00"))
    corte.name = "Corte Clásico"
    barba = MagicMock(id=uuid4(), duration_minutes=15, price=Decimal("5.50"))
    barba.name = "Arreglo de Barba"
    return [SelectedService(service=corte, quantity=1), SelectedService(service=barba, quantity=2)]


@pytest.fixture
def selections(selected_services):
    return [ServiceSelection(s.service.id, s.quantity) for s in selected_services]


@pytest.fixture
def availability(monday_at):
    availability = MagicMock()
    availability.get_working_windows = AsyncMock(return_value=[(monday_at(9), monday_at(18))])
    return availability


@pytest.fixture
def state_machine():
    state_machine = MagicMock()
    state_machine.on_created = AsyncMock()
    state_machine.on_rescheduled = AsyncMock()
    return state_machine


@pytest.fixture
def transaction(fake_db, mock_session, availability, state_machine, fixed_now):
    async def flush():
        # Mimic the INSERT assigning the primary key
        for call in mock_session.add.call_args_list:
            obj = call.args[0]
            if isinstance(obj, Appointment) and obj.id is None:
                obj.id = uuid4()

    mock_session.flush.side_effect = flush
    return BookingTransaction(fake_db, availability, state_machine, now_provider=lambda: fixed_now)


@pytest.fixture
def patched_rules(customer, selected_services):
    with patch(f"{MODULE}.load_active_staff", new=AsyncMock()) as staff, \
         patch(f"{MODULE}.get_or_create_customer", new=AsyncMock(return_value=customer)) as get_customer, \
         patch(f"{MODULE}.validate_service_selection", new=AsyncMock(return_value=selected_services)) as services, \
         patch(f"{MODULE}.validate_slot_availability", new=AsyncMock()) as slot:
        yield {"staff": staff, "customer": get_customer, "services": services, "slot": slot}


def added(mock_session, cls):
    return [c.args[0] for c in mock_session.add.call_args_list if isinstance(c.args[0], cls)]


# ============================================================================
# Pure helpers
# ============================================================================


class TestHelpers:
    def test_compute_totals_multiplies_by_quantity(self, selected_services):
        totals = compute_totals(selected_services)

        assert totals.duration_minutes == 60
        assert totals.amount == Decimal("21.00")

    def test_integrity_error_is_conflict(self):
        assert is_conflict_error(IntegrityError("INSERT", {}, Exception("duplicate")))

    @pytest.mark.parametrize("sqlstate", ["40001", "40P01", "23P01", "23505"])
    def test_conflict_sqlstates(self, sqlstate):
        assert is_conflict_error(DBAPIError("COMMIT", {}, FakePgError(sqlstate)))

    def test_other_sqlstate_is_not_conflict(self):
        assert not is_conflict_error(DBAPIError("SELECT 1", {}, FakePgError("08006")))


# ============================================================================
# Test Success Path
# ============================================================================


class TestBookingTransactionSuccess:
    @pytest.mark.asyncio
    async def test_successful_booking_complete_flow(
        self, transaction, mock_session, state_machine, patched_rules, staff_id, selections, monday_at, customer
    ):
        start = monday_at(10)

        result = await transaction.execute(
            customer_user_id=uuid4(),
            staff_id=staff_id,
            selections=selections,
            start_time=start,
            notes="Primera visita",
        )

        appointments = added(mock_session, Appointment)
        assert len(appointments) == 1
        appointment = appointments[0]
        assert appointment.status == AppointmentStatus.PENDING
        assert appointment.customer_id == customer.id
        assert appointment.staff_id == staff_id
        assert appointment.start_time == start
        assert appointment.end_time == start + timedelta(minutes=60)
        assert appointment.notes == "Primera visita"

        line_items = added(mock_session, AppointmentService)
        assert [(i.quantity, i.unit_price, i.duration_minutes) for i in line_items] == [
            (1, Decimal("10.00"), 30),
            (2, Decimal("5.50"), 15),
        ]
        assert all(i.appointment_id == appointment.id for i in line_items)

        payments = added(mock_session, Payment)
        assert len(payments) == 1
        assert payments[0].amount == Decimal("21.00")
        assert payments[0].method == PaymentMethod.CASH
        assert payments[0].status == PaymentStatus.PENDING

        mock_session.commit.assert_awaited_once()
        state_machine.on_created.assert_awaited_once_with(appointment.id)

        assert result["appointment_id"] == str(appointment.id)
        assert result["start"] == "10:00"
        assert result["end"] == "11:00"
        assert result["date"] == "2026-03-16"
        assert result["duration_minutes"] == 60
        assert result["total"] == "21.00"
        assert len(result["services"]) == 2

    @pytest.mark.asyncio
    async def test_serializable_isolation_and_staff_lock(
        self, transaction, mock_session, patched_rules, staff_id, selections, monday_at
    ):
        await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        first_statement = str(mock_session.execute.call_args_list[0].args[0])
        assert "SERIALIZABLE" in first_statement
        patched_rules["staff"].assert_awaited_once_with(mock_session, staff_id, lock=True)

    @pytest.mark.asyncio
    async def test_slot_rechecked_with_recomputed_end(
        self, transaction, mock_session, patched_rules, staff_id, selections, monday_at
    ):
        await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        patched_rules["slot"].assert_awaited_once_with(
            mock_session, staff_id, monday_at(10), monday_at(11), None
        )


# ============================================================================
# Test Validation Failures
# ============================================================================


class TestBookingTransactionRejections:
    @pytest.mark.asyncio
    async def test_unoffered_service_fails_before_any_write(
        self, transaction, mock_session, state_machine, patched_rules, staff_id, selections, monday_at
    ):
        patched_rules["services"].side_effect = InvalidRequestError(
            "No ofrecido", error_code="SERVICE_NOT_OFFERED"
        )

        with pytest.raises(InvalidRequestError) as exc_info:
            await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        assert exc_info.value.error_code == "SERVICE_NOT_OFFERED"
        mock_session.add.assert_not_called()
        mock_session.commit.assert_not_awaited()
        state_machine.on_created.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_in_past(
        self, fake_db, mock_session, availability, state_machine, patched_rules, staff_id, selections, monday_at
    ):
        transaction = BookingTransaction(
            fake_db, availability, state_machine, now_provider=lambda: monday_at(12)
        )

        with pytest.raises(InvalidRequestError) as exc_info:
            await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        assert exc_info.value.error_code == "START_IN_PAST"
        mock_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_outside_working_hours(
        self, transaction, mock_session, availability, patched_rules, staff_id, selections, monday_at
    ):
        availability.get_working_windows.return_value = [(monday_at(9), monday_at(10, 30))]

        with pytest.raises(InvalidRequestError) as exc_info:
            await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        assert exc_info.value.error_code == "OUTSIDE_WORKING_HOURS"
        mock_session.add.assert_not_called()


# ============================================================================
# Test Conflicts
# ============================================================================


class TestBookingTransactionConflicts:
    @pytest.mark.asyncio
    async def test_overlap_detected_at_commit_time(
        self, transaction, mock_session, state_machine, patched_rules, staff_id, selections, monday_at
    ):
        patched_rules["slot"].side_effect = ConflictError("Ocupado", error_code="SLOT_TAKEN")

        with pytest.raises(ConflictError) as exc_info:
            await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        assert exc_info.value.error_code == "SLOT_TAKEN"
        mock_session.rollback.assert_awaited()
        mock_session.commit.assert_not_awaited()
        state_machine.on_created.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exclusion_constraint_violation_becomes_conflict(
        self, transaction, mock_session, state_machine, patched_rules, staff_id, selections, monday_at
    ):
        mock_session.commit.side_effect = IntegrityError(
            "INSERT INTO appointments", {}, FakePgError("23P01")
        )

        with pytest.raises(ConflictError) as exc_info:
            await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        assert exc_info.value.error_code == "SLOT_TAKEN"
        state_machine.on_created.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_booking_of_same_slot_loses_at_commit(
        self, transaction, mock_session, state_machine, patched_rules, staff_id, selections, monday_at
    ):
        mock_session.commit.side_effect = [
            None,
            IntegrityError("INSERT INTO appointments", {}, FakePgError("23P01")),
        ]

        first = await transaction.execute(uuid4(), staff_id, selections, monday_at(10))
        mock_session.rollback.assert_not_awaited()

        with pytest.raises(ConflictError) as exc_info:
            await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        assert exc_info.value.error_code == "SLOT_TAKEN"
        mock_session.rollback.assert_awaited_once()
        assert mock_session.commit.await_count == 2
        state_machine.on_created.assert_awaited_once_with(UUID(first["appointment_id"]))

        # The loser's rows were all added before its rollback
        calls = [c[0] for c in mock_session.mock_calls]
        last_add = max(i for i, name in enumerate(calls) if name == "add")
        assert calls.index("rollback") > last_add

    @pytest.mark.asyncio
    async def test_second_booking_of_same_slot_loses_at_flush(
        self, transaction, mock_session, state_machine, patched_rules, staff_id, selections, monday_at
    ):
        assign_ids = mock_session.flush.side_effect
        flushes = 0

        async def flush():
            nonlocal flushes
            flushes += 1
            if flushes == 2:
                raise IntegrityError("INSERT INTO appointments", {}, FakePgError("23P01"))
            await assign_ids()

        mock_session.flush.side_effect = flush

        await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        with pytest.raises(ConflictError):
            await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_awaited_once()
        state_machine.on_created.assert_awaited_once()
        # No line items or payment were written for the losing booking
        assert len(added(mock_session, Appointment)) == 2
        assert len(added(mock_session, AppointmentService)) == 2
        assert len(added(mock_session, Payment)) == 1

    @pytest.mark.asyncio
    async def test_serialization_failure_becomes_conflict(
        self, transaction, mock_session, state_machine, patched_rules, staff_id, selections, monday_at
    ):
        mock_session.commit.side_effect = DBAPIError("COMMIT", {}, FakePgError("40001"))

        with pytest.raises(ConflictError):
            await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        state_machine.on_created.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_database_errors_propagate(
        self, transaction, mock_session, state_machine, patched_rules, staff_id, selections, monday_at
    ):
        mock_session.commit.side_effect = DBAPIError("COMMIT", {}, FakePgError("08006"))

        with pytest.raises(DBAPIError):
            await transaction.execute(uuid4(), staff_id, selections, monday_at(10))

        state_machine.on_created.assert_not_awaited()


# ============================================================================
# Staff-side creation and reschedule
# ============================================================================


class TestCreateForCustomer:
    @pytest.mark.asyncio
    async def test_customer_role_cannot_book_for_others(
        self, transaction, customer_user, staff_id, selections, monday_at
    ):
        with pytest.raises(PermissionDeniedError):
            await transaction.create_for_customer(
                customer_user, uuid4(), staff_id, selections, monday_at(10)
            )

    @pytest.mark.asyncio
    async def test_unknown_customer(
        self, transaction, mock_session, patched_rules, staff_user, staff_id, selections, monday_at
    ):
        mock_session.get.return_value = None

        with pytest.raises(NotFoundError) as exc_info:
            await transaction.create_for_customer(
                staff_user, uuid4(), staff_id, selections, monday_at(10)
            )

        assert exc_info.value.message == "Cliente no encontrado"
        mock_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_customer(
        self, transaction, mock_session, patched_rules, staff_user, customer, staff_id, selections, monday_at
    ):
        mock_session.get.return_value = customer

        result = await transaction.create_for_customer(
            staff_user, customer.id, staff_id, selections, monday_at(10)
        )

        assert result["customer_id"] == str(customer.id)
        patched_rules["customer"].assert_not_awaited()


class TestReschedule:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED])
    async def test_closed_appointment_cannot_be_moved(
        self, transaction, mock_session, result_factory, state_machine, staff_user, monday_at, status
    ):
        appointment = Appointment(
            id=uuid4(),
            staff_id=uuid4(),
            start_time=monday_at(10),
            end_time=monday_at(10, 30),
            status=status,
        )
        mock_session.execute.side_effect = [MagicMock(), result_factory(scalar=appointment)]

        with pytest.raises(InvalidTransitionError) as exc_info:
            await transaction.reschedule(appointment.id, staff_user, start_time=monday_at(15))

        assert exc_info.value.error_code == "APPOINTMENT_CLOSED"
        mock_session.commit.assert_not_awaited()
        state_machine.on_rescheduled.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, transaction, mock_session, result_factory, staff_user):
        mock_session.execute.side_effect = [MagicMock(), result_factory(scalar=None)]

        with pytest.raises(NotFoundError):
            await transaction.reschedule(uuid4(), staff_user, notes="nota")

    @pytest.mark.asyncio
    async def test_move_rechecks_slot_excluding_itself(
        self, transaction, mock_session, result_factory, state_machine, staff_user, monday_at
    ):
        staff_id = uuid4()
        appointment = Appointment(
            id=uuid4(),
            staff_id=staff_id,
            start_time=monday_at(10),
            end_time=monday_at(10, 30),
            status=AppointmentStatus.CONFIRMED,
        )
        item = AppointmentService(
            service_id=uuid4(), quantity=1, unit_price=Decimal("10.00"),
            duration_minutes=30, discount=Decimal("0.00"),
        )
        mock_session.execute.side_effect = [
            MagicMock(),  # SET TRANSACTION
            result_factory(scalar=appointment),
            result_factory(scalars=[item]),
        ]

        with patch(f"{MODULE}.load_active_staff", new=AsyncMock()), \
             patch(f"{MODULE}.validate_slot_availability", new=AsyncMock()) as slot:
            result = await transaction.reschedule(appointment.id, staff_user, start_time=monday_at(15))

        slot.assert_awaited_once_with(
            mock_session, staff_id, monday_at(15), monday_at(15, 30), appointment.id
        )
        assert appointment.start_time == monday_at(15)
        assert appointment.end_time == monday_at(15, 30)
        mock_session.commit.assert_awaited_once()
        state_machine.on_rescheduled.assert_awaited_once_with(
            appointment.id, staff_changed=False, previous_calendar_id=None
        )
        assert result["total"] == "10.00"

    @pytest.mark.asyncio
    async def test_reassignment_passes_previous_calendar(
        self, transaction, mock_session, result_factory, state_machine, staff_user, monday_at
    ):
        old_staff = Staff(id=uuid4(), user_id=uuid4(), google_calendar_id="cal-old")
        new_staff_id = uuid4()
        appointment = Appointment(
            id=uuid4(),
            staff_id=old_staff.id,
            start_time=monday_at(10),
            end_time=monday_at(10, 30),
            status=AppointmentStatus.PENDING,
        )
        item = AppointmentService(
            service_id=uuid4(), quantity=1, unit_price=Decimal("10.00"),
            duration_minutes=30, discount=Decimal("0.00"),
        )
        mock_session.execute.side_effect = [
            MagicMock(),  # SET TRANSACTION
            result_factory(scalar=appointment),
            result_factory(scalars=[item]),
        ]
        mock_session.get.return_value = old_staff

        with patch(f"{MODULE}.load_active_staff", new=AsyncMock()), \
             patch(f"{MODULE}.validate_service_selection", new=AsyncMock()), \
             patch(f"{MODULE}.validate_slot_availability", new=AsyncMock()):
            result = await transaction.reschedule(appointment.id, staff_user, staff_id=new_staff_id)

        assert appointment.staff_id == new_staff_id
        assert result["staff_id"] == str(new_staff_id)
        mock_session.get.assert_awaited_once_with(Staff, old_staff.id)
        state_machine.on_rescheduled.assert_awaited_once_with(
            appointment.id, staff_changed=True, previous_calendar_id="cal-old"
        )
