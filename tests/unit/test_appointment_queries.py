"""
Unit tests for appointment_query_service.py.

Tests coverage:
- serialize_appointment() local times, totals and line items
- "mis citas" without a customer profile
- Customer visibility restricted to own appointments
- Listing requires staff capabilities
- get_statistics() aggregation and date range validation
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from booking.errors import NotFoundError, PermissionDeniedError, ValidationError
from booking.services.appointment_query_service import (
    AppointmentQueryService,
    serialize_appointment,
)
from database.models import (
    Appointment,
    AppointmentService,
    AppointmentStatus,
    Customer,
    Service,
    Staff,
    User,
    UserRole,
)


@pytest.fixture
def appointment(monday_at):
    customer_user = User(email="juan@example.com", first_name="Juan", last_name="Pérez", role=UserRole.CUSTOMER)
    staff_user = User(email="carlos@example.com", first_name="Carlos", last_name=None, role=UserRole.STAFF)
    corte = Service(id=uuid4(), name="Corte Clásico", duration_minutes=30, price=Decimal("12.00"))
    return Appointment(
        id=uuid4(),
        customer_id=uuid4(),
        staff_id=uuid4(),
        start_time=monday_at(10),
        end_time=monday_at(11),
        status=AppointmentStatus.CONFIRMED,
        customer=Customer(user=customer_user),
        staff=Staff(user=staff_user),
        line_items=[
            AppointmentService(
                service_id=corte.id,
                service=corte,
                quantity=2,
                unit_price=Decimal("12.00"),
                duration_minutes=30,
                discount=Decimal("3.00"),
            )
        ],
    )


class TestSerializeAppointment:
    def test_fields(self, appointment):
        data = serialize_appointment(appointment)

        assert data["status"] == "confirmed"
        assert data["date"] == "2026-03-16"
        assert (data["start"], data["end"]) == ("10:00", "11:00")
        assert data["duration_minutes"] == 60
        assert data["customer"]["name"] == "Juan Pérez"
        assert data["staff"]["name"] == "Carlos"
        assert data["total"] == "21.00"
        assert data["services"][0]["quantity"] == 2
        assert data["cancelled_at"] is None


class TestCustomerQueries:
    @pytest.mark.asyncio
    async def test_no_customer_profile(self, fake_db, mock_session, result_factory, customer_user):
        mock_session.execute.return_value = result_factory(scalar=None)

        assert await AppointmentQueryService(fake_db).list_for_customer_user(customer_user.id) == []
        assert mock_session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_customer_cannot_see_others(self, fake_db, mock_session, result_factory, customer_user):
        mock_session.execute.return_value = result_factory(scalar=None)

        with pytest.raises(NotFoundError):
            await AppointmentQueryService(fake_db).get_appointment(uuid4(), customer_user)

        stmt = mock_session.execute.await_args.args[0]
        assert "customers" in str(stmt)

    @pytest.mark.asyncio
    async def test_staff_lookup_is_unrestricted(
        self, fake_db, mock_session, result_factory, staff_user, appointment
    ):
        mock_session.execute.return_value = result_factory(scalar=appointment)

        data = await AppointmentQueryService(fake_db).get_appointment(appointment.id, staff_user)

        assert data["id"] == str(appointment.id)
        assert "JOIN customers" not in str(mock_session.execute.await_args.args[0])


class TestStaffQueries:
    @pytest.mark.asyncio
    async def test_customer_cannot_list(self, fake_db, customer_user):
        with pytest.raises(PermissionDeniedError):
            await AppointmentQueryService(fake_db).list_appointments(customer_user)

    @pytest.mark.asyncio
    async def test_staff_cannot_see_statistics(self, fake_db, staff_user):
        with pytest.raises(PermissionDeniedError):
            await AppointmentQueryService(fake_db).get_statistics(staff_user)

    @pytest.mark.asyncio
    async def test_inverted_date_range(self, fake_db, owner_user):
        with pytest.raises(ValidationError) as exc_info:
            await AppointmentQueryService(fake_db).get_statistics(
                owner_user, date(2026, 3, 20), date(2026, 3, 1)
            )

        assert exc_info.value.error_code == "INVALID_DATE_RANGE"

    @pytest.mark.asyncio
    async def test_statistics(self, fake_db, mock_session, result_factory, owner_user):
        staff_id, service_id = uuid4(), uuid4()
        mock_session.execute.side_effect = [
            result_factory(scalars=[
                (AppointmentStatus.PENDING, 2),
                (AppointmentStatus.COMPLETED, 3),
                (AppointmentStatus.CANCELLED, 1),
            ]),
            result_factory(scalars=[
                (AppointmentStatus.PENDING, Decimal("30.00")),
                (AppointmentStatus.COMPLETED, Decimal("45.50")),
                (AppointmentStatus.CANCELLED, Decimal("12.00")),
            ]),
            result_factory(scalars=[(service_id, "Corte Clásico", 4)]),
            result_factory(scalars=[(staff_id, "Carlos", "Ruiz", 5)]),
        ]

        stats = await AppointmentQueryService(fake_db).get_statistics(
            owner_user, date(2026, 3, 1), date(2026, 3, 31)
        )

        assert stats["total"] == 6
        assert stats["by_status"]["confirmed"] == 0
        assert stats["by_status"]["completed"] == 3
        assert stats["revenue"] == "75.50"
        assert stats["completed_revenue"] == "45.50"
        assert stats["top_services"] == [
            {"service_id": str(service_id), "name": "Corte Clásico", "count": 4}
        ]
        assert stats["per_staff"] == [{"staff_id": str(staff_id), "name": "Carlos Ruiz", "count": 5}]
        assert stats["from"] == "2026-03-01"
