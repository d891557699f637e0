"""
Unit tests for catalog_service.py - Catalog Reader.

Tests coverage:
- serialize_service() / serialize_staff() output
- list_staff_for_services() short-circuits on an empty selection
- Capability subquery requires every requested service
- get_staff() unknown id
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from booking.errors import NotFoundError
from booking.services.catalog_service import CatalogService, serialize_service, serialize_staff
from database.models import Service, ServiceCategory, Specialty, Staff, User, UserRole


@pytest.fixture
def staff_member():
    corte = Service(id=uuid4(), name="Corte Clásico", duration_minutes=30, price=Decimal("12.00"))
    return Staff(
        id=uuid4(),
        user_id=uuid4(),
        title="Barbero senior",
        user=User(email="ana@example.com", first_name="Ana", last_name="Torres", role=UserRole.STAFF),
        specialties=[Specialty(name="Fade"), Specialty(name="Barba")],
        services=[corte],
    )


class TestSerialization:
    def test_service_with_category(self):
        category = ServiceCategory(id=uuid4(), name="Cortes")
        service = Service(
            id=uuid4(),
            name="Corte Clásico",
            duration_minutes=30,
            price=Decimal("12.00"),
            category_id=category.id,
            category=category,
        )

        data = serialize_service(service)

        assert data["price"] == "12.00"
        assert data["category_name"] == "Cortes"

    def test_service_without_category(self):
        data = serialize_service(
            Service(id=uuid4(), name="Afeitado", duration_minutes=20, price=Decimal("8.00"))
        )

        assert data["category_id"] is None
        assert data["category_name"] is None

    def test_staff(self, staff_member):
        data = serialize_staff(staff_member)

        assert data["first_name"] == "Ana"
        assert data["specialties"] == ["Barba", "Fade"]
        assert data["service_ids"] == [str(staff_member.services[0].id)]


class TestCatalogService:
    @pytest.mark.asyncio
    async def test_empty_selection(self, fake_db, mock_session):
        assert await CatalogService(fake_db).list_staff_for_services(set()) == []
        mock_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_staff_must_offer_every_service(
        self, fake_db, mock_session, result_factory, staff_member
    ):
        mock_session.execute.return_value = result_factory(scalars=[staff_member])

        result = await CatalogService(fake_db).list_staff_for_services({uuid4(), uuid4()})

        assert [s["id"] for s in result] == [str(staff_member.id)]
        compiled = mock_session.execute.await_args.args[0].compile()
        assert "HAVING count(DISTINCT staff_services.service_id)" in str(compiled)
        assert 2 in compiled.params.values()

    @pytest.mark.asyncio
    async def test_get_unknown_staff(self, fake_db, mock_session, result_factory):
        mock_session.execute.return_value = result_factory(scalar=None)

        with pytest.raises(NotFoundError):
            await CatalogService(fake_db).get_staff(uuid4())
