"""
Unit tests for payment_service.py.

Tests coverage:
- ensure_within_total() overpayment rule and override
- record_payment() amount validation, permissions, paid_at
- Pending payments are not counted as received money
- update_payment() settling a pending payment
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from booking.errors import NotFoundError, PermissionDeniedError, ValidationError
from booking.services.payment_service import PaymentService, ensure_within_total
from database.models import Payment, PaymentMethod, PaymentStatus


def existing_payment(amount, status, paid_at=None):
    return Payment(
        id=uuid4(),
        appointment_id=uuid4(),
        amount=Decimal(amount),
        tax=Decimal("0.00"),
        tip=Decimal("0.00"),
        method=PaymentMethod.CASH,
        status=status,
        invoice_issued=False,
        paid_at=paid_at,
    )


@pytest.fixture
def payments(fake_db, fixed_now):
    return PaymentService(fake_db, now_provider=lambda: fixed_now)


@pytest.fixture
def ledger():
    """Patch the row loaders: appointment total 20.00 and the given payments."""

    def build(rows):
        return patch.multiple(
            PaymentService,
            _lock_appointment=AsyncMock(return_value=MagicMock()),
            _appointment_total=AsyncMock(return_value=Decimal("20.00")),
            _payments=AsyncMock(return_value=rows),
        )

    return build


class TestEnsureWithinTotal:
    def test_exact_total_is_allowed(self):
        ensure_within_total(Decimal("20.00"), Decimal("15.00"), Decimal("5.00"))

    def test_overpayment(self):
        with pytest.raises(ValidationError) as exc_info:
            ensure_within_total(Decimal("20.00"), Decimal("15.00"), Decimal("5.01"))

        assert exc_info.value.error_code == "OVERPAYMENT"
        assert exc_info.value.details["already_paid"] == "15.00"

    def test_override(self):
        ensure_within_total(Decimal("20.00"), Decimal("20.00"), Decimal("3.00"), allow_override=True)


class TestRecordPayment:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
    async def test_non_positive_amount(self, payments, staff_user, amount):
        with pytest.raises(ValidationError) as exc_info:
            await payments.record_payment(uuid4(), staff_user, amount=amount)

        assert exc_info.value.error_code == "INVALID_AMOUNT"

    @pytest.mark.asyncio
    async def test_customer_cannot_record(self, payments, customer_user):
        with pytest.raises(PermissionDeniedError):
            await payments.record_payment(uuid4(), customer_user, amount=Decimal("5.00"))

    @pytest.mark.asyncio
    async def test_overpayment_rejected(self, payments, mock_session, staff_user, ledger):
        rows = [
            existing_payment("15.00", PaymentStatus.COMPLETED),
            existing_payment("20.00", PaymentStatus.PENDING),
        ]

        with ledger(rows):
            with pytest.raises(ValidationError) as exc_info:
                await payments.record_payment(uuid4(), staff_user, amount=Decimal("10.00"))

        assert exc_info.value.error_code == "OVERPAYMENT"
        mock_session.add.assert_not_called()
        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_completed_payment_sets_paid_at(
        self, payments, mock_session, staff_user, ledger, fixed_now
    ):
        appointment_id = uuid4()
        rows = [existing_payment("15.00", PaymentStatus.COMPLETED)]

        with ledger(rows):
            result = await payments.record_payment(
                appointment_id,
                staff_user,
                amount=Decimal("5.00"),
                method=PaymentMethod.CARD,
                tip=Decimal("2.00"),
                reference_code="VOUCHER-991",
            )

        payment = mock_session.add.call_args.args[0]
        assert payment.appointment_id == appointment_id
        assert payment.paid_at == fixed_now
        mock_session.commit.assert_awaited_once()
        assert result["amount"] == "5.00"
        assert result["tip"] == "2.00"
        assert result["method"] == "card"
        assert result["status"] == "completed"
        assert result["reference_code"] == "VOUCHER-991"

    @pytest.mark.asyncio
    async def test_pending_payment_skips_total_check(self, payments, mock_session, staff_user, ledger):
        rows = [existing_payment("20.00", PaymentStatus.COMPLETED)]

        with ledger(rows):
            result = await payments.record_payment(
                uuid4(), staff_user, amount=Decimal("50.00"), status=PaymentStatus.PENDING
            )

        assert result["paid_at"] is None
        assert result["status"] == "pending"

    @pytest.mark.asyncio
    async def test_override_allows_excess(self, payments, mock_session, staff_user, ledger):
        rows = [existing_payment("20.00", PaymentStatus.COMPLETED)]

        with ledger(rows):
            await payments.record_payment(
                uuid4(), staff_user, amount=Decimal("5.00"), allow_override=True
            )

        mock_session.commit.assert_awaited_once()


class TestUpdatePayment:
    @pytest.mark.asyncio
    async def test_settle_pending_payment(self, payments, mock_session, staff_user, ledger, fixed_now):
        pending = existing_payment("20.00", PaymentStatus.PENDING)

        with ledger([pending]):
            result = await payments.update_payment(
                uuid4(), pending.id, staff_user, status=PaymentStatus.COMPLETED, invoice_issued=True
            )

        assert pending.status == PaymentStatus.COMPLETED
        assert pending.paid_at == fixed_now
        assert pending.invoice_issued is True
        assert result["status"] == "completed"

    @pytest.mark.asyncio
    async def test_settling_beyond_total(self, payments, staff_user, ledger):
        paid = existing_payment("15.00", PaymentStatus.COMPLETED)
        pending = existing_payment("20.00", PaymentStatus.PENDING)

        with ledger([paid, pending]):
            with pytest.raises(ValidationError) as exc_info:
                await payments.update_payment(
                    uuid4(), pending.id, staff_user, status=PaymentStatus.COMPLETED
                )

        assert exc_info.value.error_code == "OVERPAYMENT"
        assert pending.status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_payment(self, payments, staff_user, ledger):
        with ledger([existing_payment("20.00", PaymentStatus.PENDING)]):
            with pytest.raises(NotFoundError):
                await payments.update_payment(uuid4(), uuid4(), staff_user, status=PaymentStatus.CANCELLED)
