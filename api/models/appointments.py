"""Pydantic models for the staff/admin appointment endpoints."""

from datetime import date, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from api.models.reservation import ServiceSelectionRequest, coerce_selections
from booking.utils.date_parser import parse_date, parse_time
from booking.validators.transaction_validators import ServiceSelection
from database.models import PaymentMethod, PaymentStatus


class _DateTimeFields(BaseModel):
    @field_validator("fecha", mode="before", check_fields=False)
    @classmethod
    def parse_fecha(cls, v: Any) -> Any:
        return parse_date(v) if isinstance(v, str) else v

    @field_validator("horario", mode="before", check_fields=False)
    @classmethod
    def parse_horario(cls, v: Any) -> Any:
        return parse_time(v) if isinstance(v, str) else v

    @field_validator("servicios", mode="before", check_fields=False)
    @classmethod
    def accept_bare_ids(cls, v: Any) -> Any:
        return coerce_selections(v)


class CreateAppointmentRequest(_DateTimeFields):
    """Staff-side booking for an existing customer."""

    cliente_id: UUID
    empleado_id: UUID
    servicios: list[ServiceSelectionRequest]
    fecha: date
    horario: time
    notas: str | None = Field(default=None, max_length=1000)

    def selections(self) -> list[ServiceSelection]:
        return [s.to_selection() for s in self.servicios]


class UpdateAppointmentRequest(_DateTimeFields):
    """Reschedule and/or edit notes. ``fecha`` and ``horario`` go together."""

    empleado_id: UUID | None = None
    fecha: date | None = None
    horario: time | None = None
    servicios: list[ServiceSelectionRequest] | None = None
    notas: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def date_and_time_together(self) -> "UpdateAppointmentRequest":
        if (self.fecha is None) != (self.horario is None):
            raise ValueError("fecha y horario deben enviarse juntos")
        return self

    def selections(self) -> list[ServiceSelection] | None:
        if self.servicios is None:
            return None
        return [s.to_selection() for s in self.servicios]


class StatusChangeRequest(BaseModel):
    """``estado``: pendiente|confirmada|en_proceso|completada|cancelada (or English names)."""

    estado: str = Field(min_length=1, max_length=30)


class PaymentCreateRequest(BaseModel):
    monto: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    metodo: PaymentMethod = PaymentMethod.CASH
    estado: PaymentStatus = PaymentStatus.COMPLETED
    impuesto: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=10, decimal_places=2)
    propina: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=10, decimal_places=2)
    referencia: str | None = Field(default=None, max_length=100)
    factura_emitida: bool = False
    permitir_exceso: bool = False


class PaymentUpdateRequest(BaseModel):
    estado: PaymentStatus | None = None
    metodo: PaymentMethod | None = None
    referencia: str | None = Field(default=None, max_length=100)
    factura_emitida: bool | None = None
    permitir_exceso: bool = False
