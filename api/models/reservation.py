"""Pydantic models for the customer self-service reservation endpoints."""

from datetime import date, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from booking.utils.date_parser import parse_date, parse_time
from booking.validators.transaction_validators import ServiceSelection


class ServiceSelectionRequest(BaseModel):
    """One requested service: ``{"id": ..., "cantidad": 2}``."""

    id: UUID
    cantidad: int = Field(default=1, ge=1)

    def to_selection(self) -> ServiceSelection:
        return ServiceSelection(service_id=self.id, quantity=self.cantidad)


def coerce_selections(v: Any) -> Any:
    """Accept bare ids ("uuid") next to ``{"id", "cantidad"}`` objects."""
    if isinstance(v, list):
        return [{"id": item} if isinstance(item, (str, UUID)) else item for item in v]
    return v


class ProcessReservationRequest(BaseModel):
    """Body of POST /api/reservacion/procesar."""

    empleadoId: UUID
    servicios: list[ServiceSelectionRequest]
    fecha: date
    horario: time
    total: Decimal  # Informational only, the server recomputes it
    notas: str | None = Field(default=None, max_length=1000)

    @field_validator("servicios", mode="before")
    @classmethod
    def accept_bare_ids(cls, v: Any) -> Any:
        return coerce_selections(v)

    @field_validator("fecha", mode="before")
    @classmethod
    def parse_fecha(cls, v: Any) -> Any:
        return parse_date(v) if isinstance(v, (str, date)) else v

    @field_validator("horario", mode="before")
    @classmethod
    def parse_horario(cls, v: Any) -> Any:
        return parse_time(v) if isinstance(v, (str, time)) else v

    def selections(self) -> list[ServiceSelection]:
        return [s.to_selection() for s in self.servicios]


class ReservationData(BaseModel):
    citaId: str
    fecha: str
    horaInicio: str
    horaFin: str
    total: str


class ProcessReservationResponse(BaseModel):
    success: bool = True
    message: str = "Reservación procesada exitosamente"
    data: ReservationData
