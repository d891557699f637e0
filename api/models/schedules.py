"""Pydantic models for staff working hours and absences."""

from datetime import datetime, time
from typing import Any

from pydantic import BaseModel, Field, field_validator

from booking.services.staff_schedule_service import WorkingWindow
from booking.utils.date_parser import parse_time, to_local


class WorkingHoursRequest(BaseModel):
    dia_semana: int = Field(ge=0, le=6, description="0=lunes ... 6=domingo")
    hora_inicio: time
    hora_fin: time

    @field_validator("hora_inicio", "hora_fin", mode="before")
    @classmethod
    def parse_hhmm(cls, v: Any) -> Any:
        return parse_time(v) if isinstance(v, str) else v

    def to_window(self) -> WorkingWindow:
        return WorkingWindow(
            day_of_week=self.dia_semana,
            start_time=self.hora_inicio,
            end_time=self.hora_fin,
        )


class ReplaceWorkingHoursRequest(BaseModel):
    horarios: list[WorkingHoursRequest]


class AbsenceRequest(BaseModel):
    inicio: datetime
    fin: datetime
    motivo: str | None = Field(default=None, max_length=255)

    @field_validator("inicio", "fin")
    @classmethod
    def ensure_business_tz(cls, v: datetime) -> datetime:
        # Naive datetimes are wall-clock times of the business
        return to_local(v)
