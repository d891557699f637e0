"""Pydantic models for the notification inbox endpoints."""

from pydantic import BaseModel, Field


class DeviceRegistrationRequest(BaseModel):
    token: str = Field(min_length=1, max_length=512)
    plataforma: str | None = Field(default=None, max_length=20)
