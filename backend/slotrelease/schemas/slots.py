# backend/slotrelease/schemas/slots.py
"""
Pydantic schemas for slot generation and the slot pool.
"""

from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator


class PoolEntry(BaseModel):
    """The open slot of one (examination, date); what the pool cache stores."""
    examination_id: int
    date: date
    slot_id: int
    device_id: int
    device_name: str = ""
    start_time: datetime
    end_time: datetime

    model_config = {"from_attributes": True}


class GenerateSlotsRequest(BaseModel):
    """Parameters of a generation run. Empty id lists mean "all"."""
    device_ids: list[int] | None = None
    examination_ids: list[int] | None = None
    start_date: date | None = None   # Defaults to today
    number_of_days: int | None = Field(default=None, ge=1)  # Defaults to generation_days

    @field_validator("device_ids", "examination_ids")
    @classmethod
    def empty_means_all(cls, v: list[int] | None) -> list[int] | None:
        return v or None


class GenerationError(BaseModel):
    """Per device/day failure collected during generation."""
    device_id: int
    date: date
    message: str


class GenerationDetail(BaseModel):
    device_id: int
    examination_id: int
    date: date
    slots: int


class GenerationReport(BaseModel):
    """Result of generate_slots."""
    start_date: date
    number_of_days: int
    slots_created: int = 0
    skipped_device_days: int = 0
    groups_opened: int = 0
    errors: list[GenerationError] = Field(default_factory=list)
    details: list[GenerationDetail] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors
