# backend/slotrelease/schemas/appointments.py

from typing import Any, Optional
from pydantic import BaseModel, Field


class BookingRequest(BaseModel):
    slot_id: int
    # Already validated by the patient/auth layer; stored as-is
    patient_data: dict[str, Any] = Field(default_factory=dict)
    doctor_id: Optional[str] = None
    insurance_type: Optional[str] = None
    body_side: Optional[str] = None

    model_config = {"from_attributes": True}
