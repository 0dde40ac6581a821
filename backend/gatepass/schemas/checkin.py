"""
Pydantic schemas for the gate: validate a scanned credential, then admit.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from gatepass.schemas.registration import (
    RegistrationResponse, EventSummary, VehicleSummary, UserSummary,
)


class CredentialScan(BaseModel):
    credential: str = Field(..., min_length=1, max_length=512)


class AdmissionViewResponse(BaseModel):
    registration: RegistrationResponse
    vehicle: Optional[VehicleSummary] = None
    event: Optional[EventSummary] = None
    user: Optional[UserSummary] = None


class CheckInResponse(BaseModel):
    registration_id: int
    already_checked_in: bool
    checked_in_at: Optional[datetime] = None
