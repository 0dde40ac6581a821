"""
Pydantic schemas for registration read surfaces and checkout initiation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class RegistrationResponse(BaseModel):
    id: int
    event_id: int
    vehicle_id: int
    user_id: int
    payment_status: str
    payment_session_id: str
    credential: str
    checked_in: bool
    checked_in_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RegistrationPublic(BaseModel):
    """Registration as shown on public listing pages. Never carries the credential."""

    id: int
    event_id: int
    vehicle_id: int
    payment_status: str
    checked_in: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class EventSummary(BaseModel):
    id: int
    name: str
    date: datetime
    location: str
    address: str
    capacity: int
    description: Optional[str] = None

    model_config = {"from_attributes": True}


class VehicleSummary(BaseModel):
    id: int
    user_id: int
    title: str
    make: str
    model: str
    year: int
    status: str

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    id: int
    name: str
    email: str

    model_config = {"from_attributes": True}


class VehicleRegistrationResponse(BaseModel):
    registration: RegistrationPublic
    event: Optional[EventSummary] = None


class EventRosterResponse(BaseModel):
    event_id: int
    registrations: list[RegistrationResponse]
    total: int
    checked_in: int
    capacity: int
    cached: bool = False


class CredentialImageResponse(BaseModel):
    registration_id: int
    credential: str
    image: str  # data:image/png;base64,...


class CheckoutCreate(BaseModel):
    event_id: int
    vehicle_id: int
    amount: Decimal = Field(..., gt=0, le=10000)


class CheckoutResponse(BaseModel):
    session_id: str
    checkout_url: Optional[str] = None
