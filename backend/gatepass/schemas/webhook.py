"""
Stripe webhook envelope schemas.

Only the fields the admission pipeline reads are modelled; Stripe sends far
more and extra keys are ignored.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

CHECKOUT_COMPLETED = "checkout.session.completed"


class WebhookEnvelope(BaseModel):
    """Outer event: just enough to route on the type."""

    id: str
    type: str

    model_config = ConfigDict(extra="ignore")


class RegistrationMetadata(BaseModel):
    user_id: int = Field(..., alias="userId")
    event_id: int = Field(..., alias="eventId")
    vehicle_id: int = Field(..., alias="vehicleId")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CheckoutSession(BaseModel):
    id: str = Field(..., min_length=1)
    payment_status: Optional[str] = None
    metadata: RegistrationMetadata

    model_config = ConfigDict(extra="ignore")


class CheckoutSessionData(BaseModel):
    object: CheckoutSession

    model_config = ConfigDict(extra="ignore")


class CheckoutCompletedEvent(WebhookEnvelope):
    data: CheckoutSessionData


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
