from gatepass.schemas.registration import (
    RegistrationResponse, RegistrationPublic, EventRosterResponse, VehicleRegistrationResponse,
    CredentialImageResponse, CheckoutCreate, CheckoutResponse,
)
from gatepass.schemas.checkin import CredentialScan, AdmissionViewResponse, CheckInResponse
from gatepass.schemas.webhook import CheckoutCompletedEvent, WebhookEnvelope, WebhookAck

__all__ = [
    "RegistrationResponse", "RegistrationPublic", "EventRosterResponse", "VehicleRegistrationResponse",
    "CredentialImageResponse", "CheckoutCreate", "CheckoutResponse",
    "CredentialScan", "AdmissionViewResponse", "CheckInResponse",
    "CheckoutCompletedEvent", "WebhookEnvelope", "WebhookAck",
]
