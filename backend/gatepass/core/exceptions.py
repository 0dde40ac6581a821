"""
Admission pipeline error taxonomy.

Every error carries the HTTP status it maps to; the application registers a
single handler that renders them as {"detail": ..., "error": ...}.
DuplicateDelivery is raised inside the store and converted to a successful
outcome by the ingress, it never reaches a client.
"""

from fastapi import status


class GatepassError(Exception):
    """Base exception for the admission pipeline."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: str = "Internal error"

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)

    @property
    def code(self) -> str:
        return type(self).__name__


class SignatureInvalid(GatepassError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid signature"


class MalformedMetadata(GatepassError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Completion event is missing registration metadata"


class WebhookNotConfigured(GatepassError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = "Stripe webhook endpoint is not configured"


class DuplicateDelivery(GatepassError):
    """A registration already exists for this payment session."""

    status_code = status.HTTP_200_OK
    detail = "Duplicate delivery"

    def __init__(self, payment_session_id: str):
        self.payment_session_id = payment_session_id
        super().__init__(f"Registration already exists for session {payment_session_id}")


class CredentialNotFound(GatepassError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "No registration matches this credential"


class MalformedCredential(CredentialNotFound):
    detail = "Credential is not in a recognised format"


class CredentialForged(CredentialNotFound):
    """Well-formed credential whose signature does not verify."""

    detail = "Credential signature is invalid"


class RegistrationNotFound(GatepassError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Registration not found"


class StoreUnavailable(GatepassError):
    """Transient store failure. Callers may retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = "Registration store unavailable, retry later"


class EncodingError(GatepassError):
    status_code = 422
    detail = "Credential cannot be encoded as a QR image"


class PaymentProviderError(GatepassError):
    status_code = status.HTTP_502_BAD_GATEWAY
    detail = "Payment provider request failed"


class CredentialConflict(GatepassError):
    """Freshly minted credential collided with an existing one. Mint again."""

    status_code = status.HTTP_409_CONFLICT
    detail = "Credential already issued"
