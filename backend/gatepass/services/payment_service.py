"""
Payment confirmation ingress and checkout initiation.

A vendor starts a Stripe Checkout session carrying {userId, eventId,
vehicleId} as metadata. When Stripe reports the session paid, the webhook
turns that event into exactly one registration.

Webhook contract:
  1. Verify the stripe-signature header over the raw body. Nothing in the
     payload is parsed before this passes.
  2. Acknowledge and drop every event type except checkout completion.
  3. Completion with missing/unknown metadata is a permanent failure: 400,
     error log, no retry expected to help.
  4. Known payment session -> duplicate delivery, acknowledged with 200.
  5. Otherwise mint a credential and insert. Losing an insert race to a
     concurrent delivery is also a duplicate, not an error.
  6. Store connectivity failures -> 503 so Stripe redelivers.
"""

import json
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import stripe
from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from gatepass.core.config import get_settings
from gatepass.core.exceptions import (
    CredentialConflict, DuplicateDelivery, MalformedMetadata, PaymentProviderError,
    SignatureInvalid, StoreUnavailable, WebhookNotConfigured,
)
from gatepass.core.logging import get_logger
from gatepass.core.metrics import record_webhook, registration_latency
from gatepass.models.event import Event
from gatepass.models.user import User
from gatepass.models.vehicle import Vehicle
from gatepass.schemas.webhook import CHECKOUT_COMPLETED, CheckoutCompletedEvent, WebhookEnvelope
from gatepass.services import registration_service
from gatepass.services.cache_service import invalidate_roster
from gatepass.services.credential_service import mint_credential, now_ms

logger = get_logger(__name__)

# Delayed payment methods report completion first and settlement later
COMPLETION_EVENT_TYPES = (CHECKOUT_COMPLETED, "checkout.session.async_payment_succeeded")
SETTLED_PAYMENT_STATUSES = ("paid", "no_payment_required")

OUTCOME_CREATED = "created"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"


def verify_webhook(payload: bytes, signature: Optional[str]) -> None:
    """Check the Stripe signature over the raw request body."""
    settings = get_settings()
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("stripe_webhook_secret_missing")
        raise WebhookNotConfigured()

    if not signature:
        raise SignatureInvalid("Missing stripe-signature header")

    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"),
            signature,
            settings.STRIPE_WEBHOOK_SECRET,
            settings.STRIPE_WEBHOOK_TOLERANCE,
        )
    except UnicodeDecodeError:
        raise SignatureInvalid("Payload is not UTF-8")
    except stripe.SignatureVerificationError:
        raise SignatureInvalid()


async def handle_webhook(db: AsyncSession, payload: bytes, signature: Optional[str]) -> str:
    """Process one webhook delivery. Returns the outcome label."""
    try:
        verify_webhook(payload, signature)
    except SignatureInvalid as e:
        record_webhook("invalid_signature")
        logger.warning("webhook_signature_invalid", reason=e.detail)
        raise

    try:
        body = json.loads(payload)
        envelope = WebhookEnvelope.model_validate(body)
    except (ValueError, ValidationError) as e:
        record_webhook("malformed")
        logger.error("webhook_payload_invalid", error=str(e))
        raise MalformedMetadata("Invalid payload")

    if envelope.type not in COMPLETION_EVENT_TYPES:
        logger.info("webhook_event_ignored", event_id=envelope.id, event_type=envelope.type)
        record_webhook(OUTCOME_IGNORED)
        return OUTCOME_IGNORED

    try:
        event = CheckoutCompletedEvent.model_validate(body)
    except ValidationError as e:
        record_webhook("malformed")
        logger.error(
            "webhook_malformed_metadata",
            event_id=envelope.id,
            event_type=envelope.type,
            errors=e.errors(include_url=False, include_input=False),
        )
        raise MalformedMetadata()

    try:
        with registration_latency.time():
            outcome = await process_checkout_completed(db, event)
    except MalformedMetadata:
        record_webhook("malformed")
        raise
    except StoreUnavailable:
        record_webhook("store_unavailable")
        raise

    record_webhook(outcome)
    return outcome


async def process_checkout_completed(db: AsyncSession, event: CheckoutCompletedEvent) -> str:
    """Turn a verified, well-formed completion event into a registration."""
    settings = get_settings()
    session = event.data.object
    meta = session.metadata

    if session.payment_status is not None and session.payment_status not in SETTLED_PAYMENT_STATUSES:
        logger.info(
            "webhook_payment_not_settled",
            payment_session_id=session.id,
            payment_status=session.payment_status,
        )
        return OUTCOME_IGNORED

    existing = await registration_service.get_by_payment_session(db, session.id)
    if existing:
        logger.info(
            "webhook_duplicate_delivery",
            event_id=event.id,
            payment_session_id=session.id,
            registration_id=existing.id,
        )
        return OUTCOME_DUPLICATE

    await _require_parties(db, event.id, meta.user_id, meta.event_id, meta.vehicle_id)

    for attempt in range(1, settings.CREDENTIAL_MINT_ATTEMPTS + 1):
        credential = mint_credential(meta.user_id, meta.event_id, meta.vehicle_id, now_ms() + attempt - 1)
        try:
            registration = await registration_service.create_registration(
                db,
                event_id=meta.event_id,
                vehicle_id=meta.vehicle_id,
                user_id=meta.user_id,
                payment_session_id=session.id,
                credential=credential,
            )
        except DuplicateDelivery:
            logger.info("webhook_duplicate_delivery", event_id=event.id, payment_session_id=session.id, raced=True)
            return OUTCOME_DUPLICATE
        except CredentialConflict:
            logger.warning("credential_collision", payment_session_id=session.id, attempt=attempt)
            continue

        await invalidate_roster(registration.event_id)
        return OUTCOME_CREATED

    raise CredentialConflict(f"Could not mint a unique credential after {settings.CREDENTIAL_MINT_ATTEMPTS} attempts")


async def _require_parties(db: AsyncSession, stripe_event_id: str, user_id: int, event_id: int, vehicle_id: int) -> None:
    with registration_service.store_errors("load_metadata_references"):
        missing = [
            name
            for name, model, key in (
                ("userId", User, user_id),
                ("eventId", Event, event_id),
                ("vehicleId", Vehicle, vehicle_id),
            )
            if await db.get(model, key) is None
        ]
    if missing:
        logger.error("webhook_unknown_metadata_reference", event_id=stripe_event_id, missing=missing)
        raise MalformedMetadata(f"Metadata references unknown records: {', '.join(missing)}")


def _amount_in_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


async def create_checkout_session(
    db: AsyncSession,
    caller_id: int,
    event_id: int,
    vehicle_id: int,
    amount: Decimal,
):
    """
    Start a Stripe Checkout session for a vendor slot.

    Capacity is not checked here: the marketplace overbooks and resolves it
    on site.
    """
    settings = get_settings()
    if not settings.STRIPE_SECRET_KEY:
        raise PaymentProviderError("Stripe is not configured")
    stripe.api_key = settings.STRIPE_SECRET_KEY

    user = await db.get(User, caller_id)
    event = await db.get(Event, event_id)
    if not event:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Event {event_id} not found")

    vehicle = await db.get(Vehicle, vehicle_id)
    if not vehicle:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Vehicle {vehicle_id} not found")
    if vehicle.user_id != caller_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Vehicle belongs to another user")

    try:
        session = await stripe.checkout.Session.create_async(
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": settings.REGISTRATION_CURRENCY,
                        "product_data": {
                            "name": f"Vendor Registration - {event.name}",
                            "description": f"Registration for {vehicle.year} {vehicle.make} {vehicle.model}",
                        },
                        "unit_amount": _amount_in_cents(amount),
                    },
                    "quantity": 1,
                }
            ],
            mode="payment",
            success_url=f"{settings.APP_URL}/myAccount?payment=success",
            cancel_url=f"{settings.APP_URL}/myAccount/new-listing",
            metadata={
                "userId": str(caller_id),
                "eventId": str(event_id),
                "vehicleId": str(vehicle_id),
            },
            customer_email=user.email if user else None,
        )
    except stripe.StripeError as e:
        logger.error("checkout_session_failed", event_id=event_id, vehicle_id=vehicle_id, error=str(e))
        raise PaymentProviderError()

    logger.info(
        "checkout_session_created",
        session_id=session.id,
        user_id=caller_id,
        event_id=event_id,
        vehicle_id=vehicle_id,
    )
    return session
