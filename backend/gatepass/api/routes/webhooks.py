"""
Stripe webhook endpoint.

The raw body is read before anything else: the signature covers the exact
bytes Stripe sent, so the request must not go through JSON parsing first.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gatepass.db.session import get_db
from gatepass.schemas.webhook import WebhookAck
from gatepass.services.payment_service import handle_webhook

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Receive Stripe events.

    200 for processed, duplicate and ignored deliveries; 400 for bad
    signatures and malformed metadata; 503 when the store is unavailable so
    Stripe retries.
    """
    payload = await request.body()
    outcome = await handle_webhook(db, payload, request.headers.get("stripe-signature"))
    return WebhookAck(outcome=outcome)
