"""
Vendor-facing registration endpoints: start checkout, list and show passes.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatepass.core.security import get_current_user, get_current_user_id
from gatepass.db.session import get_db
from gatepass.models.registration import Registration
from gatepass.models.user import User
from gatepass.schemas.registration import (
    CheckoutCreate, CheckoutResponse, CredentialImageResponse, RegistrationResponse,
)
from gatepass.services import registration_service
from gatepass.services.credential_service import render_credential_data_url
from gatepass.services.payment_service import create_checkout_session

router = APIRouter(prefix="/registrations", tags=["Registrations"])


def _ensure_visible(registration: Registration, user: User) -> None:
    if registration.user_id != user.id and not user.is_operator:
        # Do not reveal that the id exists
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Registration not found")


@router.post("/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def start_checkout(
    checkout: CheckoutCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a Stripe Checkout session for registering a vehicle at an event.
    The registration itself is created by the webhook once payment completes.
    """
    session = await create_checkout_session(
        db, user_id, checkout.event_id, checkout.vehicle_id, checkout.amount
    )
    return CheckoutResponse(session_id=session.id, checkout_url=getattr(session, "url", None))


@router.get("/me", response_model=list[RegistrationResponse])
async def list_my_registrations(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Registrations owned by the caller, newest first."""
    return await registration_service.list_by_user(db, user_id)


@router.get("/{registration_id}", response_model=RegistrationResponse)
async def get_registration_endpoint(
    registration_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    registration = await registration_service.get_registration(db, registration_id)
    _ensure_visible(registration, user)
    return registration


@router.get("/{registration_id}/credential", response_model=CredentialImageResponse)
async def get_credential_image(
    registration_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """QR code for the pass, as a PNG data URL."""
    registration = await registration_service.get_registration(db, registration_id)
    _ensure_visible(registration, user)
    return CredentialImageResponse(
        registration_id=registration.id,
        credential=registration.credential,
        image=render_credential_data_url(registration.credential),
    )
