"""
Vehicle-scoped registration lookup, used by listing pages to show the
vehicle's upcoming pop-up. Public, so it only returns RegistrationPublic:
the credential is the admission key and stays behind the owner routes.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatepass.db.session import get_db
from gatepass.schemas.registration import EventSummary, RegistrationPublic, VehicleRegistrationResponse
from gatepass.services import registration_service

router = APIRouter(prefix="/vehicles", tags=["Vehicles"])


@router.get("/{vehicle_id}/registration", response_model=VehicleRegistrationResponse)
async def get_vehicle_registration(vehicle_id: int, db: AsyncSession = Depends(get_db)):
    """Most recent registration for a vehicle, with its event. 404 if none."""
    found = await registration_service.get_by_vehicle(db, vehicle_id)
    if not found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Vehicle {vehicle_id} has no registration",
        )
    registration, event = found
    return VehicleRegistrationResponse(
        registration=RegistrationPublic.model_validate(registration),
        event=EventSummary.model_validate(event) if event else None,
    )
