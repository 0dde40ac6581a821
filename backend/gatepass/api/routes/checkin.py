"""
Gate endpoints for operators: validate a scanned credential, then admit.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from gatepass.core.security import require_operator
from gatepass.db.session import get_db
from gatepass.models.user import User
from gatepass.schemas.checkin import AdmissionViewResponse, CheckInResponse, CredentialScan
from gatepass.schemas.registration import EventSummary, RegistrationResponse, UserSummary, VehicleSummary
from gatepass.services.checkin_service import check_in, validate_credential

router = APIRouter(prefix="/checkin", tags=["Check-in"])


@router.post("/validate", response_model=AdmissionViewResponse)
async def validate_scan(
    scan: CredentialScan,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """
    Look up who a scanned pass belongs to. Read-only.
    404 if the pass is unknown, forged or unreadable; the scan can be retried.
    """
    view = await validate_credential(db, scan.credential, operator_id=operator.id)
    return AdmissionViewResponse(
        registration=RegistrationResponse.model_validate(view.registration),
        vehicle=VehicleSummary.model_validate(view.vehicle) if view.vehicle else None,
        event=EventSummary.model_validate(view.event) if view.event else None,
        user=UserSummary.model_validate(view.user) if view.user else None,
    )


@router.post("/{registration_id}", response_model=CheckInResponse)
async def admit(
    registration_id: int,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """
    Mark a registration checked in.
    `already_checked_in` is true when the pass was admitted before.
    """
    result = await check_in(db, registration_id, operator_id=operator.id)
    return CheckInResponse(
        registration_id=result.registration_id,
        already_checked_in=result.already_checked_in,
        checked_in_at=result.checked_in_at,
    )
