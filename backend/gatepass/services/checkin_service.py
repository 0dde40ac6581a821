"""
Gate check-in: validate a scanned credential, then admit.

The operator UI makes two calls so staff can see who they are admitting
before committing:

  validate_credential(token)   read-only; resolves registration, vehicle,
                               event and vendor, or rejects the scan
  check_in(registration_id)    compare-and-set false -> true

Per registration:

  not scanned --check_in--> checked in        already_checked_in = False
  checked in  --check_in--> checked in        already_checked_in = True

A re-scan is not an error, but staff see it flagged: a pass presented twice
may be a copied pass. When two devices race on a fresh registration exactly
one of them sees already_checked_in = False.

Lookups and the admit UPDATE are bounded by CHECKIN_LOOKUP_TIMEOUT so a slow
database degrades into a retryable scan instead of a stalled gate line. The
admit commit itself is never cancelled.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from gatepass.core.config import get_settings
from gatepass.core.exceptions import (
    CredentialForged, CredentialNotFound, MalformedCredential, RegistrationNotFound, StoreUnavailable,
)
from gatepass.core.logging import get_logger
from gatepass.core.metrics import checkin_latency, checkin_admits, record_admit, record_scan
from gatepass.models.event import Event
from gatepass.models.registration import Registration
from gatepass.models.user import User
from gatepass.models.vehicle import Vehicle
from gatepass.services import registration_service
from gatepass.services.cache_service import invalidate_roster
from gatepass.services.credential_service import verify_credential

logger = get_logger(__name__)


@dataclass
class AdmissionView:
    registration: Registration
    vehicle: Optional[Vehicle]
    event: Optional[Event]
    user: Optional[User]


@dataclass
class CheckInResult:
    registration_id: int
    already_checked_in: bool
    checked_in_at: Optional[datetime]


async def _bounded(coro, operation: str):
    timeout = get_settings().CHECKIN_LOOKUP_TIMEOUT
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error("checkin_store_timeout", operation=operation, timeout=timeout)
        raise StoreUnavailable() from e


async def validate_credential(db: AsyncSession, token: str, operator_id: Optional[int] = None) -> AdmissionView:
    """Resolve a scanned credential. No side effects on the registration."""
    try:
        verify_credential(token)
    except CredentialForged:
        record_scan("forged")
        logger.warning("checkin_credential_forged", operator_id=operator_id)
        raise
    except MalformedCredential:
        record_scan("malformed")
        logger.warning("checkin_credential_malformed", operator_id=operator_id)
        raise

    try:
        registration = await _bounded(registration_service.get_by_credential(db, token.strip()), "get_by_credential")
        if not registration:
            record_scan("not_found")
            logger.warning("checkin_credential_not_found", operator_id=operator_id)
            raise CredentialNotFound()

        vehicle, event, user = await _bounded(
            registration_service.load_admission_parties(db, registration), "load_admission_parties"
        )
    except StoreUnavailable:
        record_scan("unavailable")
        raise

    record_scan("valid")
    logger.info(
        "checkin_credential_validated",
        registration_id=registration.id,
        event_id=registration.event_id,
        already_checked_in=registration.checked_in,
        operator_id=operator_id,
    )
    return AdmissionView(registration=registration, vehicle=vehicle, event=event, user=user)


async def check_in(db: AsyncSession, registration_id: int, operator_id: Optional[int] = None) -> CheckInResult:
    """Admit a registration. Safe to call concurrently from several devices."""
    now = datetime.now(timezone.utc)

    with checkin_latency.time():
        affected = await registration_service.mark_checked_in(
            db, registration_id, operator_id, now, timeout=get_settings().CHECKIN_LOOKUP_TIMEOUT,
        )

    if affected == 1:
        record_admit(already_checked_in=False)
        logger.info("checkin_admitted", registration_id=registration_id, operator_id=operator_id)
        registration = await registration_service.get_registration(db, registration_id)
        await invalidate_roster(registration.event_id)
        return CheckInResult(
            registration_id=registration_id,
            already_checked_in=False,
            checked_in_at=registration.checked_in_at or now,
        )

    # Nothing flipped: either admitted before, or no such registration
    try:
        registration = await registration_service.get_registration(db, registration_id)
    except RegistrationNotFound:
        checkin_admits.labels(result="not_found").inc()
        logger.warning("checkin_registration_not_found", registration_id=registration_id, operator_id=operator_id)
        raise

    record_admit(already_checked_in=True)
    logger.warning(
        "checkin_repeat_scan",
        registration_id=registration_id,
        first_checked_in_at=str(registration.checked_in_at),
        first_checked_in_by=registration.checked_in_by,
        operator_id=operator_id,
    )
    return CheckInResult(
        registration_id=registration_id,
        already_checked_in=True,
        checked_in_at=registration.checked_in_at,
    )
