"""
Registration store: the only shared mutable state in the admission pipeline.

CONCURRENCY STRATEGY: Constraints and Conditional Updates
=========================================================

Problem:
  Stripe redelivers webhooks on any ambiguous failure, and several API
  workers may receive copies of the same completion event at once. At the
  gate, two staff devices can scan the same pass within milliseconds.
  Any "read, decide, write" sequence in application code races across
  processes.

Creation (first writer wins):
  INSERT with a UNIQUE constraint on payment_session_id. The loser of a
  race gets an IntegrityError, which we translate into DuplicateDelivery.
  The pre-insert lookup done by the ingress is only a fast path for the
  common redelivery case; the constraint is what guarantees one row.

Check-in (compare-and-set):
  UPDATE registrations SET checked_in = true, ...
  WHERE id = :id AND checked_in = false

  rows_affected == 1  -> this caller performed the admit
  rows_affected == 0  -> already admitted (or no such registration)

  On PostgreSQL the second UPDATE blocks on the row lock, re-evaluates the
  WHERE clause after the first commits, and matches nothing. No SELECT
  FOR UPDATE and no application lock needed.

Transient failures (connection loss, timeouts) surface as StoreUnavailable
so webhook deliveries are retried by Stripe and gate scans can be repeated.
"""

import asyncio
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from gatepass.core.exceptions import (
    CredentialConflict, DuplicateDelivery, RegistrationNotFound, StoreUnavailable,
)
from gatepass.core.logging import get_logger
from gatepass.core.metrics import record_db_operation
from gatepass.models.event import Event
from gatepass.models.registration import Registration
from gatepass.models.user import User
from gatepass.models.vehicle import Vehicle

logger = get_logger(__name__)


@contextmanager
def store_errors(operation: str):
    """Translate driver-level connectivity failures into StoreUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError, asyncio.TimeoutError) as e:
        logger.error("store_unavailable", operation=operation, error=str(e))
        raise StoreUnavailable() from e


async def create_registration(
    db: AsyncSession,
    *,
    event_id: int,
    vehicle_id: int,
    user_id: int,
    payment_session_id: str,
    credential: str,
) -> Registration:
    """
    Insert a completed registration and commit.

    Raises DuplicateDelivery if the payment session already has a row
    (including when a concurrent insert won the race) and
    CredentialConflict if the credential is already taken.
    """
    registration = Registration(
        event_id=event_id,
        vehicle_id=vehicle_id,
        user_id=user_id,
        payment_status="completed",
        payment_session_id=payment_session_id,
        credential=credential,
        checked_in=False,
    )

    with store_errors("create_registration"):
        db.add(registration)
        try:
            await db.flush()
            await db.commit()
        except IntegrityError:
            await db.rollback()
            record_db_operation("conflict")
            if await get_by_payment_session(db, payment_session_id):
                logger.info(
                    "registration_insert_lost_race",
                    payment_session_id=payment_session_id,
                )
                raise DuplicateDelivery(payment_session_id)
            if await get_by_credential(db, credential):
                raise CredentialConflict()
            raise

        await db.refresh(registration)

    record_db_operation("write")
    logger.info(
        "registration_created",
        registration_id=registration.id,
        event_id=event_id,
        vehicle_id=vehicle_id,
        user_id=user_id,
        payment_session_id=payment_session_id,
    )
    return registration


async def mark_checked_in(
    db: AsyncSession,
    registration_id: int,
    operator_id: Optional[int],
    checked_in_at: datetime,
    timeout: Optional[float] = None,
) -> int:
    """
    Flip checked_in false -> true atomically. Returns rows affected (0 or 1).

    `timeout` bounds the UPDATE only; the commit runs to completion so a
    caller never loses an admit it actually performed.
    """
    statement = (
        update(Registration)
        .where(
            Registration.id == registration_id,
            Registration.checked_in.is_(False),
        )
        .values(
            checked_in=True,
            checked_in_at=checked_in_at,
            checked_in_by=operator_id,
        )
        .execution_options(synchronize_session=False)
    )
    with store_errors("mark_checked_in"):
        result = await asyncio.wait_for(db.execute(statement), timeout=timeout)
        await db.commit()

    record_db_operation("write")
    return result.rowcount


async def get_registration(db: AsyncSession, registration_id: int) -> Registration:
    with store_errors("get_registration"):
        result = await db.execute(
            select(Registration)
            .where(Registration.id == registration_id)
            .execution_options(populate_existing=True)
        )
        registration = result.scalar_one_or_none()

    record_db_operation("read")
    if not registration:
        raise RegistrationNotFound(f"Registration {registration_id} not found")
    return registration


async def get_by_payment_session(db: AsyncSession, payment_session_id: str) -> Optional[Registration]:
    with store_errors("get_by_payment_session"):
        result = await db.execute(
            select(Registration).where(Registration.payment_session_id == payment_session_id)
        )
    record_db_operation("read")
    return result.scalar_one_or_none()


async def get_by_credential(db: AsyncSession, credential: str) -> Optional[Registration]:
    """Exact-match lookup. The unique index on credential backs this."""
    with store_errors("get_by_credential"):
        result = await db.execute(
            select(Registration)
            .where(Registration.credential == credential)
            .execution_options(populate_existing=True)
        )
    record_db_operation("read")
    return result.scalar_one_or_none()


async def list_by_event(db: AsyncSession, event_id: int) -> list[Registration]:
    with store_errors("list_by_event"):
        result = await db.execute(
            select(Registration)
            .where(Registration.event_id == event_id)
            .order_by(Registration.created_at.asc(), Registration.id.asc())
        )
    record_db_operation("read")
    return list(result.scalars().all())


async def list_by_user(db: AsyncSession, user_id: int) -> list[Registration]:
    with store_errors("list_by_user"):
        result = await db.execute(
            select(Registration)
            .where(Registration.user_id == user_id)
            .order_by(Registration.created_at.desc(), Registration.id.desc())
        )
    record_db_operation("read")
    return list(result.scalars().all())


async def get_by_vehicle(db: AsyncSession, vehicle_id: int) -> Optional[tuple[Registration, Optional[Event]]]:
    """Most recent registration for a vehicle, with its event."""
    with store_errors("get_by_vehicle"):
        result = await db.execute(
            select(Registration)
            .where(Registration.vehicle_id == vehicle_id)
            .order_by(Registration.created_at.desc(), Registration.id.desc())
            .limit(1)
        )
        registration = result.scalar_one_or_none()
        if not registration:
            return None
        event = await db.get(Event, registration.event_id)

    record_db_operation("read")
    return registration, event


async def load_admission_parties(
    db: AsyncSession, registration: Registration
) -> tuple[Optional[Vehicle], Optional[Event], Optional[User]]:
    """Vehicle, event and vendor a registration points at."""
    with store_errors("load_admission_parties"):
        vehicle = await db.get(Vehicle, registration.vehicle_id)
        event = await db.get(Event, registration.event_id)
        user = await db.get(User, registration.user_id)
    record_db_operation("read")
    return vehicle, event, user
