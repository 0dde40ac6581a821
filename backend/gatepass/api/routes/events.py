"""
Operator roster per event, with Redis caching.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatepass.core.logging import get_logger
from gatepass.core.security import require_operator
from gatepass.db.session import get_db
from gatepass.models.event import Event
from gatepass.models.user import User
from gatepass.schemas.registration import EventRosterResponse, RegistrationResponse
from gatepass.services import registration_service
from gatepass.services.cache_service import get_cached_roster, set_cached_roster

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


@router.get("/{event_id}/registrations", response_model=EventRosterResponse)
async def event_roster(
    event_id: int,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """
    All registrations for an event with check-in totals.
    Cached in Redis; invalidated on new registrations and on check-in.
    Capacity is informational, registrations may exceed it.
    """
    cached = await get_cached_roster(event_id)
    if cached:
        logger.info("roster_cache_hit", event_id=event_id)
        cached["cached"] = True
        return EventRosterResponse(**cached)

    event = await db.get(Event, event_id)
    if not event:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {event_id} not found",
        )

    registrations = await registration_service.list_by_event(db, event_id)
    response_data = {
        "event_id": event_id,
        "registrations": [RegistrationResponse.model_validate(r).model_dump() for r in registrations],
        "total": len(registrations),
        "checked_in": sum(1 for r in registrations if r.checked_in),
        "capacity": event.capacity,
        "cached": False,
    }

    await set_cached_roster(event_id, response_data)
    return EventRosterResponse(**response_data)
