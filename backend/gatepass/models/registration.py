"""
Registration: one paid vendor slot for a vehicle at an event.

Key design decisions:
- Unique constraint on payment_session_id makes creation idempotent across
  webhook redeliveries, even when two deliveries race on different workers
- Unique constraint on credential keeps every QR token pointing at exactly
  one registration
- checked_in only ever goes false -> true, via a conditional UPDATE
- (event_id, vehicle_id) is deliberately NOT unique: the marketplace does
  not yet enforce one registration per vehicle per event
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from gatepass.db.base import Base, TimestampMixin

PAYMENT_STATUSES = ("pending", "completed", "failed")


class Registration(Base, TimestampMixin):
    __tablename__ = "registrations"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    payment_status = Column(String(20), nullable=False, default="completed")
    payment_session_id = Column(String(255), nullable=False)
    credential = Column(String(255), nullable=False)
    checked_in = Column(Boolean, nullable=False, default=False)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    event = relationship("Event", back_populates="registrations")
    vehicle = relationship("Vehicle", back_populates="registrations")
    user = relationship("User", back_populates="registrations", foreign_keys=[user_id])

    __table_args__ = (
        UniqueConstraint("payment_session_id", name="uq_registration_payment_session"),
        UniqueConstraint("credential", name="uq_registration_credential"),
        CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed')",
            name="check_registration_payment_status",
        ),
        Index("ix_registrations_payment_status", "payment_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Registration(id={self.id}, event={self.event_id}, vehicle={self.vehicle_id}, "
            f"checked_in={self.checked_in})>"
        )
