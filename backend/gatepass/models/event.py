"""
Pop-up event that vendors register vehicles for.

`capacity` is the advertised number of vendor slots. Registration does not
enforce it: overbooking is resolved on site.
"""

from sqlalchemy import Column, Integer, String, DateTime, Index, CheckConstraint
from sqlalchemy.orm import relationship

from gatepass.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False)
    location = Column(String(255), nullable=False)
    address = Column(String(500), nullable=False)
    capacity = Column(Integer, nullable=False, default=0)

    registrations = relationship("Registration", back_populates="event")

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="check_event_capacity_non_negative"),
        Index("ix_events_date", "date"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, name={self.name}, capacity={self.capacity})>"
