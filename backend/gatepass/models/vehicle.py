"""Vehicle listing. Only the fields the gate shows to staff are modelled."""

from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint, Numeric
from sqlalchemy.orm import relationship

from gatepass.db.base import Base, TimestampMixin


class Vehicle(Base, TimestampMixin):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    make = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    year = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=True)
    status = Column(String(20), nullable=False, default="pending")  # pending, approved, rejected

    owner = relationship("User", back_populates="vehicles")
    registrations = relationship("Registration", back_populates="vehicle")

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="check_vehicle_status"),
    )

    def __repr__(self) -> str:
        return f"<Vehicle(id={self.id}, {self.year} {self.make} {self.model}, status={self.status})>"
