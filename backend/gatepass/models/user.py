"""
User model. Accounts are provisioned by the marketplace's sign-in flow;
this service reads them to resolve vendors and gate operators.
"""

from sqlalchemy import Column, Integer, String, Boolean, CheckConstraint
from sqlalchemy.orm import relationship

from gatepass.db.base import Base, TimestampMixin

OPERATOR_ROLES = ("admin", "superAdmin")


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="user")  # user, admin, superAdmin
    is_active = Column(Boolean, default=True, nullable=False)

    vehicles = relationship("Vehicle", back_populates="owner")
    registrations = relationship("Registration", back_populates="user", foreign_keys="Registration.user_id")

    __table_args__ = (
        CheckConstraint("role IN ('user', 'admin', 'superAdmin')", name="check_user_role"),
    )

    @property
    def is_operator(self) -> bool:
        return self.role in OPERATOR_ROLES

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
