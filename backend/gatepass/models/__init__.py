from gatepass.models.user import User
from gatepass.models.event import Event
from gatepass.models.vehicle import Vehicle
from gatepass.models.registration import Registration

__all__ = ["User", "Event", "Vehicle", "Registration"]
