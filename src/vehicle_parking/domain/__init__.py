"""Domain layer: entities, value objects, selection strategies and errors"""

from .exceptions import ErrorCode, ParkingError
from .models import (
    LicensePlate, VehicleType, SpaceType, RateKind, SessionStatus,
    Vehicle, ParkingSpace, ParkingSession, ParkingRate
)

__all__ = [
    "ErrorCode", "ParkingError",
    "LicensePlate", "VehicleType", "SpaceType", "RateKind", "SessionStatus",
    "Vehicle", "ParkingSpace", "ParkingSession", "ParkingRate",
]
