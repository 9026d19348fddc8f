# File: src/vehicle_parking/domain/models.py
"""
Domain Models for the Parking Session Engine

This module contains:
1. Value Objects: LicensePlate (normalized, immutable)
2. Enums: VehicleType, SpaceType, RateKind, SessionStatus
3. Entities: Vehicle, ParkingSpace, ParkingSession, ParkingRate

Entities carry their own state-transition rules. The ParkingSession state
machine is ACTIVE -> COMPLETED | CANCELLED, and terminal states never change.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union
import re
import uuid

from .exceptions import (
    ValidationError, InvalidTimeOrderError, UnsupportedRateKindError,
    AlreadyCompletedError, CannotCancelCompletedError, SessionNotActiveError
)


MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 24 * 60

_ONE_MINUTE_US = 60 * 1_000_000


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def minutes_between(start: datetime, end: datetime) -> int:
    """Elapsed whole minutes from start to end, rounded up"""
    elapsed_us = (end - start) // timedelta(microseconds=1)
    return -(-elapsed_us // _ONE_MINUTE_US)


def _ceil_div(value: int, divisor: int) -> int:
    return -(-value // divisor)


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class _ParsableEnum(str, Enum):
    """String enum that parses case-insensitive input"""

    @classmethod
    def parse(cls, value: Union[str, "_ParsableEnum"]):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        allowed = ", ".join(member.value for member in cls)
        raise ValidationError(f"Invalid {cls.__name__}: {value!r}. Must be one of: {allowed}")

    def __str__(self) -> str:
        return self.value


class VehicleType(_ParsableEnum):
    """Vehicle classes used for space compatibility and rate lookup"""
    CAR = "CAR"
    MOTORCYCLE = "MOTORCYCLE"
    TRUCK = "TRUCK"
    VAN = "VAN"


class SpaceType(_ParsableEnum):
    """Parking space classes"""
    CAR = "CAR"
    MOTORCYCLE = "MOTORCYCLE"
    TRUCK = "TRUCK"
    HANDICAP = "HANDICAP"


class RateKind(_ParsableEnum):
    """Pricing models"""
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    FLAT = "FLAT"


class SessionStatus(_ParsableEnum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.ACTIVE


# ============================================================================
# VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class LicensePlate:
    """
    Value Object: License plate number

    Whitespace is removed and letters are uppercased; the result must be
    6-10 alphanumeric characters.
    """
    value: str

    PATTERN = re.compile(r'^[A-Z0-9]{6,10}$')

    def __post_init__(self):
        if not isinstance(self.value, str) or not self.value.strip():
            raise ValidationError("License plate cannot be empty")

        normalized = re.sub(r'\s', '', self.value).upper()
        if not self.PATTERN.match(normalized):
            raise ValidationError(
                f"Invalid license plate format: {self.value!r}. "
                f"Must be 6-10 alphanumeric characters."
            )
        object.__setattr__(self, 'value', normalized)

    @classmethod
    def normalize(cls, value: str) -> str:
        """Validate and return the canonical plate string"""
        return cls(value).value

    def __str__(self) -> str:
        return self.value


# ============================================================================
# ENTITIES
# ============================================================================

@dataclass
class Vehicle:
    """A registered vehicle, created on first entry"""
    license_plate: str
    vehicle_type: VehicleType
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ParkingSpace:
    """A parking space; occupancy changes only through allocate/release"""
    space_id: str
    space_type: SpaceType
    zone: str
    is_occupied: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ParkingSession:
    """
    Entity: one stay of a vehicle in one space

    Created ACTIVE on entry, then transitions exactly once to COMPLETED
    (exit, with fee) or CANCELLED (administrative, without fee).
    """
    license_plate: str
    space_id: str
    entry_time: datetime
    session_id: str = field(default_factory=new_id)
    exit_time: Optional[datetime] = None
    fee: Optional[Decimal] = None
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    def complete(self, exit_time: datetime, fee: Decimal) -> None:
        """Close the session with its exit time and fee"""
        if self.status is SessionStatus.COMPLETED:
            raise AlreadyCompletedError(f"Session {self.session_id} is already completed")
        if self.status is not SessionStatus.ACTIVE:
            raise SessionNotActiveError(
                f"Session {self.session_id} is {self.status.value} and cannot be completed"
            )
        if exit_time <= self.entry_time:
            raise InvalidTimeOrderError("Exit time must be after entry time")
        if fee is None or fee < 0:
            raise ValidationError("Fee must be a non-negative amount")

        self.exit_time = exit_time
        self.fee = fee
        self.status = SessionStatus.COMPLETED
        self.updated_at = exit_time

    def cancel(self, at: Optional[datetime] = None) -> None:
        """Cancel an active session; at is the cancellation time (default now)"""
        if self.status is SessionStatus.COMPLETED:
            raise CannotCancelCompletedError(f"Cannot cancel completed session {self.session_id}")
        if self.status is not SessionStatus.ACTIVE:
            raise SessionNotActiveError(f"Session {self.session_id} is not active and cannot be cancelled")

        self.status = SessionStatus.CANCELLED
        self.updated_at = at or utcnow()

    def duration_minutes(self, now: Optional[datetime] = None) -> int:
        """Minutes parked so far, measured to exit time for closed sessions"""
        end = self.exit_time or now or utcnow()
        return minutes_between(self.entry_time, end)

    def __str__(self) -> str:
        duration = f" ({self.duration_minutes()}min)" if self.exit_time else " (ongoing)"
        return f"ParkingSession({self.session_id}, {self.license_plate}, {self.status.value}{duration})"


@dataclass
class ParkingRate:
    """
    Entity: a pricing rule for one vehicle class

    Several rules may be effective at once; the cheapest one for the actual
    duration wins. Only effective_until changes after creation.
    """
    vehicle_type: VehicleType
    rate_kind: RateKind
    amount: Decimal
    effective_from: datetime
    effective_until: Optional[datetime] = None
    rate_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def validate(self) -> bool:
        """Check the rule definition, raising ValidationError on the first problem"""
        try:
            self.vehicle_type = VehicleType.parse(self.vehicle_type)
            self.rate_kind = RateKind.parse(self.rate_kind)
        except ValidationError as e:
            raise ValidationError(f"Rate validation failed: {e.message}") from e

        try:
            amount = Decimal(str(self.amount))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f"Rate amount must be a number, got: {self.amount!r}")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Rate amount must be positive")
        self.amount = amount

        if not isinstance(self.effective_from, datetime):
            raise ValidationError("Effective from date must be a valid datetime")
        if self.effective_until is not None:
            if not isinstance(self.effective_until, datetime):
                raise ValidationError("Effective until date must be a valid datetime")
            if self.effective_until <= self.effective_from:
                raise ValidationError("Effective until must be after effective from")
        return True

    def is_effective_on(self, at: datetime) -> bool:
        if at < self.effective_from:
            return False
        return self.effective_until is None or self.effective_until > at

    def cost_for(self, duration_minutes: int) -> Decimal:
        """Cost of parking for the given number of minutes under this rule"""
        if self.rate_kind is RateKind.FLAT:
            return self.amount
        elif self.rate_kind is RateKind.HOURLY:
            return _ceil_div(duration_minutes, MINUTES_PER_HOUR) * self.amount
        elif self.rate_kind is RateKind.DAILY:
            return _ceil_div(duration_minutes, MINUTES_PER_DAY) * self.amount
        raise UnsupportedRateKindError(f"Unsupported rate kind: {self.rate_kind!r}")

    def __str__(self) -> str:
        until = f" until {self.effective_until.isoformat()}" if self.effective_until else " (ongoing)"
        return (
            f"ParkingRate({self.vehicle_type}, {self.rate_kind}, {self.amount}, "
            f"from {self.effective_from.isoformat()}{until})"
        )
