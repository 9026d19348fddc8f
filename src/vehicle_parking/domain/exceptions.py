# File: src/vehicle_parking/domain/exceptions.py
"""
Exception Taxonomy for the Parking Session Engine

Every failure carries a stable ErrorCode so that presentation layers can
map outcomes without parsing messages.

Categories:
1. Validation - malformed plate/class/amount, rejected before any transaction
2. Business rules - expected outcomes of normal operation (already parked, no rate)
3. Space allocation - release of unknown or already available spaces
4. Consistency - faults that indicate a bug or data corruption
5. Persistence - database failures wrapped after rollback
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Stable error codes returned in operation results"""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_TIME_ORDER = "INVALID_TIME_ORDER"

    ALREADY_PARKED = "ALREADY_PARKED"
    NO_SPACE_AVAILABLE = "NO_SPACE_AVAILABLE"
    NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
    VEHICLE_NOT_FOUND = "VEHICLE_NOT_FOUND"
    NO_RATE_FOUND = "NO_RATE_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_NOT_ACTIVE = "SESSION_NOT_ACTIVE"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    CANNOT_CANCEL_COMPLETED = "CANNOT_CANCEL_COMPLETED"

    SPACE_NOT_FOUND = "SPACE_NOT_FOUND"
    SPACE_ALREADY_AVAILABLE = "SPACE_ALREADY_AVAILABLE"

    SPACE_RELEASE_FAILED = "SPACE_RELEASE_FAILED"
    UNSUPPORTED_RATE_KIND = "UNSUPPORTED_RATE_KIND"
    RATE_NOT_FOUND = "RATE_NOT_FOUND"

    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# ============================================================================
# BASE EXCEPTION
# ============================================================================

class ParkingError(Exception):
    """Base exception for the parking session engine"""

    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


# ============================================================================
# VALIDATION
# ============================================================================

class ValidationError(ParkingError):
    """Malformed input (plate, vehicle class, rate definition)"""
    default_code = ErrorCode.VALIDATION_ERROR


class InvalidTimeOrderError(ValidationError):
    """Exit time is not strictly after entry time"""
    default_code = ErrorCode.INVALID_TIME_ORDER


# ============================================================================
# BUSINESS RULES
# ============================================================================

class BusinessRuleError(ParkingError):
    """Expected business outcome that prevents an operation"""
    pass


class ActiveSessionExistsError(BusinessRuleError):
    """The plate already has an ACTIVE session"""
    default_code = ErrorCode.ALREADY_PARKED


class NoRateFoundError(BusinessRuleError):
    """No rate rule is effective for the vehicle class"""
    default_code = ErrorCode.NO_RATE_FOUND


class SessionStateError(BusinessRuleError):
    """Illegal session state transition"""
    default_code = ErrorCode.SESSION_NOT_ACTIVE


class AlreadyCompletedError(SessionStateError):
    default_code = ErrorCode.ALREADY_COMPLETED


class CannotCancelCompletedError(SessionStateError):
    default_code = ErrorCode.CANNOT_CANCEL_COMPLETED


class SessionNotActiveError(SessionStateError):
    default_code = ErrorCode.SESSION_NOT_ACTIVE


# ============================================================================
# SPACE ALLOCATION
# ============================================================================

class SpaceAllocationError(ParkingError):
    """Base exception for space allocation errors"""
    pass


class SpaceNotFoundError(SpaceAllocationError):
    default_code = ErrorCode.SPACE_NOT_FOUND


class SpaceAlreadyAvailableError(SpaceAllocationError):
    default_code = ErrorCode.SPACE_ALREADY_AVAILABLE


# ============================================================================
# CONSISTENCY AND PERSISTENCE
# ============================================================================

class ConsistencyError(ParkingError):
    """Invariant violation; the surrounding transaction must be rolled back"""
    default_code = ErrorCode.INTERNAL_ERROR


class SpaceReleaseFailedError(ConsistencyError):
    default_code = ErrorCode.SPACE_RELEASE_FAILED


class UnsupportedRateKindError(ConsistencyError):
    default_code = ErrorCode.UNSUPPORTED_RATE_KIND


class RateNotFoundError(ParkingError):
    default_code = ErrorCode.RATE_NOT_FOUND


class PersistenceError(ParkingError):
    """Database failure, raised after the transaction was rolled back"""
    default_code = ErrorCode.PERSISTENCE_ERROR
