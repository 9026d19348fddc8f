# File: src/vehicle_parking/application/dtos.py
"""
Data Transfer Objects (DTOs) for the Parking Session Engine

This module defines DTOs for data transfer between layers:
1. Entity DTOs - Read-only views of spaces and sessions
2. Result DTOs - Outcomes of enter/exit/cancel ({success, error_code, ...})
3. Report DTOs - Availability, revenue and consistency reports
4. Query DTOs - Search criteria with range validation

DTO Principles:
- Validation at creation
- No business logic, only data
- Serialization/deserialization support
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import json

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..domain.exceptions import ErrorCode, ParkingError
from ..domain.models import (
    LicensePlate, VehicleType, SpaceType, SessionStatus, utcnow
)


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,  # Allow creation from domain entities
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to dictionary"""
        data = self.model_dump(**kwargs)
        if exclude_none:
            data = {k: v for k, v in data.items() if v is not None}
        return data

    def to_json(self, **kwargs) -> str:
        """Convert DTO to JSON string"""
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseDTO':
        """Create DTO from dictionary"""
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        """Create DTO from JSON string"""
        data = json.loads(json_str)
        return cls(**data)


# ============================================================================
# ENTITY DTOs
# ============================================================================

class SpaceDTO(BaseDTO):
    """Parking space DTO"""
    space_id: str = Field(description="Space identifier")
    space_type: SpaceType = Field(description="Space class")
    zone: str = Field(description="Zone name")
    is_occupied: bool = Field(description="Occupancy flag")


class SessionDTO(BaseDTO):
    """Parking session DTO"""
    session_id: str = Field(description="Session ID (UUID4)")
    license_plate: str = Field(description="License plate")
    space_id: str = Field(description="Occupied space")
    entry_time: datetime = Field(description="Entry time (UTC)")
    exit_time: Optional[datetime] = Field(default=None, description="Exit time (UTC)")
    fee: Optional[Decimal] = Field(default=None, ge=0, description="Charged fee")
    status: SessionStatus = Field(description="Session status")
    created_at: Optional[datetime] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)


# ============================================================================
# OPERATION RESULT DTOs
# ============================================================================

class OperationResultDTO(BaseDTO):
    """Common shape of enter/exit/cancel results"""
    success: bool = Field(description="Operation success")
    error_code: Optional[ErrorCode] = Field(default=None, description="Stable error code on failure")
    message: Optional[str] = Field(default=None, description="Result message")

    @classmethod
    def failure(cls, code: ErrorCode, message: str):
        return cls(success=False, error_code=code, message=message)

    @classmethod
    def from_error(cls, error: ParkingError):
        return cls.failure(error.code, error.message)


class EntryResultDTO(OperationResultDTO):
    """DTO for vehicle entry result"""
    session: Optional[SessionDTO] = Field(default=None, description="Created session")
    space: Optional[SpaceDTO] = Field(default=None, description="Allocated space")


class ExitResultDTO(OperationResultDTO):
    """DTO for vehicle exit result"""
    session: Optional[SessionDTO] = Field(default=None, description="Completed session")
    fee: Optional[Decimal] = Field(default=None, ge=0, description="Charged fee")
    duration_minutes: Optional[int] = Field(default=None, ge=0, description="Billed duration")


class CancelResultDTO(OperationResultDTO):
    """DTO for session cancellation result"""
    session: Optional[SessionDTO] = Field(default=None, description="Cancelled session")


# ============================================================================
# REPORT DTOs
# ============================================================================

class SpaceCountsDTO(BaseDTO):
    """Occupancy counts for one space class or zone"""
    total: int = Field(ge=0)
    occupied: int = Field(ge=0)
    available: int = Field(ge=0)


class AvailabilityReportDTO(BaseDTO):
    """Facility availability report"""
    total_spaces: int = Field(ge=0)
    occupied_spaces: int = Field(ge=0)
    available_spaces: int = Field(ge=0)
    utilization_percentage: float = Field(ge=0, le=100)
    by_space_type: Dict[str, SpaceCountsDTO] = Field(default_factory=dict)
    by_zone: Dict[str, SpaceCountsDTO] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=utcnow)


class PeakHourDTO(BaseDTO):
    hour: int = Field(ge=0, le=23, description="Hour of day (UTC)")
    count: int = Field(ge=0, description="Sessions entering in this hour")


class RevenueReportDTO(BaseDTO):
    """Revenue report over completed sessions"""
    total_revenue: Decimal = Field(ge=0)
    session_count: int = Field(ge=0)
    average_duration_minutes: float = Field(ge=0)
    peak_hours: List[PeakHourDTO] = Field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ConsistencyReportDTO(BaseDTO):
    """Result of the occupancy/session consistency audit"""
    is_consistent: bool
    issues: List[str] = Field(default_factory=list)
    active_sessions: int = Field(ge=0)
    occupied_spaces: int = Field(ge=0)
    checked_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# QUERY DTOs
# ============================================================================

class SearchCriteriaDTO(BaseDTO):
    """
    Session search criteria

    All filters are optional and combined with AND. Entry dates are
    inclusive; durations are in minutes, measured to exit time or to now
    for active sessions. Unknown filter names are rejected.
    """
    model_config = ConfigDict(extra='forbid')

    license_plate: Optional[str] = Field(default=None, description="Exact plate")
    vehicle_type: Optional[VehicleType] = Field(default=None, description="Vehicle class")
    start_date: Optional[datetime] = Field(default=None, description="Earliest entry time")
    end_date: Optional[datetime] = Field(default=None, description="Latest entry time")
    min_fee: Optional[Decimal] = Field(default=None, ge=0)
    max_fee: Optional[Decimal] = Field(default=None, ge=0)
    min_duration: Optional[int] = Field(default=None, ge=0, description="Minutes")
    max_duration: Optional[int] = Field(default=None, ge=0, description="Minutes")

    @field_validator('license_plate')
    @classmethod
    def normalize_license_plate(cls, v):
        if v is None:
            return v
        try:
            return LicensePlate.normalize(v)
        except ParkingError as e:
            raise ValueError(e.message)

    @field_validator('vehicle_type', mode='before')
    @classmethod
    def parse_vehicle_type(cls, v):
        if v is None:
            return v
        try:
            return VehicleType.parse(v)
        except ParkingError as e:
            raise ValueError(e.message)

    @model_validator(mode='after')
    def validate_ranges(self):
        """Lower bounds must not exceed upper bounds"""
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        if self.min_fee is not None and self.max_fee is not None and self.min_fee > self.max_fee:
            raise ValueError("min_fee must not exceed max_fee")
        if (self.min_duration is not None and self.max_duration is not None
                and self.min_duration > self.max_duration):
            raise ValueError("min_duration must not exceed max_duration")
        return self

    @property
    def has_duration_filter(self) -> bool:
        return self.min_duration is not None or self.max_duration is not None
