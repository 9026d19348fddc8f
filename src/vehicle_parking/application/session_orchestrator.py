# File: src/vehicle_parking/application/session_orchestrator.py
"""
Parking Session Orchestrator

This module implements the application service that drives a parking
session through its lifecycle. It composes the SpaceAllocator, the
RateEngine, the vehicle registry and the session store inside one unit of
work per operation.

Use Cases:
1. Vehicle entry - allocate a space and open an ACTIVE session
2. Vehicle exit - price the stay, complete the session, free the space
3. Session cancellation - administrative close without a fee
4. Queries and reports - availability, search, revenue, consistency audit

Outcome Policy:
- Malformed input returns VALIDATION_ERROR before any transaction opens
- Business conflicts roll back and return {success: False, error_code}
- Consistency faults roll back and return INTERNAL_ERROR with a generic
  message; the specific code is logged
- Database failures roll back and raise PersistenceError
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Union
import logging

from pydantic import ValidationError as PydanticValidationError

from ..domain.exceptions import (
    ErrorCode, ParkingError, ValidationError, BusinessRuleError, ConsistencyError,
    ActiveSessionExistsError, SpaceAllocationError, SpaceReleaseFailedError
)
from ..domain.models import (
    LicensePlate, ParkingSession, Vehicle, VehicleType, minutes_between, utcnow
)
from ..infrastructure.repositories import UnitOfWork
from .dtos import (
    SessionDTO, SpaceDTO, EntryResultDTO, ExitResultDTO, CancelResultDTO,
    AvailabilityReportDTO, SearchCriteriaDTO, PeakHourDTO, RevenueReportDTO,
    ConsistencyReportDTO
)
from .rate_engine import RateEngine
from .space_allocator import SpaceAllocator


class SessionOrchestrator:
    """
    Main application service for parking sessions

    All collaborators share the unit of work passed in here, so the steps of
    one operation commit or roll back together.
    """

    GENERIC_FAILURE_MESSAGE = "Internal error while processing the request"

    def __init__(
        self,
        uow: UnitOfWork,
        space_allocator: Optional[SpaceAllocator] = None,
        rate_engine: Optional[RateEngine] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Args:
            uow: unit of work shared by every step of an operation
            space_allocator: defaults to a SpaceAllocator on the same uow
            rate_engine: defaults to a RateEngine on the same uow
            clock: returns the current naive UTC time (injectable for tests)
        """
        self.uow = uow
        self.space_allocator = space_allocator or SpaceAllocator(uow)
        self.rate_engine = rate_engine or RateEngine(uow)
        self.clock = clock or utcnow
        self.logger = logging.getLogger(self.__class__.__name__)

        self.logger.info("SessionOrchestrator initialized")

    # ========================================================================
    # STATE TRANSITIONS
    # ========================================================================

    def enter(self, license_plate: str, vehicle_type: Union[VehicleType, str]) -> EntryResultDTO:
        """
        Register a vehicle entry

        Use Case: Vehicle Entry
        1. Validate plate and vehicle class (no transaction on failure)
        2. Reject plates that already have an ACTIVE session
        3. Allocate a compatible space
        4. Register the vehicle or update its class
        5. Insert the ACTIVE session (insert-if-absent)
        6. Commit
        """
        self.logger.info(f"Processing entry for {license_plate} ({vehicle_type})")

        try:
            plate = LicensePlate.normalize(license_plate)
            vehicle_type = VehicleType.parse(vehicle_type)
        except ValidationError as e:
            self.logger.warning(f"Entry rejected: {e}")
            return EntryResultDTO.from_error(e)

        with self.uow:
            try:
                if self.uow.sessions.find_active_by_license_plate(plate) is not None:
                    raise ActiveSessionExistsError(f"Vehicle {plate} is already parked")

                space = self.space_allocator.allocate(vehicle_type)
                if space is None:
                    self.uow.rollback()
                    self.logger.info(f"Entry for {plate} refused: no {vehicle_type} space available")
                    return EntryResultDTO.failure(
                        ErrorCode.NO_SPACE_AVAILABLE,
                        f"No parking space available for {vehicle_type}"
                    )

                self._register_vehicle(plate, vehicle_type)

                now = self.clock()
                session = ParkingSession(
                    license_plate=plate,
                    space_id=space.space_id,
                    entry_time=now,
                    created_at=now,
                    updated_at=now
                )
                self.uow.sessions.add_active(session)
                self.uow.commit()

            except BusinessRuleError as e:
                self.uow.rollback()
                self.logger.info(f"Entry for {plate} refused: {e}")
                return EntryResultDTO.from_error(e)
            except ConsistencyError as e:
                return self._internal_failure(EntryResultDTO, "entry", e)

        self.logger.info(f"Vehicle {plate} entered, session {session.session_id} in space {space.space_id}")
        return EntryResultDTO(
            success=True,
            session=SessionDTO.model_validate(session),
            space=SpaceDTO.model_validate(space),
            message=f"Vehicle {plate} parked in space {space.space_id}"
        )

    def exit(self, license_plate: str) -> ExitResultDTO:
        """
        Register a vehicle exit

        Use Case: Vehicle Exit
        1. Validate plate
        2. Find the ACTIVE session and the vehicle
        3. Price the stay as of the entry time
        4. Complete the session
        5. Release the space (failure aborts everything)
        6. Commit
        """
        self.logger.info(f"Processing exit for {license_plate}")

        try:
            plate = LicensePlate.normalize(license_plate)
        except ValidationError as e:
            self.logger.warning(f"Exit rejected: {e}")
            return ExitResultDTO.from_error(e)

        with self.uow:
            try:
                session = self.uow.sessions.find_active_by_license_plate(plate)
                if session is None:
                    self.uow.rollback()
                    return ExitResultDTO.failure(
                        ErrorCode.NO_ACTIVE_SESSION, f"No active parking session for {plate}"
                    )

                vehicle = self.uow.vehicles.find_by_license_plate(plate)
                if vehicle is None:
                    self.uow.rollback()
                    self.logger.error(f"Active session {session.session_id} has no registered vehicle {plate}")
                    return ExitResultDTO.failure(
                        ErrorCode.VEHICLE_NOT_FOUND, f"Vehicle {plate} not found"
                    )

                exit_time = self.clock()
                fee = self.rate_engine.fee(session.entry_time, exit_time, vehicle.vehicle_type)

                session.complete(exit_time, fee)
                self.uow.sessions.update(session)
                self._release_space(session)
                self.uow.commit()

            except (BusinessRuleError, ValidationError) as e:
                self.uow.rollback()
                self.logger.info(f"Exit for {plate} refused: {e}")
                return ExitResultDTO.from_error(e)
            except ConsistencyError as e:
                return self._internal_failure(ExitResultDTO, "exit", e)

        duration = minutes_between(session.entry_time, session.exit_time)
        self.logger.info(f"Vehicle {plate} exited after {duration} min, fee {fee}")
        return ExitResultDTO(
            success=True,
            session=SessionDTO.model_validate(session),
            fee=fee,
            duration_minutes=duration,
            message=f"Vehicle {plate} exited, fee {fee}"
        )

    def cancel(self, session_id: str) -> CancelResultDTO:
        """Administratively cancel an ACTIVE session and free its space, without a fee"""
        self.logger.info(f"Processing cancellation of session {session_id}")

        if not isinstance(session_id, str) or not session_id.strip():
            return CancelResultDTO.failure(ErrorCode.VALIDATION_ERROR, "Session id is required")
        session_id = session_id.strip()

        with self.uow:
            try:
                session = self.uow.sessions.get(session_id)
                if session is None:
                    self.uow.rollback()
                    return CancelResultDTO.failure(
                        ErrorCode.SESSION_NOT_FOUND, f"Session {session_id} not found"
                    )

                session.cancel(self.clock())
                self.uow.sessions.update(session)
                self._release_space(session)
                self.uow.commit()

            except BusinessRuleError as e:
                self.uow.rollback()
                self.logger.info(f"Cancellation of {session_id} refused: {e}")
                return CancelResultDTO.from_error(e)
            except ConsistencyError as e:
                return self._internal_failure(CancelResultDTO, "cancellation", e)

        self.logger.info(f"Session {session_id} cancelled, space {session.space_id} released")
        return CancelResultDTO(
            success=True,
            session=SessionDTO.model_validate(session),
            message=f"Session {session_id} cancelled"
        )

    # ========================================================================
    # QUERIES AND REPORTS
    # ========================================================================

    def availability(self) -> AvailabilityReportDTO:
        return self.space_allocator.report()

    def get_session(self, session_id: str) -> Optional[SessionDTO]:
        with self.uow:
            session = self.uow.sessions.get(session_id)
        return SessionDTO.model_validate(session) if session else None

    def get_active_sessions(self) -> List[SessionDTO]:
        with self.uow:
            sessions = self.uow.sessions.find_active()
        return [SessionDTO.model_validate(s) for s in sessions]

    def get_vehicle_sessions(self, license_plate: str) -> List[SessionDTO]:
        """Session history of one plate, newest first"""
        plate = LicensePlate.normalize(license_plate)
        with self.uow:
            sessions = self.uow.sessions.find_by_license_plate(plate)
        return [SessionDTO.model_validate(s) for s in sessions]

    def search_sessions(
        self,
        criteria: Optional[SearchCriteriaDTO] = None,
        **filters
    ) -> List[SessionDTO]:
        """
        Search sessions, newest entry first

        Accepts a SearchCriteriaDTO or the same fields as keyword arguments.
        Raises ValidationError for malformed criteria.
        """
        if criteria is None:
            try:
                criteria = SearchCriteriaDTO(**filters)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid search criteria: {e}") from e

        vehicle_type = VehicleType.parse(criteria.vehicle_type) if criteria.vehicle_type else None

        with self.uow:
            sessions = self.uow.sessions.find_by_criteria(
                license_plate=criteria.license_plate,
                vehicle_type=vehicle_type,
                start_date=criteria.start_date,
                end_date=criteria.end_date,
                min_fee=criteria.min_fee,
                max_fee=criteria.max_fee,
            )

        if criteria.has_duration_filter:
            now = self.clock()
            sessions = [
                s for s in sessions
                if self._within(s.duration_minutes(now), criteria.min_duration, criteria.max_duration)
            ]

        self.logger.debug(f"Session search matched {len(sessions)} sessions")
        return [SessionDTO.model_validate(s) for s in sessions]

    def revenue_report(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> RevenueReportDTO:
        """
        Revenue over COMPLETED sessions with a fee entering in the window

        Peak hours count every session by entry hour, busiest first.
        """
        if start_date and end_date and start_date > end_date:
            raise ValidationError("start_date must not be after end_date")

        with self.uow:
            session_count, total_revenue = self.uow.sessions.revenue_totals(start_date, end_date)
            completed = self.uow.sessions.find_completed_with_fee(start_date, end_date)
            peak_hours = self.uow.sessions.entries_by_hour(start_date, end_date)

        average = 0.0
        if completed:
            minutes = [(s.exit_time - s.entry_time).total_seconds() / 60 for s in completed]
            average = round(sum(minutes) / len(minutes), 2)

        return RevenueReportDTO(
            total_revenue=total_revenue,
            session_count=session_count,
            average_duration_minutes=average,
            peak_hours=[PeakHourDTO(hour=hour, count=count) for hour, count in peak_hours],
            start_date=start_date,
            end_date=end_date,
        )

    def validate_consistency(self) -> ConsistencyReportDTO:
        """
        Audit occupancy against sessions without changing anything

        Checks that every ACTIVE session references an existing, occupied
        space held by no other ACTIVE session, and that every occupied space
        is referenced by an ACTIVE session.
        """
        with self.uow:
            active_sessions = self.uow.sessions.find_active()
            spaces = {space.space_id: space for space in self.uow.spaces.find_all()}

        issues: List[str] = []
        holders: Dict[str, List[str]] = {}

        for session in active_sessions:
            space = spaces.get(session.space_id)
            if space is None:
                issues.append(
                    f"Active session {session.session_id} references missing space {session.space_id}"
                )
            elif not space.is_occupied:
                issues.append(
                    f"Active session {session.session_id} references unoccupied space {session.space_id}"
                )
            holders.setdefault(session.space_id, []).append(session.session_id)

        for space_id, session_ids in holders.items():
            if len(session_ids) > 1:
                issues.append(
                    f"Space {space_id} is held by {len(session_ids)} active sessions: {', '.join(session_ids)}"
                )

        occupied = [space for space in spaces.values() if space.is_occupied]
        for space in occupied:
            if space.space_id not in holders:
                issues.append(f"Occupied space {space.space_id} has no active session")

        if issues:
            self.logger.warning(f"Consistency audit found {len(issues)} issues")
        else:
            self.logger.info("Consistency audit passed")

        return ConsistencyReportDTO(
            is_consistent=not issues,
            issues=issues,
            active_sessions=len(active_sessions),
            occupied_spaces=len(occupied),
        )

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _register_vehicle(self, plate: str, vehicle_type: VehicleType) -> None:
        vehicle = self.uow.vehicles.find_by_license_plate(plate)
        if vehicle is None:
            self.uow.vehicles.add(Vehicle(license_plate=plate, vehicle_type=vehicle_type, created_at=self.clock()))
            self.logger.debug(f"Registered vehicle {plate} as {vehicle_type}")
        elif vehicle.vehicle_type is not vehicle_type:
            self.uow.vehicles.update_type(plate, vehicle_type)
            self.logger.info(f"Vehicle {plate} class changed from {vehicle.vehicle_type} to {vehicle_type}")

    def _release_space(self, session: ParkingSession) -> None:
        try:
            self.space_allocator.release(session.space_id)
        except SpaceAllocationError as e:
            raise SpaceReleaseFailedError(
                f"Failed to release space {session.space_id} for session {session.session_id}: {e.message}"
            ) from e

    def _internal_failure(self, result_cls, operation: str, error: ParkingError):
        self.uow.rollback()
        self.logger.error(f"Consistency fault during {operation}: {error}", exc_info=True)
        return result_cls.failure(ErrorCode.INTERNAL_ERROR, self.GENERIC_FAILURE_MESSAGE)

    @staticmethod
    def _within(value: int, lower: Optional[int], upper: Optional[int]) -> bool:
        if lower is not None and value < lower:
            return False
        if upper is not None and value > upper:
            return False
        return True
