# File: src/vehicle_parking/application/space_allocator.py
"""
Space Allocation Service

Hands out and reclaims parking spaces while enforcing vehicle-class to
space-class compatibility.

Responsibilities:
1. Allocate the best free space for a vehicle class
2. Release an occupied space
3. Report availability by space class and by zone

Every call re-reads current occupancy from the unit of work; nothing is
cached in process. Called inside an open unit of work the allocator joins
that transaction, otherwise it runs and commits its own.
"""

from typing import List, Optional, Tuple, Union
import logging

from ..domain.exceptions import SpaceNotFoundError, SpaceAlreadyAvailableError
from ..domain.models import ParkingSpace, SpaceType, VehicleType
from ..domain.strategies import (
    SpaceSelectionStrategy, PriorityOrderStrategy, eligible_space_types
)
from ..infrastructure.repositories import UnitOfWork
from .dtos import AvailabilityReportDTO, SpaceCountsDTO


class SpaceAllocator:
    """Allocates and releases parking spaces"""

    def __init__(self, uow: UnitOfWork, strategy: Optional[SpaceSelectionStrategy] = None):
        self.uow = uow
        self.strategy = strategy or PriorityOrderStrategy()
        self.logger = logging.getLogger(self.__class__.__name__)

    def eligible_space_types(self, vehicle_type: Union[VehicleType, str]) -> Tuple[SpaceType, ...]:
        return eligible_space_types(VehicleType.parse(vehicle_type))

    def allocate(self, vehicle_type: Union[VehicleType, str]) -> Optional[ParkingSpace]:
        """
        Occupy the best free space for the vehicle class

        Candidates are ranked by the selection strategy. Occupancy is set with
        a conditional update, so a candidate taken by a concurrent writer is
        skipped in favour of the next one.

        Returns: the occupied space, None when nothing eligible is free
        """
        vehicle_type = VehicleType.parse(vehicle_type)

        with self.uow:
            candidates = self.uow.spaces.find_available_by_types(eligible_space_types(vehicle_type))

            for space in self.strategy.rank(candidates, vehicle_type):
                if self.uow.spaces.mark_occupied(space.space_id):
                    space.is_occupied = True
                    self.uow.commit()
                    self.logger.info(
                        f"Allocated {space.space_type} space {space.space_id} "
                        f"in zone {space.zone} to {vehicle_type}"
                    )
                    return space
                self.logger.warning(f"Space {space.space_id} was taken concurrently, trying next candidate")

            self.logger.info(f"No space available for {vehicle_type}")
            return None

    def release(self, space_id: str) -> bool:
        """
        Free an occupied space

        Raises:
            SpaceNotFoundError: unknown space id
            SpaceAlreadyAvailableError: the space is not occupied
        """
        with self.uow:
            space = self.uow.spaces.get(space_id)
            if space is None:
                raise SpaceNotFoundError(f"Space {space_id} not found")
            if not space.is_occupied:
                raise SpaceAlreadyAvailableError(f"Space {space_id} is already available")

            if not self.uow.spaces.mark_available(space_id):
                raise SpaceAlreadyAvailableError(f"Space {space_id} was released concurrently")

            self.uow.commit()
            self.logger.info(f"Released space {space_id}")
            return True

    def is_available(self, vehicle_type: Union[VehicleType, str]) -> bool:
        return self.available_count(vehicle_type) > 0

    def available_count(self, vehicle_type: Union[VehicleType, str, None] = None) -> int:
        """Free spaces usable by the vehicle class, or all free spaces"""
        space_types = None
        if vehicle_type is not None:
            space_types = eligible_space_types(VehicleType.parse(vehicle_type))

        with self.uow:
            return self.uow.spaces.count_available(space_types)

    def report(self) -> AvailabilityReportDTO:
        """Occupancy totals, per space class and per zone"""
        with self.uow:
            by_type = self.uow.spaces.occupancy_by_type()
            by_zone = self.uow.spaces.occupancy_by_zone()

        total = sum(counts[0] for counts in by_type.values())
        occupied = sum(counts[1] for counts in by_type.values())
        utilization = round(occupied / total * 100, 2) if total else 0.0

        return AvailabilityReportDTO(
            total_spaces=total,
            occupied_spaces=occupied,
            available_spaces=total - occupied,
            utilization_percentage=utilization,
            by_space_type={key: self._counts(*value) for key, value in by_type.items()},
            by_zone={key: self._counts(*value) for key, value in by_zone.items()},
        )

    def get_all_spaces(self) -> List[ParkingSpace]:
        with self.uow:
            return self.uow.spaces.find_all()

    def get_spaces_by_zone(self, zone: str) -> List[ParkingSpace]:
        with self.uow:
            return self.uow.spaces.find_by_zone(zone)

    def get_space(self, space_id: str) -> Optional[ParkingSpace]:
        with self.uow:
            return self.uow.spaces.get(space_id)

    @staticmethod
    def _counts(total: int, occupied: int) -> SpaceCountsDTO:
        return SpaceCountsDTO(total=total, occupied=occupied, available=total - occupied)
