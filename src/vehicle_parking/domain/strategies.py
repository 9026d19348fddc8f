# File: src/vehicle_parking/domain/strategies.py
"""
Strategy Pattern Implementation for Space Allocation and Rate Selection

This module encapsulates the two selection algorithms of the engine:
1. Space Selection Strategies - which free space a vehicle receives
2. Rate Selection Strategies - which pricing rule a stay is billed under

The default strategies implement the facility policy:
- Spaces: first eligible space class in priority order, ties broken by space id
- Rates: the cheapest effective rule for the actual duration (not the most
  specific or the most recent one)
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from .exceptions import ValidationError
from .models import ParkingRate, ParkingSpace, SpaceType, VehicleType


# Vehicle class -> eligible space classes, most preferred first
SPACE_COMPATIBILITY: Dict[VehicleType, Tuple[SpaceType, ...]] = {
    VehicleType.CAR: (SpaceType.CAR, SpaceType.TRUCK, SpaceType.HANDICAP),
    VehicleType.VAN: (SpaceType.CAR, SpaceType.TRUCK, SpaceType.HANDICAP),
    VehicleType.MOTORCYCLE: (SpaceType.MOTORCYCLE, SpaceType.HANDICAP),
    VehicleType.TRUCK: (SpaceType.TRUCK, SpaceType.HANDICAP),
}


def eligible_space_types(vehicle_type: VehicleType) -> Tuple[SpaceType, ...]:
    """Eligible space classes for a vehicle class, in priority order"""
    try:
        return SPACE_COMPATIBILITY[vehicle_type]
    except KeyError:
        raise ValidationError(f"Unsupported vehicle type: {vehicle_type!r}")


# ============================================================================
# STRATEGY INTERFACES
# ============================================================================

class SpaceSelectionStrategy(ABC):
    """
    Abstract base class for space selection strategies
    Orders the free candidate spaces for a vehicle class
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def rank(self, candidates: Iterable[ParkingSpace], vehicle_type: VehicleType) -> List[ParkingSpace]:
        """
        Order candidate spaces from best to worst
        Returns: eligible candidates only
        """
        pass

    def select(self, candidates: Iterable[ParkingSpace], vehicle_type: VehicleType) -> Optional[ParkingSpace]:
        ranked = self.rank(candidates, vehicle_type)
        return ranked[0] if ranked else None

    def get_strategy_name(self) -> str:
        return self.__class__.__name__.replace("Strategy", "")

    def __str__(self) -> str:
        return f"{self.get_strategy_name()} Strategy"


class RateSelectionStrategy(ABC):
    """
    Abstract base class for rate selection strategies
    Picks the rule a stay is billed under
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def select(self, rules: Sequence[ParkingRate], duration_minutes: int) -> Optional[ParkingRate]:
        """
        Choose one rule among the effective rules
        Returns: the chosen rule, None if there are no rules
        """
        pass


# ============================================================================
# SPACE SELECTION STRATEGIES
# ============================================================================

class PriorityOrderStrategy(SpaceSelectionStrategy):
    """
    Strategy: least general eligible space first
    - Sorts by the space class position in the compatibility table
    - Ties are broken by lexicographic space id
    """

    def rank(self, candidates: Iterable[ParkingSpace], vehicle_type: VehicleType) -> List[ParkingSpace]:
        priority = eligible_space_types(vehicle_type)
        eligible = [
            space for space in candidates
            if not space.is_occupied and space.space_type in priority
        ]
        eligible.sort(key=lambda space: (priority.index(space.space_type), space.space_id))
        self.logger.debug(f"Ranked {len(eligible)} candidate spaces for {vehicle_type}")
        return eligible


# ============================================================================
# RATE SELECTION STRATEGIES
# ============================================================================

class CostMinimizingStrategy(RateSelectionStrategy):
    """
    Strategy: evaluate every effective rule and keep the cheapest

    Ties keep the first rule seen, so the caller's ordering decides between
    equally priced rules.
    """

    def select(self, rules: Sequence[ParkingRate], duration_minutes: int) -> Optional[ParkingRate]:
        best_rule: Optional[ParkingRate] = None
        lowest_cost: Optional[Decimal] = None

        for rule in rules:
            cost = rule.cost_for(duration_minutes)
            if lowest_cost is None or cost < lowest_cost:
                best_rule = rule
                lowest_cost = cost

        if best_rule is not None:
            self.logger.debug(
                f"Selected {best_rule.rate_kind} rate {best_rule.rate_id} "
                f"costing {lowest_cost} for {duration_minutes} minutes"
            )
        return best_rule
