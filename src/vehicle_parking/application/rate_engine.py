# File: src/vehicle_parking/application/rate_engine.py
"""
Rate Engine

Selects the pricing rule a stay is billed under and computes fees.

Pricing Policy:
- Several rules (HOURLY, DAILY, FLAT) may be effective for a vehicle class
  at the same time
- The rule producing the LOWEST cost for the actual duration wins, not the
  most specific or the most recent one
- Rates are looked up as of the session entry time

Cost per rule kind:
- FLAT: amount
- HOURLY: ceil(minutes / 60) * amount
- DAILY: ceil(minutes / 1440) * amount
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union
import logging

from ..domain.exceptions import (
    InvalidTimeOrderError, NoRateFoundError, RateNotFoundError, ValidationError
)
from ..domain.models import (
    ParkingRate, RateKind, VehicleType, minutes_between, utcnow
)
from ..domain.strategies import RateSelectionStrategy, CostMinimizingStrategy
from ..infrastructure.repositories import UnitOfWork

CENT = Decimal('0.01')


class RateEngine:
    """Cost-minimizing rate selection and fee computation"""

    def __init__(self, uow: UnitOfWork, strategy: Optional[RateSelectionStrategy] = None):
        self.uow = uow
        self.strategy = strategy or CostMinimizingStrategy()
        self.logger = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Pure computations
    # ------------------------------------------------------------------

    @staticmethod
    def cost(rule: ParkingRate, duration_minutes: int) -> Decimal:
        """Cost of a stay under one rule"""
        return rule.cost_for(duration_minutes)

    @staticmethod
    def duration_minutes(entry_time: datetime, exit_time: datetime) -> int:
        """Billable minutes between entry and exit, rounded up"""
        return minutes_between(entry_time, exit_time)

    def validate(self, rule: ParkingRate) -> bool:
        """
        Check a rule definition

        Returns: True
        Raises: ValidationError describing the first problem found
        """
        return rule.validate()

    # ------------------------------------------------------------------
    # Rate selection
    # ------------------------------------------------------------------

    def best_rate(
        self,
        vehicle_type: Union[VehicleType, str],
        duration_minutes: int,
        as_of: datetime
    ) -> Optional[ParkingRate]:
        """
        Cheapest rule for the vehicle class effective at as_of

        Ties keep the first rule in repository order (newest effective_from
        first, then rate id). Returns None when no rule is effective.
        """
        vehicle_type = VehicleType.parse(vehicle_type)

        with self.uow:
            rules = self.uow.rates.find_effective(as_of, vehicle_type=vehicle_type)

        rule = self.strategy.select(rules, duration_minutes)
        if rule is None:
            self.logger.warning(f"No effective rate for {vehicle_type} at {as_of.isoformat()}")
        return rule

    def fee(
        self,
        entry_time: datetime,
        exit_time: datetime,
        vehicle_type: Union[VehicleType, str]
    ) -> Decimal:
        """
        Fee for a stay, priced as of the entry time

        Raises:
            InvalidTimeOrderError: exit_time is not after entry_time
            NoRateFoundError: no rule is effective for the vehicle class
        """
        if exit_time <= entry_time:
            raise InvalidTimeOrderError(
                f"Exit time {exit_time.isoformat()} must be after entry time {entry_time.isoformat()}"
            )

        duration = self.duration_minutes(entry_time, exit_time)
        if duration <= 0:
            return Decimal('0.00')

        rule = self.best_rate(vehicle_type, duration, as_of=entry_time)
        if rule is None:
            raise NoRateFoundError(f"No rate found for vehicle type {vehicle_type}")

        fee = self.cost(rule, duration).quantize(CENT)
        self.logger.info(
            f"Fee for {vehicle_type}: {fee} ({duration} min under {rule.rate_kind} rate {rule.rate_id})"
        )
        return fee

    def estimate_fee(
        self,
        vehicle_type: Union[VehicleType, str],
        duration_minutes: int,
        as_of: Optional[datetime] = None
    ) -> Decimal:
        """Fee a stay of the given length would cost if it started at as_of"""
        if duration_minutes < 0:
            raise ValidationError("Duration must be non-negative")
        if duration_minutes == 0:
            return Decimal('0.00')

        rule = self.best_rate(vehicle_type, duration_minutes, as_of=as_of or utcnow())
        if rule is None:
            raise NoRateFoundError(f"No rate found for vehicle type {vehicle_type}")
        return self.cost(rule, duration_minutes).quantize(CENT)

    # ------------------------------------------------------------------
    # Rate administration
    # ------------------------------------------------------------------

    def add_rate(self, rule: ParkingRate) -> ParkingRate:
        """
        Validate and store a rule

        A rule with the same vehicle class, kind and effective_from replaces
        the stored one (keeping its id).
        """
        self.validate(rule)

        with self.uow:
            existing = self.uow.rates.find_exact(rule.vehicle_type, rule.rate_kind, rule.effective_from)
            if existing is not None:
                rule.rate_id = existing.rate_id
                rule.created_at = existing.created_at
                self.uow.rates.update(rule)
                self.logger.info(f"Replaced rate {rule}")
            else:
                self.uow.rates.add(rule)
                self.logger.info(f"Added rate {rule}")
            self.uow.commit()
        return rule

    def expire_rate(self, rate_id: str, at: Optional[datetime] = None) -> ParkingRate:
        """
        End a rule's effective window at the given instant (default now)

        Raises:
            RateNotFoundError: unknown rate id
            ValidationError: the rule already has an end or starts after that instant
        """
        at = at or utcnow()

        with self.uow:
            rate = self.uow.rates.get(rate_id)
            if rate is None:
                raise RateNotFoundError(f"Rate {rate_id} not found")

            if self.uow.rates.expire(rate_id, at) == 0:
                raise ValidationError(
                    f"Rate {rate_id} cannot be expired at {at.isoformat()}: it is already expired or starts later"
                )
            self.uow.commit()

        rate.effective_until = at
        self.logger.info(f"Expired rate {rate_id} at {at.isoformat()}")
        return rate

    def current_rates(self, as_of: Optional[datetime] = None) -> List[ParkingRate]:
        """All rules effective at as_of (default now)"""
        with self.uow:
            return self.uow.rates.find_effective(as_of or utcnow())

    def rate_by_kind(
        self,
        vehicle_type: Union[VehicleType, str],
        rate_kind: Union[RateKind, str],
        as_of: Optional[datetime] = None
    ) -> Optional[ParkingRate]:
        """The newest effective rule of one kind for a vehicle class"""
        with self.uow:
            rules = self.uow.rates.find_effective(
                as_of or utcnow(),
                vehicle_type=VehicleType.parse(vehicle_type),
                rate_kind=RateKind.parse(rate_kind)
            )
        return rules[0] if rules else None
