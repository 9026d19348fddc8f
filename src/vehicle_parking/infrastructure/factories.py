# File: src/vehicle_parking/infrastructure/factories.py
"""
Factory Pattern Implementation for the Parking Session Engine

This module implements the factories that assemble the engine:
1. Configuration - defaults plus environment overrides
2. Domain Object Factories - spaces and rate rules for facility setup
3. Service Factories - units of work and fully wired application services
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
import logging
import os

from ..domain.models import (
    ParkingRate, ParkingSpace, RateKind, SpaceType, VehicleType, utcnow
)
from .logging_setup import setup_logging
from .repositories import RepositoryFactory, UnitOfWork


# ============================================================================
# CONFIGURATION
# ============================================================================

DEFAULT_CONFIG: Dict[str, Any] = {
    "database_url": "sqlite://",
    "echo_sql": False,
    "create_schema": True,
    "log_level": "INFO",
    "log_file": None,
}

ENV_OVERRIDES = {
    "PARKING_DATABASE_URL": "database_url",
    "PARKING_ECHO_SQL": "echo_sql",
    "PARKING_LOG_LEVEL": "log_level",
    "PARKING_LOG_FILE": "log_file",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """DEFAULT_CONFIG with PARKING_* environment variables applied"""
    environ = os.environ if environ is None else environ
    config = dict(DEFAULT_CONFIG)

    for variable, key in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if value is None or value == "":
            continue
        if key == "echo_sql":
            config[key] = value.strip().lower() in _TRUE_VALUES
        else:
            config[key] = value

    return config


# ============================================================================
# DOMAIN OBJECT FACTORIES
# ============================================================================

class ParkingSpaceFactory:
    """Factory for creating ParkingSpace domain objects"""

    def create(
        self,
        space_id: str,
        space_type: Union[SpaceType, str],
        zone: str,
        is_occupied: bool = False
    ) -> ParkingSpace:
        if not space_id or not zone:
            raise ValueError("space_id and zone are required")
        return ParkingSpace(
            space_id=space_id,
            space_type=SpaceType.parse(space_type),
            zone=zone,
            is_occupied=is_occupied
        )

    def create_many(
        self,
        count: int,
        space_type: Union[SpaceType, str],
        zone: str,
        start_number: int = 1
    ) -> List[ParkingSpace]:
        """Create spaces numbered {zone}-{TYPE}-{NNN}"""
        space_type = SpaceType.parse(space_type)
        return [
            self.create(f"{zone}-{space_type.value}-{number:03d}", space_type, zone)
            for number in range(start_number, start_number + count)
        ]

    def create_for_zone(self, zone: str, distribution: Dict[Union[SpaceType, str], int]) -> List[ParkingSpace]:
        """Create the spaces of one zone from a {space class: count} distribution"""
        spaces = []
        for space_type, count in distribution.items():
            if count > 0:
                spaces.extend(self.create_many(count, space_type, zone))
        return spaces


class ParkingRateFactory:
    """Factory for creating validated ParkingRate domain objects"""

    def create(
        self,
        vehicle_type: Union[VehicleType, str],
        rate_kind: Union[RateKind, str],
        amount: Union[Decimal, int, str],
        effective_from: Optional[datetime] = None,
        effective_until: Optional[datetime] = None
    ) -> ParkingRate:
        rate = ParkingRate(
            vehicle_type=vehicle_type,
            rate_kind=rate_kind,
            amount=amount,
            effective_from=effective_from or utcnow(),
            effective_until=effective_until
        )
        rate.validate()
        return rate

    def create_rate_card(
        self,
        vehicle_type: Union[VehicleType, str],
        amounts: Dict[Union[RateKind, str], Union[Decimal, int, str]],
        effective_from: Optional[datetime] = None
    ) -> List[ParkingRate]:
        """One rule per rate kind, e.g. {HOURLY: 20, DAILY: 150, FLAT: 3000}"""
        effective_from = effective_from or utcnow()
        return [
            self.create(vehicle_type, rate_kind, amount, effective_from=effective_from)
            for rate_kind, amount in amounts.items()
        ]


# ============================================================================
# SERVICE FACTORIES
# ============================================================================

class ServiceFactory:
    """Factory for creating application services"""

    def __init__(self, uow: UnitOfWork, clock: Optional[Callable[[], datetime]] = None):
        self.uow = uow
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    def create_space_allocator(self) -> 'SpaceAllocator':
        from ..application.space_allocator import SpaceAllocator
        return SpaceAllocator(self.uow)

    def create_rate_engine(self) -> 'RateEngine':
        from ..application.rate_engine import RateEngine
        return RateEngine(self.uow)

    def create_session_orchestrator(self) -> 'SessionOrchestrator':
        """Create SessionOrchestrator with its collaborators on one unit of work"""
        from ..application.session_orchestrator import SessionOrchestrator

        return SessionOrchestrator(
            self.uow,
            space_allocator=self.create_space_allocator(),
            rate_engine=self.create_rate_engine(),
            clock=self.clock
        )

    @staticmethod
    def from_config(
        config: Optional[Dict[str, Any]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        configure_logging: bool = False
    ) -> 'SessionOrchestrator':
        """Build a fully wired SessionOrchestrator from a config dict"""
        settings = dict(DEFAULT_CONFIG)
        settings.update(config or {})

        if configure_logging:
            setup_logging(settings["log_level"], settings["log_file"])

        uow = RepositoryFactory.create_sqlalchemy_uow(
            settings["database_url"],
            echo=bool(settings["echo_sql"]),
            create_schema=bool(settings["create_schema"])
        )
        logging.getLogger(ServiceFactory.__name__).info(
            f"Created services for database {_redact(settings['database_url'])}"
        )
        return ServiceFactory(uow, clock=clock).create_session_orchestrator()

    @staticmethod
    def from_env(
        environ: Optional[Mapping[str, str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        configure_logging: bool = False
    ) -> 'SessionOrchestrator':
        """Build a SessionOrchestrator from PARKING_* environment variables"""
        return ServiceFactory.from_config(
            load_config_from_env(environ), clock=clock, configure_logging=configure_logging
        )


def _redact(database_url: str) -> str:
    """Hide the password part of a database URL"""
    if "@" not in database_url or "://" not in database_url:
        return database_url
    scheme, rest = database_url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"
