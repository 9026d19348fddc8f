"""
Shared fixtures for the parking session engine tests

Provides a controllable clock, an in-memory SQLite unit of work and helpers
that seed spaces and rate rules.
"""

import unittest
from datetime import datetime, timedelta

from vehicle_parking.application.session_orchestrator import SessionOrchestrator
from vehicle_parking.domain.models import (
    SpaceType, VehicleType, RateKind
)
from vehicle_parking.infrastructure.factories import ParkingSpaceFactory, ParkingRateFactory
from vehicle_parking.infrastructure.repositories import RepositoryFactory

T0 = datetime(2024, 1, 1, 8, 0, 0)
RATES_FROM = datetime(2023, 1, 1)


class FakeClock:
    """Deterministic clock; advance() moves time forward"""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_uow():
    return RepositoryFactory.create_sqlalchemy_uow("sqlite://")


def seed_spaces(uow, spaces):
    with uow:
        for space in spaces:
            uow.spaces.add(space)
        uow.commit()


def seed_rates(uow, rates):
    with uow:
        for rate in rates:
            uow.rates.add(rate)
        uow.commit()


def car_rate_card():
    """CAR rules {HOURLY 20, DAILY 150, FLAT 3000}"""
    return ParkingRateFactory().create_rate_card(
        VehicleType.CAR,
        {RateKind.HOURLY: 20, RateKind.DAILY: 150, RateKind.FLAT: 3000},
        effective_from=RATES_FROM
    )


class ParkingTestCase(unittest.TestCase):
    """
    Base class wiring a SessionOrchestrator to a fresh in-memory database

    Facility: zone A holds two CAR spaces, one TRUCK, one HANDICAP and one
    MOTORCYCLE space. CAR, VAN and MOTORCYCLE have rate cards; TRUCK has none.
    """

    def setUp(self):
        self.clock = FakeClock()
        self.uow = make_uow()
        self.space_factory = ParkingSpaceFactory()
        self.rate_factory = ParkingRateFactory()

        seed_spaces(self.uow, self.space_factory.create_for_zone("A", {
            SpaceType.CAR: 2,
            SpaceType.TRUCK: 1,
            SpaceType.HANDICAP: 1,
            SpaceType.MOTORCYCLE: 1,
        }))
        rates = car_rate_card()
        rates += self.rate_factory.create_rate_card(
            VehicleType.VAN, {RateKind.HOURLY: 25}, effective_from=RATES_FROM
        )
        rates += self.rate_factory.create_rate_card(
            VehicleType.MOTORCYCLE, {RateKind.HOURLY: 10, RateKind.DAILY: 60}, effective_from=RATES_FROM
        )
        seed_rates(self.uow, rates)

        self.orchestrator = SessionOrchestrator(self.uow, clock=self.clock)

    # Helpers

    def active_sessions(self):
        with self.uow:
            return self.uow.sessions.find_active()

    def occupied_space_ids(self):
        with self.uow:
            return sorted(space.space_id for space in self.uow.spaces.find_occupied())

    def space(self, space_id):
        with self.uow:
            return self.uow.spaces.get(space_id)

    def stored_session(self, session_id):
        with self.uow:
            return self.uow.sessions.get(session_id)

    def assertInvariantsHold(self):
        active = self.active_sessions()
        plates = [session.license_plate for session in active]
        self.assertEqual(len(plates), len(set(plates)), "more than one ACTIVE session for a plate")
        self.assertEqual(sorted(session.space_id for session in active), self.occupied_space_ids())
        report = self.orchestrator.validate_consistency()
        self.assertTrue(report.is_consistent, report.issues)
