"""
Integration Tests for SessionOrchestrator

Exercises entry, exit and cancellation end to end against an in-memory
database, including the atomicity guarantees of each flow.
"""

import unittest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, Mock, patch

from sqlalchemy.exc import OperationalError

from vehicle_parking.application.session_orchestrator import SessionOrchestrator
from vehicle_parking.domain.exceptions import (
    ErrorCode, PersistenceError, UnsupportedRateKindError
)
from vehicle_parking.domain.models import ParkingSession, SessionStatus, VehicleType
from vehicle_parking.infrastructure.repositories import ParkingSessionRepository

from tests.fixtures import T0, ParkingTestCase


class TestVehicleEntry(ParkingTestCase):

    def test_entry_opens_active_session_in_best_space(self):
        result = self.orchestrator.enter(" abc 123 ", "car")

        self.assertTrue(result.success)
        self.assertIsNone(result.error_code)
        self.assertEqual(result.session.license_plate, "ABC123")
        self.assertEqual(result.session.status, SessionStatus.ACTIVE)
        self.assertEqual(result.session.entry_time, T0)
        self.assertEqual(result.space.space_id, "A-CAR-001")
        self.assertEqual(self.occupied_space_ids(), ["A-CAR-001"])
        self.assertInvariantsHold()

    def test_entry_registers_vehicle(self):
        self.orchestrator.enter("ABC123", VehicleType.VAN)
        with self.uow:
            vehicle = self.uow.vehicles.find_by_license_plate("ABC123")
        self.assertIs(vehicle.vehicle_type, VehicleType.VAN)

    def test_entry_updates_changed_vehicle_class(self):
        self.orchestrator.enter("ABC123", VehicleType.CAR)
        self.clock.advance(minutes=30)
        self.orchestrator.exit("ABC123")

        result = self.orchestrator.enter("ABC123", VehicleType.MOTORCYCLE)

        self.assertTrue(result.success)
        self.assertEqual(result.space.space_id, "A-MOTORCYCLE-001")
        with self.uow:
            self.assertIs(self.uow.vehicles.find_by_license_plate("ABC123").vehicle_type, VehicleType.MOTORCYCLE)

    def test_malformed_input_is_rejected_without_a_transaction(self):
        uow = MagicMock()
        orchestrator = SessionOrchestrator(uow, clock=self.clock)

        for plate, vehicle_type in [("AB", "CAR"), ("ABC123", "BUS"), ("", "CAR")]:
            with self.subTest(plate=plate, vehicle_type=vehicle_type):
                result = orchestrator.enter(plate, vehicle_type)
                self.assertFalse(result.success)
                self.assertEqual(result.error_code, ErrorCode.VALIDATION_ERROR)

        uow.__enter__.assert_not_called()

    def test_scenario_c_no_compatible_space(self):
        self.orchestrator.enter("CAR0001", VehicleType.CAR)
        self.orchestrator.enter("CAR0002", VehicleType.CAR)
        self.orchestrator.enter("TRUCK01", VehicleType.TRUCK)
        self.orchestrator.enter("CAR0003", VehicleType.CAR)
        occupied_before = self.occupied_space_ids()

        result = self.orchestrator.enter("CAR0004", VehicleType.CAR)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, ErrorCode.NO_SPACE_AVAILABLE)
        self.assertEqual(self.occupied_space_ids(), occupied_before)
        self.assertNotIn("A-MOTORCYCLE-001", occupied_before)
        self.assertEqual(len(self.active_sessions()), 4)
        with self.uow:
            self.assertIsNone(self.uow.vehicles.find_by_license_plate("CAR0004"))
        self.assertInvariantsHold()

    def test_scenario_d_double_entry(self):
        first = self.orchestrator.enter("ABC123", VehicleType.CAR)
        second = self.orchestrator.enter("ABC123", VehicleType.CAR)

        self.assertTrue(first.success)
        self.assertFalse(second.success)
        self.assertEqual(second.error_code, ErrorCode.ALREADY_PARKED)
        self.assertEqual(len(self.active_sessions()), 1)
        self.assertEqual(self.occupied_space_ids(), ["A-CAR-001"])
        self.assertInvariantsHold()

    def test_concurrent_duplicate_caught_by_insert_if_absent(self):
        self.orchestrator.enter("ABC123", VehicleType.CAR)

        # Simulate a racing writer: the pre-check sees no active session
        with patch.object(ParkingSessionRepository, "find_active_by_license_plate", return_value=None):
            result = self.orchestrator.enter("ABC123", VehicleType.CAR)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, ErrorCode.ALREADY_PARKED)
        self.assertEqual(self.occupied_space_ids(), ["A-CAR-001"])
        self.assertInvariantsHold()

    def test_database_failure_rolls_back_and_raises(self):
        failure = OperationalError("INSERT", {}, Exception("database is locked"))
        with patch.object(ParkingSessionRepository, "add_active", side_effect=failure):
            with self.assertRaises(PersistenceError) as ctx:
                self.orchestrator.enter("ABC123", VehicleType.CAR)

        self.assertIs(ctx.exception.__cause__, failure)
        self.assertEqual(ctx.exception.code, ErrorCode.PERSISTENCE_ERROR)
        self.assertEqual(self.occupied_space_ids(), [])
        with self.uow:
            self.assertIsNone(self.uow.vehicles.find_by_license_plate("ABC123"))


class TestVehicleExit(ParkingTestCase):

    def test_exit_completes_session_and_frees_space(self):
        entry = self.orchestrator.enter("ABC123", VehicleType.CAR)
        self.clock.advance(minutes=90)

        result = self.orchestrator.exit("abc123")

        self.assertTrue(result.success)
        self.assertEqual(result.fee, Decimal("40.00"))
        self.assertEqual(result.duration_minutes, 90)
        self.assertEqual(result.session.session_id, entry.session.session_id)
        self.assertEqual(result.session.status, SessionStatus.COMPLETED)
        self.assertEqual(result.session.exit_time, T0 + timedelta(minutes=90))

        stored = self.stored_session(entry.session.session_id)
        self.assertEqual(stored.status, SessionStatus.COMPLETED)
        self.assertEqual(stored.fee, Decimal("40.00"))
        self.assertGreater(stored.exit_time, stored.entry_time)
        self.assertEqual(stored.updated_at, T0 + timedelta(minutes=90))
        self.assertEqual(self.occupied_space_ids(), [])
        self.assertInvariantsHold()

    def test_long_stay_is_billed_daily(self):
        self.orchestrator.enter("ABC123", VehicleType.CAR)
        self.clock.advance(minutes=1500)
        self.assertEqual(self.orchestrator.exit("ABC123").fee, Decimal("300.00"))

    def test_scenario_e_unknown_plate(self):
        self.orchestrator.enter("ABC123", VehicleType.CAR)

        result = self.orchestrator.exit("XYZ999")

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, ErrorCode.NO_ACTIVE_SESSION)
        self.assertEqual(len(self.active_sessions()), 1)
        self.assertEqual(self.occupied_space_ids(), ["A-CAR-001"])

    def test_second_exit_finds_no_active_session(self):
        self.orchestrator.enter("ABC123", VehicleType.CAR)
        self.clock.advance(minutes=10)
        self.assertTrue(self.orchestrator.exit("ABC123").success)
        self.assertEqual(self.orchestrator.exit("ABC123").error_code, ErrorCode.NO_ACTIVE_SESSION)

    def test_malformed_plate(self):
        self.assertEqual(self.orchestrator.exit("??").error_code, ErrorCode.VALIDATION_ERROR)

    def test_no_rate_rolls_back(self):
        entry = self.orchestrator.enter("TRUCK01", VehicleType.TRUCK)
        self.clock.advance(hours=2)

        result = self.orchestrator.exit("TRUCK01")

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, ErrorCode.NO_RATE_FOUND)
        self.assertTrue(self.stored_session(entry.session.session_id).is_active)
        self.assertEqual(self.occupied_space_ids(), ["A-TRUCK-001"])
        self.assertInvariantsHold()

    def test_exit_at_entry_instant_is_rejected(self):
        self.orchestrator.enter("ABC123", VehicleType.CAR)
        result = self.orchestrator.exit("ABC123")
        self.assertEqual(result.error_code, ErrorCode.INVALID_TIME_ORDER)
        self.assertEqual(len(self.active_sessions()), 1)

    def test_space_release_failure_aborts_exit(self):
        entry = self.orchestrator.enter("ABC123", VehicleType.CAR)
        self.clock.advance(minutes=45)
        with self.uow:
            self.uow.spaces.mark_available(entry.space.space_id)
            self.uow.commit()

        result = self.orchestrator.exit("ABC123")

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, ErrorCode.INTERNAL_ERROR)
        self.assertEqual(result.message, SessionOrchestrator.GENERIC_FAILURE_MESSAGE)
        stored = self.stored_session(entry.session.session_id)
        self.assertEqual(stored.status, SessionStatus.ACTIVE)
        self.assertIsNone(stored.fee)

    def test_unsupported_rate_kind_is_an_internal_error(self):
        rate_engine = Mock()
        rate_engine.fee.side_effect = UnsupportedRateKindError("Unsupported rate kind: 'WEEKLY'")
        orchestrator = SessionOrchestrator(self.uow, rate_engine=rate_engine, clock=self.clock)
        orchestrator.enter("ABC123", VehicleType.CAR)
        self.clock.advance(minutes=20)

        with self.assertLogs("SessionOrchestrator", level="ERROR") as logs:
            result = orchestrator.exit("ABC123")

        self.assertEqual(result.error_code, ErrorCode.INTERNAL_ERROR)
        self.assertIn("UNSUPPORTED_RATE_KIND", "\n".join(logs.output))
        self.assertEqual(self.occupied_space_ids(), ["A-CAR-001"])
        self.assertInvariantsHold()

    def test_missing_vehicle_record(self):
        uow = MagicMock()
        uow.sessions.find_active_by_license_plate.return_value = ParkingSession("ABC123", "A-CAR-001", T0)
        uow.vehicles.find_by_license_plate.return_value = None
        orchestrator = SessionOrchestrator(uow, clock=self.clock)

        result = orchestrator.exit("ABC123")

        self.assertEqual(result.error_code, ErrorCode.VEHICLE_NOT_FOUND)
        uow.rollback.assert_called_once()
        uow.commit.assert_not_called()


class TestSessionCancellation(ParkingTestCase):

    def test_cancel_active_session(self):
        entry = self.orchestrator.enter("ABC123", VehicleType.CAR)
        self.clock.advance(minutes=15)

        result = self.orchestrator.cancel(entry.session.session_id)

        self.assertTrue(result.success)
        self.assertEqual(result.session.status, SessionStatus.CANCELLED)
        stored = self.stored_session(entry.session.session_id)
        self.assertEqual(stored.status, SessionStatus.CANCELLED)
        self.assertIsNone(stored.fee)
        self.assertIsNone(stored.exit_time)
        self.assertEqual(stored.updated_at, T0 + timedelta(minutes=15))
        self.assertEqual(self.occupied_space_ids(), [])
        self.assertInvariantsHold()

    def test_cancel_terminal_sessions(self):
        cancelled = self.orchestrator.enter("ABC123", VehicleType.CAR).session.session_id
        self.orchestrator.cancel(cancelled)
        completed = self.orchestrator.enter("XYZ789", VehicleType.CAR).session.session_id
        self.clock.advance(minutes=5)
        self.orchestrator.exit("XYZ789")

        self.assertEqual(self.orchestrator.cancel(cancelled).error_code, ErrorCode.SESSION_NOT_ACTIVE)
        self.assertEqual(self.orchestrator.cancel(completed).error_code, ErrorCode.CANNOT_CANCEL_COMPLETED)
        self.assertEqual(self.stored_session(completed).fee, Decimal("20.00"))
        self.assertInvariantsHold()

    def test_cancel_unknown_or_blank_id(self):
        self.assertEqual(self.orchestrator.cancel("no-such-session").error_code, ErrorCode.SESSION_NOT_FOUND)
        self.assertEqual(self.orchestrator.cancel("  ").error_code, ErrorCode.VALIDATION_ERROR)

    def test_plate_can_reenter_after_cancellation(self):
        entry = self.orchestrator.enter("ABC123", VehicleType.CAR)
        self.orchestrator.cancel(entry.session.session_id)
        self.assertTrue(self.orchestrator.enter("ABC123", VehicleType.CAR).success)


class TestInvariantsAcrossOperations(ParkingTestCase):

    def test_mixed_sequence_keeps_invariants(self):
        plates = ["CAR0001", "CAR0002", "VAN0001", "MOTO001", "CAR0003", "MOTO002"]
        types = [VehicleType.CAR, VehicleType.CAR, VehicleType.VAN,
                 VehicleType.MOTORCYCLE, VehicleType.CAR, VehicleType.MOTORCYCLE]

        for round_number in range(3):
            for plate, vehicle_type in zip(plates, types):
                self.orchestrator.enter(plate, vehicle_type)
                self.assertInvariantsHold()
            self.clock.advance(minutes=37 * (round_number + 1))

            for index, plate in enumerate(plates):
                if (index + round_number) % 3 == 0:
                    self.orchestrator.exit(plate)
                elif (index + round_number) % 3 == 1:
                    for session in self.orchestrator.get_vehicle_sessions(plate):
                        if session.status == SessionStatus.ACTIVE:
                            self.orchestrator.cancel(session.session_id)
                self.assertInvariantsHold()
            self.clock.advance(minutes=5)

        with self.uow:
            completed = [
                s for s in self.uow.sessions.find_by_criteria()
                if s.status is SessionStatus.COMPLETED
            ]
        self.assertTrue(completed)
        for session in completed:
            self.assertGreater(session.exit_time, session.entry_time)
            self.assertGreaterEqual(session.fee, 0)


if __name__ == "__main__":
    unittest.main()
