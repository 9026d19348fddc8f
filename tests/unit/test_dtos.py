"""Unit tests for DTO validation and serialization"""

import json
import unittest
from datetime import datetime
from decimal import Decimal

from pydantic import ValidationError as PydanticValidationError

from vehicle_parking.application.dtos import (
    EntryResultDTO, ExitResultDTO, SearchCriteriaDTO, SessionDTO, RevenueReportDTO, PeakHourDTO
)
from vehicle_parking.domain.exceptions import ActiveSessionExistsError, ErrorCode
from vehicle_parking.domain.models import ParkingSession, SessionStatus, VehicleType


class TestSearchCriteriaDTO(unittest.TestCase):

    def test_all_filters_optional(self):
        criteria = SearchCriteriaDTO()
        self.assertIsNone(criteria.license_plate)
        self.assertFalse(criteria.has_duration_filter)

    def test_plate_and_vehicle_type_are_normalized(self):
        criteria = SearchCriteriaDTO(license_plate="abc 123", vehicle_type="motorcycle")
        self.assertEqual(criteria.license_plate, "ABC123")
        self.assertEqual(criteria.vehicle_type, VehicleType.MOTORCYCLE)

    def test_rejects_inverted_ranges(self):
        cases = [
            dict(min_fee=Decimal("10"), max_fee=Decimal("5")),
            dict(min_duration=60, max_duration=30),
            dict(start_date=datetime(2024, 2, 1), end_date=datetime(2024, 1, 1)),
        ]
        for fields in cases:
            with self.subTest(fields=fields):
                with self.assertRaises(PydanticValidationError):
                    SearchCriteriaDTO(**fields)

    def test_rejects_negative_bounds_and_bad_values(self):
        for fields in [dict(min_fee=-1), dict(max_duration=-5), dict(license_plate="AB"), dict(vehicle_type="BUS")]:
            with self.subTest(fields=fields):
                with self.assertRaises(PydanticValidationError):
                    SearchCriteriaDTO(**fields)

    def test_equal_bounds_are_allowed(self):
        criteria = SearchCriteriaDTO(min_duration=30, max_duration=30)
        self.assertTrue(criteria.has_duration_filter)

    def test_unknown_filter_names_are_rejected(self):
        with self.assertRaises(PydanticValidationError):
            SearchCriteriaDTO(plate="ABC123")


class TestResultDTOs(unittest.TestCase):

    def test_failure_from_error(self):
        result = EntryResultDTO.from_error(ActiveSessionExistsError("Vehicle ABC123 is already parked"))
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, ErrorCode.ALREADY_PARKED)
        self.assertIsNone(result.session)

    def test_to_dict_exclude_none(self):
        data = ExitResultDTO.failure(ErrorCode.NO_ACTIVE_SESSION, "none").to_dict(exclude_none=True)
        self.assertEqual(data, {"success": False, "error_code": "NO_ACTIVE_SESSION", "message": "none"})

    def test_session_dto_from_entity(self):
        session = ParkingSession(license_plate="ABC123", space_id="A-CAR-001", entry_time=datetime(2024, 1, 1, 8))
        dto = SessionDTO.model_validate(session)
        self.assertEqual(dto.session_id, session.session_id)
        self.assertEqual(dto.status, SessionStatus.ACTIVE.value)
        self.assertIsNone(dto.fee)

    def test_json_round_trip_of_report(self):
        report = RevenueReportDTO(
            total_revenue=Decimal("340.00"),
            session_count=2,
            average_duration_minutes=795.0,
            peak_hours=[PeakHourDTO(hour=10, count=2)],
        )
        payload = json.loads(report.to_json())
        self.assertEqual(payload["session_count"], 2)
        self.assertEqual(payload["peak_hours"], [{"hour": 10, "count": 2}])

        restored = RevenueReportDTO.from_json(report.to_json())
        self.assertEqual(restored.total_revenue, Decimal("340.00"))


if __name__ == "__main__":
    unittest.main()
