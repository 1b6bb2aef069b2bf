#!/usr/bin/env python3
"""
Domain Model Unit Tests

Tests for price rounding, registration validation and the ticket lifecycle.
"""

import unittest
from datetime import datetime, timedelta
from decimal import Decimal

from parking_system.domain.models import (
    VehicleType, VehicleRegistration, ParkingSpot, Ticket,
    round_to_two_decimals, format_price
)
from parking_system.domain.exceptions import InvalidRegistrationError


class TestRoundToTwoDecimals(unittest.TestCase):
    """Rounding is half up on the decimal value, not on the binary float"""

    def test_rounding_cases(self):
        test_cases = [
            (123.456, Decimal('123.46')),   # third decimal above half
            (1.234, Decimal('1.23')),       # below half
            (12.345, Decimal('12.35')),     # exactly half
            (12.346, Decimal('12.35')),
            (12.34, Decimal('12.34')),      # already rounded
            (123, Decimal('123.00')),       # integer
            (Decimal('1.425'), Decimal('1.43')),
            ("0.005", Decimal('0.01')),
        ]

        for value, expected in test_cases:
            self.assertEqual(round_to_two_decimals(value), expected, msg=f"Failed for {value!r}")

    def test_not_bankers_rounding(self):
        self.assertEqual(round_to_two_decimals(Decimal('0.125')), Decimal('0.13'))
        self.assertEqual(round_to_two_decimals(Decimal('0.135')), Decimal('0.14'))

    def test_format_price(self):
        self.assertEqual(format_price(1.5), "1.50")
        self.assertEqual(format_price(0), "0.00")


class TestVehicleRegistration(unittest.TestCase):

    def test_normalises_value(self):
        self.assertEqual(VehicleRegistration("  ab-123 ").value, "AB-123")

    def test_rejects_empty(self):
        for value in ("", "   ", None):
            with self.assertRaises(InvalidRegistrationError):
                VehicleRegistration(value)

    def test_rejects_invalid_characters(self):
        with self.assertRaises(InvalidRegistrationError):
            VehicleRegistration("AB_12;DROP")

    def test_rejects_too_long(self):
        with self.assertRaises(InvalidRegistrationError):
            VehicleRegistration("A" * 21)


class TestParkingSpot(unittest.TestCase):

    def test_spot_number_must_be_positive(self):
        with self.assertRaises(ValueError):
            ParkingSpot(0, VehicleType.CAR)

    def test_spot_type_must_be_known(self):
        with self.assertRaises(ValueError):
            ParkingSpot(1, "CAR")


class TestTicket(unittest.TestCase):

    def setUp(self):
        self.entry = datetime(2024, 3, 1, 9, 0)
        self.ticket = Ticket(
            spot_id=1,
            vehicle_type=VehicleType.CAR,
            vehicle_registration="ABCDEF",
            entry_time=self.entry
        )

    def test_new_ticket_is_open_with_zero_price(self):
        self.assertTrue(self.ticket.is_open)
        self.assertEqual(self.ticket.price, Decimal('0.00'))
        self.assertIsNone(self.ticket.exit_time)

    def test_close_rounds_price(self):
        self.ticket.close(self.entry + timedelta(hours=1), Decimal('1.425'))

        self.assertFalse(self.ticket.is_open)
        self.assertEqual(self.ticket.price, Decimal('1.43'))

    def test_ticket_closes_only_once(self):
        self.ticket.close(self.entry + timedelta(hours=1), Decimal('1.5'))

        with self.assertRaises(ValueError):
            self.ticket.close(self.entry + timedelta(hours=2), Decimal('3'))
        self.assertEqual(self.ticket.price, Decimal('1.50'))

    def test_negative_price_is_rejected(self):
        with self.assertRaises(ValueError):
            self.ticket.close(self.entry + timedelta(hours=1), Decimal('-1'))

    def test_to_dict(self):
        data = self.ticket.to_dict()
        self.assertEqual(data["vehicle_type"], "CAR")
        self.assertEqual(data["price"], "0.00")
        self.assertIsNone(data["exit_time"])


if __name__ == '__main__':
    unittest.main()
