#!/usr/bin/env python3
"""
Database Integration Tests

End-to-end entry and exit flows over the SQLAlchemy allocator and ledger,
using an in-memory SQLite database shared by all sessions of one test.
"""

import unittest
from unittest.mock import patch
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from parking_system.application.parking_service import ParkingOrchestrator, ParkingServiceFactory
from parking_system.domain.fare import FareCalculator
from parking_system.domain.models import ParkingSpot, Ticket, VehicleType
from parking_system.domain.exceptions import (
    VehicleAlreadyParkedError, NoOpenTicketError, NoSpotAvailableError,
    CollaboratorUnavailableError
)
from parking_system.infrastructure.config import AppConfig
from parking_system.infrastructure.repositories import RepositoryFactory, default_spot_pool


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class DatabaseTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock(datetime(2024, 3, 1, 9, 0, 0))
        self.allocator, self.ledger, self.database = RepositoryFactory.create_sqlalchemy(
            "sqlite://", spots=default_spot_pool(), clock=self.clock
        )
        self.orchestrator = ParkingOrchestrator(
            spot_allocator=self.allocator,
            ticket_ledger=self.ledger,
            fare_calculator=FareCalculator(),
            clock=self.clock
        )

    def tearDown(self):
        self.database.drop_schema()
        self.database.dispose()

    def seed_completed_stays(self, registration, count, days_ago=1):
        for i in range(count):
            exit_time = self.clock.now - timedelta(days=days_ago, hours=i)
            self.ledger.add_ticket(Ticket(
                spot_id=1,
                vehicle_type=VehicleType.CAR,
                vehicle_registration=registration,
                entry_time=exit_time - timedelta(hours=1),
                exit_time=exit_time,
                price=Decimal('1.50')
            ))


class TestParkingDatabaseFlows(DatabaseTestCase):

    def test_parking_a_car(self):
        result = self.orchestrator.handle_entry("ABCDEF", 1)

        self.assertEqual(result.spot_id, 1)
        self.assertFalse(self.allocator.get_spot(1).available)
        self.assertEqual(self.allocator.next_available(VehicleType.CAR), 2)

        ticket = self.ledger.get_open_ticket("ABCDEF")
        self.assertEqual(ticket.id, result.ticket_id)
        self.assertEqual(ticket.vehicle_type, VehicleType.CAR)
        self.assertEqual(ticket.price, Decimal('0.00'))
        self.assertIsNone(ticket.exit_time)

    def test_parking_lot_exit(self):
        self.orchestrator.handle_entry("ABCDEF", 1)
        self.clock.advance(hours=1)

        result = self.orchestrator.handle_exit("ABCDEF")

        self.assertEqual(result.price, Decimal('1.50'))
        self.assertFalse(self.ledger.has_open_ticket("ABCDEF"))
        self.assertTrue(self.allocator.get_spot(1).available)
        self.assertEqual(self.ledger.count_completed_stays("ABCDEF"), 1)

    def test_bike_uses_bike_pool(self):
        result = self.orchestrator.handle_entry("MOTO-1", 2)

        self.assertEqual(result.spot_id, 4)
        self.assertEqual(self.allocator.count_available(VehicleType.CAR), 3)
        self.assertEqual(self.allocator.count_available(VehicleType.BIKE), 1)

    def test_parking_lot_exit_recurring_user(self):
        self.seed_completed_stays("ABCDEF", 5)

        entry = self.orchestrator.handle_entry("ABCDEF", 1)
        self.assertTrue(entry.frequent_user)

        self.clock.advance(hours=1)
        result = self.orchestrator.handle_exit("ABCDEF")

        self.assertEqual(result.price, Decimal('1.43'))
        self.assertTrue(result.discount_applied)

    def test_stays_outside_window_are_not_counted(self):
        self.seed_completed_stays("ABCDEF", 5, days_ago=31)

        self.orchestrator.handle_entry("ABCDEF", 1)
        self.clock.advance(hours=1)

        self.assertEqual(self.orchestrator.handle_exit("ABCDEF").price, Decimal('1.50'))

    def test_parking_a_car_twice(self):
        self.orchestrator.handle_entry("ABCDEF", 1)

        with self.assertRaises(VehicleAlreadyParkedError):
            self.orchestrator.handle_entry("ABCDEF", 1)

        self.assertEqual(self.allocator.count_available(VehicleType.CAR), 2)

    def test_exit_without_entry(self):
        with self.assertRaises(NoOpenTicketError):
            self.orchestrator.handle_exit("ABCDEF")

        self.assertEqual(self.allocator.count_available(), 5)

    def test_bike_pool_full(self):
        self.orchestrator.handle_entry("MOTO-1", 2)
        self.orchestrator.handle_entry("MOTO-2", 2)

        with self.assertRaises(NoSpotAvailableError):
            self.orchestrator.handle_entry("MOTO-3", 2)

        self.assertFalse(self.ledger.has_open_ticket("MOTO-3"))


class TestSQLAlchemyRepositories(DatabaseTestCase):

    def test_availability_update_is_conditional(self):
        self.assertTrue(self.allocator.set_availability(3, False))
        self.assertFalse(self.allocator.set_availability(3, False))
        self.assertTrue(self.allocator.set_availability(3, True))
        self.assertFalse(self.allocator.set_availability(99, True))

    def test_open_ticket_guards_against_second_open_ticket(self):
        ticket = Ticket(
            spot_id=1,
            vehicle_type=VehicleType.CAR,
            vehicle_registration="ABCDEF",
            entry_time=self.clock.now
        )
        self.ledger.open_ticket(ticket)

        with self.assertRaises(VehicleAlreadyParkedError):
            self.ledger.open_ticket(ticket)

    def test_database_refuses_second_open_ticket(self):
        ticket = Ticket(
            spot_id=1,
            vehicle_type=VehicleType.CAR,
            vehicle_registration="ABCDEF",
            entry_time=self.clock.now
        )
        self.ledger.open_ticket(ticket)

        # Simulates another process passing the existence check at the same time
        with patch.object(self.ledger, "_open_ticket_exists", return_value=False):
            with self.assertRaises(VehicleAlreadyParkedError) as ctx:
                self.ledger.open_ticket(ticket)

        self.assertIsInstance(ctx.exception.__cause__, IntegrityError)
        self.assertTrue(self.ledger.has_open_ticket("ABCDEF"))

    def test_closed_ticket_cannot_be_closed_again(self):
        saved = self.ledger.open_ticket(Ticket(
            spot_id=1,
            vehicle_type=VehicleType.CAR,
            vehicle_registration="ABCDEF",
            entry_time=self.clock.now
        ))
        saved.close(self.clock.now + timedelta(hours=2), Decimal('3'))

        self.assertTrue(self.ledger.close_ticket(saved))
        self.assertFalse(self.ledger.close_ticket(saved))

    def test_provisioning_is_idempotent(self):
        self.assertEqual(self.database.provision_spots(default_spot_pool()), 0)
        self.assertEqual(
            self.database.provision_spots([ParkingSpot(6, VehicleType.BIKE)]), 1
        )
        self.assertEqual(self.allocator.count_available(VehicleType.BIKE), 3)

    def test_storage_failure_is_reported_as_unavailable(self):
        self.database.drop_schema()

        with self.assertRaises(CollaboratorUnavailableError):
            self.ledger.has_open_ticket("ABCDEF")

        with self.assertRaises(CollaboratorUnavailableError):
            self.orchestrator.handle_entry("ABCDEF", 1)

        self.database.create_schema()


class TestServiceFactoryFromConfig(unittest.TestCase):

    def test_create_from_config(self):
        clock = FakeClock(datetime(2024, 3, 1, 9, 0, 0))
        config = AppConfig(
            database_url="sqlite://",
            fare={"car_rate_per_hour": 2.0, "grace_period_minutes": 0}
        )
        orchestrator = ParkingServiceFactory.create_from_config(config, clock=clock)

        orchestrator.handle_entry("ABCDEF", "car")
        clock.advance(minutes=15)
        result = orchestrator.handle_exit("ABCDEF")

        self.assertEqual(result.price, Decimal('0.50'))
        self.assertEqual(orchestrator.spot_allocator.count_available(), 5)

    def test_create_from_config_without_seeding(self):
        config = AppConfig(database_url="sqlite://", seed_default_spots=False)
        orchestrator = ParkingServiceFactory.create_from_config(config)

        with self.assertRaises(NoSpotAvailableError):
            orchestrator.handle_entry("ABCDEF", 1)


if __name__ == '__main__':
    unittest.main()
