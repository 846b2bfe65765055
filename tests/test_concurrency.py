"""
Concurrency tests for simultaneous commands
Tests that racing commands cannot both observe a precondition as satisfied
"""
from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

import pytest
from concurrent.futures import ThreadPoolExecutor, as_completed

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.auth_service import AuthService
from backend.booking_service import BookingService
from backend.consistency_validator import ConsistencyValidator
from backend.errors import (
    AirlineError, AircraftConflictError, ConcurrencyError, DuplicateIdentityError,
    FlightFullError, SeatTakenError
)
from backend.flight_service import FlightService
from backend.passenger_service import PassengerService


def run_concurrently(func, args_list, max_workers=10):
    """Run func over args_list on a thread pool, collecting (status, result) pairs"""
    successes = []
    failures = []

    def call(args):
        try:
            return ('success', func(*args))
        except AirlineError as e:
            return ('failed', e)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(call, args) for args in args_list]
        for future in as_completed(futures):
            status, result = future.result()
            if status == 'success':
                successes.append(result)
            else:
                failures.append(result)
    return successes, failures


@pytest.fixture
def patient_retries(db_manager, monkeypatch):
    """Give commands enough serialization retries to outlast a burst of contenders"""
    monkeypatch.setattr(
        db_manager, 'settings',
        replace(db_manager.settings, serialization_retries=15, retry_base_delay=0.002)
    )
    return db_manager


def create_passengers(count):
    return [
        PassengerService.create_passenger(name=f'Racer {i}', email=f'racer{i}@example.com').id
        for i in range(count)
    ]


def create_ticket(flight_id, passenger_id, seat):
    return BookingService.create_ticket({
        'flight_id': flight_id, 'passenger_id': passenger_id, 'seat_number': seat
    })


class TestConcurrentBooking:
    """Test concurrent ticket operations under the default retry settings"""

    def test_concurrent_same_seat_booking(self, db_manager, test_flight):
        """Test multiple passengers trying to book the same seat simultaneously"""
        passenger_ids = create_passengers(10)

        successes, failures = run_concurrently(
            create_ticket, [(test_flight.id, pid, '1A') for pid in passenger_ids]
        )

        assert len(successes) == 1
        assert len(failures) == 9
        assert all(isinstance(e, SeatTakenError) for e in failures)

        assert len(BookingService.list_tickets(flight_id=test_flight.id)) == 1
        assert FlightService.get_flight(test_flight.id).booked_seats == 1

    def test_concurrent_distinct_seats_all_succeed(self, db_manager, make_aircraft, make_flight):
        """Test a burst of bookings for free seats never reports a conflict"""
        flight = make_flight(aircraft_id=make_aircraft(capacity=50).id)
        passenger_ids = create_passengers(30)

        successes, failures = run_concurrently(
            create_ticket, [(flight.id, pid, f'{i + 1}D') for i, pid in enumerate(passenger_ids)],
            max_workers=30,
        )

        assert failures == []
        assert len(successes) == 30
        assert FlightService.get_flight(flight.id).booked_seats == 30

    def test_concurrent_booking_respects_capacity(self, db_manager, make_aircraft, make_flight):
        """Test more passengers than seats racing for distinct seats"""
        flight = make_flight(aircraft_id=make_aircraft(capacity=5).id)
        passenger_ids = create_passengers(10)

        successes, failures = run_concurrently(
            create_ticket, [(flight.id, pid, f'{i + 1}A') for i, pid in enumerate(passenger_ids)]
        )

        assert len(successes) == 5
        assert len(failures) == 5
        assert all(isinstance(e, FlightFullError) for e in failures)
        assert FlightService.get_flight(flight.id).booked_seats == 5
        assert len({t.seat_number for t in successes}) == 5

    def test_concurrent_seat_changes(self, db_manager, test_flight):
        """Test several tickets moving to the same free seat at once"""
        passenger_ids = create_passengers(5)
        tickets = [create_ticket(test_flight.id, pid, f'{i + 1}E') for i, pid in enumerate(passenger_ids)]

        successes, failures = run_concurrently(
            lambda ticket_id: BookingService.update_ticket(ticket_id, seat_number='30F'),
            [(t.id,) for t in tickets], max_workers=5,
        )

        assert len(successes) == 1
        assert all(isinstance(e, SeatTakenError) for e in failures)
        seats = [t.seat_number for t in BookingService.list_tickets(flight_id=test_flight.id)]
        assert seats.count('30F') == 1
        assert FlightService.get_flight(test_flight.id).booked_seats == 5

    def test_concurrent_bookings_keep_counter_consistent(self, db_manager, test_flight):
        """Test racing bookings and deletions leave no booking drift"""
        passenger_ids = create_passengers(8)
        existing = [create_ticket(test_flight.id, pid, f'{i + 20}C') for i, pid in enumerate(passenger_ids[:4])]

        with ThreadPoolExecutor(max_workers=8) as executor:
            futures = [executor.submit(create_ticket, test_flight.id, pid, f'{i + 1}B')
                       for i, pid in enumerate(passenger_ids)]
            futures += [executor.submit(BookingService.delete_ticket, t.id) for t in existing]
            for future in as_completed(futures):
                future.result()

        assert FlightService.get_flight(test_flight.id).booked_seats == 8
        assert ConsistencyValidator().validate_flight_booking_counts().count == 0


class TestConcurrentScheduling:
    """Test concurrent flight creation"""

    def test_concurrent_overlapping_flights(self, db_manager, patient_retries, make_flight, base_time):
        """Test only one of several overlapping flights on one aircraft is created"""
        successes, failures = run_concurrently(make_flight, [() for _ in range(5)], max_workers=5)

        assert len(successes) == 1
        assert all(isinstance(e, (AircraftConflictError, ConcurrencyError)) for e in failures)
        assert len(FlightService.list_flights()) == 1


class TestConcurrentRegistration:
    """Test concurrent user registration"""

    def test_concurrent_same_email(self, db_manager, patient_retries):
        """Test only one registration per email wins"""
        def register(n):
            return AuthService.register_user_with_passenger({
                'username': f'racer{n}',
                'email': 'shared@example.com',
                'password': 'password123',
            })

        successes, failures = run_concurrently(register, [(n,) for n in range(5)], max_workers=5)

        assert len(successes) == 1
        assert all(isinstance(e, (DuplicateIdentityError, ConcurrencyError)) for e in failures)
        assert PassengerService.count_passengers() == 1
        assert ConsistencyValidator().run_full_validation().status.value == 'HEALTHY'
