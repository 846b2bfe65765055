"""Pytest configuration and fixtures."""
import itertools
import os
import sys
from datetime import datetime, timedelta

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database.config import get_settings
from database.database import DatabaseManager, set_db_manager
from backend.auth_service import AuthService
from backend.fleet_service import FleetService
from backend.flight_service import FlightService


def pytest_addoption(parser):
    """Register custom CLI options for the test suite."""
    parser.addoption(
        "--performance",
        action="store_true",
        default=False,
        help="Run the performance test suite",
    )
    parser.addoption(
        "--performance-passengers",
        type=int,
        default=5000,
        help="Number of passengers per bulk batch in performance tests",
    )
    parser.addoption(
        "--performance-aircraft",
        type=int,
        default=2000,
        help="Number of aircraft per bulk batch in performance tests",
    )


def pytest_configure(config):
    """Declare custom markers to avoid pytest warnings."""
    config.addinivalue_line(
        "markers",
        "performance: marks performance tests that only run when --performance is supplied",
    )


def pytest_collection_modifyitems(config, items):
    """Skip performance tests unless the dedicated flag is present."""
    if config.getoption("--performance"):
        return

    skip_marker = pytest.mark.skip(
        reason="Performance tests only run when --performance flag is provided",
    )
    for item in items:
        if "performance" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture(scope='function')
def db_manager():
    """Create a test database manager with PostgreSQL test database."""
    # Use environment variable or default to local test database
    test_db_url = os.getenv('TEST_DATABASE_URL', get_settings().test_database_url)
    try:
        db = DatabaseManager(database_url=test_db_url, echo=False)
    except RuntimeError as e:
        pytest.skip(f"PostgreSQL test database unavailable: {e}")
    db.drop_tables()  # Clean slate for each test
    db.create_tables()
    set_db_manager(db)
    yield db
    set_db_manager(None)
    db.drop_tables()  # Cleanup after test
    db.close_all_connections()


@pytest.fixture(scope='function')
def test_airline(db_manager):
    """Create a test airline"""
    return FleetService.create_airline(
        name='Garuda Indonesia', code='GA', country='Indonesia', founded_year=1949
    )


@pytest.fixture(scope='function')
def make_aircraft(db_manager, test_airline):
    """Factory for aircraft with unique registration numbers"""
    counter = itertools.count(1)

    def _make(capacity=189, model='Boeing 737-800', airline_id=None):
        return FleetService.create_aircraft({
            'airline_id': airline_id or test_airline.id,
            'registration_number': f'PK-T{next(counter):03d}',
            'model': model,
            'capacity': capacity,
        })

    return _make


@pytest.fixture(scope='function')
def test_aircraft(make_aircraft):
    """Create a test aircraft"""
    return make_aircraft()


@pytest.fixture(scope='function')
def test_terminal(db_manager):
    """Create a test terminal"""
    return FleetService.create_terminal(name='Terminal 1', location='North')


@pytest.fixture(scope='function')
def make_gate(test_terminal):
    """Factory for open gates in the test terminal"""
    counter = itertools.count(1)

    def _make():
        return FleetService.create_gate(terminal_id=test_terminal.id, gate_number=f'A{next(counter)}')

    return _make


@pytest.fixture(scope='function')
def test_gate(make_gate):
    """Create a test gate"""
    return make_gate()


@pytest.fixture(scope='function')
def base_time():
    """Fixed departure reference one week out, on the hour"""
    return datetime.now().replace(minute=0, second=0, microsecond=0) + timedelta(days=7)


@pytest.fixture(scope='function')
def make_flight(test_airline, test_aircraft, test_gate, base_time):
    """Factory for flights; defaults to the test aircraft and gate"""

    def _make(departure=None, hours=3, aircraft_id=None, gate_id=None, **overrides):
        departure = departure or base_time
        request = {
            'flight_code': 'GA410',
            'airline_id': test_airline.id,
            'aircraft_id': aircraft_id or test_aircraft.id,
            'gate_id': gate_id or test_gate.id,
            'origin': 'Jakarta (CGK)',
            'destination': 'Denpasar (DPS)',
            'departure_time': departure,
            'arrival_time': departure + timedelta(hours=hours),
        }
        request.update(overrides)
        return FlightService.create_flight(request)

    return _make


@pytest.fixture(scope='function')
def test_flight(make_flight):
    """Create a test flight"""
    return make_flight()


@pytest.fixture(scope='function')
def register():
    """Factory registering a user with a linked passenger"""
    counter = itertools.count(1)

    def _register(**overrides):
        n = next(counter)
        request = {
            'username': f'user{n}',
            'email': f'user{n}@example.com',
            'password': 'password123',
            'name': f'Test User {n}',
        }
        request.update(overrides)
        return AuthService.register_user_with_passenger(request)

    return _register


@pytest.fixture(scope='function')
def test_registration(db_manager, register):
    """Register a test user with its passenger profile"""
    return register(
        username='johndoe',
        email='john@example.com',
        name='John Doe',
        identity_number='3171234567890001',
        phone='+6281234567890',
    )


@pytest.fixture(scope='function')
def test_passenger_id(test_registration):
    """ID of the test user's passenger"""
    return test_registration.passenger_id
