"""Performance tests for the airline operations core.

Measures bulk inserts, booking throughput and the full consistency audit on a
populated store. Run with: ``pytest tests/test_performance.py --performance``.
"""
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database.database as db_module
from database.database import DatabaseManager, set_db_manager
from backend.booking_service import BookingService
from backend.consistency_validator import ConsistencyValidator, HealthStatus
from backend.errors import AirlineError
from backend.fleet_service import FleetService
from backend.flight_service import FlightService
from backend.passenger_service import PassengerService
from data.data_generator import DataGenerator


pytestmark = pytest.mark.performance


@pytest.fixture(scope='module')
def perf_db():
    """
    Separate database for performance testing
    This fixture is module-scoped so the seeded dataset is shared between tests
    """
    perf_db_url = os.getenv('PERFORMANCE_DATABASE_URL', 'postgresql://localhost/airline_operations_perf')

    previous_manager = db_module._db_manager
    try:
        db_manager = DatabaseManager(database_url=perf_db_url, echo=False)
    except RuntimeError as e:
        pytest.skip(f"PostgreSQL performance database unavailable: {e}")
    set_db_manager(db_manager)
    db_manager.drop_tables()
    db_manager.create_tables()

    try:
        yield db_manager
    finally:
        print("\nCleaning up performance database...")
        db_manager.drop_tables()
        db_manager.close_all_connections()
        set_db_manager(previous_manager)


@pytest.fixture(scope='module')
def sample_dataset(perf_db):
    """Seed a sample dataset through the service layer"""
    generator = DataGenerator(seed=42)
    data = generator.generate_sample_dataset(passengers=100, tickets=500,
                                             aircraft_count=10, flight_count=100)
    if not data['flights'] or not data['ticket_ids']:
        raise RuntimeError("Performance dataset generation failed; no flights or tickets created.")
    return data


class TestBulkPerformance:
    """Test bulk insert timing"""

    def test_bulk_passenger_insert(self, perf_db, request):
        """Test a large passenger batch commits quickly"""
        count = request.config.getoption("--performance-passengers")
        records = [
            {'name': f'Bulk Passenger {i}', 'email': f'bulk{i}@perf.example.com',
             'identity_number': f'PERF{i:08d}'}
            for i in range(count)
        ]

        result = PassengerService.bulk_create_passengers(records)

        print(f"\nInserted {result.count} passengers in {result.elapsed_ms:.1f} ms")
        assert result.count == count
        assert result.elapsed_ms < 10_000, f"Bulk insert took too long: {result.elapsed_ms:.1f}ms"

    def test_bulk_aircraft_insert(self, perf_db, sample_dataset, request):
        """Test a large aircraft batch commits quickly"""
        count = request.config.getoption("--performance-aircraft")
        airline_id = sample_dataset['airlines'][0].id
        records = [
            {'airline_id': airline_id, 'registration_number': f'PF-{i:06d}',
             'model': 'Airbus A320', 'capacity': 180}
            for i in range(count)
        ]

        result = FleetService.bulk_create_aircraft(records)

        print(f"\nInserted {result.count} aircraft in {result.elapsed_ms:.1f} ms")
        assert result.count == count
        assert result.elapsed_ms < 5_000, f"Bulk insert took too long: {result.elapsed_ms:.1f}ms"


class TestBookingPerformance:
    """Test ticket creation performance under load"""

    def test_sequential_booking_performance(self, sample_dataset):
        """Test sequential ticket creation"""
        passenger_ids = sample_dataset['passenger_ids'][:50]
        flights = sample_dataset['flights'][:10]

        start_time = time.time()

        tickets_created = 0
        for i, passenger_id in enumerate(passenger_ids):
            try:
                BookingService.create_ticket({
                    'flight_id': flights[i % len(flights)].id,
                    'passenger_id': passenger_id,
                    'seat_number': f'{50 + i // len(flights)}K',
                })
                tickets_created += 1
            except AirlineError:
                pass  # Flight might be full

        elapsed = time.time() - start_time
        avg_time = elapsed / tickets_created if tickets_created > 0 else 0

        print(f"\nCreated {tickets_created} tickets in {elapsed:.3f} seconds")
        print(f"Average: {avg_time*1000:.1f}ms per ticket")

        assert avg_time < 0.5, f"Average booking time too slow: {avg_time:.3f}s"

    def test_concurrent_booking_performance(self, sample_dataset):
        """Test concurrent ticket throughput across flights"""
        passenger_ids = sample_dataset['passenger_ids'][50:100]
        flights = sample_dataset['flights'][10:20]

        def create_ticket(i, passenger_id):
            try:
                return BookingService.create_ticket({
                    'flight_id': flights[i % len(flights)].id,
                    'passenger_id': passenger_id,
                    'seat_number': f'{60 + i // len(flights)}K',
                })
            except AirlineError:
                return None

        start_time = time.time()

        with ThreadPoolExecutor(max_workers=10) as executor:
            futures = [executor.submit(create_ticket, i, pid) for i, pid in enumerate(passenger_ids)]
            results = [f.result() for f in futures]

        elapsed = time.time() - start_time
        successful = len([r for r in results if r is not None])

        print(f"\nCreated {successful} tickets concurrently in {elapsed:.3f} seconds")
        print(f"Throughput: {successful/elapsed:.1f} tickets/second")


class TestQueryPerformance:
    """Test query and audit performance on the seeded store"""

    def test_flight_list_pagination(self, sample_dataset):
        """Test paginated flight list performance"""
        start_time = time.time()
        flights = FlightService.list_flights(limit=100, offset=0)
        elapsed = time.time() - start_time

        print(f"\nRetrieved {len(flights)} flights in {elapsed:.3f} seconds")
        assert elapsed < 0.5, f"Paginated query took too long: {elapsed:.3f}s"
        assert flights

    def test_full_validation_performance(self, sample_dataset):
        """Test the consistency audit on a populated store"""
        start_time = time.time()
        report = ConsistencyValidator().run_full_validation()
        elapsed = time.time() - start_time

        print(f"\nFull validation ({report.status.value}) in {elapsed:.3f} seconds")
        assert report.status != HealthStatus.ERROR
        assert elapsed < 2.0, f"Validation took too long: {elapsed:.3f}s"


def run_performance_tests():
    """
    Helper function to run performance tests
    Usage: python test_performance.py
    """
    pytest.main([__file__, '--performance', '-v', '-s'])


if __name__ == '__main__':
    run_performance_tests()
