"""
Sample data generator for populating the database with valid entries
Everything goes through the service layer, so a seeded store validates HEALTHY
"""
from datetime import datetime, timedelta
import logging
import random
from faker import Faker
from typing import Optional
import sys
import os

# Add parent directory to path for imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database.database import get_db_manager
from database import GateStatus, TicketClass
from backend.errors import AirlineError
from backend.auth_service import AuthService
from backend.booking_service import BookingService
from backend.fleet_service import FleetService
from backend.flight_service import FlightService

logger = logging.getLogger(__name__)

# Hours between consecutive departures of the same aircraft; longer than any generated flight
SLOT_HOURS = 12


class DataGenerator:
    """Generate realistic sample data for the airline operations store"""

    def __init__(self, seed: Optional[int] = None):
        """
        Initialize data generator

        Args:
            seed: Random seed for reproducibility
        """
        if seed is not None:
            random.seed(seed)
            Faker.seed(seed)

        self.faker = Faker()

        # Common airports
        self.airports = [
            ('CGK', 'Jakarta'),
            ('DPS', 'Denpasar'),
            ('SUB', 'Surabaya'),
            ('KNO', 'Medan'),
            ('UPG', 'Makassar'),
            ('SIN', 'Singapore'),
            ('KUL', 'Kuala Lumpur'),
            ('BKK', 'Bangkok'),
            ('HND', 'Tokyo'),
            ('SYD', 'Sydney'),
        ]

        # Airlines: name, code, country, founded
        self.airlines = [
            ('Garuda Indonesia', 'GA', 'Indonesia', 1949),
            ('Singapore Airlines', 'SQ', 'Singapore', 1947),
            ('Malaysia Airlines', 'MH', 'Malaysia', 1947),
            ('Thai Airways', 'TG', 'Thailand', 1960),
        ]

        # Aircraft models with passenger capacity
        self.aircraft_types = [
            ('Boeing 737-800', 189),
            ('Boeing 777-300ER', 396),
            ('Airbus A320', 180),
            ('Airbus A330-300', 295),
            ('Boeing 787-9', 296),
            ('Airbus A350-900', 325),
        ]

        self.ticket_prices = {
            TicketClass.ECONOMY: (80, 400),
            TicketClass.BUSINESS: (400, 1500),
            TicketClass.FIRST: (1500, 4000),
        }

    def generate_airlines(self):
        """Create the fixed set of airlines"""
        airlines = []
        for name, code, country, founded in self.airlines:
            airlines.append(FleetService.create_airline(
                name=name, code=code, country=country, founded_year=founded
            ))
        print(f"Generated {len(airlines)} airlines")
        return airlines

    def generate_aircraft(self, airline_ids: list, count: int = 10):
        """
        Generate aircraft in one bulk command

        Args:
            airline_ids: Airlines to distribute the aircraft over
            count: Number of aircraft to generate

        Returns:
            List of created aircraft
        """
        records = []
        for i in range(count):
            model, capacity = random.choice(self.aircraft_types)
            records.append({
                'airline_id': airline_ids[i % len(airline_ids)],
                'registration_number': self.faker.unique.bothify(text='PK-???##').upper(),
                'model': model,
                'capacity': capacity,
            })

        result = FleetService.bulk_create_aircraft(records)
        print(f"Generated {result.count} aircraft in {result.elapsed_ms:.1f} ms")
        return result.records

    def generate_gates(self, terminal_count: int = 2, gates_per_terminal: int = 6):
        """Generate terminals, each with a row of open gates"""
        gates = []
        for t in range(terminal_count):
            terminal = FleetService.create_terminal(
                name=f"Terminal {t + 1}", location=self.faker.street_name()
            )
            for g in range(gates_per_terminal):
                gates.append(FleetService.create_gate(
                    terminal_id=terminal.id,
                    gate_number=f"{chr(ord('A') + t)}{g + 1}",
                    status=GateStatus.OPEN,
                    area_capacity=random.choice([150, 200, 300]),
                ))
        print(f"Generated {terminal_count} terminals with {len(gates)} gates")
        return gates

    def generate_flights(self, aircraft: list, gate_ids: list, count: int = 50):
        """
        Generate flights that never overlap on an aircraft or a gate

        Each aircraft flies one departure per slot; within a slot every
        aircraft gets its own gate, so gate_ids must cover the fleet.

        Args:
            aircraft: Aircraft objects to schedule
            gate_ids: Gate IDs, at least as many as aircraft
            count: Number of flights to generate

        Returns:
            List of created flights
        """
        if len(gate_ids) < len(aircraft):
            raise ValueError("Need at least one gate per aircraft to avoid gate conflicts")

        flights = []
        start = datetime.now().replace(minute=0, second=0, microsecond=0) + timedelta(days=1)

        print(f"Generating {count} flights...")

        for i in range(count):
            slot, index = divmod(i, len(aircraft))
            plane = aircraft[index]

            origin_code, origin_city = random.choice(self.airports)
            dest_code, dest_city = random.choice(self.airports)
            while dest_code == origin_code:
                dest_code, dest_city = random.choice(self.airports)

            departure = start + timedelta(hours=slot * SLOT_HOURS, minutes=random.choice([0, 15, 30, 45]))
            arrival = departure + timedelta(hours=random.randint(1, 8))

            try:
                flight = FlightService.create_flight({
                    'flight_code': f"{origin_code}{dest_code}{random.randint(100, 999)}",
                    'airline_id': plane.airline_id,
                    'aircraft_id': plane.id,
                    'gate_id': gate_ids[index],
                    'origin': f"{origin_city} ({origin_code})",
                    'destination': f"{dest_city} ({dest_code})",
                    'departure_time': departure,
                    'arrival_time': arrival,
                })
                flights.append(flight)
            except AirlineError as e:
                logger.warning("Error creating flight: %s", e)

            if (i + 1) % 50 == 0:
                print(f"  Created {i + 1}/{count} flights")

        print(f"Generated {len(flights)} flights")
        return flights

    def generate_users_and_passengers(self, count: int = 50):
        """
        Register users, each with its own passenger profile

        Args:
            count: Number of users/passengers to generate

        Returns:
            List of linked passenger IDs
        """
        passenger_ids = []

        print(f"Generating {count} users and passengers...")

        for i in range(count):
            try:
                result = AuthService.register_user_with_passenger({
                    'username': self.faker.unique.user_name(),
                    'email': self.faker.unique.email(),
                    'password': self.faker.password(length=12),
                    'name': self.faker.name(),
                    'identity_number': self.faker.unique.bothify(text='################'),
                    'phone': self.faker.unique.bothify(text='+62-8##-####-####'),
                    'nationality': self.faker.country(),
                    # First 2 are admins
                    'role': 'admin' if i < 2 else 'passenger',
                })
                passenger_ids.append(result.passenger_id)
            except AirlineError as e:
                logger.warning("Error registering user: %s", e)

            if (i + 1) % 25 == 0:
                print(f"  Created {i + 1}/{count} users/passengers")

        print(f"Generated {len(passenger_ids)} users/passengers")
        return passenger_ids

    def _random_seat(self) -> str:
        return f"{random.randint(1, 40)}{random.choice('ABCDEF')}"

    def generate_tickets(self, passenger_ids: list, flight_ids: list, count: int = 200,
                         max_attempt_multiplier: float = 3.0):
        """
        Book tickets on random seats

        Taken seats and full flights are expected and simply retried with a
        new pick, up to a bounded number of attempts.

        Args:
            passenger_ids: List of passenger IDs
            flight_ids: List of flight IDs
            count: Number of tickets to generate
            max_attempt_multiplier: Retry multiplier to ensure requested volume

        Returns:
            List of created ticket IDs
        """
        ticket_ids = []

        print(f"Generating {count} tickets...")

        attempts = 0
        max_attempts = max(count, int(count * max(1.0, max_attempt_multiplier)))

        while len(ticket_ids) < count and attempts < max_attempts:
            attempts += 1
            ticket_class = random.choice(list(TicketClass))
            low, high = self.ticket_prices[ticket_class]
            try:
                ticket = BookingService.create_ticket({
                    'flight_id': random.choice(flight_ids),
                    'passenger_id': random.choice(passenger_ids),
                    'seat_number': self._random_seat(),
                    'ticket_class': ticket_class,
                    'price': round(random.uniform(low, high), 2),
                })
                ticket_ids.append(ticket.id)
                if len(ticket_ids) % 100 == 0:
                    print(f"  Created {len(ticket_ids)}/{count} tickets")
            except AirlineError as e:
                if e.kind not in ('SeatTaken', 'FlightFull'):
                    logger.warning("Error creating ticket: %s", e)

        if len(ticket_ids) < count:
            print(
                f"Warning: requested {count} tickets but only created {len(ticket_ids)}"
                f" after {attempts} attempts."
            )

        print(f"Generated {len(ticket_ids)} tickets")
        return ticket_ids

    def generate_sample_dataset(self, passengers: int = 50, tickets: int = 200,
                                aircraft_count: int = 8, flight_count: int = 40):
        """
        Generate a complete sample dataset

        Returns:
            Dictionary with all generated data
        """
        print("=" * 60)
        print("GENERATING SAMPLE DATASET")
        print("=" * 60)

        airlines = self.generate_airlines()
        aircraft = self.generate_aircraft([a.id for a in airlines], count=aircraft_count)
        gates = self.generate_gates(gates_per_terminal=max(1, (aircraft_count + 1) // 2))
        flights = self.generate_flights(aircraft, [g.id for g in gates], count=flight_count)
        passenger_ids = self.generate_users_and_passengers(count=passengers)

        ticket_ids = []
        if passenger_ids and flights and tickets > 0:
            ticket_ids = self.generate_tickets(passenger_ids, [f.id for f in flights], count=tickets)

        print("=" * 60)
        print("DATASET GENERATION COMPLETE")
        print("=" * 60)
        print(f"Airlines: {len(airlines)}")
        print(f"Aircraft: {len(aircraft)}")
        print(f"Gates: {len(gates)}")
        print(f"Flights: {len(flights)}")
        print(f"Passengers: {len(passenger_ids)}")
        print(f"Tickets: {len(ticket_ids)}")
        print("=" * 60)

        return {
            'airlines': airlines,
            'aircraft': aircraft,
            'gates': gates,
            'flights': flights,
            'passenger_ids': passenger_ids,
            'ticket_ids': ticket_ids,
        }


def main():
    """Main function for command-line usage"""
    import argparse

    from database.logging_config import configure_logging

    parser = argparse.ArgumentParser(description='Generate sample data for airline operations')
    parser.add_argument('--passengers', type=int, default=50,
                        help='Number of registered passengers')
    parser.add_argument('--tickets', type=int, default=200,
                        help='Number of tickets to book')
    parser.add_argument('--seed', type=int, help='Random seed for reproducibility')

    args = parser.parse_args()
    configure_logging()

    # Initialize database
    db_manager = get_db_manager()
    db_manager.create_tables()

    generator = DataGenerator(seed=args.seed)
    generator.generate_sample_dataset(passengers=args.passengers, tickets=args.tickets)


if __name__ == '__main__':
    main()
