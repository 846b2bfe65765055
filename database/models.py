"""
Database models for the airline operations core
Plain Python classes and enums (no ORM)
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import enum

DEFAULT_FLIGHT_CAPACITY = 180
DEFAULT_NATIONALITY = 'Not Specified'


class AircraftStatus(enum.Enum):
    """Aircraft operational status"""
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class GateStatus(enum.Enum):
    """Gate status enumeration"""
    OPEN = "open"
    UNDER_REPAIR = "under_repair"


class FlightStatus(enum.Enum):
    """Flight status enumeration"""
    ON_TIME = "On Time"
    DELAYED = "Delayed"
    CANCELLED = "Cancelled"


class TicketClass(enum.Enum):
    """Ticket class enumeration"""
    ECONOMY = "economy"
    BUSINESS = "business"
    FIRST = "first"


class TicketStatus(enum.Enum):
    """Ticket status enumeration"""
    BOOKED = "booked"
    CHECKED_IN = "checked_in"
    CANCELLED = "cancelled"


class UserRole(enum.Enum):
    """User role enumeration"""
    PASSENGER = "passenger"
    ADMIN = "admin"


@dataclass
class Airline:
    """Airline operating aircraft and flights"""
    id: Optional[int] = None
    name: Optional[str] = None
    code: Optional[str] = None
    country: Optional[str] = None
    fleet_size: Optional[int] = None
    founded_year: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __repr__(self):
        return f"<Airline(id={self.id}, code='{self.code}', name='{self.name}')>"


@dataclass
class Aircraft:
    """Aircraft owned by an airline"""
    id: Optional[int] = None
    airline_id: Optional[int] = None
    model: Optional[str] = None
    capacity: Optional[int] = None
    registration_number: Optional[str] = None
    status: Optional[AircraftStatus] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # For joined queries
    airline: Optional[Airline] = None

    def __repr__(self):
        return f"<Aircraft(id={self.id}, registration='{self.registration_number}', capacity={self.capacity})>"


@dataclass
class Terminal:
    """Airport terminal"""
    id: Optional[int] = None
    name: Optional[str] = None
    location: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __repr__(self):
        return f"<Terminal(id={self.id}, name='{self.name}')>"


@dataclass
class Gate:
    """Boarding gate inside a terminal"""
    id: Optional[int] = None
    terminal_id: Optional[int] = None
    gate_number: Optional[str] = None
    status: Optional[GateStatus] = None
    area_capacity: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __repr__(self):
        return f"<Gate(id={self.id}, terminal_id={self.terminal_id}, number='{self.gate_number}')>"


@dataclass
class Flight:
    """Scheduled flight with its booking counter"""
    id: Optional[int] = None
    flight_code: Optional[str] = None
    airline_id: Optional[int] = None
    aircraft_id: Optional[int] = None
    gate_id: Optional[int] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    status: Optional[FlightStatus] = None
    booked_seats: Optional[int] = None
    capacity: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # For joined queries
    aircraft: Optional[Aircraft] = None

    def __repr__(self):
        return f"<Flight(id={self.id}, route='{self.origin}->{self.destination}', booked={self.booked_seats})>"


@dataclass
class Passenger:
    """Passenger profile"""
    id: Optional[int] = None
    name: Optional[str] = None
    passport_number: Optional[str] = None
    identity_number: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    nationality: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __repr__(self):
        return f"<Passenger(id={self.id}, name='{self.name}', email='{self.email}')>"


@dataclass
class Ticket:
    """Ticket binding a passenger to a seat on a flight"""
    id: Optional[int] = None
    flight_id: Optional[int] = None
    passenger_id: Optional[int] = None
    seat_number: Optional[str] = None
    ticket_class: Optional[TicketClass] = None
    price: Optional[float] = None
    status: Optional[TicketStatus] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # For joined queries
    flight: Optional[Flight] = None
    passenger: Optional[Passenger] = None

    def __repr__(self):
        return f"<Ticket(id={self.id}, flight_id={self.flight_id}, seat='{self.seat_number}')>"


@dataclass
class User:
    """User account, optionally linked to one passenger profile"""
    id: Optional[int] = None
    username: Optional[str] = None
    email: Optional[str] = None
    password_hash: Optional[str] = None
    role: Optional[UserRole] = None
    passenger_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', role={self.role.value if self.role else None})>"

    def without_password(self) -> 'User':
        """Copy of the user that is safe to hand back to callers"""
        return User(
            id=self.id,
            username=self.username,
            email=self.email,
            password_hash=None,
            role=self.role,
            passenger_id=self.passenger_id,
            created_at=self.created_at,
            updated_at=self.updated_at
        )


def effective_capacity(aircraft: Optional[Aircraft],
                       default: int = DEFAULT_FLIGHT_CAPACITY) -> int:
    """Seats that may be sold on a flight flown by ``aircraft``"""
    if aircraft is not None and aircraft.capacity:
        return aircraft.capacity
    return default


def row_to_airline(row) -> Airline:
    """Convert database row to Airline object"""
    if not row:
        return None
    return Airline(
        id=row['id'],
        name=row['name'],
        code=row['code'],
        country=row.get('country'),
        fleet_size=row.get('fleet_size'),
        founded_year=row.get('founded_year'),
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )


def row_to_aircraft(row) -> Aircraft:
    """Convert database row to Aircraft object"""
    if not row:
        return None
    return Aircraft(
        id=row['id'],
        airline_id=row['airline_id'],
        model=row['model'],
        capacity=row['capacity'],
        registration_number=row['registration_number'],
        status=AircraftStatus(row['status']) if row['status'] else None,
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )


def row_to_terminal(row) -> Terminal:
    """Convert database row to Terminal object"""
    if not row:
        return None
    return Terminal(
        id=row['id'],
        name=row['name'],
        location=row.get('location'),
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )


def row_to_gate(row) -> Gate:
    """Convert database row to Gate object"""
    if not row:
        return None
    return Gate(
        id=row['id'],
        terminal_id=row['terminal_id'],
        gate_number=row['gate_number'],
        status=GateStatus(row['status']) if row['status'] else None,
        area_capacity=row.get('area_capacity'),
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )


def row_to_flight(row) -> Flight:
    """Convert database row to Flight object"""
    if not row:
        return None
    return Flight(
        id=row['id'],
        flight_code=row.get('flight_code'),
        airline_id=row['airline_id'],
        aircraft_id=row['aircraft_id'],
        gate_id=row['gate_id'],
        origin=row['origin'],
        destination=row['destination'],
        departure_time=row['departure_time'],
        arrival_time=row['arrival_time'],
        status=FlightStatus(row['status']) if row['status'] else None,
        booked_seats=row['booked_seats'],
        capacity=row.get('capacity'),
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )


def row_to_passenger(row) -> Passenger:
    """Convert database row to Passenger object"""
    if not row:
        return None
    return Passenger(
        id=row['id'],
        name=row['name'],
        passport_number=row.get('passport_number'),
        identity_number=row.get('identity_number'),
        phone=row.get('phone'),
        email=row.get('email'),
        address=row.get('address'),
        nationality=row.get('nationality'),
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )


def row_to_ticket(row) -> Ticket:
    """Convert database row to Ticket object"""
    if not row:
        return None
    return Ticket(
        id=row['id'],
        flight_id=row['flight_id'],
        passenger_id=row['passenger_id'],
        seat_number=row['seat_number'],
        ticket_class=TicketClass(row['ticket_class']) if row['ticket_class'] else None,
        price=float(row['price']) if row['price'] is not None else None,
        status=TicketStatus(row['status']) if row['status'] else None,
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )


def row_to_user(row) -> User:
    """Convert database row to User object"""
    if not row:
        return None
    return User(
        id=row['id'],
        username=row['username'],
        email=row['email'],
        password_hash=row.get('password_hash'),
        role=UserRole(row['role']) if row['role'] else None,
        passenger_id=row.get('passenger_id'),
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )
