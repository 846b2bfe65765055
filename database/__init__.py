"""Database package initialization"""
from .models import (
    Airline, Aircraft, Terminal, Gate, Flight, Passenger, Ticket, User,
    AircraftStatus, GateStatus, FlightStatus, TicketClass, TicketStatus, UserRole,
    DEFAULT_FLIGHT_CAPACITY, DEFAULT_NATIONALITY, effective_capacity,
    row_to_airline, row_to_aircraft, row_to_terminal, row_to_gate,
    row_to_flight, row_to_passenger, row_to_ticket, row_to_user
)
from .database import DatabaseManager, get_db_manager, set_db_manager

__all__ = [
    'Airline', 'Aircraft', 'Terminal', 'Gate', 'Flight', 'Passenger', 'Ticket', 'User',
    'AircraftStatus', 'GateStatus', 'FlightStatus', 'TicketClass', 'TicketStatus', 'UserRole',
    'DEFAULT_FLIGHT_CAPACITY', 'DEFAULT_NATIONALITY', 'effective_capacity',
    'row_to_airline', 'row_to_aircraft', 'row_to_terminal', 'row_to_gate',
    'row_to_flight', 'row_to_passenger', 'row_to_ticket', 'row_to_user',
    'DatabaseManager', 'get_db_manager', 'set_db_manager'
]
