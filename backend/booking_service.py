"""
Booking service with concurrent seat reservation handling
Ticket creation and deletion keep flights.booked_seats in step with the ticket set
"""
import logging
from typing import List, Optional

from psycopg2.extensions import ISOLATION_LEVEL_READ_COMMITTED
from psycopg2.extras import RealDictCursor

from database import (
    Ticket, TicketStatus, effective_capacity,
    row_to_ticket, row_to_flight, row_to_passenger, row_to_aircraft, get_db_manager
)
from .errors import FlightFullError, NotFoundError, SeatTakenError
from .schemas import CreateTicketRequest, UpdateTicketRequest, parse_request
from .unit_of_work import constraint_name, run_command

logger = logging.getLogger(__name__)

_TICKET_COLUMNS = """id, flight_id, passenger_id, seat_number, ticket_class, price, status,
    created_at, updated_at"""


def _seat_conflict(flight_id: int, seat_number: str):
    """Integrity mapper turning the (flight, seat) unique violation into SeatTaken"""
    def mapper(exc):
        if constraint_name(exc) == 'uq_tickets_flight_seat':
            return SeatTakenError(flight_id, seat_number)
        return None
    return mapper


class BookingService:
    """
    Service for ticket operations with transaction safety

    Ticket commands run at READ COMMITTED and serialize on the flight row
    (SELECT ... FOR UPDATE). Statements issued after the lock is granted see
    every ticket committed by the previous holder, so the seat and capacity
    checks are exact; the (flight_id, seat_number) constraint backs them up.
    """

    @staticmethod
    def _adjust_booked_seats(cursor, flight_id: int, delta: int) -> bool:
        """Shift the flight's booked_seats counter, never below zero"""
        cursor.execute("""
            UPDATE flights
            SET booked_seats = GREATEST(booked_seats + %s, 0), updated_at = NOW()
            WHERE id = %s
            RETURNING id
        """, (delta, flight_id))
        return cursor.fetchone() is not None

    @staticmethod
    def _lock_flight(cursor, flight_id: int):
        cursor.execute("""
            SELECT id, flight_code, airline_id, aircraft_id, gate_id, origin, destination,
                   departure_time, arrival_time, status, booked_seats, capacity,
                   created_at, updated_at
            FROM flights
            WHERE id = %s
            FOR UPDATE
        """, (flight_id,))
        return row_to_flight(cursor.fetchone())

    @staticmethod
    def _lock_ticket(cursor, ticket_id: int) -> Ticket:
        """Lock a ticket, taking its flight's lock first like every ticket command"""
        cursor.execute("SELECT flight_id FROM tickets WHERE id = %s", (ticket_id,))
        row = cursor.fetchone()
        if not row:
            raise NotFoundError('ticket', ticket_id, "Ticket not found")
        BookingService._lock_flight(cursor, row['flight_id'])

        cursor.execute(f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE id = %s FOR UPDATE",
                       (ticket_id,))
        ticket = row_to_ticket(cursor.fetchone())
        if not ticket:
            raise NotFoundError('ticket', ticket_id, "Ticket not found")
        return ticket

    @staticmethod
    def _seat_taken(cursor, flight_id: int, seat_number: str, exclude_ticket_id: Optional[int] = None) -> bool:
        cursor.execute("""
            SELECT id FROM tickets
            WHERE flight_id = %s AND seat_number = %s AND id <> %s
        """, (flight_id, seat_number, exclude_ticket_id or 0))
        return cursor.fetchone() is not None

    @staticmethod
    def _create_ticket_transaction(conn, request: CreateTicketRequest) -> Ticket:
        """Internal method to perform the actual ticket transaction"""
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            flight = BookingService._lock_flight(cursor, request.flight_id)
            if not flight:
                raise NotFoundError('flight', request.flight_id,
                                    "Invalid flight ID - flight not found")

            cursor.execute("""
                SELECT id, name, passport_number, identity_number, phone, email, address,
                       nationality, created_at, updated_at
                FROM passengers
                WHERE id = %s
            """, (request.passenger_id,))
            passenger = row_to_passenger(cursor.fetchone())
            if not passenger:
                raise NotFoundError('passenger', request.passenger_id,
                                    "Invalid passenger ID - passenger not found")

            if BookingService._seat_taken(cursor, request.flight_id, request.seat_number):
                raise SeatTakenError(request.flight_id, request.seat_number)

            cursor.execute("""
                SELECT id, airline_id, model, capacity, registration_number, status,
                       created_at, updated_at
                FROM aircraft WHERE id = %s
            """, (flight.aircraft_id,))
            aircraft = row_to_aircraft(cursor.fetchone())
            capacity = effective_capacity(aircraft, get_db_manager().settings.default_flight_capacity)

            # booked_seats is a cache; capacity is checked against the real count
            cursor.execute("SELECT COUNT(*) AS count FROM tickets WHERE flight_id = %s",
                           (request.flight_id,))
            if cursor.fetchone()['count'] >= capacity:
                raise FlightFullError(request.flight_id, capacity)

            cursor.execute(f"""
                INSERT INTO tickets (flight_id, passenger_id, seat_number, ticket_class, price, status)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING {_TICKET_COLUMNS}
            """, (request.flight_id, request.passenger_id, request.seat_number,
                  request.ticket_class.value, request.price, TicketStatus.BOOKED.value))
            ticket = row_to_ticket(cursor.fetchone())

            BookingService._adjust_booked_seats(cursor, request.flight_id, +1)
            flight.booked_seats += 1

            ticket.flight = flight
            ticket.passenger = passenger
            return ticket

    @staticmethod
    def create_ticket(request) -> Ticket:
        """
        Book a seat on a flight for a passenger

        Args:
            request: CreateTicketRequest or mapping with flight_id, passenger_id,
                seat_number, ticket_class and price

        Returns:
            Created ticket with flight (updated counter) and passenger attached

        Raises:
            NotFoundError: flight or passenger does not exist
            SeatTakenError: seat already ticketed on this flight
            FlightFullError: flight reached its effective capacity
        """
        request = parse_request(CreateTicketRequest, request)
        ticket = run_command(
            'CreateTicket',
            BookingService._create_ticket_transaction,
            request,
            on_integrity_error=_seat_conflict(request.flight_id, request.seat_number),
            isolation_level=ISOLATION_LEVEL_READ_COMMITTED,
        )
        logger.info("Booked seat %s on flight %s for passenger %s (ticket %s)",
                    ticket.seat_number, ticket.flight_id, ticket.passenger_id, ticket.id)
        return ticket

    @staticmethod
    def _update_ticket_transaction(conn, ticket_id: int, changes: dict) -> Ticket:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            ticket = BookingService._lock_ticket(cursor, ticket_id)

            seat_number = changes.get('seat_number')
            if seat_number and seat_number != ticket.seat_number:
                if BookingService._seat_taken(cursor, ticket.flight_id, seat_number, ticket.id):
                    raise SeatTakenError(ticket.flight_id, seat_number)

            set_clauses = [f"{field} = %s" for field in changes]
            params = [getattr(value, 'value', value) for value in changes.values()]
            set_clauses.append("updated_at = NOW()")
            params.append(ticket_id)

            cursor.execute(f"""
                UPDATE tickets
                SET {', '.join(set_clauses)}
                WHERE id = %s
                RETURNING {_TICKET_COLUMNS}
            """, params)
            return row_to_ticket(cursor.fetchone())

    @staticmethod
    def update_ticket(ticket_id: int, **kwargs) -> Ticket:
        """
        Update a ticket's seat, class, price or status

        The flight and passenger of a ticket cannot be changed; cancel it and
        book again instead.

        Raises:
            NotFoundError: ticket does not exist
            SeatTakenError: the new seat is ticketed on the same flight
            ValidationFailure: unknown field or malformed value
        """
        request = parse_request(UpdateTicketRequest, kwargs)
        changes = request.model_dump(exclude_unset=True)
        current = BookingService.get_ticket(ticket_id)
        if not current:
            raise NotFoundError('ticket', ticket_id, "Ticket not found")
        if not changes:
            return current

        ticket = run_command(
            'UpdateTicket',
            BookingService._update_ticket_transaction,
            ticket_id, changes,
            on_integrity_error=_seat_conflict(current.flight_id, changes.get('seat_number')),
            isolation_level=ISOLATION_LEVEL_READ_COMMITTED,
        )
        logger.info("Updated ticket %s (%s)", ticket_id, ', '.join(changes))
        return ticket

    @staticmethod
    def _delete_ticket_transaction(conn, ticket_id: int) -> dict:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            ticket = BookingService._lock_ticket(cursor, ticket_id)

            cursor.execute("DELETE FROM tickets WHERE id = %s", (ticket_id,))
            BookingService._adjust_booked_seats(cursor, ticket.flight_id, -1)

            return {
                'ticket_id': ticket.id,
                'flight_id': ticket.flight_id,
                'seat_number': ticket.seat_number,
            }

    @staticmethod
    def delete_ticket(ticket_id: int) -> dict:
        """
        Delete a ticket and release its seat

        Returns:
            Dict echoing the ticket id, flight id and seat number

        Raises:
            NotFoundError: ticket does not exist
        """
        deleted = run_command(
            'DeleteTicket',
            BookingService._delete_ticket_transaction,
            ticket_id,
            isolation_level=ISOLATION_LEVEL_READ_COMMITTED,
        )
        logger.info("Deleted ticket %s (flight %s, seat %s)",
                    deleted['ticket_id'], deleted['flight_id'], deleted['seat_number'])
        return deleted

    @staticmethod
    def get_ticket(ticket_id: int) -> Optional[Ticket]:
        """Get ticket by ID with flight and passenger attached"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute(f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE id = %s", (ticket_id,))
            ticket = row_to_ticket(cursor.fetchone())
            if not ticket:
                return None

            cursor.execute("SELECT * FROM flights WHERE id = %s", (ticket.flight_id,))
            ticket.flight = row_to_flight(cursor.fetchone())

            cursor.execute("SELECT * FROM passengers WHERE id = %s", (ticket.passenger_id,))
            ticket.passenger = row_to_passenger(cursor.fetchone())
            return ticket

    @staticmethod
    def list_tickets(flight_id: Optional[int] = None,
                     passenger_id: Optional[int] = None) -> List[Ticket]:
        """
        List tickets, optionally filtered

        Args:
            flight_id: Only tickets on this flight
            passenger_id: Only tickets held by this passenger

        Returns:
            List of tickets ordered by flight and seat
        """
        db_manager = get_db_manager()

        conditions = []
        params = []
        if flight_id is not None:
            conditions.append("flight_id = %s")
            params.append(flight_id)
        if passenger_id is not None:
            conditions.append("passenger_id = %s")
            params.append(passenger_id)
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        with db_manager.get_cursor() as cursor:
            cursor.execute(f"""
                SELECT {_TICKET_COLUMNS} FROM tickets
                {where_clause}
                ORDER BY flight_id, seat_number
            """, params)
            return [row_to_ticket(row) for row in cursor.fetchall()]

    @staticmethod
    def get_tickets_by_passenger(passenger_id: int) -> List[Ticket]:
        """All tickets held by a passenger, each with its flight attached"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute("""
                SELECT t.id, t.flight_id, t.passenger_id, t.seat_number, t.ticket_class,
                       t.price, t.status, t.created_at, t.updated_at,
                       f.id as f_id, f.flight_code, f.airline_id, f.aircraft_id, f.gate_id,
                       f.origin, f.destination, f.departure_time, f.arrival_time,
                       f.status as f_status, f.booked_seats, f.capacity
                FROM tickets t
                LEFT JOIN flights f ON t.flight_id = f.id
                WHERE t.passenger_id = %s
                ORDER BY f.departure_time
            """, (passenger_id,))

            tickets = []
            for row in cursor.fetchall():
                ticket = row_to_ticket(row)
                if row.get('f_id'):
                    ticket.flight = row_to_flight({
                        'id': row['f_id'],
                        'flight_code': row['flight_code'],
                        'airline_id': row['airline_id'],
                        'aircraft_id': row['aircraft_id'],
                        'gate_id': row['gate_id'],
                        'origin': row['origin'],
                        'destination': row['destination'],
                        'departure_time': row['departure_time'],
                        'arrival_time': row['arrival_time'],
                        'status': row['f_status'],
                        'booked_seats': row['booked_seats'],
                        'capacity': row['capacity'],
                    })
                tickets.append(ticket)
            return tickets
