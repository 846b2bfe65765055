"""
Flight management service
Creates flights with aircraft and gate scheduling conflict checks
"""
import logging
from datetime import datetime
from typing import List, Optional

from psycopg2.extras import RealDictCursor

from database import (
    Flight, Aircraft, FlightStatus, row_to_flight, row_to_aircraft, get_db_manager
)
from .errors import (
    AircraftConflictError, GateConflictError, HasDependentsError,
    InvalidScheduleError, NotFoundError, ValidationFailure
)
from .schemas import CreateFlightRequest, UpdateFlightRequest, parse_request
from .unit_of_work import run_command

logger = logging.getLogger(__name__)

_FLIGHT_COLUMNS = """id, flight_code, airline_id, aircraft_id, gate_id, origin, destination,
    departure_time, arrival_time, status, booked_seats, capacity, created_at, updated_at"""

# Aircraft columns with a_ prefix for joined queries
_AIRCRAFT_COLS = """a.id as a_id, a.airline_id as a_airline_id, a.model, a.capacity as a_capacity,
    a.registration_number, a.status as a_status"""

# Flight with aircraft query template
_FLIGHT_WITH_AIRCRAFT_QUERY = f"""
    SELECT f.*, {_AIRCRAFT_COLS}
    FROM flights f
    LEFT JOIN aircraft a ON f.aircraft_id = a.id
"""

# Inclusive overlap: [d1, a1] and [d2, a2] overlap iff d1 <= a2 AND d2 <= a1
_OVERLAP_CONDITION = "departure_time <= %s AND arrival_time >= %s"


def intervals_overlap(departure_a: datetime, arrival_a: datetime,
                      departure_b: datetime, arrival_b: datetime) -> bool:
    """True if the two closed time windows share at least one instant"""
    return departure_a <= arrival_b and departure_b <= arrival_a


def _build_aircraft_from_row(row) -> Optional[Aircraft]:
    """Build an Aircraft object from a joined row with a_ prefixed columns."""
    if not row.get('a_id'):
        return None
    return row_to_aircraft({
        'id': row['a_id'],
        'airline_id': row['a_airline_id'],
        'model': row['model'],
        'capacity': row['a_capacity'],
        'registration_number': row['registration_number'],
        'status': row['a_status'],
    })


def _build_flight_with_aircraft(row) -> Optional[Flight]:
    """Build a Flight object with aircraft relation from a joined row."""
    if not row:
        return None
    flight = row_to_flight(row)
    flight.aircraft = _build_aircraft_from_row(row)
    return flight


class FlightService:
    """Service for flight management operations"""

    @staticmethod
    def _find_conflict(cursor, column: str, value: int, departure: datetime,
                       arrival: datetime, exclude_flight_id: Optional[int] = None) -> Optional[int]:
        """ID of a flight on the same aircraft/gate whose window overlaps, if any"""
        cursor.execute(f"""
            SELECT id FROM flights
            WHERE {column} = %s AND {_OVERLAP_CONDITION} AND id <> %s
            ORDER BY departure_time
            LIMIT 1
        """, (value, arrival, departure, exclude_flight_id or 0))
        row = cursor.fetchone()
        return row['id'] if row else None

    @staticmethod
    def _check_schedule(cursor, aircraft_id: int, gate_id: int, departure: datetime,
                        arrival: datetime, exclude_flight_id: Optional[int] = None):
        """Raise the first schedule problem: ordering, aircraft overlap, gate overlap"""
        if arrival <= departure:
            raise InvalidScheduleError(
                "Arrival time must be after departure time",
                departure_time=departure.isoformat(),
                arrival_time=arrival.isoformat(),
            )

        conflict_id = FlightService._find_conflict(
            cursor, 'aircraft_id', aircraft_id, departure, arrival, exclude_flight_id
        )
        if conflict_id:
            raise AircraftConflictError(
                "Aircraft is already scheduled for another flight during this time period",
                aircraft_id=aircraft_id,
                conflicting_flight_id=conflict_id,
            )

        conflict_id = FlightService._find_conflict(
            cursor, 'gate_id', gate_id, departure, arrival, exclude_flight_id
        )
        if conflict_id:
            raise GateConflictError(
                "Gate is already occupied during this time period",
                gate_id=gate_id,
                conflicting_flight_id=conflict_id,
            )

    @staticmethod
    def _create_flight_transaction(conn, request: CreateFlightRequest) -> Flight:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute("SELECT id FROM airlines WHERE id = %s", (request.airline_id,))
            if not cursor.fetchone():
                raise NotFoundError('airline', request.airline_id,
                                    "Invalid airline ID - airline not found")

            cursor.execute("""
                SELECT id, airline_id, model, capacity, registration_number, status,
                       created_at, updated_at
                FROM aircraft WHERE id = %s
            """, (request.aircraft_id,))
            aircraft = row_to_aircraft(cursor.fetchone())
            if not aircraft:
                raise NotFoundError('aircraft', request.aircraft_id,
                                    "Invalid aircraft ID - aircraft not found")

            cursor.execute("SELECT id FROM gates WHERE id = %s", (request.gate_id,))
            if not cursor.fetchone():
                raise NotFoundError('gate', request.gate_id, "Invalid gate ID - gate not found")

            FlightService._check_schedule(
                cursor, request.aircraft_id, request.gate_id,
                request.departure_time, request.arrival_time
            )

            cursor.execute(f"""
                INSERT INTO flights (flight_code, airline_id, aircraft_id, gate_id, origin,
                                     destination, departure_time, arrival_time, status,
                                     booked_seats, capacity)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, 0, %s)
                RETURNING {_FLIGHT_COLUMNS}
            """, (request.flight_code, request.airline_id, request.aircraft_id, request.gate_id,
                  request.origin, request.destination, request.departure_time,
                  request.arrival_time, request.status.value, aircraft.capacity))

            flight = row_to_flight(cursor.fetchone())
            flight.aircraft = aircraft
            return flight

    @staticmethod
    def create_flight(request) -> Flight:
        """
        Create a flight after checking references and schedule conflicts

        Args:
            request: CreateFlightRequest or mapping with the same fields

        Returns:
            Created flight with booked_seats = 0

        Raises:
            NotFoundError: airline, aircraft or gate missing
            InvalidScheduleError: arrival not after departure
            AircraftConflictError: aircraft busy in an overlapping window
            GateConflictError: gate busy in an overlapping window
        """
        request = parse_request(CreateFlightRequest, request)
        flight = run_command('CreateFlight', FlightService._create_flight_transaction, request)
        logger.info("Created flight %s (%s -> %s) on aircraft %s at gate %s",
                    flight.id, flight.origin, flight.destination, flight.aircraft_id, flight.gate_id)
        return flight

    @staticmethod
    def get_flight(flight_id: int) -> Optional[Flight]:
        """Get flight by ID"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute(f"{_FLIGHT_WITH_AIRCRAFT_QUERY} WHERE f.id = %s", (flight_id,))
            row = cursor.fetchone()
            return _build_flight_with_aircraft(row)

    @staticmethod
    def list_flights(limit: int = 100, offset: int = 0,
                     aircraft_id: Optional[int] = None) -> List[Flight]:
        """
        List flights with pagination

        Args:
            limit: Maximum number of flights to return
            offset: Number of flights to skip
            aircraft_id: Only flights flown by this aircraft (optional)

        Returns:
            List of flights ordered by departure
        """
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            if aircraft_id is None:
                cursor.execute(f"""
                    {_FLIGHT_WITH_AIRCRAFT_QUERY}
                    ORDER BY f.departure_time
                    LIMIT %s OFFSET %s
                """, (limit, offset))
            else:
                cursor.execute(f"""
                    {_FLIGHT_WITH_AIRCRAFT_QUERY}
                    WHERE f.aircraft_id = %s
                    ORDER BY f.departure_time
                    LIMIT %s OFFSET %s
                """, (aircraft_id, limit, offset))

            rows = cursor.fetchall()
            return [_build_flight_with_aircraft(row) for row in rows]

    @staticmethod
    def update_flight_status(flight_id: int, status: FlightStatus) -> Flight:
        """Set a flight's status (On Time / Delayed / Cancelled)"""
        try:
            status = FlightStatus(status)
        except ValueError as exc:
            raise ValidationFailure([f"status: unknown flight status {status!r}"]) from exc
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute(f"""
                UPDATE flights
                SET status = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING {_FLIGHT_COLUMNS}
            """, (status.value, flight_id))
            flight = row_to_flight(cursor.fetchone())
            if not flight:
                raise NotFoundError('flight', flight_id)
            return flight

    @staticmethod
    def _update_flight_transaction(conn, flight_id: int, changes: dict) -> Flight:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(f"SELECT {_FLIGHT_COLUMNS} FROM flights WHERE id = %s FOR UPDATE",
                           (flight_id,))
            flight = row_to_flight(cursor.fetchone())
            if not flight:
                raise NotFoundError('flight', flight_id)

            gate_id = changes.get('gate_id', flight.gate_id)
            if 'gate_id' in changes:
                cursor.execute("SELECT id FROM gates WHERE id = %s", (gate_id,))
                if not cursor.fetchone():
                    raise NotFoundError('gate', gate_id, "Invalid gate ID - gate not found")

            if {'gate_id', 'departure_time', 'arrival_time'} & changes.keys():
                FlightService._check_schedule(
                    cursor, flight.aircraft_id, gate_id,
                    changes.get('departure_time', flight.departure_time),
                    changes.get('arrival_time', flight.arrival_time),
                    exclude_flight_id=flight_id,
                )

            set_clauses = [f"{field} = %s" for field in changes]
            params = [getattr(value, 'value', value) for value in changes.values()]
            set_clauses.append("updated_at = NOW()")
            params.append(flight_id)

            cursor.execute(f"""
                UPDATE flights
                SET {', '.join(set_clauses)}
                WHERE id = %s
                RETURNING {_FLIGHT_COLUMNS}
            """, params)
            return row_to_flight(cursor.fetchone())

    @staticmethod
    def update_flight(flight_id: int, **kwargs) -> Flight:
        """
        Reschedule or edit a flight

        The same schedule rules as creation apply when the window or the gate
        changes; the flight itself is ignored when looking for overlaps. The
        aircraft and airline of a flight are fixed.

        Raises:
            NotFoundError: flight or new gate does not exist
            InvalidScheduleError: arrival not after departure
            AircraftConflictError: aircraft busy in the new window
            GateConflictError: gate busy in the new window
            ValidationFailure: unknown field or malformed value
        """
        request = parse_request(UpdateFlightRequest, kwargs)
        changes = request.model_dump(exclude_unset=True)
        if not changes:
            flight = FlightService.get_flight(flight_id)
            if not flight:
                raise NotFoundError('flight', flight_id)
            return flight

        flight = run_command('UpdateFlight', FlightService._update_flight_transaction, flight_id, changes)
        logger.info("Updated flight %s (%s)", flight_id, ', '.join(changes))
        return flight

    @staticmethod
    def delete_flight(flight_id: int):
        """
        Delete a flight (only if no tickets exist)

        Raises:
            NotFoundError: flight does not exist
            HasDependentsError: tickets still reference the flight
        """
        db_manager = get_db_manager()

        with db_manager.transaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute("SELECT id FROM flights WHERE id = %s FOR UPDATE", (flight_id,))
                if not cursor.fetchone():
                    raise NotFoundError('flight', flight_id)

                cursor.execute("SELECT COUNT(*) AS count FROM tickets WHERE flight_id = %s", (flight_id,))
                ticket_count = cursor.fetchone()['count']

                if ticket_count > 0:
                    raise HasDependentsError(
                        f"Cannot delete flight - {ticket_count} ticket(s) exist for this flight",
                        tickets=ticket_count,
                    )

                cursor.execute("DELETE FROM flights WHERE id = %s", (flight_id,))
        logger.info("Deleted flight %s", flight_id)
