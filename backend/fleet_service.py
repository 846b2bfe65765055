"""
Fleet and airport infrastructure service
CRUD for airlines, terminals and gates; transactional aircraft commands
"""
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from psycopg2.extras import RealDictCursor, execute_values

from database import (
    Airline, Aircraft, Terminal, Gate, GateStatus,
    row_to_airline, row_to_aircraft, row_to_terminal, row_to_gate, get_db_manager
)
from .errors import DuplicateKeyError, HasDependentsError, NotFoundError, ValidationFailure
from .schemas import AircraftRecord, UpdateAircraftRequest, parse_batch, parse_request
from .unit_of_work import constraint_name, run_command, translate_data_errors

logger = logging.getLogger(__name__)

_AIRCRAFT_COLUMNS = """id, airline_id, model, capacity, registration_number, status,
    created_at, updated_at"""


@dataclass
class BulkResult:
    """Records inserted by a bulk command"""
    records: list
    count: int
    elapsed_ms: float


def _registration_integrity_error(exc):
    if constraint_name(exc) == 'uq_aircraft_registration':
        return DuplicateKeyError(
            "Duplicate registration number - aircraft already exists",
            constraint='uq_aircraft_registration',
        )
    return None


def _check_batch_size(records, label: str):
    if not isinstance(records, list):
        raise ValidationFailure([f"Request body must be an array of {label}"])
    if not records:
        raise ValidationFailure([f"Cannot create empty {label} list"])

    limit = get_db_manager().settings.bulk_max_batch_size
    if len(records) > limit:
        raise ValidationFailure([
            f"Batch of {len(records)} {label} exceeds the limit of {limit} records"
        ])


class FleetService:
    """Service for airlines, aircraft, terminals and gates"""

    # Airlines

    @staticmethod
    def create_airline(name: str, code: str, country: Optional[str] = None,
                       fleet_size: int = 0, founded_year: Optional[int] = None) -> Airline:
        """Create a new airline"""
        errors = [f"{field} is required" for field, value in (('name', name), ('code', code)) if not value]
        if errors:
            raise ValidationFailure(errors)
        db_manager = get_db_manager()

        with translate_data_errors('CreateAirline'), db_manager.get_cursor() as cursor:
            cursor.execute("SELECT id FROM airlines WHERE code = %s", (code,))
            if cursor.fetchone():
                raise DuplicateKeyError(f"Airline with code {code} already exists", field='code')

            cursor.execute("""
                INSERT INTO airlines (name, code, country, fleet_size, founded_year)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id, name, code, country, fleet_size, founded_year, created_at, updated_at
            """, (name, code, country, fleet_size, founded_year))
            return row_to_airline(cursor.fetchone())

    @staticmethod
    def get_airline(airline_id: int) -> Optional[Airline]:
        """Get airline by ID"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute("""
                SELECT id, name, code, country, fleet_size, founded_year, created_at, updated_at
                FROM airlines
                WHERE id = %s
            """, (airline_id,))
            return row_to_airline(cursor.fetchone())

    @staticmethod
    def list_airlines() -> List[Airline]:
        """List all airlines"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute("""
                SELECT id, name, code, country, fleet_size, founded_year, created_at, updated_at
                FROM airlines
                ORDER BY name
            """)
            return [row_to_airline(row) for row in cursor.fetchall()]

    @staticmethod
    def delete_airline(airline_id: int):
        """Delete an airline that no aircraft or flight references"""
        db_manager = get_db_manager()

        with db_manager.transaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute("SELECT id FROM airlines WHERE id = %s", (airline_id,))
                if not cursor.fetchone():
                    raise NotFoundError('airline', airline_id)

                cursor.execute("""
                    SELECT
                        (SELECT COUNT(*) FROM aircraft WHERE airline_id = %s) AS aircraft,
                        (SELECT COUNT(*) FROM flights WHERE airline_id = %s) AS flights
                """, (airline_id, airline_id))
                counts = cursor.fetchone()
                if counts['aircraft'] or counts['flights']:
                    raise HasDependentsError(
                        "Cannot delete airline - aircraft or flights still reference it",
                        aircraft=counts['aircraft'],
                        flights=counts['flights'],
                    )

                cursor.execute("DELETE FROM airlines WHERE id = %s", (airline_id,))

    # Aircraft

    @staticmethod
    def _airline_exists(cursor, airline_id: int) -> bool:
        cursor.execute("SELECT id FROM airlines WHERE id = %s", (airline_id,))
        return cursor.fetchone() is not None

    @staticmethod
    def _create_aircraft_transaction(conn, record: AircraftRecord) -> Aircraft:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            if not FleetService._airline_exists(cursor, record.airline_id):
                raise NotFoundError('airline', record.airline_id,
                                    "Invalid airline ID - airline not found")

            cursor.execute("SELECT id FROM aircraft WHERE registration_number = %s",
                           (record.registration_number,))
            if cursor.fetchone():
                raise DuplicateKeyError(
                    f"Aircraft with registration number {record.registration_number} already exists",
                    field='registration_number',
                    value=record.registration_number,
                )

            cursor.execute(f"""
                INSERT INTO aircraft (airline_id, model, capacity, registration_number, status)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {_AIRCRAFT_COLUMNS}
            """, (record.airline_id, record.model, record.capacity,
                  record.registration_number, record.status.value))
            return row_to_aircraft(cursor.fetchone())

    @staticmethod
    def create_aircraft(record) -> Aircraft:
        """
        Create an aircraft under an existing airline

        Args:
            record: AircraftRecord or mapping with the same fields

        Raises:
            NotFoundError: airline does not exist
            DuplicateKeyError: registration number already used
        """
        record = parse_request(AircraftRecord, record)
        aircraft = run_command(
            'CreateAircraft',
            FleetService._create_aircraft_transaction,
            record,
            on_integrity_error=_registration_integrity_error,
        )
        logger.info("Created aircraft %s (id=%s)", aircraft.registration_number, aircraft.id)
        return aircraft

    @staticmethod
    def get_aircraft(aircraft_id: int) -> Optional[Aircraft]:
        """Get aircraft by ID"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute(f"SELECT {_AIRCRAFT_COLUMNS} FROM aircraft WHERE id = %s", (aircraft_id,))
            return row_to_aircraft(cursor.fetchone())

    @staticmethod
    def list_aircraft(airline_id: Optional[int] = None) -> List[Aircraft]:
        """List aircraft, optionally for one airline"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            if airline_id is None:
                cursor.execute(f"SELECT {_AIRCRAFT_COLUMNS} FROM aircraft ORDER BY id")
            else:
                cursor.execute(f"""
                    SELECT {_AIRCRAFT_COLUMNS} FROM aircraft
                    WHERE airline_id = %s
                    ORDER BY id
                """, (airline_id,))
            return [row_to_aircraft(row) for row in cursor.fetchall()]

    @staticmethod
    def _update_aircraft_transaction(conn, aircraft_id: int, changes: dict) -> Aircraft:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(f"SELECT {_AIRCRAFT_COLUMNS} FROM aircraft WHERE id = %s FOR UPDATE",
                           (aircraft_id,))
            aircraft = row_to_aircraft(cursor.fetchone())
            if not aircraft:
                raise NotFoundError('aircraft', aircraft_id)

            registration = changes.get('registration_number')
            if registration and registration != aircraft.registration_number:
                cursor.execute("SELECT id FROM aircraft WHERE registration_number = %s AND id <> %s",
                               (registration, aircraft_id))
                if cursor.fetchone():
                    raise DuplicateKeyError(
                        f"Aircraft with registration number {registration} already exists",
                        field='registration_number',
                        value=registration,
                    )

            if 'capacity' in changes:
                # Shrinking below an existing ticket count would leave a flight overbooked
                cursor.execute("""
                    SELECT t.flight_id, COUNT(*) AS tickets
                    FROM tickets t
                    JOIN flights f ON f.id = t.flight_id
                    WHERE f.aircraft_id = %s
                    GROUP BY t.flight_id
                    HAVING COUNT(*) > %s
                    ORDER BY t.flight_id
                    LIMIT 1
                """, (aircraft_id, changes['capacity']))
                overbooked = cursor.fetchone()
                if overbooked:
                    raise ValidationFailure([
                        f"capacity: flight {overbooked['flight_id']} already has "
                        f"{overbooked['tickets']} tickets"
                    ])

            set_clauses = [f"{field} = %s" for field in changes]
            params = [getattr(value, 'value', value) for value in changes.values()]
            set_clauses.append("updated_at = NOW()")
            params.append(aircraft_id)

            cursor.execute(f"""
                UPDATE aircraft
                SET {', '.join(set_clauses)}
                WHERE id = %s
                RETURNING {_AIRCRAFT_COLUMNS}
            """, params)
            aircraft = row_to_aircraft(cursor.fetchone())

            if 'capacity' in changes:
                cursor.execute("""
                    UPDATE flights SET capacity = %s, updated_at = NOW()
                    WHERE aircraft_id = %s
                """, (aircraft.capacity, aircraft_id))
            return aircraft

    @staticmethod
    def update_aircraft(aircraft_id: int, **kwargs) -> Aircraft:
        """
        Update an aircraft's registration, model, capacity or status

        Raises:
            NotFoundError: aircraft does not exist
            DuplicateKeyError: registration number used by another aircraft
            ValidationFailure: unknown field, malformed value, or a capacity
                below the tickets already sold on one of its flights
        """
        request = parse_request(UpdateAircraftRequest, kwargs)
        changes = request.model_dump(exclude_unset=True)
        if not changes:
            aircraft = FleetService.get_aircraft(aircraft_id)
            if not aircraft:
                raise NotFoundError('aircraft', aircraft_id)
            return aircraft

        aircraft = run_command(
            'UpdateAircraft',
            FleetService._update_aircraft_transaction,
            aircraft_id, changes,
            on_integrity_error=_registration_integrity_error,
        )
        logger.info("Updated aircraft %s (%s)", aircraft_id, ', '.join(changes))
        return aircraft

    @staticmethod
    def _delete_aircraft_transaction(conn, aircraft_id: int) -> dict:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(f"SELECT {_AIRCRAFT_COLUMNS} FROM aircraft WHERE id = %s FOR UPDATE",
                           (aircraft_id,))
            aircraft = row_to_aircraft(cursor.fetchone())
            if not aircraft:
                raise NotFoundError('aircraft', aircraft_id)

            cursor.execute("SELECT COUNT(*) AS count FROM flights WHERE aircraft_id = %s", (aircraft_id,))
            flights = cursor.fetchone()['count']
            if flights:
                raise HasDependentsError(
                    f"Cannot delete aircraft - {flights} flight(s) are scheduled on it",
                    flights=flights,
                )

            cursor.execute("DELETE FROM aircraft WHERE id = %s", (aircraft_id,))
            return {
                'aircraft_id': aircraft.id,
                'registration_number': aircraft.registration_number,
            }

    @staticmethod
    def delete_aircraft(aircraft_id: int) -> dict:
        """
        Delete an aircraft that no flight references

        Raises:
            NotFoundError: aircraft does not exist
            HasDependentsError: flights are scheduled on the aircraft
        """
        deleted = run_command('DeleteAircraft', FleetService._delete_aircraft_transaction, aircraft_id)
        logger.info("Deleted aircraft %s (%s)", deleted['aircraft_id'], deleted['registration_number'])
        return deleted

    @staticmethod
    def _bulk_create_aircraft_transaction(conn, records: List[AircraftRecord]) -> List[Aircraft]:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            airline_ids = sorted({r.airline_id for r in records})
            cursor.execute("SELECT id FROM airlines WHERE id = ANY(%s)", (airline_ids,))
            found = {row['id'] for row in cursor.fetchall()}
            missing = [airline_id for airline_id in airline_ids if airline_id not in found]

            registrations = [r.registration_number for r in records]
            cursor.execute("""
                SELECT registration_number FROM aircraft
                WHERE registration_number = ANY(%s)
                ORDER BY registration_number
            """, (registrations,))
            existing = [row['registration_number'] for row in cursor.fetchall()]

            errors = [f"Invalid airline ID: {airline_id}" for airline_id in missing]
            errors += [f"Registration number already exists: {reg}" for reg in existing]
            if errors:
                raise ValidationFailure(errors)

            # Ordered insert; RETURNING preserves the VALUES order
            rows = execute_values(cursor, f"""
                INSERT INTO aircraft (airline_id, model, capacity, registration_number, status)
                VALUES %s
                RETURNING {_AIRCRAFT_COLUMNS}
            """, [(r.airline_id, r.model, r.capacity, r.registration_number, r.status.value)
                  for r in records], fetch=True, page_size=max(len(records), 1))
            return [row_to_aircraft(row) for row in rows]

    @staticmethod
    def bulk_create_aircraft(records: list) -> BulkResult:
        """
        Insert a batch of aircraft as one atomic unit

        Every record is checked first and all problems are reported together;
        nothing is inserted unless every record is valid.

        Raises:
            ValidationFailure: field, in-batch duplicate, unknown airline or
                already-stored registration problems
            DuplicateKeyError: the store rejected a registration number
        """
        _check_batch_size(records, 'aircraft')
        start_time = time.perf_counter()

        parsed, errors = parse_batch(AircraftRecord, records, 'Aircraft')
        seen = {}
        for index, record in enumerate(parsed, start=1):
            if record is None:
                continue
            first = seen.setdefault(record.registration_number, index)
            if first != index:
                errors.append(
                    f"Aircraft {index}: Duplicate registration number in request: "
                    f"{record.registration_number} (same as aircraft {first})"
                )
        if errors:
            logger.warning("BulkCreateAircraft rejected: %d problems", len(errors))
            raise ValidationFailure(errors)

        created = run_command(
            'BulkCreateAircraft',
            FleetService._bulk_create_aircraft_transaction,
            parsed,
            on_integrity_error=_registration_integrity_error,
        )
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info("Created %d aircraft in %.1f ms", len(created), elapsed_ms)
        return BulkResult(records=created, count=len(created), elapsed_ms=elapsed_ms)

    # Terminals and gates

    @staticmethod
    def create_terminal(name: str, location: Optional[str] = None) -> Terminal:
        """Create a terminal"""
        if not name:
            raise ValidationFailure(["name is required"])
        db_manager = get_db_manager()

        with translate_data_errors('CreateTerminal'), db_manager.get_cursor() as cursor:
            cursor.execute("SELECT id FROM terminals WHERE name = %s", (name,))
            if cursor.fetchone():
                raise DuplicateKeyError(f"Terminal {name} already exists", field='name')

            cursor.execute("""
                INSERT INTO terminals (name, location)
                VALUES (%s, %s)
                RETURNING id, name, location, created_at, updated_at
            """, (name, location))
            return row_to_terminal(cursor.fetchone())

    @staticmethod
    def get_terminal(terminal_id: int) -> Optional[Terminal]:
        """Get terminal by ID"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute("""
                SELECT id, name, location, created_at, updated_at
                FROM terminals WHERE id = %s
            """, (terminal_id,))
            return row_to_terminal(cursor.fetchone())

    @staticmethod
    def list_terminals() -> List[Terminal]:
        """List all terminals"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute("""
                SELECT id, name, location, created_at, updated_at
                FROM terminals ORDER BY name
            """)
            return [row_to_terminal(row) for row in cursor.fetchall()]

    @staticmethod
    def delete_terminal(terminal_id: int):
        """Delete a terminal that has no gates"""
        db_manager = get_db_manager()

        with db_manager.transaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute("SELECT id FROM terminals WHERE id = %s", (terminal_id,))
                if not cursor.fetchone():
                    raise NotFoundError('terminal', terminal_id)

                cursor.execute("SELECT COUNT(*) AS count FROM gates WHERE terminal_id = %s", (terminal_id,))
                gates = cursor.fetchone()['count']
                if gates:
                    raise HasDependentsError(
                        f"Cannot delete terminal - it still has {gates} gate(s)",
                        gates=gates,
                    )

                cursor.execute("DELETE FROM terminals WHERE id = %s", (terminal_id,))

    @staticmethod
    def create_gate(terminal_id: int, gate_number: str, status: GateStatus = GateStatus.OPEN,
                    area_capacity: Optional[int] = None) -> Gate:
        """Create a gate inside an existing terminal"""
        if not gate_number:
            raise ValidationFailure(["gate_number is required"])
        db_manager = get_db_manager()

        with translate_data_errors('CreateGate'), db_manager.transaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute("SELECT id FROM terminals WHERE id = %s", (terminal_id,))
                if not cursor.fetchone():
                    raise NotFoundError('terminal', terminal_id)

                cursor.execute("""
                    SELECT id FROM gates WHERE terminal_id = %s AND gate_number = %s
                """, (terminal_id, gate_number))
                if cursor.fetchone():
                    raise DuplicateKeyError(
                        f"Gate {gate_number} already exists in terminal {terminal_id}",
                        field='gate_number',
                    )

                cursor.execute("""
                    INSERT INTO gates (terminal_id, gate_number, status, area_capacity)
                    VALUES (%s, %s, %s, %s)
                    RETURNING id, terminal_id, gate_number, status, area_capacity,
                              created_at, updated_at
                """, (terminal_id, gate_number, status.value, area_capacity))
                return row_to_gate(cursor.fetchone())

    @staticmethod
    def get_gate(gate_id: int) -> Optional[Gate]:
        """Get gate by ID"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute("""
                SELECT id, terminal_id, gate_number, status, area_capacity, created_at, updated_at
                FROM gates WHERE id = %s
            """, (gate_id,))
            return row_to_gate(cursor.fetchone())

    @staticmethod
    def list_gates(terminal_id: Optional[int] = None) -> List[Gate]:
        """List gates, optionally for one terminal"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            if terminal_id is None:
                cursor.execute("""
                    SELECT id, terminal_id, gate_number, status, area_capacity, created_at, updated_at
                    FROM gates ORDER BY terminal_id, gate_number
                """)
            else:
                cursor.execute("""
                    SELECT id, terminal_id, gate_number, status, area_capacity, created_at, updated_at
                    FROM gates WHERE terminal_id = %s ORDER BY gate_number
                """, (terminal_id,))
            return [row_to_gate(row) for row in cursor.fetchall()]

    @staticmethod
    def update_gate_status(gate_id: int, status: GateStatus) -> Gate:
        """Open a gate or mark it under repair"""
        try:
            status = GateStatus(status)
        except ValueError as exc:
            raise ValidationFailure([f"status: unknown gate status {status!r}"]) from exc
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute("""
                UPDATE gates SET status = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING id, terminal_id, gate_number, status, area_capacity, created_at, updated_at
            """, (status.value, gate_id))
            gate = row_to_gate(cursor.fetchone())
            if not gate:
                raise NotFoundError('gate', gate_id)
            return gate

    @staticmethod
    def delete_gate(gate_id: int):
        """Delete a gate that no flight references"""
        db_manager = get_db_manager()

        with db_manager.transaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute("SELECT id FROM gates WHERE id = %s", (gate_id,))
                if not cursor.fetchone():
                    raise NotFoundError('gate', gate_id)

                cursor.execute("SELECT COUNT(*) AS count FROM flights WHERE gate_id = %s", (gate_id,))
                flights = cursor.fetchone()['count']
                if flights:
                    raise HasDependentsError(
                        f"Cannot delete gate - {flights} flight(s) are scheduled at it",
                        flights=flights,
                    )

                cursor.execute("DELETE FROM gates WHERE id = %s", (gate_id,))
