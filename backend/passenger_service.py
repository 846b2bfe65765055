"""
Passenger management service
Handles passenger profiles, guarded deletion and bulk import
"""
import logging
import time
from typing import List, Optional

from psycopg2.extras import RealDictCursor, execute_values

from database import Passenger, DEFAULT_NATIONALITY, row_to_passenger, get_db_manager
from .errors import HasDependentsError, NotFoundError, ValidationFailure
from .fleet_service import BulkResult, _check_batch_size
from .schemas import PassengerRecord, parse_batch
from .unit_of_work import run_command, translate_data_errors

logger = logging.getLogger(__name__)

_PASSENGER_COLUMNS = """id, name, passport_number, identity_number, phone, email, address,
    nationality, created_at, updated_at"""


class PassengerService:
    """Service for passenger management operations"""

    @staticmethod
    def create_passenger(name: str, email: Optional[str] = None,
                         passport_number: Optional[str] = None,
                         identity_number: Optional[str] = None, phone: Optional[str] = None,
                         address: Optional[str] = None,
                         nationality: Optional[str] = None) -> Passenger:
        """
        Create a standalone passenger profile

        Args:
            name: Passenger name (required)
            email: Email address (optional)
            passport_number: Passport number (optional)
            identity_number: National identity number (optional)
            phone: Phone number (optional)
            address: Address (optional)
            nationality: Nationality, defaults to "Not Specified"

        Returns:
            Created passenger object
        """
        if not name or not name.strip():
            raise ValidationFailure(["name is required"])

        db_manager = get_db_manager()

        with translate_data_errors('CreatePassenger'), db_manager.get_cursor() as cursor:
            cursor.execute(f"""
                INSERT INTO passengers (name, email, passport_number, identity_number, phone,
                                        address, nationality)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {_PASSENGER_COLUMNS}
            """, (name.strip(), email, passport_number, identity_number, phone, address,
                  nationality or DEFAULT_NATIONALITY))
            return row_to_passenger(cursor.fetchone())

    @staticmethod
    def get_passenger(passenger_id: int) -> Optional[Passenger]:
        """Get passenger by ID"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute(f"SELECT {_PASSENGER_COLUMNS} FROM passengers WHERE id = %s",
                           (passenger_id,))
            return row_to_passenger(cursor.fetchone())

    @staticmethod
    def get_passenger_by_email(email: str) -> Optional[Passenger]:
        """Get passenger by email"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute(f"""
                SELECT {_PASSENGER_COLUMNS} FROM passengers
                WHERE email = %s
                ORDER BY id
                LIMIT 1
            """, (email,))
            return row_to_passenger(cursor.fetchone())

    @staticmethod
    def update_passenger(passenger_id: int, **kwargs) -> Passenger:
        """
        Update passenger information

        Args:
            passenger_id: Passenger ID
            **kwargs: Fields to update

        Returns:
            Updated passenger object
        """
        db_manager = get_db_manager()

        with translate_data_errors('UpdatePassenger'), db_manager.transaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute("SELECT id FROM passengers WHERE id = %s", (passenger_id,))
                if not cursor.fetchone():
                    raise NotFoundError('passenger', passenger_id, "Passenger not found")

                # Update allowed fields
                allowed_fields = ['name', 'passport_number', 'identity_number', 'phone',
                                  'email', 'address', 'nationality']

                updates = []
                values = []
                for key, value in kwargs.items():
                    if key in allowed_fields and value is not None:
                        updates.append(f"{key} = %s")
                        values.append(value)

                if updates:
                    values.append(passenger_id)
                    cursor.execute(f"""
                        UPDATE passengers
                        SET {', '.join(updates)}, updated_at = NOW()
                        WHERE id = %s
                        RETURNING {_PASSENGER_COLUMNS}
                    """, values)
                    return row_to_passenger(cursor.fetchone())

                # No updates, just return the existing passenger
                cursor.execute(f"SELECT {_PASSENGER_COLUMNS} FROM passengers WHERE id = %s",
                               (passenger_id,))
                return row_to_passenger(cursor.fetchone())

    @staticmethod
    def _delete_passenger_transaction(conn, passenger_id: int) -> dict:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(f"SELECT {_PASSENGER_COLUMNS} FROM passengers WHERE id = %s FOR UPDATE",
                           (passenger_id,))
            passenger = row_to_passenger(cursor.fetchone())
            if not passenger:
                raise NotFoundError('passenger', passenger_id, "Passenger not found")

            cursor.execute("SELECT COUNT(*) AS count FROM tickets WHERE passenger_id = %s",
                           (passenger_id,))
            ticket_count = cursor.fetchone()['count']
            if ticket_count > 0:
                raise HasDependentsError(
                    f"Cannot delete passenger - {ticket_count} ticket(s) exist for this passenger",
                    passenger_id=passenger_id,
                    tickets=ticket_count,
                )

            cursor.execute("SELECT id FROM users WHERE passenger_id = %s LIMIT 1", (passenger_id,))
            user_row = cursor.fetchone()
            if user_row:
                raise HasDependentsError(
                    "Cannot delete passenger - associated user account exists",
                    passenger_id=passenger_id,
                    user_id=user_row['id'],
                )

            cursor.execute("DELETE FROM passengers WHERE id = %s", (passenger_id,))

            return {
                'passenger_id': passenger.id,
                'name': passenger.name,
                'email': passenger.email,
            }

    @staticmethod
    def delete_passenger(passenger_id: int) -> dict:
        """
        Delete a passenger nobody references any more

        Raises:
            NotFoundError: passenger does not exist
            HasDependentsError: tickets or a user still reference the passenger
        """
        deleted = run_command('DeletePassenger', PassengerService._delete_passenger_transaction,
                              passenger_id)
        logger.info("Deleted passenger %s", passenger_id)
        return deleted

    @staticmethod
    def list_passengers(limit: int = 100, offset: int = 0) -> List[Passenger]:
        """
        List all passengers with pagination

        Args:
            limit: Maximum number of passengers to return
            offset: Number of passengers to skip

        Returns:
            List of passengers
        """
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute(f"""
                SELECT {_PASSENGER_COLUMNS}
                FROM passengers
                ORDER BY id
                LIMIT %s OFFSET %s
            """, (limit, offset))
            return [row_to_passenger(row) for row in cursor.fetchall()]

    @staticmethod
    def count_passengers() -> int:
        """Number of stored passengers"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute("SELECT COUNT(*) AS count FROM passengers")
            return cursor.fetchone()['count']

    @staticmethod
    def _bulk_create_transaction(conn, records: List[PassengerRecord]) -> List[Passenger]:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            emails = [r.email for r in records]
            cursor.execute("""
                SELECT DISTINCT email FROM passengers
                WHERE email = ANY(%s)
                ORDER BY email
            """, (emails,))
            existing = [row['email'] for row in cursor.fetchall()]
            if existing:
                raise ValidationFailure(
                    [f"Email already exists: {email}" for email in existing],
                    f"Duplicate emails found in database: {', '.join(existing)}",
                )

            rows = execute_values(cursor, f"""
                INSERT INTO passengers (name, email, identity_number, phone, passport_number,
                                        address, nationality)
                VALUES %s
                RETURNING {_PASSENGER_COLUMNS}
            """, [(r.name, r.email, r.identity_number, r.phone, r.passport_number, r.address,
                   r.nationality or DEFAULT_NATIONALITY) for r in records],
                fetch=True, page_size=max(len(records), 1))
            return [row_to_passenger(row) for row in rows]

    @staticmethod
    def bulk_create_passengers(records: list) -> BulkResult:
        """
        Insert a batch of passengers as one atomic unit

        Every record needs name, email and identity_number; emails must be
        unique within the batch and unknown to the store. All local problems
        are collected and reported together.

        Raises:
            ValidationFailure: field, in-batch duplicate or stored-email problems
            DuplicateKeyError: the store rejected a key during the insert
        """
        _check_batch_size(records, 'passengers')
        start_time = time.perf_counter()

        parsed, errors = parse_batch(PassengerRecord, records, 'Passenger')
        first_index = {}
        for index, record in enumerate(parsed, start=1):
            if record is None:
                continue
            first = first_index.setdefault(record.email, index)
            if first != index:
                errors.append(f"Passenger {index}: Duplicate email with passenger {first}")
        if errors:
            logger.warning("BulkCreatePassengers rejected: %d problems", len(errors))
            raise ValidationFailure(errors)

        created = run_command('BulkCreatePassengers', PassengerService._bulk_create_transaction, parsed)
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info("Created %d passengers in %.1f ms", len(created), elapsed_ms)
        return BulkResult(records=created, count=len(created), elapsed_ms=elapsed_ms)
