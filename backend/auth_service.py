"""
Authentication and registration service
Registers a user together with its passenger profile as one atomic unit
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import bcrypt
from psycopg2.extras import RealDictCursor

from database import (
    User, Passenger, UserRole, DEFAULT_NATIONALITY,
    row_to_user, row_to_passenger, get_db_manager
)
from .errors import DuplicateIdentityError, InvalidCredentialsError, NotFoundError, ValidationFailure
from .schemas import PASSWORD_MAX_BYTES, LoginRequest, RegisterUserRequest, parse_request
from .unit_of_work import constraint_name, run_command

logger = logging.getLogger(__name__)

_USER_COLUMNS = "id, username, email, password_hash, role, passenger_id, created_at, updated_at"
_PASSENGER_COLUMNS = """id, name, passport_number, identity_number, phone, email, address,
    nationality, created_at, updated_at"""

# Unique constraints on users mapped to the field they protect
_USER_CONSTRAINT_FIELDS = {
    'uq_users_username': 'username',
    'uq_users_email': 'email',
}


@dataclass
class RegistrationResult:
    """Outcome of a successful registration"""
    user: User
    passenger_id: int


@dataclass
class UserProfile:
    """User together with its linked passenger, if any"""
    user: User
    passenger: Optional[Passenger] = None


class AuthService:
    """Service for user registration and authentication"""

    @staticmethod
    def hash_password(password: str) -> str:
        """
        Hash a password using bcrypt

        Args:
            password: Plain text password

        Returns:
            Hashed password

        Raises:
            ValidationFailure: password longer than bcrypt accepts
        """
        if len(password.encode('utf-8')) > PASSWORD_MAX_BYTES:
            raise ValidationFailure([f"password: password must be at most {PASSWORD_MAX_BYTES} bytes"])
        salt = bcrypt.gensalt()
        return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        """
        Verify a password against its hash

        Args:
            password: Plain text password
            password_hash: Hashed password

        Returns:
            True if password matches, False otherwise
        """
        if not password_hash or len(password.encode('utf-8')) > PASSWORD_MAX_BYTES:
            return False
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))

    @staticmethod
    def _insert_passenger(cursor, name: str, email: str, identity_number: Optional[str] = None,
                          phone: Optional[str] = None, nationality: Optional[str] = None) -> Passenger:
        cursor.execute(f"""
            INSERT INTO passengers (name, email, identity_number, phone, nationality)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {_PASSENGER_COLUMNS}
        """, (name, email, identity_number, phone, nationality or DEFAULT_NATIONALITY))
        return row_to_passenger(cursor.fetchone())

    @staticmethod
    def _check_passenger_identity(cursor, email: str, identity_number: Optional[str],
                                  phone: Optional[str]):
        """Raise DuplicateIdentityError if a passenger already owns one of these values"""
        cursor.execute("SELECT id FROM passengers WHERE email = %s LIMIT 1", (email,))
        if cursor.fetchone():
            raise DuplicateIdentityError('email', email, "A passenger with this email already exists")

        if identity_number:
            cursor.execute("SELECT id FROM passengers WHERE identity_number = %s LIMIT 1",
                           (identity_number,))
            if cursor.fetchone():
                raise DuplicateIdentityError(
                    'identity_number', identity_number,
                    "The ID number is already in use. Please use a different one."
                )

        if phone:
            cursor.execute("SELECT id FROM passengers WHERE phone = %s LIMIT 1", (phone,))
            if cursor.fetchone():
                raise DuplicateIdentityError(
                    'phone', phone,
                    "The phone number is already in use. Please use a different one."
                )

    @staticmethod
    def _user_integrity_error(exc):
        field = _USER_CONSTRAINT_FIELDS.get(constraint_name(exc))
        if field is None:
            return None
        return DuplicateIdentityError(field, None, f"The {field} value already exists. Please use a different value.")

    @staticmethod
    def _register_transaction(conn, request: RegisterUserRequest, password_hash: str) -> RegistrationResult:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute("""
                SELECT username, email FROM users
                WHERE username = %s OR email = %s
                LIMIT 1
            """, (request.username, request.email))
            existing = cursor.fetchone()
            if existing:
                field = 'username' if existing['username'] == request.username else 'email'
                value = request.username if field == 'username' else request.email
                raise DuplicateIdentityError(
                    field, value, "User with this email or username already exists"
                )

            AuthService._check_passenger_identity(
                cursor, request.email, request.identity_number, request.phone
            )

            passenger = AuthService._insert_passenger(
                cursor,
                name=request.name or request.username,
                email=request.email,
                identity_number=request.identity_number,
                phone=request.phone,
                nationality=request.nationality,
            )

            cursor.execute(f"""
                INSERT INTO users (username, email, password_hash, role, passenger_id)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {_USER_COLUMNS}
            """, (request.username, request.email, password_hash,
                  request.role.value, passenger.id))
            user = row_to_user(cursor.fetchone())

            return RegistrationResult(user=user.without_password(), passenger_id=passenger.id)

    @staticmethod
    def register_user_with_passenger(request) -> RegistrationResult:
        """
        Register a user and its passenger profile atomically

        Args:
            request: RegisterUserRequest or a mapping with the same fields

        Returns:
            RegistrationResult with the user (no password hash) and passenger ID

        Raises:
            DuplicateIdentityError: username, email, identity number or phone in use
            ValidationFailure: malformed request
        """
        request = parse_request(RegisterUserRequest, request)
        result = run_command(
            'RegisterUserWithPassenger',
            AuthService._register_transaction,
            request,
            AuthService.hash_password(request.password),
            on_integrity_error=AuthService._user_integrity_error,
        )
        logger.info("Registered user %s (id=%s) with passenger %s",
                    result.user.username, result.user.id, result.passenger_id)
        return result

    @staticmethod
    def _load_passenger(cursor, passenger_id: Optional[int]) -> Optional[Passenger]:
        if not passenger_id:
            return None
        cursor.execute(f"SELECT {_PASSENGER_COLUMNS} FROM passengers WHERE id = %s", (passenger_id,))
        return row_to_passenger(cursor.fetchone())

    @staticmethod
    def login(username: str, password: str) -> UserProfile:
        """
        Authenticate a user by username and password

        Returns:
            UserProfile with the linked passenger when the reference resolves

        Raises:
            InvalidCredentialsError: unknown user or wrong password
        """
        try:
            request = parse_request(LoginRequest, {'username': username, 'password': password})
        except ValidationFailure as exc:
            raise InvalidCredentialsError() from exc
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE username = %s", (request.username,))
            user = row_to_user(cursor.fetchone())

            if not user or not AuthService.verify_password(request.password, user.password_hash):
                logger.warning("Login rejected for %s", request.username)
                raise InvalidCredentialsError()

            passenger = AuthService._load_passenger(cursor, user.passenger_id)
            return UserProfile(user=user.without_password(), passenger=passenger)

    @staticmethod
    def get_user_profile(user_id: int) -> UserProfile:
        """Get a user and its linked passenger"""
        db_manager = get_db_manager()

        with db_manager.get_cursor() as cursor:
            cursor.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
            user = row_to_user(cursor.fetchone())
            if not user:
                raise NotFoundError('user', user_id)

            passenger = AuthService._load_passenger(cursor, user.passenger_id)
            return UserProfile(user=user.without_password(), passenger=passenger)

    @staticmethod
    def _create_passenger_for_user_transaction(conn, user_id: int, name: Optional[str],
                                               identity_number: Optional[str], phone: Optional[str],
                                               nationality: Optional[str]) -> UserProfile:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s FOR UPDATE", (user_id,))
            user = row_to_user(cursor.fetchone())
            if not user:
                raise NotFoundError('user', user_id)

            if user.passenger_id:
                raise DuplicateIdentityError(
                    'passenger_id', user.passenger_id, "User already has a passenger ID"
                )

            AuthService._check_passenger_identity(cursor, user.email, identity_number, phone)

            passenger = AuthService._insert_passenger(
                cursor,
                name=name or user.username,
                email=user.email,
                identity_number=identity_number,
                phone=phone,
                nationality=nationality,
            )

            cursor.execute(f"""
                UPDATE users SET passenger_id = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING {_USER_COLUMNS}
            """, (passenger.id, user.id))
            user = row_to_user(cursor.fetchone())

            return UserProfile(user=user.without_password(), passenger=passenger)

    @staticmethod
    def create_passenger_for_user(user_id: int, name: Optional[str] = None,
                                  identity_number: Optional[str] = None, phone: Optional[str] = None,
                                  nationality: Optional[str] = None) -> UserProfile:
        """
        Create and link a passenger profile for an existing user

        Raises:
            NotFoundError: user does not exist
            DuplicateIdentityError: user already has a passenger, or a passenger
                already owns the user's email, the identity number or the phone
        """
        profile = run_command(
            'CreatePassengerForUser',
            AuthService._create_passenger_for_user_transaction,
            user_id, name or None, identity_number or None, phone or None, nationality or None,
        )
        logger.info("Linked passenger %s to user %s", profile.passenger.id, user_id)
        return profile

    @staticmethod
    def _migrate_users_transaction(conn) -> List[Tuple[str, int]]:
        results = []
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(f"""
                SELECT {_USER_COLUMNS} FROM users
                WHERE passenger_id IS NULL
                ORDER BY id
                FOR UPDATE
            """)
            users = [row_to_user(row) for row in cursor.fetchall()]

            for user in users:
                # Adopt a passenger that already carries this email if no user owns it
                cursor.execute("""
                    SELECT p.id, EXISTS (SELECT 1 FROM users u WHERE u.passenger_id = p.id) AS linked
                    FROM passengers p
                    WHERE p.email = %s
                    ORDER BY p.id
                    LIMIT 1
                """, (user.email,))
                existing = cursor.fetchone()
                if existing and existing['linked']:
                    raise DuplicateIdentityError(
                        'email', user.email,
                        f"Passenger with email {user.email} already belongs to another user"
                    )
                if existing:
                    passenger_id = existing['id']
                else:
                    passenger_id = AuthService._insert_passenger(
                        cursor, name=user.username, email=user.email
                    ).id

                cursor.execute("""
                    UPDATE users SET passenger_id = %s, updated_at = NOW()
                    WHERE id = %s
                """, (passenger_id, user.id))
                results.append((user.username, passenger_id))
        return results

    @staticmethod
    def migrate_users() -> List[Tuple[str, int]]:
        """
        Give every user without a passenger profile one

        A passenger already holding the user's email is linked instead of
        creating a second one, as long as no other user owns it.

        Returns:
            List of (username, passenger_id) pairs that were linked

        Raises:
            DuplicateIdentityError: the user's email belongs to another user's passenger
        """
        results = run_command('MigrateUsers', AuthService._migrate_users_transaction)
        logger.info("Migrated %d users to have passenger IDs", len(results))
        return results

    @staticmethod
    def is_admin(user_id: int) -> bool:
        """Check if user is an admin"""
        try:
            profile = AuthService.get_user_profile(user_id)
        except NotFoundError:
            return False
        return profile.user.role == UserRole.ADMIN
