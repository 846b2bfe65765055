"""
Pydantic schemas for command inputs
Each command validates its request here, before a transaction is opened.
String limits mirror the column sizes in database/schema.sql.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator

from database import AircraftStatus, FlightStatus, TicketClass, TicketStatus, UserRole
from .errors import ValidationFailure

SchemaT = TypeVar('SchemaT', bound=BaseModel)

EMAIL_MAX_LENGTH = 120
# bcrypt only hashes the first 72 bytes and rejects longer input
PASSWORD_MAX_BYTES = 72


def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _require_text(value, field_name: str):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"{field_name} is required")
    return value.strip() if isinstance(value, str) else value


def _prepare_email(value):
    value = _require_text(value, 'email')
    if isinstance(value, str) and len(value) > EMAIL_MAX_LENGTH:
        raise ValueError(f"email must be at most {EMAIL_MAX_LENGTH} characters")
    return value


def _check_password(value: str) -> str:
    if not value:
        raise ValueError("password is required")
    if len(value.encode('utf-8')) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes")
    return value


def _normalise_seat(value):
    value = _require_text(value, 'seat_number')
    return value.upper() if isinstance(value, str) else value


def _naive_utc(value: datetime) -> datetime:
    """Store timestamps as naive UTC, matching the TIMESTAMP columns"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class RegisterUserRequest(BaseModel):
    username: str = Field(max_length=60)
    email: EmailStr
    password: str
    name: Optional[str] = Field(default=None, max_length=120)
    identity_number: Optional[str] = Field(default=None, max_length=40)
    phone: Optional[str] = Field(default=None, max_length=30)
    nationality: Optional[str] = Field(default=None, max_length=60)
    role: UserRole = UserRole.PASSENGER

    @field_validator('username', mode='before')
    @classmethod
    def username_present(cls, v):
        return _require_text(v, 'username')

    @field_validator('email', mode='before')
    @classmethod
    def email_present(cls, v):
        return _prepare_email(v)

    @field_validator('password')
    @classmethod
    def password_valid(cls, v):
        return _check_password(v)

    @field_validator('name', 'identity_number', 'phone', 'nationality', mode='before')
    @classmethod
    def optional_text(cls, v):
        return _blank_to_none(v)

    @field_validator('role', mode='before')
    @classmethod
    def coerce_role(cls, v):
        # Only an explicit "admin" grants the admin role
        if isinstance(v, UserRole):
            return v
        return UserRole.ADMIN if v == UserRole.ADMIN.value else UserRole.PASSENGER


class LoginRequest(BaseModel):
    username: str = Field(max_length=60)
    password: str

    @field_validator('password')
    @classmethod
    def password_valid(cls, v):
        return _check_password(v)


class CreateTicketRequest(BaseModel):
    flight_id: int
    passenger_id: int
    seat_number: str = Field(max_length=6)
    ticket_class: TicketClass = TicketClass.ECONOMY
    # NUMERIC(10, 2)
    price: float = Field(default=0.0, ge=0, lt=100_000_000)

    @field_validator('seat_number', mode='before')
    @classmethod
    def normalise_seat(cls, v):
        return _normalise_seat(v)


class UpdateTicketRequest(BaseModel):
    """Fields of a ticket that may change after booking"""
    model_config = ConfigDict(extra='forbid')

    seat_number: Optional[str] = Field(default=None, max_length=6)
    ticket_class: Optional[TicketClass] = None
    price: Optional[float] = Field(default=None, ge=0, lt=100_000_000)
    status: Optional[TicketStatus] = None

    @field_validator('seat_number', mode='before')
    @classmethod
    def normalise_seat(cls, v):
        return _normalise_seat(v)

    @field_validator('ticket_class', 'price', 'status', mode='before')
    @classmethod
    def not_null(cls, v, info):
        return _require_text(v, info.field_name)


class CreateFlightRequest(BaseModel):
    airline_id: int
    aircraft_id: int
    gate_id: int
    origin: str = Field(max_length=100)
    destination: str = Field(max_length=100)
    departure_time: datetime
    arrival_time: datetime
    status: FlightStatus = FlightStatus.ON_TIME
    flight_code: Optional[str] = Field(default=None, max_length=12)

    @field_validator('origin', 'destination', mode='before')
    @classmethod
    def airport_present(cls, v, info):
        return _require_text(v, info.field_name)

    @field_validator('flight_code', mode='before')
    @classmethod
    def optional_code(cls, v):
        return _blank_to_none(v)

    @field_validator('departure_time', 'arrival_time')
    @classmethod
    def as_naive_utc(cls, v):
        return _naive_utc(v)


class UpdateFlightRequest(BaseModel):
    """Fields of a flight that may change after scheduling"""
    model_config = ConfigDict(extra='forbid')

    gate_id: Optional[int] = None
    origin: Optional[str] = Field(default=None, max_length=100)
    destination: Optional[str] = Field(default=None, max_length=100)
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    status: Optional[FlightStatus] = None
    flight_code: Optional[str] = Field(default=None, max_length=12)

    @field_validator('gate_id', 'origin', 'destination', 'departure_time', 'arrival_time', 'status',
                     mode='before')
    @classmethod
    def not_null(cls, v, info):
        return _require_text(v, info.field_name)

    @field_validator('flight_code', mode='before')
    @classmethod
    def optional_code(cls, v):
        return _blank_to_none(v)

    @field_validator('departure_time', 'arrival_time')
    @classmethod
    def as_naive_utc(cls, v):
        return _naive_utc(v)


class PassengerRecord(BaseModel):
    """One row of a bulk passenger batch"""
    name: str = Field(max_length=120)
    email: EmailStr
    identity_number: str = Field(max_length=40)
    phone: Optional[str] = Field(default=None, max_length=30)
    passport_number: Optional[str] = Field(default=None, max_length=30)
    address: Optional[str] = Field(default=None, max_length=255)
    nationality: Optional[str] = Field(default=None, max_length=60)

    @field_validator('name', 'identity_number', mode='before')
    @classmethod
    def required_text(cls, v, info):
        return _require_text(v, info.field_name)

    @field_validator('email', mode='before')
    @classmethod
    def email_present(cls, v):
        return _prepare_email(v)

    @field_validator('phone', 'passport_number', 'address', 'nationality', mode='before')
    @classmethod
    def optional_text(cls, v):
        return _blank_to_none(v)


class AircraftRecord(BaseModel):
    """One aircraft, alone or as a row of a bulk batch"""
    airline_id: int
    registration_number: str = Field(max_length=20)
    model: str = Field(max_length=80)
    capacity: int = Field(gt=0, le=10_000)
    status: AircraftStatus = AircraftStatus.ACTIVE

    @field_validator('registration_number', 'model', mode='before')
    @classmethod
    def required_text(cls, v, info):
        return _require_text(v, info.field_name)


class UpdateAircraftRequest(BaseModel):
    """Fields of an aircraft that may change; the owning airline is fixed"""
    model_config = ConfigDict(extra='forbid')

    registration_number: Optional[str] = Field(default=None, max_length=20)
    model: Optional[str] = Field(default=None, max_length=80)
    capacity: Optional[int] = Field(default=None, gt=0, le=10_000)
    status: Optional[AircraftStatus] = None

    @field_validator('registration_number', 'model', 'capacity', 'status', mode='before')
    @classmethod
    def not_null(cls, v, info):
        return _require_text(v, info.field_name)


def _format_errors(exc: ValidationError, prefix: str = '') -> List[str]:
    messages = []
    for error in exc.errors():
        location = '.'.join(str(part) for part in error.get('loc', ())) or 'request'
        message = error.get('msg', 'invalid value')
        if message.startswith('Value error, '):
            message = message[len('Value error, '):]
        messages.append(f"{prefix}{location}: {message}")
    return messages


def parse_request(schema: Type[SchemaT], payload: Any) -> SchemaT:
    """
    Validate a single command payload

    Accepts an instance of the schema (returned unchanged) or a mapping.

    Raises:
        ValidationFailure: With one message per problem
    """
    if isinstance(payload, schema):
        return payload
    if not isinstance(payload, dict):
        raise ValidationFailure([f"Request body must be an object for {schema.__name__}"])
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailure(_format_errors(exc)) from exc


def parse_batch(schema: Type[SchemaT], payloads: List[Dict[str, Any]], label: str):
    """
    Validate every record of a batch without stopping at the first problem

    Returns:
        Tuple of (parsed records in order, list of error messages). Records
        that failed validation are returned as None so indexes line up.
    """
    records: List[Optional[SchemaT]] = []
    errors: List[str] = []
    for index, payload in enumerate(payloads, start=1):
        if isinstance(payload, schema):
            records.append(payload)
            continue
        if not isinstance(payload, dict):
            errors.append(f"{label} {index}: record must be an object")
            records.append(None)
            continue
        try:
            records.append(schema.model_validate(payload))
        except ValidationError as exc:
            errors.extend(_format_errors(exc, prefix=f"{label} {index}: "))
            records.append(None)
    return records, errors
