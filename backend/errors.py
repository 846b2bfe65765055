"""
Error taxonomy for the transactional commands and the consistency validator

Every error is a ValueError so callers written against plain ValueError keep
working; ``kind`` and ``details`` carry the structured part.
"""
from typing import Iterable, List, Optional


class AirlineError(ValueError):
    """Base class for all domain errors"""
    kind = 'Error'

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Render the error for a transport layer"""
        return {
            'error': self.kind,
            'message': self.message,
            'details': self.details,
        }


class NotFoundError(AirlineError):
    """A referenced entity does not exist"""
    kind = 'NotFound'

    def __init__(self, entity: str, entity_id, message: Optional[str] = None):
        super().__init__(
            message or f"{entity.capitalize()} with ID {entity_id} not found",
            entity=entity,
            entity_id=entity_id,
        )
        self.entity = entity
        self.entity_id = entity_id


class DuplicateIdentityError(AirlineError):
    """Username, email, identity number or phone already in use"""
    kind = 'DuplicateIdentity'

    def __init__(self, field: str, value, message: Optional[str] = None):
        super().__init__(
            message or f"The {field} '{value}' is already in use",
            field=field,
            value=value,
        )
        self.field = field


class DuplicateKeyError(AirlineError):
    """The store rejected a unique key"""
    kind = 'DuplicateKey'


class ValidationFailure(AirlineError):
    """One or more fields are missing or malformed"""
    kind = 'ValidationFailure'

    def __init__(self, errors: Iterable[str], message: Optional[str] = None):
        errors = list(errors)
        super().__init__(
            message or "Validation failed:\n" + "\n".join(errors),
            errors=errors,
        )
        self.errors: List[str] = errors


class InvalidScheduleError(AirlineError):
    """Arrival is not strictly after departure"""
    kind = 'InvalidSchedule'


class AircraftConflictError(AirlineError):
    """Aircraft already flies during the requested window"""
    kind = 'AircraftConflict'


class GateConflictError(AirlineError):
    """Gate already occupied during the requested window"""
    kind = 'GateConflict'


class SeatTakenError(AirlineError):
    """Seat already ticketed on this flight"""
    kind = 'SeatTaken'

    def __init__(self, flight_id, seat_number: str):
        super().__init__(
            f"Seat {seat_number} is already taken",
            flight_id=flight_id,
            seat_number=seat_number,
        )


class FlightFullError(AirlineError):
    """No seats left under the flight's effective capacity"""
    kind = 'FlightFull'

    def __init__(self, flight_id, capacity: int):
        super().__init__(
            "Flight is fully booked",
            flight_id=flight_id,
            capacity=capacity,
        )


class HasDependentsError(AirlineError):
    """Delete refused while other records still reference the entity"""
    kind = 'HasDependents'


class InvalidCredentialsError(AirlineError):
    """Unknown username or wrong password"""
    kind = 'InvalidCredentials'

    def __init__(self):
        super().__init__("Invalid credentials")


class ValidatorError(AirlineError):
    """The consistency audit itself could not run"""
    kind = 'ValidatorError'


class ConcurrencyError(AirlineError):
    """Serialization retries exhausted"""
    kind = 'Conflict'
