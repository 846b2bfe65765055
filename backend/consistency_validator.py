"""
Database consistency validator
Read-only audit for drift between tickets, flights, passengers and users
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

import psycopg2

from database import DatabaseManager, get_db_manager
from .errors import ValidatorError

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Aggregate verdict of a full validation"""
    HEALTHY = "HEALTHY"
    ISSUES_FOUND = "ISSUES_FOUND"
    ERROR = "ERROR"


_HTTP_STATUS = {
    HealthStatus.HEALTHY: 200,
    HealthStatus.ISSUES_FOUND: 207,
    HealthStatus.ERROR: 500,
}


@dataclass
class CheckResult:
    """Findings of a single check"""
    name: str
    count: int = 0
    items: List[dict] = field(default_factory=list)

    @property
    def has_issues(self) -> bool:
        return self.count > 0

    def to_dict(self) -> dict:
        return {'name': self.name, 'count': self.count, 'items': self.items}


@dataclass
class HealthReport:
    """Result of run_full_validation"""
    status: HealthStatus
    timestamp: str
    summary: List[str]
    details: Dict[str, CheckResult] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.status]

    def to_dict(self) -> dict:
        report = {
            'status': self.status.value,
            'timestamp': self.timestamp,
            'summary': self.summary,
            'details': {name: check.to_dict() for name, check in self.details.items()},
        }
        if self.error is not None:
            report['error'] = self.error
        return report


# Summary line per check, in report order
_SUMMARY_TEMPLATES = (
    ('orphaned_passengers', "{} orphaned passenger(s)"),
    ('incomplete_users', "{} incomplete user(s)"),
    ('flight_booking_counts', "{} flight booking inconsistencies"),
    ('duplicate_seats', "{} duplicate seat assignments"),
    ('broken_references', "{} broken reference(s)"),
)


class ConsistencyValidator:
    """
    Stateless auditor over the entity store

    Every check runs on its own READ COMMITTED cursor, so a full validation is
    a best-effort snapshot rather than one isolated transaction. Nothing is
    ever written.
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self._db_manager = db_manager

    @contextmanager
    def _cursor(self, description: str):
        """Read cursor that turns store failures into ValidatorError"""
        try:
            db_manager = self._db_manager or get_db_manager()
            with db_manager.get_cursor() as cursor:
                yield cursor
        except (psycopg2.Error, RuntimeError) as exc:
            raise ValidatorError(f"Failed to check {description}: {exc}",
                                 check=description) from exc

    def check_orphaned_passengers(self) -> CheckResult:
        """Passengers that no user references"""
        with self._cursor('orphaned passengers') as cursor:
            cursor.execute("""
                SELECT p.id, p.email, p.name
                FROM passengers p
                LEFT JOIN users u ON u.passenger_id = p.id
                WHERE u.id IS NULL
                ORDER BY p.id
            """)
            items = [dict(row) for row in cursor.fetchall()]
        return CheckResult(name='orphaned_passengers', count=len(items), items=items)

    def check_users_without_passengers(self) -> CheckResult:
        """Users whose passenger reference is missing"""
        with self._cursor('users without passengers') as cursor:
            cursor.execute("""
                SELECT id, username, email
                FROM users
                WHERE passenger_id IS NULL
                ORDER BY id
            """)
            items = [dict(row) for row in cursor.fetchall()]
        return CheckResult(name='incomplete_users', count=len(items), items=items)

    def validate_flight_booking_counts(self) -> CheckResult:
        """Flights whose booked_seats differs from their ticket count"""
        with self._cursor('flight booking counts') as cursor:
            cursor.execute("""
                SELECT f.id AS flight_id, f.flight_code,
                       COUNT(t.id) AS actual_tickets,
                       f.booked_seats AS recorded_booked_seats
                FROM flights f
                LEFT JOIN tickets t ON t.flight_id = f.id
                GROUP BY f.id, f.flight_code, f.booked_seats
                HAVING COUNT(t.id) <> f.booked_seats
                ORDER BY f.id
            """)
            items = []
            for row in cursor.fetchall():
                item = dict(row)
                item['difference'] = item['actual_tickets'] - item['recorded_booked_seats']
                items.append(item)
        return CheckResult(name='flight_booking_counts', count=len(items), items=items)

    def check_duplicate_seats(self) -> CheckResult:
        """(flight, seat) pairs claimed by more than one ticket"""
        with self._cursor('duplicate seats') as cursor:
            cursor.execute("""
                SELECT flight_id, seat_number,
                       COUNT(*) AS ticket_count,
                       ARRAY_AGG(id ORDER BY id) AS ticket_ids
                FROM tickets
                GROUP BY flight_id, seat_number
                HAVING COUNT(*) > 1
                ORDER BY flight_id, seat_number
            """)
            items = [dict(row) for row in cursor.fetchall()]
        return CheckResult(name='duplicate_seats', count=len(items), items=items)

    def check_broken_references(self) -> CheckResult:
        """
        Tickets pointing at a flight or passenger that does not exist

        Findings are grouped by type; ``count`` is the number of non-empty
        groups, each group carrying its own ticket count and IDs.
        """
        with self._cursor('broken references') as cursor:
            cursor.execute("""
                SELECT t.id
                FROM tickets t
                LEFT JOIN flights f ON f.id = t.flight_id
                WHERE f.id IS NULL
                ORDER BY t.id
            """)
            invalid_flights = [row['id'] for row in cursor.fetchall()]

            cursor.execute("""
                SELECT t.id
                FROM tickets t
                LEFT JOIN passengers p ON p.id = t.passenger_id
                WHERE p.id IS NULL
                ORDER BY t.id
            """)
            invalid_passengers = [row['id'] for row in cursor.fetchall()]

        items = []
        if invalid_flights:
            items.append({
                'type': 'invalid_flight_references',
                'count': len(invalid_flights),
                'tickets': invalid_flights,
            })
        if invalid_passengers:
            items.append({
                'type': 'invalid_passenger_references',
                'count': len(invalid_passengers),
                'tickets': invalid_passengers,
            })
        return CheckResult(name='broken_references', count=len(items), items=items)

    def run_full_validation(self) -> HealthReport:
        """
        Run every check and aggregate a verdict

        Returns:
            HealthReport with status HEALTHY, ISSUES_FOUND or ERROR. Data
            findings never raise; a check that could not run yields ERROR.
        """
        logger.info("Running full database validation")
        timestamp = datetime.now(timezone.utc).isoformat()

        try:
            checks = [
                self.check_orphaned_passengers(),
                self.check_users_without_passengers(),
                self.validate_flight_booking_counts(),
                self.check_duplicate_seats(),
                self.check_broken_references(),
            ]
        except ValidatorError as exc:
            logger.error("Validation error: %s", exc)
            return HealthReport(
                status=HealthStatus.ERROR,
                timestamp=timestamp,
                summary=['Validation failed due to error'],
                error=str(exc),
            )

        details = {check.name: check for check in checks}
        has_issues = any(check.has_issues for check in checks)
        status = HealthStatus.ISSUES_FOUND if has_issues else HealthStatus.HEALTHY

        report = HealthReport(
            status=status,
            timestamp=timestamp,
            summary=self.generate_summary(details),
            details=details,
        )
        logger.info("Validation finished: %s (%s)", status.value, "; ".join(report.summary))
        return report

    @staticmethod
    def generate_summary(checks: Dict[str, CheckResult]) -> List[str]:
        """One human-readable line per check with findings"""
        summary = []
        for name, template in _SUMMARY_TEMPLATES:
            check = checks.get(name)
            if check is not None and check.has_issues:
                summary.append(template.format(check.count))
        return summary or ['Database is consistent']

    def health(self) -> HealthReport:
        """
        Full validation for callers that want failures raised

        Raises:
            ValidatorError: the audit could not complete
        """
        report = self.run_full_validation()
        if report.status is HealthStatus.ERROR:
            raise ValidatorError(report.error or "Validation failed due to error")
        return report
