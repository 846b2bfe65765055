"""
Database connection and transaction management using raw PostgreSQL
Implements SERIALIZABLE isolation level for the transactional commands
"""
import logging
import time
from contextlib import contextmanager
from pathlib import Path

import psycopg2
from psycopg2 import pool, extras, sql
from psycopg2.extensions import (
    ISOLATION_LEVEL_SERIALIZABLE, ISOLATION_LEVEL_READ_COMMITTED, TransactionRollbackError
)

from .config import get_settings

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Database manager with transaction support and connection pooling
    """

    def __init__(self, database_url=None, echo=False, settings=None):
        """
        Initialize database manager

        Args:
            database_url: Database connection URL (defaults to settings)
            echo: Whether to log transaction commits and rollbacks
            settings: Optional Settings instance (defaults to environment)
        """
        self.settings = settings or get_settings()
        self.database_url = database_url or self.settings.database_url
        self.echo = echo or self.settings.db_echo

        # Parse database URL
        self.db_config = self._parse_database_url(self.database_url)

        # Create connection pool
        try:
            self.connection_pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self.settings.pool_min,
                maxconn=self.settings.pool_max,
                **self.db_config
            )
        except psycopg2.Error as e:
            raise RuntimeError(f"Failed to create database connection pool: {e}") from e

        logger.debug("Connection pool ready for %s/%s",
                     self.db_config.get('host'), self.db_config.get('database'))

    def _parse_database_url(self, url):
        """Parse database URL into connection parameters"""
        # Handle postgresql:// URL format
        if url.startswith('postgresql://') or url.startswith('postgres://'):
            # Remove protocol
            url = url.replace('postgresql://', '').replace('postgres://', '')

            # Parse user:password@host:port/database
            if '@' in url:
                auth, location = url.split('@', 1)
                if ':' in auth:
                    user, password = auth.split(':', 1)
                else:
                    user, password = auth, None
            else:
                user, password = None, None
                location = url

            if '/' in location:
                host_port, database = location.split('/', 1)
            else:
                host_port, database = location, 'airline_operations'

            if ':' in host_port:
                host, port = host_port.split(':', 1)
                port = int(port)
            else:
                host, port = host_port or 'localhost', 5432

            config = {
                'database': database,
                'host': host,
                'port': port,
            }

            if user:
                config['user'] = user
            if password:
                config['password'] = password

            return config
        else:
            # Default configuration
            return {
                'database': 'airline_operations',
                'host': 'localhost',
                'port': 5432,
            }

    def get_connection(self):
        """Get a connection from the pool"""
        return self.connection_pool.getconn()

    def return_connection(self, conn):
        """Return a connection to the pool"""
        self.connection_pool.putconn(conn)

    def close_all_connections(self):
        """Close all connections in the pool"""
        if self.connection_pool:
            self.connection_pool.closeall()

    def create_tables(self):
        """Create all database tables from schema"""
        schema_file = Path(__file__).parent / 'schema.sql'

        if not schema_file.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_file}")

        with open(schema_file, 'r') as f:
            schema_sql = f.read()

        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.execute(schema_sql)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.return_connection(conn)
        logger.info("Schema applied to %s", self.db_config.get('database'))

    def drop_tables(self):
        """Drop all database tables (use with caution!)"""
        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                # Get all tables
                cursor.execute("""
                    SELECT tablename FROM pg_tables
                    WHERE schemaname = 'public'
                """)
                tables = [row[0] for row in cursor.fetchall()]

                # Drop each table
                for table in tables:
                    cursor.execute(sql.SQL("DROP TABLE IF EXISTS {} CASCADE").format(
                        sql.Identifier(table)
                    ))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.return_connection(conn)

    @contextmanager
    def get_cursor(self, isolation_level=None, cursor_factory=None):
        """
        Get a cursor with automatic connection management

        Args:
            isolation_level: Transaction isolation level
            cursor_factory: Cursor factory (defaults to RealDictCursor)

        Usage:
            with db.get_cursor() as cursor:
                cursor.execute("SELECT * FROM flights")
                results = cursor.fetchall()
        """
        conn = self.get_connection()
        conn.set_isolation_level(isolation_level or ISOLATION_LEVEL_READ_COMMITTED)

        cursor = conn.cursor(cursor_factory=cursor_factory or extras.RealDictCursor)

        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            self.return_connection(conn)

    @contextmanager
    def transaction(self, isolation_level=None):
        """
        Provide a transactional scope with a connection

        The connection is committed when the block exits normally, rolled back
        on any exception, and returned to the pool on every path.

        Usage:
            with db.transaction() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("INSERT INTO passengers ...")
        """
        conn = self.get_connection()
        conn.set_isolation_level(isolation_level or ISOLATION_LEVEL_READ_COMMITTED)

        try:
            yield conn
            conn.commit()
            if self.echo:
                logger.debug("Transaction committed (isolation=%s)", conn.isolation_level)
        except BaseException:
            conn.rollback()
            if self.echo:
                logger.debug("Transaction rolled back (isolation=%s)", conn.isolation_level)
            raise
        finally:
            self.return_connection(conn)

    @contextmanager
    def serializable_transaction(self):
        """
        Provide a SERIALIZABLE transaction scope for the transactional commands
        Two commands that both read a precondition as satisfied cannot both commit
        """
        with self.transaction(isolation_level=ISOLATION_LEVEL_SERIALIZABLE) as conn:
            yield conn

    def run_serializable(self, work, *args, retries=None):
        """
        Run ``work(conn, *args)`` inside a SERIALIZABLE transaction

        Serialization failures and deadlocks are retried with exponential
        backoff. The last TransactionRollbackError is re-raised once the
        attempts are used up; every other exception propagates immediately
        after the rollback.
        """
        return self.run_transaction(work, *args, isolation_level=ISOLATION_LEVEL_SERIALIZABLE,
                                    retries=retries)

    def run_transaction(self, work, *args, isolation_level=ISOLATION_LEVEL_SERIALIZABLE, retries=None):
        """
        Run ``work(conn, *args)`` in one transaction at the given isolation level

        Commands that lock the rows they depend on with SELECT ... FOR UPDATE
        can run at READ COMMITTED; each statement after the lock is granted
        sees the rows committed by the previous holder. Deadlocks are still
        retried like serialization failures.
        """
        max_retries = retries or self.settings.serialization_retries
        retry_delay = self.settings.retry_base_delay

        for attempt in range(max_retries):
            try:
                with self.transaction(isolation_level=isolation_level) as conn:
                    return work(conn, *args)
            except TransactionRollbackError:
                if attempt < max_retries - 1:
                    logger.debug("Serialization failure in %s, retry %d/%d",
                                 getattr(work, '__name__', work), attempt + 1, max_retries - 1)
                    time.sleep(retry_delay * (2 ** attempt))
                    continue
                raise


# Global database manager instance
_db_manager = None


def get_db_manager() -> DatabaseManager:
    """Get or create global database manager instance"""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


def set_db_manager(db_manager: DatabaseManager | None) -> None:
    """Override the global database manager instance.

    This is primarily used in test fixtures so that the service layer operates on
    the test database instead of the default production database.
    Passing ``None`` resets the singleton so the next
    ``get_db_manager`` call recreates it with default settings.
    """
    global _db_manager
    _db_manager = db_manager


def init_db():
    """Initialize database with tables"""
    db_manager = get_db_manager()
    db_manager.create_tables()
