"""
Runtime configuration for the airline operations core
Values come from the environment, with a local .env file merged in first
"""
from dataclasses import dataclass
from functools import lru_cache
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = 'False') -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


@dataclass(frozen=True)
class Settings:
    """Settings shared by the database layer and the command services"""
    database_url: str = 'postgresql://localhost/airline_operations'
    test_database_url: str = 'postgresql://localhost/airline_operations_test'
    db_echo: bool = False
    pool_min: int = 2
    pool_max: int = 40
    serialization_retries: int = 5
    retry_base_delay: float = 0.01
    bulk_max_batch_size: int = 5000
    default_flight_capacity: int = 180
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Settings':
        """Build settings from environment variables"""
        return cls(
            database_url=os.getenv('DATABASE_URL', cls.database_url),
            test_database_url=os.getenv('TEST_DATABASE_URL', cls.test_database_url),
            db_echo=_env_bool('DB_ECHO'),
            pool_min=int(os.getenv('DB_POOL_MIN', cls.pool_min)),
            pool_max=int(os.getenv('DB_POOL_MAX', cls.pool_max)),
            serialization_retries=int(os.getenv('DB_SERIALIZATION_RETRIES', cls.serialization_retries)),
            retry_base_delay=float(os.getenv('DB_RETRY_BASE_DELAY', cls.retry_base_delay)),
            bulk_max_batch_size=int(os.getenv('BULK_MAX_BATCH_SIZE', cls.bulk_max_batch_size)),
            default_flight_capacity=int(os.getenv('DEFAULT_FLIGHT_CAPACITY', cls.default_flight_capacity)),
            log_level=os.getenv('LOG_LEVEL', cls.log_level).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance"""
    return Settings.from_env()
