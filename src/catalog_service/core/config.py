import os
from dotenv import load_dotenv

from .exceptions import ConfigurationError

load_dotenv()

CACHE_BACKENDS = ("redis", "memory")
INVALIDATION_MODES = ("pattern", "index")


def _bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _positive_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


class Settings:
    """Service configuration, read from the environment when instantiated."""

    def __init__(self):
        self.service_name: str = os.getenv('SERVICE_NAME', 'catalog-service')

        # Database configuration
        self.database_url: str = os.getenv('DATABASE_URL', 'sqlite+aiosqlite:///./catalog.db')
        self.db_create_schema: bool = _bool(os.getenv('DB_CREATE_SCHEMA', 'true'))
        self.db_echo: bool = _bool(os.getenv('DB_ECHO', 'false'))

        # Cache configuration
        self.cache_backend: str = os.getenv('CACHE_BACKEND', 'redis').lower()
        self.redis_url: str = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
        self.cache_prefix: str = os.getenv('CACHE_PREFIX', 'catalog')
        self.cache_version: str = os.getenv('CACHE_VERSION', 'v1')
        self.cache_timeout_ms: int = _positive_int('CACHE_TIMEOUT_MS', '50')
        self.cache_ttl_product: int = _positive_int('CACHE_TTL_PRODUCT', '86400')
        self.cache_ttl_list: int = _positive_int('CACHE_TTL_LIST', '1200')
        self.cache_ttl_count: int = _positive_int('CACHE_TTL_COUNT', '300')
        self.cache_ttl_response: int = _positive_int('CACHE_TTL_RESPONSE', '60')
        self.cache_invalidation: str = os.getenv('CACHE_INVALIDATION', 'pattern').lower()
        self.cache_single_flight: bool = _bool(os.getenv('CACHE_SINGLE_FLIGHT', 'false'))

        # Consistency monitor
        self.consistency_sample_size: int = _positive_int('CONSISTENCY_SAMPLE_SIZE', '10')
        self.consistency_check_interval: int = _positive_int('CONSISTENCY_CHECK_INTERVAL', '3600')
        self.consistency_repair: bool = _bool(os.getenv('CONSISTENCY_REPAIR', 'true'))

        # Celery
        self.celery_broker_url: str = os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/1')
        self.celery_result_backend: str = os.getenv('CELERY_RESULT_BACKEND', 'redis://localhost:6379/2')

        # Logging configuration
        self.log_level: str = os.getenv('LOG_LEVEL', 'INFO').upper()
        self.log_format: str = os.getenv('LOG_FORMAT', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        self.log_file: str = os.getenv('LOG_FILE', 'logs/catalog_service.log')

        self._validate()

    def _validate(self) -> None:
        if self.cache_backend not in CACHE_BACKENDS:
            raise ConfigurationError(
                f"CACHE_BACKEND must be one of {CACHE_BACKENDS}, got {self.cache_backend!r}"
            )
        if self.cache_invalidation not in INVALIDATION_MODES:
            raise ConfigurationError(
                f"CACHE_INVALIDATION must be one of {INVALIDATION_MODES}, got {self.cache_invalidation!r}"
            )

    @property
    def cache_timeout(self) -> float:
        """Per-call cache timeout in seconds"""
        return self.cache_timeout_ms / 1000.0
