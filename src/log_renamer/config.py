import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

NAMING_STRATEGIES = ("source-hash", "timestamp")
ALLOWED_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
_TRUTHY = ("true", "1", "yes", "on")


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    service_name: str
    environment: str
    log_level: str
    metrics_namespace: str

    # --- Naming ---
    destination_prefix: str
    destination_suffix: str
    naming_strategy: str

    # --- Routing ---
    target_bucket: str | None
    source_prefix: str | None
    dead_letter_queue_url: str | None

    # --- Execution ---
    verify_copy: bool
    max_concurrency: int
    timeout_guard_threshold_seconds: int

    # --- Derived Properties ---
    @property
    def timeout_guard_threshold_ms(self) -> int:
        return self.timeout_guard_threshold_seconds * 1000

    def destination_bucket_for(self, source_bucket: str) -> str:
        """The bucket renamed objects are written to; defaults to the triggering one."""
        return self.target_bucket or source_bucket

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            service_name = os.getenv("SERVICE_NAME", "log-renamer")
            environment = os.getenv("ENVIRONMENT", "dev")
            metrics_namespace = os.getenv("METRICS_NAMESPACE", "LogRenamer")

            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            if log_level not in ALLOWED_LOG_LEVELS:
                raise ValueError(
                    f"LOG_LEVEL must be one of {ALLOWED_LOG_LEVELS}, not '{log_level}'"
                )

            destination_prefix = os.getenv("DESTINATION_PREFIX", "renamed-logs/").strip()
            if not destination_prefix:
                raise ValueError("DESTINATION_PREFIX must not be empty.")
            destination_prefix = destination_prefix.lstrip("/")
            if not destination_prefix.endswith("/"):
                destination_prefix += "/"

            destination_suffix = os.getenv("DESTINATION_SUFFIX", ".gz").strip()
            if "/" in destination_suffix:
                raise ValueError("DESTINATION_SUFFIX must not contain '/'.")

            naming_strategy = os.getenv("NAMING_STRATEGY", "source-hash").lower()
            if naming_strategy not in NAMING_STRATEGIES:
                raise ValueError(
                    f"NAMING_STRATEGY must be one of {list(NAMING_STRATEGIES)}, "
                    f"not '{naming_strategy}'"
                )

            # Empty strings mean "not set" for the optional routing variables.
            target_bucket = os.getenv("TARGET_BUCKET_NAME") or None
            source_prefix = os.getenv("SOURCE_PREFIX") or None
            dead_letter_queue_url = os.getenv("DEAD_LETTER_QUEUE_URL") or None

            verify_copy = os.getenv("VERIFY_COPY", "true").lower() in _TRUTHY

            max_concurrency = int(os.getenv("MAX_CONCURRENCY", "1"))
            if not 1 <= max_concurrency <= 32:
                raise ValueError("MAX_CONCURRENCY must be between 1 and 32.")

            timeout_guard_threshold_seconds = int(
                os.getenv("TIMEOUT_GUARD_THRESHOLD_SECONDS", "5")
            )
            if timeout_guard_threshold_seconds < 0:
                raise ValueError(
                    "TIMEOUT_GUARD_THRESHOLD_SECONDS must be a non-negative integer."
                )

        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            service_name=service_name,
            environment=environment,
            log_level=log_level,
            metrics_namespace=metrics_namespace,
            destination_prefix=destination_prefix,
            destination_suffix=destination_suffix,
            naming_strategy=naming_strategy,
            target_bucket=target_bucket,
            source_prefix=source_prefix,
            dead_letter_queue_url=dead_letter_queue_url,
            verify_copy=verify_copy,
            max_concurrency=max_concurrency,
            timeout_guard_threshold_seconds=timeout_guard_threshold_seconds,
        )


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call. This avoids import-time side effects.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()
