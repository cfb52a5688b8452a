"""Application Settings and Configuration.

This module provides application-wide settings that are read from
CR_* environment variables, with application-specific defaults.
"""

import os

# Application metadata
APP_NAME = "Case Reference Service"
APP_VERSION = "1.0.0"

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

# Upper bound on concurrent master-data lookups per request
DEFAULT_RESOLVER_MAX_WORKERS = 8

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    """Application settings loaded from the environment.

    Database connection settings live in DatabaseConfig, see config_manager.
    """

    def __init__(self):
        """Initialize settings from the environment."""
        self.app_name = os.getenv("CR_APP_NAME", APP_NAME)
        self.log_level = os.getenv("CR_LOG_LEVEL", "INFO")
        self.json_logs = _env_bool("CR_JSON_LOGS", "false")

        # Listing
        self.default_page_size = int(os.getenv("CR_DEFAULT_PAGE_SIZE", str(DEFAULT_PAGE_SIZE)))
        self.max_page_size = int(os.getenv("CR_MAX_PAGE_SIZE", str(MAX_PAGE_SIZE)))

        # Reference resolution
        self.resolver_max_workers = int(
            os.getenv("CR_RESOLVER_MAX_WORKERS", str(DEFAULT_RESOLVER_MAX_WORKERS))
        )
        # Seconds; 0 disables the master-data cache
        self.master_data_cache_ttl = float(os.getenv("CR_MASTER_DATA_CACHE_TTL", "0"))

        self.cors_origins = [
            origin.strip()
            for origin in os.getenv("CR_CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
            if origin.strip()
        ]

