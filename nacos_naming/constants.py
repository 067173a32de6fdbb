"""Defaults shared by the client, settings and CLI."""

from typing import Final

DEFAULT_PORT: Final = 8848
DEFAULT_GROUP: Final = "DEFAULT_GROUP"
GROUP_SEPARATOR: Final = "@@"

# Cache / refresh
DEFAULT_CACHE_TTL_SECONDS: Final = 10.0
MAX_REFRESH_INTERVAL_SECONDS: Final = 10.0
DEFAULT_STALENESS_CEILING_SECONDS: Final = 300.0
DEFAULT_FIRST_FETCH_TIMEOUT_SECONDS: Final = 3.0

# Session
DEFAULT_AUTH_GRACE_SECONDS: Final = 30.0
DEFAULT_REQUEST_TIMEOUT_SECONDS: Final = 5.0

# Backoff: 200ms base, 5s cap, 5 attempts
DEFAULT_RETRY_BASE_SECONDS: Final = 0.2
DEFAULT_RETRY_CAP_SECONDS: Final = 5.0
DEFAULT_MAX_RETRIES: Final = 5

# Load driver
DEFAULT_ITERATIONS: Final = 1000
DEFAULT_CONCURRENCY: Final = 1
ERROR_PREVIEW_MAX_LENGTH: Final = 200
