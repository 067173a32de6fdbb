"""Exception taxonomy for the naming client."""


class NamingError(Exception):
    """Base class for every error raised by nacos_naming."""


class ConfigError(NamingError, ValueError):
    """Client configuration is invalid. Raised at construction, never retried."""


class AuthError(NamingError):
    """Registry rejected the credentials or the session token."""


class RegistryRequestError(NamingError):
    """A single transport call failed in a way that is worth retrying.

    Transports raise this for network failures and unexpected HTTP statuses.
    It does not escape the retry layer: once the retry budget is spent it is
    wrapped in UnreachableError.
    """


class UnreachableError(NamingError):
    """Registry could not be reached within the retry budget."""


class NoInstanceError(NamingError):
    """Service is unknown or empty, or its cached data is past the staleness ceiling."""


class NoHealthyInstanceError(NamingError):
    """Service has instances but none is healthy with a positive weight, and fallback is disabled."""


class SelectionTimeoutError(NamingError, TimeoutError):
    """First fetch for a never-seen service did not complete in time."""


class ClosedError(NamingError):
    """Operation attempted on (or interrupted by) a closed client."""
