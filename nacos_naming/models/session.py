"""Registry session state."""

from dataclasses import dataclass


@dataclass(frozen=True)
class AuthToken:
    """What a transport returns from a successful login."""

    access_token: str
    ttl_seconds: float | None  # None: token never expires (auth disabled)


@dataclass(frozen=True)
class Session:
    """An authenticated view of one registry namespace.

    expires_at is on the client's clock (monotonic by default).
    """

    endpoint: str
    username: str
    namespace_id: str
    token: str
    expires_at: float | None

    def expires_within(self, now: float, grace: float) -> bool:
        """True when the token is expired or will expire within `grace` seconds."""
        if self.expires_at is None:
            return False
        return self.expires_at - now <= grace
