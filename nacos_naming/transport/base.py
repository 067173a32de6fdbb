"""Transport capability consumed by the client core."""

from typing import Protocol

from nacos_naming.models.instance import Instance
from nacos_naming.models.session import AuthToken, Session


class NamingTransport(Protocol):
    """Protocol-agnostic access to a naming registry.

    Implementations raise AuthError for rejected credentials or tokens and
    RegistryRequestError for failures worth retrying. A service the registry
    does not know is reported as an empty list.
    """

    async def authenticate(self, username: str, password: str) -> AuthToken: ...

    async def fetch_instances(self, session: Session, service_name: str, group_name: str) -> list[Instance]: ...

    async def close(self) -> None: ...
