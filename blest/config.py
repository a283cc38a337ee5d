"""Router and client configuration using pydantic-settings."""

from pydantic import NonNegativeInt, PositiveInt
from pydantic_settings import BaseSettings


class RouterSettings(BaseSettings):
    """Configuration for a ``Router``.

    All settings can be configured via environment variables with the
    BLEST_ prefix. For example:
    - BLEST_TIMEOUT=2000
    - BLEST_INTROSPECTION=true
    - BLEST_ENVIRONMENT=production
    - BLEST_MAX_WORKERS=64

    Attributes:
        timeout: Default per-route timeout in milliseconds, applied to
            every route registered on (or merged into) the router.
        introspection: Default ``visible`` flag of registered routes.
        environment: Deployment environment. Stack traces are attached
            to error payloads unless this is ``"production"``.
        max_workers: Worker threads available to sync handlers. A pool
            holding a handler abandoned by a timeout is replaced, so
            abandoned handlers never hold these threads.

    Example:
        >>> settings = RouterSettings(timeout=1000)
        >>> router = Router(settings=settings)
    """

    timeout: PositiveInt = 5000
    introspection: bool = False
    environment: str = "development"
    max_workers: PositiveInt = 32

    model_config = {"env_prefix": "BLEST_"}

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


class ClientSettings(BaseSettings):
    """Configuration for a batching ``Client``.

    Settings can be configured via environment variables with the
    BLEST_CLIENT_ prefix, e.g. BLEST_CLIENT_ENDPOINT=https://api.example.com.

    Attributes:
        endpoint: URL the HTTP transport posts batches to.
        max_batch_size: Maximum number of calls per outbound batch.
        buffer_delay: Debounce window in milliseconds.
        headers: Extra HTTP headers sent with every outbound batch.
        request_timeout: HTTP timeout in seconds for one outbound batch.
    """

    endpoint: str = "http://localhost:8080"
    max_batch_size: PositiveInt = 25
    buffer_delay: NonNegativeInt = 10
    headers: dict[str, str] = {}
    request_timeout: float = 30.0

    model_config = {"env_prefix": "BLEST_CLIENT_"}
