"""External support services (containers) used by components."""

from conductor.services.containers import (
    DockerServiceClient,
    ServiceClient,
    ServiceError,
    ServiceLauncher,
    ServiceNotAvailableError,
    ServiceTerminator,
    UnsupportedServiceClient,
    get_service_client,
)

__all__ = [
    "DockerServiceClient",
    "ServiceClient",
    "ServiceError",
    "ServiceLauncher",
    "ServiceNotAvailableError",
    "ServiceTerminator",
    "UnsupportedServiceClient",
    "get_service_client",
]
