"""Container-backed support services.

Services are started and stopped by name through the ``docker`` CLI. Hosts
without Docker get a client that reports every call as unavailable, so a
missing container runtime never aborts a run.

Starting an already-running container or stopping a stopped one is not an
error for Docker; other failures surface as ServiceError and are reported
per service by ServiceLauncher / ServiceTerminator.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Protocol

from conductor.core.models import Service

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """A service could not be started or stopped."""

    pass


class ServiceNotAvailableError(ServiceError):
    """No container runtime is available on this host."""

    pass


class ServiceClient(Protocol):
    """Starts and stops containers by name."""

    def start(self, container: str) -> str: ...

    def stop(self, container: str) -> str: ...


class DockerServiceClient:
    """Controls existing containers through the docker CLI."""

    def __init__(self, docker_bin: str = "docker", timeout: float = 30.0):
        self.docker_bin = docker_bin
        self.timeout = timeout

    def start(self, container: str) -> str:
        return self._run("start", container)

    def stop(self, container: str) -> str:
        return self._run("stop", container)

    def _run(self, action: str, container: str) -> str:
        try:
            result = subprocess.run(
                [self.docker_bin, action, container],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise ServiceError(f"docker {action} {container} timed out after {self.timeout}s")
        except OSError as e:
            raise ServiceNotAvailableError(f"Could not run docker: {e}") from e

        if result.returncode != 0:
            raise ServiceError(result.stderr.strip() or f"docker {action} exited {result.returncode}")
        return result.stdout.strip()


class UnsupportedServiceClient:
    """Client for hosts with no container runtime."""

    def __init__(self, reason: str = "Docker binary not found in PATH"):
        self.reason = reason

    def start(self, container: str) -> str:
        raise ServiceNotAvailableError(self.reason)

    def stop(self, container: str) -> str:
        raise ServiceNotAvailableError(self.reason)


def get_service_client() -> ServiceClient:
    """Pick a service client for this host. Called once at startup."""
    docker = shutil.which("docker")
    if docker:
        return DockerServiceClient(docker)
    logger.info("docker not found, services are disabled")
    return UnsupportedServiceClient()


@dataclass
class ServiceResult:
    """Outcome of starting or stopping one service."""

    service: Service
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class _ServiceBatch:
    """Lazy batch: each service is acted on only when iterated to."""

    action = ""

    def __init__(self, services: list[Service], client: ServiceClient):
        self.services = list(services)
        self.client = client

    def _apply(self, service: Service) -> str:
        raise NotImplementedError

    def __iter__(self) -> Iterator[ServiceResult]:
        for service in self.services:
            try:
                self._apply(service)
            except ServiceError as e:
                logger.warning(f"Could not {self.action} service {service.name}: {e}")
                yield ServiceResult(service, str(e))
            else:
                logger.debug(f"{self.action} service {service.name}")
                yield ServiceResult(service)


class ServiceLauncher(_ServiceBatch):
    """Starts services on demand, reporting each failure without aborting."""

    action = "start"

    def _apply(self, service: Service) -> str:
        return self.client.start(service.get_container_name())


class ServiceTerminator(_ServiceBatch):
    """Stops services on demand, reporting each failure without aborting."""

    action = "stop"

    def _apply(self, service: Service) -> str:
        return self.client.stop(service.get_container_name())
