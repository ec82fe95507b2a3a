"""
Service state queries for one compose project.

Handles:
- Service status from ``docker compose ps``
- Waiting for a service to report healthy
- Log retrieval
"""

import time
import logging
from pathlib import Path
from typing import Optional, List
from enum import Enum

from . import console
from .docker import DockerCLI, ContainerState

logger = logging.getLogger(__name__)


class ServiceStatus(Enum):
    """Service status states."""
    HEALTHY = "healthy"
    RUNNING = "running"
    STARTING = "starting"
    UNHEALTHY = "unhealthy"
    STOPPED = "stopped"
    MISSING = "missing"


class ServiceManager:
    """Inspects and waits on the services of a compose project directory."""

    def __init__(self, project_dir: Path, docker: Optional[DockerCLI] = None):
        self.project_dir = project_dir
        self.docker = docker or DockerCLI()

    def states(self, service: Optional[str] = None) -> List[ContainerState]:
        return self.docker.compose_ps(self.project_dir, service)

    def get_status(self, service: str) -> ServiceStatus:
        states = self.states(service)
        if not states:
            return ServiceStatus.MISSING
        state = states[0]
        if state.health == "healthy":
            return ServiceStatus.HEALTHY
        if state.health == "unhealthy":
            return ServiceStatus.UNHEALTHY
        if not state.is_up:
            return ServiceStatus.STOPPED
        if state.health == "starting":
            return ServiceStatus.STARTING
        return ServiceStatus.RUNNING

    def is_healthy(self, service: str) -> bool:
        return self.get_status(service) == ServiceStatus.HEALTHY

    def container_up(self, container_name: str) -> bool:
        """True when the project has a running container called ``container_name``."""
        return any(s.name == container_name and s.is_up for s in self.states())

    def any_up(self) -> bool:
        return any(s.is_up for s in self.states())

    def logs(self, service: Optional[str] = None, tail: int = 100, since: Optional[str] = None) -> List[str]:
        return self.docker.compose_logs(self.project_dir, service, tail=tail, since=since)

    def poll_healthy(self, service: str, label: str, attempts: int, delay: float = 2) -> bool:
        """
        Check ``service`` up to ``attempts`` times, ``delay`` seconds apart.

        Prints a dot per failed attempt; a timeout only warns.
        """
        console.plain(f"Waiting for {label}...", end="")
        for _ in range(attempts):
            if self.is_healthy(service):
                console.plain()
                console.success(f"{label} is healthy")
                return True
            time.sleep(delay)
            console.plain(".", end="")
        console.plain()
        console.warning(f"{label} health check timeout")
        console.plain(f"Check logs: docker compose logs {service}")
        return False

    def wait_for_healthy(self, service: str, timeout: int = 120, interval: int = 5) -> bool:
        """
        Block until ``service`` is healthy or ``timeout`` seconds have passed.

        On timeout the last 20 log lines of the service are printed.
        """
        console.plain(f"⏳ Waiting for '{service}' to be healthy (timeout: {timeout}s)...")

        elapsed = 0
        while elapsed < timeout:
            if self.is_healthy(service):
                console.plain()
                console.success(f"'{service}' is healthy! (took {elapsed}s)")
                return True

            if elapsed % 10 == 0:
                console.plain(f"[{elapsed}s]", end="")
            else:
                console.plain(".", end="")

            time.sleep(interval)
            elapsed += interval

        console.plain()
        console.error(f"'{service}' did not become healthy within {timeout} seconds")
        console.plain()
        console.plain(f"Last 20 logs for '{service}':")
        lines = self.logs(service, tail=20)
        if lines:
            console.bullet_list(lines, indent="")
        else:
            console.plain("Could not retrieve logs")
        return False
