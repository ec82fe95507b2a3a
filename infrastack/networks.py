"""Idempotent creation of the shared Docker networks."""

import logging
from typing import Dict, List, Any

from . import console
from .config import InfraConfig, DEFAULT_TRAEFIK_NETWORK
from .docker import DockerCLI
from .errors import DeploymentError

logger = logging.getLogger(__name__)


def ensure_network(docker: DockerCLI, name: str) -> bool:
    """
    Make sure ``name`` exists.

    Returns True when the network was created, False when it already existed.
    Raises ``DeploymentError`` when creation fails.
    """
    if docker.network_exists(name):
        return False
    if not docker.create_network(name):
        raise DeploymentError(f"Failed to create network {name}")
    return True


def project_networks(docker: DockerCLI, project_name: str) -> List[Dict[str, Any]]:
    """Networks whose name mentions traefik or the project."""
    return [
        net for net in docker.list_networks()
        if "traefik" in net.get("Name", "") or project_name in net.get("Name", "")
    ]


def print_networks(docker: DockerCLI, project_name: str) -> int:
    rows = [
        (net.get("Name", ""), net.get("Driver", ""), net.get("Scope", ""))
        for net in project_networks(docker, project_name)
    ]
    shown = console.table(["NAME", "DRIVER", "SCOPE"], rows)
    if not shown:
        console.plain("  No networks found")
    return shown


def create_networks(config: InfraConfig, docker: DockerCLI) -> Dict[str, bool]:
    """Create the shared proxy network and the project's internal network."""
    console.plain(f"🔗 Creating Docker networks for {config.project_name}...")

    created = {}
    for label, name in (
        ("shared network", DEFAULT_TRAEFIK_NETWORK),
        ("internal network", config.internal_network),
    ):
        created[name] = ensure_network(docker, name)
        verb = "Created" if created[name] else "Using existing"
        console.plain(f"  ✓ {verb} {label}: {name}", style="green")

    console.plain()
    console.plain("📋 Available networks:")
    print_networks(docker, config.project_name)
    return created
