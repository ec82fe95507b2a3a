"""
infrastack
==========

Deployment and operations tooling for a Docker host running a Traefik reverse
proxy in front of one or more application stacks.

Features:
- Shared network setup and ordered multi-stack deployment
- Security validation of .env configuration before deploying
- Service health waiting and stack health checks
- Backup and restore of application stacks (PostgreSQL dump and config)
- Host status reporting
- Compose file and .env templates

License: MIT
"""

__version__ = "1.0.0"

from .config import InfraConfig, ProxyEnv, StackEnv
from .core import DeploymentResult
from .proxy import ProxyDeployer
from .stack import AppStackDeployer
from .services import ServiceManager
from .health import HealthChecker
from .backup import BackupManager
from .status import StatusReporter

__all__ = [
    "InfraConfig",
    "ProxyEnv",
    "StackEnv",
    "DeploymentResult",
    "ProxyDeployer",
    "AppStackDeployer",
    "ServiceManager",
    "HealthChecker",
    "BackupManager",
    "StatusReporter",
]
