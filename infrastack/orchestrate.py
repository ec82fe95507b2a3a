"""Multi-stack deployment: networks, then the proxy, then every application stack."""

import time
import logging
from datetime import datetime
from typing import List, Optional

from . import console
from .config import InfraConfig, read_env_example
from .core import DeploymentResult
from .docker import DockerCLI
from .networks import create_networks
from .proxy import ProxyDeployer
from .stack import AppStackDeployer
from .status import StatusReporter

logger = logging.getLogger(__name__)

PROXY_SETTLE_SECONDS = 15


def deploy_all(
    config: InfraConfig,
    docker: Optional[DockerCLI] = None,
    assume_yes: bool = False,
) -> List[DeploymentResult]:
    """
    Deploy the whole host in order and stop at the first failure.

    Returns the results of the stacks that were attempted; the last one is the
    failure when the run stopped early.
    """
    docker = docker or DockerCLI()
    console.banner("INFRASTRUCTURE MULTI-STACK DEPLOYMENT")
    console.plain(f"Project: {config.project_name}")
    console.plain(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    console.plain()

    console.plain("📡 Setting up Docker networks...")
    create_networks(config, docker)

    results = []

    console.plain()
    console.plain("🚦 Deploying Traefik (reverse proxy)...")
    proxy = ProxyDeployer(config.proxy_dir, docker, assume_yes=assume_yes).deploy()
    results.append(proxy)
    if not proxy.success:
        return results

    console.plain(f"⏳ Waiting for Traefik initialization ({PROXY_SETTLE_SECONDS} seconds)...")
    time.sleep(PROXY_SETTLE_SECONDS)

    for name, stack_dir in config.stacks.items():
        console.plain()
        console.plain(f"🚀 Deploying {name} stack...")
        result = AppStackDeployer(stack_dir, docker, assume_yes=assume_yes).deploy()
        results.append(result)
        if not result.success:
            return results

    console.plain()
    console.success("ALL STACKS DEPLOYED SUCCESSFULLY")
    console.plain()
    console.plain("📊 Deployment Summary:")
    print_summary(config)
    console.plain()

    StatusReporter(config, docker).report()
    return results


def print_summary(config: InfraConfig):
    dashboard = read_env_example(config.proxy_dir).get("TRAEFIK_DASHBOARD_DOMAIN") or "dashboard.your-domain.com"
    console.plain(f"   - Traefik: https://{dashboard}")
    for name, stack_dir in config.stacks.items():
        domain = read_env_example(stack_dir).get("DOMAIN") or "api.your-domain.com"
        console.plain(f"   - {name}: https://{domain}")
