"""
Deployment of the Traefik reverse proxy stack.

The proxy owns the shared ``traefik-net`` network and the ACME certificate
store; every application stack routes through it.
"""

import os
import time
import socket
import logging

from . import console
from .config import ProxyEnv
from .core import BaseDeployer
from .errors import DeploymentError
from .validation import validate_proxy, dashboard_port_exposed

logger = logging.getLogger(__name__)

PROXY_CONTAINER = "traefik"
STARTUP_WAIT_SECONDS = 5


def host_address() -> str:
    """Best guess at the host's primary address, for printed URLs."""
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError:
        return "localhost"


class ProxyDeployer(BaseDeployer):
    """Deploys ``reverse-proxy/traefik``."""

    title = "Traefik"
    env_hint = ProxyEnv.RECOMMENDED

    def _deploy(self):
        console.banner("Traefik Reverse Proxy", "Deployment")
        self.check_prerequisites()

        env = ProxyEnv.from_env(self.load_env())
        self.apply_validation(validate_proxy(env, self.compose_file), checked=["API_INSECURE"])

        self.ensure_network(env.network)
        self.setup_certificate_storage()
        self.validate_compose()
        self.pull_images()

        console.step("🛑 Stopping existing Traefik...")
        result = self.docker.compose(self.project_dir, "down")
        if result.returncode != 0:
            logger.debug(f"compose down failed (ignored): {result.stderr.strip()}")
        console.plain()

        console.step("🚀 Deploying Traefik...")
        if self.docker.compose(self.project_dir, "up", "-d").returncode != 0:
            raise DeploymentError("Failed to start Traefik")
        console.plain()

        console.step("⏳ Waiting for Traefik to initialize...")
        time.sleep(STARTUP_WAIT_SECONDS)
        if not self.docker.container_running(PROXY_CONTAINER):
            raise DeploymentError(
                f"Traefik failed to start. Check logs: docker logs {PROXY_CONTAINER}"
            )
        console.success("Traefik is running")
        console.plain()

        console.banner("🎉 Traefik Deployed Successfully!", style="green")
        self.print_access_points(env)

    def setup_certificate_storage(self):
        """Create ``letsencrypt/acme.json``; Traefik refuses a world-readable store."""
        console.step("🔒 Setting up SSL certificate storage...")
        storage_dir = self.project_dir / "letsencrypt"
        storage_dir.mkdir(parents=True, exist_ok=True)
        acme = storage_dir / "acme.json"
        acme.touch(exist_ok=True)
        os.chmod(acme, 0o600)
        console.success("SSL certificate storage configured")
        console.plain()

    def print_access_points(self, env: ProxyEnv):
        address = host_address()

        console.plain("🔗 Access Points:", style="cyan")
        if env.dashboard_domain:
            url = f"https://{env.dashboard_domain}/dashboard/"
            self.result.urls.append(url)
            console.plain(f"   Dashboard (HTTPS): {url}", style="green")
        else:
            console.plain(
                "   Dashboard Domain: Not configured - set TRAEFIK_DASHBOARD_DOMAIN in .env",
                style="yellow",
            )
        if env.api_insecure:
            console.plain(f"   Dashboard (INSECURE): http://{address}:{env.dashboard_port}/dashboard/", style="red")
            console.plain("   ⚠️  Warning: Insecure access enabled - disable in production", style="yellow")
        else:
            console.plain("   ✅ Dashboard: HTTPS only (secure)", style="green")
        console.plain()

        console.plain("📊 Monitoring Endpoints:", style="cyan")
        if env.enable_metrics:
            console.plain(f"   Metrics:  http://{address}:{env.dashboard_port}/metrics", style="green")
        console.plain(f"   Health:   http://{address}:{env.dashboard_port}/ping", style="blue")
        console.plain()

        compose = self.compose_file
        self.useful_commands([
            ("View logs", f"docker logs {PROXY_CONTAINER} -f"),
            ("Check status", f"docker ps | grep {PROXY_CONTAINER}"),
            ("Restart", f"docker compose -f {compose} restart"),
            ("Stop", f"docker compose -f {compose} down"),
            ("Validate config", "docker compose config"),
        ])

        if not env.dashboard_auth:
            self.result.warnings.append("Dashboard authentication is not configured")
            console.plain("⚠️  SECURITY WARNING:", style="red")
            console.plain("   Dashboard authentication is NOT configured!", style="yellow")
            console.plain("   Set TRAEFIK_DASHBOARD_AUTH in .env", style="yellow")
            console.plain()
            console.plain("   Generate credentials:", style="blue")
            console.plain("   echo $(htpasswd -nb admin your_password)")
            console.plain("   Add output to TRAEFIK_DASHBOARD_AUTH in .env")
            console.plain()

        if dashboard_port_exposed(compose):
            console.plain("⚠️  PRODUCTION RECOMMENDATION:", style="yellow")
            console.plain("   Port 8080 is exposed. Consider:", style="yellow")
            console.bullet_list([
                "- Using firewall to restrict access",
                "- Removing port 8080 exposure in docker-compose.yml",
                "- Accessing dashboard only via HTTPS",
            ])
            console.plain()

        console.plain("📖 Next steps:", style="blue")
        console.bullet_list([
            "1. Deploy your application stacks",
            "2. Monitor routing in the dashboard",
            "3. Check SSL certificates are issued",
            "4. Configure dashboard authentication",
        ])
        console.plain()
