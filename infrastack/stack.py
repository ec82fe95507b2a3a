"""
Deployment of an application stack (a .NET app with PostgreSQL) behind Traefik.
"""

import time
import logging
import warnings
import requests

from . import console
from .config import StackEnv
from .core import BaseDeployer
from .errors import DeploymentError
from .services import ServiceManager
from .validation import validate_stack

logger = logging.getLogger(__name__)

ENDPOINT_WAIT_SECONDS = 5
ENDPOINT_TIMEOUT_SECONDS = 10


def probe_endpoint(url: str, verify: bool = True, timeout: float = ENDPOINT_TIMEOUT_SECONDS) -> bool:
    """GET ``url`` and report whether it answered below HTTP 400."""
    try:
        with warnings.catch_warnings():
            # Certificate verification is off for freshly issued staging certs.
            warnings.simplefilter("ignore")
            response = requests.get(url, timeout=timeout, verify=verify)
    except requests.RequestException as e:
        logger.debug(f"Endpoint probe {url} failed: {e}")
        return False
    logger.debug(f"Endpoint probe {url}: HTTP {response.status_code}")
    return response.status_code < 400


class AppStackDeployer(BaseDeployer):
    """Deploys one ``stacks/<name>`` directory."""

    title = "Application stack"
    env_hint = ("DOTNET_IMAGE", "DOMAIN", "POSTGRES_PASSWORD (or your chosen DB password)", "JWT_SECRET")

    def _deploy(self):
        console.banner(f"{self.project_dir.name} Stack", "Deployment")
        self.check_prerequisites()

        env = StackEnv.from_env(self.load_env(), self.project_dir)
        self.result.stack = env.stack_name
        console.info(f"Deploying {env.stack_name} stack")
        self.apply_validation(
            validate_stack(env),
            checked=["POSTGRES_PASSWORD", "JWT_SECRET", "DOMAIN"],
        )

        self.validate_compose()
        self.ensure_network(env.network)
        self.ensure_network(env.internal_network, required=False)
        self.pull_images()

        if env.build_context:
            console.step("🔨 Building application image...")
            if self.docker.compose(self.project_dir, "build").returncode != 0:
                raise DeploymentError("Build failed")
            console.success("Build completed")
        else:
            console.info(f"BUILD_CONTEXT not set - using pre-built image: {env.dotnet_image}")
        console.plain()

        console.step("🛑 Stopping existing containers...")
        self.docker.compose(self.project_dir, "down", "--remove-orphans")
        console.plain()

        console.step("🚀 Starting services...")
        if self.docker.compose(self.project_dir, "up", "-d").returncode != 0:
            raise DeploymentError("Failed to start services")
        console.plain()

        services = ServiceManager(self.project_dir, self.docker)
        console.step("⏳ Waiting for services to initialize...")
        if not services.poll_healthy("postgres", "PostgreSQL", attempts=30):
            self.result.warnings.append("PostgreSQL health check timeout")
        if not services.poll_healthy("app", "Application", attempts=45):
            self.result.warnings.append("Application health check timeout")
        console.plain()

        console.plain("📋 Service Status:", style="blue")
        console.bullet_list(console.lines_of(self.docker.compose(self.project_dir, "ps").stdout), indent="")
        console.plain()

        if services.container_up(env.app_container):
            console.success("Application is running")
        else:
            self.warn("Application may still be starting up")
            console.info("Check logs: docker compose logs -f app")

        if env.run_migrations:
            self.run_migrations()

        if env.test_endpoint:
            self.test_endpoint(env)

        console.step("🧹 Cleaning up unused images...")
        self.docker.run("image", "prune", "-f")
        console.plain()

        self.result.urls.append(f"https://{env.domain}")
        console.banner("🎉 Deployment Completed Successfully!", style="green")
        console.plain("🔗 Access your application:", style="cyan")
        console.plain(f"   https://{env.domain}", style="green")
        console.plain()

        compose = self.compose_file
        self.useful_commands([
            ("View logs", f"docker compose -f {compose} logs -f"),
            ("View app logs", f"docker compose -f {compose} logs -f app"),
            ("Check status", f"docker compose -f {compose} ps"),
            ("Restart app", f"docker compose -f {compose} restart app"),
            ("Stop all", f"docker compose -f {compose} down"),
            ("Run migrations", f"docker compose -f {compose} --profile tools run --rm migrate"),
        ])
        console.plain("🔍 Health check:", style="cyan")
        console.plain(f"   curl {env.health_url}")
        console.plain()

    def run_migrations(self):
        console.step("🔄 Running database migrations...")
        result = self.docker.compose(self.project_dir, "--profile", "tools", "run", "--rm", "migrate")
        if result.returncode != 0:
            self.warn("Migration failed - check logs")
        else:
            console.success("Migrations applied")
        console.plain()

    def test_endpoint(self, env: StackEnv):
        console.step("🔍 Testing application endpoint...")
        time.sleep(ENDPOINT_WAIT_SECONDS)
        if probe_endpoint(env.health_url):
            console.success("Application endpoint responding")
        else:
            self.warn("Application endpoint may not be ready")
            console.plain(f"Try manually: curl {env.health_url}")
        console.plain()
