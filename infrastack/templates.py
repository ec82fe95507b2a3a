"""
Templates for the proxy and application stack directories.

Handles:
- docker-compose.yml generation for Traefik and for an application stack
- .env.example templates documenting every key
- .env generation with fresh secrets
- Writing the project tree without clobbering existing files
"""

import os
import logging
from pathlib import Path
from typing import Optional, Dict, List, Any, Iterable
from datetime import datetime
import yaml

from . import console
from .config import (
    InfraConfig,
    DEFAULT_TRAEFIK_NETWORK,
    ENV_FILE,
    ENV_EXAMPLE_FILE,
    COMPOSE_FILE,
    generate_secret,
    generate_jwt_secret,
)

logger = logging.getLogger(__name__)

TRAEFIK_IMAGE = "traefik:v3.1"
POSTGRES_IMAGE = "postgres:16-alpine"
APP_PORT = 8080


class _ComposeDumper(yaml.SafeDumper):
    """Writes repeated objects out in full instead of as anchors and aliases."""

    def ignore_aliases(self, data):
        return True


def _dump(compose: Dict[str, Any]) -> str:
    return yaml.dump(compose, Dumper=_ComposeDumper, default_flow_style=False, sort_keys=False)


def generate_proxy_compose() -> str:
    """docker-compose.yml of the Traefik stack; values come from its .env."""
    network = f"${{TRAEFIK_NETWORK:-{DEFAULT_TRAEFIK_NETWORK}}}"
    compose = {
        "name": "traefik",
        "services": {
            "traefik": {
                "image": f"${{TRAEFIK_IMAGE:-{TRAEFIK_IMAGE}}}",
                "container_name": "traefik",
                "restart": "unless-stopped",
                "command": [
                    "--api.dashboard=true",
                    "--api.insecure=${API_INSECURE:-true}",
                    "--ping=true",
                    "--log.level=INFO",
                    "--providers.docker=true",
                    "--providers.docker.exposedbydefault=false",
                    f"--providers.docker.network={network}",
                    "--entrypoints.web.address=:80",
                    "--entrypoints.web.http.redirections.entrypoint.to=websecure",
                    "--entrypoints.web.http.redirections.entrypoint.scheme=https",
                    "--entrypoints.websecure.address=:443",
                    "--certificatesresolvers.letsencrypt.acme.email=${ACME_EMAIL}",
                    "--certificatesresolvers.letsencrypt.acme.storage=/letsencrypt/acme.json",
                    "--certificatesresolvers.letsencrypt.acme.httpchallenge.entrypoint=web",
                    "--metrics.prometheus=${ENABLE_METRICS:-false}",
                ],
                "ports": [
                    "80:80",
                    "443:443",
                    f"${{DASHBOARD_PORT:-{APP_PORT}}}:8080",
                ],
                "volumes": [
                    "/var/run/docker.sock:/var/run/docker.sock:ro",
                    "./letsencrypt:/letsencrypt",
                ],
                "networks": ["traefik"],
                "labels": [
                    "traefik.enable=true",
                    "traefik.http.routers.dashboard.rule=Host(`${TRAEFIK_DASHBOARD_DOMAIN}`)",
                    "traefik.http.routers.dashboard.entrypoints=websecure",
                    "traefik.http.routers.dashboard.tls.certresolver=letsencrypt",
                    "traefik.http.routers.dashboard.service=api@internal",
                    "traefik.http.routers.dashboard.middlewares=dashboard-auth",
                    "traefik.http.middlewares.dashboard-auth.basicauth.users=${TRAEFIK_DASHBOARD_AUTH}",
                ],
                "healthcheck": {
                    "test": ["CMD", "traefik", "healthcheck", "--ping"],
                    "interval": "30s",
                    "timeout": "5s",
                    "retries": 3,
                },
            },
        },
        "networks": {
            "traefik": {"name": network, "external": True},
        },
    }
    return _dump(compose)


def generate_stack_compose(stack: str) -> str:
    """docker-compose.yml of an application stack with PostgreSQL."""
    prefix = f"${{STACK_NAME:-{stack}}}"
    connection = (
        "Host=postgres;Database=${POSTGRES_DB:-app};"
        "Username=${POSTGRES_USER:-postgres};Password=${POSTGRES_PASSWORD}"
    )
    app_environment = {
        "ASPNETCORE_ENVIRONMENT": "Production",
        "ASPNETCORE_URLS": f"http://+:{APP_PORT}",
        "ConnectionStrings__DefaultConnection": connection,
        "Jwt__Secret": "${JWT_SECRET}",
    }
    depends_on_db = {"postgres": {"condition": "service_healthy"}}

    compose = {
        "name": stack,
        "services": {
            "postgres": {
                "image": POSTGRES_IMAGE,
                "container_name": f"{prefix}-postgres",
                "restart": "unless-stopped",
                "environment": {
                    "POSTGRES_USER": "${POSTGRES_USER:-postgres}",
                    "POSTGRES_PASSWORD": "${POSTGRES_PASSWORD}",
                    "POSTGRES_DB": "${POSTGRES_DB:-app}",
                },
                "volumes": ["postgres-data:/var/lib/postgresql/data"],
                "networks": ["internal"],
                "healthcheck": {
                    "test": ["CMD-SHELL", "pg_isready -U ${POSTGRES_USER:-postgres} -d ${POSTGRES_DB:-app}"],
                    "interval": "10s",
                    "timeout": "5s",
                    "retries": 5,
                },
            },
            "app": {
                "image": "${DOTNET_IMAGE}",
                "build": {"context": "${BUILD_CONTEXT:-.}"},
                "container_name": f"{prefix}-app",
                "restart": "unless-stopped",
                "depends_on": depends_on_db,
                "environment": app_environment,
                "networks": ["internal", "traefik"],
                "labels": [
                    "traefik.enable=true",
                    f"traefik.docker.network=${{TRAEFIK_NETWORK:-{DEFAULT_TRAEFIK_NETWORK}}}",
                    f"traefik.http.routers.{stack}.rule=Host(`${{DOMAIN}}`)",
                    f"traefik.http.routers.{stack}.entrypoints=websecure",
                    f"traefik.http.routers.{stack}.tls.certresolver=letsencrypt",
                    f"traefik.http.services.{stack}.loadbalancer.server.port={APP_PORT}",
                ],
                "healthcheck": {
                    "test": [
                        "CMD-SHELL",
                        f"curl -fsS http://localhost:{APP_PORT}${{HEALTH_CHECK_PATH:-/health}} || exit 1",
                    ],
                    "interval": "30s",
                    "timeout": "10s",
                    "retries": 3,
                    "start_period": "40s",
                },
            },
            "migrate": {
                "image": "${DOTNET_IMAGE}",
                "profiles": ["tools"],
                "depends_on": depends_on_db,
                "environment": app_environment,
                "command": ["--migrate"],
                "networks": ["internal"],
                "restart": "no",
            },
        },
        "networks": {
            "internal": {"name": f"{prefix}_internal", "external": True},
            "traefik": {
                "name": f"${{TRAEFIK_NETWORK:-{DEFAULT_TRAEFIK_NETWORK}}}",
                "external": True,
            },
        },
        "volumes": {"postgres-data": {}},
    }
    return _dump(compose)


def _env_text(title: str, sections: Iterable[tuple]) -> str:
    lines = [
        "# ============================================================",
        f"# {title}",
        "# ============================================================",
        "",
    ]
    for heading, values in sections:
        lines.append(f"# === {heading} ===")
        lines.extend(f"{key}={value}" for key, value in values)
        lines.append("")
    return "\n".join(lines)


def proxy_env_values(secure: bool = False) -> List[tuple]:
    return [
        ("LET'S ENCRYPT", [("ACME_EMAIL", "admin@example.com")]),
        ("DASHBOARD", [
            ("TRAEFIK_DASHBOARD_DOMAIN", "dashboard.example.com"),
            ("TRAEFIK_DASHBOARD_AUTH", ""),
            ("API_INSECURE", "false" if secure else "true"),
            ("DASHBOARD_PORT", "8080"),
        ]),
        ("MONITORING", [("ENABLE_METRICS", "false")]),
        ("DOCKER", [
            ("TRAEFIK_NETWORK", DEFAULT_TRAEFIK_NETWORK),
            ("TRAEFIK_IMAGE", TRAEFIK_IMAGE),
        ]),
    ]


def stack_env_values(stack: str, password: str = "ChangeMe123!", jwt_secret: str = "change-this-to-a-long-random-secret") -> List[tuple]:
    return [
        ("STACK", [("STACK_NAME", stack), ("TRAEFIK_NETWORK", DEFAULT_TRAEFIK_NETWORK)]),
        ("APPLICATION", [
            ("DOTNET_IMAGE", "ghcr.io/your-org/your-app:latest"),
            ("BUILD_CONTEXT", ""),
            ("DOMAIN", "api.example.com"),
            ("HEALTH_CHECK_PATH", "/health"),
            ("JWT_SECRET", jwt_secret),
        ]),
        ("DATABASE", [
            ("POSTGRES_USER", "postgres"),
            ("POSTGRES_PASSWORD", password),
            ("POSTGRES_DB", "app"),
        ]),
        ("DEPLOYMENT", [
            ("RUN_MIGRATIONS", "false"),
            ("TEST_ENDPOINT", "true"),
        ]),
        ("BACKUP", [
            ("BACKUP_PATH", "./backups"),
            ("BACKUP_RETENTION_DAYS", "7"),
        ]),
    ]


def generate_proxy_env_example() -> str:
    return _env_text("Traefik reverse proxy - environment template", proxy_env_values())


def generate_stack_env_example(stack: str) -> str:
    return _env_text(f"{stack} stack - environment template", stack_env_values(stack))


def generate_proxy_env() -> str:
    title = f"Traefik reverse proxy - generated {datetime.now().isoformat(timespec='seconds')}"
    return _env_text(title, proxy_env_values(secure=True))


def generate_stack_env(stack: str) -> str:
    """A ready .env with generated database and JWT secrets."""
    title = f"{stack} stack - generated {datetime.now().isoformat(timespec='seconds')}"
    return _env_text(title, stack_env_values(
        stack,
        password=generate_secret(24),
        jwt_secret=generate_jwt_secret(),
    ))


def write_file(path: Path, content: str, force: bool = False, mode: Optional[int] = None) -> bool:
    """Write ``content`` unless ``path`` exists; returns True when written."""
    if path.exists() and not force:
        console.plain(f"  • Keeping existing {path}", style="yellow")
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(content)
    if mode is not None:
        os.chmod(path, mode)
    logger.info(f"Written: {path}")
    console.plain(f"  ✓ Wrote {path}", style="green")
    return True


def scaffold(
    config: InfraConfig,
    force: bool = False,
    with_env: bool = False,
    save_layout: bool = False,
) -> List[Path]:
    """
    Write the proxy and stack directories of ``config``.

    Existing files are kept unless ``force``. ``with_env`` also writes ``.env``
    files (mode 0600) with generated secrets. ``infrastack.yaml`` is written
    when missing, with ``force``, or with ``save_layout`` (the layout changed).
    Returns the written paths.
    """
    written = []

    def emit(path: Path, content: str, mode: Optional[int] = None):
        if write_file(path, content, force=force, mode=mode):
            written.append(path)

    console.plain(f"🧱 Scaffolding {config.project_name} in {config.root_dir}")
    proxy = config.proxy_dir
    emit(proxy / COMPOSE_FILE, generate_proxy_compose())
    emit(proxy / ENV_EXAMPLE_FILE, generate_proxy_env_example())
    if with_env:
        emit(proxy / ENV_FILE, generate_proxy_env(), mode=0o600)

    for name, stack_dir in config.stacks.items():
        emit(stack_dir / COMPOSE_FILE, generate_stack_compose(name))
        emit(stack_dir / ENV_EXAMPLE_FILE, generate_stack_env_example(name))
        if with_env:
            emit(stack_dir / ENV_FILE, generate_stack_env(name), mode=0o600)

    if force or save_layout or not config.layout_path.exists():
        config.save()
        written.append(config.layout_path)
        console.plain(f"  ✓ Wrote {config.layout_path}", style="green")
    return written
