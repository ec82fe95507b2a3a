"""
Configuration management for infrastack.

Handles:
- Project layout (proxy directory, application stacks)
- ``.env`` loading for the proxy and for each stack
- Typed views over the documented keys, with their defaults
- Secrets generation
"""

import os
import secrets
import string
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Any, Mapping
import yaml
from dotenv import dotenv_values

from .errors import EnvFileNotFound, InfraError

logger = logging.getLogger(__name__)


DEFAULT_PROJECT_NAME = "infraprod"
DEFAULT_TRAEFIK_NETWORK = "traefik-net"
DEFAULT_STACK_NAME = "dotnet-app"
PROXY_DIR = Path("reverse-proxy") / "traefik"
STACKS_DIR = Path("stacks")
LAYOUT_FILE = "infrastack.yaml"
ENV_FILE = ".env"
ENV_EXAMPLE_FILE = ".env.example"
COMPOSE_FILE = "docker-compose.yml"

TRUE_VALUES = {"true", "1", "yes", "y", "on"}
FALSE_VALUES = {"false", "0", "no", "n", "off"}


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Interpret a ``.env`` flag; unknown spellings fall back to ``default``."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    return default


def parse_int(value: Optional[str], default: int) -> int:
    if not value:
        return default
    try:
        return int(value.strip())
    except ValueError:
        logger.warning(f"Ignoring non-numeric value {value!r}, using {default}")
        return default


def load_env_file(path: Path, required_hint: List[str] = ()) -> Dict[str, str]:
    """
    Load a ``.env`` file into a plain dict.

    Keys declared without a value map to the empty string. Raises
    ``EnvFileNotFound`` (with a hint listing ``required_hint``) when the file
    does not exist.
    """
    if not path.is_file():
        raise EnvFileNotFound(path, required_hint)
    values = dotenv_values(path)
    logger.debug(f"Loaded {len(values)} keys from {path}")
    return {key: (value or "") for key, value in values.items()}


def read_env_example(stack_dir: Path) -> Dict[str, str]:
    """Values from a stack's ``.env.example``, or an empty dict."""
    path = stack_dir / ENV_EXAMPLE_FILE
    if not path.is_file():
        return {}
    return {key: (value or "") for key, value in dotenv_values(path).items()}


@dataclass
class ProxyEnv:
    """Settings of the Traefik stack, read from ``reverse-proxy/traefik/.env``."""
    acme_email: str = ""
    dashboard_domain: str = ""
    dashboard_auth: str = ""
    api_insecure: bool = True
    enable_metrics: bool = False
    dashboard_port: int = 8080
    network: str = DEFAULT_TRAEFIK_NETWORK
    image: str = "traefik:v3.1"

    REQUIRED = ("ACME_EMAIL",)
    RECOMMENDED = ("ACME_EMAIL", "TRAEFIK_DASHBOARD_DOMAIN", "TRAEFIK_DASHBOARD_AUTH")

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "ProxyEnv":
        return cls(
            acme_email=env.get("ACME_EMAIL", ""),
            dashboard_domain=env.get("TRAEFIK_DASHBOARD_DOMAIN", ""),
            dashboard_auth=env.get("TRAEFIK_DASHBOARD_AUTH", ""),
            api_insecure=parse_bool(env.get("API_INSECURE"), default=True),
            enable_metrics=parse_bool(env.get("ENABLE_METRICS"), default=False),
            dashboard_port=parse_int(env.get("DASHBOARD_PORT"), 8080),
            network=env.get("TRAEFIK_NETWORK") or DEFAULT_TRAEFIK_NETWORK,
            image=env.get("TRAEFIK_IMAGE") or "traefik:v3.1",
        )

    def missing_required(self) -> List[str]:
        return ["ACME_EMAIL"] if not self.acme_email else []


@dataclass
class StackEnv:
    """Settings of one application stack, read from ``stacks/<name>/.env``."""
    stack_name: str
    stack_dir: Path
    dotnet_image: str = ""
    domain: str = ""
    postgres_password: str = ""
    jwt_secret: str = ""
    postgres_user: str = "postgres"
    postgres_db: str = "app"
    network: str = DEFAULT_TRAEFIK_NETWORK
    build_context: str = ""
    run_migrations: bool = False
    test_endpoint: bool = True
    health_check_path: str = "/health"
    backup_dir: Optional[Path] = None
    backup_retention_days: int = 7

    REQUIRED = ("DOTNET_IMAGE", "DOMAIN", "POSTGRES_PASSWORD", "JWT_SECRET")

    def __post_init__(self):
        if self.backup_dir is None:
            self.backup_dir = self.stack_dir / "backups"

    @classmethod
    def from_env(cls, env: Mapping[str, str], stack_dir: Path) -> "StackEnv":
        backup_dir = None
        if env.get("BACKUP_PATH"):
            backup_dir = Path(env["BACKUP_PATH"]).expanduser()
            if not backup_dir.is_absolute():
                backup_dir = stack_dir / backup_dir
        return cls(
            stack_name=env.get("STACK_NAME") or stack_dir.name,
            stack_dir=stack_dir,
            dotnet_image=env.get("DOTNET_IMAGE", ""),
            domain=env.get("DOMAIN", ""),
            postgres_password=env.get("POSTGRES_PASSWORD", ""),
            jwt_secret=env.get("JWT_SECRET", ""),
            postgres_user=env.get("POSTGRES_USER") or "postgres",
            postgres_db=env.get("POSTGRES_DB") or "app",
            network=env.get("TRAEFIK_NETWORK") or DEFAULT_TRAEFIK_NETWORK,
            build_context=env.get("BUILD_CONTEXT", ""),
            run_migrations=parse_bool(env.get("RUN_MIGRATIONS"), default=False),
            test_endpoint=parse_bool(env.get("TEST_ENDPOINT"), default=True),
            health_check_path=env.get("HEALTH_CHECK_PATH") or "/health",
            backup_dir=backup_dir,
            backup_retention_days=parse_int(env.get("BACKUP_RETENTION_DAYS"), 7),
        )

    def missing_required(self) -> List[str]:
        values = {
            "DOTNET_IMAGE": self.dotnet_image,
            "DOMAIN": self.domain,
            "POSTGRES_PASSWORD": self.postgres_password,
            "JWT_SECRET": self.jwt_secret,
        }
        return [key for key in self.REQUIRED if not values[key]]

    @property
    def app_container(self) -> str:
        return f"{self.stack_name}-app"

    @property
    def db_container(self) -> str:
        return f"{self.stack_name}-postgres"

    @property
    def internal_network(self) -> str:
        return f"{self.stack_name}_internal"

    @property
    def health_url(self) -> str:
        return f"https://{self.domain}{self.health_check_path}"


@dataclass
class InfraConfig:
    """Layout of the whole host: one proxy stack and any number of app stacks."""
    root_dir: Path
    project_name: str = DEFAULT_PROJECT_NAME
    proxy_dir: Optional[Path] = None
    stacks: Dict[str, Path] = field(default_factory=dict)

    def __post_init__(self):
        self.root_dir = Path(self.root_dir)
        if self.proxy_dir is None:
            self.proxy_dir = self.root_dir / PROXY_DIR
        if not self.stacks:
            self.stacks = self._discover_stacks()

    def _discover_stacks(self) -> Dict[str, Path]:
        stacks_root = self.root_dir / STACKS_DIR
        found = {}
        if stacks_root.is_dir():
            for child in sorted(stacks_root.iterdir()):
                if (child / COMPOSE_FILE).is_file():
                    found[child.name] = child
        if not found:
            found[DEFAULT_STACK_NAME] = stacks_root / DEFAULT_STACK_NAME
        return found

    @property
    def internal_network(self) -> str:
        return f"{self.project_name}_internal"

    @property
    def layout_path(self) -> Path:
        return self.root_dir / LAYOUT_FILE

    def stack_dir(self, name: str) -> Path:
        if name not in self.stacks:
            known = ", ".join(sorted(self.stacks)) or "none"
            raise InfraError(f"Unknown stack '{name}' (known stacks: {known})")
        return self.stacks[name]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_name": self.project_name,
            "proxy_dir": _relative(self.proxy_dir, self.root_dir),
            "stacks": {
                name: _relative(path, self.root_dir)
                for name, path in self.stacks.items()
            },
        }

    def save(self, path: Optional[Path] = None):
        """Save the layout to YAML."""
        path = path or self.layout_path
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, root_dir: Path, environ: Optional[Mapping[str, str]] = None) -> "InfraConfig":
        """
        Build the layout for ``root_dir``.

        ``infrastack.yaml`` is read when present; ``COMPOSE_PROJECT_NAME`` in
        ``environ`` (default: the process environment) overrides the project name.
        """
        root_dir = Path(root_dir).resolve()
        environ = os.environ if environ is None else environ
        data: Dict[str, Any] = {}

        layout = root_dir / LAYOUT_FILE
        if layout.is_file():
            with open(layout) as f:
                data = yaml.safe_load(f) or {}
            logger.debug(f"Loaded layout from {layout}")

        project_name = (
            environ.get("COMPOSE_PROJECT_NAME")
            or data.get("project_name")
            or DEFAULT_PROJECT_NAME
        )
        proxy_dir = root_dir / data["proxy_dir"] if data.get("proxy_dir") else None
        stacks = {
            name: root_dir / path
            for name, path in (data.get("stacks") or {}).items()
        }
        return cls(
            root_dir=root_dir,
            project_name=project_name,
            proxy_dir=proxy_dir,
            stacks=stacks,
        )


def _relative(path: Path, root: Path) -> str:
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)


def generate_secret(length: int = 32, include_special: bool = False) -> str:
    """Generate a cryptographically secure random secret."""
    alphabet = string.ascii_letters + string.digits
    if include_special:
        alphabet += "!@#$%^&*"
    return ''.join(secrets.choice(alphabet) for _ in range(length))


def generate_jwt_secret() -> str:
    """Generate a JWT-compatible secret (base64-safe)."""
    return secrets.token_urlsafe(48)
