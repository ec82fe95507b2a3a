"""
Security validation of ``.env`` settings before a deploy.

Checks never touch Docker; they return a list of issues and the deployers
decide what to do with each level.
"""

import re
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional, Any
from enum import Enum
import yaml

from .config import ProxyEnv, StackEnv

logger = logging.getLogger(__name__)


EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
DEFAULT_POSTGRES_PASSWORD = "ChangeMe123!"
MIN_PASSWORD_LENGTH = 12
MIN_JWT_SECRET_LENGTH = 32
DASHBOARD_CONTAINER_PORT = 8080


class IssueLevel(Enum):
    """How a validation issue is handled."""
    ERROR = "error"        # deploy cannot continue
    CONFIRM = "confirm"    # operator must accept the risk
    NOTICE = "notice"      # printed only


@dataclass
class ValidationIssue:
    key: str
    level: IssueLevel
    message: str
    details: List[str] = field(default_factory=list)
    hint: str = ""


def validate_proxy(env: ProxyEnv, compose_file: Optional[Path] = None) -> List[ValidationIssue]:
    issues = []

    if not env.acme_email:
        issues.append(ValidationIssue(
            key="ACME_EMAIL",
            level=IssueLevel.ERROR,
            message="ACME_EMAIL is required in .env for Let's Encrypt certificates",
        ))
    elif not EMAIL_PATTERN.match(env.acme_email):
        issues.append(ValidationIssue(
            key="ACME_EMAIL",
            level=IssueLevel.NOTICE,
            message=f"ACME_EMAIL format may be invalid: {env.acme_email}",
        ))

    if env.api_insecure:
        issues.append(ValidationIssue(
            key="API_INSECURE",
            level=IssueLevel.CONFIRM,
            message="API_INSECURE=true - This is INSECURE for production!",
            hint="Edit .env and set API_INSECURE=false, then run again.",
        ))

    if not env.dashboard_auth:
        issues.append(ValidationIssue(
            key="TRAEFIK_DASHBOARD_AUTH",
            level=IssueLevel.NOTICE,
            message="TRAEFIK_DASHBOARD_AUTH is not set - the dashboard has no authentication",
            details=["Generate credentials: echo $(htpasswd -nb admin your_password)"],
        ))

    if compose_file is not None and dashboard_port_exposed(compose_file):
        issues.append(ValidationIssue(
            key="DASHBOARD_PORT",
            level=IssueLevel.NOTICE,
            message=f"Dashboard port {DASHBOARD_CONTAINER_PORT} is exposed externally - security risk!",
            details=[
                f"Recommendation: Remove port {DASHBOARD_CONTAINER_PORT} mapping from docker-compose.yml",
                f"Dashboard will still be accessible via: https://{env.dashboard_domain or 'your-domain'}",
            ],
        ))

    return issues


def validate_stack(env: StackEnv) -> List[ValidationIssue]:
    """
    Validate an application stack's settings.

    Missing required keys are reported as a single ERROR; the strength checks
    only run once every required key is set.
    """
    missing = env.missing_required()
    if missing:
        return [ValidationIssue(
            key=",".join(missing),
            level=IssueLevel.ERROR,
            message="Missing required environment variables in .env: " + " ".join(missing),
            hint=f"Please set these variables in {env.stack_dir / '.env'}",
        )]

    issues = []

    password = env.postgres_password
    if password == DEFAULT_POSTGRES_PASSWORD or len(password) < MIN_PASSWORD_LENGTH:
        issues.append(ValidationIssue(
            key="POSTGRES_PASSWORD",
            level=IssueLevel.CONFIRM,
            message="POSTGRES_PASSWORD is weak or default!",
            details=[
                f"Current length: {len(password)} chars",
                f"Recommendation: Use at least {MIN_PASSWORD_LENGTH} chars with mix of letters, numbers, symbols",
            ],
            hint="Edit .env and set a secure POSTGRES_PASSWORD",
        ))

    secret = env.jwt_secret
    if "example" in secret or "change" in secret or len(secret) < MIN_JWT_SECRET_LENGTH:
        issues.append(ValidationIssue(
            key="JWT_SECRET",
            level=IssueLevel.CONFIRM,
            message="JWT_SECRET may be insecure!",
            details=[
                f"Current length: {len(secret)} chars",
                f"Recommendation: Use at least {MIN_JWT_SECRET_LENGTH} random chars",
                "Generate: openssl rand -base64 32",
            ],
            hint="Edit .env and set a secure JWT_SECRET",
        ))

    if "example" in env.domain or "localhost" in env.domain:
        issues.append(ValidationIssue(
            key="DOMAIN",
            level=IssueLevel.CONFIRM,
            message="DOMAIN is set to example/localhost",
            details=[
                f"Current: {env.domain}",
                "This may cause issues with SSL certificates",
            ],
            hint="Edit .env and set your actual domain",
        ))

    return issues


def dashboard_port_exposed(compose_file: Path) -> bool:
    """True when any service publishes the Traefik dashboard port on the host."""
    if not compose_file.is_file():
        return False
    try:
        with open(compose_file) as f:
            compose = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.debug(f"Cannot inspect {compose_file} for published ports: {e}")
        return False

    for service in (compose.get("services") or {}).values():
        for port in (service or {}).get("ports") or []:
            if _container_port(port) == DASHBOARD_CONTAINER_PORT:
                return True
    return False


def _container_port(mapping: Any) -> Optional[int]:
    if isinstance(mapping, dict):
        text = str(mapping.get("target", ""))
    else:
        text = str(mapping).split("/")[0]
        if ":" not in text:
            # A bare container port is not published on a fixed host port.
            return None
        text = text.rsplit(":", 1)[1]
    try:
        return int(text)
    except ValueError:
        return None
