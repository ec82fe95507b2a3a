"""
Core deployment functionality shared by the proxy and application stacks.

Handles:
- Prerequisite checks (docker, compose plugin)
- ``.env`` loading with an operator hint when it is missing
- Applying validation issues (abort, confirm, notice)
- Compose configuration checks and network setup
"""

import time
import logging
from pathlib import Path
from typing import Optional, Dict, List, Iterable, Sequence
from dataclasses import dataclass, field

from . import console
from .config import load_env_file, ENV_FILE, COMPOSE_FILE
from .docker import DockerCLI
from .errors import Cancelled, DeploymentError, InfraError, ValidationFailed
from .networks import ensure_network
from .validation import IssueLevel, ValidationIssue

logger = logging.getLogger(__name__)


@dataclass
class DeploymentResult:
    """Result of a deployment operation."""
    stack: str
    success: bool = True
    message: str = ""
    warnings: List[str] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0


class BaseDeployer:
    """
    Steps common to every stack deployment.

    Subclasses implement ``_deploy`` and raise ``InfraError`` subclasses on
    failure; ``deploy`` turns the outcome into a ``DeploymentResult``.
    """

    title = "Stack"
    env_hint: Sequence[str] = ()

    def __init__(
        self,
        project_dir: Path,
        docker: Optional[DockerCLI] = None,
        assume_yes: bool = False,
    ):
        self.project_dir = Path(project_dir)
        self.docker = docker or DockerCLI()
        self.assume_yes = assume_yes
        self.result = DeploymentResult(stack=self.project_dir.name)

    @property
    def compose_file(self) -> Path:
        return self.project_dir / COMPOSE_FILE

    def deploy(self) -> DeploymentResult:
        start_time = time.time()
        self.result = DeploymentResult(stack=self.project_dir.name)
        try:
            self._deploy()
            self.result.message = f"{self.title} deployed"
        except InfraError as e:
            self.result.success = False
            self.result.message = str(e)
            logger.error(f"{self.title} deployment failed: {e}")
        self.result.duration_seconds = time.time() - start_time
        return self.result

    def _deploy(self):
        raise NotImplementedError

    def warn(self, message: str):
        self.result.warnings.append(message)
        console.warning(message)

    def check_prerequisites(self):
        console.step("🔍 Checking prerequisites...")
        self.docker.ensure_available()
        console.success("Docker and Docker Compose are available")

    def load_env(self) -> Dict[str, str]:
        env = load_env_file(self.project_dir / ENV_FILE, self.env_hint)
        console.success(".env file found")
        console.step("📋 Loading environment configuration...")
        return env

    def apply_validation(self, issues: Iterable[ValidationIssue], checked: Sequence[str] = ()):
        """
        Report validation issues, stopping on errors and asking on risks.

        Keys in ``checked`` without an issue are reported as OK.
        """
        console.step("🔒 Validating security configuration...")
        issues = list(issues)

        errors = [i for i in issues if i.level == IssueLevel.ERROR]
        if errors:
            message = "\n".join(
                i.message + (f"\n\n{i.hint}" if i.hint else "") for i in errors
            )
            raise ValidationFailed(message)

        flagged = set()
        for issue in issues:
            flagged.add(issue.key)
            console.warning(issue.message)
            console.bullet_list(issue.details, indent="  ")
            if issue.level != IssueLevel.CONFIRM:
                continue
            question = "Continue anyway? (NOT recommended)"
            if not console.confirm(question, assume_yes=self.assume_yes):
                raise Cancelled(issue.hint or f"Edit .env and review {issue.key}")
            self.result.warnings.append(issue.message)

        for key in checked:
            if key not in flagged:
                console.success(f"{key}: OK")

        console.success("Security validation completed")
        console.plain()

    def validate_compose(self):
        console.step("🔧 Validating Docker Compose configuration...")
        result = self.docker.compose(self.project_dir, "config", "--quiet")
        if result.returncode != 0:
            logger.debug(result.stderr)
            raise DeploymentError(
                "Docker Compose configuration is invalid. Run: docker compose config"
            )
        console.success("Docker Compose configuration is valid")
        console.plain()

    def ensure_network(self, name: str, required: bool = True):
        if self.docker.network_exists(name):
            console.info(f"{name} network already exists")
            return
        console.step(f"🌐 Creating {name} network...")
        try:
            ensure_network(self.docker, name)
        except DeploymentError:
            if required:
                raise
            self.warn(f"Could not create network {name}")
            return
        console.success(f"Created {name} network")

    def pull_images(self):
        console.step("🐳 Pulling latest images...")
        if self.docker.compose(self.project_dir, "pull").returncode != 0:
            self.warn("Some images could not be pulled (may already be latest or need a build)")
        console.plain()

    def useful_commands(self, commands: Sequence[tuple]):
        console.plain("📋 Useful commands:", style="cyan")
        width = max(len(label) for label, _ in commands) + 2
        for label, command in commands:
            console.plain(f"   {(label + ':').ljust(width)}{command}")
        console.plain()
