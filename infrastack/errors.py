"""
Exception hierarchy for infrastack.

Operations raise these; the command line interface catches ``InfraError``,
prints the message and exits with ``exit_code``.
"""

from pathlib import Path
from typing import Iterable, Optional


class InfraError(Exception):
    """Base class for every failure an operation reports to the operator."""

    exit_code = 1


class EnvFileNotFound(InfraError):
    """A stack directory has no ``.env`` file."""

    def __init__(self, path: Path, keys: Iterable[str] = ()):
        self.path = path
        self.keys = list(keys)
        example = path.with_name(".env.example")
        lines = [
            f".env file not found at {path}",
            "",
            "Please create it from the example:",
            f"  cp {example} {path}",
            f"  nano {path}",
        ]
        if self.keys:
            lines.append("")
            lines.append("Make sure to configure at least:")
            lines.extend(f"  - {key}" for key in self.keys)
        super().__init__("\n".join(lines))


class DockerUnavailable(InfraError):
    """Docker or the compose plugin cannot be used."""


class DeploymentError(InfraError):
    """A deployment step failed and the run cannot continue."""


class ValidationFailed(InfraError):
    """Configuration is missing required values."""


class BackupError(InfraError):
    """A backup or restore step failed."""


class Cancelled(InfraError):
    """The operator declined a confirmation prompt."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code
