"""
Thin wrapper around the ``docker`` command line.

Every subprocess call of the package goes through ``DockerCLI.run`` so the
commands are logged in one place and can be replaced in tests.
"""

import json
import shutil
import logging
import subprocess
from pathlib import Path
from dataclasses import dataclass
from typing import IO, Optional, Dict, List, Any

from .errors import DockerUnavailable

logger = logging.getLogger(__name__)


@dataclass
class ContainerState:
    """One row of ``docker compose ps``."""
    name: str
    service: str
    state: str
    health: str = ""
    status: str = ""

    @property
    def is_up(self) -> bool:
        return self.state == "running"

    @property
    def is_healthy(self) -> bool:
        return self.health == "healthy"

    @property
    def is_failed(self) -> bool:
        return self.state in ("exited", "dead") or self.health == "unhealthy"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContainerState":
        return cls(
            name=data.get("Name", ""),
            service=data.get("Service", ""),
            state=(data.get("State") or "").lower(),
            health=(data.get("Health") or "").lower(),
            status=data.get("Status", ""),
        )


def parse_compose_ps(output: str) -> List[ContainerState]:
    """
    Parse ``docker compose ps --format json``.

    Compose v2.21+ prints one JSON object per line; older releases print a
    single JSON array. Both are accepted.
    """
    output = output.strip()
    if not output:
        return []
    if output.startswith("["):
        rows = json.loads(output)
    else:
        rows = [json.loads(line) for line in output.splitlines() if line.strip()]
    return [ContainerState.from_dict(row) for row in rows]


def parse_json_lines(output: str) -> List[Dict[str, Any]]:
    """Parse the ``--format '{{json .}}'`` output of ``docker ... ls``."""
    rows = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            rows.append(json.loads(line))
        except json.JSONDecodeError:
            logger.warning(f"Skipping unparsable docker output: {line[:100]}")
    return rows


class DockerCLI:
    """Runs ``docker`` and ``docker compose`` commands."""

    def __init__(self, binary: str = "docker"):
        self.binary = binary

    def run(
        self,
        *args: str,
        cwd: Optional[Path] = None,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
        stdin: Optional[IO[bytes]] = None,
        stdout: Optional[IO[bytes]] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run ``docker *args`` and capture its output as text.

        Passing ``stdin`` or ``stdout`` file objects streams raw bytes from
        and to them instead (database dumps need not be valid UTF-8). Only
        stderr is captured then, and ``stdout`` of the result is None when
        it went to a file.
        """
        cmd = [self.binary, *args]
        logger.debug(f"$ {' '.join(cmd)}" + (f"  (in {cwd})" if cwd else ""))
        try:
            if stdin is None and stdout is None:
                return subprocess.run(
                    cmd,
                    cwd=cwd,
                    input=input,
                    capture_output=True,
                    text=True,
                    errors="replace",
                    timeout=timeout,
                )
            result = subprocess.run(
                cmd,
                cwd=cwd,
                stdin=stdin,
                stdout=subprocess.PIPE if stdout is None else stdout,
                stderr=subprocess.PIPE,
                timeout=timeout,
            )
        except FileNotFoundError:
            raise DockerUnavailable("Docker is not installed or not in PATH")

        captured = result.stdout.decode(errors="replace") if result.stdout is not None else None
        return subprocess.CompletedProcess(
            cmd, result.returncode, captured, result.stderr.decode(errors="replace"),
        )

    def compose(
        self,
        project_dir: Path,
        *args: str,
        input: Optional[str] = None,
        stdin: Optional[IO[bytes]] = None,
        stdout: Optional[IO[bytes]] = None,
    ) -> subprocess.CompletedProcess:
        """Run ``docker compose *args`` inside ``project_dir``."""
        return self.run("compose", *args, cwd=project_dir, input=input, stdin=stdin, stdout=stdout)

    # Prerequisites

    def ensure_available(self):
        """Verify the docker binary and the compose plugin are usable."""
        if shutil.which(self.binary) is None:
            raise DockerUnavailable("Docker is not installed or not in PATH")
        if self.run("compose", "version").returncode != 0:
            raise DockerUnavailable("Docker Compose is not available")

    # Networks

    def network_exists(self, name: str) -> bool:
        return self.run("network", "inspect", name).returncode == 0

    def create_network(self, name: str) -> bool:
        result = self.run("network", "create", name)
        if result.returncode != 0:
            logger.error(f"Failed to create network {name}: {result.stderr.strip()}")
            return False
        logger.info(f"Created network: {name}")
        return True

    def list_networks(self) -> List[Dict[str, Any]]:
        result = self.run("network", "ls", "--format", "{{json .}}")
        if result.returncode != 0:
            return []
        return parse_json_lines(result.stdout)

    # Volumes, containers, stats

    def list_volumes(self) -> List[Dict[str, Any]]:
        result = self.run("volume", "ls", "--format", "{{json .}}")
        if result.returncode != 0:
            return []
        return parse_json_lines(result.stdout)

    def container_running(self, name: str) -> bool:
        """True when a running container's name contains ``name``."""
        result = self.run("ps", "--filter", f"name={name}", "--format", "{{.Names}}")
        if result.returncode != 0:
            return False
        return any(name in line for line in result.stdout.split())

    def stats(self, *containers: str) -> List[Dict[str, Any]]:
        result = self.run("stats", "--no-stream", "--format", "{{json .}}", *containers)
        if result.returncode != 0:
            return []
        return parse_json_lines(result.stdout)

    def exec_in(self, container: str, *command: str, stdout: Optional[IO[bytes]] = None) -> subprocess.CompletedProcess:
        return self.run("exec", container, *command, stdout=stdout)

    # Compose helpers

    def compose_ps(self, project_dir: Path, service: Optional[str] = None) -> List[ContainerState]:
        args = ["ps", "--all", "--format", "json"]
        if service:
            args.append(service)
        result = self.compose(project_dir, *args)
        if result.returncode != 0:
            logger.debug(f"compose ps failed in {project_dir}: {result.stderr.strip()}")
            return []
        try:
            return parse_compose_ps(result.stdout)
        except json.JSONDecodeError as e:
            logger.warning(f"Could not parse compose ps output: {e}")
            return []

    def compose_logs(
        self,
        project_dir: Path,
        service: Optional[str] = None,
        tail: Optional[int] = None,
        since: Optional[str] = None,
    ) -> List[str]:
        args = ["logs", "--no-color"]
        if tail is not None:
            args.append(f"--tail={tail}")
        if since:
            args.extend(["--since", since])
        if service:
            args.append(service)
        result = self.compose(project_dir, *args)
        if result.returncode != 0:
            return []
        return (result.stdout + result.stderr).splitlines()
