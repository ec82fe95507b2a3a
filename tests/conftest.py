"""Shared fixtures: a scripted docker runner, a fake clock and project trees."""

import json
import time
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

import pytest

from infrastack.docker import DockerCLI
from infrastack.templates import generate_proxy_compose, generate_stack_compose


@dataclass
class Call:
    args: Tuple[str, ...]
    cwd: Optional[Path]
    input: Optional[Union[str, bytes]]


@dataclass
class Rule:
    prefix: Tuple[str, ...]
    returncode: int
    stdout: Union[str, bytes]
    stderr: str
    once: bool
    used: bool = False


class FakeDocker(DockerCLI):
    """
    Records every docker invocation and answers from scripted rules.

    Rules match on an argument prefix; the most recently added rule wins, and
    ``once`` rules are consumed after their first match. Unmatched commands
    succeed with empty output. Streamed stdin is recorded as the call input
    and scripted output is written to a streamed stdout handle.
    """

    def __init__(self):
        super().__init__("docker")
        self.calls: List[Call] = []
        self.rules: List[Rule] = []

    def on(self, *prefix, returncode=0, stdout="", stderr="", once=False):
        self.rules.append(Rule(tuple(prefix), returncode, stdout, stderr, once))
        return self

    def run(self, *args, cwd=None, input=None, timeout=None, stdin=None, stdout=None):
        if stdin is not None:
            input = stdin.read()
        self.calls.append(Call(tuple(args), cwd, input))
        for rule in reversed(self.rules):
            if rule.used or args[:len(rule.prefix)] != rule.prefix:
                continue
            if rule.once:
                rule.used = True
            return self._answer(args, rule.returncode, rule.stdout, rule.stderr, stdout)
        return self._answer(args, 0, "", "", stdout)

    def _answer(self, args, returncode, out, err, stdout):
        if stdout is None:
            return subprocess.CompletedProcess([self.binary, *args], returncode, out, err)
        stdout.write(out.encode() if isinstance(out, str) else out)
        return subprocess.CompletedProcess([self.binary, *args], returncode, None, err)

    @property
    def commands(self) -> List[str]:
        return [" ".join(call.args) for call in self.calls]

    def ran(self, *prefix) -> bool:
        return any(call.args[:len(prefix)] == prefix for call in self.calls)

    def index(self, *prefix) -> int:
        for i, call in enumerate(self.calls):
            if call.args[:len(prefix)] == prefix:
                return i
        raise AssertionError(f"docker {' '.join(prefix)} was not run")

    def find(self, *prefix) -> Call:
        return self.calls[self.index(*prefix)]


class FakeClock:
    """Stands in for the ``time`` module; sleeping only advances the clock."""

    def __init__(self):
        self.now = 0.0
        self.epoch = time.time()
        self.sleeps: List[float] = []

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def monotonic(self):
        return self.now

    def time(self):
        return self.epoch + self.now


def container(name, service, state="running", health=""):
    return {"Name": name, "Service": service, "State": state, "Health": health, "Status": ""}


def ps_json(*rows) -> str:
    return "\n".join(json.dumps(row) for row in rows)


PROXY_ENV = """\
ACME_EMAIL=ops@acme.io
TRAEFIK_DASHBOARD_DOMAIN=traefik.acme.io
TRAEFIK_DASHBOARD_AUTH='admin:$apr1$Hk2s$abc'
API_INSECURE=false
"""

STACK_ENV = """\
STACK_NAME=dotnet-app
DOTNET_IMAGE=ghcr.io/acme/api:1.2
DOMAIN=api.acme.io
POSTGRES_USER=app_user
POSTGRES_PASSWORD=S3cure-Passw0rd-42
POSTGRES_DB=appdb
JWT_SECRET=q7Vn2Lr8Xw4Tz1Kp9Bd6Hs3Mf5Jc0Ga8Ye2Uo4Wi
TEST_ENDPOINT=false
"""


@pytest.fixture
def docker():
    return FakeDocker()


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    for module in ("services", "core", "proxy", "stack", "orchestrate", "backup"):
        monkeypatch.setattr(f"infrastack.{module}.time", fake)
    return fake


@pytest.fixture
def docker_on_path(monkeypatch):
    monkeypatch.setattr("infrastack.docker.shutil.which", lambda name: f"/usr/bin/{name}")


@pytest.fixture
def project(tmp_path, monkeypatch):
    """A project root with the Traefik stack and one configured application stack."""
    monkeypatch.delenv("COMPOSE_PROJECT_NAME", raising=False)

    proxy = tmp_path / "reverse-proxy" / "traefik"
    proxy.mkdir(parents=True)
    (proxy / "docker-compose.yml").write_text(generate_proxy_compose())
    (proxy / ".env").write_text(PROXY_ENV)
    (proxy / ".env.example").write_text("TRAEFIK_DASHBOARD_DOMAIN=traefik.acme.io\n")

    stack = tmp_path / "stacks" / "dotnet-app"
    stack.mkdir(parents=True)
    (stack / "docker-compose.yml").write_text(generate_stack_compose("dotnet-app"))
    (stack / ".env").write_text(STACK_ENV)
    (stack / ".env.example").write_text("DOMAIN=api.acme.io\nPOSTGRES_PASSWORD=\n")
    return tmp_path


@pytest.fixture
def proxy_dir(project):
    return project / "reverse-proxy" / "traefik"


@pytest.fixture
def stack_dir(project):
    return project / "stacks" / "dotnet-app"
