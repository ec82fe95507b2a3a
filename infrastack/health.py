"""
Health check for an application stack.

Handles:
- Container, database and endpoint checks with pass/fail counters
- Resource usage snapshot
- Recent log error scan
- Overall score and exit status
"""

import re
import logging
from pathlib import Path
from typing import Optional, Dict, List, Any
from dataclasses import dataclass, field
from datetime import datetime

from . import console
from .config import StackEnv, load_env_file, ENV_FILE
from .docker import DockerCLI, ContainerState
from .stack import probe_endpoint

logger = logging.getLogger(__name__)

LOG_ERROR_PATTERN = re.compile(r"error|exception|fatal", re.IGNORECASE)
LOG_TAIL = 100


@dataclass
class CheckResult:
    """Result of a single health check."""
    name: str
    category: str
    passed: bool
    message: str = ""


@dataclass
class HealthReport:
    """Aggregated outcome of all checks of a stack."""
    stack: str
    checks: List[CheckResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    resources: Dict[str, str] = field(default_factory=dict)
    critical: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def total(self) -> int:
        return len(self.checks)

    @property
    def passed(self) -> int:
        return sum(1 for c in self.checks if c.passed)

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def score(self) -> int:
        return self.passed * 100 // self.total if self.total else 0

    @property
    def exit_code(self) -> int:
        return 1 if self.critical or self.failed else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack": self.stack,
            "timestamp": self.timestamp.isoformat(),
            "checks": [
                {
                    "name": c.name,
                    "category": c.category,
                    "passed": c.passed,
                    "message": c.message,
                }
                for c in self.checks
            ],
            "skipped": self.skipped,
            "resources": self.resources,
            "critical": self.critical,
            "summary": {
                "total": self.total,
                "passed": self.passed,
                "failed": self.failed,
                "score": self.score,
            },
        }


class HealthChecker:
    """Runs the health checks of one stack directory."""

    def __init__(self, stack_dir: Path, docker: Optional[DockerCLI] = None):
        self.stack_dir = Path(stack_dir)
        self.docker = docker or DockerCLI()
        self.env = StackEnv.from_env(load_env_file(self.stack_dir / ENV_FILE), self.stack_dir)
        self._states: List[ContainerState] = []

    def check_all(self) -> HealthReport:
        env = self.env
        report = HealthReport(stack=env.stack_name)
        self._states = self.docker.compose_ps(self.stack_dir)

        report.checks.append(CheckResult(
            "Docker Compose services", "containers", bool(self._states),
            f"{len(self._states)} containers",
        ))
        report.checks.append(self._container_check("Application container", env.app_container))
        report.checks.append(self._container_check("Database container", env.db_container))

        report.checks.append(self._exec_check(
            "PostgreSQL connection", "database",
            "pg_isready", "-U", env.postgres_user,
        ))
        report.checks.append(self._database_exists())

        if env.domain:
            healthy = probe_endpoint(env.health_url, verify=False)
            report.checks.append(CheckResult(
                "HTTPS endpoint", "application", healthy, env.health_url,
            ))
        else:
            report.skipped.append("HTTPS endpoint")

        app = [s for s in self._states if s.service == "app"]
        report.checks.append(CheckResult(
            "Container health status", "application",
            any(s.is_healthy or s.is_up for s in app),
            app[0].health or app[0].state if app else "not found",
        ))

        report.resources = self._resources()
        report.checks.append(self._log_check())
        report.critical = [
            f"{s.name}: {s.health or s.state}" for s in self._states if s.is_failed
        ]
        return report

    def _container_check(self, label: str, container: str) -> CheckResult:
        up = any(s.name == container and s.is_up for s in self._states)
        return CheckResult(label, "containers", up, container)

    def _exec_check(self, label: str, category: str, *command: str) -> CheckResult:
        result = self.docker.compose(self.stack_dir, "exec", "-T", "postgres", *command)
        return CheckResult(label, category, result.returncode == 0, result.stderr.strip()[:200])

    def _database_exists(self) -> CheckResult:
        env = self.env
        result = self.docker.compose(
            self.stack_dir, "exec", "-T", "postgres", "psql", "-U", env.postgres_user, "-lqt",
        )
        names = {line.split("|")[0].strip() for line in result.stdout.splitlines()}
        exists = result.returncode == 0 and env.postgres_db in names
        return CheckResult("Database exists", "database", exists, env.postgres_db)

    def _resources(self) -> Dict[str, str]:
        result = self.docker.compose(self.stack_dir, "ps", "-q", "app")
        container_id = result.stdout.strip()
        if not container_id:
            return {}
        stats = self.docker.stats(container_id)
        if not stats:
            return {"cpu": "N/A", "memory": "N/A"}
        return {
            "cpu": stats[0].get("CPUPerc", "N/A"),
            "memory": stats[0].get("MemUsage", "N/A"),
        }

    def _log_check(self) -> CheckResult:
        lines = self.docker.compose_logs(self.stack_dir, "app", tail=LOG_TAIL)
        errors = sum(1 for line in lines if LOG_ERROR_PATTERN.search(line))
        if errors:
            return CheckResult("Recent logs", "logs", False, f"Found {errors} errors in recent logs")
        return CheckResult("Recent logs", "logs", True, "No errors in recent logs")


def render_report(report: HealthReport):
    """Print a report the way the health-check command shows it."""
    console.banner(f"{report.stack} - Health Check", style="magenta")

    headings = {
        "containers": "📦 Container Status:",
        "database": "💾 Database Health:",
        "application": "🌐 Application Health:",
        "logs": "📋 Recent Logs:",
    }
    current = None
    for check in report.checks:
        if check.category != current:
            if current is not None:
                console.plain()
            if check.category == "logs" and report.resources:
                _render_resources(report)
            current = check.category
            console.plain(headings.get(current, current), style="blue")
            if current == "application":
                for name in report.skipped:
                    console.warning(f"DOMAIN not set, skipping {name} check")
        if check.category == "logs":
            if check.passed:
                console.success(check.message)
            else:
                console.warning(check.message)
            continue
        outcome = "✅ OK" if check.passed else "❌ FAILED"
        console.plain(f"🔍 Checking {check.name}... {outcome}", style="green" if check.passed else "red")
    console.plain()

    console.banner("Health Check Summary", style="magenta")
    console.plain(f"Total Checks: {report.total}")
    console.plain(f"Passed:       {report.passed}", style="green")
    console.plain(f"Failed:       {report.failed}", style="red")
    console.plain()
    if report.total:
        console.plain(f"Health Score: {report.score}%", style="blue")
        console.plain()

    if report.critical:
        console.plain("❌ CRITICAL: Some services are down or unhealthy", style="red")
        console.bullet_list(report.critical)
        console.plain()
    elif report.failed:
        console.warning("WARNING: Some health checks failed")
        console.plain()
        console.plain("💡 Troubleshooting:", style="blue")
        console.bullet_list([
            "• Check logs: docker compose logs -f",
            "• Restart services: docker compose restart",
            "• Verify .env configuration",
        ])
        console.plain()
    else:
        console.success("All health checks passed!")
        console.plain()


def _render_resources(report: HealthReport):
    console.plain("💻 Resource Usage:", style="blue")
    console.plain(f"   CPU Usage:    {report.resources.get('cpu', 'N/A')}")
    console.plain(f"   Memory Usage: {report.resources.get('memory', 'N/A')}")
    console.plain()
