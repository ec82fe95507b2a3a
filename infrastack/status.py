"""Unified status report for the proxy and every application stack."""

import re
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from . import console
from .config import InfraConfig
from .docker import DockerCLI
from .networks import print_networks

logger = logging.getLogger(__name__)

ERROR_PATTERN = re.compile(r"error|fail|exception|panic", re.IGNORECASE)
MAX_VOLUMES = 20
MAX_STATS = 10
RECENT_ERRORS = 5


class StatusReporter:
    """Prints the state of the host; reporting never fails the command."""

    def __init__(self, config: InfraConfig, docker: Optional[DockerCLI] = None):
        self.config = config
        self.docker = docker or DockerCLI()

    def report(self):
        console.plain("📊 INFRASTRUCTURE STATUS REPORT", style="bold")
        console.plain("================================")
        console.plain(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        console.plain(f"Project: {self.config.project_name}")

        console.section("🚦 TRAEFIK REVERSE PROXY:")
        self._compose_ps(self.config.proxy_dir, "Traefik")

        for name, stack_dir in self.config.stacks.items():
            console.section(f"🚀 {name.upper()} STACK:")
            self._compose_ps(stack_dir, name)

        console.section("🔗 DOCKER NETWORKS:")
        print_networks(self.docker, self.config.project_name)

        console.section("💾 DOCKER VOLUMES:")
        self._volumes()

        console.section(f"📈 RESOURCE USAGE (top {MAX_STATS} containers):")
        self._stats()

        console.section("⚠ RECENT ERRORS (last hour):")
        for label, path in self._all_stacks():
            if path.is_dir():
                console.plain(f"{path.name}:")
                errors = self.recent_errors(path)
                console.bullet_list(errors or ["No recent errors"], indent="  ")

        console.plain()
        console.success("Status check complete")

    def _all_stacks(self):
        yield "Traefik", self.config.proxy_dir
        yield from self.config.stacks.items()

    def _compose_ps(self, path: Path, label: str):
        if not path.is_dir():
            console.plain(f"  {label} directory not found")
            return
        result = self.docker.compose(path, "ps")
        lines = console.lines_of(result.stdout)
        if result.returncode != 0 or len(lines) <= 1:
            console.plain(f"  {label} not running")
            return
        console.bullet_list(lines, indent="")

    def _volumes(self):
        rows = [
            (vol.get("Name", ""), vol.get("Driver", ""), vol.get("Mountpoint", ""))
            for vol in self.docker.list_volumes()
            if self.config.project_name in vol.get("Name", "")
        ][:MAX_VOLUMES]
        if not console.table(["NAME", "DRIVER", "MOUNTPOINT"], rows):
            console.plain("  No volumes found")

    def _stats(self):
        rows = [
            (s.get("Name", ""), s.get("CPUPerc", ""), s.get("MemUsage", ""), s.get("MemPerc", ""))
            for s in self.docker.stats()
        ][:MAX_STATS]
        if not console.table(["NAME", "CPU %", "MEM USAGE / LIMIT", "MEM %"], rows):
            console.plain("  Could not retrieve stats")

    def recent_errors(self, path: Path, since: str = "1h") -> List[str]:
        lines = self.docker.compose_logs(path, since=since)
        return [line for line in lines if ERROR_PATTERN.search(line)][-RECENT_ERRORS:]
