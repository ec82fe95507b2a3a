"""
Backup and restore of an application stack.

Handles:
- Stack archives: metadata, compose file, env template, config and database dump
- Optional volume snapshots through a throwaway alpine container
- Retention cleanup and backup listing
- Restore with a safety dump of the current database
"""

import re
import gzip
import time
import shutil
import socket
import getpass
import logging
import tarfile
import tempfile
from pathlib import Path
from typing import Optional, Dict, List, Any
from dataclasses import dataclass, field
from datetime import datetime

from . import console
from .config import StackEnv, load_env_file, ENV_FILE, ENV_EXAMPLE_FILE, COMPOSE_FILE
from .docker import DockerCLI
from .errors import BackupError, Cancelled
from .services import ServiceManager

logger = logging.getLogger(__name__)

INFO_FILE = "backup_info.txt"
CONFIG_DIR = "config"
RESTART_WAIT_SECONDS = 5
RESTORE_SETTLE_SECONDS = 10
DB_START_WAIT_SECONDS = 5
DB_READY_ATTEMPTS = 30
RECENT_BACKUPS = 5
AVAILABLE_BACKUPS = 10
VOLUME_IMAGE = "alpine"


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def _human_size(size_bytes: float) -> str:
    for unit in ["B", "KB", "MB", "GB"]:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


def _inside(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def extract_archive(archive: Path, destination: Path):
    """
    Extract a ``.tar.gz`` into ``destination``.

    Members with absolute paths, ``..`` components or links pointing outside
    ``destination`` are refused before anything is written.
    """
    root = destination.resolve()
    with tarfile.open(archive, "r:gz") as tar:
        members = tar.getmembers()
        for member in members:
            target = (root / member.name).resolve()
            if Path(member.name).is_absolute() or ".." in Path(member.name).parts or not _inside(target, root):
                raise BackupError(f"Refusing unsafe path in archive: {member.name}")
            if member.issym() or member.islnk():
                link_base = target.parent if member.issym() else root
                if Path(member.linkname).is_absolute() or not _inside((link_base / member.linkname).resolve(), root):
                    raise BackupError(f"Refusing unsafe link in archive: {member.name}")
        tar.extractall(destination, members=members)


@dataclass
class BackupInfo:
    """Information about a backup archive."""
    stack: str
    path: Path
    timestamp: datetime
    size_bytes: int
    database: Optional[str] = None
    volumes: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)

    @property
    def size_human(self) -> str:
        return _human_size(self.size_bytes)

    @classmethod
    def from_archive(cls, stack: str, path: Path) -> "BackupInfo":
        stat = path.stat()
        return cls(
            stack=stack,
            path=path,
            timestamp=datetime.fromtimestamp(stat.st_mtime),
            size_bytes=stat.st_size,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack": self.stack,
            "path": str(self.path),
            "timestamp": self.timestamp.isoformat(),
            "size_bytes": self.size_bytes,
            "size_human": self.size_human,
            "database": self.database,
            "volumes": self.volumes,
            "files": self.files,
        }


@dataclass
class RestoreInfo:
    """Outcome of a restore."""
    stack: str
    archive: Path
    safety_backup: Optional[Path] = None
    database_restored: bool = False
    files_restored: List[str] = field(default_factory=list)
    services_running: bool = False


class BackupManager:
    """
    Backs up and restores one ``stacks/<name>`` directory.

    Archives are named ``<STACK_NAME>_backup_<YYYYmmdd_HHMMSS>.tar.gz`` and
    live in ``BACKUP_PATH``. The real ``.env`` is never archived.
    """

    def __init__(self, stack_dir: Path, docker: Optional[DockerCLI] = None, assume_yes: bool = False):
        self.stack_dir = Path(stack_dir)
        self.docker = docker or DockerCLI()
        self.assume_yes = assume_yes
        env = load_env_file(
            self.stack_dir / ENV_FILE,
            ("POSTGRES_USER", "POSTGRES_DB", "POSTGRES_PASSWORD"),
        )
        self.env = StackEnv.from_env(env, self.stack_dir)
        self.backup_dir: Path = self.env.backup_dir

    @property
    def archive_pattern(self) -> str:
        return f"{self.env.stack_name}_backup_*.tar.gz"

    # Backup

    def create(self, include_volumes: bool = False) -> BackupInfo:
        env = self.env
        console.banner(f"{env.stack_name} - Backup", style="magenta")
        console.success("Configuration loaded")
        console.plain(f"   Stack: {env.stack_name}", style="blue")
        console.plain(f"   Backup directory: {self.backup_dir}", style="blue")
        console.plain()

        if not (self.stack_dir / COMPOSE_FILE).is_file():
            raise BackupError(f"{COMPOSE_FILE} not found in {self.stack_dir}")
        self.backup_dir.mkdir(parents=True, exist_ok=True)

        timestamp = _timestamp()
        archive = self.backup_dir / f"{env.stack_name}_backup_{timestamp}.tar.gz"
        info = BackupInfo(stack=env.stack_name, path=archive, timestamp=datetime.now(), size_bytes=0)

        console.step("🛑 Stopping application temporarily...")
        result = self.docker.compose(self.stack_dir, "stop", "app")
        if result.returncode != 0:
            logger.debug(f"compose stop app failed (ignored): {result.stderr.strip()}")
        console.plain()

        try:
            console.step("📦 Creating backup archive...")
            with tempfile.TemporaryDirectory(prefix="infrastack-backup-") as tmp:
                staging = Path(tmp)
                info.files = self._stage_files(staging, timestamp)
                info.database = self._dump_database(staging)
                if include_volumes:
                    info.volumes = self._snapshot_volumes(staging)

                console.step("📦 Compressing backup...")
                with tarfile.open(archive, "w:gz") as tar:
                    for item in sorted(staging.iterdir()):
                        tar.add(item, arcname=item.name)
        except (OSError, tarfile.TarError) as e:
            if archive.exists():
                archive.unlink()
            raise BackupError(f"Failed to create backup archive: {e}")
        finally:
            self._restart(RESTART_WAIT_SECONDS, "🚀 Restarting application...")

        info.size_bytes = archive.stat().st_size
        logger.info(f"Backup created: {archive} ({info.size_human})")
        console.success(f"Backup created: {archive}")
        console.plain(f"   Size: {info.size_human}", style="blue")
        console.plain()

        retention = env.backup_retention_days
        console.step(f"🧹 Cleaning up old backups (keeping last {retention} days)...")
        self.cleanup_old_backups()
        console.plain("📋 Recent backups:", style="blue")
        self.print_backups(limit=RECENT_BACKUPS)
        console.plain()

        console.banner("Backup Completed Successfully!", style="green")
        console.plain("📝 Next steps:", style="blue")
        console.bullet_list([
            "• Store backup securely offsite",
            "• Test restore procedure periodically",
            "• Verify backup integrity",
        ])
        console.plain()
        console.plain("💡 Restore command:", style="blue")
        console.plain(f"   infrastack restore {self.stack_dir.name} {archive}")
        console.plain()
        return info

    def _stage_files(self, staging: Path, timestamp: str) -> List[str]:
        env = self.env
        (staging / INFO_FILE).write_text(
            "Backup Information\n"
            "==================\n"
            f"Stack Name: {env.stack_name}\n"
            f"Timestamp: {timestamp}\n"
            f"Date: {datetime.now().strftime('%a %b %d %H:%M:%S %Y')}\n"
            f"Host: {socket.gethostname()}\n"
            f"User: {getpass.getuser()}\n"
        )
        files = [INFO_FILE]

        console.plain(f"   • Backing up {COMPOSE_FILE}...", style="blue")
        shutil.copy2(self.stack_dir / COMPOSE_FILE, staging / COMPOSE_FILE)
        files.append(COMPOSE_FILE)

        console.plain(f"   • Backing up {ENV_EXAMPLE_FILE}...", style="blue")
        if (self.stack_dir / ENV_EXAMPLE_FILE).is_file():
            shutil.copy2(self.stack_dir / ENV_EXAMPLE_FILE, staging / ENV_EXAMPLE_FILE)
            files.append(ENV_EXAMPLE_FILE)

        if (self.stack_dir / CONFIG_DIR).is_dir():
            console.plain("   • Backing up config directory...", style="blue")
            shutil.copytree(self.stack_dir / CONFIG_DIR, staging / CONFIG_DIR, symlinks=True)
            files.append(CONFIG_DIR)
        return files

    def _dump_database(self, staging: Path) -> Optional[str]:
        """Write ``db_backup_<db>.sql``; returns its name, or None when skipped."""
        env = self.env
        if not self.docker.container_running(env.db_container):
            console.warning("Database container not running, skipping database backup")
            return None

        console.step("💾 Backing up PostgreSQL database...")
        dump = staging / f"db_backup_{env.postgres_db}.sql"
        with open(dump, "wb") as f:
            result = self.docker.exec_in(
                env.db_container,
                "pg_dump", "-U", env.postgres_user, "-d", env.postgres_db, "-F", "p", "-b",
                stdout=f,
            )
        if result.returncode != 0:
            dump.unlink()
            logger.error(f"pg_dump failed: {result.stderr.strip()}")
            console.plain("   ❌ Database backup failed", style="red")
            return None

        size = _human_size(dump.stat().st_size)
        console.plain(f"   ✅ Database backed up ({size})", style="green")
        return dump.name

    def _snapshot_volumes(self, staging: Path) -> List[str]:
        """Tar every ``<STACK_NAME>...data`` volume into the staging directory."""
        pattern = re.compile(re.escape(self.env.stack_name) + r".*data")
        volumes = [
            vol.get("Name", "") for vol in self.docker.list_volumes()
            if pattern.search(vol.get("Name", ""))
        ]
        if not volumes:
            console.info("No data volumes found for this stack")
            return []

        console.step("📂 Backing up application data volumes...")
        saved = []
        for volume in volumes:
            result = self.docker.run(
                "run", "--rm",
                "-v", f"{volume}:/volume:ro",
                "-v", f"{staging}:/backup",
                VOLUME_IMAGE,
                "tar", "czf", f"/backup/volume_{volume}.tar.gz", "-C", "/volume", ".",
            )
            if result.returncode != 0:
                console.warning(f"Could not back up volume {volume}")
                logger.debug(result.stderr)
                continue
            console.plain(f"   ✅ {volume}", style="green")
            saved.append(volume)
        return saved

    def _restart(self, wait_seconds: int, message: str) -> bool:
        console.step(message)
        self.docker.compose(self.stack_dir, "up", "-d")
        console.plain()
        console.step("⏳ Waiting for services to be healthy...")
        time.sleep(wait_seconds)
        if ServiceManager(self.stack_dir, self.docker).any_up():
            console.success("Services are running")
            console.plain()
            return True
        console.plain("⚠️  Warning: Some services may not be running", style="red")
        console.plain()
        return False

    # Listing and retention

    def list_backups(self) -> List[BackupInfo]:
        """Archives of this stack, newest first."""
        if not self.backup_dir.is_dir():
            return []
        archives = sorted(
            self.backup_dir.glob(self.archive_pattern),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        return [BackupInfo.from_archive(self.env.stack_name, path) for path in archives]

    def print_backups(self, limit: Optional[int] = None) -> int:
        rows = [
            (b.path.name, b.size_human, b.timestamp.strftime("%Y-%m-%d %H:%M:%S"))
            for b in self.list_backups()[:limit]
        ]
        shown = console.table(["ARCHIVE", "SIZE", "DATE"], rows)
        if not shown:
            console.plain("No backups found")
        return shown

    def cleanup_old_backups(self) -> List[Path]:
        """Delete archives older than ``BACKUP_RETENTION_DAYS``."""
        cutoff = time.time() - self.env.backup_retention_days * 86400
        removed = []
        for backup in self.list_backups():
            if backup.path.stat().st_mtime < cutoff:
                backup.path.unlink()
                removed.append(backup.path)
                logger.info(f"Removed old backup: {backup.path.name}")
        return removed

    # Restore

    def restore(self, archive: Optional[Path] = None) -> RestoreInfo:
        """
        Replace the stack's database and configuration with an archive.

        WARNING: This overwrites the current database!
        """
        env = self.env
        console.banner(f"{env.stack_name} - Restore", style="magenta")
        console.success("Configuration loaded")
        console.plain()

        if archive is None:
            console.plain(f"Usage: infrastack restore {self.stack_dir.name} <backup-file>", style="yellow")
            console.plain()
            console.plain("📋 Available backups:", style="yellow")
            if self.backup_dir.is_dir():
                self.print_backups(limit=AVAILABLE_BACKUPS)
            else:
                console.plain("No backup directory found")
            console.plain()
            raise BackupError("Backup file not specified")

        archive = Path(archive)
        if not archive.is_file():
            raise BackupError(f"Backup file does not exist: {archive}")

        selected = BackupInfo.from_archive(env.stack_name, archive)
        console.plain("📦 Selected backup:", style="blue")
        console.plain(f"   File: {archive}", style="blue")
        console.plain(f"   Size: {selected.size_human}", style="blue")
        console.plain(f"   Date: {selected.timestamp.strftime('%Y-%m-%d %H:%M:%S')}", style="blue")
        console.plain()

        console.plain("⚠️  WARNING: This will overwrite current data and configurations!", style="red")
        console.bullet_list([
            "• Application will be stopped",
            "• Database will be replaced",
            "• Configuration files will be replaced",
        ])
        console.plain()
        if not self._confirm_restore():
            raise Cancelled("Restore cancelled.", exit_code=0)

        console.plain()
        console.step("🚀 Starting restore process...")
        info = RestoreInfo(stack=env.stack_name, archive=archive)
        info.safety_backup = self._safety_backup()

        console.step("🛑 Stopping services...")
        self.docker.compose(self.stack_dir, "down")
        console.plain("   ✅ Services stopped", style="green")
        console.plain()

        with tempfile.TemporaryDirectory(prefix="infrastack-restore-") as tmp:
            staging = Path(tmp)
            console.step("📂 Extracting backup...")
            try:
                extract_archive(archive, staging)
            except (OSError, tarfile.TarError) as e:
                raise BackupError(f"Could not extract {archive}: {e}")
            console.plain("   ✅ Backup extracted", style="green")
            console.plain()

            if (staging / INFO_FILE).is_file():
                console.plain("📋 Backup Information:", style="blue")
                console.bullet_list(console.lines_of((staging / INFO_FILE).read_text()), indent="")
                console.plain()

            self._start_database()
            info.database_restored = self._restore_database(staging)
            info.files_restored = self._restore_files(staging)

            snapshots = sorted(p.name for p in staging.glob("volume_*.tar.gz"))
            if snapshots:
                console.info("Volume snapshots in the archive are not restored automatically:")
                console.bullet_list(snapshots)
                console.plain()

        info.services_running = self._restart(RESTORE_SETTLE_SECONDS, "🚀 Starting all services...")

        console.banner("Restore Completed Successfully!", style="green")
        console.plain("📝 Next steps:", style="blue")
        console.bullet_list([
            "1. Verify services: docker compose ps",
            "2. Check logs: docker compose logs -f",
            f"3. Test application: curl {env.health_url}",
            f"4. Verify database: docker compose exec postgres psql -U {env.postgres_user} -d {env.postgres_db}",
        ])
        console.plain()
        if info.safety_backup:
            console.plain("💡 Safety backup location:", style="blue")
            console.plain(f"   {info.safety_backup}")
            console.plain()
        return info

    def _confirm_restore(self) -> bool:
        question = "Are you sure you want to continue? Type 'yes' to proceed"
        if self.assume_yes:
            console.plain(f"{question}: yes")
            return True
        return console.ask(question) == "yes"

    def _safety_backup(self) -> Optional[Path]:
        """Gzip a dump of the current database; failure only warns."""
        env = self.env
        console.step("💾 Creating safety backup of current state...")
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        path = self.backup_dir / f"{env.stack_name}_pre_restore_{_timestamp()}.tar.gz"
        with tempfile.TemporaryFile() as raw:
            result = self.docker.compose(
                self.stack_dir, "exec", "-T", "postgres",
                "pg_dump", "-U", env.postgres_user, "-d", env.postgres_db,
                stdout=raw,
            )
            if result.returncode != 0:
                logger.debug(f"Safety dump failed: {result.stderr.strip()}")
                console.warning("Safety backup skipped (database not reachable)")
                console.plain()
                return None
            raw.seek(0)
            with gzip.open(path, "wb") as f:
                shutil.copyfileobj(raw, f)
        console.plain(f"   ✅ Safety backup created: {path}", style="green")
        console.plain()
        return path

    def _start_database(self):
        env = self.env
        console.step("🚀 Starting database...")
        if self.docker.compose(self.stack_dir, "up", "-d", "postgres").returncode != 0:
            raise BackupError("Failed to start the database service")
        time.sleep(DB_START_WAIT_SECONDS)

        console.step("⏳ Waiting for database to be ready...")
        for _ in range(DB_READY_ATTEMPTS):
            result = self.docker.compose(
                self.stack_dir, "exec", "-T", "postgres", "pg_isready", "-U", env.postgres_user,
            )
            if result.returncode == 0:
                console.plain("   ✅ Database is ready", style="green")
                console.plain()
                return
            time.sleep(1)
        raise BackupError("Database did not become ready in time")

    def _restore_database(self, staging: Path) -> bool:
        env = self.env
        dump = staging / f"db_backup_{env.postgres_db}.sql"
        if not dump.is_file():
            console.warning("No database backup found in archive")
            console.plain()
            return False

        console.step("💾 Restoring database...")
        recreate = (
            f'DROP DATABASE IF EXISTS "{env.postgres_db}";\n'
            f'CREATE DATABASE "{env.postgres_db}";\n'
        )
        result = self.docker.compose(
            self.stack_dir, "exec", "-T", "postgres", "psql", "-U", env.postgres_user, "-d", "postgres",
            input=recreate,
        )
        if result.returncode != 0:
            raise BackupError(f"Could not recreate database {env.postgres_db}: {result.stderr.strip()}")

        with open(dump, "rb") as f:
            result = self.docker.compose(
                self.stack_dir, "exec", "-T", "postgres", "psql", "-U", env.postgres_user, "-d", env.postgres_db,
                stdin=f,
            )
        if result.returncode != 0:
            raise BackupError(f"Database restore failed: {result.stderr.strip()}")
        console.plain("   ✅ Database restored", style="green")
        console.plain()
        return True

    def _restore_files(self, staging: Path) -> List[str]:
        restored = []
        if (staging / COMPOSE_FILE).is_file():
            console.step(f"📝 Restoring {COMPOSE_FILE}...")
            shutil.copy2(staging / COMPOSE_FILE, self.stack_dir / COMPOSE_FILE)
            restored.append(COMPOSE_FILE)
            console.plain(f"   ✅ {COMPOSE_FILE} restored", style="green")

        if (staging / CONFIG_DIR).is_dir():
            console.step("⚙️  Restoring configuration files...")
            target = self.stack_dir / CONFIG_DIR
            if target.exists():
                shutil.rmtree(target)
            shutil.copytree(staging / CONFIG_DIR, target, symlinks=True)
            restored.append(CONFIG_DIR)
            console.plain("   ✅ Configuration files restored", style="green")
        console.plain()
        return restored
