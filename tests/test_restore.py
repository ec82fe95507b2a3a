import gzip
import io
import tarfile

import pytest

from infrastack.backup import BackupManager, extract_archive
from infrastack.errors import BackupError, Cancelled

from conftest import container, ps_json

DUMP = "CREATE TABLE orders (id int);\n"
RESTORED_COMPOSE = "services:\n  app:\n    image: restored\n"


def add_text(tar, name, text):
    data = text.encode()
    info = tarfile.TarInfo(name)
    info.size = len(data)
    tar.addfile(info, io.BytesIO(data))


@pytest.fixture
def archive(stack_dir):
    backups = stack_dir / "backups"
    backups.mkdir()
    path = backups / "dotnet-app_backup_20240101_020000.tar.gz"
    with tarfile.open(path, "w:gz") as tar:
        add_text(tar, "backup_info.txt", "Backup Information\nStack Name: dotnet-app\n")
        add_text(tar, "docker-compose.yml", RESTORED_COMPOSE)
        add_text(tar, "config/appsettings.json", '{"restored": true}')
        add_text(tar, "db_backup_appdb.sql", DUMP)
    return path


@pytest.fixture
def db(docker):
    docker.on("compose", "exec", "-T", "postgres", "pg_dump", stdout="-- current state\n")
    docker.on("compose", "ps", stdout=ps_json(container("dotnet-app-app", "app")))
    return docker


def test_restore(stack_dir, archive, db, clock):
    (stack_dir / "config").mkdir()
    (stack_dir / "config" / "stale.json").write_text("{}")

    info = BackupManager(stack_dir, db, assume_yes=True).restore(archive)

    assert info.database_restored
    assert info.files_restored == ["docker-compose.yml", "config"]
    assert info.services_running
    assert (stack_dir / "docker-compose.yml").read_text() == RESTORED_COMPOSE
    assert (stack_dir / "config" / "appsettings.json").exists()
    assert not (stack_dir / "config" / "stale.json").exists()

    assert info.safety_backup.name.startswith("dotnet-app_pre_restore_")
    with gzip.open(info.safety_backup, "rt") as f:
        assert f.read() == "-- current state\n"

    recreate = db.find("compose", "exec", "-T", "postgres", "psql", "-U", "app_user", "-d", "postgres")
    assert 'DROP DATABASE IF EXISTS "appdb";' in recreate.input
    assert 'CREATE DATABASE "appdb";' in recreate.input
    load = db.find("compose", "exec", "-T", "postgres", "psql", "-U", "app_user", "-d", "appdb")
    assert load.input == DUMP.encode()

    order = [
        db.index("compose", "exec", "-T", "postgres", "pg_dump"),
        db.index("compose", "down"),
        db.index("compose", "up", "-d", "postgres"),
        db.index("compose", "exec", "-T", "postgres", "pg_isready"),
        db.index("compose", "exec", "-T", "postgres", "psql"),
    ]
    assert order == sorted(order)
    assert db.commands[-2] == "compose up -d"
    assert clock.sleeps == [5, 10]


def test_restore_without_archive_lists_backups(stack_dir, archive, docker, capsys):
    with pytest.raises(BackupError, match="Backup file not specified"):
        BackupManager(stack_dir, docker).restore(None)
    assert archive.name in capsys.readouterr().out
    assert not docker.calls


def test_restore_without_backup_directory(stack_dir, docker, capsys):
    with pytest.raises(BackupError):
        BackupManager(stack_dir, docker).restore(None)
    assert "No backup directory found" in capsys.readouterr().out


def test_restore_missing_file(stack_dir, docker):
    with pytest.raises(BackupError, match="does not exist"):
        BackupManager(stack_dir, docker).restore(stack_dir / "nope.tar.gz")


def test_restore_requires_typing_yes(stack_dir, archive, docker, monkeypatch):
    monkeypatch.setattr("infrastack.console.Prompt.ask", lambda *args, **kwargs: "y")
    with pytest.raises(Cancelled) as exc:
        BackupManager(stack_dir, docker).restore(archive)
    assert exc.value.exit_code == 0
    assert not docker.calls


def test_restore_confirmed_by_prompt(stack_dir, archive, db, clock, monkeypatch):
    monkeypatch.setattr("infrastack.console.Prompt.ask", lambda *args, **kwargs: "yes")
    assert BackupManager(stack_dir, db).restore(archive).database_restored


def test_safety_backup_is_best_effort(stack_dir, archive, db, clock):
    db.on("compose", "exec", "-T", "postgres", "pg_dump", returncode=1, stderr="service not running")
    info = BackupManager(stack_dir, db, assume_yes=True).restore(archive)
    assert info.safety_backup is None
    assert info.database_restored


def test_database_never_ready(stack_dir, archive, db, clock):
    db.on("compose", "exec", "-T", "postgres", "pg_isready", returncode=2)
    with pytest.raises(BackupError, match="did not become ready"):
        BackupManager(stack_dir, db, assume_yes=True).restore(archive)
    assert clock.sleeps == [5] + [1] * 30
    assert not db.ran("compose", "exec", "-T", "postgres", "psql")


def test_failed_dump_load(stack_dir, archive, db, clock):
    db.on("compose", "exec", "-T", "postgres", "psql", "-U", "app_user", "-d", "appdb",
          returncode=1, stderr="syntax error")
    with pytest.raises(BackupError, match="Database restore failed: syntax error"):
        BackupManager(stack_dir, db, assume_yes=True).restore(archive)


def test_latin1_dumps_pass_through_unchanged(stack_dir, db, clock):
    current = b"INSERT INTO cities VALUES ('M\xfcnchen');\n"
    restored = b"INSERT INTO cities VALUES ('caf\xe9');\n"
    db.on("compose", "exec", "-T", "postgres", "pg_dump", stdout=current)
    path = stack_dir / "latin1.tar.gz"
    with tarfile.open(path, "w:gz") as tar:
        info = tarfile.TarInfo("db_backup_appdb.sql")
        info.size = len(restored)
        tar.addfile(info, io.BytesIO(restored))

    result = BackupManager(stack_dir, db, assume_yes=True).restore(path)

    with gzip.open(result.safety_backup, "rb") as f:
        assert f.read() == current
    load = db.find("compose", "exec", "-T", "postgres", "psql", "-U", "app_user", "-d", "appdb")
    assert load.input == restored
    assert result.database_restored


def test_archive_without_dump(stack_dir, db, clock):
    path = stack_dir / "config-only.tar.gz"
    with tarfile.open(path, "w:gz") as tar:
        add_text(tar, "docker-compose.yml", RESTORED_COMPOSE)

    info = BackupManager(stack_dir, db, assume_yes=True).restore(path)

    assert not info.database_restored
    assert info.files_restored == ["docker-compose.yml"]
    assert not db.ran("compose", "exec", "-T", "postgres", "psql")


@pytest.mark.parametrize("name", ["../escape.txt", "/tmp/absolute.txt", "config/../../escape.txt"])
def test_extract_refuses_path_traversal(tmp_path, name):
    path = tmp_path / "evil.tar.gz"
    with tarfile.open(path, "w:gz") as tar:
        add_text(tar, name, "boom")
    target = tmp_path / "out"
    target.mkdir()

    with pytest.raises(BackupError, match="unsafe"):
        extract_archive(path, target)
    assert not (tmp_path / "escape.txt").exists()


def test_extract_refuses_escaping_symlink(tmp_path):
    path = tmp_path / "evil.tar.gz"
    with tarfile.open(path, "w:gz") as tar:
        link = tarfile.TarInfo("config/passwd")
        link.type = tarfile.SYMTYPE
        link.linkname = "../../../etc/passwd"
        tar.addfile(link)
    target = tmp_path / "out"
    target.mkdir()

    with pytest.raises(BackupError, match="unsafe link"):
        extract_archive(path, target)
