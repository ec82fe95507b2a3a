import json

import pytest

from infrastack import __main__ as cli
from infrastack.config import InfraConfig

from conftest import container, ps_json


@pytest.fixture
def fake(docker, clock, docker_on_path, monkeypatch):
    monkeypatch.setattr(cli, "DockerCLI", lambda: docker)
    return docker


def run(project, *argv):
    return cli.main(["--root", str(project), *argv])


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_unknown_stack(project, fake, capsys):
    assert run(project, "deploy", "stack", "nope") == 1
    assert "Unknown stack 'nope'" in capsys.readouterr().err


def test_deploy_proxy(project, fake):
    fake.on("ps", "--filter", "name=traefik", stdout="traefik\n")
    assert run(project, "deploy", "proxy") == 0


def test_deploy_failure_exits_one(project, fake, capsys):
    fake.on("compose", "up", returncode=1)
    assert run(project, "deploy", "proxy") == 1
    assert "Failed to start Traefik" in capsys.readouterr().err


def test_declined_confirmation_exits_one(project, fake, monkeypatch):
    env = project / "reverse-proxy" / "traefik" / ".env"
    env.write_text(env.read_text().replace("API_INSECURE=false", "API_INSECURE=true"))
    monkeypatch.setattr("infrastack.console.Confirm.ask", lambda *args, **kwargs: False)
    assert run(project, "deploy", "proxy") == 1


def test_yes_flag_skips_confirmation(project, fake):
    env = project / "reverse-proxy" / "traefik" / ".env"
    env.write_text(env.read_text().replace("API_INSECURE=false", "API_INSECURE=true"))
    fake.on("ps", "--filter", "name=traefik", stdout="traefik\n")
    assert run(project, "--yes", "deploy", "proxy") == 0


def test_networks(project, fake):
    assert run(project, "networks") == 0
    assert fake.ran("network", "inspect", "traefik-net")
    assert fake.ran("network", "inspect", "infraprod_internal")


def test_health_json(project, fake, capsys, monkeypatch):
    monkeypatch.setattr("infrastack.health.probe_endpoint", lambda url, verify=True: True)
    fake.on("compose", "ps", "--all", stdout=ps_json(
        container("dotnet-app-app", "app", "running", "healthy"),
        container("dotnet-app-postgres", "postgres", "exited"),
    ))

    assert run(project, "health", "dotnet-app", "--json") == 1
    data = json.loads(capsys.readouterr().out)
    assert data["critical"] == ["dotnet-app-postgres: exited"]


def test_backup_and_list(project, fake, capsys):
    fake.on("compose", "ps", stdout=ps_json(container("dotnet-app-app", "app")))
    assert run(project, "backup", "dotnet-app") == 0
    capsys.readouterr()

    assert run(project, "backups", "dotnet-app", "--json") == 0
    [backup] = json.loads(capsys.readouterr().out)
    assert backup["stack"] == "dotnet-app"
    assert backup["path"].endswith(".tar.gz")


def test_restore_without_archive_fails(project, fake, capsys):
    assert run(project, "restore", "dotnet-app") == 1
    assert "Backup file not specified" in capsys.readouterr().err


def test_restore_cancel_exits_zero(project, fake, monkeypatch, tmp_path, capsys):
    archive = tmp_path / "dotnet-app_backup_x.tar.gz"
    archive.write_bytes(b"")
    monkeypatch.setattr("infrastack.console.Prompt.ask", lambda *args, **kwargs: "no")
    assert run(project, "restore", "dotnet-app", str(archive)) == 0
    assert "Restore cancelled." in capsys.readouterr().out


def test_wait(project, fake):
    fake.on("compose", "ps", stdout=ps_json(container("dotnet-app-postgres", "postgres", "running", "healthy")))
    assert run(project, "wait", "postgres", "30", "5", "--stack", "dotnet-app") == 0
    assert fake.calls[-1].cwd == project.resolve() / "stacks" / "dotnet-app"


def test_wait_timeout(project, fake):
    assert run(project, "wait", "postgres", "10", "5", "--stack", "dotnet-app") == 1


def test_status(project, fake, capsys):
    assert run(project, "status") == 0
    assert "Status check complete" in capsys.readouterr().out


def test_init(tmp_path, capsys):
    assert cli.main(["--root", str(tmp_path), "init", "--stack", "shop", "--with-env"]) == 0
    assert (tmp_path / "stacks" / "shop" / "docker-compose.yml").exists()
    assert (tmp_path / "stacks" / "shop" / ".env").exists()
    assert not (tmp_path / "stacks" / "dotnet-app").exists()
    assert (tmp_path / "reverse-proxy" / "traefik" / ".env.example").exists()


def test_init_project_name_updates_existing_layout(tmp_path, monkeypatch):
    monkeypatch.delenv("COMPOSE_PROJECT_NAME", raising=False)
    assert cli.main(["--root", str(tmp_path), "init"]) == 0
    assert InfraConfig.load(tmp_path, environ={}).project_name == "infraprod"

    assert cli.main(["--root", str(tmp_path), "init", "--project-name", "acme"]) == 0
    assert InfraConfig.load(tmp_path, environ={}).project_name == "acme"
