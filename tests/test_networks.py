import pytest

from infrastack.config import InfraConfig
from infrastack.errors import DeploymentError
from infrastack.networks import create_networks, ensure_network, print_networks


def test_ensure_network_existing(docker):
    assert ensure_network(docker, "traefik-net") is False
    assert not docker.ran("network", "create")


def test_ensure_network_creates_missing(docker):
    docker.on("network", "inspect", returncode=1)
    assert ensure_network(docker, "traefik-net") is True
    assert docker.ran("network", "create", "traefik-net")


def test_ensure_network_creation_failure(docker):
    docker.on("network", "inspect", returncode=1)
    docker.on("network", "create", returncode=1, stderr="permission denied")
    with pytest.raises(DeploymentError, match="traefik-net"):
        ensure_network(docker, "traefik-net")


def test_create_networks_is_idempotent(tmp_path, docker, capsys):
    config = InfraConfig(root_dir=tmp_path, project_name="acme")
    docker.on("network", "inspect", "acme_internal", returncode=1, once=True)

    assert create_networks(config, docker) == {"traefik-net": False, "acme_internal": True}
    out = capsys.readouterr().out
    assert "Using existing shared network: traefik-net" in out
    assert "Created internal network: acme_internal" in out

    assert create_networks(config, docker) == {"traefik-net": False, "acme_internal": False}


def test_print_networks_filters_by_project(docker, capsys):
    docker.on("network", "ls", stdout="\n".join([
        '{"Name": "traefik-net", "Driver": "bridge", "Scope": "local"}',
        '{"Name": "acme_internal", "Driver": "bridge", "Scope": "local"}',
        '{"Name": "bridge", "Driver": "bridge", "Scope": "local"}',
    ]))
    assert print_networks(docker, "acme") == 2
    out = capsys.readouterr().out
    assert "acme_internal" in out and "traefik-net" in out


def test_print_networks_empty(docker, capsys):
    assert print_networks(docker, "acme") == 0
    assert "No networks found" in capsys.readouterr().out
