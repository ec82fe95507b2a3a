from pathlib import Path

import pytest
import yaml

from infrastack.config import (
    InfraConfig,
    ProxyEnv,
    StackEnv,
    load_env_file,
    parse_bool,
    parse_int,
    read_env_example,
    generate_secret,
    generate_jwt_secret,
)
from infrastack.errors import EnvFileNotFound, InfraError


@pytest.mark.parametrize("value,expected", [
    ("true", True), ("TRUE", True), ("1", True), ("yes", True),
    ("false", False), ("No", False), ("0", False),
])
def test_parse_bool(value, expected):
    assert parse_bool(value, default=not expected) is expected


def test_parse_bool_falls_back_to_default():
    assert parse_bool(None, default=True) is True
    assert parse_bool("maybe", default=False) is False


def test_parse_int_ignores_garbage():
    assert parse_int("30", 7) == 30
    assert parse_int("", 7) == 7
    assert parse_int("a week", 7) == 7


def test_load_env_file_missing_has_copy_hint(tmp_path):
    with pytest.raises(EnvFileNotFound) as exc:
        load_env_file(tmp_path / ".env", ["ACME_EMAIL"])
    message = str(exc.value)
    assert "cp " in message and ".env.example" in message
    assert "ACME_EMAIL" in message
    assert exc.value.exit_code == 1


def test_load_env_file_maps_bare_keys_to_empty(tmp_path):
    path = tmp_path / ".env"
    path.write_text("# comment\nDOMAIN=api.acme.io\nJWT_SECRET\nQUOTED='a b'\n")
    assert load_env_file(path) == {"DOMAIN": "api.acme.io", "JWT_SECRET": "", "QUOTED": "a b"}


def test_read_env_example_without_file(tmp_path):
    assert read_env_example(tmp_path) == {}


def test_proxy_env_defaults():
    env = ProxyEnv.from_env({"ACME_EMAIL": "ops@acme.io"})
    assert env.api_insecure is True
    assert env.enable_metrics is False
    assert env.dashboard_port == 8080
    assert env.network == "traefik-net"
    assert env.missing_required() == []
    assert ProxyEnv.from_env({}).missing_required() == ["ACME_EMAIL"]


def test_stack_env_defaults(tmp_path):
    env = StackEnv.from_env({}, tmp_path / "billing")
    assert env.stack_name == "billing"
    assert env.app_container == "billing-app"
    assert env.db_container == "billing-postgres"
    assert env.internal_network == "billing_internal"
    assert env.postgres_user == "postgres"
    assert env.postgres_db == "app"
    assert env.run_migrations is False
    assert env.test_endpoint is True
    assert env.backup_dir == tmp_path / "billing" / "backups"
    assert env.backup_retention_days == 7
    assert env.missing_required() == ["DOTNET_IMAGE", "DOMAIN", "POSTGRES_PASSWORD", "JWT_SECRET"]


def test_stack_env_reads_keys(tmp_path):
    env = StackEnv.from_env({
        "STACK_NAME": "shop",
        "DOMAIN": "shop.acme.io",
        "HEALTH_CHECK_PATH": "/healthz",
        "RUN_MIGRATIONS": "yes",
        "BACKUP_PATH": "archive",
        "BACKUP_RETENTION_DAYS": "14",
    }, tmp_path)
    assert env.app_container == "shop-app"
    assert env.health_url == "https://shop.acme.io/healthz"
    assert env.run_migrations is True
    assert env.backup_dir == tmp_path / "archive"
    assert env.backup_retention_days == 14


def test_infra_config_discovers_stacks(tmp_path):
    for name in ("billing", "api"):
        (tmp_path / "stacks" / name).mkdir(parents=True)
        (tmp_path / "stacks" / name / "docker-compose.yml").write_text("services: {}\n")
    (tmp_path / "stacks" / "notes").mkdir()

    config = InfraConfig.load(tmp_path, environ={})
    assert list(config.stacks) == ["api", "billing"]
    assert config.project_name == "infraprod"
    assert config.internal_network == "infraprod_internal"
    assert config.proxy_dir == tmp_path.resolve() / "reverse-proxy" / "traefik"


def test_infra_config_defaults_to_dotnet_app(tmp_path):
    config = InfraConfig.load(tmp_path, environ={})
    assert list(config.stacks) == ["dotnet-app"]


def test_infra_config_layout_file_and_env_override(tmp_path):
    (tmp_path / "infrastack.yaml").write_text(yaml.dump({
        "project_name": "acme",
        "proxy_dir": "proxy",
        "stacks": {"web": "apps/web"},
    }))
    config = InfraConfig.load(tmp_path, environ={})
    root = tmp_path.resolve()
    assert config.project_name == "acme"
    assert config.proxy_dir == root / "proxy"
    assert config.stacks == {"web": root / "apps" / "web"}

    overridden = InfraConfig.load(tmp_path, environ={"COMPOSE_PROJECT_NAME": "edge"})
    assert overridden.project_name == "edge"


def test_infra_config_save_round_trips(tmp_path):
    config = InfraConfig(root_dir=tmp_path, project_name="acme", stacks={"web": tmp_path / "stacks" / "web"})
    config.save()
    data = yaml.safe_load((tmp_path / "infrastack.yaml").read_text())
    assert data == {
        "project_name": "acme",
        "proxy_dir": str(Path("reverse-proxy") / "traefik"),
        "stacks": {"web": str(Path("stacks") / "web")},
    }


def test_unknown_stack_is_an_error(tmp_path):
    config = InfraConfig(root_dir=tmp_path)
    with pytest.raises(InfraError, match="Unknown stack 'nope'"):
        config.stack_dir("nope")


def test_secrets():
    assert len(generate_secret(24)) == 24
    assert generate_secret() != generate_secret()
    assert len(generate_jwt_secret()) >= 32
