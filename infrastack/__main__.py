#!/usr/bin/env python3
"""
infrastack - Command Line Interface

Operates a Docker host running a Traefik reverse proxy and application stacks.

Usage:
    infrastack init [--stack NAME] [--force] [--with-env]
    infrastack networks
    infrastack deploy proxy
    infrastack deploy stack NAME
    infrastack deploy all
    infrastack backup NAME [--volumes]
    infrastack backups NAME
    infrastack restore NAME [ARCHIVE]
    infrastack health NAME [--json]
    infrastack status
    infrastack wait SERVICE [TIMEOUT] [INTERVAL] [--stack NAME]
"""

import argparse
import sys
import json
import logging
from pathlib import Path

from rich.logging import RichHandler

from . import console
from .backup import BackupManager
from .config import InfraConfig, STACKS_DIR, COMPOSE_FILE
from .docker import DockerCLI
from .errors import Cancelled, InfraError
from .health import HealthChecker, render_report
from .networks import create_networks
from .orchestrate import deploy_all
from .proxy import ProxyDeployer
from .services import ServiceManager
from .stack import AppStackDeployer
from .status import StatusReporter
from .templates import scaffold

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console.err_console, show_path=False)],
    )


def load_config(args) -> InfraConfig:
    return InfraConfig.load(Path(args.root))


def cmd_init(args):
    """Handle init command."""
    config = load_config(args)
    if args.project_name:
        config.project_name = args.project_name
    if args.stack:
        stacks = {
            name: path for name, path in config.stacks.items()
            if (path / COMPOSE_FILE).is_file()
        }
        for name in args.stack:
            stacks.setdefault(name, config.root_dir / STACKS_DIR / name)
        config.stacks = stacks

    written = scaffold(
        config,
        force=args.force,
        with_env=args.with_env,
        save_layout=bool(args.project_name or args.stack),
    )
    console.plain()
    console.success(f"{len(written)} files written")
    if not args.with_env:
        console.info("Copy each .env.example to .env and fill in the values before deploying")


def cmd_networks(args):
    """Handle networks command."""
    config = load_config(args)
    create_networks(config, DockerCLI())
    console.plain()
    console.success("Network setup complete")


def cmd_deploy(args):
    """Handle deploy command."""
    config = load_config(args)
    docker = DockerCLI()

    if args.target == "all":
        results = deploy_all(config, docker, assume_yes=args.yes)
        failed = [r for r in results if not r.success]
        if failed:
            console.error(f"{failed[0].stack} deployment failed: {failed[0].message}")
            return 1
        return 0

    if args.target == "proxy":
        deployer = ProxyDeployer(config.proxy_dir, docker, assume_yes=args.yes)
    else:
        deployer = AppStackDeployer(config.stack_dir(args.name), docker, assume_yes=args.yes)

    result = deployer.deploy()
    if not result.success:
        console.error(result.message)
        return 1
    logger.info(f"{result.stack} deployed in {result.duration_seconds:.1f}s")
    return 0


def cmd_backup(args):
    """Handle backup command."""
    config = load_config(args)
    manager = BackupManager(config.stack_dir(args.name), DockerCLI(), assume_yes=args.yes)
    manager.create(include_volumes=args.volumes)


def cmd_backups(args):
    """Handle backups command."""
    config = load_config(args)
    manager = BackupManager(config.stack_dir(args.name), DockerCLI())
    if args.json:
        print(json.dumps([b.to_dict() for b in manager.list_backups()], indent=2))
        return
    console.plain(f"📋 Backups of {manager.env.stack_name} in {manager.backup_dir}:", style="blue")
    manager.print_backups()


def cmd_restore(args):
    """Handle restore command."""
    config = load_config(args)
    manager = BackupManager(config.stack_dir(args.name), DockerCLI(), assume_yes=args.yes)
    manager.restore(Path(args.archive) if args.archive else None)


def cmd_health(args):
    """Handle health command."""
    config = load_config(args)
    checker = HealthChecker(config.stack_dir(args.name), DockerCLI())
    report = checker.check_all()
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        render_report(report)
    return report.exit_code


def cmd_status(args):
    """Handle status command."""
    config = load_config(args)
    StatusReporter(config, DockerCLI()).report()


def cmd_wait(args):
    """Handle wait command."""
    if args.stack:
        project_dir = load_config(args).stack_dir(args.stack)
    else:
        project_dir = Path.cwd()
    services = ServiceManager(project_dir, DockerCLI())
    if not services.wait_for_healthy(args.service, timeout=args.timeout, interval=args.interval):
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="infrastack",
        description="infrastack - Traefik and application stacks on a Docker host",
    )
    parser.add_argument("--root", default=".", help="Project root directory (default: current directory)")
    parser.add_argument("-y", "--yes", action="store_true", help="Answer yes to confirmation prompts")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Init command
    init_parser = subparsers.add_parser("init", help="Write compose files and .env templates")
    init_parser.add_argument("--stack", action="append", help="Application stack name (repeatable)")
    init_parser.add_argument("--project-name", help="Project name stored in infrastack.yaml")
    init_parser.add_argument("--force", action="store_true", help="Overwrite existing files")
    init_parser.add_argument("--with-env", action="store_true", help="Also write .env files with generated secrets")

    # Networks command
    subparsers.add_parser("networks", help="Create the shared Docker networks")

    # Deploy command
    deploy_parser = subparsers.add_parser("deploy", help="Deploy the proxy, one stack or everything")
    deploy_sub = deploy_parser.add_subparsers(dest="target", help="What to deploy")
    deploy_sub.required = True
    deploy_sub.add_parser("proxy", help="Deploy the Traefik reverse proxy")
    stack_parser = deploy_sub.add_parser("stack", help="Deploy one application stack")
    stack_parser.add_argument("name", help="Stack name")
    deploy_sub.add_parser("all", help="Create networks, deploy the proxy and every stack")

    # Backup commands
    backup_parser = subparsers.add_parser("backup", help="Back up an application stack")
    backup_parser.add_argument("name", help="Stack name")
    backup_parser.add_argument("--volumes", action="store_true", help="Also snapshot the stack's data volumes")

    backups_parser = subparsers.add_parser("backups", help="List the backups of a stack")
    backups_parser.add_argument("name", help="Stack name")
    backups_parser.add_argument("--json", action="store_true", help="Output as JSON")

    restore_parser = subparsers.add_parser("restore", help="Restore a stack from a backup archive")
    restore_parser.add_argument("name", help="Stack name")
    restore_parser.add_argument("archive", nargs="?", help="Backup archive (.tar.gz)")

    # Health command
    health_parser = subparsers.add_parser("health", help="Health check of an application stack")
    health_parser.add_argument("name", help="Stack name")
    health_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # Status command
    subparsers.add_parser("status", help="Status report of the whole host")

    # Wait command
    wait_parser = subparsers.add_parser("wait", help="Wait until a compose service is healthy")
    wait_parser.add_argument("service", help="Compose service name")
    wait_parser.add_argument("timeout", type=int, nargs="?", default=120, help="Seconds (default: 120)")
    wait_parser.add_argument("interval", type=int, nargs="?", default=5, help="Seconds between checks (default: 5)")
    wait_parser.add_argument("--stack", help="Stack whose compose project to inspect (default: current directory)")

    return parser


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)

    commands = {
        "init": cmd_init,
        "networks": cmd_networks,
        "deploy": cmd_deploy,
        "backup": cmd_backup,
        "backups": cmd_backups,
        "restore": cmd_restore,
        "health": cmd_health,
        "status": cmd_status,
        "wait": cmd_wait,
    }

    handler = commands.get(args.command)
    if not handler:
        parser.print_help()
        return 1
    try:
        return handler(args) or 0
    except Cancelled as e:
        console.plain(str(e))
        return e.exit_code
    except InfraError as e:
        console.error(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        console.plain()
        console.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
