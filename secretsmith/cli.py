"""
secretsmith CLI — entry point for all operations.

Usage:
    secretsmith deploy --config FILE [--config FILE ...]   # Materialize secrets, reconcile services
    secretsmith validate --config FILE ...                 # Validate manifests only
    secretsmith token set [--path PATH]                    # Store the vault token (read from stdin)
    secretsmith status --config FILE ...                   # Show secret files and service states
    secretsmith version                                    # Show version

Exit codes: 0 success (including a run skipped for lack of a token),
1 any error, 166 vault rate limit.
"""

from __future__ import annotations

import argparse
import dataclasses
import sys
from pathlib import Path

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_RATE_LIMITED = 166

ROLLBACK_NOTICE = "  Rollback requested by serviceReconciliation.rollbackOnFailure"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="secretsmith",
        description="secretsmith — deploy vault secrets to disk and reconcile systemd services.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--log-level", help="Log level (default: $SECRETSMITH_LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command")

    # deploy
    deploy_parser = subparsers.add_parser("deploy", help="Materialize secrets and reconcile services")
    _add_config_args(deploy_parser)
    deploy_parser.add_argument("--token-file", type=Path, help="Vault token file")
    deploy_parser.add_argument("--hash-file", type=Path, help="Change-detection hash store")
    deploy_parser.add_argument(
        "--dry-run", action="store_true", help="Write secrets but only log service actions"
    )

    # validate
    validate_parser = subparsers.add_parser("validate", help="Validate manifests without side effects")
    _add_config_args(validate_parser)

    # token
    token_parser = subparsers.add_parser("token", help="Manage the vault token")
    token_sub = token_parser.add_subparsers(dest="token_command")
    token_set = token_sub.add_parser("set", help="Read a token from stdin and store it (mode 600)")
    token_set.add_argument("--path", type=Path, help="Token file (default: $SECRETSMITH_TOKEN_FILE)")

    # status
    status_parser = subparsers.add_parser("status", help="Show secret files and service states")
    _add_config_args(status_parser)

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from secretsmith import __version__

        print(f"secretsmith {__version__}")
        return EXIT_OK

    from secretsmith.config import get_settings
    from secretsmith.log import setup_logging

    setup_logging(args.log_level or get_settings().log_level)

    if args.command == "deploy":
        return _guarded(_cmd_deploy, args)
    elif args.command == "validate":
        return _guarded(_cmd_validate, args)
    elif args.command == "token":
        if args.token_command == "set":
            return _guarded(_cmd_token_set, args)
        token_parser.print_help()
        return EXIT_OK
    elif args.command == "status":
        return _guarded(_cmd_status, args)
    else:
        parser.print_help()
        return EXIT_OK


def _add_config_args(sub: argparse.ArgumentParser) -> None:
    sub.add_argument(
        "--config",
        "-c",
        dest="configs",
        action="append",
        type=Path,
        required=True,
        help="Manifest file (repeatable; merged in order)",
    )
    sub.add_argument("--output", type=Path, help="Output directory for relative paths")


def _settings_for(args: argparse.Namespace):
    from secretsmith.config import get_settings

    overrides = {}
    if getattr(args, "output", None):
        overrides["output_dir"] = args.output
    if getattr(args, "token_file", None):
        overrides["token_file"] = args.token_file
    if getattr(args, "hash_file", None):
        overrides["hash_file"] = args.hash_file
    return dataclasses.replace(get_settings(), **overrides)


def _exit_code_for(error: BaseException) -> int:
    from secretsmith.errors import VaultRateLimitError

    return EXIT_RATE_LIMITED if isinstance(error, VaultRateLimitError) else EXIT_ERROR


def _guarded(command, args: argparse.Namespace) -> int:
    """Run a command, printing structured errors to stderr."""
    from secretsmith.errors import SecretsmithError

    try:
        return command(args)
    except SecretsmithError as e:
        print(str(e), file=sys.stderr)
        if getattr(e, "rollback_requested", False):
            print(ROLLBACK_NOTICE, file=sys.stderr)
        return _exit_code_for(e)


def _cmd_deploy(args: argparse.Namespace) -> int:
    from secretsmith.pipeline import DeploymentPipeline
    from secretsmith.systemd import DryRunServiceManager

    settings = _settings_for(args)
    manager = DryRunServiceManager() if args.dry_run else None
    report = DeploymentPipeline(settings, service_manager=manager).run(args.configs)

    if report.skipped:
        print("No vault token available; existing secrets left in place.")
        return EXIT_OK

    print(
        f"Deployed {len(report.materialized)} secret(s), "
        f"{len(report.changed)} changed, {len(report.failed)} failed"
    )
    for name, error in report.failed.items():
        print(f"  FAILED {name}: {error.issue}", file=sys.stderr)
    if report.reconcile is not None:
        for action in report.reconcile.actions:
            error = report.reconcile.failures.get(action.unit)
            if error is None:
                print(f"  {action.describe()}: ok")
            else:
                print(f"  WARNING {action.describe()}: {error.issue}", file=sys.stderr)
        if report.reconcile.rollback_requested:
            print(ROLLBACK_NOTICE, file=sys.stderr)

    if report.ok:
        return EXIT_OK
    if any(_exit_code_for(e) == EXIT_RATE_LIMITED for e in report.failed.values()):
        return EXIT_RATE_LIMITED
    return EXIT_ERROR


def _cmd_validate(args: argparse.Namespace) -> int:
    from secretsmith.pipeline import DeploymentPipeline

    settings = _settings_for(args)
    _, resolved = DeploymentPipeline(settings).prepare(args.configs)
    print(f"Manifest OK: {len(resolved)} secret(s)")
    for item in resolved:
        print(f"  {item.name} -> {item.path} ({item.secret.mode})")
    return EXIT_OK


def _cmd_token_set(args: argparse.Namespace) -> int:
    from secretsmith.config import get_settings
    from secretsmith.vault import write_token

    path = args.path or get_settings().token_file
    token = sys.stdin.read()
    written = write_token(path, token)
    print(f"Token stored at {written}")
    return EXIT_OK


def _cmd_status(args: argparse.Namespace) -> int:
    from secretsmith import __version__
    from secretsmith.errors import ServiceError
    from secretsmith.pipeline import DeploymentPipeline
    from secretsmith.systemd import SystemctlManager

    settings = _settings_for(args)
    _, resolved = DeploymentPipeline(settings).prepare(args.configs)
    manager = SystemctlManager(settings.systemctl, settings.dispatch_timeout)

    print(f"secretsmith v{__version__}")
    print()
    print("  Secrets:")
    units: list[str] = [settings.unit_name]
    for item in resolved:
        state = "present" if item.path.exists() else "MISSING"
        print(f"    {item.path}  {state}")
        for link in item.symlinks:
            link_state = "ok" if link.is_symlink() else "MISSING"
            print(f"      -> {link}  {link_state}")
        for unit, _policy in item.secret.service_policies():
            if unit not in units:
                units.append(unit)

    print()
    print("  Services:")
    for unit in units:
        try:
            if not manager.unit_exists(unit):
                active = "not installed"
            else:
                active = "active" if manager.is_active(unit) else "inactive"
        except ServiceError as e:
            active = f"unknown ({e.issue})"
        print(f"    {unit}  {active}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
