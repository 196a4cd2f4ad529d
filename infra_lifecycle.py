#!/usr/bin/env python3
"""
Infrastructure Lifecycle Engine

Validates, backs up, restores and tears down one deployment of the analytics
stack (Kubernetes workloads, TimescaleDB, Redis and Kafka).

Features:
- Category-ordered health validation with stop-on-critical and fast mode
- Full and incremental database backups with gzip, AES-GCM and sha256 checks
- Restore with point-in-time recovery from archived WAL
- Confirmation-gated teardown with dry-run and optional pre-teardown backup
- Text or JSON reports and stable exit codes
"""

import argparse
import json
import logging
import sys
from typing import Any, Callable, Dict

from botocore.exceptions import BotoCoreError, ClientError
from kubernetes import config as kube_config
from kubernetes.client.rest import ApiException

from lib import (
    CancellationToken,
    EnvironmentState,
    KubeClient,
    __version__,
    __version_date__,
    confirm_phrase,
    format_bytes,
    setup_logging,
)
from lib.cloud import CloudResourceClient
from lib.config import LifecycleConfig, load_config, load_encryption_key
from lib.constants import (
    CONFIRM_PHRASE,
    ENCRYPTION_KEY_ENV_VAR,
    EXIT_ABORTED,
    EXIT_FAILURE,
    EXIT_INTERRUPT,
    EXIT_SUCCESS,
    VALID_ENVIRONMENTS,
    VALID_PROVIDERS,
)
from lib.exceptions import ConfigurationError, ConfirmationDeclined, LifecycleError
from lib.object_storage import ObjectStorageClient
from lib.utils import parse_timestamp, utc_now
from lib.validation import InputValidator, ValidationError
from modules import (
    BackupManager,
    RestoreRequest,
    TeardownOrchestrator,
    TeardownPlan,
    TeardownScope,
    ValidationEngine,
)
from modules.backup import BackupType
from modules.validation import Category, render_text

Handler = Callable[[argparse.Namespace, LifecycleConfig, CancellationToken, logging.Logger], int]


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Infrastructure Lifecycle Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Quick health check (skips database and network checks)
  %(prog)s --environment staging validate --fast

  # Encrypted full backup (key from INFRA_LIFECYCLE_BACKUP_KEY)
  %(prog)s --environment production backup

  # Restore to a point in time
  %(prog)s restore backup-llm_analytics-20261001T020000Z-0123456789ab --pitr-target 2026-10-01T03:15:00Z

  # Show what a full AWS teardown would delete
  %(prog)s --environment dev teardown --provider aws --scope full --dry-run
        """,
    )

    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--context", help="Kubernetes context (defaults to the current context)")
    parser.add_argument("--namespace", help="Application namespace")
    parser.add_argument("--environment", choices=VALID_ENVIRONMENTS, help="Target environment")
    parser.add_argument("--database", help="Database name")
    parser.add_argument("--state-dir", help="Directory for local per-environment state")
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=["text", "json"],
        default="text",
        help="Report format written to stdout (default: text)",
    )
    parser.add_argument("--output", help="Also write the report to this file")

    # Logging
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log output format (text or json)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__} ({__version_date__})")

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Run health validation")
    validate.add_argument("--fast", action="store_true", help="Skip database and network checks")
    validate.add_argument(
        "--no-stop-on-critical",
        dest="stop_on_critical",
        action="store_false",
        help="Keep validating after a critical failure",
    )
    validate.add_argument(
        "--category",
        dest="categories",
        action="append",
        choices=[c.value for c in Category],
        help="Only run this category (repeatable)",
    )

    backup = subparsers.add_parser("backup", help="Create a backup")
    backup.add_argument(
        "--type",
        dest="backup_type",
        choices=[t.value for t in BackupType],
        default=BackupType.FULL.value,
        help="Backup type (default: full)",
    )

    subparsers.add_parser("list", help="List backups, newest first")
    subparsers.add_parser("stats", help="Show backup statistics")

    verify = subparsers.add_parser("verify", help="Verify backup integrity")
    target = verify.add_mutually_exclusive_group(required=True)
    target.add_argument("backup_id", nargs="?", help="Backup to verify")
    target.add_argument("--all", action="store_true", help="Verify every completed backup")
    verify.add_argument(
        "--test-restore",
        action="store_true",
        help="Also restore into a scratch instance and count tables",
    )

    restore = subparsers.add_parser("restore", help="Restore a backup (destructive)")
    restore.add_argument("backup_id", help="Backup to restore")
    restore.add_argument("--pitr-target", help="Recover to this timestamp (ISO 8601, UTC if no offset)")
    restore.add_argument("--target-database", help="Database to validate after restore")
    restore.add_argument("--skip-validation", action="store_true", help="Do not count restored tables")
    restore.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    cleanup = subparsers.add_parser("cleanup", help="Delete artifacts past the retention period")
    cleanup.add_argument("--retention-days", type=int, help="Override the configured retention")
    cleanup.add_argument("--dry-run", action="store_true", help="Show what would be deleted")

    teardown = subparsers.add_parser("teardown", help="Tear the environment down (destructive)")
    teardown.add_argument("--provider", choices=VALID_PROVIDERS, help="Infrastructure provider")
    teardown.add_argument(
        "--scope",
        choices=[s.value for s in TeardownScope],
        default=TeardownScope.CLUSTER_ONLY.value,
        help="cluster_only keeps cloud resources; full deletes them too",
    )
    teardown.add_argument(
        "--additional-namespace",
        dest="additional_namespaces",
        action="append",
        default=[],
        help="Extra namespace to drain and delete (repeatable)",
    )
    teardown.add_argument("--force", action="store_true", help="Skip confirmation prompts (audited)")
    teardown.add_argument("--dry-run", action="store_true", help="Show the plan without changing anything")
    teardown.add_argument("--backup-before", action="store_true", help="Back up the database first")

    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace, logger: logging.Logger) -> None:
    """Validate input values."""
    try:
        InputValidator.validate_all_cli_args(args)
        if getattr(args, "pitr_target", None):
            parse_timestamp(args.pitr_target)
    except ValidationError as e:
        logger.error("Validation error: %s", str(e))
        sys.exit(EXIT_FAILURE)
    except ValueError as e:
        logger.error("Invalid --pitr-target: %s", str(e))
        sys.exit(EXIT_FAILURE)


def build_config(args: argparse.Namespace) -> LifecycleConfig:
    overrides: Dict[str, Any] = {
        "namespace": args.namespace,
        "environment": args.environment,
        "context": args.context,
        "database": args.database,
        "state_dir": args.state_dir,
        "provider": getattr(args, "provider", None),
        "retention_days": getattr(args, "retention_days", None),
    }
    return load_config(args.config, overrides)


def _kube(cfg: LifecycleConfig, dry_run: bool = False) -> KubeClient:
    return KubeClient(cfg.context, dry_run=dry_run, request_timeout=cfg.request_timeout)


def _backup_manager(cfg: LifecycleConfig, kube: KubeClient) -> BackupManager:
    storage = ObjectStorageClient(cfg.backup_bucket, cfg.backup_region, cfg.backup_endpoint_url)
    return BackupManager(
        kube,
        storage,
        cfg.namespace,
        cfg.backup_prefix,
        compression=cfg.compression,
        encryption_key=load_encryption_key(),
    )


def _require_encryption_key(cfg: LifecycleConfig, manager: BackupManager) -> None:
    if cfg.encryption and manager.encryption_key is None:
        raise ConfigurationError(
            f"Encryption is enabled but {ENCRYPTION_KEY_ENV_VAR} is not set; set it or disable encryption"
        )


def emit(args: argparse.Namespace, payload: Dict[str, Any], text: str) -> None:
    """Write a report to stdout and optionally to --output."""
    rendered = json.dumps(payload, indent=2) if args.output_format == "json" else text
    print(rendered)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(rendered + "\n")


# =============================
# Commands
# =============================
def run_validate(args, cfg, token, logger) -> int:
    engine = ValidationEngine(
        _kube(cfg),
        cfg.namespace,
        cfg.environment,
        database=cfg.database,
        check_timeout=cfg.check_timeout,
        max_workers=cfg.max_workers,
    )
    if args.categories:
        report, exit_code = engine.run_categories(
            [Category(c) for c in args.categories],
            stop_on_critical=args.stop_on_critical,
            cancel_token=token,
        )
    else:
        report, exit_code = engine.run(
            fast_mode=args.fast,
            stop_on_critical=args.stop_on_critical,
            cancel_token=token,
        )
    emit(args, report.to_dict(), render_text(report))
    return exit_code


def run_backup(args, cfg, token, logger) -> int:
    manager = _backup_manager(cfg, _kube(cfg))
    _require_encryption_key(cfg, manager)
    metadata = manager.create_backup(cfg.database, BackupType(args.backup_type), cancel_token=token)
    emit(
        args,
        metadata.to_dict(),
        f"{metadata.backup_id} {metadata.status.value} {format_bytes(metadata.size_bytes)} -> {metadata.storage_location}",
    )
    return EXIT_SUCCESS


def run_list(args, cfg, token, logger) -> int:
    backups = _backup_manager(cfg, _kube(cfg)).list_backups(cfg.database)
    lines = [f"{'BACKUP ID':<64} {'TYPE':<12} {'STATUS':<12} {'SIZE':>10}  CREATED"]
    for m in backups:
        lines.append(
            f"{m.backup_id:<64} {m.backup_type.value:<12} {m.status.value:<12} "
            f"{format_bytes(m.size_bytes):>10}  {m.created_at}"
        )
    emit(args, {"database": cfg.database, "backups": [m.to_dict() for m in backups]}, "\n".join(lines))
    return EXIT_SUCCESS


def run_stats(args, cfg, token, logger) -> int:
    stats = _backup_manager(cfg, _kube(cfg)).backup_statistics(cfg.database)
    text = "\n".join(f"{key}: {value}" for key, value in stats.to_dict().items())
    emit(args, stats.to_dict(), text)
    return EXIT_SUCCESS


def run_verify(args, cfg, token, logger) -> int:
    manager = _backup_manager(cfg, _kube(cfg))
    if args.all:
        results = manager.verify_all_backups(cfg.database)
    else:
        results = [manager.verify_backup(args.backup_id, test_restore=args.test_restore)]

    lines = []
    for result in results:
        lines.append(f"{result.backup_id}: {result.status}")
        for check in result.checks:
            lines.append(f"  {'✓' if check.passed else '✗'} {check.name}: {check.message}")
    emit(args, {"results": [r.to_dict() for r in results]}, "\n".join(lines))
    return EXIT_SUCCESS if all(r.valid for r in results) else EXIT_FAILURE


def run_restore(args, cfg, token, logger) -> int:
    pitr_target = None
    if args.pitr_target:
        pitr_target = parse_timestamp(args.pitr_target)
        if pitr_target > utc_now():
            raise ValidationError(f"PITR target {pitr_target.isoformat()} is in the future")

    if not args.yes:
        logger.warning("Restoring %s will replace the database in namespace %s", args.backup_id, cfg.namespace)
        if not confirm_phrase(f"Type '{CONFIRM_PHRASE}' to continue: ", CONFIRM_PHRASE):
            raise ConfirmationDeclined("Restore not confirmed")

    request = RestoreRequest(
        backup_id=args.backup_id,
        pitr_target=pitr_target,
        target_database=args.target_database,
        skip_validation=args.skip_validation,
    )
    result = _backup_manager(cfg, _kube(cfg)).restore(request, cancel_token=token)
    emit(args, result.to_dict(), "\n".join(result.messages))
    return EXIT_SUCCESS if result.success else EXIT_FAILURE


def run_cleanup(args, cfg, token, logger) -> int:
    removed = _backup_manager(cfg, _kube(cfg)).cleanup_old_backups(
        cfg.database,
        retention_days=cfg.retention_days,
        dry_run=args.dry_run,
    )
    verb = "Would remove" if args.dry_run else "Removed"
    emit(
        args,
        {"dry_run": args.dry_run, "retention_days": cfg.retention_days, "removed": removed},
        f"{verb} {len(removed)} artifact(s)" + "".join(f"\n  {backup_id}" for backup_id in removed),
    )
    return EXIT_SUCCESS


def run_teardown(args, cfg, token, logger) -> int:
    plan = TeardownPlan(
        environment=cfg.environment,
        provider=cfg.provider,
        scope=TeardownScope(args.scope),
        namespace=cfg.namespace,
        additional_namespaces=tuple(args.additional_namespaces),
        force=args.force,
        dry_run=args.dry_run,
        backup_before=args.backup_before,
        database=cfg.database,
    )
    kube = None if args.dry_run else _kube(cfg)
    cloud = CloudResourceClient(cfg.provider) if plan.deletes_cloud_resources else None
    manager = None
    if args.backup_before and not args.dry_run:
        manager = _backup_manager(cfg, kube)
        _require_encryption_key(cfg, manager)

    orchestrator = TeardownOrchestrator(
        plan,
        kube=kube,
        cloud=cloud,
        env_state=EnvironmentState(cfg.state_dir, cfg.environment),
        backup_manager=manager,
        cancel_token=token,
        drain_grace_period=cfg.drain_grace_period,
    )
    result = orchestrator.run()
    lines = [f"{t.timestamp} {t.state.value:<28} {t.status:<8} {t.message}" for t in result.transitions]
    lines.extend(f"warning: {w}" for w in result.warnings)
    emit(args, result.to_dict(), "\n".join(lines))
    return result.exit_code


COMMANDS: Dict[str, Handler] = {
    "validate": run_validate,
    "backup": run_backup,
    "list": run_list,
    "stats": run_stats,
    "verify": run_verify,
    "restore": run_restore,
    "cleanup": run_cleanup,
    "teardown": run_teardown,
}


def execute(args: argparse.Namespace, cfg: LifecycleConfig, logger: logging.Logger) -> int:
    """Run the selected command and map errors to exit codes."""
    token = CancellationToken()
    try:
        exit_code = COMMANDS[args.command](args, cfg, token, logger)
    except KeyboardInterrupt:
        token.cancel("interrupted by user")
        logger.warning("\n\nOperation interrupted by user")
        return EXIT_INTERRUPT
    except ConfirmationDeclined as e:
        logger.warning("Aborted: %s", e)
        return EXIT_ABORTED
    except kube_config.ConfigException as e:
        logger.error("Failed to initialize Kubernetes client: %s", e)
        exit_code = EXIT_FAILURE
    except (LifecycleError, ApiException, ClientError, BotoCoreError) as e:
        logger.error("\n✗ %s failed: %s", args.command, e, exc_info=args.verbose)
        exit_code = EXIT_FAILURE

    # Teardown removes the state directory itself
    if args.command != "teardown":
        _record_run(cfg, args.command, exit_code, logger)
    return exit_code


def _record_run(cfg: LifecycleConfig, command: str, exit_code: int, logger: logging.Logger) -> None:
    try:
        EnvironmentState(cfg.state_dir, cfg.environment).record_run(command, {"exit_code": exit_code})
    except OSError as e:
        logger.warning("Could not record run in %s: %s", cfg.state_dir, e)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    logger = setup_logging(args.verbose, args.log_format)
    validate_args(args, logger)

    try:
        cfg = build_config(args)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(EXIT_FAILURE)

    logger.info("Infrastructure Lifecycle Engine v%s (%s)", __version__, __version_date__)
    logger.info("Environment: %s, namespace: %s, command: %s", cfg.environment, cfg.namespace, args.command)

    sys.exit(execute(args, cfg, logger))


if __name__ == "__main__":
    main()
