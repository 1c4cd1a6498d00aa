import logging
import os
import shlex
from pathlib import Path
from typing import Optional

from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv

from borg_scheduler.types import (
    BackupSchedule,
    BorgEnv,
    CleanupPolicy,
    CleanupSchedule,
    Config,
    Hooks,
    RestoreRequest,
)

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    pass


def load_env_file(env_file: Optional[str]) -> bool:
    """Load a dotenv file into the environment, real environment variables win."""
    path = Path(env_file) if env_file else Path(".env")
    if not path.is_file():
        if env_file:
            raise ConfigError(f"Environment file {env_file} does not exist")
        return False
    loaded = load_dotenv(path, override=False)
    logger.debug(f"Loaded environment from {path}")
    return loaded


def _require(value, option: str, mode: str):
    if value is None or value == "":
        raise ConfigError(f"--{mode} requires --{option} to be set")
    return value


def _check_cron(expression: str, option: str) -> str:
    try:
        CronTrigger.from_crontab(expression)
    except ValueError as exc:
        raise ConfigError(f"Invalid cron expression for --{option}: {expression!r} ({exc})") from exc
    return expression


def build_config(
    *,
    ssh_host: str,
    ssh_port: int,
    backup_dir: str,
    borg_repository: str,
    ssh_key_file: str,
    borg_passphrase: Optional[str] = None,
    borg_passphrase_file: Optional[str] = None,
    list_backups: bool = False,
    backup: bool = False,
    backup_interval_cron: Optional[str] = None,
    backup_now: bool = False,
    cleanup: bool = False,
    cleanup_interval_cron: Optional[str] = None,
    cleanup_now: bool = False,
    cleanup_keep: Optional[str] = None,
    restore: bool = False,
    restore_backup_name: Optional[str] = None,
    restore_dry_run: bool = False,
    restore_list: bool = False,
    restore_path: Optional[str] = None,
    restore_exclude: Optional[str] = None,
    restore_target_dir: Optional[str] = None,
    pre_backup_hook: Optional[str] = None,
    post_backup_hook: Optional[str] = None,
    pre_restore_hook: Optional[str] = None,
    post_restore_hook: Optional[str] = None,
    reset_key_permissions: bool = False,
) -> Config:
    """
    Validate the flat option surface and fold it into an immutable Config.

    Each enabled mode becomes a descriptor carrying its own parameters, so a mode
    without its parameters cannot be represented. Raises ConfigError on the first
    violation found.
    """
    # --backup-now and --cleanup-now only add to one of these modes
    if not any((list_backups, backup, cleanup, restore)):
        raise ConfigError("No mode selected, set at least one of --list, --backup, --cleanup, --restore")
    if not borg_passphrase and not borg_passphrase_file:
        raise ConfigError("Neither --borg-passphrase nor --borg-passphrase-file is set")

    backup_schedule = None
    if backup:
        interval = _require(backup_interval_cron, "backup-interval-cron", "backup")
        backup_schedule = BackupSchedule(interval_cron=_check_cron(interval, "backup-interval-cron"))

    cleanup_schedule = None
    if cleanup:
        interval = _require(cleanup_interval_cron, "cleanup-interval-cron", "cleanup")
        cleanup_schedule = CleanupSchedule(
            interval_cron=_check_cron(interval, "cleanup-interval-cron"),
            keep_within=_require(cleanup_keep, "cleanup-keep", "cleanup"),
        )

    cleanup_policy = None
    if cleanup_now:
        cleanup_policy = CleanupPolicy(keep_within=_require(cleanup_keep, "cleanup-keep", "cleanup-now"))

    restore_request = None
    if restore:
        restore_request = RestoreRequest(
            backup_name=_require(restore_backup_name, "restore-backup-name", "restore"),
            dry_run=restore_dry_run,
            list_files=restore_list,
            path=restore_path or None,
            exclude=restore_exclude or None,
            target_dir=Path(restore_target_dir) if restore_target_dir else None,
        )

    return Config(
        ssh_host=ssh_host,
        ssh_port=ssh_port,
        backup_dir=Path(backup_dir),
        borg_repository=borg_repository,
        ssh_key_file=Path(ssh_key_file),
        borg_passphrase=borg_passphrase or None,
        borg_passphrase_file=Path(borg_passphrase_file) if borg_passphrase_file else None,
        reset_key_permissions=reset_key_permissions,
        hooks=Hooks(
            pre_backup=pre_backup_hook or None,
            post_backup=post_backup_hook or None,
            pre_restore=pre_restore_hook or None,
            post_restore=post_restore_hook or None,
        ),
        list_backups=list_backups,
        backup_now=backup_now,
        backup=backup_schedule,
        cleanup=cleanup_schedule,
        cleanup_now=cleanup_policy,
        restore=restore_request,
    )


def read_passphrase(config: Config) -> str:
    if config.borg_passphrase:
        return config.borg_passphrase
    # Trailing newline is not part of the passphrase
    return config.borg_passphrase_file.read_text(encoding="utf-8").rstrip("\r\n")


def borg_env(config: Config) -> BorgEnv:
    """Derive the environment overlay passed to every borg invocation."""
    return {
        "BORG_PASSPHRASE": read_passphrase(config),
        "BORG_RSH": f"ssh -i {shlex.quote(str(config.ssh_key_file))} -o StrictHostKeyChecking=no",
    }


def reset_key_permissions(config: Config) -> None:
    """Restrict the key file to its owner, ssh refuses keys readable by others."""
    os.chmod(config.ssh_key_file, 0o600)
    logger.info(f"✅ Reset permissions of {config.ssh_key_file} to 600")
