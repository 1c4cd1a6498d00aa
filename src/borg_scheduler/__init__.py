import asyncio
import logging
import signal
from typing import Optional

import click

from borg_scheduler import borg
from borg_scheduler.config import ConfigError, borg_env, build_config, load_env_file, reset_key_permissions
from borg_scheduler.dispatch import dispatch
from borg_scheduler.schedule import Scheduler
from borg_scheduler.types import Config
from borg_scheduler.util import connect_ssh, exec_cmd

logger = logging.getLogger(__name__)
logger.addHandler(logging.StreamHandler())
logger.setLevel(logging.INFO)


def connection_options(func):
    options = [
        click.option("--ssh-host", envvar="SSH_HOST", required=True, help="Remote host, optionally as user@host."),
        click.option("--ssh-port", envvar="SSH_PORT", type=int, default=22, show_default=True, help="Remote SSH port."),
        click.option("--ssh-key-file", envvar="SSH_KEY_FILE", type=click.Path(dir_okay=False), required=True, help="Private key used to reach the remote host."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.option("--env-file", type=click.Path(dir_okay=False), default=None, help="Dotenv file to load settings from (default: .env if present).")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable verbose output.")
def main(env_file, verbose) -> None:
    if verbose:
        logger.setLevel(logging.DEBUG)
    try:
        load_env_file(env_file)
    except ConfigError as exc:
        raise click.UsageError(str(exc))


@main.command(short_help="Run the backup supervisor.")
@connection_options
@click.option("--backup-dir", envvar="BACKUP_DIR", required=True, help="Directory to back up.")
@click.option("--borg-repository", envvar="BORG_REPOSITORY", required=True, help="Repository path on the remote host.")
@click.option("--borg-passphrase", envvar="BORG_PASSPHRASE", default=None, help="Repository passphrase.")
@click.option("--borg-passphrase-file", envvar="BORG_PASSPHRASE_FILE", type=click.Path(dir_okay=False), default=None, help="File containing the repository passphrase.")
@click.option("--list", "list_backups", envvar="LIST", is_flag=True, default=False, help="List the backups in the repository.")
@click.option("--backup", envvar="BACKUP", is_flag=True, default=False, help="Create backups on a schedule.")
@click.option("--backup-interval-cron", envvar="BACKUP_INTERVAL_CRON", default=None, help="Cron expression for scheduled backups.")
@click.option("--backup-now", envvar="BACKUP_NOW", is_flag=True, default=False, help="Create a backup at startup.")
@click.option("--cleanup", envvar="CLEANUP", is_flag=True, default=False, help="Prune old backups on a schedule.")
@click.option("--cleanup-interval-cron", envvar="CLEANUP_INTERVAL_CRON", default=None, help="Cron expression for scheduled pruning.")
@click.option("--cleanup-now", envvar="CLEANUP_NOW", is_flag=True, default=False, help="Prune old backups at startup.")
@click.option("--cleanup-keep", envvar="CLEANUP_KEEP", default=None, help="Keep backups within this window, e.g. 7d.")
@click.option("--restore", envvar="RESTORE", is_flag=True, default=False, help="Restore a backup at startup.")
@click.option("--restore-backup-name", envvar="RESTORE_BACKUP_NAME", default=None, help="Name of the backup to restore.")
@click.option("--restore-dry-run", envvar="RESTORE_DRY_RUN", is_flag=True, default=False, help="Do not write any files when restoring.")
@click.option("--restore-list", envvar="RESTORE_LIST", is_flag=True, default=False, help="List the restored files.")
@click.option("--restore-path", envvar="RESTORE_PATH", default=None, help="Only restore this path of the backup.")
@click.option("--restore-exclude", envvar="RESTORE_EXCLUDE", default=None, help="Do not restore paths matching this pattern.")
@click.option("--restore-target-dir", envvar="RESTORE_TARGET_DIR", type=click.Path(file_okay=False), default=None, help="Restore here instead of the parent of the backup directory.")
@click.option("--pre-backup-hook", envvar="PRE_BACKUP_HOOK", default=None, help="Command to run before each backup.")
@click.option("--post-backup-hook", envvar="POST_BACKUP_HOOK", default=None, help="Command to run after each backup.")
@click.option("--pre-restore-hook", envvar="PRE_RESTORE_HOOK", default=None, help="Command to run before restoring.")
@click.option("--post-restore-hook", envvar="POST_RESTORE_HOOK", default=None, help="Command to run after restoring.")
@click.option("--reset-key-permissions", envvar="RESET_KEY_PERMISSIONS", is_flag=True, default=False, help="Set the key file permissions to 600 at startup.")
def run(**options) -> None:
    """
    \b
    Back up a directory to a remote borg repository and keep it pruned.

    The repository is created if it does not exist. Then, in this order:
     - the backups are listed (--list)
     - a backup is restored (--restore)
     - a backup is created (--backup-now)
     - backups and pruning are scheduled (--backup, --cleanup)
     - old backups are pruned (--cleanup-now)

    With scheduled jobs the process keeps running until it is stopped.
    """
    try:
        config = build_config(**options)
    except ConfigError as exc:
        raise click.UsageError(str(exc))

    try:
        asyncio.run(supervise(config))
    except Exception:
        logger.exception("❌ Startup failed")
        raise SystemExit(1)


async def supervise(config: Config, scheduler: Optional[Scheduler] = None, stop: Optional[asyncio.Event] = None) -> None:
    """
    Bootstrap the repository, dispatch the modes and wait for scheduled jobs.

    Errors raised here are fatal, errors of individual operations are handled by
    the dispatcher and the scheduler.
    """
    if config.reset_key_permissions:
        reset_key_permissions(config)
    env = borg_env(config)
    await borg.ensure_repository_exists(config, env)

    scheduler = scheduler or Scheduler()
    await dispatch(config, env, scheduler)
    if not scheduler.jobs:
        logger.info("✅ Nothing scheduled, exiting.")
        return

    if stop is None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

    scheduler.start()
    try:
        await stop.wait()
    finally:
        logger.info("ℹ️ Shutting down scheduler.")
        scheduler.shutdown()


@main.command(short_help="Check the connection to the remote host.")
@connection_options
def check(ssh_host: str, ssh_port: int, ssh_key_file: str) -> None:
    """
    \b
    Connect to the remote host with the configured key file and check:
     - SSH connectivity
     - If borg is available on the remote host

    No changes are made to the remote host.
    """
    logger.info("Checking remote host...")
    try:
        client = connect_ssh(ssh_host, ssh_port, ssh_key_file)
    except Exception:
        logger.exception(f"❌ Failed to connect to {ssh_host}:{ssh_port}")
        raise SystemExit(1)

    with client:
        logger.info(f"✅ Connected to {ssh_host}:{ssh_port}")
        exit_code, output = exec_cmd(client, "borg --version")
        if exit_code != 0:
            logger.error("❌ Borg is not available on the remote host.")
            raise SystemExit(1)
        logger.info(f"✅ Borg is available on the remote host. (Version: {output})")
