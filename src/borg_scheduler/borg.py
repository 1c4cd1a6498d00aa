import logging
from datetime import datetime, timezone
from pathlib import Path

from borg_scheduler import util
from borg_scheduler.hooks import run_hook
from borg_scheduler.types import BorgEnv, Config, HookPhase, RestoreRequest

logger = logging.getLogger(__name__)

BORG = "borg"


def repository_selector(config: Config) -> str:
    return f"ssh://{config.ssh_host}:{config.ssh_port}/.{config.borg_repository}"


def archive_name() -> str:
    """Name for a new archive, the current UTC time to the second."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def restore_args(config: Config, restore: RestoreRequest) -> list[str]:
    args = ["extract"]
    if restore.list_files:
        args.append("--list")
    if restore.dry_run:
        args.append("--dry-run")
    args.append(f"{repository_selector(config)}::{restore.backup_name}")
    if restore.path:
        args.append(restore.path)
    if restore.exclude:
        args.extend(["--exclude", restore.exclude])
    return args


def restore_cwd(config: Config, restore: RestoreRequest) -> Path:
    # Archives contain the backup directory itself, extracting in its parent recreates it in place
    return restore.target_dir or config.backup_dir.parent


async def repository_exists(config: Config, env: BorgEnv) -> bool:
    try:
        await util.run(BORG, ["info", repository_selector(config)], env)
    except Exception as exc:
        logger.info(f"ℹ️ Repository {repository_selector(config)} is not available ({exc})")
        return False
    return True


async def init_repository(config: Config, env: BorgEnv) -> None:
    await util.run(BORG, ["init", "--encryption=repokey", repository_selector(config)], env)


async def ensure_repository_exists(config: Config, env: BorgEnv) -> None:
    """
    Make sure the remote repository exists, initializing it when the probe fails.

    A failing probe is not distinguished from a missing repository. If the repository
    does exist, the init attempt fails and that failure propagates to the caller.
    """
    if await repository_exists(config, env):
        logger.info(f"✅ Repository {repository_selector(config)} exists")
        return
    logger.info(f"🚀 Initializing repository {repository_selector(config)}...")
    await init_repository(config, env)
    logger.info(f"✅ Repository {repository_selector(config)} initialized")


async def create_backup(config: Config, env: BorgEnv) -> str:
    await run_hook(config, HookPhase.PRE_BACKUP)
    name = archive_name()
    logger.info(f"🚀 Creating backup {name} of {config.backup_dir}...")
    await util.run(BORG, ["create", f"{repository_selector(config)}::{name}", str(config.backup_dir)], env)
    logger.info(f"✅ Backup {name} created")
    await run_hook(config, HookPhase.POST_BACKUP)
    return name


async def cleanup_backups(config: Config, env: BorgEnv, keep_within: str) -> None:
    logger.info(f"🚀 Pruning backups older than {keep_within}...")
    await util.run(BORG, ["prune", "--keep-within", keep_within, repository_selector(config)], env)
    logger.info("✅ Pruning finished")


async def list_backups(config: Config, env: BorgEnv) -> str:
    output = await util.run(BORG, ["list", repository_selector(config)], env, capture_output=True)
    logger.info(f"Backups in repository {repository_selector(config)}:")
    lines = output.splitlines()
    if len(lines) == 0:
        logger.info("  No backups found.")
    for line in lines:
        logger.info(f"  {line}")
    return output


async def restore_backup(config: Config, env: BorgEnv, restore: RestoreRequest) -> None:
    await run_hook(config, HookPhase.PRE_RESTORE)
    cwd = restore_cwd(config, restore)
    cwd.mkdir(parents=True, exist_ok=True)
    logger.info(f"🚀 Restoring backup {restore.backup_name} into {cwd}...")
    await util.run(BORG, restore_args(config, restore), env, cwd=cwd)
    logger.info(f"✅ Backup {restore.backup_name} restored")
    await run_hook(config, HookPhase.POST_RESTORE)
