import logging
from typing import Awaitable

from borg_scheduler import borg
from borg_scheduler.schedule import Scheduler
from borg_scheduler.types import BorgEnv, Config

logger = logging.getLogger(__name__)


async def _run_safely(name: str, operation: Awaitable[object]) -> bool:
    try:
        await operation
    except Exception:
        logger.exception(f"❌ {name} failed")
        return False
    return True


async def dispatch(config: Config, env: BorgEnv, scheduler: Scheduler) -> None:
    """
    Run the one-shot modes and register the scheduled ones.

    Order: list, restore, backup now, scheduled backup, scheduled cleanup, cleanup now.
    A failing one-shot mode is logged and the following modes still run.
    """
    if config.list_backups:
        await _run_safely("Listing backups", borg.list_backups(config, env))

    if config.restore:
        await _run_safely("Restore", borg.restore_backup(config, env, config.restore))

    if config.backup_now:
        await _run_safely("Backup", borg.create_backup(config, env))

    if config.backup:
        scheduler.schedule(
            "backup",
            config.backup.interval_cron,
            lambda: borg.create_backup(config, env),
        )

    if config.cleanup:
        keep_within = config.cleanup.keep_within
        scheduler.schedule(
            "cleanup",
            config.cleanup.interval_cron,
            lambda: borg.cleanup_backups(config, env, keep_within),
        )

    if config.cleanup_now:
        await _run_safely("Cleanup", borg.cleanup_backups(config, env, config.cleanup_now.keep_within))
