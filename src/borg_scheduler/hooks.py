import logging

from borg_scheduler import util
from borg_scheduler.types import Config, HookPhase

logger = logging.getLogger(__name__)


async def run_hook(config: Config, phase: HookPhase) -> None:
    """
    Run the hook command configured for ``phase``, if any.

    The command is split on whitespace, there is no shell quoting. It runs with the
    plain process environment, without the borg credentials. A failing hook raises
    ExecutionError like any other command.
    """
    command = config.hooks.command_for(phase)
    if not command or not command.strip():
        return

    (executable, *args) = command.split()
    logger.info(f"🚀 Running {phase.value} hook: {command}")
    await util.run(executable, args)
    logger.info(f"✅ {phase.value} hook finished")
