from __future__ import annotations

import dataclasses

import pytest

from borg_scheduler.dispatch import dispatch
from borg_scheduler.schedule import Scheduler
from borg_scheduler.types import (
    BackupSchedule,
    BorgEnv,
    CleanupPolicy,
    CleanupSchedule,
    Config,
    RestoreRequest,
)
from tests.conftest import SELECTOR, RunnerStub


def all_modes(config: Config) -> Config:
    return dataclasses.replace(
        config,
        list_backups=True,
        restore=RestoreRequest(backup_name="X"),
        backup_now=True,
        backup=BackupSchedule(interval_cron="0 0 * * *"),
        cleanup=CleanupSchedule(interval_cron="0 4 * * sun", keep_within="30d"),
        cleanup_now=CleanupPolicy(keep_within="7d"),
    )


@pytest.mark.asyncio
async def test_dispatch_runs_one_shot_modes_in_order_and_registers_jobs(
    sample_config: Config, sample_env: BorgEnv, runner: RunnerStub
) -> None:
    scheduler = Scheduler()

    await dispatch(all_modes(sample_config), sample_env, scheduler)

    assert [command[1] for command in runner.commands] == ["list", "extract", "create", "prune"]
    assert runner.commands[3] == ["borg", "prune", "--keep-within", "7d", SELECTOR]
    assert sorted(scheduler.jobs) == ["backup", "cleanup"]
    assert scheduler.jobs["backup"].cron_expression == "0 0 * * *"
    assert scheduler.jobs["cleanup"].cron_expression == "0 4 * * sun"


@pytest.mark.asyncio
async def test_dispatch_runs_nothing_for_disabled_modes(
    sample_config: Config, sample_env: BorgEnv, runner: RunnerStub
) -> None:
    scheduler = Scheduler()

    await dispatch(sample_config, sample_env, scheduler)

    assert runner.calls == []
    assert scheduler.jobs == {}


@pytest.mark.asyncio
async def test_dispatch_continues_after_failing_mode(
    sample_config: Config, sample_env: BorgEnv, runner: RunnerStub, caplog: pytest.LogCaptureFixture
) -> None:
    runner.fail_when = lambda _, args: args[0] == "extract"
    scheduler = Scheduler()

    await dispatch(all_modes(sample_config), sample_env, scheduler)

    assert [command[1] for command in runner.commands] == ["list", "extract", "create", "prune"]
    assert "Restore failed" in caplog.text
    assert sorted(scheduler.jobs) == ["backup", "cleanup"]


@pytest.mark.asyncio
async def test_dispatch_logs_exit_code_failures_without_raising(
    sample_config: Config, sample_env: BorgEnv, runner: RunnerStub, caplog: pytest.LogCaptureFixture
) -> None:
    runner.returncode = 3
    config = dataclasses.replace(sample_config, backup_now=True, cleanup_now=CleanupPolicy(keep_within="7d"))

    await dispatch(config, sample_env, Scheduler())

    assert "Backup failed" in caplog.text
    assert "Cleanup failed" in caplog.text
    assert "unsuccessful status code '3'" in caplog.text
