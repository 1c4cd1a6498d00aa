from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, TypedDict


class HookPhase(Enum):
    PRE_BACKUP = "pre-backup"
    POST_BACKUP = "post-backup"
    PRE_RESTORE = "pre-restore"
    POST_RESTORE = "post-restore"


class BorgEnv(TypedDict):
    BORG_PASSPHRASE: str
    BORG_RSH: str


@dataclass(frozen=True)
class Hooks:
    pre_backup: Optional[str] = None
    post_backup: Optional[str] = None
    pre_restore: Optional[str] = None
    post_restore: Optional[str] = None

    def command_for(self, phase: HookPhase) -> Optional[str]:
        return {
            HookPhase.PRE_BACKUP: self.pre_backup,
            HookPhase.POST_BACKUP: self.post_backup,
            HookPhase.PRE_RESTORE: self.pre_restore,
            HookPhase.POST_RESTORE: self.post_restore,
        }[phase]


@dataclass(frozen=True)
class BackupSchedule:
    interval_cron: str


@dataclass(frozen=True)
class CleanupPolicy:
    keep_within: str


@dataclass(frozen=True)
class CleanupSchedule:
    interval_cron: str
    keep_within: str


@dataclass(frozen=True)
class RestoreRequest:
    backup_name: str
    dry_run: bool = False
    list_files: bool = False
    path: Optional[str] = None
    exclude: Optional[str] = None
    target_dir: Optional[Path] = None


@dataclass(frozen=True)
class Config:
    ssh_host: str
    ssh_port: int
    backup_dir: Path
    borg_repository: str
    ssh_key_file: Path
    borg_passphrase: Optional[str] = None
    borg_passphrase_file: Optional[Path] = None
    reset_key_permissions: bool = False
    hooks: Hooks = field(default_factory=Hooks)

    list_backups: bool = False
    backup_now: bool = False
    backup: Optional[BackupSchedule] = None
    cleanup: Optional[CleanupSchedule] = None
    cleanup_now: Optional[CleanupPolicy] = None
    restore: Optional[RestoreRequest] = None
