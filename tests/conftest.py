from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Optional, TypedDict

import pytest

from borg_scheduler import util
from borg_scheduler.types import BorgEnv, Config
from borg_scheduler.util import ExecutionError

SELECTOR = "ssh://borg@backup.example.com:2222/./backups/data"


class RunCall(TypedDict):
    executable: str
    args: list[str]
    env: Optional[dict[str, str]]
    capture_output: bool
    cwd: Optional[Path]


class RunnerStub:
    """Records every invocation instead of starting processes."""

    def __init__(
        self,
        returncode: int = 0,
        stdout: str = "",
        fail_when: Callable[[str, list[str]], bool] | None = None,
    ) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.fail_when = fail_when
        self.calls: list[RunCall] = []

    async def __call__(
        self,
        executable: str,
        args: Sequence[str],
        env: Optional[Mapping[str, str]] = None,
        capture_output: bool = False,
        cwd: Optional[Path] = None,
    ) -> Optional[str]:
        args_list = list(args)
        self.calls.append(
            {
                "executable": executable,
                "args": args_list,
                "env": dict(env) if env is not None else None,
                "capture_output": capture_output,
                "cwd": Path(cwd) if cwd is not None else None,
            }
        )
        failing = self.fail_when(executable, args_list) if self.fail_when else self.returncode != 0
        if failing:
            raise ExecutionError(executable, args_list, self.returncode or 2)
        return self.stdout if capture_output else None

    @property
    def commands(self) -> list[list[str]]:
        return [[call["executable"], *call["args"]] for call in self.calls]


@pytest.fixture
def runner(monkeypatch: pytest.MonkeyPatch) -> RunnerStub:
    stub = RunnerStub()
    monkeypatch.setattr(util, "run", stub)
    return stub


@pytest.fixture
def sample_config(tmp_path: Path) -> Config:
    key_file = tmp_path / "id_ed25519"
    key_file.write_text("not a real key\n", encoding="utf-8")
    return Config(
        ssh_host="borg@backup.example.com",
        ssh_port=2222,
        backup_dir=Path("/data"),
        borg_repository="/backups/data",
        ssh_key_file=key_file,
        borg_passphrase="unit-test-passphrase",
    )


@pytest.fixture
def sample_env() -> BorgEnv:
    return {
        "BORG_PASSPHRASE": "unit-test-passphrase",
        "BORG_RSH": "ssh -i /keys/id_ed25519 -o StrictHostKeyChecking=no",
    }
