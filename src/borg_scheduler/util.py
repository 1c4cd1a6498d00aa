import asyncio
import errno
import logging
import os
from typing import Mapping, Optional, Sequence

import paramiko

logger = logging.getLogger(__name__)


class ExecutionError(RuntimeError):
    def __init__(self, executable: str, args: Sequence[str], returncode: int):
        self.executable = executable
        self.args_list = list(args)
        self.returncode = returncode
        super().__init__(f"The command '{executable}' exited with the unsuccessful status code '{returncode}'.")


async def run(
    executable: str,
    args: Sequence[str],
    env: Optional[Mapping[str, str]] = None,
    capture_output: bool = False,
    cwd: Optional[os.PathLike | str] = None,
) -> Optional[str]:
    """
    Run an executable and wait for it to exit.

    The ``env`` overlay is merged over the current environment. Stdin is never
    forwarded and stderr is always inherited. With ``capture_output`` the decoded
    stdout is returned, otherwise stdout is inherited and None is returned.

    Raises ExecutionError on a nonzero exit code or when the process cannot be started.
    """
    logger.debug(f"Running {executable} {' '.join(args)}" + (f" in {cwd}" if cwd else ""))
    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE if capture_output else None,
            stderr=None,
            env={**os.environ, **env} if env else None,
            cwd=cwd,
        )
    except OSError as exc:
        # Same exit codes a shell reports for these
        returncode = 126 if exc.errno in (errno.EACCES, errno.EPERM) else 127
        raise ExecutionError(executable, args, returncode) from exc

    stdout, _ = await process.communicate()
    if process.returncode != 0:
        raise ExecutionError(executable, args, process.returncode)
    if capture_output:
        return stdout.decode()
    return None


def exec_cmd(client: 'paramiko.SSHClient', command: str) -> tuple[int, str]:
    """Execute a command on the remote SSH client and return the exit code and stdout."""
    _, stdout, _ = client.exec_command(command)
    exit_code = stdout.channel.recv_exit_status()
    return exit_code, stdout.read().decode().strip()


def split_host(ssh_host: str) -> tuple[Optional[str], str]:
    """Split ``user@host`` into its parts, the user being optional."""
    if "@" in ssh_host:
        username, hostname = ssh_host.rsplit("@", 1)
        return username, hostname
    return None, ssh_host


def connect_ssh(ssh_host: str, ssh_port: int, ssh_key_file: str) -> 'paramiko.SSHClient':
    """Establish an SSH connection to ``[user@]host`` on the given port, authenticating with the key file."""
    username, hostname = split_host(ssh_host)
    client = paramiko.SSHClient()
    client.load_system_host_keys()
    # Borg runs ssh with StrictHostKeyChecking=no, accept unknown hosts the same way
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    client.connect(
        hostname,
        port=ssh_port,
        username=username,
        key_filename=str(ssh_key_file),
        timeout=3,
    )
    return client
