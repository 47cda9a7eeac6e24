"""
External tool capabilities used by the backup run.

Each external program the run depends on sits behind a narrow interface so
the orchestrator can be driven by fakes in tests:
- DumpTool: logical dump (pg_dump)
- BaseBackupTool: physical base backup (pg_basebackup)
- SyncTool: remote copy (rclone)
- MailTool: email delivery (mail)

Implementations raise ToolError when the program exits nonzero or cannot be
started.
"""

import abc
import getpass
import logging
import subprocess
from typing import List, Optional


logger = logging.getLogger(__name__)

# Lines of stderr kept on a ToolError
STDERR_TAIL_LINES = 20


class ToolError(Exception):
    """Raised when an external tool fails."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ''):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class DumpTool(abc.ABC):
    """Produces a logical dump of one database."""

    @abc.abstractmethod
    def dump(self, database: str, output_path: str):
        """Write a dump of database to output_path."""


class BaseBackupTool(abc.ABC):
    """Produces a physical base backup of the whole cluster."""

    @abc.abstractmethod
    def backup(self, target_dir: str):
        """Write the base backup into target_dir."""


class SyncTool(abc.ABC):
    """Copies a local file to a remote destination."""

    @abc.abstractmethod
    def copy(self, local_path: str, remote: str):
        """Copy local_path to remote."""


class MailTool(abc.ABC):
    """Delivers a plain-text email."""

    @abc.abstractmethod
    def send(self, subject: str, body: str, sender: str, recipient: str):
        """Send body with subject from sender to recipient."""


def run_as_prefix(user: Optional[str]) -> List[str]:
    """
    Build the command prefix for running a tool as another OS user.

    Args:
        user: Target OS user, or None to run as the current user

    Returns:
        ['sudo', '-u', user] if user differs from the current user, else []
    """
    if not user or user == getpass.getuser():
        return []
    return ['sudo', '-u', user]


def command_name(cmd: List[str]) -> str:
    """Name of the program a command runs, looking past a sudo prefix."""
    if cmd[0] != 'sudo':
        return cmd[0]

    args = cmd[1:]
    while args and args[0].startswith('-'):
        args = args[2:] if args[0] == '-u' else args[1:]
    return args[0] if args else 'sudo'


def run_command(cmd: List[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Run a command to completion, raising ToolError on failure.

    Blocks until the command exits; there is no timeout.

    Args:
        cmd: Command and arguments
        **kwargs: Passed to subprocess.run (stdout, input, ...)

    Returns:
        CompletedProcess of the finished command

    Raises:
        ToolError: If the command cannot be started or exits nonzero
    """
    name = command_name(cmd)
    logger.debug(f"Running: {' '.join(cmd)}")

    try:
        result = subprocess.run(cmd, stderr=subprocess.PIPE, **kwargs)
    except FileNotFoundError as e:
        raise ToolError(f"{name} not found: {e}")
    except OSError as e:
        raise ToolError(f"Failed to start {name}: {e}")

    if result.returncode != 0:
        stderr = result.stderr
        if isinstance(stderr, bytes):
            stderr = stderr.decode('utf-8', errors='replace')
        stderr_tail = '\n'.join((stderr or '').strip().splitlines()[-STDERR_TAIL_LINES:])
        message = f"{name} exited with status {result.returncode}"
        if stderr_tail:
            message = f"{message}: {stderr_tail}"
        raise ToolError(message, returncode=result.returncode, stderr=stderr_tail)

    return result


class PgDumpTool(DumpTool):
    """
    pg_dump in custom archive format.

    Output is redirected to the artifact file, so the file is written by
    this process even when pg_dump runs through sudo.
    """

    def __init__(self, run_as: Optional[str] = None, binary: str = 'pg_dump'):
        self.run_as = run_as
        self.binary = binary

    def build_command(self, database: str) -> List[str]:
        return run_as_prefix(self.run_as) + [self.binary, '-Fc', '-d', database]

    def dump(self, database: str, output_path: str):
        with open(output_path, 'wb') as output:
            run_command(self.build_command(database), stdout=output)


class PgBaseBackupTool(BaseBackupTool):
    """pg_basebackup in tar format, maximum compression, streamed WAL."""

    def __init__(self, run_as: Optional[str] = None, binary: str = 'pg_basebackup',
                 compress_level: int = 9):
        self.run_as = run_as
        self.binary = binary
        self.compress_level = compress_level

    def build_command(self, target_dir: str) -> List[str]:
        return run_as_prefix(self.run_as) + [
            self.binary,
            '-D', target_dir,
            '-Ft',
            '-Z', str(self.compress_level),
            '-X', 'stream',
            '-P'
        ]

    def backup(self, target_dir: str):
        run_command(self.build_command(target_dir), stdout=subprocess.DEVNULL)


class RcloneSyncTool(SyncTool):
    """rclone copy to a configured remote (e.g. 'gdrive_backups:postgresql_backups')."""

    def __init__(self, binary: str = 'rclone'):
        self.binary = binary

    def build_command(self, local_path: str, remote: str) -> List[str]:
        return [self.binary, 'copy', local_path, remote, '--progress']

    def copy(self, local_path: str, remote: str):
        run_command(self.build_command(local_path, remote), stdout=subprocess.DEVNULL)


class MailCommandTool(MailTool):
    """mail(1) with the body on stdin."""

    def __init__(self, binary: str = 'mail'):
        self.binary = binary

    def build_command(self, subject: str, sender: str, recipient: str) -> List[str]:
        return [self.binary, '-s', subject, '-r', sender, recipient]

    def send(self, subject: str, body: str, sender: str, recipient: str):
        run_command(
            self.build_command(subject, sender, recipient),
            input=body,
            text=True,
            stdout=subprocess.DEVNULL
        )


class SudoStagingTool:
    """
    Staging directory handling through sudo, for a non-root operator.

    pg_basebackup runs as run_as and writes files only that user can read,
    so the directory is created as run_as while packing, chown and removal
    go through root.
    """

    def __init__(self, run_as: str):
        self.run_as = run_as

    def make_directory(self, path: str):
        run_command(run_as_prefix(self.run_as) + ['mkdir', '-p', '-m', '700', path])

    def archive(self, source_dir: str, archive_path: str):
        run_command(['sudo', 'tar', '-czf', archive_path, '-C', source_dir, '.'])

    def chown(self, path: str, user: str):
        run_command(['sudo', 'chown', f'{user}:', path])

    def remove(self, path: str):
        run_command(['sudo', 'rm', '-rf', path])
