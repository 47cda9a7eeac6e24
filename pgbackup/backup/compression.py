"""
Archive helpers for backup artifacts.

- Artifact filenames: {db}_{timestamp}.dump and pg_base_backup_{timestamp}.tar.gz
- Packing a pg_basebackup staging directory into a single tar.gz
- Ownership fix-up and human-readable sizes
"""

import os
import pwd
import tarfile
import getpass
from datetime import datetime
from pathlib import Path
from typing import Optional


TIMESTAMP_FORMAT = '%Y-%m-%d-%H%M%S'

LOGICAL_EXTENSION = '.dump'
PHYSICAL_EXTENSION = '.tar.gz'
PHYSICAL_PREFIX = 'pg_base_backup'

# Extensions the retention cleaner considers backup artifacts
ARTIFACT_EXTENSIONS = (LOGICAL_EXTENSION, PHYSICAL_EXTENSION)


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def generate_timestamp(now: Optional[datetime] = None) -> str:
    """Return a filename timestamp, e.g. 2025-11-03-020000."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def logical_backup_filename(db_name: str, timestamp: str) -> str:
    """
    Generate the logical dump filename.

    Format: {db_name}_{timestamp}.dump

    Args:
        db_name: Database name
        timestamp: Timestamp from generate_timestamp()

    Returns:
        Filename (without path)
    """
    return f"{db_name}_{timestamp}{LOGICAL_EXTENSION}"


def physical_backup_filename(timestamp: str) -> str:
    """
    Generate the physical base backup filename.

    Format: pg_base_backup_{timestamp}.tar.gz
    """
    return f"{PHYSICAL_PREFIX}_{timestamp}{PHYSICAL_EXTENSION}"


def is_backup_artifact(filename: str) -> bool:
    """Check whether a filename carries one of the artifact extensions."""
    return filename.endswith(ARTIFACT_EXTENSIONS)


def archive_directory(source_dir: str, archive_path: str) -> str:
    """
    Pack the contents of a directory into a gzip compressed tar.

    Members are stored relative to source_dir ('./base.tar.gz', ...), like
    `tar -czf archive -C source_dir .`.

    Args:
        source_dir: Directory whose contents are archived
        archive_path: Output archive path (with extension)

    Returns:
        archive_path

    Raises:
        CompressionError: If the directory is missing or archiving fails
    """
    source = Path(source_dir)
    if not source.is_dir():
        raise CompressionError(f"Path is not a directory: {source_dir}")

    try:
        with tarfile.open(archive_path, 'w:gz') as tar:
            tar.add(source, arcname='.', recursive=True)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive: {e}")


def invoking_user() -> str:
    """
    Return the user who started the run.

    Under sudo this is the original user rather than root.
    """
    return os.environ.get('SUDO_USER') or getpass.getuser()


def fix_ownership(path: str, user: Optional[str] = None):
    """
    Hand a file over to the invoking user.

    Only root can change ownership; for any other user the file already
    belongs to the process, so nothing is done.

    Args:
        path: File to chown
        user: Target user (default: invoking_user())

    Raises:
        CompressionError: If the user is unknown or chown fails
    """
    if os.geteuid() != 0:
        return

    user = user or invoking_user()
    try:
        entry = pwd.getpwnam(user)
        os.chown(path, entry.pw_uid, entry.pw_gid)
    except KeyError:
        raise CompressionError(f"Unknown user: {user}")
    except OSError as e:
        raise CompressionError(f"Failed to change ownership of {path}: {e}")


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except Exception as e:
        raise CompressionError(f"Failed to get archive size: {e}")


def format_size(num_bytes: int) -> str:
    """Human-readable size in the style of `du -h` (e.g. 512B, 4.0K, 12M)."""
    size = float(num_bytes)
    for unit in ('B', 'K', 'M', 'G', 'T'):
        if size < 1024 or unit == 'T':
            if unit == 'B':
                return f"{int(size)}B"
            return f"{size:.1f}{unit}" if size < 10 else f"{size:.0f}{unit}"
        size /= 1024
