"""
Retention policy enforcement for local backups.

Deletes backup artifacts (.dump, .tar.gz) from the local backup directory
once they are older than the configured number of days. Age is counted in
whole days, so a file is removed only after more than retention_days full
days have passed since its last modification (find -mtime +N).
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .compression import is_backup_artifact


logger = logging.getLogger(__name__)


class RetentionCleaner:
    """
    Removes expired backup artifacts from one directory.

    Only the top level of the directory is scanned.
    """

    def __init__(self, directory: str, retention_days: int):
        """
        Initialize retention cleaner.

        Args:
            directory: Local backup directory
            retention_days: Maximum age in whole days before a file is deleted
        """
        if retention_days < 0:
            raise ValueError(f"Retention days must not be negative: {retention_days}")

        self.directory = Path(directory)
        self.retention_days = retention_days

    def find_expired(self, now: Optional[datetime] = None) -> List[Path]:
        """
        List artifacts older than the retention period.

        Args:
            now: Reference time (default: current local time)

        Returns:
            Paths of expired artifact files, sorted by name
        """
        if not self.directory.is_dir():
            return []

        now = now or datetime.now()
        expired = []

        for file_path in self.directory.iterdir():
            if not file_path.is_file() or not is_backup_artifact(file_path.name):
                continue

            modified = datetime.fromtimestamp(file_path.stat().st_mtime)
            if (now - modified).days > self.retention_days:
                expired.append(file_path)

        return sorted(expired)

    def clean(self, now: Optional[datetime] = None) -> int:
        """
        Delete expired artifacts.

        Args:
            now: Reference time (default: current local time)

        Returns:
            Number of files deleted
        """
        logger.info(f"Starting cleanup of backups older than {self.retention_days} days...")

        expired = self.find_expired(now)
        if not expired:
            logger.info("No old backup files to delete")
            return 0

        logger.info(f"Found {len(expired)} old backup file(s)")

        deleted_count = 0
        for file_path in expired:
            try:
                file_path.unlink()
                deleted_count += 1
                logger.debug(f"Deleted local file: {file_path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error(f"ERROR: Failed to delete local file {file_path}: {e}")

        logger.info(f"Deleted {deleted_count} old backup file(s)")
        return deleted_count
