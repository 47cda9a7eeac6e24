"""
Backup module for pgbackup.

This module handles the core backup functionality including:
- External tool wrappers (pg_dump, pg_basebackup, rclone, mail)
- Logical and physical backup steps
- Upload to remote storage (rclone or S3)
- Email notifications
- Retention policy enforcement
- Execution orchestration
"""

from .executor import BackupExecutor, RunState, RunStage, execute_backup
from .tools import DumpTool, BaseBackupTool, SyncTool, MailTool, ToolError
from .storage import S3SyncTool, StorageError
from .notifier import Notifier
from .uploader import Uploader
from .retention import RetentionCleaner

__all__ = [
    'BackupExecutor',
    'RunState',
    'RunStage',
    'execute_backup',
    'DumpTool',
    'BaseBackupTool',
    'SyncTool',
    'MailTool',
    'ToolError',
    'S3SyncTool',
    'StorageError',
    'Notifier',
    'Uploader',
    'RetentionCleaner'
]
