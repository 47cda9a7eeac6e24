"""
Backup steps: logical dump and physical base backup.

Each step records its artifact path on the run state, returns True on
success and on failure logs the error, marks the run as failed and returns
False. Tool errors never propagate out of a step.
"""

import os
import shutil
import logging
import tempfile
from typing import Optional

from .tools import DumpTool, BaseBackupTool, SudoStagingTool, ToolError, run_as_prefix
from .compression import (
    generate_timestamp,
    logical_backup_filename,
    physical_backup_filename,
    archive_directory,
    fix_ownership,
    invoking_user,
    get_archive_size,
    format_size,
    CompressionError
)


logger = logging.getLogger(__name__)


def perform_logical_backup(settings, dump_tool: DumpTool, state) -> bool:
    """
    Dump the configured database into {db}_{timestamp}.dump.

    Args:
        settings: BackupSettings
        dump_tool: DumpTool to run
        state: RunState; logical_path is set, failed is set on error

    Returns:
        True if the dump tool succeeded
    """
    logger.info(f"Starting logical backup of {settings.db_name}...")

    state.logical_path = os.path.join(
        settings.backup_dir,
        logical_backup_filename(settings.db_name, state.timestamp)
    )

    try:
        dump_tool.dump(settings.db_name, state.logical_path)
    except (ToolError, OSError) as e:
        logger.error(f"ERROR: Logical backup failed! {e}")
        state.mark_failed()
        _remove_partial(state.logical_path)
        return False

    logger.info(f"Logical backup completed successfully: {state.logical_path}")
    _log_size(state.logical_path)
    return True


def perform_physical_backup(settings, base_backup_tool: BaseBackupTool, state) -> bool:
    """
    Take a base backup and pack it into pg_base_backup_{timestamp}.tar.gz.

    A fresh timestamp is taken here, so the physical artifact can be named
    a little later than the logical one from the same run. The staging
    directory is removed whatever the outcome.

    Args:
        settings: BackupSettings
        base_backup_tool: BaseBackupTool to run
        state: RunState; physical_path is set, failed is set on error

    Returns:
        True if the base backup and packing succeeded
    """
    logger.info("Starting physical base backup...")
    timestamp = generate_timestamp()

    state.physical_path = os.path.join(settings.backup_dir, physical_backup_filename(timestamp))
    sudo_staging = sudo_staging_tool(settings)
    staging_dir = None

    try:
        staging_dir = create_staging_directory(settings, timestamp, sudo_staging)
        state.staging_dir = staging_dir

        base_backup_tool.backup(staging_dir)
        logger.info("pg_basebackup completed. Compressing into single tar.gz file...")

        if sudo_staging:
            sudo_staging.archive(staging_dir, state.physical_path)
            sudo_staging.chown(state.physical_path, invoking_user())
        else:
            archive_directory(staging_dir, state.physical_path)
            fix_ownership(state.physical_path)

    except (ToolError, CompressionError, OSError) as e:
        logger.error(f"ERROR: Physical backup failed! {e}")
        state.mark_failed()
        _remove_partial(state.physical_path)
        return False

    finally:
        if staging_dir:
            remove_staging_directory(staging_dir, sudo_staging)

    logger.info(f"Physical backup completed successfully: {state.physical_path}")
    _log_size(state.physical_path)
    return True


def sudo_staging_tool(settings) -> Optional[SudoStagingTool]:
    """
    Return a SudoStagingTool when pg_basebackup runs through sudo from a
    non-root process, None when this process can handle the files itself.
    """
    if run_as_prefix(settings.db_user) and os.geteuid() != 0:
        return SudoStagingTool(settings.db_user)
    return None


def create_staging_directory(settings, timestamp: str,
                             sudo_staging: Optional[SudoStagingTool] = None) -> str:
    """
    Create a private staging directory for pg_basebackup.

    The directory must be writable by the database OS user. Through sudo it
    is created as that user; when running as root it is created here and
    handed over.

    Args:
        settings: BackupSettings
        timestamp: Timestamp of the physical backup
        sudo_staging: SudoStagingTool for a non-root operator, or None

    Returns:
        Path of the new directory

    Raises:
        ToolError: If the directory cannot be created through sudo
        OSError: If the directory cannot be created or handed over
    """
    os.makedirs(settings.staging_dir, exist_ok=True)

    if sudo_staging:
        staging_dir = os.path.join(settings.staging_dir, f'pg_base_backup_temp_{timestamp}')
        sudo_staging.make_directory(staging_dir)
        logger.debug(f"Staging directory: {staging_dir} (owner: {settings.db_user})")
        return staging_dir

    staging_dir = tempfile.mkdtemp(
        prefix=f'pg_base_backup_temp_{timestamp}_',
        dir=settings.staging_dir
    )

    if settings.db_user and os.geteuid() == 0:
        try:
            shutil.chown(staging_dir, user=settings.db_user)
        except (LookupError, OSError) as e:
            remove_staging_directory(staging_dir)
            raise OSError(f"Failed to hand staging directory to {settings.db_user}: {e}")

    logger.debug(f"Staging directory: {staging_dir}")
    return staging_dir


def remove_staging_directory(staging_dir: str, sudo_staging: Optional[SudoStagingTool] = None):
    """Remove the staging directory and everything in it."""
    if sudo_staging:
        try:
            sudo_staging.remove(staging_dir)
            logger.debug("Cleaned up staging directory")
        except ToolError as e:
            logger.error(f"ERROR: Failed to remove staging directory {staging_dir}: {e}")
        return

    if os.path.exists(staging_dir):
        try:
            shutil.rmtree(staging_dir)
            logger.debug("Cleaned up staging directory")
        except OSError as e:
            logger.error(f"ERROR: Failed to remove staging directory {staging_dir}: {e}")


def _remove_partial(path: str):
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError as e:
            logger.warning(f"Could not remove partial backup {path}: {e}")


def _log_size(path: str):
    try:
        logger.info(f"Backup size: {format_size(get_archive_size(path))}")
    except CompressionError as e:
        logger.warning(f"Could not determine backup size: {e}")
