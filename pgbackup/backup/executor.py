"""
Backup executor - orchestrates the complete backup run.

Workflow:
1. Logical dump (pg_dump)             START         -> LOGICAL_DONE
2. Physical base backup (pg_basebackup) LOGICAL_DONE -> PHYSICAL_DONE
3. Upload both artifacts               PHYSICAL_DONE -> UPLOADED
4. Success email + retention cleanup   UPLOADED      -> CLEANED
5. Completion                          CLEANED       -> SUCCESS

Any failing step moves the run to FAILED and the process exits with status 1.
"""

import os
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from pgbackup.config import BackupSettings, load_settings
from .tools import (
    DumpTool,
    BaseBackupTool,
    SyncTool,
    MailTool,
    ToolError,
    PgDumpTool,
    PgBaseBackupTool,
    MailCommandTool
)
from .compression import generate_timestamp
from .storage import create_sync_tool
from .steps import perform_logical_backup, perform_physical_backup
from .uploader import Uploader
from .retention import RetentionCleaner
from .notifier import Notifier, SUBJECT_TASK_FAILURE


logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

BANNER = '=' * 60


class RunStage(enum.Enum):
    START = 'start'
    LOGICAL_DONE = 'logical_done'
    PHYSICAL_DONE = 'physical_done'
    UPLOADED = 'uploaded'
    CLEANED = 'cleaned'
    SUCCESS = 'success'
    FAILED = 'failed'


TERMINAL_STAGES = frozenset({RunStage.SUCCESS, RunStage.FAILED})

ALLOWED_TRANSITIONS = {
    RunStage.START: RunStage.LOGICAL_DONE,
    RunStage.LOGICAL_DONE: RunStage.PHYSICAL_DONE,
    RunStage.PHYSICAL_DONE: RunStage.UPLOADED,
    RunStage.UPLOADED: RunStage.CLEANED,
    RunStage.CLEANED: RunStage.SUCCESS,
}


@dataclass
class RunState:
    """
    Mutable state of one backup run.

    timestamp is taken when the run starts and names the logical artifact.
    failed is set by the first failing step and never cleared.
    """

    timestamp: str
    stage: RunStage = RunStage.START
    failed: bool = False
    logical_path: Optional[str] = None
    physical_path: Optional[str] = None
    staging_dir: Optional[str] = None

    def mark_failed(self):
        self.failed = True

    def advance(self, stage: RunStage):
        """
        Move to the next stage.

        Raises:
            ValueError: If the transition is not allowed
        """
        if stage is RunStage.FAILED:
            if self.stage in TERMINAL_STAGES:
                raise ValueError(f"Cannot fail a finished run (stage: {self.stage.value})")
            self.failed = True
        elif ALLOWED_TRANSITIONS.get(self.stage) is not stage:
            raise ValueError(f"Invalid transition: {self.stage.value} -> {stage.value}")

        self.stage = stage

    @property
    def succeeded(self) -> bool:
        return self.stage is RunStage.SUCCESS


class BackupExecutor:
    """
    Runs the backup steps in order as an explicit state machine.
    """

    def __init__(
        self,
        settings: BackupSettings,
        dump_tool: DumpTool,
        base_backup_tool: BaseBackupTool,
        sync_tool: SyncTool,
        mail_tool: MailTool
    ):
        """
        Initialize backup executor.

        Args:
            settings: Run configuration
            dump_tool: Logical dump capability
            base_backup_tool: Physical base backup capability
            sync_tool: Remote copy capability
            mail_tool: Email capability
        """
        self.settings = settings
        self.dump_tool = dump_tool
        self.base_backup_tool = base_backup_tool
        self.notifier = Notifier(settings, mail_tool)
        self.uploader = Uploader(settings, sync_tool, self.notifier)
        self.cleaner = RetentionCleaner(settings.backup_dir, settings.retention_days)
        self.state = None

    def execute(self) -> int:
        """
        Execute the backup run.

        Returns:
            EXIT_SUCCESS if the run reached SUCCESS, EXIT_FAILURE otherwise
        """
        self.state = RunState(timestamp=generate_timestamp())

        logger.info(BANNER)
        logger.info("PostgreSQL Backup Process Started")
        logger.info(BANNER)
        logger.debug(f"Database: {self.settings.db_name} (data directory: {self.settings.data_dir})")

        try:
            os.makedirs(self.settings.backup_dir, exist_ok=True)

            if not self.run_logical_backup():
                return EXIT_FAILURE
            if not self.run_physical_backup():
                return EXIT_FAILURE
            if not self.check_failure_gate():
                return EXIT_FAILURE
            if not self.run_upload():
                return EXIT_FAILURE

            self.run_cleanup()
            self.finish()
            return EXIT_SUCCESS

        except Exception as e:
            logger.exception(f"ERROR: Backup failed: {e}")
            if self.state.stage not in TERMINAL_STAGES:
                self.state.advance(RunStage.FAILED)
            self.notifier.notify_failure(
                SUBJECT_TASK_FAILURE,
                f"Backup of {self.settings.db_name} failed unexpectedly: {e}. "
                f"Please investigate immediately."
            )
            return EXIT_FAILURE

    def run_logical_backup(self) -> bool:
        """START -> LOGICAL_DONE, or FAILED with a failure email."""
        if perform_logical_backup(self.settings, self.dump_tool, self.state):
            self.state.advance(RunStage.LOGICAL_DONE)
            return True

        self.state.advance(RunStage.FAILED)
        self.notifier.notify_failure(
            SUBJECT_TASK_FAILURE,
            f"Logical backup of {self.settings.db_name} failed. Please investigate immediately."
        )
        logger.info("Backup process terminated due to logical backup failure")
        return False

    def run_physical_backup(self) -> bool:
        """LOGICAL_DONE -> PHYSICAL_DONE, or FAILED with a failure email."""
        if perform_physical_backup(self.settings, self.base_backup_tool, self.state):
            self.state.advance(RunStage.PHYSICAL_DONE)
            return True

        self.state.advance(RunStage.FAILED)
        self.notifier.notify_failure(
            SUBJECT_TASK_FAILURE,
            "Physical base backup failed. Please investigate immediately."
        )
        logger.info("Backup process terminated due to physical backup failure")
        return False

    def check_failure_gate(self) -> bool:
        """Refuse to upload if any step flagged the run as failed."""
        if self.state.failed:
            logger.info("Backup failed. Skipping upload and cleanup.")
            if self.state.stage is not RunStage.FAILED:
                self.state.advance(RunStage.FAILED)
            return False
        return True

    def run_upload(self) -> bool:
        """PHYSICAL_DONE -> UPLOADED, or FAILED (the uploader sends the email)."""
        if self.uploader.upload_all(self.state):
            self.state.advance(RunStage.UPLOADED)
            return True

        self.state.advance(RunStage.FAILED)
        logger.info("Upload failed. Keeping local backups.")
        return False

    def run_cleanup(self):
        """UPLOADED -> CLEANED: success email, then retention cleanup."""
        self.notifier.notify_success(self.state)

        # Cleanup errors do not fail the run
        try:
            self.cleaner.clean()
        except OSError as e:
            logger.error(f"ERROR: Retention cleanup failed: {e}")

        self.state.advance(RunStage.CLEANED)

    def finish(self):
        """CLEANED -> SUCCESS."""
        self.state.advance(RunStage.SUCCESS)
        logger.info(BANNER)
        logger.info("PostgreSQL Backup Process Completed Successfully")
        logger.info(BANNER)


def create_executor(settings: BackupSettings) -> BackupExecutor:
    """
    Build an executor wired to the real external tools.

    Args:
        settings: Run configuration

    Returns:
        BackupExecutor instance
    """
    return BackupExecutor(
        settings,
        dump_tool=PgDumpTool(run_as=settings.db_user),
        base_backup_tool=PgBaseBackupTool(run_as=settings.db_user),
        sync_tool=create_sync_tool(settings),
        mail_tool=MailCommandTool(binary=settings.mail_command)
    )


def execute_backup(settings: Optional[BackupSettings] = None) -> int:
    """
    Run one backup with the real tools.

    Args:
        settings: Run configuration (default: load_settings())

    Returns:
        Process exit status
    """
    if settings is None:
        settings = load_settings()

    try:
        executor = create_executor(settings)
    except (ToolError, ValueError) as e:
        logger.error(f"ERROR: Failed to set up backup tools: {e}")
        Notifier(settings, MailCommandTool(binary=settings.mail_command)).notify_failure(
            SUBJECT_TASK_FAILURE,
            f"Backup of {settings.db_name} could not start: {e}. Please investigate immediately."
        )
        return EXIT_FAILURE

    return executor.execute()
