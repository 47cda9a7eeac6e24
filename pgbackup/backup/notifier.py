"""
Email notifications for backup runs.

Failure emails carry the tail of the run log; success emails list the
uploaded artifacts. Delivery problems are logged and never raised, there is
no second channel to report them on.
"""

import os
import logging
from collections import deque
from datetime import datetime

from .tools import MailTool, ToolError


logger = logging.getLogger(__name__)

SUBJECT_TASK_FAILURE = 'FAILURE: PostgreSQL Backup Task'
SUBJECT_UPLOAD_FAILURE = 'FAILURE: PostgreSQL Backup Upload'
SUBJECT_SUCCESS = 'SUCCESS: PostgreSQL Backup and Upload'

LOG_EXCERPT_LINES = 15
LOG_UNAVAILABLE = 'Log file not available'


class Notifier:
    """Sends success/failure emails for a backup run."""

    def __init__(self, settings, mail_tool: MailTool):
        self.settings = settings
        self.mail_tool = mail_tool

    def notify_failure(self, subject: str, body: str):
        """
        Send a failure email with the recent log lines appended.

        Args:
            subject: Email subject
            body: Leading message text
        """
        logger.info("Sending failure notification email...")

        full_body = (
            f"{body}\n"
            f"\n"
            f"Recent Log Entries (Last {LOG_EXCERPT_LINES} lines):\n"
            f"=====================================\n"
            f"{self.read_log_excerpt()}\n"
            f"=====================================\n"
            f"\n"
            f"Hostname: {self.settings.hostname}\n"
            f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
        )

        if self._send(subject, full_body):
            logger.info(f"Failure email sent to {self.settings.email_to}")

    def notify_success(self, state):
        """
        Send the success email for a completed run.

        Args:
            state: RunState with both artifact paths set
        """
        body = (
            f"Successfully created and uploaded:\n"
            f"- {os.path.basename(state.logical_path)}\n"
            f"- {os.path.basename(state.physical_path)}\n"
            f"\n"
            f"Backup Details:\n"
            f"- Database: {self.settings.db_name}\n"
            f"- Backup Time: {state.timestamp}\n"
            f"- Hostname: {self.settings.hostname}\n"
            f"- Upload Destination: {self.settings.remote_destination}\n"
            f"\n"
            f"All backups completed successfully and uploaded to {self.settings.remote_destination}."
        )

        if self._send(SUBJECT_SUCCESS, body):
            logger.info(f"Success email sent to {self.settings.email_to}")

    def read_log_excerpt(self, lines: int = LOG_EXCERPT_LINES) -> str:
        """Return the last lines of the log file, or a placeholder if unreadable."""
        try:
            with open(self.settings.log_file, 'r', errors='replace') as f:
                tail = deque(f, maxlen=lines)
        except OSError:
            return LOG_UNAVAILABLE
        return ''.join(tail).rstrip('\n')

    def _send(self, subject: str, body: str) -> bool:
        try:
            self.mail_tool.send(
                subject,
                body,
                self.settings.email_from,
                self.settings.email_to
            )
            return True
        except ToolError as e:
            logger.error(f"ERROR: Failed to send email '{subject}' to {self.settings.email_to}: {e}")
            return False
