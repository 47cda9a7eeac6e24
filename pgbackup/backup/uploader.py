"""
Upload of backup artifacts to the remote destination.

Artifacts are copied one after another; the first failure stops the upload
and sends a failure email. Local files are never touched.
"""

import os
import logging

from .tools import SyncTool, ToolError
from .notifier import Notifier, SUBJECT_UPLOAD_FAILURE


logger = logging.getLogger(__name__)


class Uploader:
    """Copies a run's artifacts to settings.remote_destination."""

    def __init__(self, settings, sync_tool: SyncTool, notifier: Notifier):
        self.settings = settings
        self.sync_tool = sync_tool
        self.notifier = notifier

    def upload(self, artifact_path: str) -> bool:
        """
        Copy one artifact to the remote destination.

        Args:
            artifact_path: Local artifact path

        Returns:
            True if the copy succeeded
        """
        try:
            self.sync_tool.copy(artifact_path, self.settings.remote_destination)
            return True
        except ToolError as e:
            logger.error(f"ERROR: {e}")
            return False

    def upload_all(self, state) -> bool:
        """
        Upload the logical then the physical artifact of a run.

        Args:
            state: RunState with both artifact paths set

        Returns:
            True if both uploads succeeded
        """
        logger.info(f"Starting upload to {self.settings.remote_destination}...")

        for kind, path in (('logical', state.logical_path), ('physical', state.physical_path)):
            if not self.upload(path):
                logger.error(f"ERROR: Failed to upload {kind} backup to remote storage")
                self.notifier.notify_failure(
                    SUBJECT_UPLOAD_FAILURE,
                    f"Backups were created locally but failed to upload to "
                    f"{self.settings.remote_destination}. Local copies remain intact.\n"
                    f"\n"
                    f"Failed file: {os.path.basename(path)}"
                )
                return False
            logger.info(f"{kind.capitalize()} backup uploaded successfully")

        logger.info("All backups uploaded to remote storage successfully")
        return True
