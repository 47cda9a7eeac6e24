"""
Shared pytest fixtures for pgbackup tests.

This module provides fixtures for:
- Run settings pointing at a temporary backup directory and log file
- Logging configured onto that log file
- Fake external tools (pg_dump, pg_basebackup, sync, mail)
- Backup executor wired to the fakes
- Mock fixtures for external services (S3)
"""

import os
import time
import logging
from pathlib import Path

import pytest
import boto3
from moto import mock_aws

from pgbackup import configure_logging
from pgbackup.config import BackupSettings
from pgbackup.backup.executor import BackupExecutor

from tests.fakes import FakeDumpTool, FakeBaseBackupTool, FakeSyncTool, FakeMailTool


@pytest.fixture(scope='function')
def settings(tmp_path):
    """
    Run settings rooted in tmp_path.

    Backups go to tmp_path/backups, the log to tmp_path/logs/pg_backup.log,
    staging directories to tmp_path/staging.
    """
    return BackupSettings(
        db_name='production_db',
        db_user=None,
        data_dir=str(tmp_path / 'pgdata'),
        backup_dir=str(tmp_path / 'backups'),
        log_file=str(tmp_path / 'logs' / 'pg_backup.log'),
        staging_dir=str(tmp_path / 'staging'),
        remote_destination='gdrive_backups:postgresql_backups',
        retention_days=7,
        email_to='dba@example.com',
        email_from='postgres-backup@testhost',
        hostname='testhost'
    )


@pytest.fixture(autouse=True)
def run_logging(settings):
    """Configure the pgbackup logger onto the test log file."""
    logger = configure_logging(settings)
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def read_log(settings):
    """Return a function reading the current log file contents."""
    def _read():
        for handler in logging.getLogger('pgbackup').handlers:
            handler.flush()
        return Path(settings.log_file).read_text()
    return _read


@pytest.fixture
def dump_tool():
    return FakeDumpTool()


@pytest.fixture
def base_backup_tool():
    return FakeBaseBackupTool()


@pytest.fixture
def sync_tool():
    return FakeSyncTool()


@pytest.fixture
def mail_tool():
    return FakeMailTool()


@pytest.fixture
def executor(settings, dump_tool, base_backup_tool, sync_tool, mail_tool):
    """BackupExecutor wired to the fake tools."""
    return BackupExecutor(
        settings,
        dump_tool=dump_tool,
        base_backup_tool=base_backup_tool,
        sync_tool=sync_tool,
        mail_tool=mail_tool
    )


@pytest.fixture
def aged_backups(settings):
    """
    Create backup artifacts with given ages in days.

    Returns a function taking a list of ages and returning {age: path}.
    """
    backup_dir = Path(settings.backup_dir)
    backup_dir.mkdir(parents=True, exist_ok=True)

    def _create(ages, extension='.dump'):
        now = time.time()
        created = {}
        for age in ages:
            path = backup_dir / f"old_{age:02d}d{extension}"
            path.write_bytes(b'old backup')
            mtime = now - age * 86400
            os.utime(path, (mtime, mtime))
            created[age] = path
        return created

    return _create


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3
