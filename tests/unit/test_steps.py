"""
Unit tests for backup steps (pgbackup/backup/steps.py).

Tests the logical dump and physical base backup steps.
"""

import os
import tarfile
import subprocess
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from pgbackup.backup.executor import RunState
from pgbackup.backup.steps import (
    perform_logical_backup,
    perform_physical_backup,
    create_staging_directory,
    remove_staging_directory,
    sudo_staging_tool
)
from pgbackup.backup.compression import CompressionError

from tests.fakes import FakeDumpTool, FakeBaseBackupTool


@pytest.fixture
def state():
    return RunState(timestamp='2025-11-03-020000')


@pytest.fixture
def backup_dir(settings):
    os.makedirs(settings.backup_dir)
    return settings.backup_dir


class TestLogicalBackup:
    """Test perform_logical_backup."""

    def test_success(self, settings, backup_dir, state, read_log):
        tool = FakeDumpTool()

        assert perform_logical_backup(settings, tool, state) is True

        expected = os.path.join(backup_dir, 'production_db_2025-11-03-020000.dump')
        assert state.logical_path == expected
        assert tool.calls == [('production_db', expected)]
        assert os.path.exists(expected)
        assert state.failed is False

        log = read_log()
        assert f"Starting logical backup of production_db..." in log
        assert f"Logical backup completed successfully: {expected}" in log
        assert "Backup size: 2.0K" in log

    def test_failure(self, settings, backup_dir, state, read_log):
        tool = FakeDumpTool(returncode=1)

        assert perform_logical_backup(settings, tool, state) is False

        assert state.failed is True
        # Partial dump is removed
        assert not os.path.exists(state.logical_path)
        assert "ERROR: Logical backup failed!" in read_log()

    def test_missing_backup_directory_is_a_failure(self, settings, state):
        tool = FakeDumpTool()

        assert perform_logical_backup(settings, tool, state) is False
        assert state.failed is True


class TestPhysicalBackup:
    """Test perform_physical_backup."""

    @patch('pgbackup.backup.steps.generate_timestamp', return_value='2025-11-03-020105')
    def test_success(self, mock_timestamp, settings, backup_dir, state, read_log):
        tool = FakeBaseBackupTool()

        assert perform_physical_backup(settings, tool, state) is True

        expected = os.path.join(backup_dir, 'pg_base_backup_2025-11-03-020105.tar.gz')
        assert state.physical_path == expected
        assert state.failed is False

        # Archive holds the staging directory contents
        with tarfile.open(expected, 'r:gz') as tar:
            names = {os.path.normpath(name) for name in tar.getnames()}
        assert 'base.tar.gz' in names
        assert 'pg_wal.tar.gz' in names

        log = read_log()
        assert "pg_basebackup completed. Compressing into single tar.gz file..." in log
        assert f"Physical backup completed successfully: {expected}" in log

    def test_staging_directory_removed_on_success(self, settings, backup_dir, state):
        tool = FakeBaseBackupTool()

        perform_physical_backup(settings, tool, state)

        staging = tool.calls[0]
        assert os.path.basename(staging).startswith('pg_base_backup_temp_')
        assert os.path.dirname(staging) == settings.staging_dir
        assert not os.path.exists(staging)
        assert state.staging_dir == staging

    def test_tool_failure(self, settings, backup_dir, state, read_log):
        tool = FakeBaseBackupTool(returncode=1)

        assert perform_physical_backup(settings, tool, state) is False

        assert state.failed is True
        assert not os.path.exists(tool.calls[0])
        assert not os.path.exists(state.physical_path)
        assert "ERROR: Physical backup failed!" in read_log()

    def test_archive_failure_cleans_up(self, settings, backup_dir, state):
        tool = FakeBaseBackupTool()

        with patch('pgbackup.backup.steps.archive_directory',
                   side_effect=CompressionError("disk full")):
            assert perform_physical_backup(settings, tool, state) is False

        assert state.failed is True
        assert not os.path.exists(tool.calls[0])

    def test_fresh_timestamp(self, settings, backup_dir, state):
        with patch('pgbackup.backup.steps.generate_timestamp', return_value='2030-01-01-000000'):
            perform_physical_backup(settings, FakeBaseBackupTool(), state)

        assert state.timestamp == '2025-11-03-020000'
        assert state.physical_path.endswith('pg_base_backup_2030-01-01-000000.tar.gz')


class TestStagingDirectory:
    """Test staging directory helpers."""

    def test_create_and_remove(self, settings):
        staging = create_staging_directory(settings, '2025-11-03-020000')

        assert os.path.isdir(staging)
        assert os.path.basename(staging).startswith('pg_base_backup_temp_2025-11-03-020000_')

        open(os.path.join(staging, 'base.tar'), 'w').close()
        remove_staging_directory(staging)

        assert not os.path.exists(staging)

    def test_remove_missing_is_noop(self, tmp_path):
        remove_staging_directory(str(tmp_path / 'gone'))

    @patch('pgbackup.backup.steps.os.geteuid', return_value=0)
    @patch('pgbackup.backup.steps.shutil.chown')
    def test_handed_to_db_user_as_root(self, mock_chown, mock_geteuid, settings):
        root_settings = replace(settings, db_user='postgres')

        staging = create_staging_directory(root_settings, '2025-11-03-020000')

        mock_chown.assert_called_once_with(staging, user='postgres')

    @patch('pgbackup.backup.steps.os.geteuid', return_value=0)
    @patch('pgbackup.backup.steps.shutil.chown', side_effect=LookupError("no such user"))
    def test_unknown_db_user_removes_staging(self, mock_chown, mock_geteuid, settings):
        root_settings = replace(settings, db_user='nobody_here')

        with pytest.raises(OSError):
            create_staging_directory(root_settings, '2025-11-03-020000')

        assert os.listdir(settings.staging_dir) == []


@patch('pgbackup.backup.tools.getpass.getuser', return_value='operator')
@patch('pgbackup.backup.steps.os.geteuid', return_value=1000)
class TestSudoStaging:
    """Non-root operator with pg_basebackup running as another OS user."""

    @pytest.fixture
    def sudo_settings(self, settings, monkeypatch):
        monkeypatch.delenv('SUDO_USER', raising=False)
        return replace(settings, db_user='postgres')

    def test_tool_selected_only_when_needed(self, mock_geteuid, mock_getuser, settings, sudo_settings):
        assert sudo_staging_tool(settings) is None
        assert sudo_staging_tool(replace(settings, db_user='operator')) is None

        tool = sudo_staging_tool(sudo_settings)
        assert tool.run_as == 'postgres'

        mock_geteuid.return_value = 0
        assert sudo_staging_tool(sudo_settings) is None

    @patch('pgbackup.backup.tools.subprocess.run')
    def test_directory_created_as_db_user(self, mock_run, mock_geteuid, mock_getuser, sudo_settings):
        mock_run.return_value = subprocess.CompletedProcess(args=[], returncode=0, stderr=b'')

        staging = create_staging_directory(
            sudo_settings, '2025-11-03-020000', sudo_staging_tool(sudo_settings)
        )

        assert staging == os.path.join(sudo_settings.staging_dir, 'pg_base_backup_temp_2025-11-03-020000')
        mock_run.assert_called_once()
        assert mock_run.call_args[0][0] == [
            'sudo', '-u', 'postgres', 'mkdir', '-p', '-m', '700', staging
        ]

    @patch('pgbackup.backup.steps.generate_timestamp', return_value='2025-11-03-020105')
    @patch('pgbackup.backup.tools.subprocess.run')
    def test_physical_backup_through_sudo(self, mock_run, mock_timestamp, mock_geteuid, mock_getuser,
                                          sudo_settings, backup_dir, state):
        mock_run.return_value = subprocess.CompletedProcess(args=[], returncode=0, stderr=b'')
        tool = FakeBaseBackupTool()
        tool.backup = MagicMock()

        assert perform_physical_backup(sudo_settings, tool, state) is True

        staging = os.path.join(sudo_settings.staging_dir, 'pg_base_backup_temp_2025-11-03-020105')
        archive = os.path.join(backup_dir, 'pg_base_backup_2025-11-03-020105.tar.gz')
        tool.backup.assert_called_once_with(staging)

        commands = [c[0][0] for c in mock_run.call_args_list]
        assert commands == [
            ['sudo', '-u', 'postgres', 'mkdir', '-p', '-m', '700', staging],
            ['sudo', 'tar', '-czf', archive, '-C', staging, '.'],
            ['sudo', 'chown', 'operator:', archive],
            ['sudo', 'rm', '-rf', staging]
        ]

    @patch('pgbackup.backup.tools.subprocess.run')
    def test_sudo_archive_failure_still_removes_staging(self, mock_run, mock_geteuid, mock_getuser,
                                                         sudo_settings, backup_dir, state, read_log):
        def fake_run(cmd, **kwargs):
            returncode = 2 if 'tar' in cmd else 0
            return subprocess.CompletedProcess(args=cmd, returncode=returncode, stderr=b'tar: read error')

        mock_run.side_effect = fake_run
        tool = FakeBaseBackupTool()
        tool.backup = MagicMock()

        assert perform_physical_backup(sudo_settings, tool, state) is False

        assert state.failed is True
        assert mock_run.call_args_list[-1][0][0][:3] == ['sudo', 'rm', '-rf']
        assert "ERROR: Physical backup failed! tar exited with status 2" in read_log()

    @patch('pgbackup.backup.tools.subprocess.run')
    def test_sudo_mkdir_failure(self, mock_run, mock_geteuid, mock_getuser, sudo_settings, backup_dir, state):
        mock_run.return_value = subprocess.CompletedProcess(
            args=[], returncode=1, stderr=b'sudo: a password is required'
        )
        tool = FakeBaseBackupTool()

        assert perform_physical_backup(sudo_settings, tool, state) is False

        assert state.failed is True
        assert tool.calls == []
