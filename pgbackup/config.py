import os
import socket
from dataclasses import dataclass
from typing import Optional


HOSTNAME = socket.gethostname()

SYNC_BACKENDS = ('rclone', 's3')


class Config:
    """Base configuration"""

    # Database
    DB_NAME = os.environ.get('PG_BACKUP_DB_NAME') or 'production_db'
    # OS user pg_dump / pg_basebackup run as (peer authentication)
    DB_USER = os.environ.get('PG_BACKUP_DB_USER') or 'postgres'
    PGDATA = os.environ.get('PGDATA') or '/var/lib/postgresql/14/main'

    # Local storage
    BACKUP_DIR = os.environ.get('PG_BACKUP_DIR') or os.path.expanduser('~/pg_backups')
    LOG_FILE = os.environ.get('PG_BACKUP_LOG_FILE') or '/var/log/pg_backup.log'
    STAGING_DIR = os.environ.get('PG_BACKUP_STAGING_DIR') or '/tmp'

    # Remote storage
    SYNC_BACKEND = os.environ.get('PG_BACKUP_SYNC_BACKEND') or 'rclone'
    REMOTE_DESTINATION = os.environ.get('PG_BACKUP_REMOTE') or 'gdrive_backups:postgresql_backups'
    AWS_REGION = os.environ.get('AWS_REGION') or 'us-east-1'
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')

    # Retention policy (days)
    RETENTION_DAYS = os.environ.get('PG_BACKUP_RETENTION_DAYS') or 7

    # Email
    EMAIL_TO = os.environ.get('PG_BACKUP_EMAIL_TO') or 'root@localhost'
    EMAIL_FROM = os.environ.get('PG_BACKUP_EMAIL_FROM') or f'postgres-backup@{HOSTNAME}'
    MAIL_COMMAND = os.environ.get('PG_BACKUP_MAIL_COMMAND') or 'mail'

    # Scheduler
    SCHEDULE_CRON = os.environ.get('PG_BACKUP_SCHEDULE') or '0 2 * * *'
    SCHEDULER_TIMEZONE = os.environ.get('PG_BACKUP_TIMEZONE') or 'UTC'

    DEBUG = False


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Keep everything under the project's data directory and run tools as
    # the current user
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_DIR = os.path.join(DATA_DIR, 'backups')
    LOG_FILE = os.path.join(DATA_DIR, 'logs', 'pg_backup.log')
    STAGING_DIR = os.path.join(DATA_DIR, 'temp')
    DB_USER = None


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


@dataclass(frozen=True)
class BackupSettings:
    """
    Run configuration for a single backup invocation.

    Built once from a Config class and never mutated afterwards.
    """

    db_name: str
    backup_dir: str
    log_file: str
    remote_destination: str
    email_to: str
    email_from: str
    db_user: Optional[str] = None
    data_dir: Optional[str] = None
    retention_days: int = 7
    staging_dir: str = '/tmp'
    sync_backend: str = 'rclone'
    aws_region: str = 'us-east-1'
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    mail_command: str = 'mail'
    schedule_cron: str = '0 2 * * *'
    scheduler_timezone: str = 'UTC'
    hostname: str = HOSTNAME
    debug: bool = False

    def __post_init__(self):
        if self.retention_days < 0:
            raise ValueError(f"Retention days must not be negative: {self.retention_days}")
        if self.sync_backend not in SYNC_BACKENDS:
            raise ValueError(
                f"Unknown sync backend: {self.sync_backend}. "
                f"Valid options: {list(SYNC_BACKENDS)}"
            )

    @classmethod
    def from_object(cls, obj) -> 'BackupSettings':
        """
        Build settings from a Config class.

        Args:
            obj: Config class (or instance) with upper-case attributes

        Returns:
            BackupSettings instance

        Raises:
            ValueError: If RETENTION_DAYS is not a non-negative integer or
                SYNC_BACKEND is unknown
        """
        try:
            retention_days = int(obj.RETENTION_DAYS)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid retention days: {obj.RETENTION_DAYS!r}")

        return cls(
            db_name=obj.DB_NAME,
            db_user=obj.DB_USER,
            data_dir=obj.PGDATA,
            backup_dir=obj.BACKUP_DIR,
            log_file=obj.LOG_FILE,
            staging_dir=obj.STAGING_DIR,
            remote_destination=obj.REMOTE_DESTINATION,
            sync_backend=obj.SYNC_BACKEND,
            aws_region=obj.AWS_REGION,
            aws_access_key_id=obj.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=obj.AWS_SECRET_ACCESS_KEY,
            retention_days=retention_days,
            email_to=obj.EMAIL_TO,
            email_from=obj.EMAIL_FROM,
            mail_command=obj.MAIL_COMMAND,
            schedule_cron=obj.SCHEDULE_CRON,
            scheduler_timezone=obj.SCHEDULER_TIMEZONE,
            debug=obj.DEBUG,
        )


def load_settings(config_name: Optional[str] = None) -> BackupSettings:
    """
    Load run settings for the named configuration.

    Args:
        config_name: 'development', 'production' or 'default'. Falls back to
            the PG_BACKUP_ENV environment variable, then 'production'.

    Returns:
        BackupSettings for this invocation

    Raises:
        ValueError: If the configuration name or one of its values is invalid
    """
    if config_name is None:
        config_name = os.environ.get('PG_BACKUP_ENV', 'production')

    if config_name not in config:
        raise ValueError(
            f"Unknown configuration: {config_name}. "
            f"Valid options: {list(config.keys())}"
        )

    return BackupSettings.from_object(config[config_name])
