import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'

LOG_FORMAT = '[%(asctime)s] %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def configure_logging(settings) -> logging.Logger:
    """
    Configure the pgbackup logger.

    Every status line is appended to settings.log_file as
    "[<local timestamp>] <message>". The notifier reads the tail of this
    file, so the file handler must stay on the plain format.

    Args:
        settings: BackupSettings for this run

    Returns:
        The configured 'pgbackup' logger
    """
    logger = logging.getLogger('pgbackup')

    # Drop handlers from a previous call (scheduler runs, tests)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    log_dir = os.path.dirname(settings.log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    log_level = logging.DEBUG if settings.debug else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    ))

    # File handler
    file_handler = RotatingFileHandler(
        settings.log_file,
        mode='a',
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    logger.setLevel(log_level)
    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)}, file: {settings.log_file})")
    return logger
