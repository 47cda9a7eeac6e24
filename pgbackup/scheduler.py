"""
APScheduler configuration for running backups in-process.

By default pgbackup runs once per invocation and relies on cron or a
systemd timer. `pgbackup schedule` instead keeps one process alive and
triggers the backup on settings.schedule_cron.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from pgbackup.backup.executor import execute_backup, EXIT_SUCCESS


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'pg_backup'

# Global scheduler instance and run settings
scheduler = None
run_settings = None


def run_scheduled_backup():
    """Scheduler job: run one backup and log its exit status."""
    status = execute_backup(run_settings)
    if status == EXIT_SUCCESS:
        logger.info("Scheduled backup finished successfully")
    else:
        logger.error(f"ERROR: Scheduled backup failed (exit status {status})")
    return status


def init_scheduler(settings):
    """
    Initialize and configure APScheduler.

    Args:
        settings: BackupSettings with schedule_cron and scheduler_timezone

    Returns:
        The configured scheduler

    Raises:
        ValueError: If the cron expression is invalid
    """
    global scheduler, run_settings

    if scheduler is not None:
        return scheduler

    run_settings = settings

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Never overlap two backup runs
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    trigger = CronTrigger.from_crontab(settings.schedule_cron, timezone=settings.scheduler_timezone)

    scheduler = BlockingScheduler(
        job_defaults=job_defaults,
        timezone=settings.scheduler_timezone
    )

    scheduler.add_job(
        func=run_scheduled_backup,
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name='PostgreSQL Backup',
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until it is shut down.

    Raises:
        RuntimeError: If init_scheduler() was not called
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if scheduler.running:
        logger.info("Scheduler already running")
        return

    logger.info(f"Backup scheduled with '{run_settings.schedule_cron}' ({run_settings.scheduler_timezone})")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler interrupted")
        stop_scheduler()


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
