"""Command line entry point for pgbackup."""

import sys
import argparse

from pgbackup import configure_logging, __version__
from pgbackup.config import load_settings, config
from pgbackup.backup.executor import execute_backup, EXIT_FAILURE


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pgbackup',
        description='PostgreSQL logical + physical backup with remote upload and retention'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument(
        '--config',
        choices=sorted(config.keys()),
        default=None,
        help='Configuration to use (default: $PG_BACKUP_ENV or production)'
    )

    # --config is also accepted after the subcommand
    command_options = argparse.ArgumentParser(add_help=False)
    command_options.add_argument(
        '--config',
        choices=sorted(config.keys()),
        default=argparse.SUPPRESS,
        help='Configuration to use (default: $PG_BACKUP_ENV or production)'
    )

    subparsers = parser.add_subparsers(dest='command')
    subparsers.add_parser('run', parents=[command_options], help='Run one backup and exit (default)')
    subparsers.add_parser('schedule', parents=[command_options],
                          help='Run backups on PG_BACKUP_SCHEDULE until interrupted')

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    configure_logging(settings)

    if args.command == 'schedule':
        from pgbackup.scheduler import init_scheduler, start_scheduler
        init_scheduler(settings)
        start_scheduler()
        return 0

    return execute_backup(settings)


if __name__ == '__main__':
    sys.exit(main())
