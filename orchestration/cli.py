"""Command-line interface for running activity sync."""

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional

from activity_api.errors import ActivityAPIError, CredentialsUnavailableError, SyncCancelled
from activity_api.logging_config import setup_logging
from activity_store.config import AppConfig, ConfigManager
from activity_store.monitoring import collect_database_stats, log_database_stats

from .orchestrator import SyncService
from .scheduler import sync_once


def parse_interval(interval_str: str) -> float:
    """Parse an interval such as ``30s``, ``15m``, ``1h`` or ``1d`` into seconds."""
    value = interval_str.strip().lower()
    try:
        if value.endswith("s"):
            seconds = float(value[:-1])
        elif value.endswith("m"):
            seconds = float(value[:-1]) * 60
        elif value.endswith("h"):
            seconds = float(value[:-1]) * 3600
        elif value.endswith("d"):
            seconds = float(value[:-1]) * 86400
        else:
            seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid interval: {interval_str!r}")

    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"interval must be positive: {interval_str!r}")
    return seconds


@dataclass
class CLIConfig:
    """Defaults for the command-line interface."""
    default_db_path: str = "activities.db"
    json_output: bool = False


class CLIRunner:
    """Command-line interface runner for activity sync."""

    def __init__(self, config: Optional[CLIConfig] = None):
        self.config = config or CLIConfig()
        self.service: Optional[SyncService] = None
        self.verbosity = 0
        self.logger = logging.getLogger(__name__)

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI with provided arguments.

        Args:
            args: Command line arguments (None = use sys.argv)

        Returns:
            Exit code (0 = success, non-zero = error)
        """
        try:
            parser = self._create_parser()
            parsed_args = parser.parse_args(args)
            self.verbosity = parsed_args.verbose

            if not parsed_args.command:
                parser.print_help()
                return 1

            app_config = self._load_app_config(parsed_args)
            setup_logging(parsed_args.verbose, app_config.log_level)
            return self._execute_command(parsed_args, app_config)

        except KeyboardInterrupt:
            print("\nOperation cancelled by user")
            return 130
        except SyncCancelled:
            self.logger.info("Cancelled")
            return 130
        except (ActivityAPIError, CredentialsUnavailableError, ValueError) as e:
            if self.verbosity:
                self.logger.exception("CLI error")
            else:
                self.logger.error(f"Error: {e}")
            return 1
        finally:
            if self.service:
                self.service.shutdown()

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="activity-sync",
            description="Replicate activities and their zone data into a local database",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Initial sync, then keep syncing in the background
  %(prog)s run --db activities.db

  # One delta sync, with debug logging
  %(prog)s -v sync

  # One zone enrichment pass with HTTP header tracing
  %(prog)s -vv zones

  # Show what is stored
  %(prog)s stats --json
            """
        )

        parser.add_argument(
            '--config', '-c',
            type=str,
            help='Configuration file (JSON or YAML)'
        )
        parser.add_argument(
            '--db',
            type=str,
            help=f'Path to SQLite database file (default: {self.config.default_db_path})'
        )
        parser.add_argument(
            '--verbose', '-v',
            action='count',
            default=0,
            help='Increase verbosity (-v for debug, -vv for trace with HTTP headers)'
        )
        parser.add_argument(
            '--sync-interval',
            type=parse_interval,
            help='Interval between activity syncs, e.g. 15m (default: 15m)'
        )
        parser.add_argument(
            '--token-refresh-interval',
            type=parse_interval,
            help='Interval between token refresh checks, e.g. 30m (default: 30m)'
        )
        parser.add_argument(
            '--no-sync',
            action='store_true',
            help='Offline mode: do not contact the API'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        subparsers.add_parser('run', help='Initial sync followed by background workers')

        sync_parser = subparsers.add_parser('sync', help='Run one activity sync')
        sync_parser.add_argument(
            '--full',
            action='store_true',
            help='Ignore stored activities and fetch the whole history'
        )

        zones_parser = subparsers.add_parser('zones', help='Run one zone enrichment pass')
        zones_parser.add_argument(
            '--batch-size',
            type=int,
            help='Activities per batch (default: 25)'
        )

        stats_parser = subparsers.add_parser('stats', help='Show database statistics')
        stats_parser.add_argument(
            '--json',
            action='store_true',
            help='Output in JSON format'
        )

        return parser

    def _load_app_config(self, args) -> AppConfig:
        """Config file and environment, then command line flags on top."""
        app_config = ConfigManager(args.config).load_config()

        if args.db:
            app_config.database.url = f"sqlite:///{args.db}"
        if args.sync_interval:
            app_config.scheduler.sync_interval = args.sync_interval
        if args.token_refresh_interval:
            app_config.scheduler.token_refresh_interval = args.token_refresh_interval
        if args.no_sync:
            app_config.sync.enabled = False
        if getattr(args, 'batch_size', None):
            if args.batch_size <= 0:
                raise ValueError("--batch-size must be positive")
            app_config.enrichment.batch_size = args.batch_size

        return app_config

    def _execute_command(self, args, app_config: AppConfig) -> int:
        self.service = SyncService(app_config)
        self.service.seed_credentials_from_env()

        command_handlers = {
            'run': self._handle_run,
            'sync': self._handle_sync,
            'zones': self._handle_zones,
            'stats': self._handle_stats,
        }
        handler = command_handlers.get(args.command)
        if handler is None:
            print(f"Error: Unknown command '{args.command}'")
            return 1
        return handler(args)

    def _handle_run(self, args) -> int:
        return self.service.run()

    def _handle_sync(self, args) -> int:
        if not self.service.config.sync.enabled:
            self.logger.info("Offline mode, skipping sync")
            return 0

        if args.full:
            result = self.service.replication.sync_all()
        else:
            result = sync_once(self.service.replication)

        print(f"Fetched {len(result.records)} activities, saved {result.persisted}"
              f" ({result.failed} failed)")
        if result.error is not None:
            print(f"Sync incomplete: {result.error}")
            return 1
        return 0

    def _handle_zones(self, args) -> int:
        if not self.service.config.sync.enabled:
            self.logger.info("Offline mode, skipping zone sync")
            return 0

        result = self.service.enrichment.run_continuously()
        remaining = self.service.repository.count_lacking_enrichment()
        print(f"Synced zones for {result.synced} activities, skipped {result.skipped},"
              f" {remaining} remaining")
        if result.disabled:
            print("Zone data is not available for this account")
            return 2
        return 0

    def _handle_stats(self, args) -> int:
        if args.json:
            print(json.dumps(collect_database_stats(self.service.repository), indent=2))
        else:
            stats = log_database_stats(self.service.repository)
            for key, value in stats.items():
                print(f"  {key}: {value}")
        return 0


def main():
    """Main entry point for CLI."""
    cli = CLIRunner()
    return cli.run()


if __name__ == '__main__':
    sys.exit(main())
