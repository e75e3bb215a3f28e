"""Service orchestration for activity sync.

Wires the API client, the local store and the background workers together
and exposes the command-line entry point.

Core Components:
    - SyncService: Builds every component and runs the initial sync
    - BackgroundWorker: Interval runner driven by ``schedule``
    - TokenRefresher / ActivitySyncer / ZoneSyncer: The periodic workers
    - WorkerSupervisor: Starts, signals and joins the worker threads
    - CLIRunner: Command-line interface
"""

from .orchestrator import SyncService
from .scheduler import (
    ActivitySyncer,
    BackgroundWorker,
    TokenRefresher,
    WorkerSupervisor,
    ZoneSyncer,
    sync_once,
)
from .cli import CLIRunner, CLIConfig, parse_interval

__version__ = "0.1.0"

__all__ = [
    # Service wiring
    "SyncService",

    # Background workers
    "BackgroundWorker",
    "TokenRefresher",
    "ActivitySyncer",
    "ZoneSyncer",
    "WorkerSupervisor",
    "sync_once",

    # CLI interface
    "CLIRunner",
    "CLIConfig",
    "parse_interval",
]
