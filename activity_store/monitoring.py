"""
Database statistics reporting for the sync service.
"""

import logging
from typing import Any, Dict

from .repository import ActivityRepository

logger = logging.getLogger(__name__)


def collect_database_stats(repository: ActivityRepository) -> Dict[str, Any]:
    stats = repository.stats()
    return {
        "total_activities": stats.total_activities,
        "with_zones": stats.with_zones,
        "without_zones": stats.without_zones,
        "newest_activity": stats.newest_start_date.isoformat() if stats.newest_start_date else None,
        "oldest_activity": stats.oldest_start_date.isoformat() if stats.oldest_start_date else None,
        "pending_zone_checks": repository.count_lacking_enrichment(),
    }


def log_database_stats(repository: ActivityRepository) -> Dict[str, Any]:
    """Log a one-line summary of stored activities and zone coverage."""
    stats = collect_database_stats(repository)
    if stats["total_activities"] == 0:
        logger.info("Database is empty")
        return stats

    logger.info(
        f"Database: {stats['total_activities']} activities "
        f"({stats['oldest_activity']} to {stats['newest_activity']}), "
        f"{stats['with_zones']} with zones, {stats['pending_zone_checks']} awaiting zone sync"
    )
    return stats
