"""Weekly removal of the player script dumps yt-dlp leaves behind."""

import asyncio
import glob
import logging
import os
from datetime import datetime, timedelta
from typing import Optional

from .config import CLEANUP_PATTERN, settings

logger = logging.getLogger(__name__)

# Sunday 00:00 local time
CLEANUP_WEEKDAY = 6
CLEANUP_HOUR = 0


def next_run(now: datetime) -> datetime:
    days_ahead = (CLEANUP_WEEKDAY - now.weekday()) % 7
    candidate = (now + timedelta(days=days_ahead)).replace(
        hour=CLEANUP_HOUR, minute=0, second=0, microsecond=0
    )
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def cleanup_player_scripts(directory: Optional[str] = None) -> int:
    """Delete leftover *-player-script.js dumps, returns how many went."""
    directory = directory or settings.cleanup_dir
    deleted = 0

    for path in sorted(glob.glob(os.path.join(directory, CLEANUP_PATTERN))):
        if not os.path.isfile(path):
            continue
        try:
            os.remove(path)
            logger.info(f"Deleted: {os.path.basename(path)}")
            deleted += 1
        except OSError as e:
            logger.warning(f"Error deleting {path}: {e}")

    if deleted:
        logger.info(f"Cleanup complete. Deleted {deleted} files.")
    else:
        logger.info("Cleanup complete. No files matched the pattern.")
    return deleted


async def cleanup_loop():
    logger.info("Cleanup scheduled: weekly (Sundays at 00:00)")
    while True:
        now = datetime.now()
        wait = (next_run(now) - now).total_seconds()
        logger.debug(f"Next player script cleanup in {wait:.0f}s")
        await asyncio.sleep(wait)
        logger.info("Running weekly cleanup job for *-player-script.js files...")
        try:
            cleanup_player_scripts()
        except Exception:
            logger.error("Weekly cleanup failed", exc_info=True)
