#!/usr/bin/env python3
"""
Cron script for syncing every connected Google Calendar
Run this via cron every 30 minutes: */30 * * * * /path/to/venv/bin/python /path/to/run_calendar_sync_cron.py
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.calendar_sync_service import CalendarSyncService
from app.utils.logger import get_logger
from app.database import init_db
from datetime import datetime

logger = get_logger('calendar_sync_cron')


def main():
    """Main cron job function"""
    logger.info(f"Starting calendar sync cron job at {datetime.utcnow()}")

    try:
        # Initialize database
        init_db()

        # Sync every connected cleaner; failures are recorded per cleaner
        results = CalendarSyncService().sync_all_connected()

        failed = [cleaner_id for cleaner_id, result in results.items() if not result.ok]
        if failed:
            logger.warning(f"Calendar sync failed for cleaners: {failed}")

        logger.info("Calendar sync cron job completed successfully")

    except Exception as e:
        logger.error(f"Error in calendar sync cron job: {str(e)}")
        raise


if __name__ == "__main__":
    main()
