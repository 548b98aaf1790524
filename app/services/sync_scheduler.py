import atexit
from apscheduler.schedulers.background import BackgroundScheduler
from app.services.calendar_sync_service import CalendarSyncService
from app.utils.logger import get_logger
from config.config import Config

logger = get_logger(__name__)

JOB_ID = 'calendar_sync_all'


class CalendarSyncScheduler:
    """Runs the full calendar sync for every connected cleaner on an interval"""

    def __init__(self, sync_service: CalendarSyncService = None, interval_minutes: int = None):
        self.sync_service = sync_service or CalendarSyncService()
        self.interval_minutes = interval_minutes or Config.CALENDAR_SYNC_INTERVAL_MINUTES
        self.scheduler = BackgroundScheduler()

    def start(self):
        # One run at a time; a slow run swallows missed ticks
        self.scheduler.add_job(
            func=self.run,
            trigger='interval',
            minutes=self.interval_minutes,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self.scheduler.start()
        atexit.register(self.shutdown)
        logger.info(f"Calendar sync scheduled every {self.interval_minutes} minutes")

    def run(self):
        try:
            results = self.sync_service.sync_all_connected()
            logger.info(f"Scheduled calendar sync covered {len(results)} cleaners")
        except Exception as e:
            logger.error(f"Error in scheduled calendar sync: {str(e)}")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
