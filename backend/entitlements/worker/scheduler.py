"""
定时任务调度器
"""

import logging
from datetime import timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from entitlements.worker.tasks import prime_monthly_quotas

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_scheduler() -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone=timezone.utc)
    scheduler.add_job(
        prime_monthly_quotas,
        CronTrigger(day=1, hour=0, minute=0, timezone=timezone.utc),
        id="monthly_quota_prime",
        replace_existing=True,
    )
    return scheduler


def main() -> None:
    scheduler = build_scheduler()
    logger.info("Scheduler started. Monthly quota priming is scheduled at 00:00 UTC on day 1.")
    scheduler.start()


if __name__ == "__main__":
    main()
