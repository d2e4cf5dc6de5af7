"""ARQ worker for referral award retries."""

from arq import cron
from libs.common.arq_config import get_redis_settings
from libs.common.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def task_retry_pending_referral_awards(ctx: dict):
    from services.marketplace_service.tasks import retry_pending_referral_awards

    logger.info("Running: retry_pending_referral_awards")
    processed = await retry_pending_referral_awards()
    return {"processed": processed}


async def startup(ctx: dict):
    configure_logging()


class WorkerSettings:
    redis_settings = get_redis_settings()

    on_startup = startup

    functions = [
        task_retry_pending_referral_awards,
    ]

    cron_jobs = [
        cron(
            task_retry_pending_referral_awards,
            minute=set(range(0, 60, 2)),
            run_at_startup=True,
        ),
    ]
