"""ARQ worker for checkout reconciliation, settlement and delivery prep."""

from arq import cron
from dotenv import load_dotenv

load_dotenv()

from libs.common.arq_config import get_redis_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


async def task_expire_stale_orders(ctx: dict):
    from services.payments_service.tasks import expire_stale_pending_orders

    logger.info("Running: expire_stale_pending_orders")
    await expire_stale_pending_orders()


async def task_retry_credit_awards(ctx: dict):
    from services.payments_service.tasks import retry_credit_awards

    logger.info("Running: retry_credit_awards")
    await retry_credit_awards()


async def task_settle_payouts(ctx: dict):
    from services.payments_service.tasks import run_settlement

    logger.info("Running: run_settlement")
    await run_settlement()


async def task_lock_orders(ctx: dict):
    from services.payments_service.tasks import lock_tomorrow_orders

    logger.info("Running: lock_tomorrow_orders")
    await lock_tomorrow_orders()


async def task_generate_batches(ctx: dict):
    from services.payments_service.tasks import generate_tomorrow_batches

    logger.info("Running: generate_tomorrow_batches")
    await generate_tomorrow_batches()


class WorkerSettings:
    redis_settings = get_redis_settings()

    functions = [
        task_expire_stale_orders,
        task_retry_credit_awards,
        task_settle_payouts,
        task_lock_orders,
        task_generate_batches,
    ]

    cron_jobs = [
        cron(
            task_expire_stale_orders,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
        cron(task_retry_credit_awards, minute={7, 37}),
        cron(task_settle_payouts, hour={6}, minute={0}),
        cron(task_lock_orders, minute={2, 17, 32, 47}),
        cron(task_generate_batches, minute={4, 19, 34, 49}),
    ]
