import asyncio
import logging

from cron_worker import ExecutionContext, TaskExecutionError, TaskTimeoutError, Worker, WorkerSettings
from cron_worker.logging_config import setup_logging


async def refresh_prices(ctx: ExecutionContext) -> None:
    ctx.logger.info("Refreshing prices")


async def send_digest(ctx: ExecutionContext) -> None:
    # Long-running work should watch its context so shutdown and timeouts can stop it.
    for _ in range(10):
        if await ctx.sleep(0.5):
            ctx.logger.info("Digest interrupted")
            return
    ctx.logger.info("Digest sent")


async def flaky_lookup(ctx: ExecutionContext) -> None:
    raise TaskExecutionError("upstream returned 503")


async def main():
    settings = WorkerSettings.from_env()
    setup_logging(settings.log_level)

    # Set WORKER_LOCK_DATABASE_URL to a shared Postgres database to run
    # each cron firing on only one replica.
    worker = Worker.from_settings(ExecutionContext(logging.getLogger("example")), settings)
    worker.schedule_cron("refresh-prices", "0 */5 * * * *", refresh_prices)
    worker.schedule_cron("nightly-digest", "0 0 2 * * *", send_digest)

    async with worker:
        worker.run_in_background("warmup-digest", send_digest)

        try:
            await worker.run_with_timeout("price-lookup", 2, flaky_lookup)
        except TaskExecutionError as e:
            print(f"Lookup failed: {e}")

        try:
            await worker.run_with_timeout("quick-digest", 1, send_digest)
        except TaskTimeoutError as e:
            print(f"Digest took too long: {e}")

        print(f"Scheduled tasks: {worker.get_scheduled_tasks()}")
        print(f"Next price refresh: {worker.next_run_time('refresh-prices')}")
        await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())
