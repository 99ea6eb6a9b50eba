"""Run ARQ worker. Usage: python -m credit_engine.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from credit_engine.worker.tasks import get_redis_settings, report_unreconciled_orders, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [report_unreconciled_orders]
    cron_jobs = [
        cron(report_unreconciled_orders, minute={0, 15, 30, 45}, second=0),
    ]
    on_startup = startup
    on_shutdown = shutdown


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
