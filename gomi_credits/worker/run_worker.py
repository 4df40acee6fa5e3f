"""Run ARQ worker. Usage: python -m gomi_credits.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from gomi_credits.worker.tasks import get_redis_settings, shutdown, startup, sweep_expired_trials


class WorkerSettings:
    functions = [sweep_expired_trials]
    cron_jobs = [
        cron(sweep_expired_trials, minute=5),  # hourly at :05
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
