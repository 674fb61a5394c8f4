### tenant_backup/worker/start_worker.py

"""
Celery worker startup script

Starts one worker process consuming the backup queue. Scale out by starting
more workers on the same queue, not by raising the concurrency.
"""

# Local imports
from tenant_backup.core.config import get_settings
from tenant_backup.utils.logger import configure_logging, get_logger
from tenant_backup.worker.app import app

logger = get_logger(__name__)


def start_worker():
    """Start the celery worker."""
    settings = get_settings()
    configure_logging(settings.log_level)

    argv = [
        "worker",
        f"--loglevel={settings.log_level.lower()}",
        "--concurrency=1",  # One backup at a time per worker
        "--prefetch-multiplier=1",
        f"--queues={settings.backup_queue_name}",
        "--max-tasks-per-child=20",  # Recycle the process to return freed memory
    ]

    logger.info(
        f"Starting Celery worker on queue {settings.backup_queue_name}",
        redis_host=settings.redis_host,
        redis_port=settings.redis_port,
    )

    app.worker_main(argv)


def start_beat():
    """Start the scheduler for periodic tasks (the stale job sweep). Run exactly one."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("Starting Celery beat", sweep_minutes=settings.stale_job_sweep_minutes)
    app.start(["beat", f"--loglevel={settings.log_level.lower()}"])


if __name__ == "__main__":
    start_worker()
