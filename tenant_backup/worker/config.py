### tenant_backup/worker/config.py

"""
Celery configuration settings

Broker and result backend, serialization and the backup queue routing. Backup
jobs are long and memory hungry, so each worker takes one job at a time and
acknowledges it only once it has finished.
"""

# Third-party imports
from celery.schedules import crontab

# Local imports
from tenant_backup.core.config import get_settings

settings = get_settings()

# Broker and result backend configurations
broker_url = settings.celery_broker
result_backend = settings.celery_backend

# Task serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"
timezone = "UTC"
enable_utc = True

# Queue routing
task_default_queue = settings.backup_queue_name
task_routes = {
    "backups.process_backup": {"queue": settings.backup_queue_name},
    "backups.fail_stale_jobs": {"queue": settings.backup_queue_name},
}

# Task settings
task_track_started = True
task_time_limit = settings.backup_time_limit
task_soft_time_limit = settings.backup_time_limit * 5 // 6
worker_prefetch_multiplier = 1
worker_concurrency = 1
task_acks_late = True
task_reject_on_worker_lost = True
result_expires = 7 * 24 * 60 * 60

# Redis connection settings
broker_connection_retry_on_startup = True
broker_connection_retry = True
broker_connection_max_retries = 10

redis_socket_timeout = 10
redis_socket_connect_timeout = 10
redis_retry_on_timeout = True
redis_health_check_interval = 30

broker_transport_options = {
    # Must exceed the longest backup, or Redis redelivers a running job
    "visibility_timeout": task_time_limit + 60 * 60,
    "socket_timeout": 10,
    "socket_connect_timeout": 10,
    "socket_keepalive": True,
    "retry_on_timeout": True,
    "health_check_interval": 30,
}

# Beat schedule configuration
beat_schedule = {
    # Jobs whose worker died stay RUNNING until this marks them FAILED
    "fail-stale-backup-jobs": {
        "task": "backups.fail_stale_jobs",
        "schedule": crontab(minute=f"*/{settings.stale_job_sweep_minutes}"),
    },
}

# Worker configuration
worker_hijack_root_logger = False
worker_log_color = False
