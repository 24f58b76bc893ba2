import os
from dotenv import load_dotenv

load_dotenv()

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///procqueue.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")  # "console" or "json"

# Admission ceiling: sum of capacity over running jobs
MAXIMUM_CAPACITY = 100
PROCESS_LIMIT = int(os.getenv("PROCESS_LIMIT", "0")) or MAXIMUM_CAPACITY

# Spawn retry budget for the worker launcher
SPAWN_RETRY_COUNT = int(os.getenv("SPAWN_RETRY_COUNT", "3"))
SPAWN_RETRY_INTERVAL_S = float(os.getenv("SPAWN_RETRY_INTERVAL_S", "1.0"))

# Orphan reaper: processes whose name/cmdline match are considered live workers
LIVE_PROCESS_PATTERN = os.getenv("LIVE_PROCESS_PATTERN", r"python|procqueue|celery")

# Supervisor (local worker pool)
WORKER_CONCURRENCY = int(os.getenv("WORKER_CONCURRENCY", "4"))
POLL_INTERVAL_S = float(os.getenv("POLL_INTERVAL_S", "1.0"))
CRON_INTERVAL_S = float(os.getenv("CRON_INTERVAL_S", "60"))
CLEANUP_INTERVAL_S = float(os.getenv("CLEANUP_INTERVAL_S", "300"))

# Celery queue names
QUEUE_DISPATCH = "dispatch"
QUEUE_MAINTENANCE = "maintenance"

# Crontab schedules, JSON list of objects:
#   [{"name": "sweeper", "command": "bin/sweep", "schedule": "*/5 * * * *"}]
# CRONTAB_FILE takes precedence over the inline CRONTAB_SCHEDULES variable.
CRONTAB_FILE = os.getenv("CRONTAB_FILE", "")
CRONTAB_SCHEDULES = os.getenv("CRONTAB_SCHEDULES", "[]")
