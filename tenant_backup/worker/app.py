### tenant_backup/worker/app.py

"""
Main Celery Application Configuration

Sets up the Celery application with Redis as broker and result backend and
discovers the backup tasks.
"""

# Third party imports
from celery import Celery

# Register ledger models with SQLAlchemy before any task touches the database
import tenant_backup.backups.models  # noqa: F401

# Create Celery Instance
app = Celery("tenant_backup")

# Configure celery from separate config file
app.config_from_object("tenant_backup.worker.config")

# Looks for tasks.py in each listed package
app.autodiscover_tasks(["tenant_backup.backups"])

if __name__ == "__main__":
    app.start()
