import os
import subprocess
from datetime import datetime, timezone

INSTANCE_NAME = "__DB_INSTANCE__"
DATABASE_NAME = "__DB_NAME__"
BUCKET_URL = os.environ.get("BACKUP_BUCKET", "gs://__BACKUP_BUCKET__")


def backup_database(event, context):
    """Export the database to Cloud Storage; triggered by the backup topic."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    target = f"{BUCKET_URL}/db-backup-{timestamp}.sql"
    subprocess.run(
        [
            "gcloud", "sql", "export", "sql", INSTANCE_NAME, target,
            f"--database={DATABASE_NAME}",
            f"--project={os.environ.get('GCP_PROJECT', '__PROJECT__')}",
        ],
        check=True,
    )
    print(f"Database backup completed: {target}")
