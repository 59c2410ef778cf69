import os, psycopg, sys
from datetime import timedelta, datetime, timezone

from tally_sync.config import SyncConfig

MAX_AGE_MIN = int(os.getenv("MAX_AGE_MIN", "180"))

config = SyncConfig.from_env()

with psycopg.connect(config.db_url) as conn, conn.cursor() as cur:
    cur.execute(
        f"select max(completed_at) from {config.db_schema}.sync_log "
        "where company_id = %s and division_id = %s and status = 'completed'",
        (config.company_id, config.division_id),
    )
    row = cur.fetchone()
    last = row[0]
    if not last or (datetime.now(timezone.utc) - last) > timedelta(minutes=MAX_AGE_MIN):
        print("Tally sync stale or missing"); sys.exit(1)
print("Tally sync healthy")
