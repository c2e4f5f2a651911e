# pool_indexer/main.py
import logging
import os

from fastapi import FastAPI
from sqlalchemy import text

from pool_indexer.api import api
from pool_indexer.config.logging_config import setup_logging
from pool_indexer.storage import db
from pool_indexer.storage.sink import PersistenceSink

setup_logging(os.getenv("LOG_LEVEL", "INFO").upper())
log = logging.getLogger(__name__)

app = FastAPI(title="pool-indexer")
app.include_router(api.router, prefix="/api")


@app.on_event("startup")
def check_db_connection():
    # only the database is needed to serve reads
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        log.error("❌ DATABASE_URL is not set; read API has no store")
        return
    engine = db.configure(database_url)
    sink = PersistenceSink(db.SessionLocal)
    app.dependency_overrides[api.get_sink] = lambda: sink
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            log.info("✅ Database connected.")
    except Exception as e:
        log.error(f"❌ DB connection failed: {e}")
