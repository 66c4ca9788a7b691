import asyncio
import logging

from fastapi import FastAPI

from .db import Base, engine, get_db, ensure_schema
from .cleanup import purge_stale_learn_state
from .settings import settings
from .routers import learn, sessions, topics
from .routers.deps import evict_idle_controllers
from . import models  # noqa: F401  registers tables on Base

logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Teach-Back Learning API")
app.include_router(topics.router)
app.include_router(learn.router)
app.include_router(sessions.router)

@app.get("/info")
def root():
	return {"status": "ok", "database": engine.url.get_backend_name()}

def _purge_once() -> None:
	db = next(get_db())
	try:
		purge_stale_learn_state(db, settings.stale_state_days)
		evict_idle_controllers(settings.stale_state_days)
	except Exception:
		logger.warning("Stale state cleanup failed", exc_info=True)
	finally:
		db.close()

async def _cleanup_watcher():
	# Startup already purged once; then daily
	while True:
		await asyncio.sleep(24 * 60 * 60)
		_purge_once()

@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	try:
		ensure_schema()
	except Exception:
		logger.warning("Schema check failed", exc_info=True)
	# Best-effort cleanup at startup
	_purge_once()
	# Start periodic cleanup loop
	asyncio.create_task(_cleanup_watcher())
