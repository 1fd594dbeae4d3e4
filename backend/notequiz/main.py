import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db import Base, engine, SessionLocal, ensure_schema
from .cleanup import purge_stale_sessions
from .logging_config import configure_logging
from .settings import settings
from .routers import health
from .routers import auth
from .routers import keys
from .routers import quizzes

logger = logging.getLogger(__name__)

app = FastAPI(title="Notequiz API")

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
	expose_headers=["X-Error-Code"],
)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(keys.router)
app.include_router(quizzes.router)


@app.get("/info")
def root():
	return {"status": "ok", "gemini_configured": bool(settings.gemini_api_key)}


def _run_cleanup() -> None:
	db = SessionLocal()
	try:
		purge_stale_sessions(db)
	except Exception:
		logger.exception("Session cleanup failed")
	finally:
		db.close()


async def _cleanup_watcher():
	# Startup already ran one pass; repeat daily
	while True:
		await asyncio.sleep(24 * 60 * 60)
		_run_cleanup()


@app.on_event("startup")
async def startup_event():
	configure_logging()
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	ensure_schema()
	_run_cleanup()
	asyncio.create_task(_cleanup_watcher())
	logger.info("Notequiz API started")
