from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import AuthSession
from .settings import settings

logger = logging.getLogger(__name__)


def purge_stale_sessions(db: Session, now: Optional[datetime] = None) -> int:
	"""Delete auth sessions with no activity within the retention window."""
	threshold = (now or datetime.utcnow()) - timedelta(days=settings.session_retention_days)
	res = db.execute(delete(AuthSession).where(AuthSession.last_activity_at < threshold))
	db.commit()
	removed = res.rowcount or 0
	if removed:
		logger.info("Purged %d stale auth sessions", removed)
	return removed
