from __future__ import annotations
import logging
from datetime import datetime, timedelta
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import LearnStateRow, SessionRecordRow, UserAccount

logger = logging.getLogger(__name__)


def purge_stale_learn_state(db: Session, days: int = 7) -> int:
	threshold = datetime.utcnow() - timedelta(days=days)
	# Only abandoned in-progress state is removed; completed session records are kept forever
	removed = 0

	res = db.execute(
		delete(LearnStateRow).where(LearnStateRow.updated_at < threshold, LearnStateRow.key.like("learn_state:%"))
	)
	removed += res.rowcount or 0

	# Remove dormant accounts that have no saved records left
	stale_users = db.query(UserAccount).filter(UserAccount.updated_at < threshold).all()
	for u in stale_users:
		has_rows = db.query(SessionRecordRow).filter(SessionRecordRow.username == u.username).first() is not None
		if not has_rows:
			res = db.execute(delete(UserAccount).where(UserAccount.username == u.username))
			removed += res.rowcount or 0

	db.commit()
	if removed:
		logger.info("Purged %d stale rows older than %d days", removed, days)
	return removed
