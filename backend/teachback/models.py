from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text
from .db import Base


class UserAccount(Base):
	__tablename__ = "user_accounts"
	# Primary key is the learner id sent in X-Learner-Id
	username = Column(String(128), primary_key=True, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class LearnStateRow(Base):
	__tablename__ = "learn_state"
	# Generic key/value slot: "learn_state:<learner>", "starred:<learner>"
	key = Column(String(256), primary_key=True)
	value = Column(Text, nullable=False)  # JSON string snapshot
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SessionRecordRow(Base):
	__tablename__ = "session_records"
	id = Column(String(64), primary_key=True)
	username = Column(String(128), index=True, nullable=False)
	topic_id = Column(String(64), nullable=False)
	status = Column(String(16), default="completed", nullable=False)
	total_score = Column(Integer, nullable=True)
	grade = Column(String(32), nullable=True)
	payload = Column(Text, nullable=False)  # full SessionRecord JSON
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
