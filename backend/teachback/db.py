from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url


def make_engine(url: str) -> Engine:
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	return create_engine(url, connect_args=connect_args, future=True)


def make_session_factory(bind: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, bind=bind, future=True)


engine = make_engine(DATABASE_URL)
SessionLocal = make_session_factory(engine)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(bind: Engine | None = None) -> None:
	bind = bind or engine
	try:
		inspector = inspect(bind)
		tables = set(inspector.get_table_names())
	except Exception:
		return
	if "session_records" in tables:
		cols = {c["name"] for c in inspector.get_columns("session_records")}
		with bind.begin() as conn:
			if "grade" not in cols:
				conn.exec_driver_sql("ALTER TABLE session_records ADD COLUMN grade VARCHAR(32)")
			if "status" not in cols:
				conn.exec_driver_sql("ALTER TABLE session_records ADD COLUMN status VARCHAR(16) DEFAULT 'completed' NOT NULL")
	if "learn_state" in tables:
		cols = {c["name"] for c in inspector.get_columns("learn_state")}
		if "updated_at" not in cols:
			with bind.begin() as conn:
				conn.exec_driver_sql("ALTER TABLE learn_state ADD COLUMN updated_at DATETIME")
