from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import Header, HTTPException
from pydantic import BaseModel

from ..content import StarredTopics, StaticContentProvider
from ..controller import ControllerRegistry
from ..db import SessionLocal
from ..errors import (
	ContentGenerationError,
	InvalidTransition,
	PersistenceFailed,
	RecordNotFound,
	SessionBusy,
	StaleResult,
	ValidationFailed,
)
from ..feedback import HeuristicFeedbackSynthesizer
from ..partner import DialoguePolicy, RuleBasedPartner
from ..qa import ScriptedQAProvider
from ..settings import settings
from ..store import SqlKeyValueStore, SqlRecordStore


class User(BaseModel):
	username: str


def get_current_user(x_learner_id: Optional[str] = Header(default=None)) -> User:
	# No authentication: the client names its learner, anonymous callers share the default
	username = (x_learner_id or "").strip() or settings.default_learner
	if len(username) > 128:
		raise HTTPException(status_code=400, detail="Learner id too long")
	if username.lower() in ["guest", "guests"]:
		username = username.lower()
	return User(username=username)


def build_registry(session_factory=SessionLocal) -> ControllerRegistry:
	catalog = StaticContentProvider()
	kv = SqlKeyValueStore(session_factory)
	return ControllerRegistry(
		content=catalog,
		partner=RuleBasedPartner(catalog, DialoguePolicy.from_settings(settings)),
		qa=ScriptedQAProvider(catalog),
		feedback=HeuristicFeedbackSynthesizer(jitter=settings.feedback_jitter, seed=settings.feedback_seed),
		kv=kv,
		records=SqlRecordStore(session_factory),
		starred=StarredTopics(kv, catalog),
		advance_delay=settings.understood_advance_seconds,
	)


_registry: Optional[ControllerRegistry] = None


def get_registry() -> ControllerRegistry:
	global _registry
	if _registry is None:
		_registry = build_registry()
	return _registry


def evict_idle_controllers(days: int) -> int:
	# Only the live registry holds controllers; nothing to do before first use
	if _registry is None:
		return 0
	return _registry.evict_idle(days)


@contextmanager
def http_errors() -> Iterator[None]:
	try:
		yield
	except ValidationFailed as exc:
		raise HTTPException(status_code=400, detail=str(exc))
	except RecordNotFound as exc:
		raise HTTPException(status_code=404, detail=str(exc) or "Not found")
	except (InvalidTransition, SessionBusy) as exc:
		raise HTTPException(status_code=409, detail=str(exc))
	except StaleResult:
		raise HTTPException(status_code=409, detail="Superseded by a newer action")
	except ContentGenerationError as exc:
		raise HTTPException(status_code=502, detail=str(exc))
	except PersistenceFailed as exc:
		raise HTTPException(status_code=503, detail=str(exc))
