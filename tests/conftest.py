"""Shared fixtures: a throwaway SQLite database per test and ready-made collaborators."""

import os
import tempfile

# Settings are read at import time; point them at a scratch database first
_SCRATCH = tempfile.mkdtemp(prefix="teachback-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_SCRATCH, 'app.db')}")
os.environ["UNDERSTOOD_ADVANCE_SECONDS"] = "0"

import asyncio

import pytest
from fastapi.testclient import TestClient

from teachback import models  # noqa: F401
from teachback.content import StarredTopics, StaticContentProvider
from teachback.controller import SessionController
from teachback.db import Base, make_engine, make_session_factory
from teachback.feedback import HeuristicFeedbackSynthesizer
from teachback.partner import RuleBasedPartner
from teachback.qa import ScriptedQAProvider
from teachback.routers.deps import build_registry, get_registry
from teachback.store import SqlKeyValueStore, SqlRecordStore


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def kv(session_factory):
    return SqlKeyValueStore(session_factory)


@pytest.fixture
def records(session_factory):
    return SqlRecordStore(session_factory)


@pytest.fixture
def catalog():
    return StaticContentProvider()


@pytest.fixture
def lesson(catalog):
    return asyncio.run(catalog.generate_lesson("topic-1"))


@pytest.fixture
def make_controller(session_factory):
    """Build a controller with the built-in collaborators, overriding any of them."""

    def _make(learner="alice", *, partner=None, qa=None, kv=None, feedback=None, advance_delay=0.0):
        catalog = StaticContentProvider()
        store = kv or SqlKeyValueStore(session_factory)
        return SessionController(
            learner,
            content=catalog,
            partner=partner or RuleBasedPartner(catalog),
            qa=qa or ScriptedQAProvider(catalog),
            feedback=feedback or HeuristicFeedbackSynthesizer(),
            kv=store,
            records=SqlRecordStore(session_factory),
            starred=StarredTopics(store, catalog),
            advance_delay=advance_delay,
        )

    return _make


@pytest.fixture
def registry(session_factory):
    return build_registry(session_factory)


@pytest.fixture
def client(registry):
    from teachback.main import app

    app.dependency_overrides[get_registry] = lambda: registry
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
