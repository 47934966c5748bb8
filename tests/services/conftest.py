"""Service test fixtures — fake scheduler, hook recorder and a ready FormSession.

Invariants:
    - Every test gets its own ManualScheduler; the session clock follows its fake time
    - session fixture is initialized with a fresh Article and torn down after the test
"""

import pytest

from formkeeper.config import Settings
from formkeeper.services.form_session import FormSession

from tests.services.fakes import Article, HookRecorder, ManualScheduler


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def recorder():
    return HookRecorder()


@pytest.fixture
async def make_session(scheduler, recorder, settings):
    """Factory for sessions sharing the test's scheduler and recorder."""
    created = []

    def _make(**kwargs):
        kwargs.setdefault("scheduler", scheduler)
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("clock", scheduler.clock)
        factory = kwargs.pop("record_factory", Article)
        hooks = kwargs.pop("hooks", recorder.hooks())
        session = FormSession(factory, hooks, **kwargs)
        created.append(session)
        return session

    yield _make
    for session in created:
        await session.aclose()


@pytest.fixture
async def session(make_session):
    s = make_session()
    s.initialize()
    yield s
    await s.aclose()
