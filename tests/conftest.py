"""
Shared pytest fixtures for the milestone engine test suite.
Factory helpers live in tests/factories.py so they can be imported
directly by test modules as well as being used here.
"""
import sys
import os

_tests_dir = os.path.dirname(__file__)
_src_dir   = os.path.join(_tests_dir, "..", "src")
for _p in (_tests_dir, _src_dir):
    if _p not in sys.path:
        sys.path.insert(0, _p)

# Never pick up a developer's real database during tests
os.environ["MILESTONE_DB_PATH"] = "<placeholder>"


import pytest

from factories import DEFAULTS, make_lifecycle, make_milestone

from milestone_engine.api import MilestoneApi
from milestone_engine.config import AppConfig, Settings, StorageConfig


# ─── pytest fixtures ──────────────────────────────────────────────────────────

@pytest.fixture
def lifecycle():
    return make_lifecycle()


@pytest.fixture
def milestone(lifecycle):
    return make_milestone(lifecycle)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "milestones.db"


@pytest.fixture
def api(db_path):
    settings = Settings(
        defaults=DEFAULTS,
        storage=StorageConfig(db_path=str(db_path)),
        app=AppConfig(log_level="INFO", upcoming_window_days=7),
    )
    return MilestoneApi(db_path=db_path, settings=settings)
