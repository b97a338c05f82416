"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
Database tests run against a file-backed SQLite database in tmp_path so
separate sessions really are separate connections.
"""
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings
from recommender.content import QuestionBank
from recommender.db.database import build_engine, init_db, make_session_factory, session_scope
from recommender.db.models import Mastery, TopicLevel

FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no database)")
    config.addinivalue_line("markers", "integration: Integration tests (require database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "learning" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


# ========================================
# Question data samples
# ========================================


def static_question_data(correct=("a",), keys=("a", "b", "c", "d")):
    """Static question data with one option per key."""
    return {
        "answers": [
            {
                "key": key,
                "answerContent": f"Option {key.upper()}",
                "isCorrect": key in correct,
                "isLatex": False,
            }
            for key in keys
        ]
    }


@pytest.fixture
def ohms_law_data():
    """Dynamic question: current through a resistor."""
    return {
        "variables": [
            {
                "name": "V_{in}",
                "randomize": True,
                "min": 1,
                "max": 12,
                "step": 0.5,
                "decimalPlaces": 1,
                "unit": "V",
                "default": "5",
            },
            {"name": "R", "default": "220", "unit": "Ω"},
            {"name": "I", "isFinalAnswer": True, "decimalPlaces": 4, "unit": "A"},
        ],
        "methods": [{"expr": "I = V_{in} / R"}],
    }


# ========================================
# Settings & database
# ========================================


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'leetnode.db'}",
        log_level="DEBUG",
        mastery_update_max_retries=3,
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def clock():
    """Fixed clock for mastery/attempt timestamps."""
    return lambda: FIXED_NOW


@pytest.fixture
def seeded(session_factory, settings, ohms_law_data):
    """
    One learner and a course with three topics.

    Topics (declaration order): alpha, beta, gamma.
    Questions:
        1.1 static  (alpha)
        2.1 static  (beta)
        3.1 static  (beta)
        4.0 dynamic (gamma)
    """
    with session_scope(session_factory) as session:
        bank = QuestionBank(session, settings=settings)
        bank.add_user("u1", "u1@example.com", "learner one")
        bank.add_user("u2", "u2@example.com", "learner two")
        bank.add_topic("alpha", "Alpha", TopicLevel.FOUNDATIONAL, prior=0.25)
        bank.add_topic("beta", "Beta", TopicLevel.INTERMEDIATE, prior=0.25)
        bank.add_topic("gamma", "Gamma", TopicLevel.ADVANCED, prior=0.25)
        bank.add_course("circuits", "Circuits", TopicLevel.FOUNDATIONAL, ["alpha", "beta", "gamma"])
        bank.add_question("alpha", "Alpha one", static_question_data(), question_id=1)
        bank.add_question("beta", "Beta one", static_question_data(), question_id=2)
        bank.add_question("beta", "Beta two", static_question_data(correct=("b", "c")), question_id=3)
        bank.add_question("gamma", "Gamma dynamic", ohms_law_data, question_id=4)
    return session_factory


def set_mastery(session_factory, user_id, topic_slug, value):
    """Insert or overwrite a stored mastery value."""
    with session_scope(session_factory) as session:
        row = (
            session.query(Mastery)
            .filter_by(user_id=user_id, topic_slug=topic_slug)
            .one_or_none()
        )
        if row is None:
            row = Mastery(
                user_id=user_id,
                topic_slug=topic_slug,
                mastery_level=value,
                weekly_mastery=value,
                fortnightly_mastery=value,
            )
            session.add(row)
        else:
            row.mastery_level = value


@pytest.fixture
def static_data():
    """Factory for static question data."""
    return static_question_data


@pytest.fixture
def store_mastery(session_factory):
    """Write a mastery value directly: store_mastery(user_id, topic_slug, value)."""

    def _store(user_id, topic_slug, value):
        set_mastery(session_factory, user_id, topic_slug, value)

    return _store
