"""
Shared pytest fixtures: in-memory database and a seeded user.
"""

import os

# Configure before any app module reads config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["CRON_SECRET"] = "cron-test-secret"
os.environ["PUSH_DISPATCH_URL"] = ""
for _key in ("GEMINI_API_KEY", "GROQ_API_KEY", "CEREBRAS_API_KEY"):
    os.environ[_key] = ""

from datetime import date, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from database import init_db, make_engine
from models.profile import Profile


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user(db):
    profile = Profile(
        id=1,
        pseudonym="River",
        addiction_type="alcohol",
        sobriety_start_date=date.today() - timedelta(days=40),
        level=3,
        xp=250,
        current_streak=12,
        longest_streak=20,
    )
    db.add(profile)
    db.commit()
    return profile
