"""
Pytest configuration and fixtures for Hub Lock tests.

Provides test database isolation and common test utilities.
"""
import os
import sys
import pathlib
from datetime import datetime, timedelta

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Strict production radius and an isolated database unless overridden
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in TEST_DATABASE_URL else {},
    poolclass=StaticPool,
    echo=False  # Set to True for SQL debugging
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

HUB_LAT = 12.9716
HUB_LNG = 77.5946

# A Wednesday morning (UTC); outside the showdown window
QUEST_START = datetime(2026, 10, 14, 6, 0)


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create the schema once per test session."""
    from hublock.db import Base
    from hublock import models  # noqa: F401

    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def db():
    """
    Provide a clean database session for each test.

    Transactions are rolled back after each test so no data leaks between
    tests. Code under test may call commit(); it only releases the session's
    part of the outer transaction.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)

    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


def override_get_db(db_session):
    """Dependency override for get_db that hands out the test session."""
    def _override():
        yield db_session
    return _override


@pytest.fixture(scope="function")
def client(setup_test_db, db):
    """
    FastAPI TestClient with the test database dependency override.

    Not used as a context manager so the app lifespan (which creates tables
    on the configured database) does not run.
    """
    from fastapi.testclient import TestClient
    from hublock.main import app
    from hublock.db import get_db

    app.dependency_overrides[get_db] = override_get_db(db)
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Factory for heroes with explicit scores."""
    from hublock.models import User

    def _make(user_id, city="Bangalore", **fields):
        defaults = dict(
            name=user_id.title(), xp=0, lifetime_xp=0, this_week_xp=0,
            reliability_score=0, level=1, quests_completed=0, badges=[], feedback_counts={},
        )
        defaults.update(fields)
        user = User(id=user_id, city=city, **defaults)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def hub(db):
    from hublock.models import Hub
    hub = Hub(
        id="hub_koramangala",
        name="Third Wave Koramangala",
        city="Bangalore",
        secret_code="X7K92M",
        coordinates={"latitude": HUB_LAT, "longitude": HUB_LNG},
    )
    db.add(hub)
    db.commit()
    return hub


@pytest.fixture
def quest(db, hub, make_user):
    """Quest led by 'leader' with 'leader' and 'member' in the squad."""
    from hublock.models import Quest, QuestMember, QUEST_STATUS_OPEN

    make_user("leader")
    make_user("member")
    quest = Quest(
        id="quest_coffee",
        title="Coffee Crawl",
        start_time=QUEST_START,
        leader_id="leader",
        status=QUEST_STATUS_OPEN,
        hub_id=hub.id,
        hub_name=hub.name,
        completed_by=[],
    )
    db.add(quest)
    db.add(QuestMember(quest_id=quest.id, user_id="leader", name="Leader", is_leader=True, joined_at=QUEST_START))
    db.add(QuestMember(quest_id=quest.id, user_id="member", name="Member", is_leader=False,
                       joined_at=QUEST_START + timedelta(seconds=1)))
    db.commit()
    return quest


@pytest.fixture
def png_bytes():
    """Factory for encoded PNG images of a given size."""
    import io
    from PIL import Image

    def _make(width, height, color=(200, 120, 40)):
        buf = io.BytesIO()
        Image.new("RGB", (width, height), color).save(buf, format="PNG")
        return buf.getvalue()
    return _make
