import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from matchbook.database import Base  # noqa: E402
from matchbook.models import availability, booking, invite, slot_claim  # noqa: E402,F401
from matchbook.models.user import User  # noqa: E402
from matchbook.services.notifications import RecordingNotifier  # noqa: E402


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def _add_user(db, email: str, timezone: str) -> User:
    user = User(email=email, display_name=email.split('@')[0].title(), timezone=timezone)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def alice(db) -> User:
    return _add_user(db, 'alice@example.com', 'America/New_York')


@pytest.fixture
def bob(db) -> User:
    return _add_user(db, 'bob@example.com', 'America/Los_Angeles')


@pytest.fixture
def carol(db) -> User:
    return _add_user(db, 'carol@example.com', 'America/Chicago')


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
