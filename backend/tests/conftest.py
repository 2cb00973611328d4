import os
import threading

# Settings are cached on first import; configure before importing the app.
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test-housecup.db")

import pytest
from fastapi.testclient import TestClient

from housecup.db import build_engine, build_sessionmaker, get_db, init_db
from housecup.db_models import APPROVED, Nomination, Position
from housecup.dependencies import get_broadcaster
from housecup.main import app
from housecup.security import Identity, create_access_token


class RecordingBroadcaster:
    """Keeps every published event and forwards it to the app's hub."""

    def __init__(self, forward=None):
        self.events = []
        self.forward = forward
        self._lock = threading.Lock()

    def publish(self, event):
        with self._lock:
            self.events.append(event)
        if self.forward is not None:
            self.forward.publish(event)

    def names(self):
        return [e.name for e in self.events]


ADMIN = Identity(user_id="admin-1", role="admin")
RED_ADMIN = Identity(user_id="red-admin", role="house_admin", house_id="red")


def voter(user_id: str, house_id: str = "red") -> Identity:
    return Identity(user_id=user_id, role="voter", house_id=house_id)


def auth(identity: Identity) -> dict:
    return {"Authorization": f"Bearer {create_access_token(identity)}"}


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'housecup.sqlite3'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def client(session_factory):
    recorder = RecordingBroadcaster(forward=app.state.hub)

    def _db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_broadcaster] = lambda: recorder
    app.state.limiter.reset()
    test_client = TestClient(app)
    test_client.recorder = recorder
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_position(db):
    def _make(title="Captain", house_id=None, **kwargs):
        position = Position(title=title, house_id=house_id, **kwargs)
        db.add(position)
        db.commit()
        return position

    return _make


@pytest.fixture
def make_nomination(db):
    def _make(position, user_id, house_id="red", status=APPROVED, manifesto="Vote for me"):
        nomination = Nomination(
            user_id=user_id,
            position_id=position.id,
            house_id=house_id,
            manifesto=manifesto,
            status=status,
        )
        db.add(nomination)
        db.commit()
        return nomination

    return _make
