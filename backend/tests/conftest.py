import os
import tempfile
from datetime import datetime, timedelta, timezone

# Settings and the engine are built at import time, so configure them first
_tmpdir = tempfile.mkdtemp(prefix="visa-portal-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["ENV"] = "test"

import jwt
import pytest
from fastapi.testclient import TestClient

from visa_portal.core.config import settings
from visa_portal.core.security import create_access_token
from visa_portal.db.session import engine
from visa_portal.main import create_app
from visa_portal.models.base import Base
from visa_portal.models import application, message, notification  # noqa: F401


@pytest.fixture(scope="session", autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def token_for():
    def make(user_id: str, roles: list[str] | None = None) -> str:
        return create_access_token(user_id, roles or ["applicant"])
    return make


@pytest.fixture
def auth_header(token_for):
    def make(user_id: str, roles: list[str] | None = None) -> dict:
        return {"Authorization": f"Bearer {token_for(user_id, roles)}"}
    return make


@pytest.fixture
def raw_token():
    """Sign an arbitrary payload (defaults to the app's own secret)."""
    def make(payload: dict, secret: str | None = None) -> str:
        body = {"exp": datetime.now(tz=timezone.utc) + timedelta(minutes=5), **payload}
        return jwt.encode(body, secret or settings.secret_key, algorithm=settings.algorithm)
    return make


class FakeHandle:
    """In-memory stand-in for a live socket."""

    def __init__(self, user_id: str, open: bool = True):
        self.user_id = user_id
        self.sent: list[str] = []
        self.closed_with: tuple[int, str] | None = None
        self._open = open

    @property
    def is_open(self) -> bool:
        return self._open and self.closed_with is None

    def send_nowait(self, text: str) -> None:
        self.sent.append(text)

    def close_nowait(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)


@pytest.fixture
def make_handle():
    return FakeHandle
