"""Shared fixtures for the NetPulse tests.

The environment is prepared before ``netpulse.main`` is imported: the database
points at a throwaway SQLite file and the required settings are filled in.
"""

import os
import tempfile
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

_TMP_DIR = Path(tempfile.mkdtemp(prefix="netpulse-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'test.db'}"
os.environ["SESSION_SECRET"] = "test-session-secret-0123456789"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["GOOGLE_CALLBACK_URL"] = "http://testserver/auth/google/callback"
os.environ["CLIENT_URL"] = "https://client.example/netpulse/"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from netpulse import database, models  # noqa: E402
from netpulse.main import app, get_oauth_client  # noqa: E402
from netpulse.oauth import OAuthError  # noqa: E402
from netpulse.schemas import UserProfile  # noqa: E402

CLIENT_URL = os.environ["CLIENT_URL"]

PROFILES = {
    "alice-code": UserProfile(
        id="1001",
        display_name="Alice",
        emails=["alice@example.com", "alice.work@example.com"],
        photos=["https://photos.example/alice.png"],
    ),
    "bob-code": UserProfile(
        id="1002",
        display_name="Bob",
        emails=["bob@example.com"],
        photos=[],
    ),
}


class FakeResponse:
    """A provider reply; a payload that is an exception is raised by ``json()``."""

    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeHttp:
    """Records calls and answers with canned responses per URL."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def _answer(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        answer = self.responses[url]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def post(self, url, **kwargs):
        return self._answer("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self._answer("GET", url, **kwargs)


class FakeOAuthClient:
    """Stands in for Google: codes in ``PROFILES`` log in, others fail."""

    def authorize_url(self, state: str) -> str:
        return f"https://accounts.example/auth?state={state}"

    def login(self, code: str) -> UserProfile:
        try:
            return PROFILES[code]
        except KeyError:
            raise OAuthError("invalid_grant") from None


@pytest.fixture(autouse=True)
def clean_db():
    database.migrate()
    db = database.SessionLocal()
    try:
        db.query(models.TestResult).delete()
        db.query(models.UserSession).delete()
        db.commit()
    finally:
        db.close()
    yield


@pytest.fixture(autouse=True)
def fake_oauth():
    app.dependency_overrides[get_oauth_client] = FakeOAuthClient
    yield
    app.dependency_overrides.pop(get_oauth_client, None)


@pytest.fixture
def client():
    return TestClient(app)


def start_login(client: TestClient) -> str:
    """Begin the login flow and return the state handed to the provider."""

    res = client.get("/auth/google", follow_redirects=False)
    assert res.status_code == 302
    return parse_qs(urlsplit(res.headers["location"]).query)["state"][0]


def login_as(client: TestClient, code: str):
    state = start_login(client)
    return client.get(
        "/auth/google/callback",
        params={"code": code, "state": state},
        follow_redirects=False,
    )


@pytest.fixture
def alice(client):
    res = login_as(client, "alice-code")
    assert res.status_code == 302
    return client


@pytest.fixture
def bob():
    c = TestClient(app)
    res = login_as(c, "bob-code")
    assert res.status_code == 302
    return c
