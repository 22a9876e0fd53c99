from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

import calbook.main as main_module
from calbook import config
from calbook.db.models import GoogleOAuthCredential, Host
from calbook.integrations.google_oauth import (
    GoogleTokenGrant,
    build_google_oauth_state,
    parse_google_oauth_state,
)
from calbook.main import app
from calbook.security.dependencies import require_owner


client = TestClient(app)

REDIRECT_URI = "https://calbook.example.com/v1/integrations/google/oauth/callback"


class FakeQuery:
    def __init__(self, session, model):
        self.session = session
        self.model = model

    def filter(self, *criteria):
        self.session.filtered.append((self.model, criteria))
        return self

    def all(self):
        return list(self.session.store.get(self.model, []))


class FakeSession:
    def __init__(self, hosts=None, credentials=None):
        self.store = {
            Host: list(hosts or []),
            GoogleOAuthCredential: list(credentials or []),
        }
        self.next_id = {GoogleOAuthCredential: 1}
        self.queried = []
        self.filtered = []
        self.committed = False

    def query(self, model):
        self.queried.append(model)
        return FakeQuery(self, model)

    def add(self, row):
        model = type(row)
        if getattr(row, "id", None) is None and model in self.next_id:
            row.id = self.next_id[model]
            self.next_id[model] += 1
        now = datetime.now(timezone.utc)
        if getattr(row, "created_at", None) is None:
            row.created_at = now
        if getattr(row, "updated_at", None) is None and hasattr(row, "updated_at"):
            row.updated_at = now
        if model in self.store and row not in self.store[model]:
            self.store[model].append(row)

    def flush(self):
        return None

    def commit(self):
        self.committed = True

    def rollback(self):
        return None

    def close(self):
        return None


def _oauth_env(monkeypatch):
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "google-client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "google-client-secret")
    monkeypatch.setenv("GOOGLE_REDIRECT_URI", REDIRECT_URI)
    monkeypatch.setenv("GOOGLE_OAUTH_STATE_SECRET", "state-secret")


@pytest.fixture
def as_owner():
    app.dependency_overrides[require_owner] = lambda: 42
    yield
    app.dependency_overrides.pop(require_owner, None)


def test_google_connect_returns_auth_url(monkeypatch, as_owner):
    _oauth_env(monkeypatch)

    response = client.get("/v1/me/google/connect")
    body = response.json()
    assert response.status_code == 200
    assert body["ok"] is True

    parsed = urlparse(body["data"]["auth_url"])
    params = parse_qs(parsed.query)
    assert params["redirect_uri"][0] == REDIRECT_URI
    assert params["scope"][0] == (
        "https://www.googleapis.com/auth/calendar.readonly "
        "https://www.googleapis.com/auth/calendar.events"
    )
    assert params["access_type"][0] == "offline"
    assert parse_google_oauth_state(params["state"][0], secret="state-secret") == 42


def test_google_connect_without_configuration(monkeypatch, as_owner):
    monkeypatch.delenv("GOOGLE_CLIENT_ID", raising=False)
    monkeypatch.setenv("GOOGLE_OAUTH_STATE_SECRET", "state-secret")

    response = client.get("/v1/me/google/connect")

    assert response.status_code == 500
    assert response.json()["error_code"] == "GOOGLE_OAUTH_NOT_CONFIGURED"


def test_oauth_state_rejects_tampering_and_expiry():
    issued = datetime(2030, 1, 1, tzinfo=timezone.utc)
    state = build_google_oauth_state(host_id=7, secret="state-secret", now=issued)

    assert parse_google_oauth_state(state, secret="state-secret", now=issued) == 7
    with pytest.raises(ValueError, match="signature"):
        parse_google_oauth_state(state, secret="other-secret", now=issued)
    with pytest.raises(ValueError, match="expired"):
        parse_google_oauth_state(state, secret="state-secret", now=issued + timedelta(hours=2))


def test_google_callback_invalid_state_returns_400(monkeypatch):
    _oauth_env(monkeypatch)

    response = client.get("/v1/integrations/google/oauth/callback?code=abc&state=bad_state")
    body = response.json()
    assert response.status_code == 400
    assert body["ok"] is False
    assert body["error_code"] == "INVALID_OAUTH_STATE"


def test_google_callback_missing_code_returns_400(monkeypatch):
    _oauth_env(monkeypatch)

    response = client.get("/v1/integrations/google/oauth/callback?state=abc")

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_OAUTH_CALLBACK"


def test_google_callback_saves_credentials(monkeypatch):
    host = Host(
        id=7,
        username="ada",
        name="Ada Lovelace",
        email="ada@example.com",
        timezone="America/New_York",
    )
    fake_session = FakeSession(hosts=[host])

    _oauth_env(monkeypatch)
    monkeypatch.setattr(main_module, "SessionLocal", lambda: fake_session)
    monkeypatch.setattr(
        main_module,
        "exchange_google_code_for_tokens",
        lambda **_kwargs: GoogleTokenGrant.from_payload(
            {
                "refresh_token": "refresh_123",
                "access_token": "access_123",
                "expires_in": 3600,
                "scope": "https://www.googleapis.com/auth/calendar.events",
            }
        ),
    )

    state = build_google_oauth_state(host_id=7, secret="state-secret")
    response = client.get(f"/v1/integrations/google/oauth/callback?code=abc123&state={state}")

    assert response.status_code == 200
    assert "Google Calendar connected. You can close this tab." in response.text
    credentials = fake_session.store[GoogleOAuthCredential]
    assert len(credentials) == 1
    assert credentials[0].host_id == 7
    assert credentials[0].refresh_token == "refresh_123"
    assert credentials[0].calendar_id == "primary"
    assert credentials[0].token_expiry > datetime.now(timezone.utc)
    assert fake_session.committed is True
    # Lookups are keyed by host rather than loading every row.
    assert len(fake_session.filtered) == len(fake_session.queried)
    assert {model for model, criteria in fake_session.filtered if criteria} == {
        Host,
        GoogleOAuthCredential,
    }


def test_google_callback_keeps_refresh_token_on_reconnect(monkeypatch):
    host = Host(id=7, username="ada", name="Ada", email="ada@example.com", timezone="UTC")
    existing = GoogleOAuthCredential(
        id=1,
        host_id=7,
        refresh_token="refresh_old",
        access_token="access_old",
        calendar_id="primary",
    )
    fake_session = FakeSession(hosts=[host], credentials=[existing])

    _oauth_env(monkeypatch)
    monkeypatch.setattr(main_module, "SessionLocal", lambda: fake_session)
    monkeypatch.setattr(
        main_module,
        "exchange_google_code_for_tokens",
        lambda **_kwargs: GoogleTokenGrant(
            access_token="access_new",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        ),
    )

    state = build_google_oauth_state(host_id=7, secret="state-secret")
    response = client.get(f"/v1/integrations/google/oauth/callback?code=abc123&state={state}")

    assert response.status_code == 200
    assert existing.refresh_token == "refresh_old"
    assert existing.access_token == "access_new"


def test_google_callback_unknown_host(monkeypatch):
    fake_session = FakeSession()

    _oauth_env(monkeypatch)
    monkeypatch.setattr(main_module, "SessionLocal", lambda: fake_session)
    monkeypatch.setattr(
        main_module,
        "exchange_google_code_for_tokens",
        lambda **_kwargs: GoogleTokenGrant(refresh_token="refresh_123", access_token="access_123"),
    )

    state = build_google_oauth_state(host_id=99, secret="state-secret")
    response = client.get(f"/v1/integrations/google/oauth/callback?code=abc123&state={state}")

    assert response.status_code == 400
    assert response.json()["error_code"] == "GOOGLE_OAUTH_PERSIST_FAILED"


def test_google_callback_token_exchange_failure(monkeypatch):
    _oauth_env(monkeypatch)

    def _fail(**_kwargs):
        raise ValueError("Google token request failed.")

    monkeypatch.setattr(main_module, "exchange_google_code_for_tokens", _fail)

    state = build_google_oauth_state(host_id=7, secret="state-secret")
    response = client.get(f"/v1/integrations/google/oauth/callback?code=abc123&state={state}")

    assert response.status_code == 400
    assert response.json()["error_code"] == "OAUTH_TOKEN_EXCHANGE_FAILED"


def test_oauth_state_without_signature_is_rejected():
    with pytest.raises(ValueError, match="format"):
        parse_google_oauth_state("no-dot-here", secret="state-secret")


def test_token_grant_from_payload():
    issued = datetime(2030, 1, 1, tzinfo=timezone.utc)

    grant = GoogleTokenGrant.from_payload(
        {"access_token": " access_1 ", "expires_in": "3600", "scope": ""},
        now=issued,
    )
    broken = GoogleTokenGrant.from_payload({"access_token": "a", "expires_in": "soon"}, now=issued)

    assert grant.access_token == "access_1"
    assert grant.refresh_token is None
    assert grant.scopes is None
    assert grant.expires_at == issued + timedelta(hours=1)
    assert broken.expires_at is None


def test_google_oauth_settings_default_redirect(monkeypatch):
    monkeypatch.delenv("GOOGLE_REDIRECT_URI", raising=False)
    monkeypatch.setenv("GOOGLE_CLIENT_ID", " client-id ")
    monkeypatch.setattr(config, "APP_URL", "https://calbook.example.com")

    settings = config.google_oauth_settings()

    assert settings.client_id == "client-id"
    assert settings.redirect_uri == REDIRECT_URI
