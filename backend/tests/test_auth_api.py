"""Integration tests for the authentication API."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from gatekeeper.api.routes.auth import OAUTH_NONCE_COOKIE
from gatekeeper.core.config import Settings
from gatekeeper.core.exceptions import InvalidToken
from gatekeeper.core.security import Finite, OAuthStateSigner, SecretManager, SessionTokenService
from gatekeeper.db.session import Database
from gatekeeper.main import create_app
from gatekeeper.models import OAuthToken
from gatekeeper.services.oauth import GOOGLE_AUTHORIZE_URL, OAuthProfile
from gatekeeper.services.users import (
    ProviderTokens,
    find_user_by_email,
    find_user_by_google_id,
    soft_delete_user,
    user_stats,
)

from conftest import RecordingProvider, StubOAuthClient, bearer, register_user

pytestmark = pytest.mark.asyncio


async def start_google_sign_in(client: AsyncClient) -> str:
    """Begin the Google flow; the client keeps the nonce cookie and the signed state is returned."""

    response = await client.get("/api/auth/google")
    assert response.status_code == 307
    return parse_qs(urlparse(response.headers["location"]).query)["state"][0]


async def test_first_registered_user_becomes_admin(client: AsyncClient) -> None:
    status_response = await client.get("/api/auth/status")
    assert status_response.json() == {"has_users": False}

    owner = await register_user(client, "owner@example.com", name="Ada", last_name="Lovelace")
    assert owner["user"]["email"] == "owner@example.com"
    assert owner["user"]["profile"]["name"] == "Ada"
    assert "password_hash" not in owner["user"]
    assert "generatedPassword" not in owner

    me = await client.get("/api/auth/me", headers=bearer(owner["token"]))
    assert me.status_code == 200
    identity = me.json()
    assert identity["role"]["name"] == "admin"
    granted = {(permission["resource"], permission["action"]) for permission in identity["permissions"]}
    assert ("users", "read") in granted
    assert len(granted) == 12

    second = await register_user(client, "second@example.com")
    assert second["user"]["role_id"] is None
    assert (await client.get("/api/auth/status")).json() == {"has_users": True}


async def test_register_response_keeps_null_user_fields(client: AsyncClient) -> None:
    await register_user(client, "owner@example.com")

    body = await register_user(client, "plain@example.com")
    assert set(body) == {"user", "token", "token_type"}
    user = body["user"]
    assert user["role_id"] is None
    assert user["google_id"] is None
    assert user["image"] is None
    assert user["email_verified_at"] is None
    assert user["profile"] is None


async def test_register_rejects_duplicates_and_missing_password(client: AsyncClient) -> None:
    await register_user(client, "owner@example.com")

    duplicate = await client.post(
        "/api/auth/register", json={"email": "Owner@Example.com", "password": "another1"}
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "DuplicateEmail"

    missing = await client.post("/api/auth/register", json={"email": "new@example.com"})
    assert missing.status_code == 422


async def test_register_with_generated_password(client: AsyncClient, notifier: RecordingProvider) -> None:
    response = await client.post(
        "/api/auth/register", json={"email": "temp@example.com", "autoGeneratePassword": True}
    )
    assert response.status_code == 201
    body = response.json()
    password = body["generatedPassword"]
    assert len(password) == 10
    assert body["user"]["role_id"] == 1
    assert body["user"]["profile"] is None
    assert "has been sent" in body["passwordMessage"]

    [message] = notifier.messages
    assert message.recipient == "temp@example.com"
    assert password in message.body

    login = await client.post("/api/auth/login", json={"email": "temp@example.com", "password": password})
    assert login.status_code == 200


async def test_generated_password_survives_mail_failure(client: AsyncClient, notifier: RecordingProvider) -> None:
    notifier.fail = True
    response = await client.post(
        "/api/auth/register", json={"email": "temp@example.com", "autoGeneratePassword": True}
    )
    assert response.status_code == 201
    body = response.json()
    assert body["generatedPassword"]
    assert "could not be emailed" in body["passwordMessage"]


async def test_login_failures_are_indistinguishable(client: AsyncClient) -> None:
    await register_user(client, "owner@example.com", "secret123")

    ok = await client.post("/api/auth/login", json={"email": "OWNER@example.com", "password": "secret123"})
    assert ok.status_code == 200
    assert ok.json()["token_type"] == "bearer"

    wrong_password = await client.post("/api/auth/login", json={"email": "owner@example.com", "password": "nope"})
    unknown_email = await client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope"})
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json()


async def test_identity_requires_valid_token(client: AsyncClient) -> None:
    owner = await register_user(client, "owner@example.com")

    missing = await client.get("/api/auth/me")
    assert missing.status_code == 401
    assert missing.json()["detail"] == "Authentication token not found"

    garbage = await client.get("/api/auth/me", headers=bearer("not-a-token"))
    assert garbage.status_code == 401
    assert garbage.json()["error"] == "InvalidToken"

    subject = SimpleNamespace(id=owner["user"]["id"], email="owner@example.com", role_id=owner["user"]["role_id"])
    expired = SessionTokenService().issue(
        subject, expiry=Finite(timedelta(minutes=5)), now=datetime.now(timezone.utc) - timedelta(hours=1)
    )
    response = await client.get("/api/auth/me", headers=bearer(expired))
    assert response.status_code == 401
    assert response.json()["error"] == "ExpiredToken"


async def test_token_of_deleted_user_is_forbidden(client: AsyncClient, database: Database) -> None:
    owner = await register_user(client, "owner@example.com")
    async with database.session() as session:
        await soft_delete_user(session, owner["user"]["id"])
        await session.commit()

    response = await client.get("/api/auth/me", headers=bearer(owner["token"]))
    assert response.status_code == 403
    assert response.json()["detail"] == "User does not exist"


async def test_logout_is_stateless(client: AsyncClient) -> None:
    owner = await register_user(client, "owner@example.com")
    assert (await client.post("/api/auth/logout")).status_code == 200
    assert (await client.get("/api/auth/me", headers=bearer(owner["token"]))).status_code == 200


async def test_google_redirect_carries_signed_state(client: AsyncClient) -> None:
    response = await client.get("/api/auth/google")
    assert response.status_code == 307
    location = response.headers["location"]
    assert location.startswith(GOOGLE_AUTHORIZE_URL)
    state = parse_qs(urlparse(location).query)["state"][0]

    cookie_header = response.headers["set-cookie"].lower()
    assert OAUTH_NONCE_COOKIE in cookie_header
    assert "httponly" in cookie_header
    nonce = client.cookies[OAUTH_NONCE_COOKIE]
    assert OAuthStateSigner().verify(state, nonce)
    assert not OAuthStateSigner().verify(state, "another-nonce")


async def test_google_callback_with_bad_state_returns_to_login(client: AsyncClient) -> None:
    response = await client.get("/api/auth/google/callback", params={"code": "abc", "state": "forged"})
    assert response.status_code == 307
    assert response.headers["location"] == "http://frontend.test/login"

    denied = await client.get("/api/auth/google/callback", params={"error": "access_denied"})
    assert denied.headers["location"] == "http://frontend.test/login"


async def test_google_callback_requires_the_initiating_browser(
    client: AsyncClient, oauth_client: StubOAuthClient, database: Database
) -> None:
    oauth_client.profile = OAuthProfile(
        email="victim@example.com",
        subject="google-sub-9",
        image=None,
        tokens=ProviderTokens(access_token="ya29.access"),
    )

    # A state minted in another browser carries a nonce this client never received.
    foreign_state = OAuthStateSigner().dumps(OAuthStateSigner.new_nonce())
    response = await client.get("/api/auth/google/callback", params={"code": "abc", "state": foreign_state})
    assert response.headers["location"] == "http://frontend.test/login"

    # A valid state from an earlier attempt no longer matches the current cookie.
    stale_state = await start_google_sign_in(client)
    await start_google_sign_in(client)
    response = await client.get("/api/auth/google/callback", params={"code": "abc", "state": stale_state})
    assert response.headers["location"] == "http://frontend.test/login"

    async with database.session() as session:
        assert await find_user_by_email(session, "victim@example.com") is None


async def test_google_exchange_failure_returns_to_login(client: AsyncClient, oauth_client: StubOAuthClient) -> None:
    # No profile configured: the stub raises OAuthError like a failed code exchange.
    oauth_client.profile = None
    state = await start_google_sign_in(client)

    response = await client.get("/api/auth/google/callback", params={"code": "abc", "state": state})
    assert response.status_code == 307
    assert response.headers["location"] == "http://frontend.test/login"
    assert OAUTH_NONCE_COOKIE not in client.cookies


async def test_google_callback_creates_user_and_stores_tokens(
    client: AsyncClient, oauth_client: StubOAuthClient, database: Database
) -> None:
    oauth_client.profile = OAuthProfile(
        email="g.user@example.com",
        subject="google-sub-1",
        image="https://example.com/avatar.png",
        tokens=ProviderTokens(access_token="ya29.access", refresh_token="1//refresh"),
        email_verified=True,
    )

    state = await start_google_sign_in(client)
    response = await client.get("/api/auth/google/callback", params={"code": "abc", "state": state})
    assert response.status_code == 307
    location = urlparse(response.headers["location"])
    assert location.path == "/home"
    token = parse_qs(location.query)["token"][0]
    assert OAUTH_NONCE_COOKIE not in client.cookies

    me = await client.get("/api/auth/me", headers=bearer(token))
    assert me.json()["email"] == "g.user@example.com"
    # First account in the system.
    assert me.json()["role"]["name"] == "admin"

    async with database.session() as session:
        user = await find_user_by_email(session, "g.user@example.com")
        assert user.google_id == "google-sub-1"
        assert user.password_hash is None
        assert user.email_verified_at is not None
        assert (await user_stats(session))["verified_users"] == 1
        stored = (await session.execute(select(OAuthToken).where(OAuthToken.user_id == user.id))).scalar_one()
    assert stored.access_token_encrypted != "ya29.access"
    assert SecretManager().decrypt(stored.access_token_encrypted) == "ya29.access"


async def test_google_subject_match_wins_over_changed_email(
    client: AsyncClient, oauth_client: StubOAuthClient, database: Database
) -> None:
    oauth_client.profile = OAuthProfile(
        email="first@example.com", subject="google-sub-3", image=None, tokens=ProviderTokens(access_token="a")
    )
    state = await start_google_sign_in(client)
    await client.get("/api/auth/google/callback", params={"code": "abc", "state": state})

    # The Google account's address changed; the linked subject still identifies the user.
    oauth_client.profile = OAuthProfile(
        email="renamed@example.com", subject="google-sub-3", image=None, tokens=ProviderTokens(access_token="b")
    )
    state = await start_google_sign_in(client)
    await client.get("/api/auth/google/callback", params={"code": "abc", "state": state})

    async with database.session() as session:
        linked = await find_user_by_google_id(session, "google-sub-3")
        assert linked.email == "first@example.com"
        assert await find_user_by_email(session, "renamed@example.com") is None


async def test_google_sign_in_after_account_deletion_creates_new_account(
    client: AsyncClient, oauth_client: StubOAuthClient
) -> None:
    admin = await register_user(client, "owner@example.com")
    oauth_client.profile = OAuthProfile(
        email="g.user@example.com", subject="google-sub-4", image=None, tokens=ProviderTokens(access_token="a")
    )

    state = await start_google_sign_in(client)
    first = await client.get("/api/auth/google/callback", params={"code": "abc", "state": state})
    first_token = parse_qs(urlparse(first.headers["location"]).query)["token"][0]
    first_id = SessionTokenService().verify(first_token).user_id

    deleted = await client.delete(f"/api/users/{first_id}", headers=bearer(admin["token"]))
    assert deleted.status_code == 204

    state = await start_google_sign_in(client)
    again = await client.get("/api/auth/google/callback", params={"code": "abc", "state": state})
    assert again.status_code == 307
    location = urlparse(again.headers["location"])
    assert location.path == "/home"
    second_id = SessionTokenService().verify(parse_qs(location.query)["token"][0]).user_id
    assert second_id != first_id


async def test_google_callback_links_existing_account(
    client: AsyncClient, oauth_client: StubOAuthClient, database: Database
) -> None:
    existing = await register_user(client, "ada@example.com")
    oauth_client.profile = OAuthProfile(
        email="ada@example.com",
        subject="google-sub-2",
        image=None,
        tokens=ProviderTokens(access_token="ya29.access"),
    )

    state = await start_google_sign_in(client)
    await client.get("/api/auth/google/callback", params={"code": "abc", "state": state})

    async with database.session() as session:
        user = await find_user_by_email(session, "ada@example.com")
    assert user.id == existing["user"]["id"]
    assert user.google_id == "google-sub-2"
    assert user.password_hash is not None
    # The provider did not vouch for the address.
    assert user.email_verified_at is None


async def test_password_reset_round_trip(client: AsyncClient, notifier: RecordingProvider) -> None:
    await register_user(client, "ada@example.com", "old-secret")

    unknown = await client.post("/api/auth/request-reset", json={"email": "ghost@example.com"})
    assert unknown.status_code == 404

    requested = await client.post("/api/auth/request-reset", json={"email": "ada@example.com"})
    assert requested.status_code == 200
    token = notifier.messages[-1].action_url.rsplit("/", 1)[-1]

    verified = await client.get(f"/api/auth/verify-token/{token}")
    assert verified.status_code == 200
    assert verified.json() == {"valid": True, "message": "Token is valid"}

    reset = await client.post("/api/auth/reset-password", json={"token": token, "newPassword": "new-secret"})
    assert reset.status_code == 200

    login = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": "new-secret"})
    assert login.status_code == 200

    reused = await client.get(f"/api/auth/verify-token/{token}")
    assert reused.status_code == 400
    assert reused.json()["valid"] is False

    again = await client.post("/api/auth/reset-password", json={"token": token, "newPassword": "other-secret"})
    assert again.status_code == 400


async def test_verify_rejects_forged_token(client: AsyncClient) -> None:
    response = await client.get("/api/auth/verify-token/forged-token")
    assert response.status_code == 400
    assert response.json() == {"valid": False, "message": "Invalid or expired token"}


async def test_reset_request_reports_mail_failure(client: AsyncClient, notifier: RecordingProvider) -> None:
    await register_user(client, "ada@example.com")
    notifier.fail = True

    response = await client.post("/api/auth/request-reset", json={"email": "ada@example.com"})
    assert response.status_code == 502


async def test_app_uses_the_settings_it_was_built_with(
    database: Database, notifier: RecordingProvider, oauth_client: StubOAuthClient
) -> None:
    custom_app = create_app(Settings(secret_key="custom-secret", frontend_url="http://custom.test/"))
    custom_app.state.database = database
    custom_app.state.notifier = notifier
    custom_app.state.oauth_client = oauth_client

    async with AsyncClient(transport=ASGITransport(app=custom_app), base_url="http://testserver") as custom_client:
        owner = await register_user(custom_client, "owner@example.com")
        assert SessionTokenService(secret="custom-secret").verify(owner["token"]).email == "owner@example.com"
        with pytest.raises(InvalidToken):
            SessionTokenService().verify(owner["token"])
        assert (await custom_client.get("/api/auth/me", headers=bearer(owner["token"]))).status_code == 200

        await custom_client.post("/api/auth/request-reset", json={"email": "owner@example.com"})
        assert notifier.messages[-1].action_url.startswith("http://custom.test/reset-password/")

        denied = await custom_client.get("/api/auth/google/callback", params={"error": "access_denied"})
        assert denied.headers["location"] == "http://custom.test/login"
