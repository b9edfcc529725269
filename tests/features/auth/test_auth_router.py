"""HTTP tests for the auth and CSRF routes, cookies, headers and error mapping."""

from fastapi import status

from authcore.config.settings import settings
from authcore.features.auth.schemas import TokenSubject
from authcore.features.auth.store import InMemorySessionStore
from authcore.features.rate_limit.schemas import RateLimitRule
from authcore.shared.results import StoreErrorKind, StoreResult
from tests.helpers import context_for, session_cookie

PREFIX = f"{settings.api_prefix}/auth"


class UnavailableSessionStore(InMemorySessionStore):
    async def get_by_token(self, token):
        return StoreResult.failure(StoreErrorKind.UNAVAILABLE, "database unavailable")


async def _login(core, context, user_id=42):
    subject = TokenSubject(id=user_id, username="editor", email="editor@example.com")
    return await core.sessions.create_session(subject, context)


async def _csrf_token(client, token) -> str:
    response = await client.get(f"{PREFIX}/csrf-token", headers=session_cookie(token))
    assert response.status_code == status.HTTP_200_OK
    return response.json()["csrf_token"]


class TestCurrentSession:
    async def test_requires_cookie(self, client):
        response = await client.get(f"{PREFIX}/session")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Authentication required"

    async def test_returns_identity(self, client, core, context):
        data = await _login(core, context)
        response = await client.get(f"{PREFIX}/session", headers=session_cookie(data.token))

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["user_id"] == 42
        assert body["username"] == "editor"
        assert body["session_id"] == data.session_id
        assert body["security_level"] == "enhanced"
        assert "X-Token-Refreshed" not in response.headers
        assert response.headers["X-RateLimit-Limit"] == "50"
        assert response.headers["X-RateLimit-Remaining"] == "49"

    async def test_security_headers(self, client):
        response = await client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-XSS-Protection"] == "1; mode=block"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert "Strict-Transport-Security" not in response.headers

    async def test_stolen_cookie_from_other_ip_gets_generic_401(self, client, core):
        data = await _login(core, context_for("9.9.9.9"))
        response = await client.get(f"{PREFIX}/session", headers=session_cookie(data.token))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Authentication required"

    async def test_renewal_resets_cookie(self, client, core, context, clock):
        data = await _login(core, context)
        clock.advance(minutes=100)

        response = await client.get(f"{PREFIX}/session", headers=session_cookie(data.token))

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["X-Token-Refreshed"] == "true"
        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"{settings.session_cookie_name}=")
        assert data.token not in cookie
        assert "HttpOnly" in cookie
        assert "SameSite=strict" in cookie
        assert "Max-Age=7200" in cookie
        assert "Path=/" in cookie

        new_token = cookie.split(";")[0].split("=", 1)[1]
        assert (await client.get(f"{PREFIX}/session", headers=session_cookie(new_token))).status_code == 200

        # Old token keeps working through the grace window, then stops
        assert (await client.get(f"{PREFIX}/session", headers=session_cookie(data.token))).status_code == 200
        clock.advance(seconds=31)
        assert (await client.get(f"{PREFIX}/session", headers=session_cookie(data.token))).status_code == 401

    async def test_general_rate_limit(self, client, core, context):
        core.rate_limiter.general_rule = RateLimitRule(capacity=2, window_seconds=60)
        data = await _login(core, context)

        for _ in range(2):
            assert (await client.get(f"{PREFIX}/session", headers=session_cookie(data.token))).status_code == 200
        response = await client.get(f"{PREFIX}/session", headers=session_cookie(data.token))

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json()["detail"] == "Too many requests"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["Retry-After"] == "60"

    async def test_store_outage_is_503(self, client, core, context):
        data = await _login(core, context)
        core.sessions.store = UnavailableSessionStore()
        response = await client.get(f"{PREFIX}/session", headers=session_cookie(data.token))
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["detail"] == "Authentication service error"


class TestLogout:
    async def test_logout_revokes_session(self, client, core, context):
        data = await _login(core, context)
        response = await client.post(f"{PREFIX}/logout", headers=session_cookie(data.token))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["message"] == "Successfully logged out"
        assert f'{settings.session_cookie_name}=""' in response.headers["set-cookie"]

        again = await client.get(f"{PREFIX}/session", headers=session_cookie(data.token))
        assert again.status_code == status.HTTP_401_UNAUTHORIZED


class TestSessions:
    async def test_list_flags_current(self, client, core, context):
        current = await _login(core, context)
        other = await _login(core, context_for("10.0.0.5"))
        await _login(core, context, user_id=7)

        response = await client.get(f"{PREFIX}/sessions", headers=session_cookie(current.token))

        assert response.status_code == status.HTTP_200_OK
        sessions = {s["id"]: s for s in response.json()["sessions"]}
        assert set(sessions) == {current.session_id, other.session_id}
        assert sessions[current.session_id]["current"] is True
        assert sessions[other.session_id]["current"] is False
        assert sessions[other.session_id]["ip_address"] == "10.0.0.5"

    async def test_terminate_others_requires_csrf(self, client, core, context):
        current = await _login(core, context)
        await _login(core, context_for("10.0.0.5"))

        response = await client.delete(f"{PREFIX}/sessions", headers=session_cookie(current.token))
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["detail"] == "Invalid CSRF token"

    async def test_terminate_others(self, client, core, context):
        current = await _login(core, context)
        other = await _login(core, context_for("10.0.0.5"))
        csrf_token = await _csrf_token(client, current.token)

        headers = {**session_cookie(current.token), settings.csrf_header_name: csrf_token}
        response = await client.delete(f"{PREFIX}/sessions", headers=headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"success": True, "terminated_count": 1}
        assert (await core.sessions.get_session(other.session_id)) is None

        # CSRF tokens are single-use
        replay = await client.delete(f"{PREFIX}/sessions", headers=headers)
        assert replay.status_code == status.HTTP_403_FORBIDDEN

    async def test_terminate_one(self, client, core, context):
        current = await _login(core, context)
        other = await _login(core, context_for("10.0.0.5"))
        csrf_token = await _csrf_token(client, current.token)

        response = await client.delete(
            f"{PREFIX}/sessions/{other.session_id}",
            headers={**session_cookie(current.token), settings.csrf_header_name: csrf_token},
        )
        assert response.status_code == status.HTTP_200_OK
        assert (await core.sessions.get_session(other.session_id)) is None
        assert (await core.sessions.get_session(current.session_id)) is not None

    async def test_cannot_terminate_someone_elses_session(self, client, core, context):
        current = await _login(core, context)
        stranger = await _login(core, context_for("10.0.0.9"), user_id=7)
        csrf_token = await _csrf_token(client, current.token)

        response = await client.delete(
            f"{PREFIX}/sessions/{stranger.session_id}",
            headers={**session_cookie(current.token), settings.csrf_header_name: csrf_token},
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert (await core.sessions.get_session(stranger.session_id)) is not None

    async def test_stale_csrf_token_rejected(self, client, core, context, clock):
        current = await _login(core, context)
        csrf_token = await _csrf_token(client, current.token)
        clock.advance(minutes=61)

        response = await client.delete(
            f"{PREFIX}/sessions",
            headers={**session_cookie(current.token), settings.csrf_header_name: csrf_token},
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestCsrfRoute:
    async def test_requires_session(self, client):
        response = await client.get(f"{PREFIX}/csrf-token")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_issues_token(self, client, core, context):
        current = await _login(core, context)
        token = await _csrf_token(client, current.token)
        assert len(token) == 64
        assert await core.csrf.validate(current.session_id, token) is True


class TestMaintenance:
    async def test_run_maintenance(self, core, context, clock):
        from authcore.features.auth.maintenance import run_maintenance_once

        data = await _login(core, context)
        await core.csrf.issue(data.session_id)
        await core.rate_limiter.check_rate_limit("ip:1.2.3.4")
        await core.lockout.record_failed_attempt("editor", "1.2.3.4")
        clock.advance(hours=25)

        removed = await run_maintenance_once(core)
        assert removed == {"sessions": 1, "csrf_tokens": 1, "failed_login_attempts": 1, "rate_limit_buckets": 1}

    async def test_maintenance_survives_store_outage(self, core, clock):
        from authcore.features.auth.maintenance import run_maintenance_once

        class Down(InMemorySessionStore):
            async def cleanup_expired(self):
                return StoreResult.failure(StoreErrorKind.UNAVAILABLE, "database unavailable")

        core.sessions.store = Down()
        assert await run_maintenance_once(core) is None
