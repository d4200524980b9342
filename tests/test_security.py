"""
Tests for security: CSRF protection on every form and rate limiting of the
login endpoints.
"""

from laundry_portal.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME
from laundry_portal.rate_limit import RateLimitStore, match_rule
from tests.conftest import csrf_data, fail


# =============================================================================
# CSRF PROTECTION
# =============================================================================

class TestCSRFProtection:
    """All state-changing POST endpoints must carry the double-submit token."""

    async def test_missing_cookie_is_rejected(self, client):
        client.cookies.delete(CSRF_COOKIE_NAME)
        response = await client.post("/book/next", data={"csrf_token": "anything"})
        assert response.status_code == 403
        assert response.json()["detail"] == "CSRF token missing"

    async def test_missing_form_token_is_rejected(self, client):
        response = await client.post("/login", data={"email": "a@b.c", "password": "pw"})
        assert response.status_code == 403
        assert response.json()["detail"] == "CSRF token not provided in form or header"

    async def test_mismatched_token_is_rejected(self, client, backend):
        response = await client.post("/admin/refunds/R1/approve", data={"csrf_token": "forged"})
        assert response.status_code == 403
        assert response.json()["detail"] == "CSRF token mismatch"
        assert backend.calls == []

    async def test_header_token_is_accepted(self, client):
        response = await client.post(
            "/logout",
            data={"portal": "customer"},
            headers={CSRF_HEADER_NAME: client._csrf_token},
        )
        assert response.status_code == 303

    async def test_form_body_reaches_route_after_check(self, client, backend):
        backend.on("POST", "/auth/login", fail("Invalid email or password", status_code=401))
        response = await client.post("/login", data=csrf_data(client, {"email": "a@b.c", "password": "pw"}))
        assert response.status_code == 400
        assert backend.calls_to("POST", "/auth/login")[0].body["email"] == "a@b.c"

    async def test_page_load_sets_cookie_when_absent(self, client):
        client.cookies.delete(CSRF_COOKIE_NAME)
        response = await client.get("/login")
        cookies = response.headers.get_list("set-cookie")
        assert any(c.startswith(f"{CSRF_COOKIE_NAME}=") for c in cookies)
        token = response.cookies.get(CSRF_COOKIE_NAME)
        assert f'value="{token}"' in response.text

    async def test_page_load_keeps_existing_cookie(self, client):
        response = await client.get("/login")
        assert CSRF_COOKIE_NAME not in response.cookies
        assert f'value="{client._csrf_token}"' in response.text

    async def test_health_is_exempt(self, client):
        client.cookies.delete(CSRF_COOKIE_NAME)
        response = await client.get("/health")
        assert response.status_code == 200
        assert CSRF_COOKIE_NAME not in response.cookies


# =============================================================================
# RATE LIMITING
# =============================================================================

class TestRateLimiting:

    def test_store_window(self):
        store = RateLimitStore()
        assert not store.is_rate_limited("k", 2, 60)
        assert not store.is_rate_limited("k", 2, 60)
        assert store.is_rate_limited("k", 2, 60)
        assert not store.is_rate_limited("other", 2, 60)

    def test_rules(self):
        assert match_rule("/login") == (10, 60)
        assert match_rule("/center-admin/login/mfa") == (5, 60)
        assert match_rule("/book") is None

    async def test_login_is_limited_after_ten_attempts(self, client, backend):
        backend.on("POST", "/auth/login", fail("Invalid email or password", status_code=401))
        for _ in range(10):
            response = await client.post("/login", data=csrf_data(client, {"email": "a@b.c", "password": "bad"}))
            assert response.status_code == 400

        response = await client.post("/login", data=csrf_data(client, {"email": "a@b.c", "password": "bad"}))

        assert response.status_code == 429
        assert response.headers["retry-after"] == "60"
        assert len(backend.calls_to("POST", "/auth/login")) == 10

    async def test_mfa_is_limited_after_five_attempts(self, client, backend):
        backend.on("POST", "/center-admin/auth/verify-mfa", fail("Invalid verification code", status_code=401))
        for _ in range(5):
            await client.post("/center-admin/login/mfa", data=csrf_data(client, {"mfa_token": "m", "otp": "000000"}))

        response = await client.post("/center-admin/login/mfa", data=csrf_data(client, {"mfa_token": "m", "otp": "000000"}))
        assert response.status_code == 429

    async def test_login_page_views_are_not_limited(self, client):
        for _ in range(15):
            assert (await client.get("/login")).status_code == 200
