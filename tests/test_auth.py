"""
Tests for authentication: the signed multi-portal cookie, portal guards,
the shared login form and the center-admin login with MFA.
"""

from laundry_portal.auth import (
    AUTH_COOKIE_NAME,
    decode_auth_store,
    encode_auth_store,
    portal_for_path,
    portal_for_role,
)
from tests.conftest import csrf_data, fail, sign_in


def auth_cookie_from(response) -> str:
    """Value of the auth cookie set by a response ("" when it is deleted)."""
    for header in response.headers.get_list("set-cookie"):
        if header.startswith(f"{AUTH_COOKIE_NAME}="):
            return header.split(";", 1)[0].split("=", 1)[1].strip('"')
    raise AssertionError("auth cookie not set")


# =============================================================================
# COOKIE STORE
# =============================================================================

class TestAuthStore:

    def test_round_trip(self):
        store = {"v": 1, "portals": {"admin": {"token": "t", "user": {"name": "Ravi"}}}}
        assert decode_auth_store(encode_auth_store(store)) == store

    def test_missing_cookie_is_empty_store(self):
        assert decode_auth_store(None) == {"v": 1, "portals": {}}

    def test_tampered_cookie_is_empty_store(self):
        token = encode_auth_store({"v": 1, "portals": {"admin": {"token": "t"}}})
        assert decode_auth_store(token[:-2] + "xx")["portals"] == {}

    def test_expired_cookie_is_empty_store(self):
        token = encode_auth_store({"v": 1, "portals": {"admin": {"token": "t"}}})
        assert decode_auth_store(token, max_age=-1)["portals"] == {}

    def test_other_schema_version_is_ignored(self):
        token = encode_auth_store({"v": 2, "portals": {"admin": {"token": "t"}}})
        assert decode_auth_store(token)["portals"] == {}


class TestPortalMapping:

    def test_roles(self):
        assert portal_for_role("superadmin") == "admin"
        assert portal_for_role("support_agent") == "support"
        assert portal_for_role("customer") == "customer"
        assert portal_for_role("branch_manager") is None
        assert portal_for_role(None) is None

    def test_paths(self):
        assert portal_for_path("/center-admin/users") == "center_admin"
        assert portal_for_path("/admin/orders") == "admin"
        assert portal_for_path("/administrator") == "customer"
        assert portal_for_path("/support") == "support"
        assert portal_for_path("/book") == "customer"


# =============================================================================
# LOGIN
# =============================================================================

class TestLogin:

    async def test_login_page_renders(self, client):
        response = await client.get("/login?next=/book")
        assert response.status_code == 200
        assert 'value="/book"' in response.text

    async def test_admin_login_opens_admin_portal(self, client, backend):
        backend.on("POST", "/auth/login", {"token": "tok-admin", "user": {"_id": "a1", "email": "ravi@example.com", "role": "admin"}})

        response = await client.post("/login", data=csrf_data(client, {"email": "ravi@example.com", "password": "pw"}))

        assert response.status_code == 303
        assert response.headers["location"] == "/admin/orders"
        store = decode_auth_store(auth_cookie_from(response))
        assert store["portals"]["admin"]["token"] == "tok-admin"
        assert backend.calls_to("POST", "/auth/login")[0].body == {"email": "ravi@example.com", "password": "pw"}

    async def test_login_follows_local_next(self, client, backend):
        backend.on("POST", "/auth/login", {"token": "tok", "user": {"role": "customer"}})
        response = await client.post("/login", data=csrf_data(client, {"email": "a@b.c", "password": "pw", "next": "/book"}))
        assert response.headers["location"] == "/book"

    async def test_login_ignores_external_next(self, client, backend):
        backend.on("POST", "/auth/login", {"token": "tok", "user": {"role": "support_agent"}})
        response = await client.post("/login", data=csrf_data(client, {
            "email": "a@b.c", "password": "pw", "next": "//evil.example/",
        }))
        assert response.headers["location"] == "/support/tickets"

    async def test_wrong_password_shows_server_message(self, client, backend):
        backend.on("POST", "/auth/login", fail("Invalid email or password", status_code=401))
        response = await client.post("/login", data=csrf_data(client, {"email": "a@b.c", "password": "bad"}))
        assert response.status_code == 400
        assert "Invalid email or password" in response.text

    async def test_center_admin_is_sent_to_own_login(self, client, backend):
        backend.on("POST", "/auth/login", {"token": "tok", "user": {"role": "center_admin"}})
        response = await client.post("/login", data=csrf_data(client, {"email": "a@b.c", "password": "pw"}))
        assert response.status_code == 400
        assert "center admin login" in response.text

    async def test_role_without_portal_is_refused(self, client, backend):
        backend.on("POST", "/auth/login", {"token": "tok", "user": {"role": "branch_manager"}})
        response = await client.post("/login", data=csrf_data(client, {"email": "a@b.c", "password": "pw"}))
        assert response.status_code == 400
        assert "cannot sign in here" in response.text

    async def test_second_login_keeps_first_portal(self, client, backend):
        backend.on("POST", "/auth/login", {"token": "tok-c", "user": {"role": "customer"}})
        await client.post("/login", data=csrf_data(client, {"email": "c@x.y", "password": "pw"}))
        backend.on("POST", "/auth/login", {"token": "tok-s", "user": {"role": "support_agent"}})
        response = await client.post("/login", data=csrf_data(client, {"email": "s@x.y", "password": "pw"}))

        store = decode_auth_store(auth_cookie_from(response))
        assert set(store["portals"]) == {"customer", "support"}


class TestLogout:

    async def test_logout_only_clears_one_portal(self, client):
        sign_in(client, "customer")
        sign_in(client, "admin")

        response = await client.post("/logout", data=csrf_data(client, {"portal": "customer"}))

        assert response.status_code == 303
        store = decode_auth_store(auth_cookie_from(response))
        assert set(store["portals"]) == {"admin"}

    async def test_logout_of_last_portal_deletes_cookie(self, client):
        sign_in(client, "support")
        response = await client.post("/logout", data=csrf_data(client, {"portal": "support"}))
        assert decode_auth_store(auth_cookie_from(response))["portals"] == {}


class TestPortalGuards:

    async def test_center_admin_pages_redirect_to_own_login(self, admin_client):
        response = await admin_client.get("/center-admin/users")
        assert response.status_code == 303
        assert response.headers["location"] == "/center-admin/login?next=/center-admin/users"

    async def test_sessions_are_independent(self, support_client, backend):
        backend.on("GET", "/support/tickets", {"tickets": []})
        assert (await support_client.get("/support/tickets")).status_code == 200
        assert (await support_client.get("/admin/orders")).status_code == 303


# =============================================================================
# CENTER ADMIN LOGIN
# =============================================================================

class TestCenterAdminLogin:

    async def test_login_without_mfa(self, client, backend):
        backend.on("POST", "/center-admin/auth/login", {"token": "tok-ca", "admin": {"email": "k@x.y"}})

        response = await client.post(
            "/center-admin/login", data=csrf_data(client, {"email": "k@x.y", "password": "pw"})
        )

        assert response.headers["location"] == "/center-admin/users"
        entry = decode_auth_store(auth_cookie_from(response))["portals"]["center_admin"]
        assert entry["token"] == "tok-ca"
        assert entry["user"]["role"] == "center_admin"

    async def test_mfa_step(self, client, backend):
        backend.on("POST", "/center-admin/auth/login", {"requiresMFA": True, "mfaToken": "mfa-123"})
        backend.on("POST", "/center-admin/auth/verify-mfa", {"token": "tok-ca", "admin": {"email": "k@x.y"}})

        page = await client.post("/center-admin/login", data=csrf_data(client, {"email": "k@x.y", "password": "pw"}))
        assert page.status_code == 200
        assert "mfa-123" in page.text

        response = await client.post(
            "/center-admin/login/mfa", data=csrf_data(client, {"mfa_token": "mfa-123", "otp": "123456"})
        )

        assert response.status_code == 303
        assert backend.calls_to("POST", "/center-admin/auth/verify-mfa")[0].body == {
            "mfaToken": "mfa-123", "otp": "123456", "backupCode": None,
        }
        assert "center_admin" in decode_auth_store(auth_cookie_from(response))["portals"]

    async def test_mfa_needs_a_code(self, client, backend):
        response = await client.post("/center-admin/login/mfa", data=csrf_data(client, {"mfa_token": "mfa-123"}))
        assert response.status_code == 400
        assert "Please enter your verification code" in response.text
        assert backend.calls == []

    async def test_bad_code_shows_server_message(self, client, backend):
        backend.on("POST", "/center-admin/auth/verify-mfa", fail("Invalid verification code", status_code=401))
        response = await client.post(
            "/center-admin/login/mfa", data=csrf_data(client, {"mfa_token": "mfa-123", "backup_code": "ABCD-EFGH"})
        )
        assert response.status_code == 400
        assert "Invalid verification code" in response.text

    async def test_logout_calls_backend(self, center_admin_client, backend):
        backend.on("POST", "/center-admin/auth/logout", {})
        response = await center_admin_client.post("/center-admin/logout", data=csrf_data(center_admin_client))
        assert response.headers["location"].startswith("/center-admin/login")
        assert backend.calls_to("POST", "/center-admin/auth/logout")[0].headers["authorization"] == "Bearer center_admin-token"
