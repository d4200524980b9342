"""
Tests for the backend client: query building, envelope decoding and the
bearer header.
"""

import httpx
import pytest

from laundry_portal.api_client import BackendClient, build_query, handle_response
from laundry_portal.errors import ApiError
from tests.conftest import fail, ok


def response_for(status_code=200, **kwargs) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("GET", "http://backend.test/api/x"), **kwargs)


class TestBuildQuery:

    def test_drops_unset_filters(self):
        assert build_query({"status": "", "priority": None, "search": "late"}) == {"search": "late"}

    def test_renders_booleans_for_the_backend(self):
        assert build_query({"isOverdue": True, "isVIP": False}) == {"isOverdue": "true", "isVIP": "false"}

    def test_joins_lists(self):
        assert build_query({"ids": ["a", "b"]}) == {"ids": "a,b"}

    def test_numbers_become_strings(self):
        assert build_query({"page": 2, "limit": 20}) == {"page": "2", "limit": "20"}

    def test_empty_params(self):
        assert build_query(None) == {}


class TestHandleResponse:

    def test_returns_envelope(self):
        envelope = handle_response(response_for(json={"success": True, "data": {"a": 1}}))
        assert envelope["data"] == {"a": 1}

    def test_non_json_response_reports_status(self):
        with pytest.raises(ApiError) as exc:
            handle_response(response_for(502, text="<html>Bad gateway</html>"))
        assert exc.value.message == "Server returned non-JSON response. Status: 502"
        assert exc.value.status_code == 502

    def test_server_message_is_kept_verbatim(self):
        with pytest.raises(ApiError) as exc:
            handle_response(response_for(400, json={"success": False, "message": "Refund exceeds order amount"}))
        assert exc.value.message == "Refund exceeds order amount"

    def test_success_false_with_ok_status_is_an_error(self):
        with pytest.raises(ApiError) as exc:
            handle_response(response_for(200, json={"success": False, "message": "Nope"}))
        assert exc.value.message == "Nope"

    def test_error_without_message_gets_generic_text(self):
        with pytest.raises(ApiError) as exc:
            handle_response(response_for(500, json={}))
        assert exc.value.message == "API request failed"


class TestBackendClient:

    async def test_sends_bearer_token_and_query(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            seen["url"] = str(request.url)
            return ok({"complaints": []})

        async with BackendClient(token="abc", transport=httpx.MockTransport(handler)) as client:
            await client.get_data("/admin/complaints", {"status": "open", "search": ""})

        assert seen["auth"] == "Bearer abc"
        assert seen["url"] == "http://backend.test/api/admin/complaints?status=open"

    async def test_anonymous_client_has_no_authorization(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            return ok({"branches": []})

        async with BackendClient(transport=httpx.MockTransport(handler)) as client:
            assert await client.get_branches() == []
        assert seen["auth"] is None

    async def test_transport_failure_becomes_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with BackendClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ApiError) as exc:
                await client.get_branches()
        assert exc.value.message == "Unable to reach the server. Please try again."

    async def test_download_raises_server_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return fail("Export too large", status_code=413)

        async with BackendClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ApiError) as exc:
                await client.export_audit_logs("csv")
        assert exc.value.message == "Export too large"

    async def test_download_returns_bytes_and_type(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["format"] == "csv"
            return httpx.Response(200, content=b"a,b\n1,2\n", headers={"content-type": "text/csv"})

        async with BackendClient(transport=httpx.MockTransport(handler)) as client:
            content, media_type = await client.export_audit_logs("csv", {"riskLevel": "high"})
        assert content == b"a,b\n1,2\n"
        assert media_type == "text/csv"
