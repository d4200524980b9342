"""
Tests for the admin dashboards: list filtering, refund policy display,
entity actions, the duplicate-submission guard and CSV exports.
"""

from starlette.requests import Request

from laundry_portal.admin import ListFilters, get_next_statuses, in_flight, refund_actions, status_style
from tests.conftest import csrf_data, fail


def request_with_query(query: str) -> Request:
    return Request({"type": "http", "method": "GET", "path": "/admin/complaints", "query_string": query.encode(), "headers": []})


# =============================================================================
# FILTERS
# =============================================================================

class TestListFilters:

    def test_reads_filters_and_page(self):
        filters = ListFilters.from_request(request_with_query("status=open&page=3&other=x"), ("status", "search"))
        assert filters.values == {"status": "open", "search": ""}
        assert filters.page == 3

    def test_invalid_page_falls_back_to_one(self):
        filters = ListFilters.from_request(request_with_query("page=abc"), ("status",))
        assert filters.page == 1

    def test_changing_a_filter_resets_page(self):
        filters = ListFilters(values={"status": "open"}, page=4)
        changed = filters.with_change("priority", "high")
        assert changed.page == 1
        assert changed.values == {"status": "open", "priority": "high"}
        assert filters.values == {"status": "open"}

    def test_query_omits_unset_filters(self):
        filters = ListFilters(values={"status": "", "search": "late"}, page=2, limit=20)
        assert filters.to_query() == {"search": "late", "page": "2", "limit": "20"}

    def test_page_url(self):
        filters = ListFilters(values={"status": "open"})
        assert filters.page_url("/admin/complaints", 2) == "/admin/complaints?status=open&page=2"


class TestRefundActions:

    def test_over_limit_refund_is_escalated_not_approved(self):
        assert refund_actions({"status": "requested", "amount": 750}) == ["escalate", "reject"]

    def test_refund_at_limit_can_be_approved(self):
        assert refund_actions({"status": "requested", "amount": 500}) == ["approve", "reject"]

    def test_escalated_refund_offers_nothing(self):
        assert refund_actions({"status": "requested", "amount": 750, "isEscalated": True}) == []

    def test_approved_refund_can_be_processed(self):
        assert refund_actions({"status": "approved", "amount": 100}) == ["process"]

    def test_finished_refund_offers_nothing(self):
        assert refund_actions({"status": "completed", "amount": 100}) == []


class TestStatusVocabulary:

    def test_order_transitions(self):
        assert get_next_statuses("placed") == ("assigned_to_branch", "cancelled")
        assert get_next_statuses("delivered") == ()
        assert get_next_statuses(None) == ()

    def test_unknown_status_renders_gray(self):
        style = status_style("order", "teleported")
        assert "gray" in style["css"]
        assert style["label"] == "Teleported"


# =============================================================================
# PAGES
# =============================================================================

class TestAdminPages:

    async def test_requires_admin_session(self, client):
        response = await client.get("/admin/complaints")
        assert response.status_code == 303
        assert response.headers["location"] == "/login?next=/admin/complaints"

    async def test_customer_session_is_not_enough(self, customer_client):
        response = await customer_client.get("/admin/orders")
        assert response.status_code == 303

    async def test_complaints_list_passes_filters(self, admin_client, backend):
        backend.on("GET", "/admin/complaints", {
            "complaints": [{"_id": "C1", "complaintId": "CMP-1", "title": "Shirt torn", "status": "open", "priority": "high"}],
            "pagination": {"current": 1, "pages": 1, "total": 1, "limit": 20},
        })
        backend.on("GET", "/admin/support-agents", {"agents": []})

        response = await admin_client.get("/admin/complaints?status=open&priority=high&page=1")

        assert response.status_code == 200
        assert "Shirt torn" in response.text
        call = backend.calls_to("GET", "/admin/complaints")[0]
        assert call.params == {"status": "open", "priority": "high", "page": "1", "limit": "20"}
        assert call.headers["authorization"] == "Bearer admin-token"

    async def test_list_failure_is_inline(self, admin_client, backend):
        backend.on("GET", "/admin/refunds", fail("Refund service down", status_code=503))
        response = await admin_client.get("/admin/refunds")
        assert response.status_code == 200
        assert "Refund service down" in response.text

    async def test_staff_editor_disables_cells_the_editor_lacks(self, client, backend):
        from tests.conftest import sign_in

        sign_in(client, "admin", {
            "_id": "admin-2", "name": "Limited", "role": "admin",
            "permissions": {"orders": {"view": True}, "financial": {"approve": False}},
        })
        backend.on("GET", "/admin/staff", {"staff": []})

        response = await client.get("/admin/staff")

        assert response.status_code == 200
        assert 'name="perm.orders.view"' in response.text
        approve_box = response.text.split('name="perm.financial.approve"')[1].split(">")[0]
        assert "disabled" in approve_box


# =============================================================================
# ACTIONS
# =============================================================================

class TestAdminActions:

    async def test_approve_refund_redirects_with_notice(self, admin_client, backend):
        backend.on("PUT", "/admin/refunds/R1/approve", {"refund": {"_id": "R1", "status": "approved"}})

        response = await admin_client.post(
            "/admin/refunds/R1/approve",
            data=csrf_data(admin_client, {"return_to": "/admin/refunds?status=requested&page=2"}),
        )

        assert response.status_code == 303
        location = response.headers["location"]
        assert location.startswith("/admin/refunds?status=requested&page=2&notice=")
        assert "Refund+approved+successfully" in location

    async def test_server_error_is_shown_verbatim(self, admin_client, backend):
        backend.on("PUT", "/admin/refunds/R1/approve", fail("Refund exceeds approval limit"))

        response = await admin_client.post("/admin/refunds/R1/approve", data=csrf_data(admin_client))

        assert "error=Refund+exceeds+approval+limit" in response.headers["location"]

    async def test_reject_requires_reason_before_calling_backend(self, admin_client, backend):
        response = await admin_client.post("/admin/refunds/R1/reject", data=csrf_data(admin_client, {"reason": "  "}))

        assert "error=Please+provide+a+rejection+reason" in response.headers["location"]
        assert backend.calls_to("PUT", "/admin/refunds/R1/reject") == []

    async def test_duplicate_action_in_flight_is_refused(self, admin_client, backend):
        backend.on("PUT", "/admin/refunds/R1/approve", {})
        backend.on("PUT", "/admin/refunds/R1/reject", {})

        async with in_flight.guard("refund", "R1", "approve"):
            duplicate = await admin_client.post("/admin/refunds/R1/approve", data=csrf_data(admin_client))
            other = await admin_client.post(
                "/admin/refunds/R1/reject", data=csrf_data(admin_client, {"reason": "Duplicate request"})
            )

        assert duplicate.status_code == 409
        assert duplicate.json()["detail"] == "This action is already in progress. Please wait."
        assert backend.calls_to("PUT", "/admin/refunds/R1/approve") == []
        assert other.status_code == 303
        assert len(backend.calls_to("PUT", "/admin/refunds/R1/reject")) == 1

    async def test_duplicate_form_post_returns_to_the_page(self, admin_client, backend):
        async with in_flight.guard("refund", "R1", "approve"):
            response = await admin_client.post(
                "/admin/refunds/R1/approve",
                data=csrf_data(admin_client),
                headers={
                    "accept": "text/html,application/xhtml+xml",
                    "referer": "http://test/admin/refunds?status=requested&notice=Old",
                },
            )

        assert response.status_code == 303
        assert response.headers["location"] == (
            "/admin/refunds?status=requested&error=This+action+is+already+in+progress.+Please+wait."
        )
        assert backend.calls_to("PUT", "/admin/refunds/R1/approve") == []

    async def test_duplicate_form_post_ignores_foreign_referer(self, admin_client):
        async with in_flight.guard("refund", "R1", "approve"):
            response = await admin_client.post(
                "/admin/refunds/R1/approve",
                data=csrf_data(admin_client),
                headers={"accept": "text/html", "referer": "https://evil.example/admin"},
            )

        assert response.headers["location"].startswith("/?error=")

    async def test_guard_is_released_after_the_action(self, admin_client, backend):
        backend.on("PUT", "/admin/refunds/R1/approve", fail("Temporary failure", status_code=500))
        await admin_client.post("/admin/refunds/R1/approve", data=csrf_data(admin_client))
        assert not in_flight.is_active("refund", "R1", "approve")

    async def test_order_status_outside_transition_table_is_refused(self, admin_client, backend):
        response = await admin_client.post(
            "/admin/orders/O1/status",
            data=csrf_data(admin_client, {"status": "delivered", "current_status": "placed"}),
        )
        assert "error=" in response.headers["location"]
        assert backend.calls_to("PUT", "/admin/orders/O1/status") == []

    async def test_external_return_to_is_ignored(self, admin_client, backend):
        backend.on("PUT", "/admin/customers/U1/toggle-status", {})
        response = await admin_client.post(
            "/admin/customers/U1/toggle-status",
            data=csrf_data(admin_client, {"return_to": "https://evil.example/"}),
        )
        assert response.headers["location"].startswith("/admin/customers?notice=")

    async def test_create_staff_clamps_permissions(self, client, backend):
        from tests.conftest import sign_in

        sign_in(client, "admin", {
            "_id": "admin-2", "name": "Limited", "role": "admin",
            "permissions": {"orders": {"view": True}, "financial": {"approve": False}},
        })
        backend.on("POST", "/admin/staff", {"staff": {"_id": "S1"}})

        response = await client.post("/admin/staff", data=csrf_data(client, {
            "name": "Kavya",
            "email": "kavya@example.com",
            "password": "secret123",
            "role": "staff",
            "perm.orders.view": "on",
            "perm.financial.approve": "on",
        }))

        assert "notice=Staff+member+created+successfully" in response.headers["location"]
        body = backend.calls_to("POST", "/admin/staff")[0].body
        assert body["permissions"]["orders"]["view"] is True
        assert body["permissions"]["financial"]["approve"] is False

    async def test_create_staff_without_permissions_is_refused(self, admin_client, backend):
        response = await admin_client.post("/admin/staff", data=csrf_data(admin_client, {
            "name": "Kavya", "email": "kavya@example.com", "password": "secret123", "role": "staff",
        }))
        assert "error=Please+assign+at+least+one+permission" in response.headers["location"]
        assert backend.calls_to("POST", "/admin/staff") == []

    async def test_center_admin_needs_a_branch(self, admin_client, backend):
        response = await admin_client.post("/admin/center-admins", data=csrf_data(admin_client, {
            "name": "Kiran", "email": "kiran@example.com", "password": "secret123", "perm.orders.view": "on",
        }))
        assert "error=Please+assign+a+branch+to+the+center+admin" in response.headers["location"]


# =============================================================================
# EXPORTS
# =============================================================================

class TestCsvExport:

    async def test_customers_export_uses_current_rows(self, admin_client, backend):
        backend.on("GET", "/admin/customers", {"customers": [
            {"name": "Asha", "email": "asha@example.com", "phone": "98765", "isVIP": True, "isActive": True,
             "totalOrders": 4, "totalSpent": 1200, "createdAt": "2024-01-19T10:15:00.000Z"},
        ]})

        response = await admin_client.get("/admin/customers/export?search=asha")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment; filename=\"customers-" in response.headers["content-disposition"]
        lines = response.text.splitlines()
        assert lines[0] == "Name,Email,Phone,VIP,Active,Total Orders,Total Spent,Joined"
        assert lines[1] == "Asha,asha@example.com,98765,Yes,Yes,4,1200,2024-01-19"
        assert backend.calls_to("GET", "/admin/customers")[0].params["search"] == "asha"

    async def test_export_failure_redirects_with_error(self, admin_client, backend):
        backend.on("GET", "/admin/orders", fail("Orders unavailable", status_code=503))
        response = await admin_client.get("/admin/orders/export")
        assert response.status_code == 303
        assert "error=Orders+unavailable" in response.headers["location"]
