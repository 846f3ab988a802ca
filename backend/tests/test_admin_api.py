import re
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from starlette.requests import Request

from app.core.config import settings
from app.domain.models.audit_log import AuditLog
from app.domain.models.company_profile import CompanyProfile
from app.interfaces.http.middleware import MAX_CAPTURED_BODY_BYTES, _wants_body_capture


async def _create_company(session_factory, override: Decimal | None = None) -> str:
    async with session_factory() as db:
        company = CompanyProfile(legal_name="Acme Outdoor Ltd", custom_platform_fee_percentage=override)
        db.add(company)
        await db.commit()
        return str(company.id)


@pytest.mark.anyio
async def test_admin_routes_require_bearer_token(client):
    response = await client.get("/api/admin/settings")

    assert response.status_code == 401
    assert response.json()["error_code"] == "401"


@pytest.mark.anyio
async def test_admin_routes_reject_non_admin(client, creator_headers):
    response = await client.get("/api/admin/fees", headers=creator_headers)

    assert response.status_code == 403
    assert response.json()["message"] == "Platform admin access required"


@pytest.mark.anyio
async def test_admin_email_allow_list_grants_access(client, creator_headers, restore_admin_emails):
    settings.platform_admin_emails = "someone@else.test, Creator@Marketplace.test"

    response = await client.get("/api/admin/fees", headers=creator_headers)

    assert response.status_code == 200


@pytest.mark.anyio
async def test_invalid_token_is_rejected(client):
    response = await client.get("/api/admin/fees", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


@pytest.mark.anyio
async def test_fee_setting_update_takes_effect_immediately(client, admin_headers, session_factory):
    before = await client.get("/api/admin/fees", headers=admin_headers)
    assert before.json()["platform_fee_percentage"] == pytest.approx(0.04)

    update_response = await client.put(
        "/api/admin/settings/platform_fee_percentage",
        headers=admin_headers,
        json={"value": "5%"},
    )
    assert update_response.status_code == 200
    body = update_response.json()
    assert body["value"] == "5"
    assert body["category"] == "fees"
    assert body["updated_by"] == "ops@marketplace.test"

    after = await client.get("/api/admin/fees", headers=admin_headers)
    fees = after.json()
    assert fees["platform_fee_percentage"] == pytest.approx(0.05)
    assert fees["platform_fee_display"] == "5%"
    assert fees["total_fee_percentage"] == pytest.approx(0.08)

    async with session_factory() as db:
        audit = (await db.execute(select(AuditLog).where(AuditLog.action == "fee_setting_updated"))).scalar_one()
    assert audit.actor == "ops@marketplace.test"
    assert audit.entity_id == "platform_fee_percentage"
    assert audit.metadata_json == {"previous_value": None, "new_value": "5"}


@pytest.mark.anyio
async def test_processing_fee_accepts_fractional_percent(client, admin_headers):
    response = await client.put(
        "/api/admin/settings/stripe_processing_fee_percentage",
        headers=admin_headers,
        json={"value": "2.9"},
    )
    assert response.status_code == 200
    assert response.json()["value"] == "2.9"

    fees = (await client.get("/api/admin/fees", headers=admin_headers)).json()
    assert fees["stripe_processing_fee_percentage"] == pytest.approx(0.029)
    assert fees["stripe_processing_fee_display"] == "2.90%"


@pytest.mark.anyio
@pytest.mark.parametrize("value", ["abc", "75", "-2", "150%"])
async def test_invalid_fee_setting_is_rejected(client, admin_headers, value):
    response = await client.put(
        "/api/admin/settings/platform_fee_percentage",
        headers=admin_headers,
        json={"value": value},
    )

    assert response.status_code == 422
    assert response.json()["error_code"] == "invalid_fee_percentage"


@pytest.mark.anyio
async def test_generic_settings_crud(client, admin_headers):
    put_response = await client.put(
        "/api/admin/settings/support_email",
        headers=admin_headers,
        json={"value": "support@marketplace.test", "category": "general", "description": "Support inbox"},
    )
    assert put_response.status_code == 200

    listing = await client.get("/api/admin/settings", headers=admin_headers, params={"category": "general"})
    assert [item["key"] for item in listing.json()["items"]] == ["support_email"]

    fetched = await client.get("/api/admin/settings/support_email", headers=admin_headers)
    assert fetched.json()["value"] == "support@marketplace.test"
    assert fetched.json()["description"] == "Support inbox"

    missing = await client.get("/api/admin/settings/does_not_exist", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["message"] == "Setting not found"


@pytest.mark.anyio
async def test_company_override_drives_fee_preview(client, admin_headers, creator_headers, session_factory):
    company_id = await _create_company(session_factory)

    override = await client.put(
        f"/api/admin/companies/{company_id}/fee-override",
        headers=admin_headers,
        json={"percentage": "2.5"},
    )
    assert override.status_code == 200
    assert override.json() == {
        "company_id": company_id,
        "custom_platform_fee_percentage": 0.025,
        "custom_platform_fee_display": "2.50%",
    }

    preview = await client.get(
        f"/api/companies/{company_id}/fees/preview",
        headers=creator_headers,
        params={"gross_amount": 100},
    )
    assert preview.status_code == 200
    assert preview.json() == {
        "gross_amount": "100.00",
        "platform_fee_amount": "2.50",
        "stripe_fee_amount": "3.00",
        "net_amount": "94.50",
        "platform_fee_percentage": 0.025,
        "is_custom_fee": True,
        "platform_fee_display": "2.50%",
    }

    cleared = await client.put(
        f"/api/admin/companies/{company_id}/fee-override",
        headers=admin_headers,
        json={"percentage": None},
    )
    assert cleared.json()["custom_platform_fee_percentage"] is None

    preview = await client.get(
        f"/api/companies/{company_id}/fees/preview",
        headers=creator_headers,
        params={"gross_amount": 100},
    )
    assert preview.json()["platform_fee_amount"] == "4.00"
    assert preview.json()["is_custom_fee"] is False

    async with session_factory() as db:
        actions = (
            await db.execute(select(AuditLog.action).where(AuditLog.entity_id == company_id))
        ).scalars().all()
    assert sorted(actions) == ["company_fee_override_cleared", "company_fee_override_set"]


@pytest.mark.anyio
async def test_company_override_validation(client, admin_headers, session_factory):
    company_id = await _create_company(session_factory)

    too_high = await client.put(
        f"/api/admin/companies/{company_id}/fee-override",
        headers=admin_headers,
        json={"percentage": "60"},
    )
    assert too_high.status_code == 422
    assert too_high.json()["error_code"] == "invalid_fee_percentage"

    unknown = await client.put(
        f"/api/admin/companies/{uuid4()}/fee-override",
        headers=admin_headers,
        json={"percentage": "3"},
    )
    assert unknown.status_code == 404
    assert unknown.json()["message"] == "Company not found"


@pytest.mark.anyio
async def test_fee_preview_defaults(client, creator_headers):
    preview = await client.get(
        f"/api/companies/{uuid4()}/fees/preview",
        headers=creator_headers,
        params={"gross_amount": 100},
    )

    assert preview.status_code == 200
    assert preview.json()["platform_fee_amount"] == "4.00"
    assert preview.json()["stripe_fee_amount"] == "3.00"
    assert preview.json()["net_amount"] == "93.00"
    assert preview.json()["platform_fee_display"] == "4%"


@pytest.mark.anyio
async def test_fee_preview_requires_token_and_valid_amount(client, creator_headers):
    unauthenticated = await client.get(f"/api/companies/{uuid4()}/fees/preview", params={"gross_amount": 100})
    negative = await client.get(
        f"/api/companies/{uuid4()}/fees/preview",
        headers=creator_headers,
        params={"gross_amount": -5},
    )

    assert unauthenticated.status_code == 401
    assert negative.status_code == 422
    assert negative.json()["error_code"] == "validation_error"


@pytest.mark.anyio
async def test_platform_health_report_shape(client, admin_headers):
    response = await client.get("/api/admin/platform-health", headers=admin_headers)

    assert response.status_code == 200
    report = response.json()
    assert set(report) == {
        "current_health",
        "recent_metrics",
        "storage_usage",
        "video_costs",
        "api_time_series",
        "storage_time_series",
        "cost_time_series",
        "recent_errors",
    }
    assert report["current_health"] is None
    assert report["recent_metrics"]["total_requests"] == 0


@pytest.mark.anyio
async def test_snapshot_endpoint_records_current_health(client, admin_headers):
    created = await client.post("/api/admin/platform-health/snapshots", headers=admin_headers)

    assert created.status_code == 201
    assert created.json()["created"] is True
    assert created.json()["overall_health_score"] == 80

    report = (await client.get("/api/admin/platform-health", headers=admin_headers)).json()
    assert report["current_health"]["overall_health_score"] == 80
    assert report["current_health"]["memory_usage_percent"] == pytest.approx(50.0)


@pytest.mark.anyio
async def test_api_traffic_is_sampled_and_flushed(client, admin_headers, health_monitor):
    await client.get("/metrics")
    assert health_monitor.buffered_bucket_count() == 0

    await client.get("/api/admin/fees", headers=admin_headers)
    await client.get("/api/admin/fees", headers=admin_headers)
    assert health_monitor.buffered_bucket_count() == 1

    assert await health_monitor.flush_metrics() == 1
    metrics = (await client.get("/api/admin/platform-health/api-metrics", headers=admin_headers)).json()
    assert metrics["total_requests"] == 2
    assert metrics["top_endpoints"][0]["endpoint"] == "/api/admin/fees"

    series = (await client.get("/api/admin/platform-health/api-metrics/time-series", headers=admin_headers)).json()
    assert series["items"][0]["total_requests"] == 2


@pytest.mark.anyio
async def test_failed_requests_are_logged_with_context(client, admin_headers, health_monitor):
    await client.get(
        "/api/admin/settings",
        headers={"X-Forwarded-For": "198.51.100.7, 10.0.0.1", "User-Agent": "pytest-agent"},
    )
    await client.put(
        "/api/admin/settings/platform_fee_percentage",
        headers={**admin_headers, "X-Request-ID": "req_test_123456789"},
        json={"value": "abc", "password": "hunter2"},
    )
    await health_monitor.wait_for_background_tasks()

    response = await client.get("/api/admin/platform-health/errors", headers=admin_headers)
    errors = {item["status_code"]: item for item in response.json()["items"]}

    assert errors[401]["endpoint"] == "/api/admin/settings"
    assert errors[401]["ip_address"] == "198.51.100.7"
    assert errors[401]["user_agent"] == "pytest-agent"
    assert errors[422]["request_id"] == "req_test_123456789"
    assert errors[422]["user_id"] == "admin-user"
    assert errors[422]["request_body"] == {"value": "abc", "password": "[REDACTED]"}


@pytest.mark.anyio
async def test_failed_request_log_keeps_response_message(client, admin_headers, health_monitor):
    response = await client.get("/api/admin/settings/nope", headers=admin_headers)
    await health_monitor.wait_for_background_tasks()

    assert response.status_code == 404
    assert response.json()["message"] == "Setting not found"

    errors = (await client.get("/api/admin/platform-health/errors", headers=admin_headers)).json()["items"]
    logged = [item for item in errors if item["status_code"] == 404]
    assert [item["error_message"] for item in logged] == ["Setting not found"]


def _json_request(method: str, headers: dict[str, str]) -> Request:
    raw_headers = [(key.lower().encode(), value.encode()) for key, value in headers.items()]
    return Request({"type": "http", "method": method, "path": "/api/offers", "headers": raw_headers})


def test_request_body_capture_requires_declared_length():
    assert _wants_body_capture(_json_request("POST", {"Content-Type": "application/json", "Content-Length": "42"}))
    assert not _wants_body_capture(_json_request("POST", {"Content-Type": "application/json"}))
    assert not _wants_body_capture(
        _json_request("POST", {"Content-Type": "application/json", "Content-Length": str(MAX_CAPTURED_BODY_BYTES + 1)})
    )
    assert not _wants_body_capture(_json_request("GET", {"Content-Type": "application/json", "Content-Length": "2"}))


@pytest.mark.anyio
async def test_request_id_is_echoed_or_generated(client):
    echoed = await client.get("/metrics", headers={"X-Request-ID": "req_client_supplied"})
    generated = await client.get("/metrics")

    assert echoed.status_code == 200
    assert echoed.headers["X-Request-ID"] == "req_client_supplied"
    assert re.fullmatch(r"req_[0-9a-z]+_[0-9a-z]{9}", generated.headers["X-Request-ID"])
    assert generated.headers["X-Content-Type-Options"] == "nosniff"
