from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx

from tests.client_test_utils import (
    DEV_BASE_URL,
    PROD_BASE_URL,
    build_test_client,
    install_upstream,
)
from tests.yaml_test_utils import write_paths_config

EZPASS_PATH = "/TollPayment/get-ezpass-charges/2024-01-01/2024-01-31"


def _routes(table: dict[str, Any]) -> Any:
    """Serve canned responses keyed by upstream path; anything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        entry = table.get(request.url.path)
        if entry is None:
            return httpx.Response(404, text="Not Found")
        if isinstance(entry, httpx.RequestError):
            raise type(entry)(str(entry), request=request)
        if callable(entry):
            return entry(request)
        status_code, body = entry
        if isinstance(body, str):
            return httpx.Response(status_code, text=body)
        return httpx.Response(status_code, json=body)

    return handler


def test_ezpass_is_normalized_and_bearer_forwarded(monkeypatch: Any) -> None:
    records = [{"tollId": 1, "amount": 2.5}, {"tollId": 2}, {"tollId": 3}]
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(_routes({EZPASS_PATH: (200, {"reason": 0, "result": records})}))

        response = client.get(
            "/api/rydora/ezpass",
            params={"dateFrom": "2024-01-01", "dateTo": "2024-01-31", "page": "2"},
            headers={"Authorization": "Bearer client-token"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["totalCount"] == 3
        assert body["totalPages"] == 1
        assert body["page"] == 2
        assert body["data"][0]["amount"] == 2.5
        assert body["data"][1]["amount"] == 0
        assert seen[0].headers["authorization"] == "Bearer client-token"
        assert str(seen[0].url).startswith(DEV_BASE_URL)


def test_ezpass_not_found_is_empty_result(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        install_upstream(_routes({}))

        response = client.get(
            "/api/rydora/ezpass",
            params={"dateFrom": "2024-01-01", "dateTo": "2024-01-31", "page": "3"},
        )

        assert response.status_code == 200
        assert response.json() == {"data": [], "totalCount": 0, "page": 3, "totalPages": 0}


def test_business_error_is_forwarded_unchanged(monkeypatch: Any) -> None:
    error = {"reason": 2, "message": "Date range too large"}
    with build_test_client(monkeypatch) as client:
        install_upstream(_routes({EZPASS_PATH: (400, error)}))

        response = client.get(
            "/api/rydora/ezpass",
            params={"dateFrom": "2024-01-01", "dateTo": "2024-01-31"},
        )

        assert response.status_code == 400
        assert response.json() == error


def test_tolls_walk_the_fallback_chain(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(_routes({"/tolls/get-all": (200, {"result": [{"id": 1}]})}))

        response = client.get(
            "/api/rydora/tolls",
            params={"dateFrom": "2024-01-01", "dateTo": "2024-01-31", "ownerId": "c-1"},
        )

        assert response.status_code == 200
        assert response.json() == {"result": [{"id": 1}]}
        assert [request.url.path for request in seen] == [
            "/api/ExternalToll/get-all",
            "/tolls/get-all",
        ]
        assert seen[1].url.params["CompanyId"] == "c-1"


def test_tolls_unreachable_provider_is_500(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(
            _routes({"/api/ExternalToll/get-all": httpx.ConnectError("refused")})
        )

        response = client.get("/api/rydora/tolls")

        assert response.status_code == 500
        assert response.json() == {"reason": -1, "message": "Failed to fetch tolls"}
        assert len(seen) == 1


def test_pending_payments_not_found_everywhere_is_empty_list(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(_routes({}))

        response = client.get("/api/rydora/pending-payments", params={"ownerId": "c-9"})

        assert response.status_code == 200
        assert response.json() == []
        assert len(seen) == 3


def test_payments_route_by_status(monkeypatch: Any) -> None:
    payments = {"result": [{"carPlateNumber": "ABC"}]}
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(
            _routes(
                {
                    "/TollPayment/get-complete-payments": (200, payments),
                    "/TollPayment/get-failed-payments": (200, payments),
                }
            )
        )

        completed = client.get("/api/rydora/payments/completed")
        failed = client.get("/api/rydora/payments/failed")

        assert completed.json()["data"][0]["carPlateNumber"] == "ABC"
        assert failed.json()["data"][0]["numberOfTolls"] == 0
        assert [request.url.path for request in seen] == [
            "/TollPayment/get-complete-payments",
            "/TollPayment/get-failed-payments",
        ]


def test_session_token_wins_over_client_bearer(monkeypatch: Any) -> None:
    signin = {"reason": 0, "result": {"id": 1, "email": "o@fleet.test", "token": "session-token"}}
    with build_test_client(monkeypatch, RYDORA_API_KEY="service-key") as client:
        seen = install_upstream(
            _routes({"/UserAuth/signin": (200, signin), EZPASS_PATH: (200, {"result": []})})
        )
        login = client.post("/api/auth/login", json={"email": "o@fleet.test", "password": "pw"})
        assert login.status_code == 200

        client.get(
            "/api/rydora/ezpass",
            params={"dateFrom": "2024-01-01", "dateTo": "2024-01-31"},
            headers={"Authorization": "Bearer client-token"},
        )

        assert seen[-1].headers["authorization"] == "Bearer session-token"


def test_static_key_used_without_session_or_bearer(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch, RYDORA_API_KEY="service-key") as client:
        seen = install_upstream(_routes({"/ExternalViolation/get-all": (200, {"result": []})}))

        client.get("/api/rydora/violations", params={"licensePlate": "ABC", "state": "NY"})

        assert seen[0].headers["authorization"] == "Bearer service-key"
        assert seen[0].url.params["licensePlate"] == "ABC"


def test_placeholder_key_sends_no_authorization(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(_routes({"/ExternalViolation/get-all": (200, {"result": []})}))

        client.get("/api/rydora/violations")

        assert "authorization" not in seen[0].headers


def test_environment_header_selects_production(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(_routes({"/Companies/active": (200, {"result": []})}))

        response = client.get(
            "/api/rydora/Companies/active",
            headers={"X-Environment": "production"},
        )

        assert response.status_code == 200
        assert str(seen[0].url).startswith(PROD_BASE_URL)


def test_companies_failure_is_always_500(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        install_upstream(_routes({"/Companies/active": (403, {"message": "forbidden"})}))

        response = client.get("/api/rydora/Companies/active")

        assert response.status_code == 500
        assert response.json() == {"reason": -1, "message": "Failed to fetch companies"}


def test_nyc_violations_with_no_plates_makes_no_call(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(_routes({}))

        response = client.get("/api/rydora/nyc-violations", params={"licensePlates": "[]"})

        assert response.status_code == 200
        assert response.json() == {
            "rows": [],
            "data": [],
            "totalCount": 0,
            "page": 1,
            "totalPages": 0,
        }
        assert seen == []


def test_invoice_submit_not_found_for_date_is_null(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        install_upstream(
            _routes(
                {
                    "/api/ExternalDailyInvoice/submit/inv-1": (
                        404,
                        "Invoice not found for date 2024-05-01",
                    )
                }
            )
        )

        response = client.post("/api/rydora/invoice-submit/inv-1")

        assert response.status_code == 200
        assert response.json() is None


def test_invoice_fail_errors_are_summarized(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        install_upstream(
            _routes(
                {
                    "/api/ExternalDailyInvoice/fail/inv-1": (400, {"message": "boom"}),
                    "/api/ExternalDailyInvoice/fail/inv-2": (404, {"message": "Invoice not found."}),
                }
            )
        )

        bad = client.post("/api/rydora/invoice-fail/inv-1")
        missing = client.post("/api/rydora/invoice-fail/inv-2")

        assert bad.status_code == 400
        assert bad.json() == {"reason": 400, "message": "Bad Request"}
        assert missing.status_code == 404
        assert missing.json() == {"reason": 404, "message": "Invoice not found."}


def test_invoice_by_company_not_found_for_date_is_null(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(
            _routes(
                {
                    "/api/ExternalDailyInvoice/get-by-company/c-1": (
                        404,
                        "Invoice not found for date 2024-05-01",
                    )
                }
            )
        )

        response = client.get(
            "/api/rydora/invoice-by-company/c-1",
            params={"date": "2024-05-01"},
        )

        assert response.status_code == 200
        assert response.json() is None
        assert seen[0].url.params["date"] == "2024-05-01"


def test_send_email_requires_pdf(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(_routes({}))

        response = client.post("/api/rydora/external-daily-invoice/send-email/inv-1", json={})

        assert response.status_code == 400
        assert response.json() == {"message": "PDF base64 is required"}
        assert seen == []


def test_create_violation_coerces_payload(monkeypatch: Any) -> None:
    captured: list[dict[str, Any]] = []

    def create(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return httpx.Response(200, json={"reason": 0, "result": {"id": 5}})

    with build_test_client(monkeypatch) as client:
        install_upstream(_routes({"/ExternalViolation/create": create}))

        response = client.post(
            "/api/rydora/violations",
            json={
                "noticeNumber": "N-1",
                "issueDate": "2024-03-05",
                "amount": "115.50",
                "fineType": "2",
                "paymentStatus": 3,
            },
        )

        assert response.status_code == 200
        sent = captured[0]
        assert sent["issueDate"] == "2024-03-05T00:00:00.000Z"
        assert sent["startDate"] is None
        assert sent["amount"] == 115.5
        assert sent["fineType"] == 2
        assert sent["paymentStatus"] == 1
        assert sent["currency"] == "USD"


def test_violation_payment_status_prefers_query_company(monkeypatch: Any) -> None:
    captured: list[httpx.Request] = []

    def update(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"reason": 0})

    with build_test_client(monkeypatch) as client:
        install_upstream(_routes({"/ExternalViolation/update-payment-status": update}))

        response = client.put(
            "/api/rydora/ExternalViolation/update-payment-status",
            params={"companyId": "from-query"},
            json={"ids": [1, 2], "paymentStatus": 2, "companyId": "from-body"},
        )

        assert response.status_code == 200
        assert captured[0].method == "PUT"
        assert captured[0].url.params["companyId"] == "from-query"
        assert json.loads(captured[0].content)["companyId"] == "from-query"


def test_export_returns_binary_attachment(monkeypatch: Any) -> None:
    def export(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"%PDF-1.7 fake")

    with build_test_client(monkeypatch) as client:
        install_upstream(_routes({"/api/ezpass/export/pdf": export}))

        response = client.post(
            "/api/rydora/ezpass/export/pdf",
            json={"dateFrom": "2024-01-01", "dateTo": "2024-01-31"},
        )
        unsupported = client.post("/api/rydora/ezpass/export/csv", json={})

        assert response.status_code == 200
        assert response.content == b"%PDF-1.7 fake"
        assert response.headers["content-type"] == "application/pdf"
        assert 'filename="ezpass-export.pdf"' in response.headers["content-disposition"]
        assert unsupported.status_code == 404


def test_paths_config_overrides_fallback_chain(monkeypatch: Any, tmp_path: Path) -> None:
    config = write_paths_config(tmp_path / "paths.yaml", {"tolls": ["/v3/tolls"]})
    with build_test_client(monkeypatch, UPSTREAM_PATHS_CONFIG_PATH=config) as client:
        seen = install_upstream(_routes({"/v3/tolls": (200, [])}))

        response = client.get("/api/rydora/tolls")

        assert response.status_code == 200
        assert [request.url.path for request in seen] == ["/v3/tolls"]


def test_unknown_api_route_and_health(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        missing = client.get("/api/does-not-exist")
        health = client.get("/health")
        api_health = client.get("/api/health")

        assert missing.status_code == 404
        assert missing.json() == {"message": "API route not found", "path": "/api/does-not-exist"}
        assert health.json()["status"] == "OK"
        assert "timestamp" in health.json()
        assert api_health.json()["service"] == "Rydora-US API"


def test_rydora_api_config_reports_selected_url_without_key(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch, RYDORA_API_KEY="service-key") as client:
        response = client.get("/api/rydora-api-config", headers={"X-Environment": "production"})

        body = response.json()
        assert body["environment"] == "production"
        assert body["currentRydoraApiUrl"] == PROD_BASE_URL
        assert "service-key" not in response.text


def test_tolls_not_found_everywhere_is_empty_result(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(_routes({}))

        response = client.get(
            "/api/rydora/tolls",
            params={"dateFrom": "2024-01-01", "dateTo": "2024-01-31", "page": "2"},
        )

        assert response.status_code == 200
        assert response.json() == {"data": [], "totalCount": 0, "page": 2, "totalPages": 0}
        assert [request.url.path for request in seen] == [
            "/api/ExternalToll/get-all",
            "/tolls/get-all",
            "/api/tolls",
            "/toll/get-all",
        ]


def test_invoice_details_not_found_everywhere_is_empty_result(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(_routes({}))

        response = client.get("/api/rydora/invoice-details", params={"dateFrom": "2024-01-01"})

        assert response.status_code == 200
        assert response.json() == {"data": [], "totalCount": 0, "page": 1, "totalPages": 0}
        assert len(seen) == 3


def test_ezpass_requires_both_dates_before_calling_provider(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        seen = install_upstream(_routes({}))

        missing = client.get("/api/rydora/ezpass")
        blank = client.get("/api/rydora/ezpass", params={"dateFrom": "2024-01-01", "dateTo": " "})

        assert missing.status_code == 400
        assert missing.json() == {"message": "dateFrom and dateTo are required"}
        assert blank.status_code == 400
        assert seen == []
