import httpx
import pytest
from fastapi.testclient import TestClient

from price_service.main import create_app
from conftest import FakeClock, FakeUpstream, make_settings


RXNAV = "rxnav.nlm.nih.gov"
NADAC_HOST = "healthdata.gov"
NADAC_PATH = "/resource/3tha-57c6.json"

MOCK_ONLY = {"includeNadac": "false", "includeGoodRx": "false", "includeRxNorm": "false"}


@pytest.fixture
def api(upstream: FakeUpstream):
    clock = FakeClock()

    def build(**overrides):
        app = create_app(make_settings(**overrides), transport=upstream.transport, clock=clock)
        return TestClient(app)

    return build


def test_missing_drug_is_rejected_before_any_upstream_call(api, upstream) -> None:
    with api() as client:
        response = client.get("/api/prices")

    assert response.status_code == 400
    assert response.json() == {
        "ok": False,
        "error": "Missing required query param: drug (e.g., ?drug=atorvastatin)",
    }
    assert response.headers["cache-control"] == "no-store"
    assert upstream.calls() == []


def test_invalid_zip_is_rejected(api, upstream) -> None:
    with api() as client:
        response = client.get("/api/prices", params={"drug": "atorvastatin", "zip": "8500"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid zip. Use 5 digits, e.g., 85001"
    assert upstream.calls() == []


def test_rejected_input_does_not_consume_rate_budget(api) -> None:
    with api(rate_limit_requests=1) as client:
        for _ in range(3):
            assert client.get("/api/prices").status_code == 400
        response = client.get("/api/prices", params={"drug": "metformin", **MOCK_ONLY})

    assert response.status_code == 200


def test_rate_limit_refuses_request_over_budget(api) -> None:
    params = {"drug": "metformin", **MOCK_ONLY}
    with api(rate_limit_requests=2) as client:
        first = client.get("/api/prices", params=params)
        second = client.get("/api/prices", params=params)
        refused = client.get("/api/prices", params=params)

    assert first.headers["x-ratelimit-remaining"] == "1"
    assert second.headers["x-ratelimit-remaining"] == "0"
    assert refused.status_code == 429
    body = refused.json()
    assert body["ok"] is False
    assert body["error"] == "Rate limit exceeded. Please try again shortly."
    assert body["remaining"] == 0
    assert str(body["resetAt"]) == second.headers["x-ratelimit-reset"]
    assert refused.headers["x-ratelimit-reset"] == second.headers["x-ratelimit-reset"]
    assert refused.headers["retry-after"] == "60"


def test_rate_limit_is_per_client_address(api) -> None:
    params = {"drug": "metformin", **MOCK_ONLY}
    with api(rate_limit_requests=1) as client:
        assert client.get("/api/prices", params=params, headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
        assert client.get("/api/prices", params=params, headers={"X-Forwarded-For": "10.0.0.1, 1.1.1.1"}).status_code == 429
        assert client.get("/api/prices", params=params, headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200


def test_mock_only_metformin_quote(api, upstream) -> None:
    with api() as client:
        response = client.get("/api/prices", params={"drug": "metformin", "qty": "60", **MOCK_ONLY})

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    assert response.headers["x-medifindr-privacy"] == "on"
    body = response.json()
    assert body["ok"] is True
    assert body["count"] == 1
    row = body["results"][0]
    assert row["pharmacy"] == "Costco (Mock)"
    assert row["chain"] == "costco"
    assert row["totalPrice"] == 6.5
    assert row["unitPrice"] == 0.1083
    assert row["dataset"] == "Mock"
    assert [d["name"] for d in body["transparency"]["datasets"]] == ["Mock"]
    assert body["transparency"]["attempted"] == ["Mock"]
    assert body["groupSummary"] == [{"chain": "costco", "count": 1, "minTotal": 6.5}]
    assert body["inputs"]["normalizedDrug"] == "metformin"
    assert body["inputs"]["includeGoodRx"] is False
    assert upstream.calls() == []


def test_metformin_quote_with_resolution_on_and_rxnav_down(api, upstream) -> None:
    params = {"drug": "metformin", "qty": "60", "includeNadac": "false", "includeGoodRx": "false"}
    with api() as client:
        response = client.get("/api/prices", params=params)

    body = response.json()
    assert response.status_code == 200
    assert [(r["pharmacy"], r["totalPrice"]) for r in body["results"]] == [("Costco (Mock)", 6.5)]
    assert [d["name"] for d in body["transparency"]["datasets"]] == ["Mock"]
    assert body["transparency"]["resolution"]["rxcui"] is None
    assert body["inputs"]["normalizedDrug"] == "metformin"
    assert upstream.calls(RXNAV)


def test_metformin_quote_with_resolved_name(api, upstream) -> None:
    upstream.add(RXNAV, "/REST/rxcui.json", {"idGroup": {"rxnormId": ["6809"]}})
    upstream.add(RXNAV, "/REST/rxcui/6809/ndcs.json", {"ndcGroup": {"ndcList": {"ndc": ["00093104801"]}}})
    upstream.add(RXNAV, "/REST/rxcui/6809.json", {"idGroup": {"name": "Metformin"}})
    params = {"drug": "metformin", "qty": "60", "includeNadac": "false", "includeGoodRx": "false"}
    with api() as client:
        response = client.get("/api/prices", params=params)

    body = response.json()
    assert [(r["pharmacy"], r["totalPrice"]) for r in body["results"]] == [("Costco (Mock)", 6.5)]
    assert [d["name"] for d in body["transparency"]["datasets"]] == ["Mock"]
    assert body["transparency"]["resolution"]["matchMode"] == "exact"


def test_zip_limits_mock_coverage(api) -> None:
    with api() as client:
        response = client.get("/api/prices", params={"drug": "atorvastatin", "zip": "99999", **MOCK_ONLY})

    results = response.json()["results"]
    assert [(r["pharmacy"], r["strength"], r["totalPrice"], r["zip"]) for r in results] == [
        ("Walmart (Mock)", "20 mg", 9.99, "99999")
    ]


def test_goodrx_without_key_reports_configuration_gap(api, upstream) -> None:
    with api() as client:
        response = client.get(
            "/api/prices",
            params={"drug": "atorvastatin", "includeGoodRx": "true", "includeNadac": "false", "includeRxNorm": "false"},
        )

    assert response.status_code == 200
    transparency = response.json()["transparency"]
    assert "GoodRx" in transparency["attempted"]
    assert any("GoodRx was skipped" in c and "configuration gap" in c for c in transparency["caveats"])
    assert response.json()["count"] == 2
    assert upstream.calls() == []


def test_full_fan_out_with_resolution_and_nadac(api, upstream) -> None:
    upstream.add(
        RXNAV,
        "/REST/rxcui.json",
        lambda request: httpx.Response(200, json={"idGroup": {"rxnormId": ["83367"]}}),
    )
    upstream.add(RXNAV, "/REST/rxcui/83367/ndcs.json", {"ndcGroup": {"ndcList": {"ndc": ["1", "2", "3"]}}})
    upstream.add(RXNAV, "/REST/rxcui/83367.json", {"idGroup": {"name": "Atorvastatin"}})
    upstream.add(
        NADAC_HOST,
        NADAC_PATH,
        [
            {
                "ndc": "00093505698",
                "generic_name": "ATORVASTATIN CALCIUM",
                "ndc_description": "ATORVASTATIN 20 MG TABLET",
                "nadac_per_unit": "0.0312",
                "pricing_unit": "EA",
                "effective_date": "2024-06-12T00:00:00.000",
            }
        ],
    )

    with api() as client:
        response = client.get("/api/prices", params={"drug": "Lipitor", "dedupe": "chain"})

    assert response.status_code == 200
    body = response.json()
    transparency = body["transparency"]
    assert body["inputs"]["drug"] == "Lipitor"
    assert body["inputs"]["normalizedDrug"] == "atorvastatin"
    assert transparency["resolution"]["rxcui"] == "83367"
    assert transparency["resolution"]["ndcCount"] == 3
    assert transparency["resolution"]["matchMode"] == "exact"
    assert transparency["attempted"] == ["NADAC", "Mock"]
    assert transparency["nadacBaseline"]["unitMin"] == 0.0312
    assert "NADAC is acquisition cost, not retail price." in transparency["caveats"]
    totals = [row["totalPrice"] for row in body["results"]]
    assert totals == sorted(totals)
    assert totals[0] == 0.936


def test_florida_sample_through_api(api) -> None:
    params = {"drug": "metformin", "includeFlorida": "true", **MOCK_ONLY, "includeMock": "false"}
    with api() as client:
        response = client.get("/api/prices", params=params)

    transparency = response.json()["transparency"]
    assert transparency["florida"]["url"] == "/florida-sample.csv"
    assert transparency["florida"]["count"] == response.json()["count"] > 0
    assert all(row["state"] == "FL" for row in response.json()["results"])


def test_health_reports_cache_and_limiter(api) -> None:
    with api() as client:
        client.get("/api/prices", params={"drug": "metformin", **MOCK_ONLY})
        response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["services"] == {"cache": "up", "rate_limiter": "memory"}


def test_corrupt_florida_export_keeps_other_providers(api, upstream) -> None:
    upstream.add(
        "florida.example.test",
        "/export",
        lambda request: httpx.Response(200, content=b"PK\x03\x04garbage"),
    )
    template = "https://florida.example.test/export?drug={drug}&county={county}"
    params = {"drug": "metformin", "includeFlorida": "true", **MOCK_ONLY}
    with api(florida_export_url_template=template) as client:
        response = client.get("/api/prices", params=params)

    assert response.status_code == 200
    body = response.json()
    assert [r["pharmacy"] for r in body["results"]] == ["Costco (Mock)"]
    assert any(c.startswith("Florida MyFloridaRX data is unavailable") for c in body["transparency"]["caveats"])
    assert body["transparency"]["florida"]["count"] == 0
