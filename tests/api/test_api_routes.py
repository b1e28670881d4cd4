"""HTTP tests for the tariffgate API, with classification sources stubbed in-process."""

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from tariffgate.api.app import app
from tariffgate.api.security import set_rate_limit
from tariffgate.api.services import (
    get_compliance_checker,
    get_confidence_assessor,
    get_orchestrator,
    get_rule_engine,
    get_threshold_router,
    reset_services,
)
from tariffgate.classification import CallableSource, ClassificationOrchestrator, configure_sources
from tariffgate.classification.jobs import job_manager
from tariffgate.config import Settings

API_KEY = "test-key"
CODES = {"Hunting rifle": "9302.00", "Plush teddy bear": "9503.00"}


def _stub_source(request):
    hs_code = CODES.get(request.product_description)
    if hs_code is None:
        return None
    return {"hsCode": hs_code, "confidence": 95, "reasoning": "Stubbed classifier"}


class _BrokenChecker:
    def check_compliance(self, check):
        raise RuntimeError("restriction store unavailable")


def _orchestrator(checker=None) -> ClassificationOrchestrator:
    return ClassificationOrchestrator(
        configure_sources({"openai": CallableSource("openai", _stub_source)}),
        engine=get_rule_engine(),
        assessor=get_confidence_assessor(),
        router=get_threshold_router(),
        checker=checker or get_compliance_checker(),
        settings=Settings(batch_pause_seconds=0.0),
    )


@pytest.fixture()
def client(monkeypatch) -> Iterator[TestClient]:
    monkeypatch.setenv("TGATE_API_KEYS", API_KEY)
    set_rate_limit(1000)
    reset_services()
    job_manager.reset()
    app.dependency_overrides[get_orchestrator] = lambda: _orchestrator()
    with TestClient(app, headers={"X-API-Key": API_KEY}) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    reset_services()


def test_health_reports_registry_sizes(client):
    body = client.get("/health").json()

    assert body["ok"] is True
    assert (body["rules"], body["thresholds"], body["restrictions"]) == (6, 6, 10)


class TestSecurity:
    def test_missing_key_is_rejected(self, client):
        with TestClient(app) as anonymous:
            response = anonymous.post("/api/compliance/check", json={})
        assert response.status_code == 401

    def test_unknown_key_is_rejected(self, client):
        response = client.get("/api/admin/rules", headers={"X-API-Key": "nope"})

        assert response.status_code == 401
        assert response.json()["detail"]["message"] == "Invalid API key"

    def test_rate_limit(self, client):
        set_rate_limit(2)
        statuses = [client.get("/api/admin/rules").status_code for _ in range(3)]

        assert statuses == [200, 200, 429]

    def test_rate_limited_response_carries_retry_after(self, client):
        set_rate_limit(1)
        client.get("/api/admin/rules")

        response = client.get("/api/admin/rules")

        assert response.status_code == 429
        assert response.json()["detail"]["error"] == "RATE_LIMITED"
        assert int(response.headers["Retry-After"]) >= 1

    def test_admin_and_pipeline_budgets_are_separate(self, client):
        set_rate_limit(1)

        assert client.get("/api/admin/rules").status_code == 200
        assert client.post("/api/confidence/thresholds/evaluate", json={"final_score": 80}).status_code == 200
        assert client.get("/api/admin/rules").status_code == 429


class TestRunIds:
    def test_client_run_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Run-ID": "audit-2025.06:42"})

        assert response.headers["X-Run-ID"] == "audit-2025.06:42"

    def test_malformed_client_run_id_is_replaced(self, client):
        response = client.get("/health", headers={"X-Run-ID": "not a run id!"})

        assert response.headers["X-Run-ID"].startswith("run_")

    def test_classification_uses_the_request_run_id(self, client):
        response = client.post(
            "/api/classification/classify",
            json={"product_description": "Plush teddy bear"},
            headers={"X-Run-ID": "req-1"},
        )

        assert response.json()["run_id"] == "req-1"


class TestClassification:
    def test_classify_returns_full_outcome(self, client):
        response = client.post(
            "/api/classification/classify",
            json={"product_description": "Hunting rifle", "origin_country": "de", "destination_country": "us"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["hs_code"] == "9302.00"
        assert body["compliance"]["risk_level"] == "critical"
        assert body["final_decision"] == "escalated"
        assert body["run_id"] == response.headers["X-Run-ID"]

    def test_unanswered_product_is_a_structured_failure(self, client):
        body = client.post("/api/classification/classify", json={"product_description": "Mystery box"}).json()

        assert body["success"] is False
        assert body["error"] == "All classification sources failed"

    def test_validation_errors_are_normalized(self, client):
        response = client.post("/api/classification/classify", json={"product_name": "No description"})

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert "request.product_description" in [field["path"] for field in body["fields"]]

    def test_pipeline_stage_failure_maps_to_502(self, client):
        app.dependency_overrides[get_orchestrator] = lambda: _orchestrator(checker=_BrokenChecker())

        response = client.post("/api/classification/classify", json={"product_description": "Plush teddy bear"})

        assert response.status_code == 502
        assert response.json()["error"] == "PIPELINE_STAGE_FAILED"
        assert response.json()["stage"] == "compliance"

    def test_batch_job_completes_with_per_item_errors(self, client):
        submitted = client.post(
            "/api/classification/batch",
            json={
                "items": [
                    {"product_description": "Plush teddy bear", "destination_country": "US"},
                    {"product_description": "Mystery box"},
                    {"product_description": "Hunting rifle", "destination_country": "US"},
                ]
            },
        )
        assert submitted.status_code == 200
        job_id = submitted.json()["job_id"]

        status = client.get(f"/api/classification/batch/{job_id}").json()

        assert status["status"] == "completed"
        assert status["total_items"] == 3
        assert status["result"]["success_count"] == 2
        assert status["result"]["errors"][0]["index"] == 1
        item_run_ids = {item["run_id"] for item in status["result"]["results"]}
        assert status["run_id"] == submitted.headers["X-Run-ID"]
        assert len(item_run_ids) == 2
        assert status["run_id"] not in item_run_ids

    def test_unknown_job_is_404(self, client):
        assert client.get("/api/classification/batch/job_missing").status_code == 404


class TestCompliance:
    def test_check_firearms(self, client):
        body = client.post(
            "/api/compliance/check",
            json={"hs_code": "9302.00", "origin_country": "DE", "destination_country": "US", "product_value": 200000},
        ).json()

        assert body["compliant"] is False
        assert body["risk_level"] == "critical"
        fees = {fee["type"]: fee["amount"] for fee in body["additional_fees"]}
        assert fees["MPF"] == pytest.approx(528.33)

    def test_restrictions_of_type(self, client):
        response = client.get(
            "/api/compliance/restrictions/prohibited", params={"hs_code": "9302.00", "country": "us"}
        )

        assert [r["id"] for r in response.json()] == ["us-firearms"]


class TestConfidence:
    def test_assess_and_route(self, client):
        assessment = client.post(
            "/api/confidence/assess",
            json={
                "ai_confidence": 45,
                "validation_score": 40,
                "business_rule_score": 50,
                "missing_fields": ["productName", "materials", "weight", "intendedUse"],
            },
        ).json()
        assert assessment["reliability"] == "very-low"
        assert assessment["final_score"] == pytest.approx(28.75)

        routed = client.post("/api/confidence/thresholds/evaluate", json={"final_score": assessment["final_score"]})

        assert [r["threshold"]["id"] for r in routed.json()] == ["escalate-very-low"]

    def test_calibration_round_trip(self, client):
        recorded = client.post(
            "/api/confidence/calibration", json={"predicted_confidence": 90, "actual_accuracy": 80}
        )
        assert recorded.status_code == 204

        metrics = client.get("/api/confidence/calibration").json()

        assert metrics["sample_size"] == 1
        assert metrics["average_calibration_error"] == pytest.approx(10.0)


class TestAdminRules:
    RULE = {
        "id": "toy-battery",
        "name": "Toy battery disclosure",
        "conditions": [{"field": "productDescription", "operator": "contains", "value": "battery"}],
        "actions": [{"type": "require", "message": "Battery chemistry is required", "target": "battery"}],
        "priority": 2,
    }

    def test_lifecycle(self, client):
        created = client.post("/api/admin/rules", json=self.RULE)
        assert created.status_code == 201
        assert created.json()["id"] == "toy-battery"

        patched = client.patch("/api/admin/rules/toy-battery", json={"priority": 3})
        assert patched.json()["priority"] == 3

        dry_run = client.post(
            "/api/admin/rules/toy-battery/test",
            json={"context": {"product_description": "Robot toy with lithium battery"}},
        ).json()
        assert dry_run["matches"] is True
        assert dry_run["applied_actions"][0]["type"] == "require"

        assert client.delete("/api/admin/rules/toy-battery").status_code == 204
        assert client.get("/api/admin/rules/toy-battery").status_code == 404

    def test_new_rule_takes_effect_in_classification(self, client):
        teddy_rule = {
            **self.RULE,
            "conditions": [{"field": "productDescription", "operator": "contains", "value": "teddy"}],
        }
        client.post("/api/admin/rules", json=teddy_rule)

        body = client.post("/api/classification/classify", json={"product_description": "Plush teddy bear"}).json()

        assert "toy-battery" in body["decision"]["applied_rules"]
        assert body["decision"]["requires_review"] is True

    def test_invalid_regex_is_rejected(self, client):
        bad = {**self.RULE, "conditions": [{"field": "productDescription", "operator": "regex", "value": "(battery"}]}

        response = client.post("/api/admin/rules", json=bad)

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "INVALID_PATTERN"

    def test_duplicate_id_conflicts(self, client):
        response = client.post("/api/admin/rules", json={**self.RULE, "id": "consistency-check"})

        assert response.status_code == 409

    def test_unknown_rule(self, client):
        assert client.patch("/api/admin/rules/missing", json={"priority": 1}).status_code == 404
        assert client.delete("/api/admin/rules/missing").status_code == 404
        assert client.post("/api/admin/rules/missing/test", json={"context": {"product_description": "x"}}).status_code == 404


class TestAdminThresholds:
    def test_inverted_band_fails_validation(self, client):
        response = client.post(
            "/api/admin/thresholds",
            json={
                "name": "Inverted",
                "min_confidence": 90,
                "max_confidence": 10,
                "action": {"type": "flag-warning", "message": "never"},
            },
        )

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_gap_report(self, client):
        body = client.get("/api/admin/thresholds/gaps").json()

        assert body["gaps"][-1] == {"above": 94.0, "below": 95.0}
        assert len(body["gaps"]) == 3

    def test_patch_that_inverts_band_is_rejected(self, client):
        response = client.patch("/api/admin/thresholds/review-medium", json={"min_confidence": 99})

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "INVALID_THRESHOLD"

    def test_category_listing(self, client):
        ids = {t["id"] for t in client.get("/api/admin/thresholds", params={"category": "Textiles"}).json()}

        assert "electronics-strict" not in ids
        assert "escalate-very-low" in ids

    def test_create_generates_id(self, client):
        response = client.post(
            "/api/admin/thresholds",
            json={
                "name": "Toy band",
                "category": "Toys",
                "min_confidence": 0,
                "max_confidence": 100,
                "action": {"type": "flag-warning", "message": "Toy safety check"},
            },
        )

        assert response.status_code == 201
        assert response.json()["id"].startswith("threshold-")


class TestAdminRestrictions:
    RESTRICTION = {
        "id": "us-toys-test",
        "country": "us",
        "hs_code_pattern": "^95",
        "restriction_type": "controlled",
        "severity": "medium",
        "effective_date": "2024-01-01T00:00:00Z",
        "requirements": ["Toy Safety Certificate"],
        "authority": "CPSC",
    }

    def _check_toys(self, client):
        return client.post(
            "/api/compliance/check",
            json={"hs_code": "9503.00", "origin_country": "DE", "destination_country": "US"},
        ).json()

    def test_mutations_are_visible_to_compliance_checks(self, client):
        assert self._check_toys(client)["restrictions"] == []

        assert client.post("/api/admin/restrictions", json=self.RESTRICTION).status_code == 201
        after_add = self._check_toys(client)
        assert [r["id"] for r in after_add["restrictions"]] == ["us-toys-test"]
        assert after_add["risk_level"] == "medium"

        client.patch("/api/admin/restrictions/us-toys-test", json={"severity": "low"})
        assert self._check_toys(client)["risk_level"] == "low"

        assert client.delete("/api/admin/restrictions/us-toys-test").status_code == 204
        assert self._check_toys(client)["restrictions"] == []

    def test_country_is_normalized(self, client):
        client.post("/api/admin/restrictions", json=self.RESTRICTION)

        stored = client.get("/api/admin/restrictions/us-toys-test").json()
        listed = {r["id"] for r in client.get("/api/admin/restrictions", params={"country": "us"}).json()}

        assert stored["country"] == "US"
        assert "us-toys-test" in listed
        assert "general-dual-use" in listed

    def test_invalid_pattern_is_rejected(self, client):
        response = client.post("/api/admin/restrictions", json={**self.RESTRICTION, "hs_code_pattern": "^(95"})

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "INVALID_PATTERN"
