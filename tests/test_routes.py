"""
API tests for the pipeline routes.
"""

import pytest
from fastapi.testclient import TestClient

from crmprep.config import settings
from crmprep.main import app
from crmprep.services import enrichment


@pytest.fixture
def client():
    return TestClient(app)


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["version"] == "1.0.0"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestCatalogRoutes:
    def test_rules(self, client):
        rules = client.get("/pipeline/rules").json()
        assert rules[0]["rule_id"] == "whitespace-cleanup"
        assert rules[-1]["rule_id"] == "duplicate-detection"
        assert [r["order"] for r in rules] == sorted(r["order"] for r in rules)

    def test_schema_fields_filtered(self, client):
        fields = client.get("/pipeline/schema-fields", params={"object_type": "deals"}).json()
        assert {f["object_type"] for f in fields} == {"deals"}
        assert "closedate" in [f["field_id"] for f in fields]


class TestMatchHeaders:
    def test_match(self, client):
        response = client.post("/pipeline/match-headers", json={"headers": ["E-mail", "Surname", "Notes"],
                                                                "manual_choices": [{"header": "Notes"}]})
        assert response.status_code == 200
        body = response.json()
        assert [m["field_id"] for m in body["header_matches"]] == ["email", "lastname", None]
        assert body["header_matches"][2]["source"] == "ignored"
        assert body["missing_required"] == []

    def test_missing_required(self, client):
        response = client.post("/pipeline/match-headers", json={"headers": ["Surname"]})
        missing = response.json()["missing_required"]
        assert [(m["field"], m["kind"]) for m in missing] == [("email", "missing_field")]

    def test_extra_schema_field(self, client):
        payload = {
            "headers": ["Favourite Colour"],
            "schema_fields": [{"field_id": "favorite_color", "label": "Favorite Color",
                               "variants": ["favourite colour"]}],
            "required_fields": [],
        }
        body = client.post("/pipeline/match-headers", json=payload).json()
        assert body["header_matches"][0]["field_id"] == "favorite_color"

    def test_no_headers(self, client):
        assert client.post("/pipeline/match-headers", json={"headers": []}).status_code == 422


class TestRunPipeline:
    def test_run(self, client):
        payload = {"rows": [{"Email": " Jane@Acme.com", "State": "ca"}, {"Email": "nope", "State": "Ohio"}]}
        response = client.post("/pipeline/run", json=payload)
        assert response.status_code == 200
        body = response.json()
        assert body["rows"][0] == {"Email": "jane@acme.com", "State": "California"}
        assert body["canonical_rows"][0] == {"email": "jane@acme.com", "state": "California"}
        assert body["summary"]["total_rows"] == 2
        assert body["summary"]["invalid_rows"] == 1
        assert body["summary"]["can_continue"] is False
        assert body["run_errors"] == []

    def test_selected_and_custom_rules(self, client):
        payload = {
            "rows": [{"Email": "a@acme.com", "Industry": "tech"}],
            "enabled_rule_ids": ["industry-map"],
            "custom_rules": [{
                "rule_id": "industry-map",
                "name": "Industry Map",
                "kind": "transform",
                "order": 70,
                "config": {"op": "map_enum", "table": {"tech": "Technology"}},
                "target_fields": ["industry"],
            }],
        }
        body = client.post("/pipeline/run", json=payload).json()
        assert [r["rule_id"] for r in body["rule_reports"]] == ["industry-map"]
        assert body["rows"][0]["Industry"] == "Technology"

    def test_no_rows(self, client):
        response = client.post("/pipeline/run", json={"rows": []})
        assert response.status_code == 422
        assert response.json()["detail"] == "No rows provided"


class TestEnrich:
    def test_without_api_key(self, client, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
        monkeypatch.setattr(enrichment, "_client", None)
        payload = {
            "rows": [{"Company": "Acme"}],
            "configs": [{"name": "industry", "prompt": "{Company}", "input_fields": ["Company"],
                         "output_field": "Industry"}],
        }
        response = client.post("/pipeline/enrich", json=payload)
        assert response.status_code == 503

    def test_no_rows(self, client):
        response = client.post("/pipeline/enrich", json={"rows": [], "configs": []})
        assert response.status_code == 422
