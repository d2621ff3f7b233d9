"""Tests for the JSON API."""

import pytest
from fastapi.testclient import TestClient

from web.app import create_app


@pytest.fixture
def client(service) -> TestClient:
    return TestClient(create_app(service), raise_server_exceptions=False)


@pytest.fixture
def key(client, study_attributes) -> str:
    resp = client.post("/api/projects", json={"sheetId": "web-sheet"})
    assert resp.status_code == 200
    project_key = resp.json()["projectKey"]
    resp = client.put(
        "/api/attributes", json={"projectKey": project_key, "attributes": study_attributes}
    )
    assert resp.status_code == 200
    return project_key


class TestProjectEndpoints:
    """Tests for project creation and key validation."""

    def test_validate(self, client, key):
        assert client.post("/api/projects/validate", json={"projectKey": key}).json() == {
            "valid": True,
            "sheetId": "web-sheet",
        }
        assert client.post("/api/projects/validate", json={"projectKey": "x"}).json() == {
            "valid": False
        }

    def test_attributes_use_camel_case(self, client, key):
        attrs = client.get("/api/attributes", params={"projectKey": key}).json()["attributes"]
        assert attrs[2]["isPriceAttribute"] is True
        assert attrs[1]["levels"] == ["Not Included", "Included"]

    def test_invalid_attributes_are_400(self, client, key):
        resp = client.put(
            "/api/attributes",
            json={"projectKey": key, "attributes": [{"name": "Color", "levels": ["Red"]}]},
        )
        assert resp.status_code == 400
        assert "levels" in resp.json()["error"]

    def test_survey_config(self, client, key):
        resp = client.put(
            "/api/survey-config",
            json={"projectKey": key, "introduction": "Hello", "question": "Pick", "numTasks": 3},
        )
        assert resp.json()["success"] is True
        config = client.get("/api/survey-config", params={"projectKey": key}).json()
        assert config == {"introduction": "Hello", "question": "Pick", "numTasks": 3}


class TestSurveyEndpoints:
    """Tests for survey links and the respondent flow."""

    def test_link_lifecycle(self, client, key):
        link = client.post("/api/surveys", json={"projectKey": key, "surveyName": "Wave"}).json()
        surveys = client.get("/api/surveys", params={"projectKey": key}).json()["surveys"]
        assert [s["surveyId"] for s in surveys] == [link["surveyId"]]

        resp = client.delete(f"/api/surveys/{link['surveyId']}", params={"projectKey": key})
        assert resp.json() == {"success": True}
        resp = client.delete(f"/api/surveys/{link['surveyId']}", params={"projectKey": key})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Survey not found"}

    def test_respondent_flow_and_analysis(self, client, key):
        token = client.post("/api/surveys", json={"projectKey": key, "surveyName": "Wave"}).json()["token"]

        survey = client.get("/api/survey", params={"token": token}).json()
        assert len(survey["tasks"]) == 4
        assert survey["tasks"][0]["noneAlternativeId"] == 4

        answers = {str(t["id"]): 1 for t in survey["tasks"]}
        resp = client.post(
            "/api/responses",
            json={"surveyToken": token, "type": "survey", "responses": answers},
        )
        assert resp.json()["success"] is True
        assert resp.json()["responseId"].startswith("response_")

        resp = client.post(
            "/api/responses",
            json={"surveyToken": token, "type": "donation", "donationAmount": 5},
        )
        assert resp.status_code == 200

        result = client.post(
            "/api/analysis", json={"projectKey": key, "numPlans": 3, "pricingStrategy": "submitted"}
        ).json()
        assert result["totalResponses"] == 1
        assert [p["name"] for p in result["plans"]] == ["Good", "Better", "Best"]
        assert result["currency"] == "USD"
        assert result["donationData"]["count"] == 1
        assert result["analysisTabName"].startswith("Analysis_")
        assert set(result["sampleSize"]) >= {"n70", "n80", "n90"}

    def test_empty_analysis(self, client, key):
        result = client.post("/api/analysis", json={"projectKey": key}).json()
        assert result["noResponses"] is True
        assert result["error"] == "No responses found"

    def test_bad_token_is_400(self, client):
        resp = client.get("/api/survey", params={"token": "nope"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid or expired token"}

    def test_invalid_donation_is_400(self, client, key):
        token = client.post("/api/surveys", json={"projectKey": key}).json()["token"]
        resp = client.post("/api/responses", json={"surveyToken": token, "type": "donation"})
        assert resp.status_code == 400


class TestInternalErrors:
    """Tests for unexpected failures."""

    def test_unexpected_error_is_hidden(self, client, key, service, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(service, "list_surveys", boom)
        resp = client.get("/api/surveys", params={"projectKey": key})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}
