import pytest
from fastapi.testclient import TestClient

from hybridctl.api.main import app
from hybridctl.api.routes import validate
from hybridctl.api.routes.deps import get_config
from hybridctl.config import PipelineConfig
from hybridctl.modules.validation import ValidationAggregator, ValidationCheck

HEADERS = {"X-API-Key": "hybridctl-secret"}


@pytest.fixture
def client(config):
    app.dependency_overrides[get_config] = lambda: config
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_requests_without_api_key_are_rejected(client):
    response = client.get("/phases")
    assert response.status_code == 403


def test_phases_reports_live_probe_status(client):
    response = client.get("/phases", headers=HEADERS)

    assert response.status_code == 200
    phases = response.json()
    assert [p["name"] for p in phases][:3] == ["prereqs", "secrets", "mesh"]
    assert all(p["done"] is False for p in phases)
    mesh = next(p for p in phases if p["name"] == "mesh")
    assert mesh["pre_confirm"] is True


def test_validate_returns_json_report(client, monkeypatch):
    def fake(battery, config: PipelineConfig):
        return ValidationAggregator().run([ValidationCheck("nodes queryable", lambda: (True, ""))], battery)

    monkeypatch.setattr(validate, "run_battery", fake)

    response = client.get("/validate/deployment", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["summary"]["passed"] == 1


def test_unknown_battery_is_404(client):
    response = client.get("/validate/everything", headers=HEADERS)
    assert response.status_code == 404
