import pytest
from fastapi.testclient import TestClient

from sitez_analyzer import main

from conftest import SAMPLE_HTML, build_analyzer, site_handler


URL = "https://example.com/"


@pytest.fixture
def client(monkeypatch):
    analyzer = build_analyzer(site_handler({URL: SAMPLE_HTML}))
    monkeypatch.setattr(main, "_analyzer", analyzer)
    return TestClient(main.app)


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_analyze(client):
    r = client.post("/analyze", json={"url": URL, "options": {"include_intelligence": False}})
    assert r.status_code == 200
    data = r.json()
    assert data["metadata"]["title"] == "Home"
    assert data["contact"]["emails"] == ["info@example.com"]
    assert data["intelligence"] is None
    assert data["feeds"]["urls"] == ["https://example.com/feed.xml"]
    assert data["overall_grade"] == data["grade_info"]["grade"]
    assert data["errors"] == {}


def test_analyze_rejects_bad_url(client):
    r = client.post("/analyze", json={"url": "ftp://example.com/"})
    assert r.status_code == 400
    assert "absolute http(s)" in r.json()["detail"]


def test_analyze_validates_options(client):
    r = client.post("/analyze", json={"url": URL, "options": {"timeout": 0}})
    assert r.status_code == 422


def test_fetch_failure_is_a_normal_response(client):
    r = client.post("/analyze", json={"url": "https://example.com/missing"})
    assert r.status_code == 200
    data = r.json()
    assert "fetch" in data["errors"]
    assert data["overall_score"] == 0


def test_quick(client):
    r = client.post("/analyze/quick", json={"url": URL})
    assert r.status_code == 200
    data = r.json()
    assert data["intelligence"] is None
    assert data["feeds"] is None
    assert set(data["component_scores"]) == {"metadata", "contact"}


def test_grades(client):
    r = client.get("/grades")
    assert r.status_code == 200
    grades = r.json()
    assert len(grades) == 13
    assert grades[0] == {"grade": "A+", "min_score": 97, "description": "Exceptional", "color": "#00C851"}
    assert grades[-1]["grade"] == "F"


def test_analyze_accepts_requested_at(client):
    r = client.post("/analyze", json={
        "url": URL,
        "options": {"include_intelligence": False},
        "requested_at": "2024-05-01T12:00:00Z",
    })
    assert r.status_code == 200
    assert r.json()["metadata"]["title"] == "Home"


def test_run_serves_the_app(monkeypatch):
    calls = []
    monkeypatch.setattr(main.uvicorn, "run", lambda app, **kw: calls.append((app, kw)))
    monkeypatch.setenv("SITEZ_HOST", "0.0.0.0")
    monkeypatch.setenv("SITEZ_PORT", "9100")
    monkeypatch.delenv("SITEZ_LOG_LEVEL", raising=False)
    main.run()
    assert calls == [("sitez_analyzer.main:app", {"host": "0.0.0.0", "port": 9100, "log_level": "info"})]
