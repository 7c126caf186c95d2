"""Tests for the HTTP and WebSocket surface, with the runner wired to fakes."""

import json

import pytest
from conftest import make_runner
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from prospector.api.app import create_app
from prospector.api.routes import COMPLETE_MESSAGE
from prospector.config.settings import APIConfig
from prospector.jobs.export import EXPORT_COLUMNS

CONTACT_PAGE = '<a href="mailto:office@acmeplumbing.com">Email us</a>'

ACME = {
    "registry_number": "123456",
    "contractor_name": "Acme Plumbing",
    "city": "Phoenix",
    "website": "https://acmeplumbing.com",
}
NOBODY = {"registry_number": "", "contractor_name": "Nobody"}


@pytest.fixture
def client(tmp_path):
    runner = make_runner(
        tmp_path, pages={"https://acmeplumbing.com/contact": CONTACT_PAGE}, retention_limit=1
    )
    app = create_app(api_config=APIConfig(allowed_origins=["http://localhost:3000"]), runner=runner)
    with TestClient(app) as test_client:
        yield test_client


def _stream(client, job_id):
    events = []
    with client.websocket_connect(f"/api/v1/ws/jobs/{job_id}") as ws:
        while True:
            text = ws.receive_text()
            if text == COMPLETE_MESSAGE:
                break
            events.append(json.loads(text))
    return events


def _submit(client, contractors, **preferences):
    response = client.post(
        "/api/v1/jobs", json={"contractors": contractors, "preferences": preferences}
    )
    assert response.status_code == 200
    return response.json()["job_id"]


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {
            "status": "healthy",
            "service": "prospector",
            "version": "1.0.0",
        }


class TestSubmission:
    def test_empty_batch_is_rejected(self, client):
        response = client.post("/api/v1/jobs", json={"contractors": []})
        assert response.status_code == 400

    def test_malformed_row_is_rejected(self, client):
        response = client.post("/api/v1/jobs", json={"contractors": [{"registry_number": "1"}]})
        assert response.status_code == 422

    def test_invalid_strictness_is_rejected(self, client):
        response = client.post(
            "/api/v1/jobs",
            json={"contractors": [ACME], "preferences": {"strictness": "paranoid"}},
        )
        assert response.status_code == 422

    def test_submit_returns_immediately(self, client):
        response = client.post("/api/v1/jobs", json={"contractors": [ACME, NOBODY]})
        body = response.json()
        assert body["status"] == "started"
        assert body["total_entities"] == 2
        assert body["job_id"].startswith("job_")


class TestJobLifecycle:
    def test_stream_status_results_and_export(self, client):
        job_id = _submit(client, [ACME, NOBODY], use_llm=False)

        events = _stream(client, job_id)
        sequences = [e["sequence"] for e in events]
        assert sequences == sorted(sequences)
        assert events[0]["component"] == "job"
        assert events[-1]["severity"] == "success"
        assert any(e["severity"] == "error" for e in events)

        status = client.get(f"/api/v1/jobs/{job_id}").json()
        assert status["status"] == "completed"
        assert status["completed_entities"] == 2
        assert status["entities_failed"] == 1
        assert status["total_emails"] == 1

        results = client.get(f"/api/v1/jobs/{job_id}/results").json()
        assert [r["status"] for r in results] == ["done", "failed"]
        assert results[0]["candidates"][0]["email"] == "office@acmeplumbing.com"

        export = client.get(f"/api/v1/jobs/{job_id}/export")
        assert export.status_code == 200
        assert export.headers["content-type"].startswith("text/csv")
        assert f"{job_id}-results.csv" in export.headers["content-disposition"]
        lines = export.text.splitlines()
        assert lines[0] == ",".join(f'"{c}"' for c in EXPORT_COLUMNS)
        assert len(lines) == 3
        assert '"office@acmeplumbing.com"' in lines[1]
        assert '"Not Found"' in lines[2]

        listed = client.get("/api/v1/jobs").json()["jobs"]
        assert [j["job_id"] for j in listed] == [job_id]

    def test_finished_job_cannot_be_cancelled(self, client):
        job_id = _submit(client, [NOBODY])
        _stream(client, job_id)
        assert client.post(f"/api/v1/jobs/{job_id}/cancel").status_code == 404

    def test_evicted_job_served_from_disk(self, client):
        first = _submit(client, [ACME], use_llm=False)
        live_events = _stream(client, first)
        second = _submit(client, [NOBODY])
        _stream(client, second)

        status = client.get(f"/api/v1/jobs/{first}").json()
        assert status["status"] == "completed"
        assert status["total_emails"] == 1

        replayed = _stream(client, first)
        assert [e["sequence"] for e in replayed] == [e["sequence"] for e in live_events]
        assert client.get(f"/api/v1/jobs/{first}/export").status_code == 200


class TestUnknownJobs:
    def test_status_results_export_and_cancel_404(self, client):
        for path in ("/api/v1/jobs/job_missing", "/api/v1/jobs/job_missing/results",
                     "/api/v1/jobs/job_missing/export"):
            assert client.get(path).status_code == 404
        assert client.post("/api/v1/jobs/job_missing/cancel").status_code == 404

    def test_websocket_closes_for_unknown_job(self, client):
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect("/api/v1/ws/jobs/job_missing") as ws:
                ws.receive_text()
        assert excinfo.value.code == 4404
