import dataclasses

import pytest

from review_console.core import runs
from review_console.core.errors import RunTimedOut, UpstreamUnavailable
from review_console.core.models import RunHandle, RunStatus, SyncResult
from review_console.jobs import search_server

PLACES = [
    {"title": "Acme 0", "reviews": [{"name": "A", "stars": 2}, {"name": "B", "stars": 5}]},
    {"title": "Acme 1", "reviews": [{"name": "C", "stars": 4}]},
]


class DummyRunner:
    def __init__(self, start=None, poll=None, error=None):
        self.start = start
        self.poll = poll
        self.error = error
        self.requests = []
        self.polls = []

    def start_run(self, req):
        self.requests.append(req)
        if self.error:
            raise self.error
        return self.start

    def poll_run(self, handle, limit=None):
        self.polls.append((handle, limit))
        if self.error:
            raise self.error
        return self.poll


@pytest.fixture(autouse=True)
def patch_settings(monkeypatch, settings):
    monkeypatch.setattr(search_server, "get_settings", lambda: settings)


@pytest.fixture
def use_runner(monkeypatch):
    def _install(runner):
        monkeypatch.setattr(search_server, "get_runner", lambda: runner)
        return runner

    return _install


@pytest.fixture
def client():
    return search_server.app.test_client()


def test_health_endpoint(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"
    assert response.get_json()["run_mode"] == "async"


def test_run_validates_input(client, use_runner):
    runner = use_runner(DummyRunner())

    missing_q = client.get("/api/run?source=google-maps")
    assert missing_q.status_code == 400
    assert missing_q.get_json() == {"error": "Missing q"}

    assert client.get("/api/run?q=Acme").status_code == 400
    bad_number = client.post("/api/run", json={"q": "Acme", "source": "google-maps", "minRating": "bad"})
    assert bad_number.status_code == 400
    assert "error" in bad_number.get_json()
    assert runner.requests == []


def test_run_async_returns_run_id_and_clamps(client, use_runner):
    runner = use_runner(DummyRunner(start=RunHandle(run_id="run-1", status=RunStatus.RUNNING)))

    response = client.get("/api/run?q=Acme&source=google-maps&maxPlaces=99&maxReviews=1000&days=30&minRating=4")

    assert response.status_code == 202
    assert response.get_json() == {"status": "RUNNING", "runId": "run-1", "startedAt": None}
    req = runner.requests[0]
    assert req.max_result_count == 25
    assert req.max_sub_item_count == 50
    assert req.max_age_days == 30
    assert req.min_rating == 4.0


def test_run_accepts_json_body(client, use_runner):
    runner = use_runner(DummyRunner(start=RunHandle(run_id="run-2")))

    response = client.post(
        "/api/run", json={"query": "Acme Co", "source": "google-maps", "maxResultCount": 2, "maxSubItemCount": 1}
    )

    assert response.status_code == 202
    assert runner.requests[0].query == "Acme Co"
    assert runner.requests[0].max_result_count == 2


def test_run_sync_result_is_normalized(client, use_runner):
    use_runner(DummyRunner(start=SyncResult(run_id="run-3", records=PLACES)))

    response = client.get("/api/run?q=Acme&source=google-maps&maxReviews=5&minRating=3")

    body = response.get_json()
    assert response.status_code == 200
    assert body["status"] == "SUCCEEDED"
    assert [item["title"] for item in body["items"]] == ["Acme 0", "Acme 0 • B", "Acme 1", "Acme 1 • C"]


def test_run_unwired_source_returns_stub(client, settings, monkeypatch):
    monkeypatch.setattr(search_server, "get_runner", lambda: runs.ScrapeRunner(settings))

    response = client.get("/api/run?q=Acme&source=reddit")

    body = response.get_json()
    assert response.status_code == 200
    assert len(body["items"]) == 1
    assert body["items"][0]["kind"] == "other"
    assert body["items"][0]["source"] == "reddit"


def test_poll_running_and_succeeded(client, use_runner):
    runner = use_runner(DummyRunner(poll=RunHandle(run_id="run-1", status=RunStatus.RUNNING)))

    response = client.get("/api/results?runId=run-1")
    assert response.get_json() == {"status": "RUNNING", "runId": "run-1", "startedAt": None}
    assert runner.polls[0][1] is None

    runner.poll = PLACES
    response = client.get("/api/run?runId=run-1&maxReviews=1&maxPlaces=2")
    body = response.get_json()
    assert body["status"] == "SUCCEEDED"
    assert [item["kind"] for item in body["items"]] == ["business", "review", "business", "review"]
    assert runner.polls[1][1] == 2


def test_poll_requires_run_id(client, use_runner):
    use_runner(DummyRunner())
    response = client.get("/api/results")
    assert response.status_code == 400
    assert response.get_json() == {"error": "Missing runId"}


def test_poll_timeout_is_json(client, use_runner):
    use_runner(DummyRunner(error=RunTimedOut("Still running", details={"runId": "run-1"})))

    response = client.get("/api/results?runId=run-1")

    assert response.status_code == 504
    assert response.get_json() == {"error": "Still running", "details": {"runId": "run-1"}}


def test_malformed_upstream_status_is_json(client, settings, monkeypatch):
    class TextResponse:
        status_code = 200
        text = "<html>Bad gateway</html>"

        def json(self):
            raise ValueError("Expecting value")

    class TextSession:
        def request(self, method, url, **kwargs):
            return TextResponse()

    runner = runs.ScrapeRunner(settings, client=runs.ApifyClient("t", session=TextSession()))
    monkeypatch.setattr(search_server, "get_runner", lambda: runner)

    response = client.get("/api/results?runId=run-1")

    assert response.status_code == 502
    assert response.is_json
    assert response.get_json()["error"] == "Unexpected non-JSON response from upstream."


def test_missing_token_is_configuration_error(client, settings, monkeypatch):
    runner = runs.ScrapeRunner(dataclasses.replace(settings, apify_token=""))
    monkeypatch.setattr(search_server, "get_runner", lambda: runner)

    response = client.get("/api/run?q=Acme&source=google-maps")

    assert response.status_code == 500
    assert response.get_json() == {"error": "Missing APIFY_TOKEN"}


def test_unexpected_errors_are_json(client, use_runner):
    use_runner(DummyRunner(error=KeyError("boom")))

    response = client.get("/api/run?q=Acme&source=google-maps")

    assert response.status_code == 500
    assert response.get_json() == {"error": "internal error", "details": "KeyError"}


def test_upstream_error_status(client, use_runner):
    use_runner(DummyRunner(error=UpstreamUnavailable("Apify request failed")))
    assert client.get("/api/run?q=Acme&source=google-maps").status_code == 502


def test_unknown_route_is_json(client):
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.get_json()["error"] == "Not Found"


def test_health_lists_sources(client):
    body = client.get("/healthz").get_json()
    assert body["supported_source"] == "google-maps"
    assert "trustpilot" in body["known_sources"]


def test_run_with_huge_days_is_clamped(client, settings, use_runner):
    class RecordingClient:
        def __init__(self):
            self.payloads = []

        def start_run(self, actor_id, payload, wait_seconds=None):
            self.payloads.append(payload)
            return {"id": "run-5", "status": "READY"}

    apify = RecordingClient()
    use_runner(runs.ScrapeRunner(settings, client=apify))

    response = client.get("/api/run?q=Acme&source=google-maps&maxReviews=5&days=800000")

    assert response.status_code == 202
    body = response.get_json()
    assert body["runId"] == "run-5"
    assert body["startedAt"] is not None
    assert "reviewsStartDate" in apify.payloads[0]


def test_poll_echoes_start_time(client, use_runner):
    runner = use_runner(DummyRunner(poll=RunHandle(run_id="run-1", status=RunStatus.RUNNING)))

    client.get("/api/results?runId=run-1&startedAt=2026-10-01T10:00:00Z")

    handle = runner.polls[0][0]
    assert handle.started_at.isoformat() == "2026-10-01T10:00:00+00:00"
