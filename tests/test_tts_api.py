import pytest
from fastapi.testclient import TestClient

from conftest import FakeProvider, InMemoryObjectStore, fake_audio, no_sleep
from ttschunker.api.dependencies import get_pipeline
from ttschunker.api.main import app
from ttschunker.services.audio_assembler import AudioAssembler
from ttschunker.services.pipeline import TTSPipeline
from ttschunker.services.publisher import Publisher
from ttschunker.services.synthesis_client import SynthesisClient

PCM = {"audioEncoding": "PCM"}


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def pipeline(provider):
    pipeline = TTSPipeline(
        SynthesisClient(provider, timeout=5),
        AudioAssembler(),
        publisher=Publisher(InMemoryObjectStore(), sleep=no_sleep),
        max_segment_bytes=6,
    )
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield pipeline
    app.dependency_overrides.clear()
    pipeline.client.close()


@pytest.fixture
def client(pipeline):
    return TestClient(app)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_status_reports_configuration(client):
    resp = client.get("/status")
    assert resp.status_code == 200
    data = resp.json()
    assert data["provider"] == "fake"
    assert data["storage"]["configured"] is True
    assert data["limits"]["maxSegmentBytes"] == 6
    assert data["limits"]["minIntroSeconds"] == 16.0


def test_chunked_synthesis(client):
    resp = client.post(
        "/tts/chunked",
        json={"sessionId": "s1", "text": "One. Two. Three.", "audioConfig": PCM, "concurrency": 2},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["sessionId"] == "s1"
    assert data["count"] == 3
    assert data["summaryBytesApprox"] == 30
    assert data["mergedUrl"] == "https://cdn.example.com/s1/merged.pcm"
    assert [c["index"] for c in data["chunks"]] == [0, 1, 2]
    assert data["failedIndices"] == []


def test_chunked_synthesis_reports_partial_failure(client, provider):
    provider.fail_on = {"Two"}

    resp = client.post(
        "/tts/chunked", json={"sessionId": "s1", "text": "One. Two. Three.", "audioConfig": PCM}
    )

    assert resp.status_code == 200
    assert resp.json()["failedIndices"] == [1]
    assert resp.json()["warnings"]


def test_all_failed_is_server_error_with_indices(client, provider):
    provider.fail_on = {"."}

    resp = client.post(
        "/tts/chunked", json={"sessionId": "s1", "text": "One. Two.", "audioConfig": PCM}
    )

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "AllSegmentsFailedError"
    assert body["failedIndices"] == [0, 1]


def test_error_details_hidden_when_disabled(client, provider):
    provider.fail_on = {"."}
    app.state.expose_error_details = False
    try:
        resp = client.post(
            "/tts/chunked", json={"sessionId": "s1", "text": "One.", "audioConfig": PCM}
        )
    finally:
        app.state.expose_error_details = True

    assert resp.status_code == 500
    assert resp.json()["detail"] == "The request could not be completed"


@pytest.mark.parametrize(
    "body",
    [
        {"sessionId": "a/b", "text": "Hi."},
        {"text": "Hi."},
        {"sessionId": "s1", "text": "Hi.", "audioConfig": {"speakingRate": 10}},
        {"sessionId": "s1", "text": "Hi.", "concurrency": 0},
    ],
)
def test_bad_requests_are_400(client, body, provider):
    resp = client.post("/tts/chunked", json=body)

    assert resp.status_code == 400
    assert resp.json()["error"] == "InputError"
    assert provider.calls == []


def test_blank_text_is_404(client):
    resp = client.post("/tts/chunked", json={"sessionId": "s1", "text": "  "})
    assert resp.status_code == 404


def test_async_job_flow(client):
    resp = client.post(
        "/tts", json={"sessionId": "job1", "text": "One. Two. Three.", "audioConfig": PCM}
    )

    assert resp.status_code == 202
    assert resp.json() == {
        "sessionId": "job1",
        "statusUrl": "/tts/job1/status",
        "resultUrl": "/tts/job1/audio",
    }

    # Background tasks have run by the time TestClient returns
    status = client.get("/tts/job1/status").json()
    assert status["status"] == "done"
    assert status["progress"] == 100.0

    audio = client.get("/tts/job1/audio")
    assert audio.status_code == 200
    assert audio.headers["content-type"].startswith("audio/L16")
    assert audio.content == fake_audio("One.") + fake_audio("Two.") + fake_audio("Three.")


def test_async_job_failure_is_reported(client, provider):
    provider.fail_on = {"."}

    client.post("/tts", json={"sessionId": "job2", "text": "One.", "audioConfig": PCM})

    status = client.get("/tts/job2/status").json()
    assert status["status"] == "error"
    assert status["error"] == "All 1 segments failed to synthesize"
    assert client.get("/tts/job2/audio").status_code == 404


def test_async_job_with_invalid_config_is_rejected_before_queueing(client, provider):
    resp = client.post(
        "/tts", json={"sessionId": "bad", "text": "One.", "audioConfig": {"speakingRate": 10}}
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "InputError"
    assert client.get("/tts/bad/status").status_code == 404
    assert provider.calls == []


def test_operation_timeout_is_503(client, pipeline, provider):
    provider.delay = 0.5
    pipeline.operation_timeout = 0.1

    resp = client.post(
        "/tts/chunked",
        json={"sessionId": "s1", "text": "One.", "audioConfig": PCM, "concurrency": 1},
    )

    assert resp.status_code == 503
    body = resp.json()
    assert body["error"] == "PipelineTimeoutError"
    assert body["completed"] == 0
    assert body["total"] == 1


def test_active_job_conflicts(client, pipeline):
    pipeline.jobs.create("busy")

    resp = client.post("/tts", json={"sessionId": "busy", "text": "One."})

    assert resp.status_code == 409


def test_unknown_job_is_404(client):
    assert client.get("/tts/nope/status").status_code == 404
    assert client.get("/tts/nope/audio").status_code == 404


def test_podcast_requires_bumpers(client):
    resp = client.post("/tts/s1/podcast", json={})
    assert resp.status_code == 400
