"""Tests for the HTTP API."""

import asyncio
import json
import time

import pytest
from fastapi.testclient import TestClient

from apk_forge.core.auth import SIGNATURE_HEADER, TIMESTAMP_HEADER, sign_request
from apk_forge.core.config import settings
from apk_forge.core.jobs import BuildScheduler
from apk_forge.main import create_app

DEMO_BODY = {
    "deployedUrl": "https://example.workers.dev",
    "appName": "Demo",
    "packageName": "fun.demo.app",
    "version": "1.0.0",
    "versionCode": 1,
}


class InstantBuildService:
    """Build service that succeeds immediately without touching the toolchain."""

    def __init__(self):
        self.requests = []

    async def run_build(self, params, workdir, on_stage=None):
        self.requests.append(params)
        if on_stage:
            on_stage("build")
        return "https://cdn.example/demo.apk"


class BlockedBuildService:
    """Build service that never finishes on its own."""

    async def run_build(self, params, workdir, on_stage=None):
        await asyncio.Event().wait()


@pytest.fixture
def scheduler_factory(work_dir):
    def factory(service, max_concurrent=2):
        scheduler = BuildScheduler(service, max_concurrent=max_concurrent, work_path=work_dir)
        BuildScheduler._instance = scheduler
        return scheduler

    previous = BuildScheduler._instance
    yield factory
    BuildScheduler._instance = previous


@pytest.fixture
def client(scheduler_factory):
    scheduler_factory(InstantBuildService())
    with TestClient(create_app()) as test_client:
        yield test_client


def _wait_for_status(client, build_id, wanted=("done", "failed"), timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/v1/builds/{build_id}/status").json()
        if body["status"] in wanted:
            return body
        time.sleep(0.02)
    raise AssertionError(f"Build {build_id} never reached {wanted}")


class TestBuildEndpoints:
    """Tests for /v1/builds."""

    def test_create_and_poll(self, client):
        """Verify a submitted build can be polled to completion."""
        response = client.post("/v1/builds", json=DEMO_BODY)

        assert response.status_code == 200
        build_id = response.json()["buildId"]

        status = _wait_for_status(client, build_id)
        assert status["id"] == build_id
        assert status["status"] == "done"
        assert status["artifactUrl"] == "https://cdn.example/demo.apk"
        assert status["error"] is None
        assert status["appName"] == "Demo"
        assert status["packageName"] == "fun.demo.app"
        assert status["startedAt"]

    def test_unknown_build(self, client):
        """Verify polling an unknown id returns 404."""
        response = client.get("/v1/builds/00000000-0000-0000-0000-000000000000/status")

        assert response.status_code == 404
        assert response.json()["detail"] == "Build not found"

    def test_list_builds(self, client):
        """Verify finished builds appear in the listing."""
        build_id = client.post("/v1/builds", json=DEMO_BODY).json()["buildId"]
        _wait_for_status(client, build_id)

        body = client.get("/v1/builds").json()

        assert body["success"] is True
        assert [b["id"] for b in body["data"]] == [build_id]

    @pytest.mark.parametrize("field,value", [
        ("deployedUrl", "http://example.workers.dev"),
        ("deployedUrl", "https://example.com"),
        ("deployedUrl", "https://workers.dev.evil.com"),
        ("appName", ""),
        ("appName", "x" * 101),
        ("packageName", "demo.app"),
        ("packageName", "Fun.Demo.App"),
        ("packageName", "fun.1demo.app"),
        ("version", "1.0"),
        ("version", "v1.0.0"),
        ("versionCode", 0),
        ("versionCode", 2_100_000_001),
        ("versionCode", "1"),
        ("versionCode", True),
        ("versionCode", 1.5),
        ("iconUrl", "http://icons.example/icon.png"),
    ])
    def test_validation_errors(self, client, field, value):
        """Verify invalid fields are rejected with 400 and nothing is recorded."""
        body = dict(DEMO_BODY, **{field: value})

        response = client.post("/v1/builds", json=body)

        assert response.status_code == 400
        payload = response.json()
        assert payload["error"] == "Validation failed"
        assert any(field in d["loc"] for d in payload["details"])
        assert client.get("/v1/builds").json()["data"] == []

    def test_missing_field(self, client):
        """Verify a request missing a required field is rejected."""
        body = {k: v for k, v in DEMO_BODY.items() if k != "packageName"}

        response = client.post("/v1/builds", json=body)

        assert response.status_code == 400

    def test_empty_icon_url_is_accepted(self, client):
        """Verify an empty iconUrl is treated as absent."""
        response = client.post("/v1/builds", json=dict(DEMO_BODY, iconUrl=""))

        assert response.status_code == 200

    def test_integral_float_version_code_is_accepted(self, client):
        """Verify versionCode 1.0 is treated as the integer 1."""
        response = client.post("/v1/builds", json=dict(DEMO_BODY, versionCode=1.0))

        assert response.status_code == 200
        status = _wait_for_status(client, response.json()["buildId"])
        assert status["status"] == "done"

    def test_capacity_exceeded(self, scheduler_factory):
        """Verify requests beyond capacity get 429 and no record."""
        scheduler_factory(BlockedBuildService(), max_concurrent=1)
        with TestClient(create_app()) as client:
            assert client.post("/v1/builds", json=DEMO_BODY).status_code == 200

            response = client.post("/v1/builds", json=DEMO_BODY)

            assert response.status_code == 429
            assert "Too many concurrent builds" in response.json()["detail"]
            assert len(client.get("/v1/builds").json()["data"]) == 1


class TestSignedRequests:
    """Tests for HMAC request signing."""

    SECRET = "test-build-secret"

    @pytest.fixture(autouse=True)
    def _secret(self, monkeypatch):
        monkeypatch.setattr(settings, "BUILD_SECRET", self.SECRET)

    def _signed_post(self, client, body, timestamp=None, secret=None):
        raw = json.dumps(body).encode()
        ts = str(timestamp if timestamp is not None else int(time.time()))
        signature = sign_request(secret or self.SECRET, ts, "POST", "/v1/builds", raw)
        return client.post(
            "/v1/builds",
            content=raw,
            headers={
                "Content-Type": "application/json",
                SIGNATURE_HEADER: signature,
                TIMESTAMP_HEADER: ts,
            },
        )

    def test_valid_signature(self, client):
        """Verify a correctly signed request is accepted."""
        response = self._signed_post(client, DEMO_BODY)

        assert response.status_code == 200
        assert "buildId" in response.json()

    def test_unsigned_request_rejected(self, client):
        """Verify requests without a signature get 401."""
        response = client.post("/v1/builds", json=DEMO_BODY)

        assert response.status_code == 401

    def test_wrong_secret_rejected(self, client):
        """Verify a signature made with another secret is rejected."""
        response = self._signed_post(client, DEMO_BODY, secret="other-secret")

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid HMAC signature"

    def test_stale_timestamp_rejected(self, client):
        """Verify signatures outside the clock skew window are rejected."""
        response = self._signed_post(client, DEMO_BODY, timestamp=int(time.time()) - 120)

        assert response.status_code == 401
        assert "expired" in response.json()["detail"]

    def test_status_requires_signature(self, client):
        """Verify status polls are also signed."""
        response = client.get("/v1/builds/some-id/status")

        assert response.status_code == 401

    def test_signed_status_poll(self, client):
        """Verify a signed GET reaches the status handler."""
        ts = str(int(time.time()))
        path = "/v1/builds/some-id/status"
        signature = sign_request(self.SECRET, ts, "GET", path, b"")

        response = client.get(path, headers={SIGNATURE_HEADER: signature, TIMESTAMP_HEADER: ts})

        assert response.status_code == 404


class TestSystemEndpoints:
    """Tests for health and capabilities."""

    def test_health(self, client):
        """Verify health reports build slot usage."""
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["services"]["activeBuilds"] == 0
        assert body["services"]["maxConcurrentBuilds"] == 2

    def test_capabilities(self, client):
        """Verify capabilities describe the configured toolchain."""
        body = client.get("/v1/capabilities").json()

        assert body["builds"]["capacity"] == 2
        assert body["toolchain"]["buildCommand"].startswith("./gradlew")
        assert body["publisher"] == settings.PUBLISHER

    def test_websocket_receives_build_updates(self, client):
        """Verify websocket clients see every status change of a build."""
        with client.websocket_connect("/v1/ws") as ws:
            client.post("/v1/builds", json=DEMO_BODY)

            statuses = []
            while not statuses or statuses[-1] not in ("done", "failed"):
                message = ws.receive_json()
                assert message["type"] == "BUILD_UPDATE"
                statuses.append(message["payload"]["status"])

        assert statuses[0] == "queued"
        assert statuses[-1] == "done"
