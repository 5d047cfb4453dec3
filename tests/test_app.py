"""Tests for the Flask HTTP boundary."""

import pytest

from poa.app import create_app
from poa.errors import IssuanceError
from poa.issuance import InMemoryArtifactStore, InMemoryIssuer, ProofIssuer
from tests.conftest import ADDRESS, START_MS


def start(client, address=ADDRESS, task_id="read-article"):
    response = client.post("/api/attention/start", json={"userAddress": address, "taskId": task_id})
    assert response.status_code == 200
    return response.get_json()["sessionId"]


def beat(client, session_id, address=ADDRESS, **extra):
    return client.post(
        "/api/attention/heartbeat",
        json={"sessionId": session_id, "userAddress": address, **extra},
    )


def end(client, session_id, address=ADDRESS):
    return client.post("/api/attention/end", json={"sessionId": session_id, "userAddress": address})


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "ok"


class TestStart:
    def test_start_session(self, client):
        response = client.post("/api/attention/start", json={"userAddress": ADDRESS, "taskId": "t1"})
        data = response.get_json()

        assert response.status_code == 200
        assert data["success"] is True
        assert data["startedAt"] == START_MS
        assert data["sessionId"]

    @pytest.mark.parametrize(
        "body",
        [
            {"taskId": "t1"},
            {"userAddress": ADDRESS},
            {"userAddress": "0x123", "taskId": "t1"},
            {"userAddress": "not-an-address-at-all-not-an-address-xx", "taskId": "t1"},
            {"userAddress": ADDRESS, "taskId": "   "},
            {"userAddress": ADDRESS, "taskId": 7},
        ],
    )
    def test_invalid_body(self, client, body):
        response = client.post("/api/attention/start", json=body)
        data = response.get_json()

        assert response.status_code == 400
        assert data["success"] is False
        assert data["code"] == "invalid_request"

    def test_non_json_body(self, client):
        response = client.post("/api/attention/start", data="hello", content_type="text/plain")
        assert response.status_code == 400


class TestHeartbeat:
    def test_heartbeat_counts(self, client, clock):
        session_id = start(client)
        clock.advance(30_000)
        first = beat(client, session_id).get_json()
        second = beat(client, session_id, timestamp=START_MS + 59_000).get_json()

        assert first["received"] is True
        assert first["heartbeatCount"] == 1
        assert first["timestamp"] == START_MS + 30_000
        assert second["heartbeatCount"] == 2
        assert second["timestamp"] == START_MS + 59_000

    def test_case_insensitive_identity(self, client):
        session_id = start(client, address=ADDRESS)
        response = beat(client, session_id, address=ADDRESS.lower())
        assert response.status_code == 200

    def test_unknown_session(self, client):
        response = beat(client, "missing")
        assert response.status_code == 404
        assert response.get_json()["code"] == "not_found"

    def test_wrong_identity(self, client):
        session_id = start(client)
        response = beat(client, session_id, address="0x" + "9" * 40)
        assert response.status_code == 403
        assert response.get_json()["code"] == "identity_mismatch"

    def test_missing_fields(self, client):
        response = client.post("/api/attention/heartbeat", json={"sessionId": "x"})
        assert response.status_code == 400

    @pytest.mark.parametrize("timestamp", [10**400, 2**53, -1])
    def test_out_of_range_timestamp_rejected(self, client, clock, timestamp):
        session_id = start(client)
        response = beat(client, session_id, timestamp=timestamp)

        assert response.status_code == 400
        assert response.get_json()["code"] == "invalid_request"

        # Nothing was recorded, so the session still finishes cleanly
        clock.advance(11_000)
        response = end(client, session_id)
        assert response.status_code == 200
        assert response.get_json()["heartbeatCount"] == 0

    def test_largest_safe_timestamp_accepted(self, client):
        session_id = start(client)
        response = beat(client, session_id, timestamp=2**53 - 1)
        assert response.status_code == 200
        assert response.get_json()["timestamp"] == 2**53 - 1


class TestEnd:
    def test_accepted_session_is_issued(self, client, clock, issuer):
        session_id = start(client)
        for _ in range(3):
            clock.advance(30_000)
            beat(client, session_id, timestamp=clock())

        response = end(client, session_id)
        data = response.get_json()

        assert response.status_code == 200
        assert data["success"] is True
        assert data["accepted"] is True
        assert data["duration"] == 90_000
        assert data["heartbeatCount"] == 3
        assert data["botScore"] == 0.0
        assert data["tokenId"] == "1"
        assert data["ipfsHash"].startswith("mem-")
        assert data["issuance"] == {"status": "issued"}
        assert issuer.issuer.get("1").owner == ADDRESS.lower()

    def test_too_short(self, client, clock):
        session_id = start(client)
        clock.advance(3_000)
        response = end(client, session_id)
        data = response.get_json()

        assert response.status_code == 400
        assert data["code"] == "duration_too_short"
        assert data["duration"] == 3_000
        assert data["minDuration"] == 10_000

        # Retry after enough time
        clock.advance(8_000)
        assert end(client, session_id).status_code == 200

    def test_bot_like(self, client, clock):
        session_id = start(client)
        clock.advance(120_000)
        response = end(client, session_id)
        data = response.get_json()

        assert response.status_code == 400
        assert data["code"] == "bot_like_rejected"
        assert data["accepted"] is False
        assert data["botScore"] == pytest.approx(0.8)

    def test_double_end(self, client, clock):
        session_id = start(client)
        clock.advance(11_000)
        assert end(client, session_id).status_code == 200

        response = end(client, session_id)
        assert response.status_code == 400
        assert response.get_json()["code"] == "invalid_state"

        assert beat(client, session_id).get_json()["code"] == "invalid_state"

    def test_issuance_failure_keeps_acceptance(self, config, store, clock):
        class FailingIssuer(ProofIssuer):
            def issue(self, proof):
                raise IssuanceError("Failed to upload to IPFS: timeout")

        app = create_app(
            config=config,
            store=store,
            issuer=FailingIssuer(InMemoryArtifactStore(), InMemoryIssuer()),
            clock=clock,
        )
        client = app.test_client()
        session_id = start(client)
        clock.advance(11_000)

        response = end(client, session_id)
        data = response.get_json()

        assert response.status_code == 200
        assert data["accepted"] is True
        assert data["tokenId"] is None
        assert data["issuance"]["status"] == "failed"
        assert store.get(session_id).state.value == "finalized_accepted"


class TestSessionSummary:
    def test_summary(self, client, clock):
        session_id = start(client)
        clock.advance(5_000)
        beat(client, session_id)

        data = client.get(f"/api/attention/session/{session_id}").get_json()
        assert data["state"] == "active"
        assert data["heartbeatCount"] == 1
        assert data["preview"]["penalties"] == {"too_short": 0.3}

    def test_unknown(self, client):
        assert client.get("/api/attention/session/missing").status_code == 404


class TestPoaRoutes:
    def test_lookup_minted_token(self, client, clock):
        session_id = start(client)
        clock.advance(11_000)
        end(client, session_id)

        data = client.get("/api/poa/1").get_json()
        assert data["success"] is True
        assert data["poa"]["owner"] == ADDRESS.lower()
        assert data["poa"]["proof"]["taskId"] == "read-article"

        user = client.get(f"/api/poa/user/{ADDRESS}").get_json()
        assert user["count"] == 1
        assert user["poas"][0]["tokenId"] == "1"

    def test_unknown_token(self, client):
        assert client.get("/api/poa/42").status_code == 404

    def test_user_without_tokens(self, client):
        data = client.get("/api/poa/user/0x" + "0" * 40).get_json()
        assert data["count"] == 0
        assert data["poas"] == []
