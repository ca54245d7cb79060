from __future__ import annotations

from fastapi.testclient import TestClient


def test_create_session_generates_id(client: TestClient) -> None:
    response = client.post("/sessions", json={})

    assert response.status_code == 201
    data = response.json()
    assert data["sessionId"]
    assert data["currentStage"] == "think-like-a-founder"
    assert data["completedStages"] == []


def test_create_session_accepts_legacy_stage(client: TestClient) -> None:
    response = client.post(
        "/sessions",
        json={"sessionId": "demo", "currentStage": "problem-discovery", "completedStages": ["think-like-a-founder"]},
    )

    assert response.status_code == 201
    assert response.json()["currentStage"] == "problem-definition"
    assert client.get("/sessions/demo").json()["completedStages"] == ["think-like-a-founder"]


def test_duplicate_session_conflicts(client: TestClient) -> None:
    client.post("/sessions", json={"sessionId": "demo"})

    response = client.post("/sessions", json={"sessionId": "demo"})

    assert response.status_code == 409
    assert response.json()["error"] == "conflict"


def test_unknown_session_is_404(client: TestClient) -> None:
    response = client.get("/sessions/missing")

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "not_found"
    assert body["resource_id"] == "missing"


def test_complete_stage_returns_session_and_progress(client: TestClient) -> None:
    client.post("/sessions", json={"sessionId": "demo"})

    response = client.post(
        "/sessions/demo/stages/problem-discovery/complete",
        json={"data": {"problemStatement": "Remote teams lose focus"}},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["session"]["completedStages"] == ["problem-definition"]
    assert body["session"]["currentStage"] == "market-research"
    assert body["session"]["data"]["problem-definition"] == {"problemStatement": "Remote teams lose focus"}
    assert body["progress"]["progressPercent"] == 9


def test_complete_stage_with_next_stage_override(client: TestClient) -> None:
    client.post("/sessions", json={"sessionId": "demo"})

    response = client.post("/sessions/demo/stages/market-research/complete", json={"nextStage": "feedback"})

    assert response.json()["session"]["currentStage"] == "feedback"


def test_unknown_stage_is_rejected(client: TestClient) -> None:
    client.post("/sessions", json={"sessionId": "demo"})

    response = client.post("/sessions/demo/stages/ideation/complete", json={})

    assert response.status_code == 400
    assert response.json()["error"] == "unknown_stage"
    assert response.json()["stage"] == "ideation"
    assert client.get("/sessions/demo/progress").json()["stagesCompleted"] == 0


def test_invalid_stage_payload_is_400(client: TestClient) -> None:
    client.post("/sessions", json={"sessionId": "demo"})

    response = client.post("/sessions/demo/stages/feedback/complete", json={"data": {"rating": "great"}})

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_list_stage_payload_is_400(client: TestClient) -> None:
    client.post("/sessions", json={"sessionId": "demo"})

    response = client.post("/sessions/demo/stages/feedback/complete", json={"data": [["rating", 5]]})

    assert response.status_code == 400
    assert client.get("/sessions/demo").json()["completedStages"] == []


def test_malformed_body_is_400(client: TestClient) -> None:
    response = client.post("/sessions", json={"sessionId": ""})

    assert response.status_code == 400
    assert response.json()["errors"]


def test_patch_session_merges_data(client: TestClient) -> None:
    client.post("/sessions", json={"sessionId": "demo", "data": {"problem": {"problemStatement": "v1"}}})

    response = client.patch(
        "/sessions/demo",
        json={"currentStage": "mvp", "data": {"problem-definition": {"targetUser": "founders"}}},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["currentStage"] == "requirements"
    assert body["data"]["problem-definition"] == {"problemStatement": "v1", "targetUser": "founders"}


def test_progress_lists_every_stage(client: TestClient) -> None:
    client.post("/sessions", json={"sessionId": "demo", "currentStage": "market-research"})

    response = client.get("/sessions/demo/progress")

    assert response.status_code == 200
    details = response.json()["stageDetails"]
    assert len(details) == 11
    assert details[2]["status"] == "in_progress"
    assert details[0]["status"] == "pending"


def test_admin_tracking(client: TestClient) -> None:
    client.post("/sessions", json={"sessionId": "a"})
    client.post("/sessions", json={"sessionId": "b"})
    client.post("/sessions/a/stages/think-like-a-founder/complete", json={})

    response = client.get("/admin/tracking")

    assert response.status_code == 200
    body = response.json()
    assert body["totalSessions"] == 2
    assert body["totalStages"] == 11
    assert body["sessions"][0]["sessionId"] == "a"
