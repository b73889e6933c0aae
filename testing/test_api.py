import pytest
from fastapi.testclient import TestClient

import api.main as api_main


class InlineTask:
    """Runs the engagement task body in-process instead of through the broker."""

    def __init__(self):
        self.calls = []

    def delay(self, user_id, event):
        self.calls.append((user_id, event))
        return api_main.engagement_tracker.track(user_id, event)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("VIBE_STORE_BACKEND", "memory")
    monkeypatch.setattr(api_main, "track_engagement_task", InlineTask())
    with TestClient(api_main.app) as test_client:
        yield test_client


def create(client, user_id, **body):
    return client.post(f"/v1/users/{user_id}", json=body or None)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["engine_initialized"] is True


def test_create_profile_is_idempotent(client):
    assert create(client, "u1").status_code == 201
    response = create(client, "u1")
    assert response.status_code == 200
    assert response.json()["data"]["karma"] == 100


def test_transaction_and_progress(client):
    create(client, "u1")
    response = client.post("/v1/rewards/transaction", json={"userId": "u1", "action": "grant", "xpDelta": 120})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["new_balances"]["level"] == 2
    assert data["level_up"]["bonus_coins"] == 50

    progress = client.get("/v1/users/u1/progress").json()["data"]
    assert progress["progress"]["current"] == 20
    assert progress["balances"]["coins"] == 50


def test_insufficient_funds_maps_to_402(client):
    create(client, "u1")
    response = client.post("/v1/rewards/transaction", json={"userId": "u1", "action": "spend", "coinsDelta": -10})
    assert response.status_code == 402
    assert response.json() == {
        "success": False,
        "error": "insufficient_funds",
        "message": "Not enough coins",
        "details": {"currency": "coins", "required": 10, "available": 0},
    }


def test_unknown_user_maps_to_404(client):
    response = client.get("/v1/users/ghost/karma")
    assert response.status_code == 404
    assert response.json()["error"] == "user_not_found"


def test_karma_endpoints(client):
    create(client, "u1")
    assert client.get("/v1/users/u1/karma").json()["data"]["tier"]["name"] == "New User"
    response = client.post("/v1/users/u1/karma", json={"action": "content_shared"})
    assert response.json()["data"]["karma"] == 110


def test_award_gift_and_purchase(client):
    create(client, "alice")
    create(client, "bob")
    for _ in range(2):
        client.post("/v1/rewards/award", json={"userId": "alice", "action": "watch_ad"})

    gift = client.post("/v1/rewards/gift", json={"fromUserId": "alice", "toUserId": "bob", "giftType": "star"})
    assert gift.status_code == 200
    assert gift.json()["data"]["sender"]["new_balances"]["coins"] == 175

    purchase = client.post("/v1/rewards/purchase", json={"userId": "alice", "itemId": "streak_freeze"})
    assert purchase.json()["data"]["new_balances"]["coins"] == 25

    self_gift = client.post("/v1/rewards/gift", json={"fromUserId": "bob", "toUserId": "bob", "giftType": "rose"})
    assert self_gift.status_code == 400


def test_daily_cap_maps_to_429(client):
    create(client, "u1")
    for _ in range(3):
        client.post("/v1/rewards/award", json={"userId": "u1", "action": "post_vibe"})
    response = client.post("/v1/rewards/award", json={"userId": "u1", "action": "post_vibe"})
    assert response.status_code == 429
    assert response.json()["error"] == "daily_cap_reached"


def test_mission_claim_conflicts(client):
    create(client, "u1")
    missions = client.get("/v1/missions/u1").json()["data"]
    mission_id = missions["daily"]["missions"][0]["id"]
    response = client.post("/v1/missions/claim", json={"userId": "u1", "missionId": mission_id})
    assert response.status_code == 409
    assert response.json()["error"] == "not_completed"


def test_engagement_is_queued(client):
    payload = {"userId": "u1", "vibeId": "v1", "emotion": "Happy", "textLength": 30}
    response = client.post("/v1/engagement", json=payload)
    assert response.status_code == 202
    payload["interactions"] = {"moreLikeThis": True}
    client.post("/v1/engagement", json=payload)

    stored = api_main.store.get("user_interests", "u1")
    assert stored["emotion_affinity"] == {"Happy": 4}
    assert stored["focus_emotion"] == "Happy"
    assert api_main.track_engagement_task.calls[1][1]["interactions"]["more_like_this"] is True


def test_emotion_intelligence_post(client):
    create(client, "u1")
    response = client.post("/v1/emotion-intelligence/update",
                           json={"userId": "u1", "emotion": "Happy", "interactionType": "post"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["emotion_weights"] == {"Happy": 4}
    assert data["posting_streak"]["current_streak"] == 1


def test_emotion_intelligence_rejects_bad_interaction(client):
    response = client.post("/v1/emotion-intelligence/update",
                           json={"userId": "u1", "emotion": "Happy", "interactionType": "share"})
    assert response.status_code == 400


def test_fraud_scan_endpoint(client):
    create(client, "u1")
    response = client.post("/admin/fraud-scan", json={"pageSize": 10})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data == {"scanned": 1, "flagged": [], "next_cursor": None}


def test_transactions_endpoint_filters_by_type(client):
    create(client, "u1")
    client.post("/v1/rewards/transaction", json={"userId": "u1", "action": "grant", "coinsDelta": 30})
    client.post("/v1/rewards/transaction", json={"userId": "u1", "action": "spend", "coinsDelta": -10})

    response = client.get("/v1/users/u1/transactions", params={"type": "spend"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    assert data["transactions"][0]["coins_change"] == -10

    assert client.get("/v1/users/u1/transactions", params={"limit": 1}).json()["data"]["total"] == 1
    assert client.get("/v1/users/u1/transactions", params={"type": "refund"}).status_code == 400
