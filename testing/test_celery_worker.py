import pytest

import celery_worker
from celery_worker import fraud_scan_task, track_engagement_task, update_emotion_intelligence_task


@pytest.fixture(autouse=True)
def memory_backend(monkeypatch):
    monkeypatch.setenv("VIBE_STORE_BACKEND", "memory")


def test_emotion_task_runs_the_update():
    result = update_emotion_intelligence_task("u1", "Calm", "react")
    assert result["success"] is True
    assert result["data"]["emotion_weights"] == {"Calm": 2}


def test_emotion_task_reports_the_error_code():
    result = update_emotion_intelligence_task("ghost", "Happy", "post")
    assert result == {"success": False, "error": "user_not_found"}


def test_emotion_task_rejects_unknown_interaction():
    result = update_emotion_intelligence_task("u1", "Happy", "share")
    assert result == {"success": False, "error": "validation_error"}


def test_engagement_task_never_raises():
    result = track_engagement_task("u1", {"vibe_id": "", "emotion": "Happy"})
    assert result["success"] is False


def test_fraud_scan_posts_summary_to_webhook(monkeypatch):
    sent = []
    monkeypatch.setenv("FRAUD_WEBHOOK_URL", "http://hooks.local/fraud")
    monkeypatch.setattr(celery_worker.requests, "post", lambda url, json, timeout: sent.append((url, json, timeout)))

    summary = fraud_scan_task()
    assert summary["scanned"] == 0
    assert summary["pages"] == 1
    assert sent == [("http://hooks.local/fraud", summary, 15)]
