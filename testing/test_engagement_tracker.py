import pytest

from vibe_core.engagement_tracker import (
    EngagementTracker, accumulate_engagement, classify_content_style, listen_sample,
)


def event(**overrides):
    base = {"user_id": "u1", "vibe_id": "v1", "emotion": "Happy", "text_length": 30}
    base.update(overrides)
    return base


def test_first_engagement_seeds_profile(now):
    profile = accumulate_engagement(None, event(), now)
    assert profile["emotion_affinity"] == {"Happy": 1}
    assert profile["content_style"] == {"short_text": 1, "medium_text": 0, "long_text": 0}
    assert profile["total_engagements"] == 1


def test_more_like_this_displaces_base_weight(now):
    profile = accumulate_engagement(None, event(), now)
    profile = accumulate_engagement(profile, event(interactions={"more_like_this": True}), now)
    assert profile["emotion_affinity"]["Happy"] == 4
    assert profile["focus_emotion"] == "Happy"
    assert profile["focus_emotion_timestamp"] == now.isoformat()
    assert profile["total_engagements"] == 2


def test_interest_weight_and_plain_view(now):
    profile = accumulate_engagement(None, event(), now)
    profile = accumulate_engagement(profile, event(interactions={"interest": True}), now)
    assert profile["emotion_affinity"]["Happy"] == 3
    profile = accumulate_engagement(profile, event(emotion="Sad"), now)
    assert profile["emotion_affinity"]["Sad"] == 1
    assert profile["focus_emotion"] is None


@pytest.mark.parametrize("length,bucket", [(0, "short_text"), (49, "short_text"), (50, "medium_text"),
                                           (199, "medium_text"), (200, "long_text")])
def test_content_style_buckets(length, bucket):
    assert classify_content_style(length) == bucket


def test_listen_sample_is_clamped():
    assert listen_sample(True, 0) == 1.0
    assert listen_sample(False, 15000) == 0.5
    assert listen_sample(False, 90000) == 1.0
    assert listen_sample(False, 0) is None


def test_listen_rate_mean_ignores_events_without_listen_signal(now):
    profile = accumulate_engagement(None, event(completed=True), now)
    profile = accumulate_engagement(profile, event(), now)
    profile = accumulate_engagement(profile, event(listened_ms=15000), now)
    # Two listen samples (1.0 and 0.5) over three engagements
    assert profile["avg_listen_rate"] == pytest.approx(0.75)
    assert profile["listen_sample_count"] == 2
    assert profile["total_engagements"] == 3


def test_tracker_persists_profile(store, now):
    tracker = EngagementTracker(store)
    result = tracker.track("u1", event(), now)
    assert result["success"]
    tracker.track("u1", event(interactions={"more_like_this": True}), now)
    stored = store.get("user_interests", "u1")
    assert stored["emotion_affinity"]["Happy"] == 4
    assert stored["total_engagements"] == 2


class BrokenStore:
    def run_transaction(self, fn):
        raise ConnectionError("database unavailable")


def test_tracker_never_raises(caplog):
    result = EngagementTracker(BrokenStore()).track("u1", event())
    assert result == {"success": False, "error": "engagement_failed"}
    assert "dropped engagement event" in caplog.text


def test_tracker_rejects_incomplete_events_without_raising(store):
    result = EngagementTracker(store).track("u1", {"vibe_id": "v1"})
    assert result["success"] is False
    assert result["error"] == "validation_error"
    assert store.get("user_interests", "u1") is None
