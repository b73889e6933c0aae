import datetime

import pytest

from vibe_core import reward_config as config
from vibe_core.emotion_intelligence import (
    EmotionIntelligenceUpdater, get_current_time_slot, record_time_slot, update_emotion_weights,
)
from vibe_core.errors import UserNotFoundError, ValidationError


def at_hour(hour):
    return datetime.datetime(2026, 3, 10, hour, 0, tzinfo=datetime.timezone.utc)


def test_interaction_weights_are_strictly_ordered():
    w = config.EMOTION_INTERACTION_WEIGHTS
    assert w["post"] >= w["comment"] > w["react"] > w["view"] > 0


def test_weights_accumulate_without_normalization():
    weights = update_emotion_weights(None, "Happy", "view")
    weights = update_emotion_weights(weights, "Happy", "post")
    weights = update_emotion_weights(weights, "Sad", "react")
    assert weights == {"Happy": 5, "Sad": 2}


def test_input_weights_are_not_mutated():
    original = {"Happy": 1}
    update_emotion_weights(original, "Happy", "comment")
    assert original == {"Happy": 1}


def test_unknown_interaction_type_rejected():
    with pytest.raises(ValidationError):
        update_emotion_weights({}, "Happy", "share")


@pytest.mark.parametrize("hour,slot", [(4, "Night"), (5, "Morning"), (11, "Morning"), (12, "Afternoon"),
                                       (16, "Afternoon"), (17, "Evening"), (20, "Evening"), (21, "Night"), (0, "Night")])
def test_time_slot_boundaries(hour, slot):
    assert get_current_time_slot(at_hour(hour)) == slot


def test_recording_a_known_slot_is_a_noop():
    pattern = record_time_slot(["Morning"], "Morning")
    assert pattern == ["Morning"]
    assert record_time_slot(pattern, "Night") == ["Morning", "Night"]


def test_updater_persists_weights_and_time_pattern(store):
    updater = EmotionIntelligenceUpdater(store)
    updater.update("u1", "Chill", "react", now=at_hour(9))
    result = updater.update("u1", "Chill", "comment", now=at_hour(22))
    assert result["data"]["emotion_weights"] == {"Chill": 5}
    stored = store.get("user_interests", "u1")
    assert stored["time_pattern"] == ["Morning", "Night"]


def test_post_advances_streak_and_explorer(store, engine):
    engine.create_profile("u1", now=at_hour(8))
    updater = EmotionIntelligenceUpdater(store, engine)
    result = updater.update("u1", "Happy", "post", now=at_hour(8))
    assert result["data"]["posting_streak"]["current_streak"] == 1
    assert result["data"]["emotion_explorer"]["total_unique_emotions"] == 1


def test_unknown_emotion_rejected(store):
    with pytest.raises(ValidationError):
        EmotionIntelligenceUpdater(store).update("u1", "Bored", "view")


def test_failed_post_leaves_interests_untouched(store, engine):
    updater = EmotionIntelligenceUpdater(store, engine)
    with pytest.raises(UserNotFoundError):
        updater.update("ghost", "Happy", "post", now=at_hour(14))
    assert store.get("user_interests", "ghost") is None


def test_failed_post_keeps_previous_weights(store, engine):
    updater = EmotionIntelligenceUpdater(store, engine)
    updater.update("ghost", "Happy", "view", now=at_hour(9))
    with pytest.raises(UserNotFoundError):
        updater.update("ghost", "Happy", "post", now=at_hour(14))
    stored = store.get("user_interests", "ghost")
    assert stored["emotion_weights"] == {"Happy": 1}
    assert stored["time_pattern"] == ["Morning"]


def test_time_slot_uses_reference_timezone(monkeypatch):
    monkeypatch.setenv("VIBE_TIMEZONE", "Asia/Kolkata")
    # 20:00 UTC is 01:30 the next morning in Kolkata
    assert get_current_time_slot(at_hour(20)) == "Night"
    assert get_current_time_slot(at_hour(4)) == "Morning"


def test_post_lands_on_the_local_calendar_day(store, engine, monkeypatch):
    monkeypatch.setenv("VIBE_TIMEZONE", "Asia/Kolkata")
    engine.create_profile("u1", now=at_hour(8))
    result = EmotionIntelligenceUpdater(store, engine).update("u1", "Happy", "post", now=at_hour(20))
    assert result["data"]["time_slot"] == "Night"
    assert result["data"]["posting_streak"]["last_vibe_date"] == "2026-03-11"
