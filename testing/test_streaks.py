import datetime

from vibe_core.streaks import (
    calculate_vibe_streak, check_explorer_milestone, check_streak_milestone, update_emotion_explorer,
)

TODAY = datetime.date(2026, 3, 10)


def days_ago(n):
    return (TODAY - datetime.timedelta(days=n)).isoformat()


def test_streak_extends_after_yesterday():
    streak = calculate_vibe_streak(days_ago(1), 3, 5, today=TODAY)
    assert streak == {"current_streak": 4, "longest_streak": 5, "last_vibe_date": "2026-03-10"}


def test_streak_resets_after_gap():
    streak = calculate_vibe_streak(days_ago(5), 10, 10, today=TODAY)
    assert streak == {"current_streak": 1, "longest_streak": 10, "last_vibe_date": "2026-03-10"}


def test_first_post_starts_streak():
    streak = calculate_vibe_streak(None, 0, 0, today=TODAY)
    assert streak["current_streak"] == 1
    assert streak["longest_streak"] == 1


def test_same_day_post_does_not_double_count():
    streak = calculate_vibe_streak(days_ago(0), 4, 6, today=TODAY)
    assert streak == {"current_streak": 4, "longest_streak": 6, "last_vibe_date": "2026-03-10"}


def test_longest_streak_follows_current():
    streak = calculate_vibe_streak(days_ago(1), 6, 6, today=TODAY)
    assert streak["longest_streak"] == 7


def test_accepts_date_objects():
    streak = calculate_vibe_streak(TODAY - datetime.timedelta(days=1), 1, 1, today=TODAY)
    assert streak["current_streak"] == 2


def test_explorer_counts_each_emotion_once():
    progress = update_emotion_explorer(None, "Happy")
    assert progress["total_unique_emotions"] == 1
    progress = update_emotion_explorer(progress, "Happy")
    assert progress["total_unique_emotions"] == 1
    assert progress["emotions_explored"] == ["Happy"]


def test_explorer_level_steps_every_three_emotions():
    progress = None
    for emotion in ["Happy", "Sad", "Chill", "Motivated", "Lonely", "Angry"]:
        progress = update_emotion_explorer(progress, emotion)
    assert progress["total_unique_emotions"] == 6
    assert progress["explorer_level"] == 2


def test_milestones_only_on_exact_counts():
    assert check_streak_milestone(7)["badge"] == "week_warrior"
    assert check_streak_milestone(8) is None
    assert check_explorer_milestone(16)["badge"] == "emotion_guru"
    assert check_explorer_milestone(4) is None
