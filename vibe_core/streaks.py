import os
import datetime
from typing import Optional, Union
from zoneinfo import ZoneInfo

from . import reward_config as config

DateLike = Union[datetime.date, str, None]


def reference_timezone() -> datetime.tzinfo:
    """Timezone that defines calendar days and time-of-day slots (VIBE_TIMEZONE)."""
    name = os.getenv("VIBE_TIMEZONE", "UTC")
    if name.upper() == "UTC":
        return datetime.timezone.utc
    return ZoneInfo(name)


def local_now() -> datetime.datetime:
    return datetime.datetime.now(reference_timezone())


def local_today() -> datetime.date:
    return local_now().date()


def _as_date(value: DateLike) -> Optional[datetime.date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value.astimezone(reference_timezone()).date() if value.tzinfo else value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


def calculate_vibe_streak(last_vibe_date: DateLike, current_streak: int = 0, longest_streak: int = 0,
                          today: Optional[datetime.date] = None) -> dict:
    """
    Advances the posting streak for one post made `today`.

    Same calendar day keeps the streak, the next day extends it and any longer
    gap restarts it at 1. A last date in the future (clock skew) counts as
    the same day.
    """
    today = today or local_today()
    last = _as_date(last_vibe_date)

    if last is None:
        new_streak = 1
    else:
        elapsed = (today - last).days
        if elapsed <= 0:
            new_streak = current_streak
        elif elapsed == 1:
            new_streak = current_streak + 1
        else:
            new_streak = 1

    return {
        "current_streak": new_streak,
        "longest_streak": max(longest_streak, new_streak),
        "last_vibe_date": today.isoformat(),
    }


def update_emotion_explorer(progress: Optional[dict], emotion: str) -> dict:
    explored = list((progress or {}).get("emotions_explored", []))
    if emotion not in explored:
        explored.append(emotion)
    total = len(explored)
    return {
        "emotions_explored": explored,
        "total_unique_emotions": total,
        "explorer_level": total // config.EMOTIONS_PER_EXPLORER_LEVEL,
        "last_explored_emotion": emotion,
    }


def check_streak_milestone(streak: int) -> Optional[dict]:
    """The milestone reward for exactly this streak length, if any."""
    reward = config.STREAK_MILESTONES.get(streak)
    if reward is None:
        return None
    return {"milestone": streak, "category": "streak", **reward}


def check_explorer_milestone(total_unique_emotions: int) -> Optional[dict]:
    reward = config.EXPLORER_MILESTONES.get(total_unique_emotions)
    if reward is None:
        return None
    return {"milestone": total_unique_emotions, "category": "explorer", **reward}
