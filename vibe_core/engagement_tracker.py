import copy
import logging
import datetime
from typing import Optional

from . import reward_config as config
from .errors import ValidationError

logger = logging.getLogger(__name__)


def new_interest_profile(user_id: str) -> dict:
    return {
        "user_id": user_id,
        "emotion_affinity": {},
        "content_style": {"short_text": 0, "medium_text": 0, "long_text": 0},
        "avg_listen_rate": 0.0,
        # Denominator of the listen-rate mean. Only listen signals count, so it
        # can trail total_engagements.
        "listen_sample_count": 0,
        "total_engagements": 0,
        "focus_emotion": None,
        "focus_emotion_timestamp": None,
        "time_pattern": [],
        "emotion_weights": {},
    }


def classify_content_style(text_length: Optional[int]) -> str:
    text_length = text_length or 0
    if text_length < config.SHORT_TEXT_MAX_LENGTH:
        return "short_text"
    if text_length < config.MEDIUM_TEXT_MAX_LENGTH:
        return "medium_text"
    return "long_text"


def affinity_weight(interactions: Optional[dict]) -> int:
    """Strongest signal wins: more-like-this over interest over a plain view."""
    interactions = interactions or {}
    if interactions.get("more_like_this"):
        return config.AFFINITY_WEIGHTS["more_like_this"]
    if interactions.get("interest"):
        return config.AFFINITY_WEIGHTS["interest"]
    return config.AFFINITY_WEIGHTS["view"]


def listen_sample(completed: bool, listened_ms: Optional[int]) -> Optional[float]:
    """Listen rate in [0, 1] for one event, or None when the event carries no listen signal."""
    if completed:
        return 1.0
    if listened_ms:
        return min(1.0, max(0.0, listened_ms / config.FULL_LISTEN_MS))
    return None


def accumulate_engagement(profile: Optional[dict], event: dict, now: Optional[datetime.datetime] = None) -> dict:
    """
    Returns the InterestProfile after one engagement event.

    The first tracked event for a user seeds the emotion's affinity at 1 whatever the
    signal strength; later events add the affinity_weight of the event.
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    emotion = event["emotion"]
    interactions = event.get("interactions") or {}
    is_first = not profile or not profile.get("total_engagements")
    profile = copy.deepcopy(profile) if profile else new_interest_profile(event["user_id"])

    affinity = profile.setdefault("emotion_affinity", {})
    if is_first:
        affinity[emotion] = 1
    else:
        affinity[emotion] = affinity.get(emotion, 0) + affinity_weight(interactions)

    style = profile.setdefault("content_style", {"short_text": 0, "medium_text": 0, "long_text": 0})
    bucket = classify_content_style(event.get("text_length"))
    style[bucket] = style.get(bucket, 0) + 1

    sample = listen_sample(event.get("completed", False), event.get("listened_ms"))
    if sample is not None:
        n = profile.get("listen_sample_count", 0) + 1
        profile["avg_listen_rate"] = (profile.get("avg_listen_rate", 0.0) * (n - 1) + sample) / n
        profile["listen_sample_count"] = n

    if not is_first and interactions.get("more_like_this"):
        profile["focus_emotion"] = emotion
        profile["focus_emotion_timestamp"] = now.isoformat()

    profile["total_engagements"] = profile.get("total_engagements", 0) + 1
    profile["last_updated"] = now.isoformat()
    return profile


class EngagementTracker:
    """
    Feeds per-vibe engagement events into the user's InterestProfile.

    Tracking is at-most-once: any failure is logged and the event dropped, so
    callers never see an exception from track().
    """

    def __init__(self, store):
        self.store = store

    def track(self, user_id: str, event: dict, now: Optional[datetime.datetime] = None) -> dict:
        try:
            if not user_id or not event.get("vibe_id") or not event.get("emotion"):
                raise ValidationError("user_id, vibe_id and emotion are required")
            event = dict(event, user_id=user_id)

            def _apply(txn):
                profile = accumulate_engagement(txn.get("user_interests", user_id), event, now)
                txn.set("user_interests", user_id, profile)
                return profile

            profile = self.store.run_transaction(_apply)
            return {"success": True, "data": profile}
        except Exception as e:
            logger.exception("EngagementTracker: dropped engagement event for user %s.", user_id)
            return {"success": False, "error": getattr(e, "code", "engagement_failed")}
