import logging
import datetime
from typing import Dict, List, Optional

from . import reward_config as config
from .errors import ValidationError
from .streaks import local_now, reference_timezone
from .engagement_tracker import new_interest_profile

logger = logging.getLogger(__name__)


def get_current_time_slot(now: Optional[datetime.datetime] = None) -> str:
    hour = (now or local_now()).astimezone(reference_timezone()).hour
    for slot, start_hour, end_hour in config.TIME_SLOTS:
        if start_hour <= hour < end_hour:
            return slot
    return config.NIGHT_SLOT


def update_emotion_weights(current_weights: Optional[Dict[str, float]], emotion: str,
                           interaction_type: str) -> Dict[str, float]:
    """Adds the interaction's fixed increment to the emotion's weight. No decay, no normalization."""
    if interaction_type not in config.EMOTION_INTERACTION_WEIGHTS:
        raise ValidationError(f"Unknown interaction type '{interaction_type}'",
                              allowed=sorted(config.EMOTION_INTERACTION_WEIGHTS))
    weights = dict(current_weights or {})
    weights[emotion] = weights.get(emotion, 0) + config.EMOTION_INTERACTION_WEIGHTS[interaction_type]
    return weights


def record_time_slot(time_pattern: Optional[List[str]], slot: str) -> List[str]:
    pattern = list(time_pattern or [])
    if slot not in pattern:
        pattern.append(slot)
    return pattern


class EmotionIntelligenceUpdater:
    """
    Applies (emotion, interaction type) events to a user's emotion weights and
    activity time pattern. Posts additionally advance the streak and explorer
    progress through the reward engine, in the same transaction.
    """

    def __init__(self, store, reward_engine=None):
        self.store = store
        self.reward_engine = reward_engine

    def update(self, user_id: str, emotion: str, interaction_type: str,
               now: Optional[datetime.datetime] = None) -> dict:
        if not user_id or not emotion or not interaction_type:
            raise ValidationError("user_id, emotion and interaction_type are required")
        if emotion not in config.EMOTION_CATEGORIES:
            raise ValidationError(f"Unknown emotion '{emotion}'")

        now = (now or local_now()).astimezone(reference_timezone())
        slot = get_current_time_slot(now)
        posting = interaction_type == "post" and self.reward_engine is not None

        def _apply(txn):
            interests = txn.get("user_interests", user_id) or new_interest_profile(user_id)
            interests["emotion_weights"] = update_emotion_weights(
                interests.get("emotion_weights"), emotion, interaction_type)
            interests["time_pattern"] = record_time_slot(interests.get("time_pattern"), slot)
            interests["last_updated"] = now.isoformat()
            txn.set("user_interests", user_id, interests)
            post_result = None
            if posting:
                post_result = self.reward_engine.apply_vibe_post(
                    txn, user_id, emotion, now.date(), now.astimezone(datetime.timezone.utc))
            return interests, post_result

        interests, post_result = self.store.run_transaction(_apply)
        data = {
            "emotion_weights": interests["emotion_weights"],
            "time_pattern": interests["time_pattern"],
            "time_slot": slot,
        }
        if post_result is not None:
            self.reward_engine.log_milestones(user_id, post_result["milestones"])
            data["posting_streak"] = post_result["posting_streak"]
            data["emotion_explorer"] = post_result["emotion_explorer"]

        logger.info("EmotionIntelligence: '%s' on %s for user %s during %s.", interaction_type, emotion, user_id, slot)
        return {"success": True, "data": data}
