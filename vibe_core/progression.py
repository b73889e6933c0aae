import math
from typing import List, Optional

from . import reward_config as config
from .errors import ValidationError

MAX_LEVEL = config.LEVEL_CONFIGS[-1][0]


def calculate_level(xp: int) -> int:
    """Returns the highest level whose required cumulative XP is <= xp. Level 1 at 0 XP."""
    xp = max(0, xp or 0)
    level = 1
    for lvl, required_xp, _, _ in config.LEVEL_CONFIGS:
        if xp >= required_xp:
            level = lvl
        else:
            break
    return level


def get_level_config(level: int) -> Optional[dict]:
    for lvl, required_xp, title, unlocks in config.LEVEL_CONFIGS:
        if lvl == level:
            return {"level": lvl, "required_xp": required_xp, "title": title, "unlocks": list(unlocks)}
    return None


def get_progress_to_next_level(xp: int) -> dict:
    """
    Progress inside the current level band.

    `current` is XP earned since reaching the current level and `needed` the
    size of the band, so percentage == current / needed * 100. At the max
    level the band is closed and percentage is 100.
    """
    xp = max(0, xp or 0)
    level = calculate_level(xp)
    current_config = get_level_config(level)
    next_config = get_level_config(level + 1)

    current = xp - current_config["required_xp"]
    if next_config is None:
        return {"level": level, "title": current_config["title"], "current": current,
                "needed": 0, "percentage": 100.0, "next_level_xp": None}

    needed = next_config["required_xp"] - current_config["required_xp"]
    percentage = min(100.0, max(0.0, round(current / needed * 100, 2)))
    return {
        "level": level,
        "title": current_config["title"],
        "current": current,
        "needed": needed,
        "percentage": percentage,
        "next_level_xp": next_config["required_xp"],
    }


def get_recently_unlocked_features(old_level: int, new_level: int) -> List[str]:
    """Unlocks of every level in (old_level, new_level]."""
    features = []
    for lvl, _, _, unlocks in config.LEVEL_CONFIGS:
        if old_level < lvl <= new_level:
            features.extend(unlocks)
    return features


def calculate_tier(xp: int, level: int) -> str:
    for name, min_xp, min_level in config.PROGRESSION_TIERS:
        if xp >= min_xp or level >= min_level:
            return name
    return config.PROGRESSION_TIERS[-1][0]


def get_tier_perks(tier: str) -> dict:
    return dict(config.TIER_PERKS.get(tier, config.TIER_PERKS["bronze"]))


def get_karma_tier(karma: float) -> dict:
    """Maps any karma value onto exactly one tier of KARMA_TIERS."""
    karma = math.floor(karma)
    for tier in config.KARMA_TIERS:
        above_min = tier["min_karma"] is None or karma >= tier["min_karma"]
        below_max = tier["max_karma"] is None or karma <= tier["max_karma"]
        if above_min and below_max:
            return dict(tier)
    return dict(config.KARMA_TIERS[-1])


def get_karma_impact(karma: float) -> dict:
    tier = get_karma_tier(karma)
    restrictions = list(config.LIMITED_TIER_RESTRICTIONS) if tier["name"] == "Limited" else []

    next_tier = None
    names = [t["name"] for t in config.KARMA_TIERS]
    index = names.index(tier["name"])
    if index + 1 < len(config.KARMA_TIERS):
        upcoming = config.KARMA_TIERS[index + 1]
        next_tier = {"name": upcoming["name"], "karma_needed": upcoming["min_karma"] - math.floor(karma)}

    return {
        "karma": karma,
        "tier": tier,
        "visibility": tier["visibility"],
        "feed_boost": tier["feed_boost"],
        "restrictions": restrictions,
        "next_tier": next_tier,
    }


def calculate_karma_change(current_karma: int, action: str) -> int:
    """New karma after `action`, floored at 0."""
    if action not in config.KARMA_ACTIONS:
        raise ValidationError(f"Unknown karma action '{action}'")
    return max(0, current_karma + config.KARMA_ACTIONS[action]["karma"])
