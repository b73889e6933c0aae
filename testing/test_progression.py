import pytest

from vibe_core import reward_config as config
from vibe_core.errors import ValidationError
from vibe_core.progression import (
    calculate_karma_change, calculate_level, calculate_tier, get_karma_impact, get_karma_tier,
    get_progress_to_next_level, get_recently_unlocked_features,
)


def test_level_one_at_zero_xp():
    assert calculate_level(0) == 1


def test_level_is_non_decreasing_in_xp():
    previous = calculate_level(0)
    for xp in range(0, 520000, 250):
        level = calculate_level(xp)
        assert level >= 1
        assert level >= previous
        previous = level


@pytest.mark.parametrize("xp,level", [(99, 1), (100, 2), (299, 2), (300, 3), (1000, 5), (499999, 49), (500000, 50), (10**7, 50)])
def test_level_thresholds(xp, level):
    assert calculate_level(xp) == level


def test_progress_matches_level_curve():
    progress = get_progress_to_next_level(150)
    assert progress["level"] == 2
    assert progress["current"] == 50
    assert progress["needed"] == 200
    assert progress["percentage"] == 25.0


def test_progress_percentage_stays_in_range():
    for xp in range(0, 40000, 333):
        progress = get_progress_to_next_level(xp)
        assert 0 <= progress["percentage"] <= 100
        assert progress["current"] < progress["needed"]


def test_progress_at_max_level():
    progress = get_progress_to_next_level(600000)
    assert progress["level"] == 50
    assert progress["percentage"] == 100.0
    assert progress["needed"] == 0


def test_recently_unlocked_features_spans_levels():
    features = get_recently_unlocked_features(1, 3)
    assert features == ["Profile color", "Custom emoji reactions"]
    assert get_recently_unlocked_features(3, 3) == []


def test_progression_tier_from_xp_or_level():
    assert calculate_tier(0, 1) == "bronze"
    assert calculate_tier(2500, 4) == "silver"
    assert calculate_tier(0, 16) == "gold"
    assert calculate_tier(50000, 24) == "legend"


def test_every_karma_value_maps_to_exactly_one_tier():
    for karma in range(-500, 3000):
        matches = [
            tier for tier in config.KARMA_TIERS
            if (tier["min_karma"] is None or karma >= tier["min_karma"])
            and (tier["max_karma"] is None or karma <= tier["max_karma"])
        ]
        assert len(matches) == 1
        assert get_karma_tier(karma)["name"] == matches[0]["name"]


def test_karma_tiers_are_contiguous():
    for lower, upper in zip(config.KARMA_TIERS, config.KARMA_TIERS[1:]):
        assert upper["min_karma"] == lower["max_karma"] + 1
    assert config.KARMA_TIERS[0]["min_karma"] is None
    assert config.KARMA_TIERS[-1]["max_karma"] is None


@pytest.mark.parametrize("karma,name", [(0, "Limited"), (50, "Limited"), (51, "New User"), (100, "New User"),
                                        (101, "Trusted"), (1000, "Respected"), (1001, "Community Leader")])
def test_karma_tier_boundaries(karma, name):
    assert get_karma_tier(karma)["name"] == name


def test_limited_tier_carries_restrictions():
    impact = get_karma_impact(10)
    assert impact["feed_boost"] == 0.5
    assert impact["restrictions"] == config.LIMITED_TIER_RESTRICTIONS
    assert impact["next_tier"] == {"name": "New User", "karma_needed": 41}
    assert get_karma_impact(200)["restrictions"] == []
    assert get_karma_impact(5000)["next_tier"] is None


def test_karma_change_is_floored_at_zero():
    assert calculate_karma_change(100, "quality_vibe") == 105
    assert calculate_karma_change(30, "reported_content") == 0
    with pytest.raises(ValidationError):
        calculate_karma_change(100, "bribe_moderator")


def test_karma_far_outside_the_table_still_resolves():
    assert get_karma_tier(-10 ** 9)["name"] == "Limited"
    assert get_karma_tier(10 ** 9)["name"] == "Community Leader"
    assert get_karma_tier(50.9)["name"] == "Limited"
