# Transactions on a single document are retried this many times on a
# version conflict before ConflictError surfaces to the caller.
MAX_TRANSACTION_ATTEMPTS = 5

# EMOTION CATEGORIES
EMOTION_CATEGORIES = [
    'Happy', 'Sad', 'Chill', 'Motivated', 'Lonely', 'Angry', 'Neutral', 'Funny',
    'Festival Joy', 'Missing Home', 'Exam Stress', 'Wedding Excitement',
    'Religious Peace', 'Family Bonding', 'Career Anxiety', 'Festive Nostalgia',
]

# Account defaults for a fresh UserRewardProfile
DEFAULT_KARMA = 100
ACCOUNT_STATUSES = ('active', 'under_review', 'suspended', 'banned')
RESTRICTED_ACCOUNT_STATUSES = ('suspended', 'banned')

# LEVEL CURVE
# (level, required cumulative xp, title, unlocks)
LEVEL_CONFIGS = [
    (1, 0, 'Newbie', ['Basic profile']),
    (2, 100, 'Explorer', ['Profile color']),
    (3, 300, 'Contributor', ['Custom emoji reactions']),
    (4, 600, 'Active', ['Profile themes']),
    (5, 1000, 'Active Member', ['Custom profile color', 'Badge frames']),
    (6, 1500, 'Regular', ['Priority support']),
    (7, 2100, 'Dedicated', ['Special reactions']),
    (8, 2800, 'Committed', ['Advanced filters']),
    (9, 3600, 'Enthusiast', ['Profile backgrounds']),
    (10, 5000, 'Community Regular', ['Animated badge', 'VIP flair']),
    (11, 6500, 'Supporter', ['Custom frames']),
    (12, 8200, 'Advocate', ['Featured profile']),
    (13, 10100, 'Champion', ['Exclusive badges']),
    (14, 12300, 'Hero', ['Priority in feeds']),
    (15, 15000, 'Vibe Master', ['Featured User badge', 'Custom colors']),
    (16, 18000, 'Influencer', ['Special challenges']),
    (17, 21500, 'Trendsetter', ['Trending boost']),
    (18, 25500, 'Mentor', ['Help others badge']),
    (19, 30000, 'Guide', ['Community guide']),
    (20, 35000, 'Emotion Guide', ['Profile video', 'Advanced analytics']),
    (21, 40500, 'Ambassador', ['Ambassador badge']),
    (22, 46500, 'Expert', ['Expert flair']),
    (23, 53000, 'Master', ['Master badge']),
    (24, 60000, 'Elite', ['Elite features']),
    (25, 65000, 'City Legend', ['Custom username color', 'City leader']),
    (26, 71000, 'Regional Star', ['Regional badge']),
    (27, 77500, 'State Champion', ['State leader']),
    (28, 84500, 'National Hero', ['National recognition']),
    (29, 92000, 'Legend', ['Legend status']),
    (30, 100000, 'National Icon', ['Exclusive emoji reactions', 'Icon badge']),
    (31, 110000, 'Superstar', ['Superstar flair']),
    (32, 121000, 'Phenomenon', ['Phenomenon badge']),
    (33, 133000, 'Inspiration', ['Inspire others']),
    (34, 146000, 'Visionary', ['Visionary badge']),
    (35, 160000, 'Pioneer', ['Pioneer features']),
    (36, 175000, 'Trailblazer', ['Trailblazer badge']),
    (37, 191000, 'Revolutionary', ['Revolutionary flair']),
    (38, 208000, 'Luminary', ['Luminary status']),
    (39, 226000, 'Icon', ['Icon recognition']),
    (40, 245000, 'Living Legend', ['Living legend badge']),
    (41, 265000, 'Mythic', ['Mythic effects']),
    (42, 286000, 'Eternal', ['Eternal badge']),
    (43, 308000, 'Transcendent', ['Transcendent flair']),
    (44, 331000, 'Cosmic', ['Cosmic effects']),
    (45, 355000, 'Divine', ['Divine badge']),
    (46, 380000, 'Supreme', ['Supreme status']),
    (47, 406000, 'Ultimate', ['Ultimate features']),
    (48, 433000, 'Apex', ['Apex badge']),
    (49, 461000, 'Zenith', ['Zenith flair']),
    (50, 500000, 'Vibe Legend', ['All features unlocked', 'Permanent recognition']),
]

# Coins folded into the same transaction for every level gained
LEVEL_UP_BONUS_COINS = 50

# Progression tiers: (name, min xp, min level). Either bound qualifies.
PROGRESSION_TIERS = [
    ('legend', 50000, 51),
    ('platinum', 20000, 31),
    ('gold', 7500, 16),
    ('silver', 2500, 6),
    ('bronze', 0, 1),
]

TIER_PERKS = {
    'bronze': {'daily_coin_cap_bonus': 0, 'can_create_challenges': False},
    'silver': {'daily_coin_cap_bonus': 200, 'can_create_challenges': False},
    'gold': {'daily_coin_cap_bonus': 400, 'can_create_challenges': True},
    'platinum': {'daily_coin_cap_bonus': 600, 'can_create_challenges': True},
    'legend': {'daily_coin_cap_bonus': 1000, 'can_create_challenges': True},
}

# KARMA TIERS
# Contiguous integer ranges; None means unbounded on that side.
KARMA_TIERS = [
    {
        'name': 'Limited',
        'min_karma': None,
        'max_karma': 50,
        'visibility': 'limited',
        'feed_boost': 0.5,
        'description': 'Reduced visibility in feeds',
    },
    {
        'name': 'New User',
        'min_karma': 51,
        'max_karma': 100,
        'visibility': 'normal',
        'feed_boost': 1.0,
        'description': 'Standard visibility',
    },
    {
        'name': 'Trusted',
        'min_karma': 101,
        'max_karma': 500,
        'visibility': 'normal',
        'feed_boost': 1.2,
        'description': 'Good standing member',
    },
    {
        'name': 'Respected',
        'min_karma': 501,
        'max_karma': 1000,
        'visibility': 'boosted',
        'feed_boost': 1.5,
        'description': 'Respected community member',
    },
    {
        'name': 'Community Leader',
        'min_karma': 1001,
        'max_karma': None,
        'visibility': 'featured',
        'feed_boost': 2.0,
        'description': 'Featured in feeds with priority',
    },
]

LIMITED_TIER_RESTRICTIONS = [
    'Reduced feed visibility',
    'Content requires manual review',
    'Limited posting frequency',
]

KARMA_ACTIONS = {
    'quality_vibe': {'karma': 5, 'description': 'Your vibe got 10+ reactions'},
    'helpful_comment': {'karma': 3, 'description': 'Your comment was helpful'},
    'content_shared': {'karma': 10, 'description': 'Someone shared your content'},
    'complete_challenge': {'karma': 2, 'description': 'Completed a challenge'},
    'daily_streak': {'karma': 1, 'description': 'Daily login streak'},
    'spam_detected': {'karma': -20, 'description': 'Spam behavior detected'},
    'reported_content': {'karma': -50, 'description': 'Content reported and verified'},
    'no_engagement': {'karma': -5, 'description': 'No engagement on 10 consecutive posts'},
    'inactive_period': {'karma': -10, 'description': 'Inactive for 30 days'},
}

# ENGAGEMENT AFFINITY
# Weight added to emotion_affinity[emotion] per tracked event. The strongest
# signal present replaces the others rather than stacking with them.
AFFINITY_WEIGHTS = {
    'view': 1,
    'interest': 2,
    'more_like_this': 3,
}
SHORT_TEXT_MAX_LENGTH = 50     # text shorter than this is "short_text"
MEDIUM_TEXT_MAX_LENGTH = 200   # text shorter than this is "medium_text"
FULL_LISTEN_MS = 30000         # listened time counted as a full listen

# EMOTION WEIGHT INTELLIGENCE
# Must stay ordered post >= comment > react > view > 0.
EMOTION_INTERACTION_WEIGHTS = {
    'view': 1,
    'react': 2,
    'comment': 3,
    'post': 4,
}

# (slot, first hour inclusive, last hour exclusive); anything else is Night
TIME_SLOTS = [
    ('Morning', 5, 12),
    ('Afternoon', 12, 17),
    ('Evening', 17, 21),
]
NIGHT_SLOT = 'Night'

# STREAKS AND EXPLORER
EMOTIONS_PER_EXPLORER_LEVEL = 3

STREAK_MILESTONES = {
    3: {'xp': 50, 'coins': 20, 'badge': '3_day_streak', 'rarity': 'common'},
    7: {'xp': 100, 'coins': 50, 'badge': 'week_warrior', 'rarity': 'common'},
    14: {'xp': 200, 'coins': 100, 'badge': '2_week_champion', 'rarity': 'rare'},
    30: {'xp': 500, 'coins': 250, 'badge': 'monthly_master', 'rarity': 'epic'},
    60: {'xp': 1000, 'coins': 500, 'badge': '60_day_legend', 'rarity': 'epic'},
    100: {'xp': 2000, 'coins': 1000, 'badge': '100_day_titan', 'rarity': 'legendary'},
}

EXPLORER_MILESTONES = {
    5: {'xp': 30, 'coins': 15, 'badge': 'emotion_novice', 'rarity': 'common'},
    10: {'xp': 100, 'coins': 50, 'badge': 'emotion_explorer', 'rarity': 'rare'},
    15: {'xp': 300, 'coins': 150, 'badge': 'emotion_master', 'rarity': 'epic'},
    16: {'xp': 500, 'coins': 300, 'badge': 'emotion_guru', 'rarity': 'legendary'},
}

# REWARD ACTIONS
# Points granted per action and how many times per day it may pay out.
REWARD_ACTIONS = {
    'post_vibe': {'xp': 10, 'coins': 0, 'daily_limit': 3},
    'first_post_today': {'xp': 5, 'coins': 0, 'daily_limit': 1},
    'react_vibe': {'xp': 2, 'coins': 0, 'daily_limit': 10},
    'helpful_comment': {'xp': 5, 'coins': 0, 'daily_limit': 5},
    'receive_heart': {'xp': 2, 'coins': 0, 'daily_limit': 100},
    'complete_daily_mission': {'xp': 50, 'coins': 25},
    'complete_weekly_challenge': {'xp': 150, 'coins': 100},
    'city_challenge_contribution': {'xp': 50, 'coins': 25},
    'invite_friend': {'xp': 300, 'coins': 300, 'requires_verification': True},
    'watch_ad': {'xp': 0, 'coins': 100, 'daily_limit': 10},
}

DAILY_CAPS = {
    'max_coins_earned': 500,
    'max_xp_earned': 89,
    'max_xp_from_reactions': 20,
}

# Per-action rate limits over rolling windows
RATE_LIMITS = {
    'post_vibe': {'max_per_5_min': 5, 'max_per_hour': 20},
    'react_vibe': {'max_per_5_min': 30, 'max_per_hour': 200},
    'helpful_comment': {'max_per_5_min': 10, 'max_per_hour': 50},
    'send_gift': {'max_per_5_min': 3, 'max_per_hour': 20},
}
RECENT_ACTIONS_LOOKBACK = 200
IDEMPOTENCY_KEYS_KEPT = 100
TRANSACTIONS_PAGE_MAX = 200     # upper bound on one ledger read

TRANSACTION_TYPES = ('earn', 'spend', 'gift', 'receive')

GIFTS = {
    'rose': {'cost': 10, 'recipient_xp': 5, 'recipient_coins': 5},
    'star': {'cost': 25, 'recipient_xp': 10, 'recipient_coins': 10},
    'crown': {'cost': 200, 'recipient_xp': 50, 'recipient_coins': 50},
}

STORE_ITEMS = {
    'streak_freeze': {'name': 'Streak Freeze', 'type': 'consumable', 'price': 150, 'gem_price': None},
    'feed_boost_1h': {'name': 'Feed Boost (1h)', 'type': 'boost', 'price': 200, 'gem_price': 2, 'effect_duration': 3600},
    'aurora_frame': {'name': 'Aurora Frame', 'type': 'profile_frame', 'price': 500, 'gem_price': 5},
    'sparkle_trail': {'name': 'Sparkle Trail', 'type': 'cosmetic', 'price': None, 'gem_price': 10},
}

# MISSIONS
DAILY_MISSIONS = [
    {'title': 'Share Your Vibe', 'action': 'post_vibe', 'target': 3, 'reward': {'xp': 30, 'coins': 10}},
    {'title': 'Spread Positivity', 'action': 'react_vibe', 'target': 10, 'reward': {'xp': 20, 'coins': 5}},
    {'title': 'Be Helpful', 'action': 'helpful_comment', 'target': 5, 'reward': {'xp': 25, 'coins': 10}},
]

WEEKLY_MISSIONS = [
    {'title': 'Support Champion', 'action': 'receive_heart', 'target': 50, 'reward': {'xp': 150, 'coins': 75}},
    {'title': 'City Pride', 'action': 'city_challenge_contribution', 'target': 1,
     'reward': {'xp': 100, 'coins': 50, 'badge': 'city_contributor'}},
]

# FRAUD DETECTION
FRAUD_SCAN_PAGE_SIZE = 100

FRAUD_THRESHOLDS = {
    'anomaly': {
        'coins_vs_median_high': 5,     # ratio above this -> high
        'xp_vs_median_medium': 5,      # ratio above this -> medium
        'any_vs_median_low': 3,        # ratio above this -> low
    },
    'velocity': {
        'posts_per_5_min': 10,
        'reactions_per_5_min': 50,
        'coins_earned_per_hour': 500,
    },
    'shared_identity': {
        'accounts_medium': 3,          # accounts sharing a fingerprint or IP
        'accounts_high': 5,
    },
    'collaboration': {
        'reciprocal_reaction_threshold': 0.8,   # share of interactions going to one account
        'min_interactions_to_flag': 20,
    },
}

SEVERITY_ORDER = ('none', 'low', 'medium', 'high')

# Flag count (after counting the current check) at which manual review opens
MANUAL_REVIEW_TRIGGERS = {
    'high': 2,
    'medium': 4,
    'low': 5,
}
REPEAT_OFFENDER_FLAGS = 5     # strictly more than this is a repeat offender
SUSPENSION_HIGH_FLAGS = 3

SANCTION_ACCOUNT_STATUS = {
    'review': 'under_review',
    'suspension': 'suspended',
    'ban': 'banned',
}
