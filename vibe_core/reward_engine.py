import logging
import datetime
from typing import List, Optional

from . import reward_config as config
from .document_store import DocumentStore
from .errors import (
    AccountRestrictedError, AlreadyClaimedError, DailyCapReachedError, InsufficientFundsError,
    InvalidDeltaError, NotCompletedError, NotFoundError, RateLimitedError, UserNotFoundError,
    ValidationError,
)
from .progression import (
    calculate_karma_change, calculate_level, calculate_tier, get_karma_impact, get_karma_tier,
    get_level_config, get_progress_to_next_level, get_recently_unlocked_features, get_tier_perks,
)
from .streaks import (
    calculate_vibe_streak, check_explorer_milestone, check_streak_milestone, reference_timezone,
    update_emotion_explorer,
)

logger = logging.getLogger(__name__)


def _utc_now(now: Optional[datetime.datetime] = None) -> datetime.datetime:
    return (now or datetime.datetime.now(datetime.timezone.utc)).astimezone(datetime.timezone.utc)


def _calendar_day(now: datetime.datetime) -> datetime.date:
    return now.astimezone(reference_timezone()).date()


def _iso_week(day: datetime.date) -> str:
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def daily_stats_id(user_id: str, day: datetime.date) -> str:
    return f"{user_id}_{day.isoformat()}"


def new_user_profile(user_id: str, now: datetime.datetime, device_fingerprint: Optional[str] = None,
                     ip_address: Optional[str] = None) -> dict:
    return {
        "user_id": user_id,
        "xp": 0,
        "coins": 0,
        "gems": 0,
        "karma": config.DEFAULT_KARMA,
        "level": 1,
        "tier": calculate_tier(0, 1),
        "posting_streak": {"current_streak": 0, "longest_streak": 0, "last_vibe_date": None},
        "emotion_explorer": {"emotions_explored": [], "total_unique_emotions": 0, "explorer_level": 0},
        "badges": [],
        "fraud_flags": 0,
        "account_status": "active",
        "inventory": {},
        "owned_items": [],
        "active_boosts": [],
        "missions": {},
        "recent_actions": [],
        "idempotency_keys": [],
        "device_fingerprint": device_fingerprint,
        "ip_address": ip_address,
        "created_at": now.isoformat(),
        "updated_at": now.isoformat(),
    }


def new_daily_stats(user_id: str, day: datetime.date) -> dict:
    return {
        "user_id": user_id,
        "date": day.isoformat(),
        "coins_earned": 0,
        "xp_earned": 0,
        # Earnings from the capped action catalog only
        "action_coins": 0,
        "action_xp": 0,
        "xp_from_reactions": 0,
        "transaction_count": 0,
        "actions": {},
    }


def build_missions(templates: List[dict], kind: str, period: str) -> List[dict]:
    return [
        {
            "id": f"{kind}_{period}_{template['action']}",
            "kind": kind,
            "title": template["title"],
            "action": template["action"],
            "target": template["target"],
            "progress": 0,
            "completed": False,
            "claimed": False,
            "reward": dict(template["reward"]),
        }
        for template in templates
    ]


def refresh_missions(user: dict, day: datetime.date):
    """Regenerates the daily and weekly mission sets when their period has rolled over."""
    missions = user.setdefault("missions", {})
    periods = {
        "daily": (day.isoformat(), config.DAILY_MISSIONS),
        "weekly": (_iso_week(day), config.WEEKLY_MISSIONS),
    }
    for kind, (period, templates) in periods.items():
        current = missions.get(kind)
        if not current or current.get("period") != period:
            missions[kind] = {"period": period, "missions": build_missions(templates, kind, period)}


def validate_deltas(tx_type: str, xp_delta: int, coins_delta: int, gems_delta: int):
    if tx_type not in config.TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type '{tx_type}'")
    if not all(_is_int(d) for d in (xp_delta, coins_delta, gems_delta)):
        raise InvalidDeltaError("Deltas must be integers")
    if xp_delta == 0 and coins_delta == 0 and gems_delta == 0:
        raise InvalidDeltaError("Transaction changes nothing")
    if xp_delta < 0:
        raise InvalidDeltaError("XP cannot be taken away by a transaction", xp_delta=xp_delta)
    if tx_type in ("earn", "receive") and (coins_delta < 0 or gems_delta < 0):
        raise InvalidDeltaError(f"An '{tx_type}' transaction cannot carry negative deltas")
    if tx_type in ("spend", "gift") and (coins_delta > 0 or gems_delta > 0):
        raise InvalidDeltaError(f"A '{tx_type}' transaction cannot carry positive balance deltas")


def balances(user: dict) -> dict:
    return {"xp": user["xp"], "coins": user["coins"], "gems": user["gems"], "level": user["level"]}


def append_badge(user: dict, badge_id: str, category: str, rarity: str, meta: Optional[dict],
                 now: datetime.datetime) -> Optional[dict]:
    """Appends the badge unless the user already holds that id."""
    badges = user.setdefault("badges", [])
    if any(b["id"] == badge_id for b in badges):
        return None
    badge = {"id": badge_id, "earned_at": now.isoformat(), "category": category, "rarity": rarity, "meta": meta or {}}
    badges.append(badge)
    return badge


class RewardEngine:
    """
    The only writer of xp, coins and gems.

    Every public operation runs as one optimistic transaction on the document
    store: all balance changes, ledger rows and bookkeeping of a call commit
    together or not at all.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def close(self):
        if self.store:
            self.store.close()

    # --- Profiles ---

    def create_profile(self, user_id: str, device_fingerprint: Optional[str] = None,
                       ip_address: Optional[str] = None, now: Optional[datetime.datetime] = None) -> dict:
        if not user_id:
            raise ValidationError("user_id is required")
        now = _utc_now(now)

        def _create(txn):
            existing = txn.get("users", user_id)
            if existing is not None:
                return False, existing
            profile = new_user_profile(user_id, now, device_fingerprint, ip_address)
            refresh_missions(profile, _calendar_day(now))
            txn.set("users", user_id, profile)
            return True, profile

        created, profile = self.store.run_transaction(_create)
        if created:
            logger.info("RewardEngine: created reward profile for user %s.", user_id)
        return {"success": True, "created": created, "profile": profile}

    def get_profile(self, user_id: str) -> dict:
        profile = self.store.get("users", user_id)
        if profile is None:
            raise UserNotFoundError(f"User '{user_id}' not found")
        return profile

    def get_progress(self, user_id: str) -> dict:
        profile = self.get_profile(user_id)
        level_config = get_level_config(profile["level"])
        return {
            "user_id": user_id,
            "balances": balances(profile),
            "progress": get_progress_to_next_level(profile["xp"]),
            "title": level_config["title"],
            "unlocked_features": get_recently_unlocked_features(0, profile["level"]),
            "tier": profile["tier"],
            "tier_perks": get_tier_perks(profile["tier"]),
            "karma": get_karma_impact(profile["karma"]),
            "posting_streak": profile["posting_streak"],
            "emotion_explorer": profile["emotion_explorer"],
            "badges": profile["badges"],
            "account_status": profile["account_status"],
        }

    # --- Core transaction ---

    def _apply_to_profile(self, txn, user: dict, xp_delta: int, coins_delta: int, gems_delta: int,
                          action: str, tx_type: str, metadata: Optional[dict], now: datetime.datetime,
                          capped: bool = False) -> dict:
        """
        Mutates `user` in place, appends its ledger row and, for earnings,
        bumps the day's stats. Raises before touching anything when a check fails.
        """
        validate_deltas(tx_type, xp_delta, coins_delta, gems_delta)
        if user.get("account_status") in config.RESTRICTED_ACCOUNT_STATUSES:
            raise AccountRestrictedError(f"Account is {user['account_status']}", user_id=user["user_id"])

        new_coins = user["coins"] + coins_delta
        new_gems = user["gems"] + gems_delta
        if new_coins < 0:
            raise InsufficientFundsError("Not enough coins", currency="coins",
                                         required=-coins_delta, available=user["coins"])
        if new_gems < 0:
            raise InsufficientFundsError("Not enough gems", currency="gems",
                                         required=-gems_delta, available=user["gems"])

        old_level = calculate_level(user["xp"])
        new_xp = user["xp"] + xp_delta
        new_level = calculate_level(new_xp)
        level_up = None
        bonus = 0
        if new_level > old_level:
            bonus = config.LEVEL_UP_BONUS_COINS * (new_level - old_level)
            new_coins += bonus
            level_up = {
                "old_level": old_level,
                "new_level": new_level,
                "bonus_coins": bonus,
                "unlocked_features": get_recently_unlocked_features(old_level, new_level),
            }

        user["xp"] = new_xp
        user["coins"] = new_coins
        user["gems"] = new_gems
        user["level"] = new_level
        user["tier"] = calculate_tier(new_xp, new_level)
        user["updated_at"] = now.isoformat()

        transaction_id = txn.add("reward_transactions", {
            "user_id": user["user_id"],
            "type": tx_type,
            "action": action,
            "xp_change": xp_delta,
            "coins_change": coins_delta + bonus,
            "gems_change": gems_delta,
            "level_up_bonus": bonus,
            "timestamp": now.isoformat(),
            "metadata": metadata or {},
            "review_status": "approved",
        })

        if tx_type == "earn":
            day = _calendar_day(now)
            stats_id = daily_stats_id(user["user_id"], day)
            stats = txn.get("daily_stats", stats_id) or new_daily_stats(user["user_id"], day)
            stats["coins_earned"] += coins_delta + bonus
            stats["xp_earned"] += xp_delta
            stats["transaction_count"] += 1
            stats["actions"][action] = stats["actions"].get(action, 0) + 1
            if capped:
                stats["action_coins"] += coins_delta
                stats["action_xp"] += xp_delta
                if action == "react_vibe":
                    stats["xp_from_reactions"] += xp_delta
            txn.set("daily_stats", stats_id, stats)

        if level_up:
            logger.info("RewardEngine: user %s levelled up %d -> %d (+%d coins).",
                        user["user_id"], old_level, new_level, bonus)
        return {"transaction_id": transaction_id, "new_balances": balances(user), "level_up": level_up}

    def _load_user(self, txn, user_id: str) -> dict:
        user = txn.get("users", user_id)
        if user is None:
            raise UserNotFoundError(f"User '{user_id}' not found")
        return user

    def apply_transaction(self, user_id: str, xp_delta: int = 0, coins_delta: int = 0, gems_delta: int = 0,
                          action: str = "", metadata: Optional[dict] = None, tx_type: Optional[str] = None,
                          now: Optional[datetime.datetime] = None) -> dict:
        """
        Atomically applies the deltas and writes exactly one ledger row.

        Negative coin or gem deltas make a spend; anything else is an earn.
        Crossing a level boundary folds the level-up bonus into this same
        transaction.
        """
        if not action:
            raise ValidationError("action is required")
        if tx_type is None:
            tx_type = "spend" if (_is_int(coins_delta) and coins_delta < 0) or (_is_int(gems_delta) and gems_delta < 0) else "earn"
        if tx_type not in ("earn", "spend"):
            raise ValidationError("Only 'earn' and 'spend' transactions can be applied directly")
        validate_deltas(tx_type, xp_delta, coins_delta, gems_delta)
        now = _utc_now(now)

        def _apply(txn):
            user = self._load_user(txn, user_id)
            result = self._apply_to_profile(txn, user, xp_delta, coins_delta, gems_delta,
                                            action, tx_type, metadata, now)
            txn.set("users", user_id, user)
            return result

        result = self.store.run_transaction(_apply)
        logger.info("RewardEngine: %s '%s' for user %s -> %s", tx_type, action, user_id, result["new_balances"])
        return {"success": True, **result}

    # --- Reward catalog ---

    def _check_rate_limit(self, user: dict, action: str, now: datetime.datetime):
        limits = config.RATE_LIMITS.get(action)
        if not limits:
            return
        five_minutes_ago = now - datetime.timedelta(minutes=5)
        one_hour_ago = now - datetime.timedelta(hours=1)
        timestamps = [datetime.datetime.fromisoformat(entry["timestamp"])
                      for entry in user.get("recent_actions", []) if entry["action"] == action]
        in_five_minutes = sum(1 for ts in timestamps if ts > five_minutes_ago)
        in_hour = sum(1 for ts in timestamps if ts > one_hour_ago)
        if in_five_minutes >= limits["max_per_5_min"]:
            raise RateLimitedError(f"Too many '{action}' actions in 5 minutes", retry_after_seconds=300)
        if in_hour >= limits["max_per_hour"]:
            raise RateLimitedError(f"Too many '{action}' actions in the last hour", retry_after_seconds=3600)

    def _record_recent_action(self, user: dict, action: str, now: datetime.datetime):
        recent = user.setdefault("recent_actions", [])
        recent.append({"action": action, "timestamp": now.isoformat()})
        del recent[:-config.RECENT_ACTIONS_LOOKBACK]

    def _advance_missions(self, user: dict, action: str, now: datetime.datetime) -> List[str]:
        completed = []
        for mission_set in user.get("missions", {}).values():
            for mission in mission_set["missions"]:
                if mission["action"] != action or mission["completed"]:
                    continue
                mission["progress"] = min(mission["target"], mission["progress"] + 1)
                if mission["progress"] >= mission["target"]:
                    mission["completed"] = True
                    mission["completed_at"] = now.isoformat()
                    completed.append(mission["id"])
        return completed

    def award_action(self, user_id: str, action: str, metadata: Optional[dict] = None,
                     idempotency_key: Optional[str] = None, now: Optional[datetime.datetime] = None) -> dict:
        """
        Grants the catalog reward for `action`, clamped to what the daily caps
        still allow. A repeated idempotency key returns the current balances
        without granting anything.
        """
        reward = config.REWARD_ACTIONS.get(action)
        if reward is None:
            raise ValidationError(f"Unknown reward action '{action}'")
        metadata = dict(metadata or {})
        if reward.get("requires_verification") and not metadata.get("verified"):
            raise ValidationError(f"'{action}' requires verification before it can be rewarded")
        now = _utc_now(now)
        day = _calendar_day(now)

        def _award(txn):
            user = self._load_user(txn, user_id)
            if idempotency_key and idempotency_key in user.get("idempotency_keys", []):
                return {"duplicate": True, "new_balances": balances(user), "granted": {"xp": 0, "coins": 0}}

            stats = txn.get("daily_stats", daily_stats_id(user_id, day)) or new_daily_stats(user_id, day)
            daily_limit = reward.get("daily_limit")
            if daily_limit is not None and stats["actions"].get(action, 0) >= daily_limit:
                raise DailyCapReachedError(f"Daily limit of {daily_limit} reached for '{action}'")
            self._check_rate_limit(user, action, now)

            perks = get_tier_perks(user["tier"])
            coin_room = max(0, config.DAILY_CAPS["max_coins_earned"] + perks["daily_coin_cap_bonus"] - stats["action_coins"])
            xp_room = max(0, config.DAILY_CAPS["max_xp_earned"] - stats["action_xp"])
            if action == "react_vibe":
                xp_room = min(xp_room, max(0, config.DAILY_CAPS["max_xp_from_reactions"] - stats["xp_from_reactions"]))
            xp = min(reward["xp"], xp_room)
            coins = min(reward["coins"], coin_room)
            if xp == 0 and coins == 0:
                raise DailyCapReachedError("Daily earning cap reached")
            clamped = xp < reward["xp"] or coins < reward["coins"]
            if clamped:
                metadata["capped"] = True

            refresh_missions(user, day)
            result = self._apply_to_profile(txn, user, xp, coins, 0, action, "earn", metadata, now, capped=True)
            self._record_recent_action(user, action, now)
            result["missions_completed"] = self._advance_missions(user, action, now)
            if idempotency_key:
                keys = user.setdefault("idempotency_keys", [])
                keys.append(idempotency_key)
                del keys[:-config.IDEMPOTENCY_KEYS_KEPT]
            txn.set("users", user_id, user)
            result["granted"] = {"xp": xp, "coins": coins}
            result["duplicate"] = False
            return result

        result = self.store.run_transaction(_award)
        if result["duplicate"]:
            logger.info("RewardEngine: duplicate '%s' for user %s ignored (key %s).", action, user_id, idempotency_key)
        return {"success": True, **result}

    # --- Missions ---

    def get_missions(self, user_id: str, now: Optional[datetime.datetime] = None) -> dict:
        now = _utc_now(now)

        def _refresh(txn):
            user = self._load_user(txn, user_id)
            refresh_missions(user, _calendar_day(now))
            txn.set("users", user_id, user)
            return user["missions"]

        return self.store.run_transaction(_refresh)

    def claim_mission_reward(self, user_id: str, mission_id: str, now: Optional[datetime.datetime] = None) -> dict:
        """Pays out a completed mission once; the claimed flag commits with the reward."""
        now = _utc_now(now)

        def _claim(txn):
            user = self._load_user(txn, user_id)
            refresh_missions(user, _calendar_day(now))
            mission = None
            for mission_set in user["missions"].values():
                for candidate in mission_set["missions"]:
                    if candidate["id"] == mission_id:
                        mission = candidate
            if mission is None:
                raise NotFoundError(f"Mission '{mission_id}' not found or expired")
            if mission["claimed"]:
                raise AlreadyClaimedError(f"Mission '{mission_id}' was already claimed")
            if not mission["completed"]:
                raise NotCompletedError(f"Mission '{mission_id}' is not completed",
                                        progress=mission["progress"], target=mission["target"])

            reward = mission["reward"]
            action = "complete_daily_mission" if mission["kind"] == "daily" else "complete_weekly_challenge"
            result = self._apply_to_profile(
                txn, user, reward.get("xp", 0), reward.get("coins", 0), reward.get("gems", 0),
                action, "earn", {"mission_id": mission_id}, now)
            mission["claimed"] = True
            mission["claimed_at"] = now.isoformat()
            badge = None
            if reward.get("badge"):
                badge = append_badge(user, reward["badge"], "mission", "rare", {"mission_id": mission_id}, now)
            txn.set("users", user_id, user)
            result["badge"] = badge
            result["reward"] = reward
            return result

        result = self.store.run_transaction(_claim)
        logger.info("RewardEngine: user %s claimed mission %s.", user_id, mission_id)
        return {"success": True, **result}

    # --- Gifts and store ---

    def send_gift(self, from_user_id: str, to_user_id: str, gift_type: str,
                  now: Optional[datetime.datetime] = None) -> dict:
        """Moves a gift between exactly two user documents, one ledger row each."""
        gift = config.GIFTS.get(gift_type)
        if gift is None:
            raise ValidationError(f"Unknown gift type '{gift_type}'", allowed=sorted(config.GIFTS))
        if not from_user_id or not to_user_id:
            raise ValidationError("Both sender and recipient are required")
        if from_user_id == to_user_id:
            raise ValidationError("Users cannot send gifts to themselves")
        now = _utc_now(now)

        def _gift(txn):
            sender = self._load_user(txn, from_user_id)
            recipient = self._load_user(txn, to_user_id)
            if recipient.get("account_status") in config.RESTRICTED_ACCOUNT_STATUSES:
                raise AccountRestrictedError("Recipient cannot receive gifts", user_id=to_user_id)
            self._check_rate_limit(sender, "send_gift", now)

            sent = self._apply_to_profile(txn, sender, 0, -gift["cost"], 0, "send_gift", "gift",
                                          {"to_user_id": to_user_id, "gift_type": gift_type}, now)
            received = self._apply_to_profile(txn, recipient, gift["recipient_xp"], gift["recipient_coins"], 0,
                                              "receive_gift", "receive",
                                              {"from_user_id": from_user_id, "gift_type": gift_type}, now)
            self._record_recent_action(sender, "send_gift", now)
            txn.set("users", from_user_id, sender)
            txn.set("users", to_user_id, recipient)
            return {"sender": sent, "recipient": received}

        result = self.store.run_transaction(_gift)
        logger.info("RewardEngine: %s sent a %s to %s.", from_user_id, gift_type, to_user_id)
        return {"success": True, "gift_type": gift_type, **result}

    def purchase_item(self, user_id: str, item_id: str, currency: str = "coins",
                      now: Optional[datetime.datetime] = None) -> dict:
        item = config.STORE_ITEMS.get(item_id)
        if item is None:
            raise NotFoundError(f"Store item '{item_id}' not found")
        if currency not in ("coins", "gems"):
            raise ValidationError("currency must be 'coins' or 'gems'")
        price = item["price"] if currency == "coins" else item["gem_price"]
        if price is None:
            raise ValidationError(f"'{item_id}' cannot be bought with {currency}")
        now = _utc_now(now)

        def _purchase(txn):
            user = self._load_user(txn, user_id)
            if item["type"] in ("profile_frame", "cosmetic") and item_id in user.get("owned_items", []):
                raise AlreadyClaimedError(f"'{item_id}' is already owned")

            coins_delta, gems_delta = (-price, 0) if currency == "coins" else (0, -price)
            result = self._apply_to_profile(txn, user, 0, coins_delta, gems_delta, f"purchase_{item['type']}",
                                            "spend", {"item_id": item_id, "currency": currency}, now)
            if item["type"] == "consumable":
                inventory = user.setdefault("inventory", {})
                inventory[item_id] = inventory.get(item_id, 0) + 1
            elif item["type"] == "boost":
                expires_at = now + datetime.timedelta(seconds=item["effect_duration"])
                user.setdefault("active_boosts", []).append({"item_id": item_id, "expires_at": expires_at.isoformat()})
            else:
                user.setdefault("owned_items", []).append(item_id)
            txn.set("users", user_id, user)
            result["item"] = {"id": item_id, **item}
            return result

        result = self.store.run_transaction(_purchase)
        logger.info("RewardEngine: user %s bought %s with %s.", user_id, item_id, currency)
        return {"success": True, **result}

    # --- Badges, karma, posts ---

    def award_badge(self, user_id: str, badge_id: str, category: str = "special", rarity: str = "common",
                    meta: Optional[dict] = None, now: Optional[datetime.datetime] = None) -> dict:
        now = _utc_now(now)

        def _award(txn):
            user = self._load_user(txn, user_id)
            badge = append_badge(user, badge_id, category, rarity, meta, now)
            if badge is not None:
                txn.set("users", user_id, user)
            return badge

        badge = self.store.run_transaction(_award)
        return {"success": True, "awarded": badge is not None, "badge": badge}

    def apply_karma_action(self, user_id: str, action: str, now: Optional[datetime.datetime] = None) -> dict:
        now = _utc_now(now)

        def _karma(txn):
            user = self._load_user(txn, user_id)
            old_karma = user["karma"]
            user["karma"] = calculate_karma_change(old_karma, action)
            user["updated_at"] = now.isoformat()
            txn.set("users", user_id, user)
            return old_karma, user["karma"]

        old_karma, new_karma = self.store.run_transaction(_karma)
        old_tier, new_tier = get_karma_tier(old_karma), get_karma_tier(new_karma)
        if old_tier["name"] != new_tier["name"]:
            logger.info("RewardEngine: user %s moved karma tier %s -> %s.", user_id, old_tier["name"], new_tier["name"])
        return {"success": True, "karma": new_karma, "change": new_karma - old_karma, "tier": new_tier}

    def apply_vibe_post(self, txn, user_id: str, emotion: str, today: datetime.date,
                        now: datetime.datetime) -> dict:
        """
        Transaction-level body of `record_vibe_post`, for callers that commit
        the post together with their own writes.
        """
        user = self._load_user(txn, user_id)
        old_streak = user["posting_streak"]
        streak = calculate_vibe_streak(old_streak.get("last_vibe_date"), old_streak.get("current_streak", 0),
                                       old_streak.get("longest_streak", 0), today=today)
        old_total = user["emotion_explorer"].get("total_unique_emotions", 0)
        explorer = update_emotion_explorer(user["emotion_explorer"], emotion)
        user["posting_streak"] = streak
        user["emotion_explorer"] = explorer

        milestones = []
        if streak["current_streak"] != old_streak.get("current_streak", 0):
            milestones.append(check_streak_milestone(streak["current_streak"]))
        if explorer["total_unique_emotions"] > old_total:
            milestones.append(check_explorer_milestone(explorer["total_unique_emotions"]))

        granted = []
        held = {b["id"] for b in user.get("badges", [])}
        restricted = user.get("account_status") in config.RESTRICTED_ACCOUNT_STATUSES
        for milestone in milestones:
            if milestone is None or milestone["badge"] in held or restricted:
                continue
            self._apply_to_profile(txn, user, milestone["xp"], milestone["coins"], 0,
                                   f"{milestone['category']}_milestone", "earn",
                                   {"milestone": milestone["milestone"]}, now)
            append_badge(user, milestone["badge"], milestone["category"], milestone["rarity"],
                         {"milestone": milestone["milestone"]}, now)
            granted.append(milestone)

        txn.set("users", user_id, user)
        return {"posting_streak": streak, "emotion_explorer": explorer,
                "milestones": granted, "new_balances": balances(user)}

    def log_milestones(self, user_id: str, milestones: List[dict]):
        for milestone in milestones:
            logger.info("RewardEngine: user %s reached %s milestone %s.", user_id, milestone["category"], milestone["milestone"])

    def record_vibe_post(self, user_id: str, emotion: str, today: Optional[datetime.date] = None,
                         now: Optional[datetime.datetime] = None) -> dict:
        """
        Advances the posting streak and emotion explorer progress for one post
        and pays out any milestone reached, once per badge.
        """
        now = _utc_now(now)
        today = today or _calendar_day(now)

        result = self.store.run_transaction(lambda txn: self.apply_vibe_post(txn, user_id, emotion, today, now))
        self.log_milestones(user_id, result["milestones"])
        return {"success": True, **result}

    # --- Ledger ---

    def get_transactions(self, user_id: str, limit: int = 50, tx_type: Optional[str] = None) -> dict:
        """Newest-first page of the user's ledger, optionally filtered by type."""
        if not _is_int(limit) or limit <= 0:
            raise ValidationError("limit must be a positive integer")
        if tx_type is not None and tx_type not in config.TRANSACTION_TYPES:
            raise ValidationError(f"Unknown transaction type '{tx_type}'", allowed=list(config.TRANSACTION_TYPES))
        self.get_profile(user_id)

        where = {"user_id": user_id}
        if tx_type:
            where["type"] = tx_type
        rows = self.store.query("reward_transactions", where=where, order_by="timestamp",
                                descending=True, limit=min(limit, config.TRANSACTIONS_PAGE_MAX))
        transactions = [{"id": doc_id, **data} for doc_id, data in rows]
        return {"transactions": transactions, "total": len(transactions)}
