import logging
import datetime
from typing import Dict, List, Optional, Sequence

from . import reward_config as config
from .document_store import DocumentStore
from .streaks import reference_timezone

logger = logging.getLogger(__name__)

THRESHOLDS = config.FRAUD_THRESHOLDS
STATUS_RANK = {status: rank for rank, status in enumerate(config.ACCOUNT_STATUSES)}


def median(values: Sequence[float]) -> float:
    """Standard median; an even count averages the two middle values. Empty input gives 0."""
    ordered = sorted(values)
    n = len(ordered)
    if n == 0:
        return 0
    mid = n // 2
    if n % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def _ratio(value: float, baseline: float) -> float:
    # Without a positive baseline there is nothing to be an outlier against
    if baseline <= 0:
        return 0.0
    return value / baseline


def detect_anomalous_earning(coins_earned: float, xp_earned: float,
                             median_coins: float, median_xp: float) -> List[dict]:
    coins_ratio = _ratio(coins_earned, median_coins)
    xp_ratio = _ratio(xp_earned, median_xp)
    limits = THRESHOLDS["anomaly"]
    signals = []

    if coins_ratio > limits["coins_vs_median_high"]:
        signals.append({"type": "coins_vs_cohort_median", "severity": "high",
                        "ratio": round(coins_ratio, 2), "value": coins_earned, "median": median_coins})
    if xp_ratio > limits["xp_vs_median_medium"]:
        signals.append({"type": "xp_vs_cohort_median", "severity": "medium",
                        "ratio": round(xp_ratio, 2), "value": xp_earned, "median": median_xp})
    if not signals and max(coins_ratio, xp_ratio) > limits["any_vs_median_low"]:
        signals.append({"type": "earning_above_cohort", "severity": "low",
                        "ratio": round(max(coins_ratio, xp_ratio), 2)})
    return signals


def check_velocity_patterns(transactions: List[dict], now: datetime.datetime) -> List[dict]:
    """Burst checks over the user's recent earn rows (newest first or any order)."""
    five_minutes_ago = now - datetime.timedelta(minutes=5)
    one_hour_ago = now - datetime.timedelta(hours=1)
    limits = THRESHOLDS["velocity"]

    posts = reactions = coins_last_hour = 0
    for tx in transactions:
        if tx.get("type") != "earn":
            continue
        ts = datetime.datetime.fromisoformat(tx["timestamp"])
        if ts > five_minutes_ago:
            if tx["action"] == "post_vibe":
                posts += 1
            elif tx["action"] == "react_vibe":
                reactions += 1
        if ts > one_hour_ago:
            coins_last_hour += max(0, tx.get("coins_change", 0))

    signals = []
    if posts > limits["posts_per_5_min"]:
        signals.append({"type": "post_burst", "severity": "high", "count": posts})
    if reactions > limits["reactions_per_5_min"]:
        signals.append({"type": "reaction_burst", "severity": "medium", "count": reactions})
    if coins_last_hour > limits["coins_earned_per_hour"]:
        signals.append({"type": "hourly_coin_burst", "severity": "high", "coins": coins_last_hour})
    return signals


def check_shared_identity(accounts_sharing_fingerprint: int, accounts_sharing_ip: int) -> List[dict]:
    """Counts include the user's own account."""
    limits = THRESHOLDS["shared_identity"]
    signals = []
    for kind, count in (("device_fingerprint", accounts_sharing_fingerprint), ("ip_address", accounts_sharing_ip)):
        if count >= limits["accounts_high"]:
            signals.append({"type": f"shared_{kind}", "severity": "high", "accounts": count})
        elif count >= limits["accounts_medium"]:
            signals.append({"type": f"shared_{kind}", "severity": "medium", "accounts": count})
    return signals


def detect_collaboration_ring(interactions: List[dict]) -> dict:
    """
    Flags users who receive most of this user's interactions, the pattern of
    accounts reacting to each other in a loop. Each interaction carries a
    `target_user_id`.
    """
    limits = THRESHOLDS["collaboration"]
    total = len(interactions)
    counts: Dict[str, int] = {}
    for interaction in interactions:
        target = interaction["target_user_id"]
        counts[target] = counts.get(target, 0) + 1

    suspicious = [target for target, count in counts.items()
                  if count >= limits["min_interactions_to_flag"]
                  and count / total >= limits["reciprocal_reaction_threshold"]]
    if suspicious:
        return {"is_suspicious": True, "suspicious_users": suspicious,
                "reason": f"Reciprocal reaction loop detected with {len(suspicious)} users"}
    return {"is_suspicious": False, "suspicious_users": [], "reason": ""}


def classify_severity(signals: List[dict]) -> str:
    severity = "none"
    for signal in signals:
        if config.SEVERITY_ORDER.index(signal["severity"]) > config.SEVERITY_ORDER.index(severity):
            severity = signal["severity"]
    return severity


def should_trigger_manual_review(fraud_flags: int, severity: str) -> bool:
    if severity == "none":
        return False
    if fraud_flags >= config.MANUAL_REVIEW_TRIGGERS["low"]:
        return True
    return fraud_flags >= config.MANUAL_REVIEW_TRIGGERS.get(severity, config.MANUAL_REVIEW_TRIGGERS["low"])


def calculate_sanction(fraud_flags: int, severity: str) -> dict:
    repeat_offender = fraud_flags > config.REPEAT_OFFENDER_FLAGS
    if repeat_offender and severity == "high":
        action, reason = "ban", "Repeated high-severity fraud"
    elif (severity == "high" and fraud_flags >= config.SUSPENSION_HIGH_FLAGS) or (severity == "medium" and repeat_offender):
        action, reason = "suspension", "Escalating suspicious earning activity"
    else:
        action, reason = "review", "Suspicious activity queued for manual review"
    return {"action": action, "account_status": config.SANCTION_ACCOUNT_STATUS[action], "reason": reason}


class FraudDetectionEngine:
    """
    Batch scan over users' daily totals and recent ledger rows.

    Each flagged user is updated in its own transaction together with its
    FraudCheck record, so concurrent or repeated scans never lose a flag.
    Sanctions only ever raise the account status; granted rewards stay.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def close(self):
        if self.store:
            self.store.close()

    def cohort_medians(self, day: datetime.date) -> dict:
        rows = [data for _, data in self.store.query("daily_stats", where={"date": day.isoformat()})]
        return {
            "coins": median([r.get("coins_earned", 0) for r in rows]),
            "xp": median([r.get("xp_earned", 0) for r in rows]),
            "cohort_size": len(rows),
        }

    def _accounts_sharing(self, field: str, value: Optional[str], cache: Dict[tuple, int]) -> int:
        if not value:
            return 0
        key = (field, value)
        if key not in cache:
            cache[key] = len(self.store.query("users", where={field: value}))
        return cache[key]

    def evaluate_user(self, user: dict, now: datetime.datetime, cache: Optional[dict] = None) -> List[dict]:
        """
        Collects every signal for one user. `cache` holds cohort medians and
        shared-identity counts for the duration of a single scan.
        """
        if cache is None:
            cache = {"cohorts": {}, "identities": {}}
        user_id = user["user_id"]
        day = now.astimezone(reference_timezone()).date()
        if day not in cache["cohorts"]:
            cache["cohorts"][day] = self.cohort_medians(day)
        medians = cache["cohorts"][day]
        stats = self.store.get("daily_stats", f"{user_id}_{day.isoformat()}") or {}

        recent = [data for _, data in self.store.query(
            "reward_transactions", where={"user_id": user_id, "type": "earn"},
            order_by="timestamp", descending=True, limit=config.RECENT_ACTIONS_LOOKBACK)]

        signals = detect_anomalous_earning(stats.get("coins_earned", 0), stats.get("xp_earned", 0),
                                           medians["coins"], medians["xp"])
        signals += check_velocity_patterns(recent, now)
        identities = cache["identities"]
        signals += check_shared_identity(
            self._accounts_sharing("device_fingerprint", user.get("device_fingerprint"), identities),
            self._accounts_sharing("ip_address", user.get("ip_address"), identities))

        interactions = [{"target_user_id": row["metadata"]["target_user_id"], "action": row["action"]}
                        for row in recent if (row.get("metadata") or {}).get("target_user_id")]
        ring = detect_collaboration_ring(interactions)
        if ring["is_suspicious"]:
            signals.append({"type": "collaboration_ring", "severity": "medium",
                            "users": ring["suspicious_users"], "reason": ring["reason"]})
        return signals

    def _record_check(self, user_id: str, signals: List[dict], severity: str, now: datetime.datetime) -> dict:
        def _flag(txn):
            user = txn.get("users", user_id)
            if user is None:
                return None
            flags = user.get("fraud_flags", 0) + 1
            sanction = None
            if should_trigger_manual_review(flags, severity):
                sanction = calculate_sanction(flags, severity)
                current = user.get("account_status", "active")
                if STATUS_RANK[sanction["account_status"]] > STATUS_RANK.get(current, 0):
                    user["account_status"] = sanction["account_status"]
            user["fraud_flags"] = flags
            txn.set("users", user_id, user)
            check_id = txn.add("fraud_checks", {
                "user_id": user_id,
                "severity": severity,
                "signals": signals,
                "timestamp": now.isoformat(),
                "fraud_flags": flags,
                "sanction": sanction,
            })
            return {"check_id": check_id, "user_id": user_id, "severity": severity, "signals": signals,
                    "fraud_flags": flags, "sanction": sanction, "account_status": user["account_status"]}

        return self.store.run_transaction(_flag)

    def scan(self, page_size: int = config.FRAUD_SCAN_PAGE_SIZE, start_after: Optional[str] = None,
             now: Optional[datetime.datetime] = None) -> dict:
        """
        Checks one page of users. Returns the flagged results and the cursor
        for the next page, which is None once the last page was read.
        """
        now = (now or datetime.datetime.now(datetime.timezone.utc)).astimezone(datetime.timezone.utc)
        page = self.store.query("users", limit=page_size, start_after=start_after)

        flagged = []
        scanned = 0
        cache = {"cohorts": {}, "identities": {}}
        for user_id, user in page:
            if user.get("account_status") == "banned":
                continue
            scanned += 1
            signals = self.evaluate_user(user, now, cache)
            severity = classify_severity(signals)
            if severity == "none":
                continue
            result = self._record_check(user_id, signals, severity, now)
            if result is None:
                continue
            flagged.append(result)
            if result["sanction"]:
                logger.warning("FraudDetection: %s for user %s (flags=%d, severity=%s).",
                               result["sanction"]["action"], user_id, result["fraud_flags"], severity)
            else:
                logger.info("FraudDetection: flagged user %s (flags=%d, severity=%s).",
                            user_id, result["fraud_flags"], severity)

        next_cursor = page[-1][0] if len(page) == page_size else None
        return {"scanned": scanned, "flagged": flagged, "next_cursor": next_cursor}
