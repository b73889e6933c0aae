from celery import Celery
import os
import logging
import datetime
import requests
from typing import Optional
from vibe_core.document_store import create_document_store
from vibe_core.engagement_tracker import EngagementTracker
from vibe_core.emotion_intelligence import EmotionIntelligenceUpdater
from vibe_core.reward_engine import RewardEngine
from vibe_core.fraud_detector import FraudDetectionEngine

logger = logging.getLogger(__name__)

celery_app = Celery(
    'tasks',
    broker=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
)
celery_app.conf.beat_schedule = {
    'run-fraud-scan': {
        'task': 'fraud_scan_task',
        'schedule': float(os.getenv("FRAUD_SCAN_INTERVAL_SECONDS", "3600")),
    }
}
celery_app.conf.timezone = 'UTC'


@celery_app.task(name="track_engagement_task")
def track_engagement_task(user_id: str, event: dict):
    """Fire-and-forget engagement tracking. Failures are logged and the event is dropped."""
    logger.info("WORKER: Received engagement event for user %s on vibe %s", user_id, event.get("vibe_id"))
    store = None
    try:
        store = create_document_store()
        return EngagementTracker(store).track(user_id, event)
    except Exception:
        logger.exception("WORKER ERROR (Engagement): could not open the document store for user %s", user_id)
        return {"success": False, "error": "engagement_failed"}
    finally:
        if store:
            store.close()


@celery_app.task(name="update_emotion_intelligence_task")
def update_emotion_intelligence_task(user_id: str, emotion: str, interaction_type: str):
    logger.info("WORKER: Received '%s' emotion event for user %s", interaction_type, user_id)
    engine = None
    try:
        engine = RewardEngine(create_document_store())
        return EmotionIntelligenceUpdater(engine.store, engine).update(user_id, emotion, interaction_type)
    except Exception as e:
        logger.exception("WORKER ERROR (Emotion): update failed for user %s", user_id)
        return {"success": False, "error": getattr(e, "code", "internal_error")}
    finally:
        if engine:
            engine.close()


def run_full_fraud_scan(engine: FraudDetectionEngine, page_size: Optional[int] = None) -> dict:
    """Walks every page of users and summarises what was flagged."""
    summary = {"scanned": 0, "flagged": 0, "sanctions": {"review": 0, "suspension": 0, "ban": 0}, "pages": 0}
    cursor = None
    while True:
        kwargs = {"start_after": cursor}
        if page_size:
            kwargs["page_size"] = page_size
        page = engine.scan(**kwargs)
        summary["pages"] += 1
        summary["scanned"] += page["scanned"]
        summary["flagged"] += len(page["flagged"])
        for result in page["flagged"]:
            if result["sanction"]:
                summary["sanctions"][result["sanction"]["action"]] += 1
        cursor = page["next_cursor"]
        if not cursor:
            break
    summary["finished_at"] = datetime.datetime.now(datetime.timezone.utc).isoformat()
    return summary


@celery_app.task(name="fraud_scan_task")
def fraud_scan_task():
    """
    Scheduled batch scan over all users. The summary is POSTed to
    FRAUD_WEBHOOK_URL when one is configured.
    """
    logger.info("SCHEDULER: Kicking off the fraud scan.")
    engine = None
    summary = None
    try:
        engine = FraudDetectionEngine(create_document_store())
        summary = run_full_fraud_scan(engine)
        logger.info("SCHEDULER: Fraud scan completed: %s", summary)
    except Exception as e:
        logger.exception("SCHEDULER CRITICAL: The fraud scan task failed. Error: %s", e)
    finally:
        if engine:
            engine.close()

    webhook_url = os.getenv("FRAUD_WEBHOOK_URL")
    if summary and webhook_url:
        try:
            logger.info("SCHEDULER: Sending fraud scan summary to webhook: %s", webhook_url)
            requests.post(webhook_url, json=summary, timeout=15)
        except requests.RequestException as e:
            logger.critical("SCHEDULER CRITICAL: Failed to send webhook to %s. Details: %s", webhook_url, e)
    return summary
