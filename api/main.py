import uvicorn
import logging
import traceback
from contextlib import asynccontextmanager
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from celery_worker import track_engagement_task
from vibe_core.document_store import create_document_store
from vibe_core.engagement_tracker import EngagementTracker
from vibe_core.emotion_intelligence import EmotionIntelligenceUpdater
from vibe_core.errors import (
    AccountRestrictedError, AlreadyClaimedError, ConflictError, DailyCapReachedError,
    InsufficientFundsError, NotCompletedError, NotFoundError, RateLimitedError, RewardError, ValidationError,
)
from vibe_core.fraud_detector import FraudDetectionEngine
from vibe_core.progression import get_karma_impact
from vibe_core.reward_engine import RewardEngine

logger = logging.getLogger(__name__)


class CreateProfileModel(BaseModel):
    deviceFingerprint: Optional[str] = Field(None, description="Device fingerprint reported by the client.")
    ipAddress: Optional[str] = Field(None, description="Last known IP address of the user.")

class TransactionModel(BaseModel):
    userId: str
    action: str = Field(..., description="Ledger tag for the grant or spend, e.g. 'admin_grant'.")
    xpDelta: int = 0
    coinsDelta: int = 0
    gemsDelta: int = 0
    metadata: Optional[dict] = None

class AwardModel(BaseModel):
    userId: str
    action: str = Field(..., description="A key of the reward catalog, e.g. 'post_vibe'.")
    metadata: Optional[dict] = None
    idempotencyKey: Optional[str] = Field(None, description="Repeated keys are acknowledged without a second grant.")

class GiftModel(BaseModel):
    fromUserId: str
    toUserId: str
    giftType: str

class PurchaseModel(BaseModel):
    userId: str
    itemId: str
    currency: str = "coins"

class MissionClaimModel(BaseModel):
    userId: str
    missionId: str

class KarmaActionModel(BaseModel):
    action: str

class InteractionsModel(BaseModel):
    interest: bool = False
    moreLikeThis: bool = False

class EngagementModel(BaseModel):
    userId: str
    vibeId: str
    emotion: str
    textLength: int = 0
    viewDuration: int = 0
    listenedMs: int = 0
    completed: bool = False
    interactions: InteractionsModel = Field(default_factory=InteractionsModel)

class EmotionUpdateModel(BaseModel):
    userId: str
    emotion: str
    interactionType: str = Field(..., description="One of 'view', 'react', 'comment', 'post'.")

class FraudScanModel(BaseModel):
    pageSize: int = Field(100, gt=0, le=1000)
    startAfter: Optional[str] = None


store = None
reward_engine = None
fraud_engine = None
engagement_tracker = None
emotion_updater = None

@asynccontextmanager
async def lifespan(app: FastAPI):
    global store, reward_engine, fraud_engine, engagement_tracker, emotion_updater
    logger.info("Application startup: Initializing document store and engines...")
    try:
        store = create_document_store(initialize=True)
        reward_engine = RewardEngine(store)
        fraud_engine = FraudDetectionEngine(store)
        engagement_tracker = EngagementTracker(store)
        emotion_updater = EmotionIntelligenceUpdater(store, reward_engine)
        logger.info("Document store ready. Application is ready.")
    except Exception as e:
        logger.critical("CRITICAL ERROR during startup: %s\n%s", e, traceback.format_exc())
        raise

    yield

    logger.info("Application shutdown: Closing document store.")
    if store:
        store.close()

app = FastAPI(
    title="Vibe Rewards Service",
    version="1.0.0",
    description="""
    Rewards, progression and anti-fraud core of the Vibe OS social app.
    - `/v1/rewards/*` mutate balances through atomic, ledgered transactions.
    - `/v1/engagement` queues personalization signals and answers immediately.
    - `/admin/fraud-scan` runs one page of the batch fraud scan.
    """,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = [
    (ValidationError, 400),
    (AccountRestrictedError, 403),
    (NotFoundError, 404),
    (InsufficientFundsError, 402),
    (AlreadyClaimedError, 409),
    (NotCompletedError, 409),
    (ConflictError, 409),
    (RateLimitedError, 429),
    (DailyCapReachedError, 429),
]

@app.exception_handler(RewardError)
async def reward_error_handler(request: Request, exc: RewardError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    logger.info("API: %s %s rejected with %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("ERROR in %s %s: %s\n%s", request.method, request.url.path, exc, traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal_error", "message": "Internal server error"}
    )


@app.get("/health", tags=["System"])
def health_check():
    """Check if the API service is running."""
    return {"status": "ok", "engine_initialized": reward_engine is not None}


@app.post("/v1/users/{user_id}", tags=["Profiles"])
def create_profile(user_id: str, request: Optional[CreateProfileModel] = None):
    request = request or CreateProfileModel()
    result = reward_engine.create_profile(user_id, request.deviceFingerprint, request.ipAddress)
    return JSONResponse(
        status_code=201 if result["created"] else 200,
        content={"success": True, "data": result["profile"]}
    )

@app.get("/v1/users/{user_id}/progress", tags=["Profiles"])
def get_progress(user_id: str):
    return {"success": True, "data": reward_engine.get_progress(user_id)}

@app.get("/v1/users/{user_id}/karma", tags=["Profiles"])
def get_karma(user_id: str):
    profile = reward_engine.get_profile(user_id)
    return {"success": True, "data": get_karma_impact(profile["karma"])}

@app.get("/v1/users/{user_id}/transactions", tags=["Profiles"])
def get_transactions(user_id: str, limit: int = Query(50, gt=0, le=200),
                     tx_type: Optional[str] = Query(None, alias="type")):
    """Newest-first ledger rows, optionally filtered by transaction type."""
    result = reward_engine.get_transactions(user_id, limit=limit, tx_type=tx_type)
    return {"success": True, "data": result}

@app.post("/v1/users/{user_id}/karma", tags=["Profiles"])
def apply_karma_action(user_id: str, request: KarmaActionModel):
    result = reward_engine.apply_karma_action(user_id, request.action)
    return {"success": True, "data": result}


@app.post("/v1/rewards/transaction", tags=["Rewards"])
def apply_transaction(request: TransactionModel):
    """Applies raw XP/coin/gem deltas as one atomic, ledgered transaction."""
    result = reward_engine.apply_transaction(
        request.userId,
        xp_delta=request.xpDelta,
        coins_delta=request.coinsDelta,
        gems_delta=request.gemsDelta,
        action=request.action,
        metadata=request.metadata,
    )
    return {"success": True, "data": result}

@app.post("/v1/rewards/award", tags=["Rewards"])
def award_action(request: AwardModel):
    result = reward_engine.award_action(request.userId, request.action, request.metadata, request.idempotencyKey)
    return {"success": True, "data": result}

@app.post("/v1/rewards/gift", tags=["Rewards"])
def send_gift(request: GiftModel):
    result = reward_engine.send_gift(request.fromUserId, request.toUserId, request.giftType)
    return {"success": True, "data": result}

@app.post("/v1/rewards/purchase", tags=["Rewards"])
def purchase_item(request: PurchaseModel):
    result = reward_engine.purchase_item(request.userId, request.itemId, request.currency)
    return {"success": True, "data": result}


@app.get("/v1/missions/{user_id}", tags=["Missions"])
def get_missions(user_id: str):
    return {"success": True, "data": reward_engine.get_missions(user_id)}

@app.post("/v1/missions/claim", tags=["Missions"])
def claim_mission(request: MissionClaimModel):
    result = reward_engine.claim_mission_reward(request.userId, request.missionId)
    return {"success": True, "data": result}


@app.post("/v1/engagement", tags=["Personalization"])
def track_engagement(request: EngagementModel):
    """Queues an engagement event. Tracking failures never reach the client."""
    event = {
        "vibe_id": request.vibeId,
        "emotion": request.emotion,
        "text_length": request.textLength,
        "view_duration": request.viewDuration,
        "listened_ms": request.listenedMs,
        "completed": request.completed,
        "interactions": {
            "interest": request.interactions.interest,
            "more_like_this": request.interactions.moreLikeThis,
        },
    }
    track_engagement_task.delay(request.userId, event)
    logger.info("API: Queued engagement event for user %s on vibe %s.", request.userId, request.vibeId)
    return JSONResponse(status_code=202, content={"success": True, "status": "queued"})

@app.post("/v1/emotion-intelligence/update", tags=["Personalization"])
def update_emotion_intelligence(request: EmotionUpdateModel):
    return emotion_updater.update(request.userId, request.emotion, request.interactionType)


@app.post("/admin/fraud-scan", tags=["Admin"])
def run_fraud_scan(request: Optional[FraudScanModel] = None):
    """Runs one page of the fraud scan and returns the cursor for the next page."""
    request = request or FraudScanModel()
    result = fraud_engine.scan(page_size=request.pageSize, start_after=request.startAfter)
    return {
        "success": True,
        "data": result,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=False)
