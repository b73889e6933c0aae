import datetime

import pytest

from vibe_core.document_store import InMemoryDocumentStore
from vibe_core.reward_engine import RewardEngine

NOW = datetime.datetime(2026, 3, 10, 14, 30, tzinfo=datetime.timezone.utc)
TODAY = NOW.date()


@pytest.fixture(autouse=True)
def utc_reference_timezone(monkeypatch):
    monkeypatch.setenv("VIBE_TIMEZONE", "UTC")


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def engine(store):
    return RewardEngine(store)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_user(engine):
    def _make(user_id, coins=0, gems=0, **profile_kwargs):
        engine.create_profile(user_id, now=NOW, **profile_kwargs)
        if coins or gems:
            engine.apply_transaction(user_id, coins_delta=coins, gems_delta=gems, action="admin_grant", now=NOW)
        return user_id
    return _make


def ledger(store, user_id):
    return [data for _, data in store.query("reward_transactions", where={"user_id": user_id})]


def set_status(store, user_id, status):
    def _set(txn):
        txn.update("users", user_id, {"account_status": status})
    store.run_transaction(_set)
