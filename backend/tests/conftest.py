"""
Shared test fixtures
In-memory Redis double, store, queue, services and scripted providers
"""
import asyncio
import fnmatch
import uuid
from typing import Any, Dict, List, Optional

import pytest

from salescaller.core.config import ConfigManager, Settings
from salescaller.domain.exceptions import ProviderError
from salescaller.domain.interfaces.call_provider import CallProvider
from salescaller.domain.interfaces.messaging_provider import MessagingProvider
from salescaller.domain.interfaces.payment_provider import PaymentProvider
from salescaller.domain.interfaces.store import PRODUCTS
from salescaller.domain.models.call import CallEvent, CallInitiation
from salescaller.domain.models.job import BackoffPolicy
from salescaller.domain.models.payment import PaymentLink, PaymentNotification
from salescaller.domain.models.whatsapp import MessageResult
from salescaller.domain.services.queue_service import JobQueue, LaneSettings
from salescaller.infrastructure.storage.memory_store import InMemoryStore


# ============================================
# Redis double
# ============================================

class FakeRedis:
    """
    The subset of redis.asyncio the job queue uses, kept in dicts.

    List, sorted set and string commands follow Redis semantics closely
    enough for single-process tests.
    """

    def __init__(self):
        self.strings: Dict[str, str] = {}
        self.expiry: Dict[str, Optional[int]] = {}
        self.lists: Dict[str, List[str]] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.closed = False

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True

    # Strings

    async def set(self, key, value, ex=None):
        self.strings[key] = value
        self.expiry[key] = ex
        return True

    async def get(self, key):
        return self.strings.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            for table in (self.strings, self.lists, self.zsets):
                if key in table:
                    del table[key]
                    removed += 1
        return removed

    async def keys(self, pattern="*"):
        names = set(self.strings) | set(self.lists) | set(self.zsets)
        return [name for name in names if fnmatch.fnmatch(name, pattern)]

    # Lists

    async def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def lpush(self, key, *values):
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def lmove(self, source, destination, wherefrom="LEFT", whereto="RIGHT"):
        items = self.lists.get(source)
        if not items:
            return None
        value = items.pop(0) if wherefrom == "LEFT" else items.pop()
        target = self.lists.setdefault(destination, [])
        if whereto == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        return value

    async def lrem(self, key, count, value):
        items = self.lists.get(key, [])
        removed = 0
        kept = []
        for item in items:
            if item == value and (count == 0 or removed < abs(count)):
                removed += 1
                continue
            kept.append(item)
        self.lists[key] = kept
        return removed

    async def llen(self, key):
        return len(self.lists.get(key, []))

    async def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        end = len(items) if end == -1 else end + 1
        return items[start:end]

    async def ltrim(self, key, start, end):
        items = self.lists.get(key, [])
        end = len(items) if end == -1 else end + 1
        self.lists[key] = items[start:end]
        return True

    # Sorted sets

    async def zadd(self, key, mapping):
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    async def zrem(self, key, *members):
        zset = self.zsets.get(key, {})
        removed = 0
        for member in members:
            if member in zset:
                del zset[member]
                removed += 1
        return removed

    async def zrangebyscore(self, key, min_score, max_score):
        zset = self.zsets.get(key, {})
        return [
            member for member, score in sorted(zset.items(), key=lambda kv: kv[1])
            if float(min_score) <= score <= float(max_score)
        ]

    async def zcard(self, key):
        return len(self.zsets.get(key, {}))

    async def zscore(self, key, member):
        return self.zsets.get(key, {}).get(member)


# ============================================
# Scripted providers
# ============================================

class FakeCallProvider(CallProvider):
    """Call provider that records calls and can be told to fail."""

    def __init__(self, call_ids: Optional[List[str]] = None):
        self.call_ids = list(call_ids or [])
        self.calls: List[Dict[str, Any]] = []
        self.failures: List[Exception] = []
        self.events: List[Optional[CallEvent]] = []
        self.delay = 0.0

    @property
    def name(self) -> str:
        return "RETELL"

    async def initiate_call(self, lead, agent_context) -> CallInitiation:
        self.calls.append({"lead": lead, "context": agent_context})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        call_id = self.call_ids.pop(0) if self.call_ids else f"call-{uuid.uuid4().hex[:8]}"
        return CallInitiation(provider_call_id=call_id)

    def authenticate(self, request) -> None:
        return None

    def parse_callback(self, request) -> Optional[CallEvent]:
        return self.events.pop(0)


class FakePaymentProvider(PaymentProvider):
    """Payment provider with scripted links and verification results."""

    def __init__(self, txn_ids: Optional[List[str]] = None):
        self.txn_ids = list(txn_ids or [])
        self.created: List[Dict[str, Any]] = []
        self.paid_txns: set = set()
        self.fail_create = False
        self.notifications: List[Optional[PaymentNotification]] = []

    @property
    def name(self) -> str:
        return "STRIPE"

    async def create_payment(self, order, lead) -> PaymentLink:
        if self.fail_create:
            raise ProviderError(self.name, "card processor unavailable")
        txn_id = self.txn_ids.pop(0) if self.txn_ids else f"txn-{uuid.uuid4().hex[:8]}"
        self.created.append({"order": order, "lead": lead, "txn_id": txn_id})
        return PaymentLink(payment_url=f"https://pay.example.com/{txn_id}", provider_txn_id=txn_id)

    async def verify_payment(self, provider_txn_id: str) -> bool:
        return provider_txn_id in self.paid_txns

    async def parse_webhook(self, request) -> Optional[PaymentNotification]:
        return self.notifications.pop(0)


class FakeMessagingProvider(MessagingProvider):
    """Messaging provider that records sends."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.failures: List[Exception] = []

    @property
    def name(self) -> str:
        return "wasapbot"

    async def send_message(self, phone, message, metadata=None) -> MessageResult:
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append({"phone": phone, "message": message, "metadata": metadata})
        return MessageResult(success=True, message_id=f"wa-{len(self.sent)}", provider=self.name)

    def authenticate(self, request) -> None:
        return None


# ============================================
# Fixtures
# ============================================

FAST_LANES = {
    lane: LaneSettings(concurrency=1, timeout=5, max_attempts=3, backoff=BackoffPolicy(type="fixed", delay=0))
    for lane in ("calls", "messaging", "exports")
}


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def queue(redis_client):
    """Queue with zero backoff so retries are immediately runnable."""
    return JobQueue(redis_client=redis_client, lane_settings=FAST_LANES)


@pytest.fixture
def call_provider():
    return FakeCallProvider()


@pytest.fixture
def payment_provider():
    return FakePaymentProvider()


@pytest.fixture
def messaging_provider():
    return FakeMessagingProvider()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        environment="test",
        store_backend="memory",
        provider_mock_mode=True,
        export_dir=str(tmp_path / "exports"),
    )


@pytest.fixture
def config():
    return ConfigManager(env="test")


@pytest.fixture
async def container(settings, config, redis_client, store, call_provider, payment_provider, messaging_provider):
    from salescaller.container import build_container

    built = await build_container(
        settings,
        config,
        redis_client=redis_client,
        store=store,
        call_provider=call_provider,
        payment_provider=payment_provider,
        messaging_provider=messaging_provider,
    )
    # Zero backoff for every lane so tests can drain retries synchronously
    built.queue.lane_settings.update(FAST_LANES)
    yield built


@pytest.fixture
async def product(store):
    return await store.create(PRODUCTS, {"id": "prod-serum", "name": "Serum", "price": "149.50", "active": True})


@pytest.fixture
async def lead(container):
    return await container.leads.create_lead({"phone": "60123456789", "name": "Aisyah"})
