"""
Composition Root
Builds the store, queue, providers, services and workers for one process
"""
import logging
from dataclasses import dataclass
from typing import Optional

from salescaller.core.config import ConfigManager, Settings
from salescaller.domain.interfaces.call_provider import CallProvider
from salescaller.domain.interfaces.messaging_provider import MessagingProvider
from salescaller.domain.interfaces.payment_provider import PaymentProvider
from salescaller.domain.interfaces.store import Store
from salescaller.domain.models.job import JobType
from salescaller.domain.services.call_service import CallService
from salescaller.domain.services.export_service import ExportService
from salescaller.domain.services.lead_service import LeadService
from salescaller.domain.services.order_service import OrderService
from salescaller.domain.services.payment_service import PaymentService
from salescaller.domain.services.queue_service import JobQueue, LaneSettings
from salescaller.domain.services.reconciler import WebhookReconciler
from salescaller.domain.services.reports_service import ReportsService
from salescaller.domain.services.whatsapp_service import WhatsAppService
from salescaller.infrastructure.calling.factory import CallProviderFactory
from salescaller.infrastructure.messaging.factory import MessagingProviderFactory
from salescaller.infrastructure.payments.factory import PaymentProviderFactory
from salescaller.infrastructure.storage.memory_store import InMemoryStore
from salescaller.infrastructure.storage.supabase_store import SupabaseStore
from salescaller.workers.lane_worker import WorkerPool
from salescaller.workers.registry import HandlerRegistry

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Everything one API or worker process needs, wired together."""
    settings: Settings
    config: ConfigManager
    store: Store
    queue: JobQueue
    registry: HandlerRegistry
    call_provider: CallProvider
    payment_provider: PaymentProvider
    messaging_provider: MessagingProvider
    leads: LeadService
    orders: OrderService
    calls: CallService
    messages: WhatsAppService
    payments: PaymentService
    exports: ExportService
    reports: ReportsService
    reconciler: WebhookReconciler
    worker_pool: WorkerPool

    async def close(self) -> None:
        """Release provider, queue and store resources."""
        for provider in (self.call_provider, self.payment_provider, self.messaging_provider):
            try:
                await provider.cleanup()
            except Exception as e:
                logger.error(f"Error cleaning up {provider.name}: {e}")
        await self.queue.close()
        await self.store.close()


def build_store(settings: Settings) -> Store:
    """Store selected by STORE_BACKEND."""
    backend = settings.store_backend.lower()
    if backend == "supabase":
        if not settings.supabase_url or not settings.supabase_service_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the supabase store")
        return SupabaseStore.from_credentials(settings.supabase_url, settings.supabase_service_key)
    if backend == "memory":
        logger.warning("Using in-memory store - data is lost on restart")
        return InMemoryStore()
    raise ValueError(f"Unknown store backend: {settings.store_backend}")


def build_queue(settings: Settings, config: ConfigManager, redis_client=None) -> JobQueue:
    lane_settings = {
        lane: LaneSettings.from_config(lane_config)
        for lane, lane_config in (config.get("queue.lanes", {}) or {}).items()
    }
    return JobQueue(
        redis_client=redis_client,
        redis_url=settings.redis_url,
        lane_settings=lane_settings,
        key_prefix=config.get("queue.key_prefix", "salescaller"),
        retention_seconds=int(config.get("queue.retention_seconds", 7 * 24 * 3600)),
        history_limit=int(config.get("queue.history_limit", 1000)),
    )


async def build_container(
    settings: Optional[Settings] = None,
    config: Optional[ConfigManager] = None,
    redis_client=None,
    store: Optional[Store] = None,
    call_provider: Optional[CallProvider] = None,
    payment_provider: Optional[PaymentProvider] = None,
    messaging_provider: Optional[MessagingProvider] = None
) -> Container:
    """
    Wire the application.

    Providers are selected once from config (providers.<family>.active);
    any argument given here replaces the configured piece, which is how
    tests swap in fakes.
    """
    settings = settings or Settings()
    config = config or ConfigManager(env=settings.environment)

    store = store or build_store(settings)
    queue = build_queue(settings, config, redis_client)

    call_provider = call_provider or CallProviderFactory.create(
        config.get_active_provider("calling"), settings
    )
    payment_provider = payment_provider or PaymentProviderFactory.create(
        config.get_active_provider("payment"), settings
    )
    messaging_provider = messaging_provider or MessagingProviderFactory.create(
        config.get_active_provider("messaging"), settings
    )
    logger.info(
        f"Providers: calling={call_provider.name}, payment={payment_provider.name}, "
        f"messaging={messaging_provider.name}, store={store.name}"
    )

    leads = LeadService(store, queue)
    orders = OrderService(store, currency=settings.currency)
    calls = CallService(
        store, queue, call_provider, leads,
        initiate_timeout=settings.provider_timeout_seconds
    )
    messages = WhatsAppService(store, queue, messaging_provider, leads, orders)
    payments = PaymentService(store, payment_provider, orders, messages)
    exports = ExportService(store, queue, export_dir=settings.export_dir)
    reports = ReportsService(store)
    reconciler = WebhookReconciler(
        calls, call_provider, payments, payment_provider, messages, messaging_provider
    )

    registry = HandlerRegistry()
    registry.register(JobType.MAKE_CALL, calls.handle_call_job)
    registry.register(JobType.SEND_MESSAGE, messages.handle_message_job)
    registry.register(JobType.EXPORT_DATA, exports.handle_export_job)

    worker_pool = WorkerPool(
        queue,
        registry,
        poll_interval=float(config.get("queue.poll_interval", 1.0)),
        drain_timeout=float(config.get("queue.drain_timeout", 30)),
    )

    return Container(
        settings=settings,
        config=config,
        store=store,
        queue=queue,
        registry=registry,
        call_provider=call_provider,
        payment_provider=payment_provider,
        messaging_provider=messaging_provider,
        leads=leads,
        orders=orders,
        calls=calls,
        messages=messages,
        payments=payments,
        exports=exports,
        reports=reports,
        reconciler=reconciler,
        worker_pool=worker_pool,
    )
