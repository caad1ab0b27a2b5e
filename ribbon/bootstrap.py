"""
Service wiring - build the quota trackers once at application start.

Trackers are plain objects with injected dependencies; the application holds
the single instance returned here and passes it to request handlers.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .auth.attempt_limiter import LoginAttemptLimiter
from .billing.quota_tracker import QuotaTracker
from .config import ConfigLoader, QuotaSettings
from .observability.metrics import QuotaMetrics, create_quota_metrics
from .observability.setup import setup_observability
from .storage.kv_store import InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class RibbonServices:
    settings: QuotaSettings
    store: KeyValueStore
    quota_tracker: QuotaTracker
    attempt_limiter: LoginAttemptLimiter
    metrics: QuotaMetrics


def build_store(settings: QuotaSettings) -> KeyValueStore:
    if settings.sqlite_path:
        return SQLiteKeyValueStore(db_path=settings.sqlite_path)
    logger.warning("RIBBON_SQLITE_PATH not set, quota state will not survive restarts")
    return InMemoryKeyValueStore()


def build_services(
    settings: Optional[QuotaSettings] = None,
    store: Optional[KeyValueStore] = None,
    clock: Callable[[], float] = time.time,
    configure_observability: bool = False,
) -> RibbonServices:
    """
    Create the store, metrics and both trackers.

    Args:
        settings: Quota settings (default: loaded from the environment)
        store: Key/value store (default: chosen from settings)
        clock: Epoch-seconds clock shared by both trackers
        configure_observability: Also set up logging and the metrics pipeline
            from settings.log_level and settings.log_json (application
            entry points only, it replaces the root logging handlers)
    """
    settings = settings or ConfigLoader().load_quota_settings()
    if configure_observability:
        setup_observability(
            service_name="ribbon",
            log_level=settings.log_level,
            json_output=settings.log_json,
        )
    store = store or build_store(settings)
    metrics = create_quota_metrics()

    services = RibbonServices(
        settings=settings,
        store=store,
        quota_tracker=QuotaTracker(store, settings, clock=clock, metrics=metrics),
        attempt_limiter=LoginAttemptLimiter(store, settings, clock=clock, metrics=metrics),
        metrics=metrics,
    )
    logger.info(f"Ribbon services ready (store={type(store).__name__})")
    return services
