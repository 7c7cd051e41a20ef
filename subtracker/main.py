"""
SubTracker - offline-first subscription expense tracker client core.

Composition root: every long-lived service is created exactly once here and
handed to its consumers by reference. Call ``close()`` on shutdown.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.engine import Engine

from .core.config import Settings, settings as default_settings
from .core.log_config import configure_logging
from .models.base import create_local_engine, init_db, make_session_factory
from .services.api_client import ApiClient
from .services.auth import AuthService
from .services.connectivity import ConnectivityMonitor
from .services.local_store import LocalStore
from .services.notifications import NotificationService
from .services.offline_sync import SyncQueue
from .services.subscription_repository import SubscriptionRepository

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    engine: Engine
    store: LocalStore
    api: ApiClient
    connectivity: ConnectivityMonitor
    sync_queue: SyncQueue
    notifications: NotificationService
    auth: AuthService
    subscriptions: SubscriptionRepository

    def close(self) -> None:
        self.api.close()
        self.engine.dispose()
        logger.info("%s services shut down", self.settings.APP_NAME)


def build_services(
    app_settings: Optional[Settings] = None,
    transport: Optional[httpx.BaseTransport] = None,
    online: bool = True,
    setup_logging: bool = False,
) -> Services:
    """Wire up the client: cache, API client, sync queue, auth and repository."""
    app_settings = app_settings or default_settings
    if setup_logging:
        configure_logging(app_settings.LOG_LEVEL)

    engine = create_local_engine(app_settings.DATABASE_URL)
    init_db(engine)
    store = LocalStore(make_session_factory(engine))

    api = ApiClient(base_url=app_settings.API_BASE_URL, timeout=app_settings.API_TIMEOUT, transport=transport)
    connectivity = ConnectivityMonitor(online=online)
    notifications = NotificationService(reminder_days=app_settings.PAYMENT_REMINDER_DAYS)
    connectivity.add_listener(notifications.sync_status_changed)

    sync_queue = SyncQueue(store, api, connectivity, flush_on_enqueue=app_settings.SYNC_ON_ENQUEUE)
    auth = AuthService(api, store)
    auth.restore()
    repository = SubscriptionRepository(api, store, sync_queue)

    logger.info(
        "%s %s started (%s, %d pending operation(s))",
        app_settings.APP_NAME, app_settings.VERSION,
        "online" if online else "offline", sync_queue.pending_count,
    )
    return Services(
        settings=app_settings,
        engine=engine,
        store=store,
        api=api,
        connectivity=connectivity,
        sync_queue=sync_queue,
        notifications=notifications,
        auth=auth,
        subscriptions=repository,
    )
