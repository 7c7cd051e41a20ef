"""
Subscription repository: the single CRUD surface the UI talks to.
Reads go to the server first and fall back to the local cache; writes go
to the server first and fall back to optimistic local changes plus a
queued sync operation.
"""
import logging
import time
from typing import List, Optional

from pydantic import ValidationError

from ..core.config import settings
from ..core.exceptions import (
    AuthenticationError,
    NetworkError,
    NotFoundError,
    ServerError,
    SubTrackerError,
)
from ..models.base import generate_uuid
from ..models.subscription import RecordState
from ..models.sync import EntityType, OperationKind
from ..schemas.subscription import Subscription, normalize_subscription, to_api_payload
from .api_client import ApiClient, extract_created_id
from .billing import advance_billing_date
from .local_store import LocalStore
from .offline_sync import SyncQueue

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    def __init__(self, api: ApiClient, store: LocalStore, sync_queue: SyncQueue):
        self.api = api
        self.store = store
        self.sync_queue = sync_queue

    @property
    def is_online(self) -> bool:
        return self.sync_queue.is_online

    @staticmethod
    def is_temporary_id(subscription_id: Optional[str]) -> bool:
        return bool(subscription_id) and subscription_id.startswith(settings.TEMP_ID_PREFIX)

    @staticmethod
    def _temporary_id() -> str:
        return f"{settings.TEMP_ID_PREFIX}{int(time.time() * 1000)}-{generate_uuid()[:8]}"

    # ── Reads ────────────────────────────────────────────────────────────────

    def fetch(self, user_id: str) -> List[Subscription]:
        """
        Load a user's subscriptions from the server, caching them locally.

        Falls back to the cached records when the server cannot be reached or
        rejects the call; raises only when there is nothing cached either.
        """
        user_id = str(user_id)
        try:
            raw_records = self.api.list_subscriptions(user_id)
        except SubTrackerError as exc:
            cached = self.list_local(user_id)
            if cached:
                logger.warning("Remote fetch failed (%s), serving %d cached record(s)", exc.code, len(cached))
                return cached
            raise

        deleted = self.sync_queue.pending_target_ids(OperationKind.DELETE)
        subscriptions = []
        for raw in raw_records:
            if not isinstance(raw, dict):
                logger.warning("Skipping malformed subscription record: %r", raw)
                continue
            try:
                sub = advance_billing_date(normalize_subscription(raw, user_id=user_id))
            except ValidationError as exc:
                logger.warning("Skipping invalid subscription record %s: %s", raw.get("id"), exc)
                continue
            if sub.id in deleted:
                # Deleted locally; the queued DELETE has not reached the server yet
                continue
            local = self.store.get_subscription(sub.id)
            if local is not None and local.is_pending:
                # Keep the unsynced local edit until its UPDATE replays
                subscriptions.append(local)
                continue
            self.store.upsert_subscription(sub)
            subscriptions.append(sub)

        remote_ids = {s.id for s in subscriptions}
        for pending in self.store.get_pending_subscriptions(user_id):
            if pending.id not in remote_ids:
                subscriptions.append(pending)
        return subscriptions

    def get(self, subscription_id: str) -> Optional[Subscription]:
        return self.store.get_subscription(subscription_id)

    def list_local(self, user_id: str) -> List[Subscription]:
        return [advance_billing_date(s) for s in self.store.get_user_subscriptions(str(user_id))]

    # ── Writes ───────────────────────────────────────────────────────────────

    def create(self, subscription: Subscription) -> Subscription:
        subscription = advance_billing_date(subscription)
        if self.is_online:
            try:
                body = self.api.create_subscription(self._wire(subscription))
            except NetworkError as exc:
                logger.warning("Create failed, keeping subscription offline: %s", exc)
            else:
                created = subscription.model_copy(
                    update={"id": extract_created_id(body), "sync_status": RecordState.CONFIRMED}
                )
                self.store.upsert_subscription(created)
                return created

        temp = subscription.model_copy(update={"id": self._temporary_id(), "sync_status": RecordState.PENDING_SYNC})
        self.store.insert_subscription(temp)
        self.sync_queue.enqueue(
            OperationKind.CREATE, EntityType.SUBSCRIPTION, temp.model_dump(mode="json"), temp.id
        )
        return self.store.get_subscription(self.sync_queue.resolve_id(temp.id)) or temp

    def update(self, subscription: Subscription) -> Subscription:
        if not subscription.id:
            raise NotFoundError("Cannot update a subscription without an id")
        resolved = self.sync_queue.resolve_id(subscription.id)
        if resolved != subscription.id:
            subscription = subscription.model_copy(update={"id": resolved})
        subscription = advance_billing_date(subscription)

        if self.is_temporary_id(subscription.id):
            pending = subscription.model_copy(update={"sync_status": RecordState.PENDING_SYNC})
            self.store.upsert_subscription(pending)
            self.sync_queue.amend_pending_create(pending.id, pending.model_dump(mode="json"))
            return pending

        # Persist first so the edit survives whatever the server says
        pending = subscription.model_copy(update={"sync_status": RecordState.PENDING_SYNC})
        self.store.upsert_subscription(pending)

        error: Optional[SubTrackerError] = None
        # Queued operations on this record must replay before any newer write
        if self.is_online and not self.sync_queue.has_pending(subscription.id):
            try:
                self.api.update_subscription(subscription.id, self._wire(subscription))
            except NotFoundError:
                self.store.delete_subscription(subscription.id)
                logger.warning("Subscription %s no longer exists on server, removed from cache", subscription.id)
                raise
            except (NetworkError, ServerError, AuthenticationError) as exc:
                error = exc
            else:
                confirmed = subscription.model_copy(update={"sync_status": RecordState.CONFIRMED})
                self.store.upsert_subscription(confirmed)
                return confirmed

        self.sync_queue.enqueue(
            OperationKind.UPDATE, EntityType.SUBSCRIPTION, pending.model_dump(mode="json"), pending.id
        )
        if isinstance(error, AuthenticationError):
            raise error
        if error is not None:
            logger.warning("Update of %s queued for sync: %s", subscription.id, error)
        return self.store.get_subscription(pending.id) or pending

    def delete(self, subscription_id: str) -> bool:
        """
        Delete remotely and locally.

        The local record disappears immediately even when the server cannot
        be reached; the DELETE is then replayed later.
        """
        subscription_id = self.sync_queue.resolve_id(subscription_id)
        if self.is_temporary_id(subscription_id):
            self.sync_queue.discard_pending_create(subscription_id)
            self.store.delete_subscription(subscription_id)
            return True

        if self.is_online and not self.sync_queue.has_pending(subscription_id):
            try:
                self.api.delete_subscription(subscription_id)
            except NotFoundError:
                logger.info("Subscription %s already deleted on server", subscription_id)
            except (NetworkError, ServerError) as exc:
                logger.warning("Delete of %s queued for sync: %s", subscription_id, exc)
                return self._delete_offline(subscription_id)
            self.store.delete_subscription(subscription_id)
            return True

        return self._delete_offline(subscription_id)

    def _delete_offline(self, subscription_id: str) -> bool:
        self.store.delete_subscription(subscription_id)
        self.sync_queue.enqueue(OperationKind.DELETE, EntityType.SUBSCRIPTION, None, subscription_id)
        return True

    @staticmethod
    def _wire(subscription: Subscription) -> dict:
        payload = to_api_payload(subscription)
        if payload.get("id") is None:
            payload.pop("id")
        return payload
