"""
Offline Mode & Sync Service.
Buffers subscription and payment mutations made while disconnected (or
rejected by a failing server) and replays them in order once connectivity
returns, reconciling the results back into the local store.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from ..core.config import settings
from ..core.exceptions import NotFoundError
from ..models.base import ensure_utc, utcnow
from ..models.subscription import RecordState
from ..models.sync import EntityType, OperationKind, SyncOperation
from ..schemas.subscription import Subscription, to_api_payload
from .api_client import ApiClient, extract_created_id
from .connectivity import ConnectivityMonitor
from .local_store import LocalStore

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "sync.last_sync_at"


@dataclass
class PendingOperation:
    """A queued mutation as read back from the local store."""
    seq: int
    kind: str  # "CREATE", "UPDATE", "DELETE"
    entity_type: str  # "subscription", "payment"
    payload: Optional[Dict[str, Any]]
    target_id: Optional[str]
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: SyncOperation) -> "PendingOperation":
        return cls(
            seq=row.seq,
            kind=row.kind,
            entity_type=row.entity_type,
            payload=row.payload,
            target_id=row.target_id,
            attempts=row.attempts or 0,
            last_error=row.last_error,
            created_at=ensure_utc(row.created_at),
        )


@dataclass
class SyncReport:
    total: int = 0
    applied: int = 0
    failed: int = 0
    deferred: int = 0
    dropped: int = 0
    skipped: bool = False


class SyncQueue:
    """
    Persisted FIFO of pending mutations.

    A queued row is pending; it is removed once applied, and stays with
    ``attempts``/``last_error`` bumped when its replay fails. A DELETE
    answered with 404 counts as applied. An UPDATE answered with 404 is
    dropped along with the cached record.
    """

    def __init__(
        self,
        store: LocalStore,
        api: ApiClient,
        connectivity: ConnectivityMonitor,
        flush_on_enqueue: Optional[bool] = None,
    ):
        self.store = store
        self.api = api
        self.connectivity = connectivity
        self.flush_on_enqueue = settings.SYNC_ON_ENQUEUE if flush_on_enqueue is None else flush_on_enqueue
        self._flush_lock = threading.Lock()
        self._resolved_ids: Dict[str, str] = {}  # temporary id -> server id
        connectivity.add_listener(self._on_connectivity_change)

    @property
    def is_online(self) -> bool:
        return self.connectivity.is_online

    @property
    def is_syncing(self) -> bool:
        return self._flush_lock.locked()

    # ── Queue state ──────────────────────────────────────────────────────────

    def enqueue(
        self,
        kind: str,
        entity_type: str,
        payload: Optional[Dict[str, Any]] = None,
        target_id: Optional[str] = None,
    ) -> PendingOperation:
        """Append a mutation and flush straight away when online."""
        if kind not in (OperationKind.CREATE, OperationKind.UPDATE, OperationKind.DELETE):
            raise ValueError(f"Unknown operation kind: {kind}")
        if entity_type not in (EntityType.SUBSCRIPTION, EntityType.PAYMENT):
            raise ValueError(f"Unknown entity type: {entity_type}")

        with self.store.session() as db:
            row = SyncOperation(kind=kind, entity_type=entity_type, payload=payload, target_id=target_id)
            db.add(row)
            db.flush()
            operation = PendingOperation.from_row(row)
        logger.info("Queued %s %s %s (seq=%s)", kind, entity_type, target_id or "", operation.seq)

        if self.is_online and self.flush_on_enqueue:
            self.flush()
        return operation

    def pending_operations(self) -> List[PendingOperation]:
        with self.store.session() as db:
            rows = db.query(SyncOperation).order_by(SyncOperation.seq).all()
            return [PendingOperation.from_row(r) for r in rows]

    @property
    def pending_count(self) -> int:
        with self.store.session() as db:
            return db.query(SyncOperation).count()

    @property
    def last_sync_at(self) -> Optional[datetime]:
        value = self.store.get_setting(LAST_SYNC_KEY)
        return ensure_utc(datetime.fromisoformat(value)) if value else None

    def resolve_id(self, subscription_id: str) -> str:
        """Server id for a temporary id confirmed during this session."""
        return self._resolved_ids.get(subscription_id, subscription_id)

    def pending_target_ids(self, kind: Optional[str] = None, entity_type: str = EntityType.SUBSCRIPTION) -> Set[str]:
        """Ids of records with queued operations, optionally of one kind."""
        with self.store.session() as db:
            query = db.query(SyncOperation.target_id).filter(
                SyncOperation.entity_type == entity_type, SyncOperation.target_id.isnot(None)
            )
            if kind is not None:
                query = query.filter(SyncOperation.kind == kind)
            return {row.target_id for row in query.all()}

    def has_pending(self, target_id: str) -> bool:
        return target_id in self.pending_target_ids()

    def find_pending_create(self, temp_id: str) -> Optional[PendingOperation]:
        with self.store.session() as db:
            row = (
                db.query(SyncOperation)
                .filter(SyncOperation.kind == OperationKind.CREATE, SyncOperation.target_id == temp_id)
                .first()
            )
            return PendingOperation.from_row(row) if row else None

    def amend_pending_create(self, temp_id: str, payload: Dict[str, Any]) -> bool:
        """Fold an offline edit of a never-synced record into its CREATE."""
        with self.store.session() as db:
            row = (
                db.query(SyncOperation)
                .filter(SyncOperation.kind == OperationKind.CREATE, SyncOperation.target_id == temp_id)
                .first()
            )
            if row is None:
                return False
            row.payload = payload
            return True

    def discard_pending_create(self, temp_id: str) -> bool:
        """Drop every queued operation for a record the server never saw."""
        with self.store.session() as db:
            rows = db.query(SyncOperation).filter(SyncOperation.target_id == temp_id).all()
            found = any(r.kind == OperationKind.CREATE for r in rows)
            if found:
                for row in rows:
                    db.delete(row)
        if found:
            logger.info("Discarded queued operations for unsynced record %s", temp_id)
        return found

    # ── Replay ───────────────────────────────────────────────────────────────

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            logger.info("Connection restored, flushing %d pending operation(s)", self.pending_count)
            self.flush()

    def flush(self) -> SyncReport:
        """
        Replay pending operations sequentially in FIFO order.

        A failing operation is kept and the pass moves on, except that later
        operations on the same record are deferred so they never overtake it.
        Never raises.
        """
        report = SyncReport()
        if not self.is_online:
            report.skipped = True
            return report
        if not self._flush_lock.acquire(blocking=False):
            logger.debug("Flush already in progress, skipping")
            report.skipped = True
            return report

        try:
            attempted = set()
            blocked = set()
            while True:
                # Operations enqueued during the pass are picked up by the next batch
                batch = [op for op in self.pending_operations() if op.seq not in attempted]
                if not batch:
                    break
                for op in batch:
                    attempted.add(op.seq)
                    report.total += 1
                    if op.target_id:
                        op.target_id = self.resolve_id(op.target_id)
                    key = (op.entity_type, op.target_id)
                    if op.target_id and key in blocked:
                        report.deferred += 1
                        continue
                    try:
                        applied = self._replay(op)
                    except Exception as exc:
                        report.failed += 1
                        if op.target_id:
                            blocked.add(key)
                        self._mark_failed(op.seq, str(exc))
                        logger.warning("Sync failed for %s %s %s: %s", op.kind, op.entity_type, op.target_id, exc)
                        continue
                    if applied:
                        report.applied += 1
                    else:
                        report.dropped += 1
                    self._remove(op.seq)

            if report.failed == 0 and report.deferred == 0:
                self.store.set_setting(LAST_SYNC_KEY, utcnow().isoformat())
        except Exception as exc:
            logger.error("Sync pass aborted: %s", exc)
        finally:
            self._flush_lock.release()

        if report.total:
            logger.info(
                "Sync pass finished: %d applied, %d failed, %d deferred, %d dropped",
                report.applied, report.failed, report.deferred, report.dropped,
            )
        return report

    def _replay(self, op: PendingOperation) -> bool:
        """Replay one operation; False means it was dropped as unappliable."""
        if op.kind == OperationKind.CREATE:
            self._replay_create(op)
        elif op.kind == OperationKind.UPDATE:
            return self._replay_update(op)
        elif op.kind == OperationKind.DELETE:
            self._replay_delete(op)
        return True

    def _replay_create(self, op: PendingOperation) -> None:
        if op.entity_type != EntityType.SUBSCRIPTION:
            self.api.create(op.entity_type, op.payload)
            return

        local = self.store.get_subscription(op.target_id) if op.target_id else None
        subscription = local or Subscription.model_validate(op.payload)
        wire = to_api_payload(subscription)
        wire.pop("id", None)
        body = self.api.create(op.entity_type, wire)
        server_id = extract_created_id(body)
        confirmed = subscription.model_copy(update={"id": server_id, "sync_status": RecordState.CONFIRMED})
        self.store.replace_subscription_id(op.target_id or server_id, confirmed)
        if op.target_id:
            self._resolved_ids[op.target_id] = server_id
            self._repoint(op.target_id, server_id)
        logger.info("Subscription %s confirmed by server as %s", op.target_id, server_id)

    def _replay_update(self, op: PendingOperation) -> bool:
        if op.entity_type != EntityType.SUBSCRIPTION:
            self.api.update(op.entity_type, op.target_id, op.payload)
            return True

        subscription = Subscription.model_validate({**op.payload, "id": op.target_id})
        try:
            self.api.update(op.entity_type, op.target_id, to_api_payload(subscription))
        except NotFoundError:
            logger.error(
                "Dropping queued update of %s: record no longer exists on server (attempt %d)",
                op.target_id, op.attempts + 1,
            )
            self.store.delete_subscription(op.target_id)
            return False
        existing = self.store.get_subscription(op.target_id)
        if existing is None or self._has_later_ops(op):
            return True
        merged = existing.model_copy(update={**subscription.model_dump(), "sync_status": RecordState.CONFIRMED})
        self.store.update_subscription(merged)
        return True

    def _replay_delete(self, op: PendingOperation) -> None:
        try:
            self.api.delete(op.entity_type, op.target_id)
        except NotFoundError:
            logger.info("%s %s already gone on server (404)", op.entity_type, op.target_id)
        if op.entity_type == EntityType.SUBSCRIPTION:
            self.store.delete_subscription(op.target_id)

    def _repoint(self, temp_id: str, server_id: str) -> None:
        with self.store.session() as db:
            rows = db.query(SyncOperation).filter(SyncOperation.target_id == temp_id).all()
            for row in rows:
                row.target_id = server_id
                if row.payload and row.payload.get("id") == temp_id:
                    row.payload = {**row.payload, "id": server_id}
        if rows:
            logger.info("Re-pointed %d queued operation(s) from %s to %s", len(rows), temp_id, server_id)

    def _has_later_ops(self, op: PendingOperation) -> bool:
        with self.store.session() as db:
            return (
                db.query(SyncOperation)
                .filter(SyncOperation.target_id == op.target_id, SyncOperation.seq > op.seq)
                .count()
                > 0
            )

    def _mark_failed(self, seq: int, error: str) -> None:
        with self.store.session() as db:
            row = db.get(SyncOperation, seq)
            if row is not None:
                row.attempts = (row.attempts or 0) + 1
                row.last_error = error

    def _remove(self, seq: int) -> None:
        with self.store.session() as db:
            row = db.get(SyncOperation, seq)
            if row is not None:
                db.delete(row)
