"""
On-device record cache.
Subscriptions, categories, users and payment history keyed by id, with
secondary lookups by owning user and by email. Every write commits before
the call returns; there is no write-behind buffering.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.exceptions import LocalStoreError
from ..models.base import generate_uuid
from ..models.category import Category as CategoryRow
from ..models.payment import PaymentHistory
from ..models.subscription import Subscription as SubscriptionRow
from ..models.sync import AppSetting
from ..models.user import User as UserRow
from ..schemas.payment import Category, PaymentRecord
from ..schemas.subscription import Subscription
from ..schemas.user import User

logger = logging.getLogger(__name__)

_SUBSCRIPTION_COLUMNS = [c.name for c in SubscriptionRow.__table__.columns if c.name not in ("created_at", "updated_at")]
_USER_COLUMNS = [c.name for c in UserRow.__table__.columns]


class LocalStore:
    """SQLite-backed cache shared by the repository, auth and sync services."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def session(self) -> Iterator[Session]:
        """One unit of work: commit on success, roll back and re-raise on error."""
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Local store write failed: %s", exc)
            raise LocalStoreError(str(exc)) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ── Subscriptions ────────────────────────────────────────────────────────

    def insert_subscription(self, subscription: Subscription) -> Subscription:
        """Insert a new record; fails if the id already exists."""
        if not subscription.id:
            raise LocalStoreError("Subscription id is required", table="subscriptions")
        with self.session() as db:
            if db.get(SubscriptionRow, subscription.id) is not None:
                raise LocalStoreError(f"Subscription {subscription.id} already exists", table="subscriptions")
            db.add(SubscriptionRow(**self._subscription_values(subscription)))
        return subscription

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        with self.session() as db:
            row = db.get(SubscriptionRow, subscription_id)
            return Subscription.model_validate(row) if row else None

    def get_user_subscriptions(self, user_id: str) -> List[Subscription]:
        with self.session() as db:
            rows = (
                db.query(SubscriptionRow)
                .filter(SubscriptionRow.user_id == user_id)
                .order_by(SubscriptionRow.next_billing_date)
                .all()
            )
            return [Subscription.model_validate(r) for r in rows]

    def get_pending_subscriptions(self, user_id: str) -> List[Subscription]:
        """Records whose latest local change has not reached the server."""
        return [s for s in self.get_user_subscriptions(user_id) if s.is_pending]

    def update_subscription(self, subscription: Subscription) -> Subscription:
        """Full replace of an existing record."""
        with self.session() as db:
            row = db.get(SubscriptionRow, subscription.id)
            if row is None:
                raise LocalStoreError(f"Subscription {subscription.id} not found", table="subscriptions")
            for key, value in self._subscription_values(subscription).items():
                setattr(row, key, value)
        return subscription

    def upsert_subscription(self, subscription: Subscription) -> Subscription:
        """Insert, converting a primary-key conflict into an update."""
        with self.session() as db:
            values = self._subscription_values(subscription)
            row = db.get(SubscriptionRow, subscription.id)
            if row is None:
                db.add(SubscriptionRow(**values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
        return subscription

    def replace_subscription_id(self, old_id: str, subscription: Subscription) -> Subscription:
        """Re-key a temporary record under its server id in one transaction."""
        with self.session() as db:
            stale = db.get(SubscriptionRow, old_id)
            if stale is not None and old_id != subscription.id:
                db.delete(stale)
                db.flush()
            values = self._subscription_values(subscription)
            row = db.get(SubscriptionRow, subscription.id)
            if row is None:
                db.add(SubscriptionRow(**values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
        return subscription

    def delete_subscription(self, subscription_id: str) -> bool:
        with self.session() as db:
            row = db.get(SubscriptionRow, subscription_id)
            if row is None:
                return False
            db.delete(row)
            return True

    @staticmethod
    def _subscription_values(subscription: Subscription) -> dict:
        data = subscription.model_dump()
        return {key: data.get(key) for key in _SUBSCRIPTION_COLUMNS}

    # ── Users ────────────────────────────────────────────────────────────────

    def get_user(self, user_id: str) -> Optional[User]:
        with self.session() as db:
            row = db.get(UserRow, user_id)
            return User.model_validate(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.session() as db:
            row = db.query(UserRow).filter(UserRow.email == email).first()
            return User.model_validate(row) if row else None

    def upsert_user(self, user: User) -> User:
        """
        Insert-or-update keyed by id.

        When a cached row already owns the email under a different id, that
        row is re-keyed to the new id instead of violating the unique index.
        """
        values = {key: getattr(user, key) for key in _USER_COLUMNS}
        with self.session() as db:
            row = db.get(UserRow, user.id)
            by_email = db.query(UserRow).filter(UserRow.email == user.email).first()
            if by_email is not None and by_email.id != user.id:
                logger.info("Reconciling cached user %s -> %s by email", by_email.id, user.id)
                db.delete(by_email)
                db.flush()
            if row is None:
                db.add(UserRow(**values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
        return user

    # ── Categories ───────────────────────────────────────────────────────────

    def add_category(self, category: Category) -> Category:
        with self.session() as db:
            row = CategoryRow(name=category.name, description=category.description)
            db.add(row)
            db.flush()
            return Category.model_validate(row)

    def get_categories(self) -> List[Category]:
        with self.session() as db:
            return [Category.model_validate(r) for r in db.query(CategoryRow).order_by(CategoryRow.id).all()]

    # ── Payment history ──────────────────────────────────────────────────────

    def add_payment(self, payment: PaymentRecord) -> PaymentRecord:
        with self.session() as db:
            row = PaymentHistory(
                id=payment.id or generate_uuid(),
                subscription_id=payment.subscription_id,
                amount=payment.amount,
                payment_date=payment.payment_date,
                status=payment.status,
            )
            db.add(row)
            db.flush()
            return PaymentRecord.model_validate(row)

    def get_subscription_payments(self, subscription_id: str) -> List[PaymentRecord]:
        with self.session() as db:
            rows = (
                db.query(PaymentHistory)
                .filter(PaymentHistory.subscription_id == subscription_id)
                .order_by(PaymentHistory.payment_date)
                .all()
            )
            return [PaymentRecord.model_validate(r) for r in rows]

    # ── Scalar settings ──────────────────────────────────────────────────────

    def get_setting(self, key: str) -> Optional[str]:
        with self.session() as db:
            row = db.get(AppSetting, key)
            return row.value if row else None

    def set_setting(self, key: str, value: Optional[str]) -> None:
        with self.session() as db:
            row = db.get(AppSetting, key)
            if row is None:
                db.add(AppSetting(key=key, value=value))
            else:
                row.value = value

    def delete_setting(self, key: str) -> None:
        with self.session() as db:
            row = db.get(AppSetting, key)
            if row is not None:
                db.delete(row)
