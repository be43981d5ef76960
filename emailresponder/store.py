import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy.orm import Session
from .models import Account

logger = logging.getLogger(__name__)


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAUSED = "paused"


# The one access predicate used by every gate.
ACCESS_STATUSES = frozenset({SubscriptionStatus.TRIALING.value, SubscriptionStatus.ACTIVE.value})


def grants_access(status) -> bool:
    if isinstance(status, SubscriptionStatus):
        status = status.value
    return status in ACCESS_STATUSES


@dataclass(frozen=True)
class SubscriptionSnapshot:
    subscription_id: str | None
    status: str | None
    current_period_end: datetime | None = None
    price_id: str | None = None

    @property
    def active(self) -> bool:
        return grants_access(self.status)

    def as_dict(self) -> dict:
        end = self.current_period_end
        return {
            "subscriptionId": self.subscription_id,
            "status": self.status,
            "currentPeriodEnd": int(end.timestamp()) if end else None,
            "priceId": self.price_id,
        }


def from_timestamp(value) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class SubscriptionStore:
    """Latest known subscription state per account, backed by the ``accounts`` table."""

    def __init__(self, db: Session):
        self.db = db

    def get_account(self, account_id: str) -> Account | None:
        return self.db.get(Account, account_id)

    def find_by_customer(self, customer_id: str) -> Account | None:
        if not customer_id:
            return None
        return self.db.query(Account).filter(Account.stripe_customer_id == customer_id).first()

    def _get_or_create(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if account is None:
            account = Account(id=account_id)
            self.db.add(account)
        return account

    def ensure_account(self, account_id: str, email: str | None = None, replace_email: bool = True) -> Account:
        """Create the account on first sight. With ``replace_email=False`` a stored email is left alone."""
        account = self.get_account(account_id)
        if account is not None and (not email or account.email == email):
            return account
        if account is not None and account.email and not replace_email:
            return account
        if account is None:
            account = Account(id=account_id)
            self.db.add(account)
        if email:
            account.email = email
        self.db.commit()
        self.db.refresh(account)
        return account

    def link_customer(self, account_id: str, customer_id: str, email: str | None = None) -> None:
        account = self._get_or_create(account_id)
        if account.stripe_customer_id and account.stripe_customer_id != customer_id:
            logger.warning("Account %s relinked from customer %s to %s",
                           account_id, account.stripe_customer_id, customer_id)
        account.stripe_customer_id = customer_id
        if email and not account.email:
            account.email = email
        self.db.commit()

    def set_status(self, account_id: str, snapshot: SubscriptionSnapshot) -> None:
        account = self._get_or_create(account_id)
        account.subscription_id = snapshot.subscription_id
        account.subscription_status = snapshot.status
        account.current_period_end = snapshot.current_period_end
        account.price_id = snapshot.price_id
        self.db.commit()
        logger.info("Account %s subscription %s -> %s", account_id, snapshot.subscription_id, snapshot.status)

    def get_status(self, account_id: str) -> SubscriptionSnapshot | None:
        account = self.get_account(account_id)
        if account is None or account.subscription_status is None:
            return None
        end = account.current_period_end
        # sqlite drops tzinfo on the way back
        if end is not None and end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)
        return SubscriptionSnapshot(
            subscription_id=account.subscription_id,
            status=account.subscription_status,
            current_period_end=end,
            price_id=account.price_id,
        )

    def has_access(self, account_id: str) -> bool:
        snapshot = self.get_status(account_id)
        return snapshot is not None and snapshot.active
