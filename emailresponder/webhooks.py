import logging
from .events import (
    ACCOUNT_METADATA_KEY,
    CheckoutSessionCompleted,
    InvoicePaymentFailed,
    SubscriptionChanged,
    SubscriptionPayload,
    UnhandledEvent,
    WebhookEvent,
)
from .payments import StripeGateway
from .store import SubscriptionStore

logger = logging.getLogger(__name__)


class SubscriptionSync:
    """Writes Stripe subscription objects into the store for the account that owns them."""

    def __init__(self, store: SubscriptionStore, gateway: StripeGateway):
        self.store = store
        self.gateway = gateway

    def resolve_account(self, subscription: SubscriptionPayload) -> str | None:
        if subscription.account_id:
            return subscription.account_id
        if not subscription.customer:
            return None
        account = self.store.find_by_customer(subscription.customer)
        if account is not None:
            return account.id
        customer = self.gateway.retrieve_customer(subscription.customer) or {}
        if customer.get("deleted"):
            return None
        return (customer.get("metadata") or {}).get(ACCOUNT_METADATA_KEY) or None

    def apply(self, subscription: SubscriptionPayload, account_id: str | None = None) -> str | None:
        account_id = account_id or self.resolve_account(subscription)
        if not account_id:
            logger.warning("No account for subscription %s (customer %s)", subscription.id, subscription.customer)
            return None
        if subscription.customer:
            account = self.store.get_account(account_id)
            if account is None or account.stripe_customer_id is None:
                self.store.link_customer(account_id, subscription.customer)
        self.store.set_status(account_id, subscription.snapshot())
        return account_id

    def apply_by_id(self, subscription_id: str, account_id: str | None = None) -> str | None:
        raw = self.gateway.retrieve_subscription(subscription_id)
        return self.apply(SubscriptionPayload.model_validate(raw), account_id)


class WebhookProcessor:
    def __init__(self, store: SubscriptionStore, gateway: StripeGateway):
        self.sync = SubscriptionSync(store, gateway)
        self.store = store

    def handle(self, event: WebhookEvent) -> None:
        logger.info("Stripe webhook %s (%s)", event.type, event.id)
        if isinstance(event, CheckoutSessionCompleted):
            self._checkout_completed(event)
        elif isinstance(event, SubscriptionChanged):
            self.sync.apply(event.payload)
        elif isinstance(event, InvoicePaymentFailed):
            self._invoice_payment_failed(event)
        elif isinstance(event, UnhandledEvent):
            logger.debug("Ignoring Stripe event %s", event.type)
        else:
            raise TypeError(f"unexpected event {type(event).__name__}")

    def _checkout_completed(self, event: CheckoutSessionCompleted) -> None:
        session = event.payload
        account_id = session.account_id
        if not account_id or not session.customer:
            logger.warning("Checkout session %s has no account or customer", session.id)
            return
        self.store.link_customer(account_id, session.customer, email=session.email)
        if session.subscription:
            self.sync.apply_by_id(session.subscription, account_id)

    def _invoice_payment_failed(self, event: InvoicePaymentFailed) -> None:
        subscription_id = event.payload.subscription_id
        if not subscription_id:
            return
        self.sync.apply_by_id(subscription_id)
