"""Thin wrapper over the Stripe SDK.

Everything that talks to Stripe goes through ``StripeGateway`` so the rest of
the app only sees plain dicts and the domain errors below.
"""
import logging
import stripe
from .events import ACCOUNT_METADATA_KEY

logger = logging.getLogger(__name__)


class BillingError(Exception):
    pass


class BillingNotConfigured(BillingError):
    pass


class NoSuchCustomer(BillingError):
    pass


def _as_dict(obj):
    if obj is None:
        return None
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    return obj.to_dict()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class StripeGateway:
    def __init__(self, api_key: str, price_id: str = "", trial_days: int = 0):
        self.api_key = api_key
        self.price_id = price_id
        self.trial_days = trial_days

    def _require_key(self):
        if not self.api_key:
            raise BillingNotConfigured("STRIPE_SECRET_KEY is not set")

    # --- webhooks -------------------------------------------------------

    @staticmethod
    def verify_webhook(payload: bytes, sig_header: str, secret: str) -> None:
        """Raise ``stripe.SignatureVerificationError`` unless the payload is signed with ``secret``."""
        stripe.Webhook.construct_event(payload, sig_header, secret)

    # --- lookups --------------------------------------------------------

    def retrieve_subscription(self, subscription_id: str) -> dict:
        self._require_key()
        return _as_dict(stripe.Subscription.retrieve(subscription_id, api_key=self.api_key))

    def retrieve_customer(self, customer_id: str) -> dict:
        self._require_key()
        return _as_dict(stripe.Customer.retrieve(customer_id, api_key=self.api_key))

    def list_customers_by_email(self, email: str, limit: int = 10) -> list:
        self._require_key()
        result = stripe.Customer.list(email=email, limit=limit, api_key=self.api_key)
        return [_as_dict(c) for c in result.data]

    def search_customers(self, query: str, limit: int = 1) -> list:
        self._require_key()
        result = stripe.Customer.search(query=query, limit=limit, api_key=self.api_key)
        return [_as_dict(c) for c in result.data]

    def list_subscriptions(self, customer_id: str, limit: int = 10) -> list:
        self._require_key()
        result = stripe.Subscription.list(customer=customer_id, status="all", limit=limit, api_key=self.api_key)
        return [_as_dict(s) for s in result.data]

    def find_customer_by_email(self, email: str) -> dict | None:
        """Exact email match first, then Stripe's search index."""
        customers = self.list_customers_by_email(email, limit=1)
        if customers:
            return customers[0]
        try:
            found = self.search_customers(f"email:'{_escape(email)}'")
        except stripe.InvalidRequestError:
            # search is not enabled for every account
            logger.warning("Customer search unavailable, exact match only")
            return None
        return found[0] if found else None

    def get_or_create_customer(self, account_id: str, email: str) -> dict:
        """Reuse a single Stripe customer per account, backfilling metadata on the way."""
        self._require_key()
        try:
            found = self.search_customers(f"metadata['{ACCOUNT_METADATA_KEY}']:'{_escape(account_id)}'")
        except stripe.InvalidRequestError:
            found = []
        if found:
            customer = found[0]
            if not customer.get("email") and email:
                stripe.Customer.modify(customer["id"], email=email, api_key=self.api_key)
            return customer

        by_email = self.list_customers_by_email(email, limit=1)
        if by_email:
            customer = by_email[0]
            metadata = dict(customer.get("metadata") or {})
            if metadata.get(ACCOUNT_METADATA_KEY) != account_id:
                metadata[ACCOUNT_METADATA_KEY] = account_id
                stripe.Customer.modify(customer["id"], metadata=metadata, api_key=self.api_key)
            return customer

        return _as_dict(stripe.Customer.create(
            email=email,
            metadata={ACCOUNT_METADATA_KEY: account_id},
            api_key=self.api_key,
        ))

    # --- sessions -------------------------------------------------------

    def create_checkout_session(self, *, account_id: str, email: str, success_url: str, cancel_url: str) -> str:
        if not self.api_key or not self.price_id:
            raise BillingNotConfigured("Stripe not configured")
        customer = self.get_or_create_customer(account_id, email)
        subscription_data = {"metadata": {ACCOUNT_METADATA_KEY: account_id}}
        if self.trial_days > 0:
            subscription_data["trial_period_days"] = self.trial_days
        session = stripe.checkout.Session.create(
            mode="subscription",
            customer=customer["id"],
            client_reference_id=account_id,
            line_items=[{"price": self.price_id, "quantity": 1}],
            subscription_data=subscription_data,
            metadata={ACCOUNT_METADATA_KEY: account_id},
            allow_promotion_codes=True,
            billing_address_collection="auto",
            success_url=success_url,
            cancel_url=cancel_url,
            api_key=self.api_key,
        )
        logger.info("Created checkout session %s for account %s", session.id, account_id)
        return session.url

    def create_portal_session(self, email: str, return_url: str) -> str:
        self._require_key()
        customer = self.find_customer_by_email(email)
        if customer is None:
            raise NoSuchCustomer(email)
        portal = stripe.billing_portal.Session.create(
            customer=customer["id"],
            return_url=return_url,
            api_key=self.api_key,
        )
        return portal.url

    # --- subscriptions --------------------------------------------------

    def cancel_subscription(self, subscription_id: str) -> dict:
        self._require_key()
        return _as_dict(stripe.Subscription.cancel(subscription_id, api_key=self.api_key))

    def cancel_at_period_end(self, subscription_id: str) -> dict:
        self._require_key()
        return _as_dict(stripe.Subscription.modify(subscription_id, cancel_at_period_end=True,
                                                   api_key=self.api_key))
