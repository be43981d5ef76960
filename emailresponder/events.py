"""Typed views over the Stripe webhook events we act on.

Each handled event type gets its own model; everything else parses into
``UnhandledEvent`` so dispatch stays exhaustive.
"""
from typing import Any, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
from .store import SubscriptionSnapshot, from_timestamp

# metadata key stamped on customers, sessions and subscriptions at checkout
ACCOUNT_METADATA_KEY = "account_id"


def _ref_id(value):
    # expanded references arrive as objects
    if isinstance(value, dict):
        return value.get("id")
    return value


def _metadata(value):
    return dict(value or {})


class StripeModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Price(StripeModel):
    id: str | None = None


class SubscriptionItem(StripeModel):
    price: Price | None = None
    current_period_end: int | None = None


class SubscriptionItems(StripeModel):
    data: list[SubscriptionItem] = Field(default_factory=list)


class SubscriptionPayload(StripeModel):
    id: str
    customer: str | None = None
    status: str | None = None
    current_period_end: int | None = None
    cancel_at_period_end: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    items: SubscriptionItems = Field(default_factory=SubscriptionItems)

    @field_validator("customer", mode="before")
    @classmethod
    def customer_id(cls, value):
        return _ref_id(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_dict(cls, value):
        return _metadata(value)

    @property
    def account_id(self) -> str | None:
        return self.metadata.get(ACCOUNT_METADATA_KEY) or None

    @property
    def first_item(self) -> SubscriptionItem | None:
        return self.items.data[0] if self.items.data else None

    @property
    def price_id(self) -> str | None:
        item = self.first_item
        return item.price.id if item and item.price else None

    @property
    def period_end(self) -> int | None:
        if self.current_period_end is not None:
            return self.current_period_end
        item = self.first_item
        return item.current_period_end if item else None

    def snapshot(self) -> SubscriptionSnapshot:
        return SubscriptionSnapshot(
            subscription_id=self.id,
            status=self.status,
            current_period_end=from_timestamp(self.period_end),
            price_id=self.price_id,
        )


class CustomerDetails(StripeModel):
    email: str | None = None


class CheckoutSessionPayload(StripeModel):
    id: str
    client_reference_id: str | None = None
    customer: str | None = None
    subscription: str | None = None
    customer_email: str | None = None
    customer_details: CustomerDetails | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def reference_ids(cls, value):
        return _ref_id(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_dict(cls, value):
        return _metadata(value)

    @property
    def account_id(self) -> str | None:
        return self.metadata.get(ACCOUNT_METADATA_KEY) or self.client_reference_id or None

    @property
    def email(self) -> str | None:
        if self.customer_details and self.customer_details.email:
            return self.customer_details.email
        return self.customer_email


class InvoicePayload(StripeModel):
    id: str | None = None
    customer: str | None = None
    subscription: str | None = None
    parent: dict[str, Any] | None = None

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def reference_ids(cls, value):
        return _ref_id(value)

    @property
    def subscription_id(self) -> str | None:
        if self.subscription:
            return self.subscription
        details = (self.parent or {}).get("subscription_details") or {}
        return _ref_id(details.get("subscription"))


class CheckoutSessionCompleted(StripeModel):
    id: str | None = None
    type: Literal["checkout.session.completed"]
    payload: CheckoutSessionPayload


class SubscriptionChanged(StripeModel):
    id: str | None = None
    type: Literal[
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    ]
    payload: SubscriptionPayload


class InvoicePaymentFailed(StripeModel):
    id: str | None = None
    type: Literal["invoice.payment_failed"]
    payload: InvoicePayload


class UnhandledEvent(StripeModel):
    id: str | None = None
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


WebhookEvent = Union[CheckoutSessionCompleted, SubscriptionChanged, InvoicePaymentFailed, UnhandledEvent]

EVENT_TYPES = {
    "checkout.session.completed": CheckoutSessionCompleted,
    "customer.subscription.created": SubscriptionChanged,
    "customer.subscription.updated": SubscriptionChanged,
    "customer.subscription.deleted": SubscriptionChanged,
    "invoice.payment_failed": InvoicePaymentFailed,
}


def parse_event(raw: dict) -> WebhookEvent:
    event_type = str(raw.get("type") or "")
    model = EVENT_TYPES.get(event_type, UnhandledEvent)
    data = raw.get("data") or {}
    return model.model_validate({
        "id": raw.get("id"),
        "type": event_type,
        "payload": data.get("object") or {},
    })
