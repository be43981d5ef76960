from fastapi import APIRouter, Depends, Request, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field
from starlette.concurrency import run_in_threadpool
from typing import Literal
from urllib.parse import quote
import json, logging, stripe
from .config import Settings, get_settings
from .deps import get_current_account, get_gateway, get_store
from .events import ACCOUNT_METADATA_KEY, SubscriptionPayload, parse_event
from .models import Account
from .payments import BillingError, BillingNotConfigured, NoSuchCustomer, StripeGateway
from .signature import verify
from .store import SubscriptionStore, grants_access
from .webhooks import SubscriptionSync, WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


class CheckoutIn(BaseModel):
    userId: str = Field(min_length=1, max_length=128)
    email: EmailStr
    redirect: str = "/emailresponder"


class PortalIn(BaseModel):
    email: EmailStr


class CancelIn(BaseModel):
    email: EmailStr
    mode: Literal["immediate", "at_period_end"] = "at_period_end"


class GmailStatusIn(BaseModel):
    email: str | None = None
    ts: str | int | None = None
    sig: str | None = None


def _upstream_failure(what: str) -> HTTPException:
    logger.exception("%s failed", what)
    return HTTPException(status_code=500, detail=f"{what} failed")


def _customers_for_email(gateway: StripeGateway, email: str) -> list:
    customers = gateway.list_customers_by_email(email)
    if customers:
        return customers
    found = gateway.find_customer_by_email(email)
    return [found] if found else []


def poll_subscriptions(gateway: StripeGateway, store: SubscriptionStore, email: str) -> dict:
    """Ask Stripe for every subscription under ``email`` and sync the current one into the store."""
    customers = _customers_for_email(gateway, email)
    subscriptions, current, owner = [], None, None
    for customer in customers:
        for raw in gateway.list_subscriptions(customer["id"]):
            sub = SubscriptionPayload.model_validate(raw)
            subscriptions.append(sub)
            if current is None and grants_access(sub.status):
                current, owner = sub, customer

    synced = current
    if synced is None and subscriptions:
        synced = subscriptions[0]
        owner = next((c for c in customers if c["id"] == synced.customer), None)
    if synced is not None:
        account_id = synced.account_id
        if not account_id and synced.customer:
            linked = store.find_by_customer(synced.customer)
            account_id = linked.id if linked else None
        if not account_id and owner:
            account_id = (owner.get("metadata") or {}).get(ACCOUNT_METADATA_KEY)
        if account_id:
            SubscriptionSync(store, gateway).apply(synced, account_id)

    return {"customers": customers, "subscriptions": subscriptions, "current": current}


def cancel_subscription(gateway: StripeGateway, store: SubscriptionStore, email: str, mode: str) -> dict:
    customers = _customers_for_email(gateway, email)
    if not customers:
        return {"ok": True, "state": "no_customer"}

    current = None
    for customer in customers:
        for raw in gateway.list_subscriptions(customer["id"]):
            if grants_access(raw.get("status")):
                current = raw
                break
        if current is not None:
            break
    if current is None:
        return {"ok": True, "state": "no_active_subscription"}

    if mode == "immediate":
        updated = gateway.cancel_subscription(current["id"])
        state = "canceled"
    else:
        updated = gateway.cancel_at_period_end(current["id"])
        state = "cancel_scheduled"
    subscription = SubscriptionPayload.model_validate(updated)
    try:
        SubscriptionSync(store, gateway).apply(subscription)
    except (stripe.StripeError, BillingError):
        # the subscription webhook carries the same state
        logger.exception("Could not record %s for subscription %s locally", state, subscription.id)
    logger.info("Subscription %s %s", subscription.id, state)
    return {
        "ok": True,
        "state": state,
        "subscriptionId": subscription.id,
        "cancelAtPeriodEnd": subscription.cancel_at_period_end,
    }


@router.get("/billing/status")
def billing_status(
    email: str | None = Query(None),
    gateway: StripeGateway = Depends(get_gateway),
    store: SubscriptionStore = Depends(get_store),
):
    email = (email or "").strip().lower()
    if not email:
        raise HTTPException(status_code=400, detail="email required")
    try:
        result = poll_subscriptions(gateway, store, email)
    except (stripe.StripeError, BillingNotConfigured):
        raise _upstream_failure("Billing status lookup")
    if not result["customers"]:
        return {"active": False, "status": None, "currentPeriodEnd": None, "priceId": None, "reason": "no_customer"}
    current = result["current"]
    return {
        "active": current is not None,
        "status": current.status if current else None,
        "currentPeriodEnd": current.period_end if current else None,
        "priceId": current.price_id if current else None,
    }


@router.get("/subscription-status")
def subscription_status(account: Account = Depends(get_current_account), store: SubscriptionStore = Depends(get_store)):
    snapshot = store.get_status(account.id)
    return {
        "hasActiveSubscription": snapshot is not None and snapshot.active,
        "subscription": snapshot.as_dict() if snapshot else None,
    }


@router.post("/subscription-status-gmail")
def subscription_status_gmail(
    payload: GmailStatusIn,
    settings: Settings = Depends(get_settings),
    gateway: StripeGateway = Depends(get_gateway),
    store: SubscriptionStore = Depends(get_store),
):
    email = (payload.email or "").strip().lower()
    if not email or payload.ts is None or not payload.sig:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not verify(email, str(payload.ts), payload.sig, settings.shared_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        result = poll_subscriptions(gateway, store, email)
    except (stripe.StripeError, BillingNotConfigured):
        raise _upstream_failure("Subscription status lookup")
    statuses = [sub.status for sub in result["subscriptions"]]
    return {"active": any(grants_access(s) for s in statuses), "statuses": statuses}


@router.post("/stripe/checkout")
def create_checkout_session(
    payload: CheckoutIn,
    settings: Settings = Depends(get_settings),
    gateway: StripeGateway = Depends(get_gateway),
    store: SubscriptionStore = Depends(get_store),
):
    redirect = payload.redirect if payload.redirect.startswith("/") and not payload.redirect.startswith("//") else "/emailresponder"
    email = str(payload.email).lower()
    store.ensure_account(payload.userId, email, replace_email=False)
    success_url = f"{settings.app_url}/thank-you?session_id={{CHECKOUT_SESSION_ID}}&redirect={quote(redirect, safe='')}"
    cancel_url = f"{settings.app_url}/pricing?canceled=1"
    try:
        url = gateway.create_checkout_session(
            account_id=payload.userId,
            email=email,
            success_url=success_url,
            cancel_url=cancel_url,
        )
    except BillingNotConfigured:
        logger.error("Checkout requested but Stripe is not configured")
        raise HTTPException(status_code=500, detail="Stripe not configured")
    except stripe.StripeError:
        raise _upstream_failure("Checkout session")
    return {"url": url}


@router.post("/stripe/portal")
def create_portal_session(
    payload: PortalIn,
    settings: Settings = Depends(get_settings),
    gateway: StripeGateway = Depends(get_gateway),
):
    try:
        url = gateway.create_portal_session(str(payload.email).lower(), f"{settings.app_url}/billing")
    except NoSuchCustomer:
        raise HTTPException(status_code=404, detail="no_customer")
    except (stripe.StripeError, BillingNotConfigured):
        raise _upstream_failure("Portal session")
    return {"url": url}


@router.post("/stripe/cancel")
def cancel(
    payload: CancelIn,
    gateway: StripeGateway = Depends(get_gateway),
    store: SubscriptionStore = Depends(get_store),
):
    try:
        return cancel_subscription(gateway, store, str(payload.email).lower(), payload.mode)
    except (stripe.StripeError, BillingNotConfigured):
        raise _upstream_failure("Cancel subscription")


@router.get("/stripe/webhook")
def webhook_probe():
    return {"ok": True}


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: StripeGateway = Depends(get_gateway),
    store: SubscriptionStore = Depends(get_store),
):
    if not settings.stripe_webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not set")
        raise HTTPException(status_code=500, detail="Misconfigured webhook")

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")
    try:
        gateway.verify_webhook(payload, sig_header, settings.stripe_webhook_secret)
        raw = json.loads(payload)
    except (stripe.SignatureVerificationError, ValueError) as exc:
        logger.warning("Webhook signature verification failed: %s", exc)
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = parse_event(raw)
        await run_in_threadpool(WebhookProcessor(store, gateway).handle, event)
    except Exception:
        await run_in_threadpool(store.db.rollback)
        logger.exception("Webhook handler failed for %s", raw.get("type"))
        raise HTTPException(status_code=500, detail="Webhook handler failed")
    return {"received": True}
