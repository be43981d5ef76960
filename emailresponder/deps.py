import logging
from functools import lru_cache
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from .auth import IdentityError, decode_identity_token
from .config import Settings, get_settings
from .db import get_db
from .generation import ReplyGenerator
from .models import Account
from .payments import StripeGateway
from .store import SubscriptionStore

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# Process-wide clients: built once from settings on first use, shared by all requests.
@lru_cache(maxsize=1)
def _gateway(settings: Settings) -> StripeGateway:
    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY is not set")
    return StripeGateway(settings.stripe_secret_key, settings.stripe_price_id, settings.stripe_trial_days)


@lru_cache(maxsize=1)
def _generator(settings: Settings) -> ReplyGenerator:
    return ReplyGenerator(settings.openai_api_key, settings.openai_model, settings.openai_timeout_seconds)


def get_gateway(settings: Settings = Depends(get_settings)) -> StripeGateway:
    return _gateway(settings)


def get_generator(settings: Settings = Depends(get_settings)) -> ReplyGenerator:
    return _generator(settings)


def get_store(db: Session = Depends(get_db)) -> SubscriptionStore:
    return SubscriptionStore(db)


def get_current_account(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    store: SubscriptionStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> Account:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing auth token")
    try:
        claims = decode_identity_token(credentials.credentials, settings)
    except IdentityError:
        raise HTTPException(status_code=401, detail="Invalid token")
    email = (claims.get("email") or "").strip().lower() or None
    # first sign-in creates the account
    return store.ensure_account(str(claims["sub"]), email)


def require_active_subscription(
    account: Account = Depends(get_current_account),
    store: SubscriptionStore = Depends(get_store),
) -> Account:
    if not store.has_access(account.id):
        raise HTTPException(status_code=402, detail="Subscription required")
    return account
