from dotenv import load_dotenv
load_dotenv()

import os
from dataclasses import dataclass, field
from functools import lru_cache

DEFAULT_CORS_ORIGINS = "https://script.google.com,https://script.googleapis.com"


def _split(value: str) -> tuple:
    return tuple(v.strip().rstrip("/") for v in value.split(",") if v.strip())


@dataclass(frozen=True)
class Settings:
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_price_id: str = ""
    stripe_trial_days: int = 7
    shared_secret: str = ""
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 20.0
    database_url: str = "sqlite:///data/app.db"
    app_url: str = "http://localhost:3000"
    cors_allowed_origins: tuple = field(default_factory=lambda: _split(DEFAULT_CORS_ORIGINS))
    identity_jwt_secret: str = "devsecret"
    identity_jwks_url: str = ""
    identity_audience: str = ""
    identity_issuer: str = ""
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
            stripe_price_id=os.getenv("STRIPE_PRICE_ID", ""),
            stripe_trial_days=int(os.getenv("STRIPE_TRIAL_DAYS", "7") or "7"),
            shared_secret=os.getenv("ER_SHARED_SECRET", ""),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_timeout_seconds=float(os.getenv("OPENAI_TIMEOUT_SECONDS", "20") or "20"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///data/app.db"),
            app_url=(os.getenv("APP_URL") or "http://localhost:3000").rstrip("/"),
            cors_allowed_origins=_split(os.getenv("CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS)),
            identity_jwt_secret=os.getenv("IDENTITY_JWT_SECRET", "devsecret"),
            identity_jwks_url=os.getenv("IDENTITY_JWKS_URL", ""),
            identity_audience=os.getenv("IDENTITY_AUDIENCE", ""),
            identity_issuer=os.getenv("IDENTITY_ISSUER", ""),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
