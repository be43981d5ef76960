import hmac
import logging
from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session
from .config import Settings, get_settings
from .db import get_db
from .deps import get_generator, require_active_subscription
from .generation import ReplyGenerator, ReplyRequest
from .history import save_history
from .models import Account

logger = logging.getLogger(__name__)

router = APIRouter(tags=["responder"])


def require_shared_secret(
    x_shared_secret: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.shared_secret
    if not expected or not x_shared_secret:
        raise HTTPException(status_code=401, detail="unauthorized")
    if not hmac.compare_digest(x_shared_secret.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="unauthorized")


@router.post("/emailresponder/generate", dependencies=[Depends(require_shared_secret)])
def generate(payload: ReplyRequest, generator: ReplyGenerator = Depends(get_generator)):
    return {"reply": generator.generate(payload)}


@router.post("/reply")
def reply(
    payload: ReplyRequest,
    account: Account = Depends(require_active_subscription),
    generator: ReplyGenerator = Depends(get_generator),
    db: Session = Depends(get_db),
):
    text = generator.generate(payload)
    item = save_history(
        db,
        account.id,
        subject=payload.subject,
        original_email=payload.body,
        reply=text,
        language=payload.language,
        tone=payload.tone,
        stance=payload.stance,
    )
    logger.info("Generated reply %s for account %s", item.id, account.id)
    return {
        "reply": text,
        "id": item.id,
        "meta": {"stance": payload.stance, "tone": payload.tone, "language": payload.language},
    }
