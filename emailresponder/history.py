from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from .db import get_db
from .deps import get_current_account
from .models import Account, History

router = APIRouter(prefix="/history", tags=["history"])

MAX_ITEMS = 200


class HistoryIn(BaseModel):
    subject: str = Field(min_length=1)
    originalEmail: str = Field(min_length=1)
    reply: str = Field(min_length=1)
    language: str = "en"
    tone: str = "professional"
    stance: str | None = None


def serialize(item: History) -> dict:
    return {
        "id": item.id,
        "subject": item.subject,
        "originalEmail": item.original_email,
        "reply": item.reply,
        "language": item.language,
        "tone": item.tone,
        "stance": item.stance,
        "createdAt": item.created_at.isoformat() if item.created_at else None,
    }


def save_history(db: Session, account_id: str, *, subject: str, original_email: str, reply: str,
                 language: str, tone: str, stance: str | None = None) -> History:
    item = History(
        account_id=account_id,
        subject=subject,
        original_email=original_email,
        reply=reply,
        language=language,
        tone=tone,
        stance=stance,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@router.get("")
def list_history(account: Account = Depends(get_current_account), db: Session = Depends(get_db)):
    items = (
        db.query(History)
        .filter(History.account_id == account.id)
        .order_by(History.created_at.desc(), History.id.desc())
        .limit(MAX_ITEMS)
        .all()
    )
    return [serialize(item) for item in items]


@router.post("")
def create_history(payload: HistoryIn, account: Account = Depends(get_current_account), db: Session = Depends(get_db)):
    item = save_history(
        db,
        account.id,
        subject=payload.subject,
        original_email=payload.originalEmail,
        reply=payload.reply,
        language=payload.language,
        tone=payload.tone,
        stance=payload.stance,
    )
    return {"id": item.id}


@router.delete("")
def delete_all_history(account: Account = Depends(get_current_account), db: Session = Depends(get_db)):
    deleted = db.query(History).filter(History.account_id == account.id).delete(synchronize_session=False)
    db.commit()
    return {"deletedCount": deleted}


@router.delete("/{history_id}")
def delete_history(
    history_id: int,
    userId: str | None = Query(None),
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    if userId is not None and userId != account.id:
        raise HTTPException(status_code=403, detail="Forbidden")
    item = db.query(History).filter(History.id == history_id, History.account_id == account.id).first()
    if item is None:
        raise HTTPException(status_code=404, detail="History item not found")
    db.delete(item)
    db.commit()
    return {"ok": True}
