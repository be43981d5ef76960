from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.sql import func

Base = declarative_base()


class Account(Base):
    __tablename__ = "accounts"
    # identity-provider subject id
    id = Column(String(128), primary_key=True)
    email = Column(String(320), nullable=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    # snapshot fields, always written together
    subscription_id = Column(String(255), nullable=True)
    subscription_status = Column(String(32), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    price_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class History(Base):
    __tablename__ = "history"
    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String(128), ForeignKey("accounts.id"), nullable=False)
    subject = Column(Text, nullable=False, default="")
    original_email = Column(Text, nullable=False, default="")
    reply = Column(Text, nullable=False, default="")
    language = Column(String(16), nullable=False, default="en")
    tone = Column(String(32), nullable=False, default="professional")
    stance = Column(String(16), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (Index("history_account_created_idx", "account_id", "created_at"),)
