import secrets
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from settlement_hub.database import BALANCE_CHECK_NAME, Base


def generate_id() -> str:
    return str(uuid.uuid4())


def generate_referral_code() -> str:
    return secrets.token_hex(4).upper()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(Base):
    __tablename__ = "accounts"
    id = Column(String(36), primary_key=True, default=generate_id)
    username = Column(String(50), unique=True, index=True, nullable=False)
    balance_cents = Column(BigInteger, nullable=False, default=0)
    total_wagered_cents = Column(BigInteger, nullable=False, default=0)
    total_won_cents = Column(BigInteger, nullable=False, default=0)
    referral_code = Column(String(16), unique=True, index=True, nullable=False, default=generate_referral_code)
    referred_by = Column(String(36), ForeignKey("accounts.id"), index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    __table_args__ = (CheckConstraint("balance_cents >= 0", name=BALANCE_CHECK_NAME),)

    wagers = relationship("WagerRecord", back_populates="account")
    funds_requests = relationship("FundsRequest", back_populates="account")

class WagerRecord(Base):
    __tablename__ = "wager_records"
    id = Column(String(36), primary_key=True, default=generate_id)
    account_id = Column(String(36), ForeignKey("accounts.id"), index=True, nullable=False)
    game_type = Column(String(32), nullable=False)
    bet_cents = Column(BigInteger, nullable=False)
    payout_cents = Column(BigInteger, nullable=False)
    result = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    account = relationship("Account", back_populates="wagers")

class FundsRequest(Base):
    __tablename__ = "funds_requests"
    id = Column(String(36), primary_key=True, default=generate_id)
    account_id = Column(String(36), ForeignKey("accounts.id"), index=True, nullable=False)
    kind = Column(String(16), nullable=False)  # deposit|withdrawal
    amount_cents = Column(BigInteger, nullable=False)
    fee_cents = Column(BigInteger, nullable=False, default=0)
    currency = Column(String(16), nullable=False)
    network = Column(String(16), nullable=False)
    external_reference = Column(String(128), nullable=False)  # tx hash or destination address
    status = Column(String(16), index=True, nullable=False)
    reviewed_by = Column(String(36), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    account = relationship("Account", back_populates="funds_requests")

class UserRole(Base):
    __tablename__ = "user_roles"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), index=True, nullable=False)
    role = Column(String(16), nullable=False)
    granted_by = Column(String(36), nullable=True)
    granted_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_role"),)

class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"
    id = Column(Integer, primary_key=True)
    key = Column(String, unique=True, index=True, nullable=False)
    request_hash = Column(String, nullable=False)
    response_body = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

class ChangeEvent(Base):
    __tablename__ = "change_events"
    id = Column(Integer, primary_key=True)
    event_type = Column(String, nullable=False)
    account_id = Column(String(36), index=True, nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String, nullable=False, default="pending")
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
