from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from settlement_hub.models import models
from settlement_hub.referrals import ReferralSummary
from settlement_hub.settlement import SettlementResult


class AccountCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    accountId: Optional[str] = Field(None, max_length=36)
    referralCode: Optional[str] = None

class AccountResponse(BaseModel):
    id: str
    username: str
    balanceCents: int
    totalWageredCents: int
    totalWonCents: int
    referralCode: str
    referredBy: Optional[str] = None

    @classmethod
    def from_model(cls, account: models.Account) -> "AccountResponse":
        return cls(
            id=account.id,
            username=account.username,
            balanceCents=account.balance_cents,
            totalWageredCents=account.total_wagered_cents,
            totalWonCents=account.total_won_cents,
            referralCode=account.referral_code,
            referredBy=account.referred_by,
        )

class SettleRequest(BaseModel):
    betCents: int
    options: dict[str, Any] = {}

class SettleResponse(BaseModel):
    wagerId: str
    gameType: str
    betCents: int
    payoutCents: int
    balanceCents: int
    result: dict[str, Any]

    @classmethod
    def from_result(cls, settled: SettlementResult) -> "SettleResponse":
        return cls(
            wagerId=settled.wager_id,
            gameType=settled.game_type,
            betCents=settled.bet_cents,
            payoutCents=settled.payout_cents,
            balanceCents=settled.new_balance_cents,
            result=settled.result,
        )

class WagerResponse(BaseModel):
    id: str
    gameType: str
    betCents: int
    payoutCents: int
    result: dict[str, Any]
    createdAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, wager: models.WagerRecord) -> "WagerResponse":
        return cls(
            id=wager.id,
            gameType=wager.game_type,
            betCents=wager.bet_cents,
            payoutCents=wager.payout_cents,
            result=wager.result,
            createdAt=wager.created_at,
        )

class FundsRequestCreate(BaseModel):
    amountCents: int
    currency: str = "USDT"
    network: str
    externalReference: str

class FundsRequestResponse(BaseModel):
    id: str
    accountId: str
    kind: str
    amountCents: int
    feeCents: int
    currency: str
    network: str
    externalReference: str
    status: str
    reviewedBy: Optional[str] = None
    reviewedAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, request: models.FundsRequest) -> "FundsRequestResponse":
        return cls(
            id=request.id,
            accountId=request.account_id,
            kind=request.kind,
            amountCents=request.amount_cents,
            feeCents=request.fee_cents,
            currency=request.currency,
            network=request.network,
            externalReference=request.external_reference,
            status=request.status,
            reviewedBy=request.reviewed_by,
            reviewedAt=request.reviewed_at,
            createdAt=request.created_at,
        )

class RoleGrantRequest(BaseModel):
    userId: str
    role: str

class RoleResponse(BaseModel):
    userId: str
    role: str
    grantedBy: Optional[str] = None
    grantedAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, grant: models.UserRole) -> "RoleResponse":
        return cls(userId=grant.user_id, role=grant.role, grantedBy=grant.granted_by, grantedAt=grant.granted_at)

class ReferredAccountResponse(BaseModel):
    accountId: str
    username: str
    totalWageredCents: int
    commissionCents: int

class ReferralResponse(BaseModel):
    accountId: str
    referralCode: str
    commissionRate: float
    totalCommissionCents: int
    referred: list[ReferredAccountResponse]

    @classmethod
    def from_summary(cls, summary: ReferralSummary) -> "ReferralResponse":
        return cls(
            accountId=summary.account_id,
            referralCode=summary.referral_code,
            commissionRate=summary.commission_rate,
            totalCommissionCents=summary.total_commission_cents,
            referred=[
                ReferredAccountResponse(
                    accountId=r.account_id,
                    username=r.username,
                    totalWageredCents=r.total_wagered_cents,
                    commissionCents=r.commission_cents,
                )
                for r in summary.referred
            ],
        )
