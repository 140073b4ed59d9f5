from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal

from sqlalchemy.orm import Session

from settlement_hub.models import models


@dataclass
class ReferredAccount:
    account_id: str
    username: str
    total_wagered_cents: int
    commission_cents: int


@dataclass
class ReferralSummary:
    account_id: str
    referral_code: str
    commission_rate: float
    referred: list[ReferredAccount] = field(default_factory=list)

    @property
    def total_commission_cents(self) -> int:
        return sum(r.commission_cents for r in self.referred)


class ReferralReport:
    """Read-only commission report: a fixed share of what referred players wagered."""

    def __init__(self, commission_rate: float):
        self.commission_rate = commission_rate

    def commission_for(self, wagered_cents: int) -> int:
        amount = Decimal(wagered_cents) * Decimal(str(self.commission_rate))
        return int(amount.to_integral_value(rounding=ROUND_DOWN))

    def for_account(self, db: Session, account: models.Account) -> ReferralSummary:
        referred = (
            db.query(models.Account)
            .filter(models.Account.referred_by == account.id)
            .order_by(models.Account.created_at)
            .all()
        )
        return ReferralSummary(
            account_id=account.id,
            referral_code=account.referral_code,
            commission_rate=self.commission_rate,
            referred=[
                ReferredAccount(
                    account_id=r.id,
                    username=r.username,
                    total_wagered_cents=r.total_wagered_cents,
                    commission_cents=self.commission_for(r.total_wagered_cents),
                )
                for r in referred
            ],
        )
