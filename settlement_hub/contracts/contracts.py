from typing import Optional

from pydantic import BaseModel

from settlement_hub.config import EventType
from settlement_hub.models import models


class BalanceChangedEvent(BaseModel):
    event: str = EventType.BALANCE_CHANGED.value
    accountId: str
    balanceCents: int
    deltaCents: int
    reason: str
    referenceId: str

    @classmethod
    def from_account(cls, account_id: str, balance_cents: int, delta_cents: int, reason: str, reference_id: str) -> "BalanceChangedEvent":
        return cls(
            accountId=account_id,
            balanceCents=balance_cents,
            deltaCents=delta_cents,
            reason=reason,
            referenceId=reference_id,
        )


class FundsStatusChangedEvent(BaseModel):
    event: str = EventType.FUNDS_STATUS_CHANGED.value
    accountId: str
    requestId: str
    kind: str
    status: str
    amountCents: int
    reviewedBy: Optional[str] = None

    @classmethod
    def from_request(cls, request: models.FundsRequest) -> "FundsStatusChangedEvent":
        return cls(
            accountId=request.account_id,
            requestId=request.id,
            kind=request.kind,
            status=request.status,
            amountCents=request.amount_cents,
            reviewedBy=request.reviewed_by,
        )
