import csv
from io import StringIO
from typing import List, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from settlement_hub.config import FundsKind, FundsStatus
from settlement_hub.logging_config import get_logger
from settlement_hub.models import models


logger = get_logger(__name__)

def _sum_by_account(rows) -> dict:
    return {account_id: int(total or 0) for account_id, total in rows}

def generate_reconciliation_csv(db: Session) -> Tuple[str, int]:
    """
    Replay the ledger history for every account and return CSV text of the
    accounts whose stored balance or counters disagree, plus the mismatch count.
    """
    deposits = _sum_by_account(
        db.query(models.FundsRequest.account_id, func.sum(models.FundsRequest.amount_cents))
        .filter(models.FundsRequest.kind == FundsKind.DEPOSIT.value)
        .filter(models.FundsRequest.status == FundsStatus.APPROVED.value)
        .group_by(models.FundsRequest.account_id)
    )
    withdrawals = _sum_by_account(
        db.query(models.FundsRequest.account_id, func.sum(models.FundsRequest.amount_cents))
        .filter(models.FundsRequest.kind == FundsKind.WITHDRAWAL.value)
        .filter(models.FundsRequest.status == FundsStatus.COMPLETED.value)
        .group_by(models.FundsRequest.account_id)
    )
    bets = _sum_by_account(
        db.query(models.WagerRecord.account_id, func.sum(models.WagerRecord.bet_cents))
        .group_by(models.WagerRecord.account_id)
    )
    payouts = _sum_by_account(
        db.query(models.WagerRecord.account_id, func.sum(models.WagerRecord.payout_cents))
        .group_by(models.WagerRecord.account_id)
    )

    mismatches: List[tuple] = []
    for account in db.query(models.Account).order_by(models.Account.id).all():
        wagered = bets.get(account.id, 0)
        won = payouts.get(account.id, 0)
        expected_balance = deposits.get(account.id, 0) - withdrawals.get(account.id, 0) - wagered + won
        if (
            expected_balance != account.balance_cents
            or wagered != account.total_wagered_cents
            or won != account.total_won_cents
        ):
            mismatches.append((
                account.id,
                account.balance_cents,
                expected_balance,
                account.total_wagered_cents,
                wagered,
                account.total_won_cents,
                won,
            ))

    if mismatches:
        logger.warning("Reconciliation complete with %s mismatches", len(mismatches))
    else:
        logger.info("Reconciliation complete with 0 mismatches")
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "accountId",
        "balanceCents",
        "expectedBalanceCents",
        "totalWageredCents",
        "expectedWageredCents",
        "totalWonCents",
        "expectedWonCents",
    ])
    for row in mismatches:
        writer.writerow(row)

    return output.getvalue(), len(mismatches)
