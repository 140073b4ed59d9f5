"""
Ledger store: the single source of truth for account balances.

Methods run inside the caller's unit of work and never commit. Balance
changes go through one conditional UPDATE whose predicate enforces the
balance floor, so two concurrent callers can never both spend the same funds.
"""
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from settlement_hub.database import BIGINT_MAX
from settlement_hub.errors import Conflict, InsufficientFunds, LedgerIntegrityError, NotFound, ValidationFailed
from settlement_hub.logging_config import get_logger
from settlement_hub.models import models

logger = get_logger(__name__)


class LedgerStore:
    def create_account(
        self,
        db: Session,
        username: str,
        referral_code: str | None = None,
        account_id: str | None = None,
    ) -> models.Account:
        username = username.strip()
        if not username:
            raise ValidationFailed("username is required")
        if db.query(models.Account).filter(models.Account.username == username).first():
            raise Conflict("username already taken")
        if account_id and db.get(models.Account, account_id):
            raise Conflict("account already exists")
        referrer_id = None
        if referral_code:
            referrer = db.query(models.Account).filter(models.Account.referral_code == referral_code).first()
            if referrer is None:
                raise NotFound("unknown referral code")
            referrer_id = referrer.id
        account = models.Account(username=username, referred_by=referrer_id)
        if account_id:
            account.id = account_id
        db.add(account)
        db.flush()
        logger.info("Created account account_id=%s username=%s referred_by=%s", account.id, username, referrer_id)
        return account

    def get_account(self, db: Session, account_id: str) -> models.Account:
        account = db.get(models.Account, account_id, populate_existing=True)
        if account is None:
            raise NotFound(f"account {account_id} not found")
        return account

    def get_balance(self, db: Session, account_id: str) -> int:
        balance = db.execute(
            select(models.Account.balance_cents).where(models.Account.id == account_id)
        ).scalar_one_or_none()
        if balance is None:
            raise NotFound(f"account {account_id} not found")
        return balance

    def adjust_balance(self, db: Session, account_id: str, delta_cents: int) -> int:
        """
        Apply ``delta_cents`` and return the new balance.

        The floor check and the write are the same statement: zero affected
        rows means the account is missing or the result would go negative.
        """
        if delta_cents < -BIGINT_MAX:
            current = self.get_balance(db, account_id)
            logger.warning("Rejected balance change account_id=%s delta_cents=%s balance_cents=%s", account_id, delta_cents, current)
            raise InsufficientFunds(f"insufficient funds: balance {current}, required {-delta_cents}")
        if delta_cents > BIGINT_MAX:
            raise LedgerIntegrityError(f"credit of {delta_cents} cents exceeds the balance range")
        stmt = (
            update(models.Account)
            .where(models.Account.id == account_id)
            .where(models.Account.balance_cents + delta_cents >= 0)
            .values(
                balance_cents=models.Account.balance_cents + delta_cents,
                updated_at=models.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        if result.rowcount == 0:
            current = self.get_balance(db, account_id)
            logger.warning(
                "Rejected balance change account_id=%s delta_cents=%s balance_cents=%s",
                account_id,
                delta_cents,
                current,
            )
            raise InsufficientFunds(f"insufficient funds: balance {current}, required {-delta_cents}")
        new_balance = self.get_balance(db, account_id)
        if new_balance < 0:
            raise LedgerIntegrityError(f"negative balance {new_balance} on account {account_id}")
        logger.info("Adjusted balance account_id=%s delta_cents=%s balance_cents=%s", account_id, delta_cents, new_balance)
        return new_balance

    def record_stats(self, db: Session, account_id: str, wagered_cents: int, won_cents: int) -> None:
        if wagered_cents < 0 or won_cents < 0:
            raise LedgerIntegrityError("cumulative counters cannot decrease")
        db.execute(
            update(models.Account)
            .where(models.Account.id == account_id)
            .values(
                total_wagered_cents=models.Account.total_wagered_cents + wagered_cents,
                total_won_cents=models.Account.total_won_cents + won_cents,
            )
            .execution_options(synchronize_session=False)
        )
