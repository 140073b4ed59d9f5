"""
Deposit and withdrawal requests reviewed by an admin.

A request is created ``pending`` and moves exactly once: deposits to
``approved`` or ``rejected``, withdrawals to ``completed`` or ``rejected``.
Funds move in the same unit of work as the status flip and always before it,
so a request never reaches a success state without the ledger changing.
"""
import re

from sqlalchemy import update
from sqlalchemy.orm import Session

from settlement_hub.config import FundsKind, FundsSettings, FundsStatus, Role, funds_success_status
from settlement_hub.contracts.contracts import BalanceChangedEvent, FundsStatusChangedEvent
from settlement_hub.database import transaction
from settlement_hub.errors import InsufficientFunds, InvalidTransition, NotFound, ValidationFailed
from settlement_hub.ledger import LedgerStore
from settlement_hub.logging_config import get_logger
from settlement_hub.models import models
from settlement_hub.notifications import record_change
from settlement_hub.roles import RoleGuard

logger = get_logger(__name__)


class FundsWorkflow:
    def __init__(self, ledger: LedgerStore, guard: RoleGuard, config: FundsSettings):
        self.ledger = ledger
        self.guard = guard
        self.config = config

    def _validate(self, kind: FundsKind, amount_cents: int, currency: str, network: str, external_reference: str) -> int:
        """Check a new request against the funds rules and return its fee."""
        cfg = self.config
        if currency not in cfg.supported_currencies:
            raise ValidationFailed("unsupported currency")
        network_cfg = cfg.networks.get(network)
        if network_cfg is None:
            raise ValidationFailed("unsupported network")
        minimum = cfg.min_deposit_cents if kind == FundsKind.DEPOSIT else cfg.min_withdrawal_cents
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents < minimum:
            raise ValidationFailed(f"minimum {kind.value} is {minimum} cents")
        if amount_cents > cfg.max_amount_cents:
            raise ValidationFailed(f"maximum {kind.value} is {cfg.max_amount_cents} cents")
        if kind == FundsKind.DEPOSIT:
            if not cfg.tx_hash_min_length <= len(external_reference) <= cfg.tx_hash_max_length:
                raise ValidationFailed(
                    f"transaction hash must be {cfg.tx_hash_min_length}-{cfg.tx_hash_max_length} characters"
                )
            return 0
        if not re.match(network_cfg.address_pattern, external_reference):
            raise ValidationFailed(f"invalid {network} wallet address")
        if amount_cents <= network_cfg.withdrawal_fee_cents:
            raise ValidationFailed("amount does not cover the network fee")
        return network_cfg.withdrawal_fee_cents

    def create_request(
        self,
        db: Session,
        account_id: str,
        kind: FundsKind | str,
        amount_cents: int,
        currency: str,
        network: str,
        external_reference: str,
    ) -> models.FundsRequest:
        try:
            kind = FundsKind(kind)
        except ValueError as exc:
            raise ValidationFailed(f"unknown request kind {kind!r}") from exc
        external_reference = (external_reference or "").strip()
        fee = self._validate(kind, amount_cents, currency, network, external_reference)
        with transaction(db):
            balance = self.ledger.get_balance(db, account_id)
            # advisory only: funds are re-checked when the withdrawal completes
            if kind == FundsKind.WITHDRAWAL and amount_cents > balance:
                raise InsufficientFunds(f"insufficient funds: balance {balance}, requested {amount_cents}")
            request = models.FundsRequest(
                account_id=account_id,
                kind=kind.value,
                amount_cents=amount_cents,
                fee_cents=fee,
                currency=currency,
                network=network,
                external_reference=external_reference,
                status=FundsStatus.PENDING.value,
            )
            db.add(request)
            db.flush()
            record_change(db, FundsStatusChangedEvent.from_request(request), account_id)
        logger.info(
            "Created funds request request_id=%s account_id=%s kind=%s amount_cents=%s network=%s",
            request.id,
            account_id,
            kind.value,
            amount_cents,
            network,
        )
        return request

    def get_request(self, db: Session, request_id: str) -> models.FundsRequest:
        request = db.get(models.FundsRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFound(f"funds request {request_id} not found")
        return request

    def list_requests(
        self,
        db: Session,
        kind: FundsKind | str | None = None,
        status: FundsStatus | str | None = None,
        account_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[models.FundsRequest]:
        query = db.query(models.FundsRequest)
        try:
            if kind:
                query = query.filter(models.FundsRequest.kind == FundsKind(kind).value)
            if status and status != "all":
                query = query.filter(models.FundsRequest.status == FundsStatus(status).value)
        except ValueError as exc:
            raise ValidationFailed(str(exc)) from exc
        if account_id:
            query = query.filter(models.FundsRequest.account_id == account_id)
        return (
            query.order_by(models.FundsRequest.created_at.desc(), models.FundsRequest.id)
            .offset(offset)
            .limit(limit)
            .all()
        )

    def _load_pending(self, db: Session, request_id: str, kind: FundsKind | None) -> models.FundsRequest:
        request = self.get_request(db, request_id)
        if kind is not None and request.kind != kind.value:
            raise InvalidTransition(f"request {request_id} is a {request.kind}, not a {kind.value}")
        if request.status != FundsStatus.PENDING.value:
            logger.warning("Rejected transition request_id=%s status=%s", request_id, request.status)
            raise InvalidTransition(f"request {request_id} is already {request.status}")
        return request

    def _mark(self, db: Session, request: models.FundsRequest, status: FundsStatus, actor_id: str) -> None:
        """Flip ``pending`` to ``status``; a concurrent reviewer that got there first wins."""
        result = db.execute(
            update(models.FundsRequest)
            .where(models.FundsRequest.id == request.id)
            .where(models.FundsRequest.status == FundsStatus.PENDING.value)
            .values(status=status.value, reviewed_by=actor_id, reviewed_at=models.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransition(f"request {request.id} is no longer pending")
        db.refresh(request)
        record_change(db, FundsStatusChangedEvent.from_request(request), request.account_id)

    def _settle_request(self, db: Session, actor_id: str, request_id: str, kind: FundsKind) -> models.FundsRequest:
        self.guard.require_role(db, actor_id, Role.ADMIN)
        with transaction(db):
            request = self._load_pending(db, request_id, kind)
            delta = request.amount_cents if kind == FundsKind.DEPOSIT else -request.amount_cents
            balance = self.ledger.adjust_balance(db, request.account_id, delta)
            self._mark(db, request, funds_success_status[kind], actor_id)
            record_change(
                db,
                BalanceChangedEvent.from_account(request.account_id, balance, delta, reason=kind.value, reference_id=request.id),
                request.account_id,
            )
        logger.info(
            "Settled funds request request_id=%s kind=%s status=%s amount_cents=%s balance_cents=%s reviewed_by=%s",
            request.id,
            kind.value,
            request.status,
            request.amount_cents,
            balance,
            actor_id,
        )
        return request

    def approve_deposit(self, db: Session, actor_id: str, request_id: str) -> models.FundsRequest:
        return self._settle_request(db, actor_id, request_id, FundsKind.DEPOSIT)

    def complete_withdrawal(self, db: Session, actor_id: str, request_id: str) -> models.FundsRequest:
        return self._settle_request(db, actor_id, request_id, FundsKind.WITHDRAWAL)

    def reject(self, db: Session, actor_id: str, request_id: str) -> models.FundsRequest:
        self.guard.require_role(db, actor_id, Role.ADMIN)
        with transaction(db):
            request = self._load_pending(db, request_id, None)
            self._mark(db, request, FundsStatus.REJECTED, actor_id)
        logger.info("Rejected funds request request_id=%s kind=%s reviewed_by=%s", request.id, request.kind, actor_id)
        return request
