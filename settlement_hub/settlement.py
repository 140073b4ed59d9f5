"""
Wager settlement: the only path by which a game changes a balance.

``settle`` debits the stake, asks the game for an outcome using a random
source seeded on the server for this call, credits the payout, appends the
wager record and bumps the cumulative counters. All of it is one unit of
work: a failure at any step leaves the account exactly as it was.
"""
import random
import secrets
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.orm import Session

from settlement_hub.config import GamesSettings
from settlement_hub.contracts.contracts import BalanceChangedEvent
from settlement_hub.database import transaction
from settlement_hub.errors import InvalidStake, LedgerIntegrityError, NotFound
from settlement_hub.games import Game, RandomSource, build_games
from settlement_hub.ledger import LedgerStore
from settlement_hub.logging_config import get_logger
from settlement_hub.models import models
from settlement_hub.notifications import record_change

logger = get_logger(__name__)


@dataclass
class SettlementResult:
    wager_id: str
    game_type: str
    bet_cents: int
    payout_cents: int
    new_balance_cents: int
    result: dict[str, Any]


class SettlementEngine:
    def __init__(
        self,
        ledger: LedgerStore,
        games_config: GamesSettings,
        random_factory: Callable[[int], RandomSource] = random.Random,
    ):
        self.ledger = ledger
        self.games: dict[str, Game] = build_games(games_config)
        self.random_factory = random_factory

    def _game(self, game_type: str) -> Game:
        game = self.games.get(game_type)
        if game is None:
            raise NotFound(f"unknown or disabled game {game_type!r}")
        return game

    def settle(
        self,
        db: Session,
        account_id: str,
        game_type: str,
        bet_cents: int,
        options: dict | None = None,
    ) -> SettlementResult:
        options = options or {}
        if isinstance(bet_cents, bool) or not isinstance(bet_cents, int) or bet_cents <= 0:
            logger.warning("Rejected stake account_id=%s game_type=%s bet_cents=%s", account_id, game_type, bet_cents)
            raise InvalidStake("stake must be a positive amount")
        game = self._game(game_type)
        game.validate_stake(bet_cents, options)

        seed = secrets.randbits(64)
        with transaction(db):
            self.ledger.adjust_balance(db, account_id, -bet_cents)
            outcome = game.play(self.random_factory(seed), bet_cents, options)
            if outcome.payout_cents < 0:
                raise LedgerIntegrityError(f"{game_type} produced a negative payout")
            if outcome.payout_cents:
                balance = self.ledger.adjust_balance(db, account_id, outcome.payout_cents)
            else:
                balance = self.ledger.get_balance(db, account_id)
            result = {**outcome.result, "seed": str(seed)}
            record = models.WagerRecord(
                account_id=account_id,
                game_type=outcome.label or game.game_type.value,
                bet_cents=bet_cents,
                payout_cents=outcome.payout_cents,
                result=result,
            )
            db.add(record)
            db.flush()
            wager_id, label = record.id, record.game_type
            self.ledger.record_stats(db, account_id, bet_cents, outcome.payout_cents)
            record_change(
                db,
                BalanceChangedEvent.from_account(
                    account_id,
                    balance,
                    outcome.payout_cents - bet_cents,
                    reason="wager",
                    reference_id=wager_id,
                ),
                account_id,
            )
        logger.info(
            "Settled wager wager_id=%s account_id=%s game_type=%s bet_cents=%s payout_cents=%s balance_cents=%s",
            wager_id,
            account_id,
            label,
            bet_cents,
            outcome.payout_cents,
            balance,
        )
        return SettlementResult(
            wager_id=wager_id,
            game_type=label,
            bet_cents=bet_cents,
            payout_cents=outcome.payout_cents,
            new_balance_cents=balance,
            result=result,
        )

    def list_wagers(self, db: Session, account_id: str, limit: int = 50, offset: int = 0) -> list[models.WagerRecord]:
        return (
            db.query(models.WagerRecord)
            .filter(models.WagerRecord.account_id == account_id)
            .order_by(models.WagerRecord.created_at.desc(), models.WagerRecord.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
