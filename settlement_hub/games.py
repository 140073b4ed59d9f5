"""
Server-side outcome functions for each minigame.

An outcome function receives a random source owned by the settlement engine,
the stake in cents and the caller's options, and returns the payout plus a
JSON-able result payload. Nothing here touches the database; every
probability and multiplier comes from ``GamesSettings``.
"""
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Any, Protocol

from settlement_hub.config import (
    ChestSettings,
    GameType,
    GamesSettings,
    LotterySettings,
    MultiplierGameSettings,
    RunnerSettings,
    ScratchSettings,
)
from settlement_hub.errors import InvalidStake


class RandomSource(Protocol):
    def random(self) -> float:
        ...

    def uniform(self, a: float, b: float) -> float:
        ...


@dataclass
class GameOutcome:
    payout_cents: int
    result: dict[str, Any] = field(default_factory=dict)
    # recorded game type, e.g. chest_gold
    label: str | None = None


def payout_for(bet_cents: int, multiplier: float) -> int:
    """Stake times multiplier, truncated to whole cents."""
    amount = Decimal(bet_cents) * Decimal(str(multiplier))
    return int(amount.to_integral_value(rounding=ROUND_DOWN))


def _draw_multiplier(rng: RandomSource, win_probability: float, low: float, high: float) -> float | None:
    if rng.random() >= win_probability:
        return None
    return round(rng.uniform(low, high), 4)


class Game:
    game_type: GameType

    def validate_stake(self, bet_cents: int, options: dict) -> None:
        """Raise ``InvalidStake`` for stakes this game does not accept."""

    def play(self, rng: RandomSource, bet_cents: int, options: dict) -> GameOutcome:
        raise NotImplementedError


class MultiplierGame(Game):
    def __init__(self, game_type: GameType, config: MultiplierGameSettings):
        self.game_type = game_type
        self.config = config

    def play(self, rng, bet_cents, options):
        multiplier = _draw_multiplier(rng, self.config.win_probability, self.config.min_multiplier, self.config.max_multiplier)
        payout = payout_for(bet_cents, multiplier) if multiplier is not None else 0
        return GameOutcome(
            payout_cents=payout,
            result={"won": multiplier is not None, "multiplier": multiplier or 0.0, "prize_cents": payout},
        )


class UnitPricedGame(MultiplierGame):
    """Multiplier game sold in whole units, such as lottery tickets or scratch cards."""

    unit = "units"

    def __init__(self, game_type: GameType, config: MultiplierGameSettings, price_cents: int | None):
        super().__init__(game_type, config)
        self.price_cents = price_cents

    def validate_stake(self, bet_cents, options):
        if self.price_cents and bet_cents % self.price_cents:
            raise InvalidStake(f"{self.game_type.value} stake must be a whole number of {self.unit} at {self.price_cents} cents")

    def play(self, rng, bet_cents, options):
        outcome = super().play(rng, bet_cents, options)
        outcome.result[self.unit] = bet_cents // self.price_cents if self.price_cents else 1
        return outcome


class LotteryGame(UnitPricedGame):
    unit = "tickets"

    def __init__(self, config: LotterySettings):
        super().__init__(GameType.LOTTERY, config, config.ticket_price_cents)


class ScratchGame(UnitPricedGame):
    unit = "cards"

    def __init__(self, config: ScratchSettings):
        super().__init__(GameType.SCRATCH, config, config.card_price_cents)


class ChestGame(Game):
    game_type = GameType.CHEST

    def __init__(self, config: ChestSettings):
        self.config = config

    def _tier(self, options: dict) -> str:
        tier = options.get("tier") or self.config.default_tier
        if not isinstance(tier, str) or tier not in self.config.tiers:
            raise InvalidStake(f"unknown chest tier {tier!r}")
        return tier

    def validate_stake(self, bet_cents, options):
        tier = self.config.tiers[self._tier(options)]
        if tier.price_cents is not None and bet_cents != tier.price_cents:
            raise InvalidStake(f"chest stake must equal the tier price {tier.price_cents}")

    @staticmethod
    def prize_type(multiplier: float | None, max_multiplier: float) -> str:
        if multiplier is None:
            return "Nothing"
        if multiplier > max_multiplier * 0.8:
            return "USDT"
        if multiplier > max_multiplier * 0.5:
            return "BTC"
        return "Bonus Coins"

    def play(self, rng, bet_cents, options):
        tier_name = self._tier(options)
        tier = self.config.tiers[tier_name]
        multiplier = _draw_multiplier(rng, self.config.win_probability, self.config.min_multiplier, tier.max_multiplier)
        payout = payout_for(bet_cents, multiplier) if multiplier is not None else 0
        return GameOutcome(
            payout_cents=payout,
            result={
                "chest_type": tier_name,
                "won": multiplier is not None,
                "multiplier": multiplier or 0.0,
                "prize_type": self.prize_type(multiplier, tier.max_multiplier),
            },
            label=f"chest_{tier_name}",
        )


class RunnerGame(Game):
    """
    Endless runner settled in one call.

    The stake buys whole seconds of play; the run is simulated second by
    second with the same accrual rules the game screen animates.
    """

    game_type = GameType.RUNNER

    def __init__(self, config: RunnerSettings):
        self.config = config

    def validate_stake(self, bet_cents, options):
        cost = self.config.cost_per_second_cents
        if bet_cents % cost:
            raise InvalidStake(f"runner stake must be a multiple of {cost} per second")
        if bet_cents // cost > self.config.max_seconds:
            raise InvalidStake(f"runner stake buys at most {self.config.max_seconds} seconds")

    def play(self, rng, bet_cents, options):
        cfg = self.config
        seconds = bet_cents // cfg.cost_per_second_cents
        multiplier = cfg.base_multiplier
        score = Decimal(0)
        boosts = traps = 0
        for _ in range(seconds):
            score += Decimal(str(cfg.points_per_second)) * Decimal(str(multiplier))
            if rng.random() < cfg.boost_probability:
                multiplier = min(multiplier + cfg.boost_step, cfg.max_multiplier)
                boosts += 1
            if rng.random() < cfg.trap_probability:
                multiplier = cfg.base_multiplier
                traps += 1
        dollars = score / Decimal(str(cfg.points_per_dollar))
        payout = int((dollars * 100).to_integral_value(rounding=ROUND_DOWN))
        return GameOutcome(
            payout_cents=payout,
            result={
                "seconds": seconds,
                "score": float(score),
                "final_multiplier": multiplier,
                "boosts": boosts,
                "traps": traps,
            },
        )


def build_games(config: GamesSettings) -> dict[str, Game]:
    """Enabled games keyed by their public game type."""
    games: list[tuple[bool, Game]] = [
        (config.lottery.enabled, LotteryGame(config.lottery)),
        (config.scratch.enabled, ScratchGame(config.scratch)),
        (config.chest.enabled, ChestGame(config.chest)),
        (config.runner.enabled, RunnerGame(config.runner)),
    ]
    return {game.game_type.value: game for enabled, game in games if enabled}
