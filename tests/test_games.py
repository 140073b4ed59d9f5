import random

import pytest

from conftest import ScriptedRandom
from settlement_hub.config import ChestSettings, GamesSettings, LotterySettings, RunnerSettings, ScratchSettings
from settlement_hub.errors import InvalidStake
from settlement_hub.games import ChestGame, LotteryGame, RunnerGame, ScratchGame, build_games, payout_for


class SequenceRandom:
    """Replays a fixed sequence of draws for ``random()``."""

    def __init__(self, draws):
        self.draws = list(draws)

    def random(self):
        return self.draws.pop(0)

    def uniform(self, a, b):
        return a


def test_payout_truncates_to_whole_cents():
    assert payout_for(1_000, 2.5) == 2_500
    assert payout_for(333, 1.5) == 499
    assert payout_for(100, 0.0) == 0


def test_lottery_counts_tickets_and_respects_probability():
    game = LotteryGame(LotterySettings())
    win = game.play(ScriptedRandom(0.29, high=True), 3_000, {})
    assert win.result == {"won": True, "multiplier": 5.0, "prize_cents": 15_000, "tickets": 3}

    loss = game.play(ScriptedRandom(0.30), 3_000, {})
    assert loss.payout_cents == 0
    assert loss.result["won"] is False


def test_lottery_without_ticket_price_accepts_any_stake():
    game = LotteryGame(LotterySettings(ticket_price_cents=None))
    game.validate_stake(1_234, {})
    assert game.play(ScriptedRandom(0.99), 1_234, {}).result["tickets"] == 1


def test_scratch_sells_whole_cards():
    game = ScratchGame(ScratchSettings())
    game.validate_stake(6_000, {})
    assert game.play(ScriptedRandom(0.999), 6_000, {}).result["cards"] == 3
    with pytest.raises(InvalidStake):
        game.validate_stake(3_000, {})


@pytest.mark.parametrize("tier", [["bronze"], {"name": "bronze"}, 7])
def test_chest_tier_must_be_a_name(tier):
    with pytest.raises(InvalidStake):
        ChestGame(ChestSettings()).validate_stake(10_000, {"tier": tier})


@pytest.mark.parametrize(
    "multiplier, expected",
    [(None, "Nothing"), (2.5, "USDT"), (2.0, "BTC"), (1.0, "Bonus Coins")],
)
def test_chest_prize_type(multiplier, expected):
    assert ChestGame.prize_type(multiplier, 3) == expected


def test_chest_defaults_to_configured_tier():
    game = ChestGame(ChestSettings())
    game.validate_stake(10_000, {})
    outcome = game.play(ScriptedRandom(0.1), 10_000, {})
    assert outcome.label == "chest_bronze"
    assert outcome.result["multiplier"] == 0.5
    assert outcome.payout_cents == 5_000
    with pytest.raises(InvalidStake):
        game.validate_stake(10_000, {"tier": "gold"})


def test_runner_without_events_returns_base_rate():
    game = RunnerGame(RunnerSettings())
    outcome = game.play(ScriptedRandom(0.999), 1_000, {})
    assert outcome.result["seconds"] == 10
    assert outcome.result["score"] == 100.0
    assert outcome.payout_cents == 1_000


def test_runner_boost_and_trap():
    game = RunnerGame(RunnerSettings())
    # second 1 boosts, second 2 traps, second 3 is quiet
    outcome = game.play(SequenceRandom([0.0, 0.9, 0.9, 0.0, 0.9, 0.9]), 300, {})
    assert outcome.result["boosts"] == 1
    assert outcome.result["traps"] == 1
    assert outcome.result["score"] == 10 + 15 + 10
    assert outcome.payout_cents == 350


def test_runner_stake_limits():
    game = RunnerGame(RunnerSettings())
    game.validate_stake(6_000, {})
    with pytest.raises(InvalidStake):
        game.validate_stake(6_100, {})
    with pytest.raises(InvalidStake):
        game.validate_stake(250, {})


def test_disabled_games_are_not_built():
    config = GamesSettings(scratch=ScratchSettings(enabled=False))
    assert sorted(build_games(config)) == ["chest", "lottery", "runner"]


def test_house_edge_is_configurable():
    config = ScratchSettings(win_probability=0.0)
    games = build_games(GamesSettings(scratch=config))
    rng = random.Random(7)
    assert all(games["scratch"].play(rng, 100, {}).payout_cents == 0 for _ in range(200))


def test_multiplier_range_is_validated():
    with pytest.raises(ValueError):
        ScratchSettings(min_multiplier=3.0, max_multiplier=2.0)
