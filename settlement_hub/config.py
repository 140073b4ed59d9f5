from enum import Enum
from typing import Optional

from pydantic import AnyHttpUrl, BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MultiplierGameSettings(BaseModel):
    enabled: bool = True
    win_probability: float = Field(..., ge=0.0, le=1.0)
    min_multiplier: float = Field(..., ge=0.0)
    max_multiplier: float = Field(..., ge=0.0)

    @model_validator(mode="after")
    def _check_range(self):
        if self.max_multiplier < self.min_multiplier:
            raise ValueError("max_multiplier must not be below min_multiplier")
        return self


class LotterySettings(MultiplierGameSettings):
    win_probability: float = Field(0.30, ge=0.0, le=1.0)
    min_multiplier: float = 2.0
    max_multiplier: float = 5.0
    # stake must be a whole number of tickets; None accepts any stake
    ticket_price_cents: Optional[int] = Field(1000, gt=0)


class ScratchSettings(MultiplierGameSettings):
    win_probability: float = Field(0.40, ge=0.0, le=1.0)
    min_multiplier: float = 1.5
    max_multiplier: float = 5.5
    # stake must be a whole number of cards; None accepts any stake
    card_price_cents: Optional[int] = Field(2000, gt=0)


class ChestTier(BaseModel):
    price_cents: Optional[int] = Field(None, gt=0)
    max_multiplier: float = Field(..., gt=0.0)


class ChestSettings(BaseModel):
    enabled: bool = True
    win_probability: float = Field(0.50, ge=0.0, le=1.0)
    min_multiplier: float = Field(0.5, ge=0.0)
    default_tier: str = "bronze"
    tiers: dict[str, ChestTier] = {
        "bronze": ChestTier(price_cents=10_000, max_multiplier=3),
        "silver": ChestTier(price_cents=50_000, max_multiplier=5),
        "gold": ChestTier(price_cents=100_000, max_multiplier=8),
        "diamond": ChestTier(price_cents=500_000, max_multiplier=15),
    }

    @model_validator(mode="after")
    def _check_tiers(self):
        if self.default_tier not in self.tiers:
            raise ValueError(f"default_tier {self.default_tier!r} is not a configured tier")
        for name, tier in self.tiers.items():
            if tier.max_multiplier < self.min_multiplier:
                raise ValueError(f"tier {name!r} max_multiplier is below min_multiplier")
        return self


class RunnerSettings(BaseModel):
    enabled: bool = True
    cost_per_second_cents: int = Field(100, gt=0)
    max_seconds: int = Field(60, gt=0)
    points_per_second: float = Field(10.0, ge=0.0)
    points_per_dollar: float = Field(10.0, gt=0.0)
    boost_probability: float = Field(0.10, ge=0.0, le=1.0)
    boost_step: float = Field(0.5, ge=0.0)
    trap_probability: float = Field(0.05, ge=0.0, le=1.0)
    base_multiplier: float = Field(1.0, ge=0.0)
    max_multiplier: float = Field(5.0, ge=0.0)


class GamesSettings(BaseModel):
    lottery: LotterySettings = LotterySettings()
    scratch: ScratchSettings = ScratchSettings()
    chest: ChestSettings = ChestSettings()
    runner: RunnerSettings = RunnerSettings()


class NetworkSettings(BaseModel):
    # regex the withdrawal destination address must match
    address_pattern: str
    withdrawal_fee_cents: int = Field(0, ge=0)


class FundsSettings(BaseModel):
    supported_currencies: list[str] = ["USDT"]
    networks: dict[str, NetworkSettings] = {
        "TRC-20": NetworkSettings(address_pattern=r"^T[1-9A-HJ-NP-Za-km-z]{33}$", withdrawal_fee_cents=200),
        "BEP-20": NetworkSettings(address_pattern=r"^0x[a-fA-F0-9]{40}$", withdrawal_fee_cents=300),
    }
    min_deposit_cents: int = Field(1_000, gt=0)
    min_withdrawal_cents: int = Field(2_000, gt=0)
    max_amount_cents: int = Field(100_000_000, gt=0)
    tx_hash_min_length: int = 32
    tx_hash_max_length: int = 128


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    db_url: str = "sqlite:///./settlement.db"
    db_busy_timeout_seconds: float = 5.0
    log_level: str = "INFO"
    bearer_token: Optional[str] = None
    hmac_secret: str = "change_secret"
    timestamp_skew_seconds: int = 5
    require_signed_requests: bool = False
    change_webhook_url: Optional[AnyHttpUrl] = None
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0
    rate_limit_per_minute: int = 60
    outbox_poll_seconds: float = 2.0
    bootstrap_admin_ids: list[str] = []
    referral_commission_rate: float = Field(0.05, ge=0.0, le=1.0)
    games: GamesSettings = GamesSettings()
    funds: FundsSettings = FundsSettings()

settings = Settings()

class GameType(str, Enum):
    LOTTERY = "lottery"
    SCRATCH = "scratch"
    CHEST = "chest"
    RUNNER = "runner"

class FundsKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"

class FundsStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"

class Role(str, Enum):
    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"

class EventType(str, Enum):
    BALANCE_CHANGED = "account.balance_changed"
    FUNDS_STATUS_CHANGED = "funds_request.status_changed"

# terminal success state per request kind
funds_success_status = {
    FundsKind.DEPOSIT: FundsStatus.APPROVED,
    FundsKind.WITHDRAWAL: FundsStatus.COMPLETED,
}
