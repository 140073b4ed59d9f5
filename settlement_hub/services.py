"""Explicit wiring of the ledger-facing services, built once per process."""
from dataclasses import dataclass

from settlement_hub.config import Settings
from settlement_hub.funds import FundsWorkflow
from settlement_hub.ledger import LedgerStore
from settlement_hub.referrals import ReferralReport
from settlement_hub.roles import RoleGuard
from settlement_hub.settlement import SettlementEngine


@dataclass
class Services:
    ledger: LedgerStore
    guard: RoleGuard
    engine: SettlementEngine
    funds: FundsWorkflow
    referrals: ReferralReport


def build_services(config: Settings) -> Services:
    ledger = LedgerStore()
    guard = RoleGuard()
    return Services(
        ledger=ledger,
        guard=guard,
        engine=SettlementEngine(ledger, config.games),
        funds=FundsWorkflow(ledger, guard, config.funds),
        referrals=ReferralReport(config.referral_commission_rate),
    )
