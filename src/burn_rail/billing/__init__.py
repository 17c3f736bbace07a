"""
Billing: usage cost, wallet balances, deposits and settlement.
"""

from .metering import CostCalculator, CostEstimate, Provider, UsageMetrics
from .ledger import BalanceLedger, Deduction
from .settlement import SettlementEngine, SettlementResult, SettlementScheduler
from .deposits import DepositService

__all__ = [
    "CostCalculator",
    "CostEstimate",
    "Provider",
    "UsageMetrics",
    "BalanceLedger",
    "Deduction",
    "SettlementEngine",
    "SettlementResult",
    "SettlementScheduler",
    "DepositService",
]
