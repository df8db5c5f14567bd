"""Core arbitrage logic for cross-venue trading."""

from .types import (
    ExecutableOpportunity, ExecutionResult, ExecutionStage, Opportunity,
    OpportunityStatus, Snapshot, TradeDirection, TradeLegRequest, TradeResult, TradeSide,
)
from .events import EventBus
from .quotes import MarketAggregator
from .detector import OpportunityDetector
from .registry import OpportunityRegistry
from .scheduler import ExecutionScheduler

__all__ = [
    'ExecutableOpportunity',
    'ExecutionResult',
    'ExecutionStage',
    'Opportunity',
    'OpportunityStatus',
    'Snapshot',
    'TradeDirection',
    'TradeLegRequest',
    'TradeResult',
    'TradeSide',
    'EventBus',
    'MarketAggregator',
    'OpportunityDetector',
    'OpportunityRegistry',
    'ExecutionScheduler'
]
