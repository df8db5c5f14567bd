"""
Shared types and data structures for the arbitrage bot.
Kept in one module so pipeline components can import them without cycles.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..venues.base import Quote


class TradeDirection(Enum):
    """Direction of an arbitrage trade relative to its source venue."""
    BUY = "buy"    # Buy on source, sell on target
    SELL = "sell"  # Sell on source, buy back on target


class TradeSide(Enum):
    """Side of a single leg, in base-asset terms."""
    BUY = "buy"
    SELL = "sell"


class OpportunityStatus(Enum):
    """Lifecycle status of a registered opportunity."""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    (OpportunityStatus.PENDING, OpportunityStatus.EXECUTING),
    (OpportunityStatus.EXECUTING, OpportunityStatus.COMPLETED),
    (OpportunityStatus.EXECUTING, OpportunityStatus.FAILED),
}


class ExecutionStage(Enum):
    """Stage of a two-leg execution."""
    PREPARING = "preparing"
    LEG1_SUBMITTED = "leg1_submitted"
    LEG1_CONFIRMED = "leg1_confirmed"
    LEG2_SUBMITTED = "leg2_submitted"
    LEG2_CONFIRMED = "leg2_confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class Snapshot:
    """Immutable per-instrument view of the latest quotes, one per venue."""
    quotes: Mapping[str, Tuple[Quote, ...]]
    taken_at: int
    cycle: int = 0

    @classmethod
    def build(cls, quotes: Dict[str, List[Quote]], taken_at: int, cycle: int = 0) -> "Snapshot":
        """Copy quote lists into a read-only snapshot."""
        frozen = {instrument: tuple(items) for instrument, items in quotes.items()}
        return cls(quotes=MappingProxyType(frozen), taken_at=taken_at, cycle=cycle)

    @property
    def instruments(self) -> List[str]:
        return list(self.quotes.keys())

    def quotes_for(self, instrument: str) -> Tuple[Quote, ...]:
        return self.quotes.get(instrument, ())

    def __len__(self) -> int:
        return sum(len(items) for items in self.quotes.values())


@dataclass(frozen=True)
class Opportunity:
    """Detected cross-venue arbitrage opportunity."""
    source_venue: str
    target_venue: str
    instrument: str
    direction: TradeDirection
    source_price: float
    target_price: float
    profit_percentage: float
    estimated_profit: float
    trade_size: float
    detected_at: int

    @property
    def route_key(self) -> Tuple[str, str, str, str]:
        """Identity of the opportunity without its detection time."""
        return (self.source_venue, self.target_venue, self.instrument, self.direction.value)

    @property
    def id(self) -> str:
        """Deterministic id; distinct per detection cycle."""
        return f"{self.source_venue}-{self.target_venue}-{self.instrument}-{self.direction.value}-{self.detected_at}"

    @property
    def entry_price(self) -> float:
        """Price paid for the base asset."""
        if self.direction == TradeDirection.BUY:
            return self.source_price
        return self.target_price


@dataclass(frozen=True)
class TradeLegRequest:
    """Unsigned trade leg handed to the signer."""
    opportunity_id: str
    leg: int
    venue: str
    instrument: str
    side: TradeSide
    input_amount: float
    expected_output: float
    min_output_amount: float
    reference_price: float
    confirmation_level: str = "confirmed"


@dataclass(frozen=True)
class TradeResult:
    """Outcome of one submitted leg."""
    leg: int
    venue: str
    instrument: str
    side: TradeSide
    input_amount: float
    min_output_amount: float
    success: bool
    output_amount: Optional[float] = None
    signature: Optional[str] = None
    fee: Optional[float] = None
    error: Optional[str] = None
    attempts: int = 1
    confirmation_time_ms: Optional[int] = None


@dataclass(frozen=True)
class ExecutableOpportunity:
    """Opportunity tracked by the registry together with its lifecycle."""
    opportunity: Opportunity
    status: OpportunityStatus = OpportunityStatus.PENDING
    created_at: int = 0
    execution_started_at: Optional[int] = None
    completed_at: Optional[int] = None
    tx_reference: Optional[str] = None
    actual_profit: Optional[float] = None
    actual_profit_percentage: Optional[float] = None
    error_reason: Optional[str] = None
    legs: Tuple[TradeResult, ...] = ()
    total_fees: float = 0.0

    @property
    def id(self) -> str:
        return self.opportunity.id

    @property
    def instrument(self) -> str:
        return self.opportunity.instrument

    @property
    def source_venue(self) -> str:
        return self.opportunity.source_venue

    @property
    def target_venue(self) -> str:
        return self.opportunity.target_venue

    @property
    def direction(self) -> TradeDirection:
        return self.opportunity.direction

    @property
    def profit_percentage(self) -> float:
        return self.opportunity.profit_percentage

    @property
    def estimated_profit(self) -> float:
        return self.opportunity.estimated_profit

    @property
    def detected_at(self) -> int:
        return self.opportunity.detected_at

    @property
    def is_terminal(self) -> bool:
        return self.status in (OpportunityStatus.COMPLETED, OpportunityStatus.FAILED)


@dataclass
class ExecutionResult:
    """Result of a two-leg execution."""
    opportunity_id: str
    success: bool
    stage: ExecutionStage
    stages: List[ExecutionStage] = field(default_factory=list)
    legs: Tuple[TradeResult, ...] = ()
    profit: Optional[float] = None
    profit_percentage: Optional[float] = None
    error: Optional[str] = None
    execution_time_ms: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_fees(self) -> float:
        return sum(leg.fee or 0.0 for leg in self.legs)
