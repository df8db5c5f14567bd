"""Signer interface: submits trade legs and reports confirmed results."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..core.types import TradeLegRequest


@dataclass(frozen=True)
class SignerReceipt:
    """Outcome of a submitted leg as reported by the signer."""
    success: bool
    signature: Optional[str] = None
    output_amount: Optional[float] = None
    confirmation_time_ms: Optional[int] = None
    fee: Optional[float] = None
    error: Optional[str] = None


class Signer(ABC):
    """Signs, submits and confirms trade legs.

    ``submit`` reports venue-side failures through ``SignerReceipt.error``;
    exceptions are treated as failed attempts by the executor.
    """

    @abstractmethod
    def get_address(self) -> str:
        """Account identifier used for trading."""
        pass

    @abstractmethod
    async def get_balance(self, asset: Optional[str] = None) -> float:
        """Free balance of an asset (defaults to the configured balance asset)."""
        pass

    @abstractmethod
    async def submit(self, request: TradeLegRequest) -> SignerReceipt:
        """Submit a leg and wait for its confirmation."""
        pass

    async def close(self) -> None:
        """Release signer resources."""
        pass
