"""Paper signer: fills legs against the latest quotes without touching a venue."""

import asyncio
import random
import time
import uuid
from typing import Callable, Dict, Optional

from loguru import logger

from ..config import WalletConfig
from ..core.types import TradeLegRequest, TradeSide
from ..core.utils import split_instrument
from ..venues.base import Quote
from .base import Signer, SignerReceipt

PriceLookup = Callable[[str, str], Optional[Quote]]


class PaperSigner(Signer):
    """Simulated signer with balances, fees, slippage and confirmation latency."""

    def __init__(self, config: WalletConfig, price_lookup: PriceLookup):
        self.config = config
        self.price_lookup = price_lookup
        self.balances: Dict[str, float] = dict(config.initial_balances)
        self._rng = random.Random(config.seed)
        self.submissions = 0

    def get_address(self) -> str:
        return self.config.address

    async def get_balance(self, asset: Optional[str] = None) -> float:
        return self.balances.get(asset or self.config.balance_asset, 0.0)

    async def submit(self, request: TradeLegRequest) -> SignerReceipt:
        """Fill a leg at the venue's current quote with simulated slippage."""
        start_time = time.time()
        self.submissions += 1

        # Simulate confirmation delay
        if self.config.latency_ms:
            await asyncio.sleep(self.config.latency_ms / 1000)

        quote = self.price_lookup(request.venue, request.instrument)
        if quote is None:
            return SignerReceipt(success=False, error=f"No quote for {request.instrument} on {request.venue}")

        base, quote_asset = split_instrument(request.instrument)
        spend_asset, receive_asset = (quote_asset, base) if request.side == TradeSide.BUY else (base, quote_asset)

        available = self.balances.get(spend_asset, 0.0)
        if available < request.input_amount:
            return SignerReceipt(
                success=False,
                error=f"Insufficient {spend_asset} balance: {available:.6f} < {request.input_amount:.6f}",
            )

        slippage = self._rng.uniform(0, self.config.slippage_bps) / 10000
        if request.side == TradeSide.BUY:
            fill_price = quote.ask * (1 + slippage)
            gross_output = request.input_amount / fill_price
        else:
            fill_price = quote.bid * (1 - slippage)
            gross_output = request.input_amount * fill_price

        fee = gross_output * self.config.fee_bps / 10000
        output = gross_output - fee

        # Minimum-output guard, as a venue would revert
        if output < request.min_output_amount:
            return SignerReceipt(
                success=False,
                error=f"Slippage exceeded: output {output:.6f} < minimum {request.min_output_amount:.6f}",
            )

        self.balances[spend_asset] = available - request.input_amount
        self.balances[receive_asset] = self.balances.get(receive_asset, 0.0) + output

        confirmation_time_ms = int((time.time() - start_time) * 1000)
        logger.debug(f"Paper fill leg {request.leg} {request.side.value} {request.instrument} on {request.venue}: "
                     f"{request.input_amount:.6f} {spend_asset} -> {output:.6f} {receive_asset} @ {fill_price:.6f}")

        return SignerReceipt(
            success=True,
            signature=f"paper-{uuid.uuid4().hex[:16]}",
            output_amount=output,
            confirmation_time_ms=confirmation_time_ms,
            fee=fee,
        )
