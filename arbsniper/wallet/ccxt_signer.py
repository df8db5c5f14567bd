"""Live signer placing market orders through authenticated ccxt clients."""

import time
from typing import Any, Dict, List, Optional

import ccxt
import ccxt.pro as ccxtpro
from loguru import logger

from ..config import VenueConfig, WalletConfig
from ..core.types import TradeLegRequest, TradeSide
from .base import Signer, SignerReceipt


class CcxtSigner(Signer):
    """Submits legs as market orders on the leg's venue."""

    def __init__(self, wallet: WalletConfig, venues: List[VenueConfig],
                 clients: Optional[Dict[str, Any]] = None):
        self.wallet = wallet
        self.venues = {venue.name: venue for venue in venues}
        self.clients: Dict[str, Any] = dict(clients or {})

    def _client(self, venue_name: str):
        """Get or create the private client for a venue."""
        client = self.clients.get(venue_name)
        if client is not None:
            return client

        venue = self.venues.get(venue_name)
        if venue is None:
            raise KeyError(f"No venue configured named '{venue_name}'")

        exchange_class = getattr(ccxtpro, venue.exchange_id or venue.name)
        client = exchange_class({
            "apiKey": venue.api_key,
            "secret": venue.secret,
            "password": venue.password,
            "enableRateLimit": True,
            "timeout": 10000,
            "options": {"defaultType": "spot"},
        })

        # Set sandbox mode if configured
        if venue.sandbox:
            client.set_sandbox_mode(True)

        self.clients[venue_name] = client
        return client

    def get_address(self) -> str:
        return self.wallet.address

    async def get_balance(self, asset: Optional[str] = None) -> float:
        """Sum the free balance of an asset across configured venues."""
        asset = asset or self.wallet.balance_asset
        total = 0.0
        for name in self.venues:
            try:
                balances = await self._client(name).fetch_balance()
                total += float((balances.get(asset) or {}).get("free") or 0.0)
            except ccxt.BaseError as e:
                logger.warning(f"Failed to fetch {asset} balance on {name}: {e}")
        return total

    async def submit(self, request: TradeLegRequest) -> SignerReceipt:
        """Place a market order and report the realized output."""
        start_time = time.time()

        try:
            client = self._client(request.venue)

            if request.side == TradeSide.BUY:
                # Input is quote currency; order size is in base units
                amount = request.input_amount / request.reference_price
            else:
                amount = request.input_amount
            amount = float(client.amount_to_precision(request.instrument, amount))

            order = await client.create_order(request.instrument, "market", request.side.value, amount)
            if order.get("status") != "closed" and order.get("id"):
                order = await client.fetch_order(order["id"], request.instrument)

        except ccxt.BaseError as e:
            return SignerReceipt(success=False, error=f"{type(e).__name__}: {e}")

        filled = float(order.get("filled") or 0.0)
        cost = float(order.get("cost") or 0.0)
        if filled <= 0:
            return SignerReceipt(success=False, signature=order.get("id"),
                                 error=f"Order {order.get('id')} not filled (status {order.get('status')})")

        fee_info = order.get("fee") or {}
        fee = float(fee_info.get("cost") or 0.0)
        output = filled if request.side == TradeSide.BUY else cost

        if output < request.min_output_amount:
            logger.warning(f"Leg {request.leg} on {request.venue} filled below minimum: "
                           f"{output:.6f} < {request.min_output_amount:.6f}")

        return SignerReceipt(
            success=True,
            signature=order.get("id"),
            output_amount=output,
            confirmation_time_ms=int((time.time() - start_time) * 1000),
            fee=fee,
        )

    async def close(self) -> None:
        """Close all private clients."""
        for name, client in self.clients.items():
            try:
                await client.close()
            except Exception as e:
                logger.error(f"Error closing {name} client: {e}")
        self.clients.clear()
