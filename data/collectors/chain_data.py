"""
Chain Data Collector - Cached, typed access to per-chain indexer data
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from data.collectors.chain_gateway import ChainGateway, GatewayRequest
from data.processors.normalizer import DataNormalizer
from data.storage.cache import CacheManager
from data.storage.models import (
    GasPrice,
    SupplySnapshot,
    TokenBalance,
    Transaction,
    VenueQuote,
)
from utils.constants import HIGH_GAS_ALERT_GWEI
from utils.helpers import gwei_to_wei

logger = logging.getLogger(__name__)


class ChainDataCollector:
    """
    Collect per-chain data through the gateway and the shared cache.

    Raw payloads are cached (and may be shared through Redis) only after
    they validated once, so a malformed response is never served from cache.
    Concurrent callers asking for the same key share a single gateway call.
    """

    def __init__(self, gateway: ChainGateway, cache: CacheManager,
                 normalizer: Optional[DataNormalizer] = None,
                 config: Optional[Dict] = None):
        """
        Initialize chain data collector

        Args:
            gateway: Chain gateway used for every fetch
            cache: Shared single-flight cache
            normalizer: Record mapper
            config: Configuration with the high gas alert threshold
        """
        self.gateway = gateway
        self.cache = cache
        self.normalizer = normalizer or DataNormalizer()
        self.config = config or {}
        self.high_gas_alert_wei = gwei_to_wei(
            self.config.get('high_gas_alert_gwei', HIGH_GAS_ALERT_GWEI)
        )

    async def _cached(self, chain_id: int, cache_type: str, key: str,
                      request: GatewayRequest, validate: Callable[[Any], Any]) -> Any:
        async def compute():
            raw = await self.gateway.fetch(chain_id, request)
            validate(raw)
            return raw

        return await self.cache.get_or_compute(
            f"{cache_type}:{chain_id}:{key}", compute, cache_type=cache_type, shared=True
        )

    async def get_token_balances(self, chain_id: int, address: str) -> List[TokenBalance]:
        """Token holdings of a wallet"""
        address = address.lower()

        def convert(raw):
            return self.normalizer.normalize_batch(raw, chain_id, "balance")

        raw = await self._cached(
            chain_id, "token_balances", address,
            GatewayRequest("token_balances", {"address": address}), convert
        )
        return convert(raw)

    async def get_transactions(self, chain_id: int, address: str) -> List[Transaction]:
        """Wallet transactions in natural (timestamp, hash) order"""
        address = address.lower()

        def convert(raw):
            txs = self.normalizer.normalize_batch(raw, chain_id, "transaction")
            return sorted(txs, key=lambda tx: tx.order_key)

        raw = await self._cached(
            chain_id, "transactions", address,
            GatewayRequest("transactions", {"address": address}), convert
        )
        return convert(raw)

    async def get_venue_quotes(self, chain_id: int, token_in: str, token_out: str) -> List[VenueQuote]:
        """DEX venues able to trade token_in for token_out"""
        token_in, token_out = token_in.lower(), token_out.lower()

        def convert(raw):
            return self.normalizer.normalize_batch(raw, chain_id, "venue")

        raw = await self._cached(
            chain_id, "dex_quotes", f"{token_in}:{token_out}",
            GatewayRequest("dex_quotes", {"token_in": token_in, "token_out": token_out}),
            convert
        )
        return convert(raw)

    async def get_supply(self, chain_id: int, token: str) -> SupplySnapshot:
        """Supply figures and liquidity locks of a token"""
        token = token.lower()

        def convert(raw):
            return self.normalizer.normalize_supply(raw, chain_id)

        raw = await self._cached(
            chain_id, "token_supply", token,
            GatewayRequest("token_supply", {"token": token}), convert
        )
        return convert(raw)

    async def get_price_history(self, chain_id: int, token: str, window_days: int) -> List[float]:
        """Daily prices over the window, oldest first"""
        token = token.lower()

        def convert(raw):
            return self.normalizer.normalize_price_series(raw, chain_id)

        raw = await self._cached(
            chain_id, "price_history", f"{token}:{window_days}",
            GatewayRequest("price_history", {"token": token, "window_days": window_days}),
            convert
        )
        return convert(raw)

    async def get_gas_price(self, chain_id: int) -> GasPrice:
        """Current gas price, flagged when above the alert threshold"""
        def convert(raw):
            return self.normalizer.normalize_gas_price(raw, chain_id)

        raw = await self._cached(
            chain_id, "gas_price", "current", GatewayRequest("eth_gasPrice"), convert
        )
        price = convert(raw)
        is_high = price > self.high_gas_alert_wei
        if is_high:
            logger.warning(f"High gas price on chain {chain_id}: {price} wei")
        return GasPrice(chain_id=chain_id, price=price, is_high=is_high)
