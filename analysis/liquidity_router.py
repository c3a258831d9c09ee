# analysis/liquidity_router.py

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from data.collectors.chain_data import ChainDataCollector
from data.storage.models import LiquidityRoute, VenueQuote
from utils.constants import (
    DEFAULT_GAS_LIMIT,
    DEFAULT_SLIPPAGE,
    MAX_TRANSACTION_AMOUNT_USD,
    MIN_LIQUIDITY_USD,
    PRICE_IMPACT_WARNING,
    PRIORITY_FEE_GWEI,
)
from utils.errors import GatewayError, InsufficientLiquidityError, NoVenueError
from utils.helpers import gwei_to_wei

logger = logging.getLogger(__name__)


@dataclass
class SlippageEstimate:
    """Execution bounds for a chosen route"""
    expected_amount_out: Decimal
    minimum_amount_out: Decimal
    slippage_tolerance: Decimal


@dataclass
class _Candidate:
    quote: VenueQuote
    price_impact: Decimal
    estimated_gas: int


class LiquidityRouter:
    """
    Picks the DEX venue with the lowest price impact for a simulated trade.

    Venues under the liquidity floor are never chosen. Ties on price impact
    go to the venue with the lower gas estimate. Slippage tolerance only
    shapes the execution quote, never the venue choice.
    """

    def __init__(self, collector: ChainDataCollector, config: Optional[Dict] = None):
        self.collector = collector
        self.config = config or {}

        self.gas_limit = int(self.config.get('gas_limit', DEFAULT_GAS_LIMIT))
        self.priority_fee_wei = gwei_to_wei(self.config.get('priority_fee_gwei', PRIORITY_FEE_GWEI))
        self.min_liquidity_usd = Decimal(str(self.config.get('min_liquidity_usd', MIN_LIQUIDITY_USD)))
        self.price_impact_warning = Decimal(
            str(self.config.get('price_impact_warning', PRICE_IMPACT_WARNING))
        )
        self.slippage_tolerance = Decimal(str(self.config.get('slippage_tolerance', DEFAULT_SLIPPAGE)))
        self.max_transaction_amount_usd = Decimal(
            str(self.config.get('max_transaction_amount_usd', MAX_TRANSACTION_AMOUNT_USD))
        )

    async def route(self, chain_id: int, token_in: str, token_out: str,
                    amount: Decimal) -> LiquidityRoute:
        """
        Find the best venue for swapping ``amount`` of token_in into token_out

        Args:
            chain_id: Chain to route on
            token_in: Address of the token sold
            token_out: Address of the token bought
            amount: Amount of token_in, in token units

        Returns:
            LiquidityRoute for the selected venue

        Raises:
            NoVenueError: nothing quotes the pair
            InsufficientLiquidityError: every venue is under the liquidity floor
        """
        amount = Decimal(str(amount))
        quotes = await self.collector.get_venue_quotes(chain_id, token_in, token_out)
        if not quotes:
            raise NoVenueError(f"No venue quotes {token_in} -> {token_out} on chain {chain_id}")

        eligible = [q for q in quotes if q.liquidity_usd >= self.min_liquidity_usd]
        if not eligible:
            deepest = max(q.liquidity_usd for q in quotes)
            raise InsufficientLiquidityError(
                f"Deepest venue for {token_in} on chain {chain_id} holds ${deepest}, "
                f"floor is ${self.min_liquidity_usd}"
            )

        amount, capped = self._cap_amount(amount, eligible)

        candidates = [
            _Candidate(
                quote=quote,
                price_impact=self.calculate_price_impact(quote, amount),
                estimated_gas=quote.gas_estimate or self.gas_limit
            )
            for quote in eligible
        ]
        best = min(candidates, key=lambda c: (c.price_impact, c.estimated_gas))

        gas_price_wei = await self._effective_gas_price(chain_id)
        warning = best.price_impact > self.price_impact_warning
        if warning:
            logger.warning(
                f"Price impact {best.price_impact:.4f} on {best.quote.dex} "
                f"exceeds {self.price_impact_warning} (chain {chain_id})"
            )

        return LiquidityRoute(
            dex=best.quote.dex,
            estimated_gas=best.estimated_gas,
            price_impact=best.price_impact,
            gas_cost_wei=best.estimated_gas * gas_price_wei,
            liquidity_usd=best.quote.liquidity_usd,
            price_impact_warning=warning,
            amount_capped=capped
        )

    def calculate_price_impact(self, quote: VenueQuote, amount: Decimal) -> Decimal:
        """Constant-product price impact: a / (reserve_in + a) with a = amount after fee"""
        amount_with_fee = amount * (Decimal(1) - quote.fee)
        if amount_with_fee <= 0:
            return Decimal(0)
        if quote.reserve_in <= 0:
            return Decimal(1)
        return amount_with_fee / (quote.reserve_in + amount_with_fee)

    def calculate_amount_out(self, quote: VenueQuote, amount: Decimal) -> Decimal:
        """x*y=k output for ``amount`` of token_in"""
        amount_with_fee = amount * (Decimal(1) - quote.fee)
        denominator = quote.reserve_in + amount_with_fee
        if denominator <= 0:
            return Decimal(0)
        return (amount_with_fee * quote.reserve_out) / denominator

    def quote_execution(self, quote: VenueQuote, amount: Decimal,
                        slippage: Optional[Decimal] = None) -> SlippageEstimate:
        """Expected and minimum received amounts under the slippage tolerance"""
        tolerance = self.slippage_tolerance if slippage is None else Decimal(str(slippage))
        expected = self.calculate_amount_out(quote, Decimal(str(amount)))
        return SlippageEstimate(
            expected_amount_out=expected,
            minimum_amount_out=expected * (Decimal(1) - tolerance),
            slippage_tolerance=tolerance
        )

    def _cap_amount(self, amount: Decimal, quotes: List[VenueQuote]) -> tuple:
        prices = [q.price_in_usd for q in quotes if q.price_in_usd > 0]
        if not prices or amount <= 0:
            return amount, False
        price = max(prices)
        if amount * price <= self.max_transaction_amount_usd:
            return amount, False
        capped = self.max_transaction_amount_usd / price
        logger.info(f"Simulated trade capped from {amount} to {capped} tokens")
        return capped, True

    async def _effective_gas_price(self, chain_id: int) -> int:
        try:
            gas = await self.collector.get_gas_price(chain_id)
        except GatewayError as e:
            logger.warning(f"Gas price unavailable on chain {chain_id}, using priority fee only: {e}")
            return self.priority_fee_wei
        return gas.price + self.priority_fee_wei
