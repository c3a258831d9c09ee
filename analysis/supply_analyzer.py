# analysis/supply_analyzer.py

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import numpy as np

from data.collectors.chain_data import ChainDataCollector
from data.storage.models import CorrelationData, HoldingsAnalysis, SupplyMetrics, SupplySnapshot
from utils.constants import (
    CORRELATION_FLAG_THRESHOLD,
    CORRELATION_WINDOW_DAYS,
    LIQUIDITY_LOCK_PERIOD_DAYS,
    MIN_CORRELATION_SAMPLES,
    SECONDS_PER_DAY,
)
from utils.helpers import utc_now

logger = logging.getLogger(__name__)


class SupplyAnalyzer:
    """
    Supply and price-correlation analysis for tokens.

    Supply checks compare what a token claims about its locked liquidity with
    the actual unlock schedule. Correlation is the Pearson coefficient of the
    two tokens' returns and is used only as a risk flag.
    """

    def __init__(self, collector: ChainDataCollector, config: Optional[Dict] = None):
        self.collector = collector
        self.config = config or {}
        self.lock_period_days = float(
            self.config.get('liquidity_lock_period_days', LIQUIDITY_LOCK_PERIOD_DAYS)
        )
        self.correlation_threshold = float(
            self.config.get('correlation_flag_threshold', CORRELATION_FLAG_THRESHOLD)
        )
        self.window_days = int(self.config.get('correlation_window_days', CORRELATION_WINDOW_DAYS))

    # ============= Supply =============

    async def supply(self, chain_id: int, token: str, now: Optional[datetime] = None) -> SupplyMetrics:
        """Supply breakdown and lock consistency of a token"""
        snapshot = await self.collector.get_supply(chain_id, token)
        return self.analyze_supply(snapshot, now=now)

    def analyze_supply(self, snapshot: SupplySnapshot, now: Optional[datetime] = None) -> SupplyMetrics:
        now = now or utc_now()
        reasons: List[str] = []

        locked = Decimal(0)
        effective_locked = Decimal(0)
        for lock in snapshot.locks:
            if lock.claimed_days is not None:
                actual_days = (lock.unlock_at - lock.locked_at).total_seconds() / SECONDS_PER_DAY
                if actual_days < lock.claimed_days:
                    reasons.append(
                        f"lock claims {lock.claimed_days}d but unlocks after {actual_days:.0f}d"
                    )
            if lock.unlock_at <= now:
                continue
            locked += lock.amount
            remaining_days = (lock.unlock_at - now).total_seconds() / SECONDS_PER_DAY
            weight = Decimal(str(min(1.0, remaining_days / self.lock_period_days)))
            effective_locked += lock.amount * weight

        if snapshot.claims_locked and effective_locked == 0:
            reasons.append("liquidity claimed locked but no active lock found")

        total = snapshot.total
        locked = min(locked, total)
        effective_locked = min(effective_locked, locked)
        burned = max(Decimal(0), snapshot.burned)
        circulating = max(Decimal(0), total - locked - burned)

        if reasons:
            logger.warning(f"Suspicious supply for {snapshot.token}: {'; '.join(reasons)}")

        return SupplyMetrics(
            token=snapshot.token,
            total=total,
            circulating=circulating,
            locked=locked,
            effective_locked=effective_locked,
            suspicious=bool(reasons),
            reasons=tuple(reasons)
        )

    # ============= Correlation =============

    async def correlate(self, chain_id: int, token_a: str, token_b: str,
                        window_days: Optional[int] = None) -> CorrelationData:
        """
        Pearson correlation of two tokens' returns over a window

        Args:
            chain_id: Chain the tokens live on
            token_a: First token address
            token_b: Second token address
            window_days: Lookback window, defaults to the configured window

        Returns:
            CorrelationData in the requested token order
        """
        window = int(window_days or self.window_days)
        first, second = sorted((token_a.lower(), token_b.lower()))

        async def compute():
            prices_first, prices_second = await asyncio.gather(
                self.collector.get_price_history(chain_id, first, window),
                self.collector.get_price_history(chain_id, second, window)
            )
            return self.calculate_correlation(prices_first, prices_second)

        coefficient, samples = await self.collector.cache.get_or_compute(
            f"correlation:{chain_id}:{first}:{second}:{window}", compute, cache_type="correlation"
        )

        flagged = coefficient > self.correlation_threshold
        if flagged:
            logger.info(f"Tokens {token_a} and {token_b} move together (r={coefficient:.3f})")
        return CorrelationData(
            token1=token_a.lower(),
            token2=token_b.lower(),
            coefficient=coefficient,
            flagged=flagged,
            sample_size=samples
        )

    def calculate_correlation(self, prices_a: Sequence[float], prices_b: Sequence[float]) -> tuple:
        """Return (coefficient, sample count); degenerate inputs give 0.0"""
        returns_a = self._returns(prices_a)
        returns_b = self._returns(prices_b)
        samples = min(len(returns_a), len(returns_b))
        if samples < MIN_CORRELATION_SAMPLES:
            return 0.0, samples

        returns_a = returns_a[-samples:]
        returns_b = returns_b[-samples:]
        if np.std(returns_a) == 0 or np.std(returns_b) == 0:
            return 0.0, samples

        coefficient = float(np.corrcoef(returns_a, returns_b)[0, 1])
        if not np.isfinite(coefficient):
            return 0.0, samples
        return max(-1.0, min(1.0, coefficient)), samples

    @staticmethod
    def _returns(prices: Sequence[float]) -> np.ndarray:
        series = np.asarray(prices, dtype=float)
        if series.size < 2:
            return np.array([])
        previous, current = series[:-1], series[1:]
        returns = np.zeros_like(previous)
        np.divide(current - previous, previous, out=returns, where=previous > 0)
        return returns

    # ============= Holdings =============

    async def analyze_holdings(self, chain_id: int, address: str) -> HoldingsAnalysis:
        """Supply of the largest holding and correlation of the two largest"""
        balances = await self.collector.get_token_balances(chain_id, address)
        ranked = sorted(
            (b for b in balances if b.quote_usd > 0), key=lambda b: b.quote_usd, reverse=True
        )
        tokens: List[str] = []
        for balance in ranked:
            if balance.token.address not in tokens:
                tokens.append(balance.token.address)
        if not tokens:
            return HoldingsAnalysis()

        if len(tokens) == 1:
            return HoldingsAnalysis(supply=await self.supply(chain_id, tokens[0]))

        supply, correlation = await asyncio.gather(
            self.supply(chain_id, tokens[0]),
            self.correlate(chain_id, tokens[0], tokens[1])
        )
        return HoldingsAnalysis(supply=supply, correlation=correlation)
