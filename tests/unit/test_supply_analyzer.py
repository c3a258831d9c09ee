# tests/unit/test_supply_analyzer.py
"""
Unit tests for SupplyAnalyzer
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from analysis.supply_analyzer import SupplyAnalyzer
from data.storage.cache import CacheManager
from data.storage.models import LiquidityLock, SupplySnapshot, TokenBalance, TokenInfo
from mock_data import MockDataGenerator

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
TOKEN_A = MockDataGenerator.generate_address(0xA)
TOKEN_B = MockDataGenerator.generate_address(0xB)


def lock(amount, locked_days_ago=30, unlock_in_days=730, claimed_days=None) -> LiquidityLock:
    return LiquidityLock(
        amount=Decimal(str(amount)),
        locked_at=NOW - timedelta(days=locked_days_ago),
        unlock_at=NOW + timedelta(days=unlock_in_days),
        claimed_days=claimed_days
    )


def snapshot(total=1000, burned=0, locks=(), claims_locked=False) -> SupplySnapshot:
    return SupplySnapshot(
        token=TOKEN_A,
        total=Decimal(str(total)),
        burned=Decimal(str(burned)),
        locks=tuple(locks),
        claims_locked=claims_locked
    )


@pytest.mark.unit
class TestSupplyAnalysis:
    """Test cases for supply breakdowns"""

    @pytest.fixture
    def analyzer(self):
        return SupplyAnalyzer(collector=MagicMock())

    def test_supply_breakdown(self, analyzer):
        """Locked and burned supply leave the rest circulating"""
        metrics = analyzer.analyze_supply(snapshot(total=1000, burned=100, locks=[lock(300)]), now=NOW)

        assert metrics.locked == Decimal("300")
        assert metrics.effective_locked == Decimal("300")
        assert metrics.circulating == Decimal("600")
        assert metrics.suspicious is False

    def test_locked_plus_circulating_never_exceeds_total(self, analyzer):
        """Locks larger than the supply are clamped"""
        metrics = analyzer.analyze_supply(snapshot(total=100, burned=50, locks=[lock(500)]), now=NOW)

        assert metrics.locked == Decimal("100")
        assert metrics.circulating == Decimal("0")
        assert metrics.locked + metrics.circulating <= metrics.total

    def test_effective_lock_weighted_by_remaining_time(self, analyzer):
        """A lock ending in half the lock period counts half"""
        metrics = analyzer.analyze_supply(
            snapshot(locks=[lock(200, unlock_in_days=182.5)]), now=NOW
        )

        assert metrics.locked == Decimal("200")
        assert float(metrics.effective_locked) == pytest.approx(100.0)

    def test_expired_lock_not_counted(self, analyzer):
        metrics = analyzer.analyze_supply(snapshot(locks=[lock(300, unlock_in_days=-1)]), now=NOW)

        assert metrics.locked == Decimal("0")
        assert metrics.circulating == Decimal("1000")

    def test_claimed_duration_longer_than_actual(self, analyzer):
        """A lock advertised longer than its real schedule is suspicious"""
        metrics = analyzer.analyze_supply(
            snapshot(locks=[lock(300, locked_days_ago=10, unlock_in_days=20, claimed_days=365)]),
            now=NOW
        )

        assert metrics.suspicious is True
        assert len(metrics.reasons) == 1

    def test_claimed_lock_without_active_lock(self, analyzer):
        """Claiming locked liquidity with nothing locked is suspicious"""
        metrics = analyzer.analyze_supply(snapshot(claims_locked=True), now=NOW)

        assert metrics.suspicious is True
        assert "no active lock" in metrics.reasons[0]

    def test_honest_claim_not_suspicious(self, analyzer):
        metrics = analyzer.analyze_supply(
            snapshot(locks=[lock(300, locked_days_ago=0, unlock_in_days=400, claimed_days=365)],
                     claims_locked=True),
            now=NOW
        )
        assert metrics.suspicious is False


@pytest.mark.unit
class TestCorrelation:
    """Test cases for price correlation"""

    @pytest.fixture
    def collector(self):
        collector = MagicMock()
        collector.cache = CacheManager()
        series = {
            TOKEN_A: [1.0, 1.1, 1.0, 1.2, 1.3, 1.1],
            TOKEN_B: [2.0, 2.2, 2.0, 2.4, 2.6, 2.2],
        }

        async def price_history(chain_id, token, window_days):
            return series[token]

        collector.get_price_history = AsyncMock(side_effect=price_history)
        return collector

    @pytest.fixture
    def analyzer(self, collector):
        return SupplyAnalyzer(collector)

    def test_perfect_correlation(self, analyzer):
        coefficient, samples = analyzer.calculate_correlation([1, 2, 3, 5, 4], [2, 4, 6, 10, 8])

        assert coefficient == pytest.approx(1.0)
        assert samples == 4

    def test_symmetry(self, analyzer):
        a = MockDataGenerator.price_series(seed=1)
        b = MockDataGenerator.price_series(seed=2)

        assert analyzer.calculate_correlation(a, b)[0] == pytest.approx(analyzer.calculate_correlation(b, a)[0])

    def test_bounds(self, analyzer):
        a = MockDataGenerator.price_series(seed=3)
        b = MockDataGenerator.price_series(seed=4)

        coefficient, _ = analyzer.calculate_correlation(a, b)
        assert -1.0 <= coefficient <= 1.0

    def test_constant_prices_give_zero(self, analyzer):
        """Zero variance is degenerate"""
        assert analyzer.calculate_correlation([1, 1, 1, 1, 1], [1, 2, 3, 4, 5]) == (0.0, 4)

    def test_too_few_samples_give_zero(self, analyzer):
        assert analyzer.calculate_correlation([1, 2], [3, 4])[0] == 0.0
        assert analyzer.calculate_correlation([], [])[0] == 0.0

    @pytest.mark.asyncio
    async def test_correlate_flags_and_caches(self, analyzer, collector):
        """Correlated tokens are flagged; reversed pairs reuse the cached value"""
        forward = await analyzer.correlate(1, TOKEN_A, TOKEN_B)
        backward = await analyzer.correlate(1, TOKEN_B, TOKEN_A)

        assert forward.coefficient == pytest.approx(1.0)
        assert forward.flagged is True
        assert forward.token1 == TOKEN_A
        assert backward.token1 == TOKEN_B
        assert backward.coefficient == forward.coefficient
        assert collector.get_price_history.await_count == 2

    @pytest.mark.asyncio
    async def test_analyze_holdings(self, collector):
        """Supply of the largest holding, correlation of the two largest"""
        def balance(token, usd):
            return TokenBalance(TokenInfo(1, token, "T", 18), 10**18, usd)

        collector.get_token_balances = AsyncMock(return_value=[balance(TOKEN_B, 10.0), balance(TOKEN_A, 50.0)])
        collector.get_supply = AsyncMock(return_value=snapshot(claims_locked=True))
        analyzer = SupplyAnalyzer(collector)

        holdings = await analyzer.analyze_holdings(1, MockDataGenerator.generate_address(0xFEED))

        collector.get_supply.assert_awaited_once_with(1, TOKEN_A)
        assert holdings.correlation.token1 == TOKEN_A
        assert holdings.flags == ["suspicious_supply", "correlated_holdings"]

    @pytest.mark.asyncio
    async def test_analyze_holdings_empty_wallet(self, collector):
        collector.get_token_balances = AsyncMock(return_value=[])
        analyzer = SupplyAnalyzer(collector)

        holdings = await analyzer.analyze_holdings(1, MockDataGenerator.generate_address(0xFEED))

        assert holdings.supply is None
        assert holdings.correlation is None
        assert holdings.flags == []
