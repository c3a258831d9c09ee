# tests/unit/test_engine.py
"""
Unit tests for EligibilityEngine
"""
import asyncio
import json
from unittest.mock import MagicMock

import pytest

from core.engine import EligibilityEngine, EngineState
from data.storage.models import FailureKind
from mock_data import MockDataGenerator
from test_helpers import rpc
from utils.errors import (
    PartialFailureError,
    TotalFailureError,
    TransientGatewayError,
    ValidationError,
)


@pytest.mark.unit
class TestEligibilityEngine:
    """Test cases for EligibilityEngine"""

    @pytest.mark.asyncio
    async def test_evaluate_healthy_chains(self, engine, fake_transport, wallet_address):
        """Every chain contributes and the score is their mean"""
        fake_transport.script_healthy_chain(1, wallet_address)
        fake_transport.script_healthy_chain(8453, wallet_address)

        report = await engine.evaluate(wallet_address)

        assert report.success is True
        assert report.partial_failures == ()
        assert sorted(b.chain_id for b in report.breakdown) == [1, 8453]
        assert 0.0 <= report.score <= 100.0
        assert report.score == engine.scorer.combine([b.score for b in report.breakdown])
        assert report.tier == engine.scorer.determine_tier(report.score)

    @pytest.mark.asyncio
    async def test_breakdown_contents(self, engine, fake_transport, wallet_address):
        """A healthy chain carries wallet, MEV, route and holdings results"""
        fake_transport.script_healthy_chain(1, wallet_address)

        report = await engine.evaluate(wallet_address, [1])
        [breakdown] = report.breakdown

        assert breakdown.wallet.token_count == 2
        assert breakdown.wallet.transaction_count == 5
        assert breakdown.mev.detected is False
        assert breakdown.route.dex == "uniswap_v2"
        assert breakdown.holdings.supply is not None
        assert set(breakdown.signals) == {"diversity", "activity", "risk", "mev"}

    @pytest.mark.asyncio
    async def test_report_is_json_serializable(self, engine, fake_transport, wallet_address):
        fake_transport.script_healthy_chain(1, wallet_address)

        report = await engine.evaluate(wallet_address, [1])
        payload = json.loads(json.dumps(report.to_dict()))

        wallet = payload["breakdown"][0]["wallet"]
        assert isinstance(wallet["isConcentrated"], bool)
        assert wallet["diversityScore"] == report.breakdown[0].wallet.diversity_score

    @pytest.mark.asyncio
    async def test_unavailable_chain_is_partial_failure(self, engine, fake_transport, wallet_address):
        """A dead chain is reported but does not sink the evaluation"""
        fake_transport.script_healthy_chain(1, wallet_address)
        fake_transport.fail_chain(8453, TransientGatewayError("HTTP 503"))

        report = await engine.evaluate(wallet_address, [1, 8453])

        assert report.success is True
        assert [b.chain_id for b in report.breakdown] == [1]
        assert report.failed_chains == [8453]
        assert report.score == report.breakdown[0].score
        failures = [f for f in report.partial_failures if f.chain_id == 8453]
        assert {f.component for f in failures} == set(EligibilityEngine.COMPONENTS)
        assert all(f.kind == FailureKind.UNAVAILABLE for f in failures)

        with pytest.raises(PartialFailureError) as exc_info:
            report.raise_for_failures()
        assert exc_info.value.chains == [8453]

    @pytest.mark.asyncio
    async def test_unsupported_chains_only(self, engine, fake_transport, wallet_address):
        """No chain with data is a total failure, and nothing is fetched"""
        with pytest.raises(TotalFailureError) as exc_info:
            await engine.evaluate(wallet_address, [999])

        [failure] = exc_info.value.failures
        assert failure.kind == FailureKind.UNSUPPORTED_CHAIN
        assert failure.chain_id == 999
        assert fake_transport.calls == []

    @pytest.mark.asyncio
    async def test_unsupported_chain_alongside_supported(self, engine, fake_transport, wallet_address):
        fake_transport.script_healthy_chain(1, wallet_address)

        report = await engine.evaluate(wallet_address, [1, 999])

        assert report.failed_chains == [999]
        assert fake_transport.call_count(chain_id=999) == 0

    @pytest.mark.asyncio
    async def test_evaluate_safe_reports_total_failure(self, engine, wallet_address):
        report = await engine.evaluate_safe(wallet_address, [999])

        assert report.success is False
        assert report.score == 0.0
        assert report.tier == "ineligible"
        assert report.failed_chains == [999]
        assert report.to_dict()["partialFailures"][0]["kind"] == "unsupported_chain"

    @pytest.mark.asyncio
    async def test_invalid_address(self, engine, fake_transport):
        with pytest.raises(ValidationError):
            await engine.evaluate("0x1234")
        with pytest.raises(ValidationError):
            await engine.evaluate("not an address")
        assert fake_transport.calls == []

    @pytest.mark.asyncio
    async def test_deadline_marks_slow_chain_unavailable(self, gateway, cache, fake_transport, wallet_address):
        """Chains still running at the deadline are cancelled"""
        engine = EligibilityEngine(
            config={"engine": {"evaluation_deadline_seconds": 0.2}}, gateway=gateway, cache=cache
        )
        fake_transport.script_healthy_chain(1, wallet_address)
        fake_transport.script_healthy_chain(8453, wallet_address)
        fake_transport.set_delay(8453, 1.5)

        report = await engine.evaluate(wallet_address, [1, 8453])

        assert [b.chain_id for b in report.breakdown] == [1]
        [failure] = report.partial_failures
        assert failure.chain_id == 8453
        assert failure.component == "engine"
        assert failure.kind == FailureKind.UNAVAILABLE
        assert engine.stats["deadline_exceeded"] == 1

    @pytest.mark.asyncio
    async def test_router_failure_keeps_chain(self, engine, fake_transport, wallet_address):
        """No venue for the largest holding only flags the chain"""
        fake_transport.script_healthy_chain(1, wallet_address, venues=[])

        report = await engine.evaluate(wallet_address, [1])
        [breakdown] = report.breakdown

        assert breakdown.route is None
        assert "no_venue" in breakdown.flags
        [failure] = report.partial_failures
        assert failure.component == "liquidity_router"
        assert failure.kind == FailureKind.NO_VENUE

    @pytest.mark.asyncio
    async def test_mev_lowers_score(self, engine, fake_transport, wallet_address):
        """A detected sandwich sets the MEV signal to zero"""
        pool = MockDataGenerator.generate_address(0x9001)
        attacker = MockDataGenerator.generate_address(0xBAD)
        fake_transport.script_healthy_chain(
            1, wallet_address,
            transactions=MockDataGenerator.sandwich_records(attacker, wallet_address, pool)
        )

        report = await engine.evaluate(wallet_address, [1])
        [breakdown] = report.breakdown

        assert breakdown.mev.detected is True
        assert breakdown.signals["mev"] == 0.0
        assert "mev_detected" in breakdown.flags

    @pytest.mark.asyncio
    async def test_shared_fetches_coalesce(self, engine, fake_transport, wallet_address):
        """Balances needed by three analyzers are fetched once"""
        fake_transport.script_healthy_chain(1, wallet_address)

        await engine.evaluate(wallet_address, [1])

        assert fake_transport.call_count(1, "token_balances") == 1
        assert fake_transport.call_count(1, "transactions") == 1

    @pytest.mark.asyncio
    async def test_structured_logger_receives_evaluation(self, gateway, cache, fake_transport, wallet_address):
        structured_logger = MagicMock()
        engine = EligibilityEngine(gateway=gateway, cache=cache, structured_logger=structured_logger)
        fake_transport.script_healthy_chain(1, wallet_address)

        await engine.evaluate(wallet_address, [1])

        [record] = [c.args[0] for c in structured_logger.log_evaluation.call_args_list]
        assert record["success"] is True
        assert record["chains"] == [1]

    @pytest.mark.asyncio
    async def test_gas_price(self, engine, fake_transport):
        fake_transport.add(1, "eth_gasPrice", rpc(hex(30 * 10**9)))

        gas = await engine.get_gas_price(1)

        assert gas.price == 30 * 10**9
        assert gas.is_high is False

    @pytest.mark.asyncio
    async def test_lifecycle(self, engine):
        assert engine.state == EngineState.CREATED

        async with engine:
            assert engine.state == EngineState.RUNNING

        assert engine.state == EngineState.STOPPED
        stats = engine.get_stats()
        assert set(stats) == {"engine", "gateway", "cache"}

    def test_supported_chains(self, engine):
        """Only chains enabled in the gateway config are listed"""
        chains = engine.supported_chains()

        assert [c.chain_id for c in chains] == [1, 8453]
        assert chains[1].to_dict() == {"chainId": 8453, "name": "Base", "nativeSymbol": "ETH"}

    def test_injected_empty_cache_is_kept(self, gateway, cache):
        """An empty shared cache is still the engine's cache"""
        first = EligibilityEngine(gateway=gateway, cache=cache)
        second = EligibilityEngine(gateway=gateway, cache=cache)

        assert len(cache) == 0
        assert first.cache is cache
        assert second.cache is cache
        assert first.gateway is gateway

    @pytest.mark.asyncio
    async def test_deadline_only_affects_its_own_evaluation(self, gateway, cache, fake_transport, wallet_address):
        """A short deadline on one evaluation leaves a concurrent one sharing the cache intact"""
        hasty = EligibilityEngine(
            config={"engine": {"evaluation_deadline_seconds": 0.1}}, gateway=gateway, cache=cache
        )
        patient = EligibilityEngine(
            config={"engine": {"evaluation_deadline_seconds": 5.0}}, gateway=gateway, cache=cache
        )
        fake_transport.script_healthy_chain(1, wallet_address)
        fake_transport.set_delay(1, 0.3)

        hasty_task = asyncio.create_task(hasty.evaluate(wallet_address, [1]))
        # Let the hasty evaluation start the shared fetches first
        await asyncio.sleep(0.05)
        patient_task = asyncio.create_task(patient.evaluate(wallet_address, [1]))

        with pytest.raises(TotalFailureError):
            await hasty_task
        report = await patient_task

        assert report.success is True
        assert [b.chain_id for b in report.breakdown] == [1]
        assert report.partial_failures == ()
        assert patient.stats["deadline_exceeded"] == 0
        assert fake_transport.call_count(1, "token_balances") == 1

    @pytest.mark.asyncio
    async def test_contract_creation_in_history(self, engine, fake_transport, wallet_address):
        """A contract deployment in the wallet history does not fail the chain"""
        token = MockDataGenerator.generate_address(0xA001)
        history = [
            MockDataGenerator.transaction_record(i, wallet_address, token, days_ago=i)
            for i in range(1, 4)
        ]
        history.append({**MockDataGenerator.transaction_record(99, wallet_address, token), "to": None})
        fake_transport.script_healthy_chain(1, wallet_address, transactions=history)

        report = await engine.evaluate(wallet_address, [1])
        [breakdown] = report.breakdown

        assert breakdown.wallet.transaction_count == 4
        assert breakdown.mev.detected is False
        assert report.partial_failures == ()
