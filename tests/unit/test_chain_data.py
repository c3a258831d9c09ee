# tests/unit/test_chain_data.py
"""
Unit tests for ChainDataCollector
"""
import asyncio

import pytest

from mock_data import MockDataGenerator
from test_helpers import rpc
from utils.errors import MalformedResponseError

TOKEN = MockDataGenerator.generate_address(0xAA)


@pytest.mark.unit
class TestChainDataCollector:
    """Test cases for cached chain data access"""

    @pytest.mark.asyncio
    async def test_transactions_in_natural_order(self, collector, fake_transport, wallet_address):
        """Transactions are ordered by timestamp, then hash"""
        fake_transport.add(1, "transactions", rpc([
            MockDataGenerator.transaction_record(3, wallet_address, TOKEN, days_ago=1),
            MockDataGenerator.transaction_record(1, wallet_address, TOKEN, days_ago=5),
            MockDataGenerator.transaction_record(2, wallet_address, TOKEN, days_ago=3),
        ]))

        txs = await collector.get_transactions(1, wallet_address)

        assert [tx.hash for tx in txs] == [MockDataGenerator.generate_tx_hash(i) for i in (1, 2, 3)]

    @pytest.mark.asyncio
    async def test_results_are_cached(self, collector, fake_transport, wallet_address):
        """A second read inside the TTL does not reach the gateway"""
        fake_transport.add(1, "token_balances", rpc([MockDataGenerator.balance_record(TOKEN)]))

        first = await collector.get_token_balances(1, wallet_address)
        second = await collector.get_token_balances(1, wallet_address.upper().replace("0X", "0x"))

        assert first == second
        assert fake_transport.call_count(1, "token_balances") == 1

    @pytest.mark.asyncio
    async def test_concurrent_reads_share_one_call(self, collector, fake_transport, wallet_address):
        """Concurrent readers of one key coalesce onto one gateway call"""
        fake_transport.add(1, "token_balances", rpc([MockDataGenerator.balance_record(TOKEN)]))
        fake_transport.set_delay(1, 0.01)

        results = await asyncio.gather(
            *(collector.get_token_balances(1, wallet_address) for _ in range(4))
        )

        assert all(r == results[0] for r in results)
        assert fake_transport.call_count(1, "token_balances") == 1

    @pytest.mark.asyncio
    async def test_malformed_payload_not_cached(self, collector, fake_transport, wallet_address):
        """A payload that fails validation is refetched on the next read"""
        fake_transport.add(
            1, "token_balances",
            rpc([{"token": {"address": "bogus"}, "balance": "1"}]),
            rpc([MockDataGenerator.balance_record(TOKEN)])
        )

        with pytest.raises(MalformedResponseError):
            await collector.get_token_balances(1, wallet_address)

        balances = await collector.get_token_balances(1, wallet_address)

        assert len(balances) == 1
        assert fake_transport.call_count(1, "token_balances") == 2

    @pytest.mark.asyncio
    async def test_chains_cached_separately(self, collector, fake_transport, wallet_address):
        """Cache keys include the chain id"""
        fake_transport.add(1, "token_balances", rpc([MockDataGenerator.balance_record(TOKEN)]))
        fake_transport.add(8453, "token_balances", rpc([]))

        assert len(await collector.get_token_balances(1, wallet_address)) == 1
        assert await collector.get_token_balances(8453, wallet_address) == []

    @pytest.mark.asyncio
    async def test_gas_price_flagged_when_high(self, collector, fake_transport):
        """Gas above the alert threshold is flagged"""
        fake_transport.add(1, "eth_gasPrice", rpc(hex(150 * 10**9)))
        fake_transport.add(8453, "eth_gasPrice", rpc(hex(10**8)))

        high = await collector.get_gas_price(1)
        low = await collector.get_gas_price(8453)

        assert high.price == 150 * 10**9
        assert high.is_high is True
        assert low.is_high is False
        assert high.to_dict()["gwei"] == "150"

    @pytest.mark.asyncio
    async def test_supply_and_price_history(self, collector, fake_transport):
        """Supply snapshots and price series are mapped"""
        fake_transport.add(1, "token_supply", rpc(MockDataGenerator.supply_record(TOKEN, total_supply=500)))
        fake_transport.add(1, "price_history", rpc([1, 2, 3]))

        snapshot = await collector.get_supply(1, TOKEN)
        prices = await collector.get_price_history(1, TOKEN, 30)

        assert str(snapshot.total) == "500"
        assert prices == [1.0, 2.0, 3.0]
