# tests/conftest.py
"""
Global pytest configuration and fixtures
"""
import logging
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add project root and shared fixtures to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent / "fixtures"))

from core.engine import EligibilityEngine
from data.collectors.chain_data import ChainDataCollector
from data.collectors.chain_gateway import ChainGateway
from data.storage.cache import CacheManager
from mock_data import MockDataGenerator
from test_helpers import FakeTransport

# Test configuration
TEST_CONFIG = {
    "gateway": {
        "rpc_timeout_ms": 2000,
        "retry_attempts": 2,
        "backoff_base_seconds": 0,
        "backoff_jitter": False,
        "max_concurrency_per_chain": 4,
        "enabled_chains": [1, 8453]
    },
    "cache": {
        "cache_ttl": 60,
        "cache_sweep_interval_seconds": 60
    },
    "engine": {
        "evaluation_deadline_seconds": 5.0
    }
}


@pytest.fixture
def fake_transport():
    """Scripted transport shared by gateway fixtures"""
    return FakeTransport()


@pytest.fixture
def gateway(fake_transport):
    """Gateway over the fake transport with instant backoff"""
    return ChainGateway(TEST_CONFIG["gateway"], transport=fake_transport, sleep=AsyncMock())


@pytest.fixture
def cache():
    """Fresh in-process cache"""
    return CacheManager(TEST_CONFIG["cache"])


@pytest.fixture
def collector(gateway, cache):
    """Chain data collector over the fake gateway"""
    return ChainDataCollector(gateway, cache)


@pytest.fixture
def engine(gateway, cache):
    """Engine wired to the fake gateway"""
    return EligibilityEngine(config=TEST_CONFIG, gateway=gateway, cache=cache)


@pytest.fixture
def wallet_address():
    """Wallet under evaluation"""
    return MockDataGenerator.generate_address(0xC0FFEE)


@pytest.fixture
def restore_root_logger():
    """StructuredLogger replaces root handlers; put them back afterwards"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
