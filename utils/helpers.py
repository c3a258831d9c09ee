"""
Utility Helper Functions for the Onchain Eligibility Engine
Address handling, unit conversion, timing and small numeric helpers
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from functools import wraps
from typing import Any, Union

from web3 import Web3

logger = logging.getLogger(__name__)

# ============= Decorators =============

def measure_time(func):
    """Measure execution time decorator"""
    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
            return result
        finally:
            elapsed = time.perf_counter() - start
            logger.debug(f"{func.__name__} took {elapsed:.4f} seconds")

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            result = func(*args, **kwargs)
            return result
        finally:
            elapsed = time.perf_counter() - start
            logger.debug(f"{func.__name__} took {elapsed:.4f} seconds")

    return async_wrapper if asyncio.iscoroutinefunction(func) else sync_wrapper

# ============= Web3 Utilities =============

def is_valid_address(address: Any) -> bool:
    """Validate a 20-byte hex address"""
    return isinstance(address, str) and Web3.is_address(address)

def is_valid_tx_hash(tx_hash: Any) -> bool:
    """Validate a 32-byte hex transaction hash"""
    if not isinstance(tx_hash, str) or not tx_hash.startswith("0x") or len(tx_hash) != 66:
        return False
    try:
        int(tx_hash[2:], 16)
    except ValueError:
        return False
    return True

def wei_to_gwei(wei: Union[int, str, Decimal]) -> Decimal:
    """Convert Wei to Gwei"""
    return Decimal(str(wei)) / Decimal(10**9)

def gwei_to_wei(gwei: Union[int, float, str, Decimal]) -> int:
    """Convert Gwei to Wei"""
    return int(Decimal(str(gwei)) * Decimal(10**9))

def format_token_amount(amount: Union[int, str, Decimal], decimals: int) -> Decimal:
    """Format token amount based on decimals"""
    return Decimal(str(amount)) / Decimal(10**decimals)

def parse_quantity(value: Union[int, str]) -> int:
    """Parse a JSON-RPC quantity, hex or decimal"""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.startswith(("0x", "0X")):
            return int(text, 16)
        return int(text)
    raise ValueError(f"Not a quantity: {value!r}")

# ============= Time Utilities =============

def utc_now() -> datetime:
    """Timezone-aware current time"""
    return datetime.now(timezone.utc)

def to_utc(value: Union[int, float, str, datetime]) -> datetime:
    """Coerce unix seconds, ISO strings or datetimes to an aware UTC datetime"""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # Milliseconds
        if value > 10**12:
            value = value / 1000
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        if value.isdigit():
            return to_utc(int(value))
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unsupported timestamp: {value!r}")

# ============= Math Utilities =============

def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp value into [low, high]"""
    return max(low, min(high, value))


__all__ = [
    # Decorators
    'measure_time',
    # Web3
    'is_valid_address',
    'is_valid_tx_hash',
    'wei_to_gwei',
    'gwei_to_wei',
    'format_token_amount',
    'parse_quantity',
    # Time
    'utc_now',
    'to_utc',
    # Math
    'clamp',
]
