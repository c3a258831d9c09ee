"""
System-wide Constants for the Onchain Eligibility Engine
Centralized defaults for chains, DEX venues, scoring thresholds and gateway behaviour
"""

from decimal import Decimal
from enum import Enum, IntEnum
from typing import FrozenSet

# ============= Version Info =============
VERSION = "1.0.0"
ENGINE_NAME = "EligibilityEngine"
PROJECT_NAME = "Onchain Eligibility Engine"

# ============= Chain Configuration =============

class Chain(IntEnum):
    """Blockchain chain IDs"""
    ETHEREUM = 1
    BSC = 56
    POLYGON = 137
    ARBITRUM = 42161
    BASE = 8453
    OPTIMISM = 10
    AVALANCHE = 43114

CHAIN_NAMES = {
    Chain.ETHEREUM: "Ethereum",
    Chain.BSC: "BSC",
    Chain.POLYGON: "Polygon",
    Chain.ARBITRUM: "Arbitrum",
    Chain.BASE: "Base",
    Chain.OPTIMISM: "Optimism",
    Chain.AVALANCHE: "Avalanche"
}

CHAIN_SYMBOLS = {
    Chain.ETHEREUM: "ETH",
    Chain.BSC: "BNB",
    Chain.POLYGON: "MATIC",
    Chain.ARBITRUM: "ETH",
    Chain.BASE: "ETH",
    Chain.OPTIMISM: "ETH",
    Chain.AVALANCHE: "AVAX"
}

# Public endpoints, overridable per chain through GatewayConfig.rpc_endpoints
CHAIN_RPC_URLS = {
    Chain.ETHEREUM: "https://rpc.ankr.com/eth",
    Chain.BSC: "https://bsc-dataseed.binance.org",
    Chain.POLYGON: "https://polygon-rpc.com",
    Chain.ARBITRUM: "https://arb1.arbitrum.io/rpc",
    Chain.BASE: "https://mainnet.base.org",
    Chain.OPTIMISM: "https://mainnet.optimism.io",
    Chain.AVALANCHE: "https://api.avax.network/ext/bc/C/rpc"
}

SUPPORTED_CHAIN_IDS: FrozenSet[int] = frozenset(int(chain) for chain in Chain)

# ============= DEX Configuration =============

class DEX(Enum):
    """Known decentralized exchange venues"""
    UNISWAP_V2 = "uniswap_v2"
    UNISWAP_V3 = "uniswap_v3"
    PANCAKESWAP = "pancakeswap"
    SUSHISWAP = "sushiswap"
    QUICKSWAP = "quickswap"
    TRADER_JOE = "trader_joe"

DEX_FEES = {
    DEX.UNISWAP_V2: Decimal("0.003"),  # 0.3%
    DEX.UNISWAP_V3: Decimal("0.003"),  # Variable, using 0.3% as default
    DEX.PANCAKESWAP: Decimal("0.0025"),  # 0.25%
    DEX.SUSHISWAP: Decimal("0.003"),  # 0.3%
    DEX.QUICKSWAP: Decimal("0.003"),  # 0.3%
    DEX.TRADER_JOE: Decimal("0.003"),  # 0.3%
}

DEFAULT_DEX_FEE = Decimal("0.003")

# Quote token used when routing a wallet's largest holding
STABLECOINS = {
    Chain.ETHEREUM: {"USDC": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"},
    Chain.BSC: {"USDT": "0x55d398326f99059fF775485246999027B3197955"},
    Chain.POLYGON: {"USDC": "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"},
    Chain.ARBITRUM: {"USDC": "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"},
    Chain.BASE: {"USDC": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"},
    Chain.OPTIMISM: {"USDC": "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85"},
    Chain.AVALANCHE: {"USDC": "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E"}
}

# ============= Gateway Parameters =============

DEFAULT_RPC_TIMEOUT_MS = 30000
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_BACKOFF_MAX_SECONDS = 30.0
DEFAULT_MAX_CONCURRENCY_PER_CHAIN = 8

# HTTP statuses worth another attempt
RETRYABLE_HTTP_STATUSES = frozenset({429, 500, 502, 503, 504})

# ============= Routing Parameters =============

DEFAULT_GAS_LIMIT = 300000
PRIORITY_FEE_GWEI = 2
DEFAULT_SLIPPAGE = Decimal("0.005")  # 0.5%
MIN_LIQUIDITY_USD = Decimal("50000")
PRICE_IMPACT_WARNING = Decimal("0.05")  # 5%
HIGH_GAS_ALERT_GWEI = 100
MAX_TRANSACTION_AMOUNT_USD = Decimal("1000000")

# ============= Wallet & Risk Parameters =============

WALLET_DIVERSITY_THRESHOLD = 0.7
DIVERSITY_REFERENCE_TOKENS = 10
ACTIVITY_DECAY_DAYS = 90.0
ACTIVITY_SATURATION = 20.0
TOKEN_AGE_THRESHOLD_DAYS = 90
MIN_HOLDER_COUNT = 100

# ============= MEV Parameters =============

MEV_PROFIT_THRESHOLD = Decimal("0.1")  # native units
NATIVE_DECIMALS = 18
# Front-run and back-run may sit in the same or the adjacent block
SANDWICH_BLOCK_WINDOW = 1

# ============= Supply & Correlation Parameters =============

LIQUIDITY_LOCK_PERIOD_DAYS = 365
CORRELATION_FLAG_THRESHOLD = 0.95
CORRELATION_WINDOW_DAYS = 30
MIN_CORRELATION_SAMPLES = 3

# ============= Scoring Parameters =============

DEFAULT_SCORE_WEIGHTS = {
    "diversity": 0.30,
    "activity": 0.30,
    "risk": 0.25,
    "mev": 0.15
}

RISK_PENALTIES = {
    "low": 0.0,
    "medium": 0.5,
    "high": 1.0
}

NEUTRAL_SIGNAL = 0.5
EVALUATION_DEADLINE_SECONDS = 60.0

SCORE_THRESHOLDS = {
    "excellent": 90,
    "good": 75,
    "fair": 50,
    "poor": 25
}

# ============= Time Constants =============

# Key classes without an entry (token_balances, transactions) follow the default TTL
CACHE_TTL = {
    "default": 60,
    "gas_price": 15,
    "dex_quotes": 30,
    "token_supply": 300,
    "price_history": 300,
    "correlation": 300
}

CACHE_SWEEP_INTERVAL_SECONDS = 60
CACHE_MAX_ENTRIES = 10000

SECONDS_PER_DAY = 86400
