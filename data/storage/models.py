# data/storage/models.py

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from utils.constants import CHAIN_NAMES, CHAIN_SYMBOLS, Chain
from utils.errors import PartialFailureError
from utils.helpers import utc_now, wei_to_gwei


class RiskLevel(Enum):
    """Wallet risk classification."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MEVType(Enum):
    """Detected MEV pattern."""
    NONE = "none"
    SANDWICH = "sandwich"


class FailureKind(Enum):
    """Why a chain or analyzer did not contribute to a report."""
    UNSUPPORTED_CHAIN = "unsupported_chain"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"
    NO_VENUE = "no_venue"
    ANALYSIS_ERROR = "analysis_error"

    @classmethod
    def from_error(cls, error: BaseException) -> "FailureKind":
        kind = getattr(error, "kind", None)
        for member in cls:
            if member.value == kind:
                return member
        return cls.ANALYSIS_ERROR


# ============= Chain & Gas =============

@dataclass(frozen=True)
class ChainInfo:
    """Static description of a supported chain"""
    chain_id: int
    name: str
    native_symbol: str

    @classmethod
    def from_chain(cls, chain: Chain) -> "ChainInfo":
        return cls(int(chain), CHAIN_NAMES[chain], CHAIN_SYMBOLS[chain])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "name": self.name,
            "nativeSymbol": self.native_symbol
        }


@dataclass(frozen=True)
class GasPrice:
    """Current gas price for a chain, in wei"""
    chain_id: int
    price: int
    fetched_at: datetime = field(default_factory=utc_now)
    is_high: bool = False

    @property
    def gwei(self) -> Decimal:
        return wei_to_gwei(self.price)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "price": str(self.price),
            "gwei": str(self.gwei),
            "isHigh": self.is_high,
            "fetchedAt": self.fetched_at.isoformat()
        }


# ============= Tokens & Transactions =============

@dataclass(frozen=True)
class TokenInfo:
    """Token metadata, identified by (chain_id, address)"""
    chain_id: int
    address: str
    symbol: str
    decimals: int

    @property
    def key(self) -> Tuple[int, str]:
        return (self.chain_id, self.address.lower())


@dataclass(frozen=True)
class TokenBalance:
    """Wallet holding of a single token, balance in base units"""
    token: TokenInfo
    balance: int
    quote_usd: float
    created_at: Optional[datetime] = None
    holder_count: Optional[int] = None


@dataclass(frozen=True)
class Transaction:
    """Mapped transaction record; value and value_out are wei, to_address is None for contract creations"""
    hash: str
    from_address: str
    to_address: Optional[str]
    value: int
    timestamp: datetime
    block_number: Optional[int] = None
    tx_index: Optional[int] = None
    pool: Optional[str] = None
    value_out: Optional[int] = None
    gas_price: Optional[int] = None

    @property
    def order_key(self) -> Tuple[datetime, str]:
        """Natural ordering: timestamp, then hash"""
        return (self.timestamp, self.hash)

    @property
    def sort_key(self) -> Tuple[int, int, datetime, str]:
        """Position inside the chain, for block-level pattern scans"""
        return (
            self.block_number if self.block_number is not None else -1,
            self.tx_index if self.tx_index is not None else -1,
            self.timestamp,
            self.hash
        )

    @property
    def venue(self) -> Optional[str]:
        """Pool the transaction touched; None for contract creations"""
        target = self.pool or self.to_address
        return target.lower() if target else None


@dataclass(frozen=True)
class VenueQuote:
    """A DEX venue able to trade a pair, with its pool reserves"""
    dex: str
    liquidity_usd: Decimal
    reserve_in: Decimal
    reserve_out: Decimal
    fee: Decimal
    price_in_usd: Decimal = Decimal("0")
    gas_estimate: Optional[int] = None


@dataclass(frozen=True)
class LiquidityLock:
    """Locked share of a token's supply"""
    amount: Decimal
    locked_at: datetime
    unlock_at: datetime
    claimed_days: Optional[int] = None


@dataclass(frozen=True)
class SupplySnapshot:
    """Raw supply figures as reported by the indexer"""
    token: str
    total: Decimal
    burned: Decimal = Decimal("0")
    locks: Tuple[LiquidityLock, ...] = ()
    claims_locked: bool = False


# ============= Analyzer Results =============

@dataclass(frozen=True)
class LiquidityRoute:
    """Best venue for a simulated trade"""
    dex: str
    estimated_gas: int
    price_impact: Decimal
    gas_cost_wei: int
    liquidity_usd: Decimal
    price_impact_warning: bool = False
    amount_capped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dex": self.dex,
            "estimatedGas": self.estimated_gas,
            "priceImpact": str(self.price_impact),
            "gasCostWei": str(self.gas_cost_wei),
            "liquidityUsd": str(self.liquidity_usd),
            "priceImpactWarning": self.price_impact_warning,
            "amountCapped": self.amount_capped
        }


@dataclass(frozen=True)
class MEVDetection:
    """MEV pattern verdict for a transaction set"""
    detected: bool
    type: MEVType
    probability: float
    estimated_profit: Decimal
    evidence: Tuple[str, ...] = ()

    @classmethod
    def none(cls) -> "MEVDetection":
        return cls(False, MEVType.NONE, 0.0, Decimal("0"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "type": self.type.value,
            "probability": self.probability,
            "estimatedProfit": str(self.estimated_profit),
            "evidence": list(self.evidence)
        }


@dataclass(frozen=True)
class WalletMetrics:
    """Diversity, activity and risk of a wallet on one chain"""
    diversity_score: float
    activity_score: float
    risk_level: RiskLevel
    is_concentrated: bool = False
    risky_tokens: Tuple[str, ...] = ()
    token_count: int = 0
    transaction_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "diversityScore": self.diversity_score,
            "activityScore": self.activity_score,
            "riskLevel": self.risk_level.value,
            "isConcentrated": self.is_concentrated,
            "riskyTokens": list(self.risky_tokens),
            "tokenCount": self.token_count,
            "transactionCount": self.transaction_count
        }


@dataclass(frozen=True)
class CorrelationData:
    """Pearson correlation of two tokens' returns"""
    token1: str
    token2: str
    coefficient: float
    flagged: bool = False
    sample_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token1": self.token1,
            "token2": self.token2,
            "coefficient": self.coefficient,
            "flagged": self.flagged,
            "sampleSize": self.sample_size
        }


@dataclass(frozen=True)
class SupplyMetrics:
    """Supply breakdown; locked + circulating never exceeds total"""
    token: str
    total: Decimal
    circulating: Decimal
    locked: Decimal
    effective_locked: Decimal
    suspicious: bool = False
    reasons: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "total": str(self.total),
            "circulating": str(self.circulating),
            "locked": str(self.locked),
            "effectiveLocked": str(self.effective_locked),
            "suspicious": self.suspicious,
            "reasons": list(self.reasons)
        }


@dataclass(frozen=True)
class HoldingsAnalysis:
    """Supply and correlation signals for a wallet's largest holdings"""
    supply: Optional[SupplyMetrics] = None
    correlation: Optional[CorrelationData] = None

    @property
    def flags(self) -> List[str]:
        flags = []
        if self.supply is not None and self.supply.suspicious:
            flags.append("suspicious_supply")
        if self.correlation is not None and self.correlation.flagged:
            flags.append("correlated_holdings")
        return flags


# ============= Reports =============

@dataclass(frozen=True)
class PartialFailure:
    """A chain or analyzer that did not contribute"""
    chain_id: int
    component: str
    kind: FailureKind
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "component": self.component,
            "kind": self.kind.value,
            "message": self.message
        }


@dataclass(frozen=True)
class ChainBreakdown:
    """Per-chain signals and partial score"""
    chain_id: int
    score: float
    signals: Dict[str, float]
    wallet: Optional[WalletMetrics] = None
    mev: Optional[MEVDetection] = None
    route: Optional[LiquidityRoute] = None
    holdings: Optional[HoldingsAnalysis] = None
    flags: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        holdings = self.holdings
        return {
            "chainId": self.chain_id,
            "chain": CHAIN_NAMES.get(self.chain_id, str(self.chain_id)),
            "score": self.score,
            "signals": dict(self.signals),
            "wallet": self.wallet.to_dict() if self.wallet else None,
            "mev": self.mev.to_dict() if self.mev else None,
            "route": self.route.to_dict() if self.route else None,
            "supply": holdings.supply.to_dict() if holdings and holdings.supply else None,
            "correlation": (
                holdings.correlation.to_dict() if holdings and holdings.correlation else None
            ),
            "flags": list(self.flags)
        }


@dataclass(frozen=True)
class EligibilityReport:
    """Final eligibility verdict for an address"""
    address: str
    success: bool
    score: float
    tier: str = "ineligible"
    breakdown: Tuple[ChainBreakdown, ...] = ()
    partial_failures: Tuple[PartialFailure, ...] = ()
    evaluated_at: datetime = field(default_factory=utc_now)

    @property
    def failed_chains(self) -> List[int]:
        produced = {item.chain_id for item in self.breakdown}
        return sorted({f.chain_id for f in self.partial_failures} - produced)

    def raise_for_failures(self) -> None:
        """Raise PartialFailureError if any chain failed without producing data"""
        if self.failed_chains:
            raise PartialFailureError(self.failed_chains)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "address": self.address,
            "score": self.score,
            "tier": self.tier,
            "breakdown": [item.to_dict() for item in self.breakdown],
            "partialFailures": [item.to_dict() for item in self.partial_failures],
            "evaluatedAt": self.evaluated_at.isoformat()
        }
