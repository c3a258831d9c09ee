"""
Typed Exception Classes for the Onchain Eligibility Engine

This module provides the error taxonomy shared by the gateway, the analyzers
and the aggregator. Gateway errors carry the chain they happened on so the
aggregator can record them as per-chain partial failures.
"""

from typing import Iterable, List, Optional


# ============================================================================
# Gateway Exceptions
# ============================================================================

class GatewayError(Exception):
    """Base exception for chain gateway failures"""

    kind = "gateway_error"

    def __init__(self, message: str, chain_id: Optional[int] = None):
        super().__init__(message)
        self.chain_id = chain_id


class GatewayTimeoutError(GatewayError):
    """A single gateway attempt exceeded the RPC timeout"""

    kind = "timeout"


class GatewayUnavailableError(GatewayError):
    """Chain endpoint still failing after the retry budget was spent"""

    kind = "unavailable"

    def __init__(self, chain_id: int, attempts: int = 0, message: Optional[str] = None):
        super().__init__(
            message or f"Chain {chain_id} unavailable after {attempts} attempts",
            chain_id
        )
        self.attempts = attempts


class MalformedResponseError(GatewayError):
    """Endpoint answered with a payload that could not be mapped"""

    kind = "malformed_response"


class UnsupportedChainError(GatewayError):
    """Chain id is not known or not enabled"""

    kind = "unsupported_chain"

    def __init__(self, chain_id: int):
        super().__init__(f"Unsupported chain id: {chain_id}", chain_id)


# Failures worth another attempt inside the gateway
class TransientGatewayError(GatewayError):
    """Connection reset, HTTP 5xx or rate limit"""

    kind = "transient"


# ============================================================================
# Routing Exceptions
# ============================================================================

class RouteError(Exception):
    """Base exception for liquidity routing failures"""

    kind = "route_error"


class InsufficientLiquidityError(RouteError):
    """Every venue is below the configured liquidity floor"""

    kind = "insufficient_liquidity"


class NoVenueError(RouteError):
    """No venue quotes the requested pair"""

    kind = "no_venue"


# ============================================================================
# Aggregation Exceptions
# ============================================================================

class AggregationError(Exception):
    """Base exception for eligibility aggregation"""

    kind = "aggregation_error"


class PartialFailureError(AggregationError):
    """Some chains failed while others produced data"""

    kind = "partial_failure"

    def __init__(self, chains: Iterable[int], message: Optional[str] = None):
        self.chains: List[int] = sorted(set(chains))
        super().__init__(message or f"Chains failed: {self.chains}")


class TotalFailureError(AggregationError):
    """No chain produced data for the evaluation"""

    kind = "total_failure"

    def __init__(self, message: str, failures: Optional[list] = None):
        super().__init__(message)
        self.failures = failures or []


# ============================================================================
# Validation & Configuration Exceptions
# ============================================================================

class ValidationError(Exception):
    """Input validation failed"""
    pass


class ConfigurationError(Exception):
    """Configuration could not be loaded or is inconsistent"""
    pass
