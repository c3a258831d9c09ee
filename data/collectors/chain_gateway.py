"""
Chain Gateway
Per-chain JSON-RPC access with timeouts, bounded retries and connection pooling
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import aiohttp

from utils.constants import (
    CHAIN_RPC_URLS,
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_MAX_SECONDS,
    DEFAULT_MAX_CONCURRENCY_PER_CHAIN,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RPC_TIMEOUT_MS,
    RETRYABLE_HTTP_STATUSES,
    SUPPORTED_CHAIN_IDS,
)
from utils.errors import (
    GatewayError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    MalformedResponseError,
    TransientGatewayError,
    UnsupportedChainError,
)

logger = logging.getLogger(__name__)

# JSON-RPC error codes that signal an overloaded node rather than a bad request
TRANSIENT_RPC_ERROR_CODES = frozenset({-32005, -32603})


@dataclass(frozen=True)
class GatewayRequest:
    """Logical request served by a chain endpoint"""
    method: str
    params: Dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        args = ",".join(f"{k}={v}" for k, v in sorted(self.params.items()))
        return f"{self.method}({args})"


Transport = Callable[[int, GatewayRequest], Awaitable[Any]]
Mapper = Callable[[GatewayRequest, Any], Any]


class RetryState(Enum):
    """Retry lifecycle of a single gateway call"""
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


class RetryStateMachine:
    """
    Explicit retry lifecycle: ATTEMPTING(n) -> SUCCEEDED, or
    ATTEMPTING(n) -> BACKOFF(n) -> ATTEMPTING(n+1), or ATTEMPTING(n) -> FAILED.

    ``n`` never exceeds ``max_attempts``. Non-retryable failures go straight
    to FAILED.
    """

    _TRANSITIONS = {
        RetryState.ATTEMPTING: {RetryState.SUCCEEDED, RetryState.BACKOFF, RetryState.FAILED},
        RetryState.BACKOFF: {RetryState.ATTEMPTING},
        RetryState.FAILED: set(),
        RetryState.SUCCEEDED: set(),
    }

    def __init__(self, max_attempts: int = DEFAULT_RETRY_ATTEMPTS,
                 base_delay: float = DEFAULT_BACKOFF_BASE_SECONDS,
                 max_delay: float = DEFAULT_BACKOFF_MAX_SECONDS,
                 jitter: bool = True,
                 rng: Callable[[], float] = random.random):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng

        self.state = RetryState.ATTEMPTING
        self.attempt = 1
        self.last_error: Optional[BaseException] = None
        self.history: List[Tuple[RetryState, int]] = [(self.state, self.attempt)]

    @property
    def finished(self) -> bool:
        return self.state in (RetryState.FAILED, RetryState.SUCCEEDED)

    def _transition(self, new_state: RetryState) -> None:
        if new_state not in self._TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal retry transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append((new_state, self.attempt))

    def backoff_delay(self, attempt: int) -> float:
        """Exponential delay for the pause after ``attempt``, capped and jittered"""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= 0.5 + self._rng() * 0.5
        return delay

    def on_success(self) -> None:
        self._transition(RetryState.SUCCEEDED)

    def on_failure(self, error: BaseException, retryable: bool) -> Optional[float]:
        """Record a failed attempt; returns the backoff delay or None when failed for good"""
        self.last_error = error
        if not retryable or self.attempt >= self.max_attempts:
            self._transition(RetryState.FAILED)
            return None
        self._transition(RetryState.BACKOFF)
        return self.backoff_delay(self.attempt)

    def on_backoff_elapsed(self) -> None:
        self._transition(RetryState.ATTEMPTING)
        self.attempt += 1
        self.history[-1] = (self.state, self.attempt)


def map_jsonrpc_result(request: GatewayRequest, payload: Any) -> Any:
    """Extract ``result`` from a JSON-RPC 2.0 response"""
    if not isinstance(payload, dict):
        raise MalformedResponseError(f"{request.method}: response is not an object")
    if payload.get("error"):
        error = payload["error"]
        code = error.get("code") if isinstance(error, dict) else None
        message = error.get("message") if isinstance(error, dict) else str(error)
        if code in TRANSIENT_RPC_ERROR_CODES:
            raise TransientGatewayError(f"{request.method}: node error {code}: {message}")
        raise MalformedResponseError(f"{request.method}: RPC error {code}: {message}")
    if "result" not in payload:
        raise MalformedResponseError(f"{request.method}: response has no result")
    return payload["result"]


class ChainGateway:
    """
    Fetches data from chain endpoints.

    Each chain gets one lazily created ``aiohttp`` session, its connection
    pool, and a semaphore bounding in-flight calls. Instances are safe to
    share between concurrent evaluations; no caller-side locking is needed.
    """

    def __init__(self, config: Optional[Dict] = None,
                 transport: Optional[Transport] = None,
                 mapper: Optional[Mapper] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 rng: Callable[[], float] = random.random):
        """
        Initialize the gateway

        Args:
            config: Gateway configuration dictionary
            transport: Coroutine ``(chain_id, request) -> payload``; defaults to JSON-RPC over HTTP
            mapper: Function ``(request, payload) -> data``; defaults to JSON-RPC result extraction
            sleep: Backoff sleeper, replaceable in tests
            rng: Jitter source in [0, 1)
        """
        self.config = config or {}
        self.timeout = float(self.config.get('rpc_timeout_ms', DEFAULT_RPC_TIMEOUT_MS)) / 1000
        self.retry_attempts = int(self.config.get('retry_attempts', DEFAULT_RETRY_ATTEMPTS))
        self.backoff_base = float(self.config.get('backoff_base_seconds', DEFAULT_BACKOFF_BASE_SECONDS))
        self.backoff_max = float(self.config.get('backoff_max_seconds', DEFAULT_BACKOFF_MAX_SECONDS))
        self.backoff_jitter = bool(self.config.get('backoff_jitter', True))
        self.max_concurrency = int(
            self.config.get('max_concurrency_per_chain', DEFAULT_MAX_CONCURRENCY_PER_CHAIN)
        )

        self.endpoints: Dict[int, str] = {int(k): v for k, v in CHAIN_RPC_URLS.items()}
        for chain_id, url in (self.config.get('rpc_endpoints') or {}).items():
            self.endpoints[int(chain_id)] = url

        enabled = self.config.get('enabled_chains')
        self.supported_chains = frozenset(
            int(c) for c in (enabled if enabled else SUPPORTED_CHAIN_IDS)
        ) & SUPPORTED_CHAIN_IDS

        self._transport = transport or self._jsonrpc_transport
        self._mapper = mapper or map_jsonrpc_result
        self._sleep = sleep
        self._rng = rng

        # Connection pools
        self._sessions: Dict[int, aiohttp.ClientSession] = {}
        self._semaphores: Dict[int, asyncio.Semaphore] = {}
        self._request_id = 0

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'retries': 0,
            'timeouts': 0,
            'unsupported': 0
        }

    # ============= Public API =============

    def is_supported(self, chain_id: int) -> bool:
        return chain_id in self.supported_chains

    def supported_chain_ids(self) -> List[int]:
        return sorted(self.supported_chains)

    async def fetch(self, chain_id: int, request: GatewayRequest) -> Any:
        """
        Execute a request against a chain with bounded retries

        Args:
            chain_id: Target chain
            request: Logical request

        Returns:
            Mapped response data

        Raises:
            UnsupportedChainError: chain is unknown or disabled, no attempt is made
            MalformedResponseError: response could not be mapped, never retried
            GatewayUnavailableError: transient failures exhausted the retry budget
        """
        if not self.is_supported(chain_id):
            self.stats['unsupported'] += 1
            raise UnsupportedChainError(chain_id)

        machine = RetryStateMachine(
            max_attempts=self.retry_attempts,
            base_delay=self.backoff_base,
            max_delay=self.backoff_max,
            jitter=self.backoff_jitter,
            rng=self._rng
        )
        semaphore = self._semaphore_for(chain_id)

        while True:
            self.stats['total_requests'] += 1
            try:
                async with semaphore:
                    payload = await asyncio.wait_for(
                        self._transport(chain_id, request), timeout=self.timeout
                    )
                data = self._map(chain_id, request, payload)
            except asyncio.TimeoutError as e:
                self.stats['timeouts'] += 1
                error = GatewayTimeoutError(
                    f"{request.method} timed out after {self.timeout}s", chain_id
                )
                error.__cause__ = e
                retryable = True
            except (TransientGatewayError, GatewayTimeoutError) as e:
                error, retryable = e, True
            except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError) as e:
                error = TransientGatewayError(f"{request.method}: {e}", chain_id)
                error.__cause__ = e
                retryable = True
            except GatewayError as e:
                error, retryable = e, False
            else:
                machine.on_success()
                self.stats['successful_requests'] += 1
                return data

            if error.chain_id is None:
                error.chain_id = chain_id

            delay = machine.on_failure(error, retryable)
            if delay is None:
                self.stats['failed_requests'] += 1
                if not retryable:
                    logger.error(f"Chain {chain_id} {request.describe()} failed: {error}")
                    raise error
                logger.error(
                    f"Chain {chain_id} {request.describe()} unavailable after "
                    f"{machine.attempt} attempts: {error}"
                )
                raise GatewayUnavailableError(chain_id, machine.attempt) from error

            self.stats['retries'] += 1
            logger.warning(
                f"Chain {chain_id} attempt {machine.attempt} failed: {error}. "
                f"Retrying in {delay:.2f}s..."
            )
            await self._sleep(delay)
            machine.on_backoff_elapsed()

    async def fetch_many(self, chain_id: int, requests: Iterable[GatewayRequest]) -> List[Any]:
        """Fetch several requests on one chain concurrently; the first failure is raised"""
        return list(await asyncio.gather(*(self.fetch(chain_id, r) for r in requests)))

    async def close(self) -> None:
        """Close every connection pool"""
        sessions, self._sessions = self._sessions, {}
        for session in sessions.values():
            if not session.closed:
                await session.close()
        if sessions:
            logger.info(f"Closed {len(sessions)} gateway connection pools")

    def get_stats(self) -> Dict:
        """Get gateway statistics"""
        stats = self.stats.copy()
        stats['open_pools'] = len(self._sessions)
        return stats

    # ============= Internals =============

    def _semaphore_for(self, chain_id: int) -> asyncio.Semaphore:
        semaphore = self._semaphores.get(chain_id)
        if semaphore is None:
            semaphore = asyncio.Semaphore(self.max_concurrency)
            self._semaphores[chain_id] = semaphore
        return semaphore

    def _session_for(self, chain_id: int) -> aiohttp.ClientSession:
        session = self._sessions.get(chain_id)
        if session is None or session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            connector = aiohttp.TCPConnector(limit=self.max_concurrency)
            session = aiohttp.ClientSession(timeout=timeout, connector=connector)
            self._sessions[chain_id] = session
        return session

    def _map(self, chain_id: int, request: GatewayRequest, payload: Any) -> Any:
        try:
            return self._mapper(request, payload)
        except GatewayError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"{request.method}: {e}", chain_id) from e

    async def _jsonrpc_transport(self, chain_id: int, request: GatewayRequest) -> Any:
        url = self.endpoints.get(chain_id)
        if not url:
            raise UnsupportedChainError(chain_id)

        self._request_id += 1
        body = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": request.method,
            "params": [request.params] if request.params else []
        }

        session = self._session_for(chain_id)
        async with session.post(url, json=body) as response:
            if response.status in RETRYABLE_HTTP_STATUSES:
                raise TransientGatewayError(f"HTTP {response.status} from {url}", chain_id)
            if response.status >= 400:
                raise MalformedResponseError(f"HTTP {response.status} from {url}", chain_id)
            try:
                return await response.json(content_type=None)
            except (aiohttp.ContentTypeError, ValueError) as e:
                raise MalformedResponseError(f"Invalid JSON from {url}: {e}", chain_id) from e
