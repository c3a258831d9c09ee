"""
Eligibility Engine - Orchestrates per-chain analysis into a single report
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from analysis.liquidity_router import LiquidityRouter
from analysis.mev_detector import MEVDetector
from analysis.supply_analyzer import SupplyAnalyzer
from analysis.wallet_scorer import WalletScorer
from core.scoring import EligibilityScorer
from data.collectors.chain_data import ChainDataCollector
from data.collectors.chain_gateway import ChainGateway
from data.storage.cache import CacheManager
from data.storage.models import (
    ChainBreakdown,
    EligibilityReport,
    FailureKind,
    ChainInfo,
    GasPrice,
    LiquidityRoute,
    PartialFailure,
)
from utils.constants import EVALUATION_DEADLINE_SECONDS, STABLECOINS, Chain
from utils.errors import TotalFailureError, ValidationError
from utils.helpers import format_token_amount, is_valid_address, measure_time

logger = logging.getLogger(__name__)


class EngineState(Enum):
    """Engine lifecycle states"""
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class ChainOutcome:
    """Result of one chain pipeline"""
    chain_id: int
    breakdown: Optional[ChainBreakdown] = None
    failures: List[PartialFailure] = field(default_factory=list)


class EligibilityEngine:
    """
    Fans an evaluation out to one pipeline per chain and merges the results.

    Each pipeline runs the wallet scorer, MEV detector, liquidity router and
    supply analyzer concurrently. A failing analyzer leaves its signal at the
    neutral value and is listed in the report's partial failures; a chain
    where neither the wallet scorer nor the MEV detector produced data is
    left out of the score. Pipelines still running at the deadline are
    cancelled and reported unavailable.
    """

    COMPONENTS = ("wallet_scorer", "mev_detector", "liquidity_router", "supply_analyzer")

    def __init__(self, config: Optional[Dict] = None,
                 gateway: Optional[ChainGateway] = None,
                 cache: Optional[CacheManager] = None,
                 structured_logger: Optional[Any] = None):
        """
        Initialize the engine

        Args:
            config: Dict of configuration groups (gateway, cache, routing, mev, wallet, supply, scoring, engine)
            gateway: Chain gateway, built from config when omitted
            cache: Shared cache, built from config when omitted
            structured_logger: Optional StructuredLogger receiving evaluation records
        """
        self.config = config or {}
        self.state = EngineState.CREATED

        routing_config = self.config.get('routing') or {}
        self.cache = cache if cache is not None else CacheManager(self.config.get('cache'))
        self.gateway = gateway if gateway is not None else ChainGateway(self.config.get('gateway'))
        self.collector = ChainDataCollector(self.gateway, self.cache, config=routing_config)

        self.router = LiquidityRouter(self.collector, routing_config)
        self.mev_detector = MEVDetector(self.collector, self.config.get('mev'))
        self.wallet_scorer = WalletScorer(self.collector, self.config.get('wallet'))
        self.supply_analyzer = SupplyAnalyzer(self.collector, self.config.get('supply'))
        self.scorer = EligibilityScorer(config=self.config.get('scoring'))
        self.structured_logger = structured_logger

        engine_config = self.config.get('engine') or {}
        self.deadline = float(
            engine_config.get('evaluation_deadline_seconds', EVALUATION_DEADLINE_SECONDS)
        )

        self.stats = {
            'evaluations': 0,
            'total_failures': 0,
            'partial_failures': 0,
            'deadline_exceeded': 0
        }

    @classmethod
    def from_config_manager(cls, config_manager, **kwargs) -> "EligibilityEngine":
        """Build an engine from a loaded ConfigManager"""
        return cls(config=config_manager.as_engine_config(), **kwargs)

    # ============= Lifecycle =============

    async def start(self) -> None:
        """Start background cache maintenance"""
        if self.state == EngineState.RUNNING:
            return
        await self.cache.start()
        self.state = EngineState.RUNNING
        logger.info(f"Eligibility engine started for chains {self.gateway.supported_chain_ids()}")

    async def stop(self) -> None:
        """Stop cache maintenance and close connection pools"""
        if self.state == EngineState.STOPPED:
            return
        await self.cache.stop()
        await self.gateway.close()
        self.state = EngineState.STOPPED
        logger.info("Eligibility engine stopped")

    async def __aenter__(self) -> "EligibilityEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ============= Public API =============

    def supported_chains(self) -> List[ChainInfo]:
        """Chains this engine is configured to evaluate"""
        return [ChainInfo.from_chain(Chain(c)) for c in self.gateway.supported_chain_ids()]

    async def get_gas_price(self, chain_id: int) -> GasPrice:
        """Current gas price of a chain, cached for the gas price TTL"""
        return await self.collector.get_gas_price(chain_id)

    async def evaluate(self, address: str, chains: Optional[Iterable[int]] = None) -> EligibilityReport:
        """
        Evaluate airdrop eligibility of an address

        Args:
            address: Wallet address
            chains: Chain ids to include, defaults to every enabled chain

        Returns:
            EligibilityReport with the final score, per-chain breakdown and partial failures

        Raises:
            ValidationError: address is not a valid 20-byte hex address
            TotalFailureError: no chain produced data
        """
        if not is_valid_address(address):
            raise ValidationError(f"Invalid wallet address: {address!r}")
        address = address.lower()

        chain_ids = list(dict.fromkeys(int(c) for c in chains)) if chains else self.gateway.supported_chain_ids()
        if not chain_ids:
            raise ValidationError("No chains to evaluate")

        self.stats['evaluations'] += 1
        started = time.perf_counter()

        tasks = {
            chain_id: asyncio.create_task(self._evaluate_chain(chain_id, address))
            for chain_id in chain_ids
        }
        done, pending = await asyncio.wait(tasks.values(), timeout=self.deadline)
        if pending:
            self.stats['deadline_exceeded'] += 1
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        breakdowns: List[ChainBreakdown] = []
        failures: List[PartialFailure] = []
        for chain_id, task in tasks.items():
            outcome = self._collect_outcome(chain_id, task)
            failures.extend(outcome.failures)
            if outcome.breakdown is not None:
                breakdowns.append(outcome.breakdown)

        duration = time.perf_counter() - started

        if not breakdowns:
            self.stats['total_failures'] += 1
            logger.error(
                f"Evaluation of {address} failed on every chain: "
                f"{[f.kind.value for f in failures]}"
            )
            self._log_evaluation(address, None, failures, duration)
            raise TotalFailureError(
                f"No chain produced data for {address}", failures=failures
            )

        score = self.scorer.combine([b.score for b in breakdowns])
        report = EligibilityReport(
            address=address,
            success=True,
            score=score,
            tier=self.scorer.determine_tier(score),
            breakdown=tuple(breakdowns),
            partial_failures=tuple(failures)
        )

        if failures:
            self.stats['partial_failures'] += 1
            logger.warning(
                f"Evaluation of {address} degraded on chains {report.failed_chains or 'none'} "
                f"({len(failures)} component failures)"
            )
        logger.info(f"Evaluated {address}: score {score} across {len(breakdowns)} chains in {duration:.2f}s")
        self._log_evaluation(address, report, failures, duration)
        return report

    async def evaluate_safe(self, address: str, chains: Optional[Iterable[int]] = None) -> EligibilityReport:
        """Like ``evaluate`` but returns an unsuccessful report on total failure"""
        try:
            return await self.evaluate(address, chains)
        except TotalFailureError as e:
            return EligibilityReport(
                address=address.lower(),
                success=False,
                score=0.0,
                partial_failures=tuple(e.failures)
            )

    def get_stats(self) -> Dict[str, Any]:
        return {
            'engine': dict(self.stats),
            'gateway': self.gateway.get_stats(),
            'cache': self.cache.get_stats()
        }

    # ============= Chain pipeline =============

    @measure_time
    async def _evaluate_chain(self, chain_id: int, address: str) -> ChainOutcome:
        if not self.gateway.is_supported(chain_id):
            return ChainOutcome(chain_id, failures=[PartialFailure(
                chain_id, "gateway", FailureKind.UNSUPPORTED_CHAIN, f"Unsupported chain id: {chain_id}"
            )])

        results = await asyncio.gather(
            self.wallet_scorer.score(chain_id, address),
            self.mev_detector.detect_for_wallet(chain_id, address),
            self._route_largest_holding(chain_id, address),
            self.supply_analyzer.analyze_holdings(chain_id, address),
            return_exceptions=True
        )

        outcome = ChainOutcome(chain_id)
        values: Dict[str, Any] = {}
        for component, result in zip(self.COMPONENTS, results):
            if isinstance(result, Exception):
                logger.warning(f"Chain {chain_id} {component} failed: {type(result).__name__}: {result}")
                outcome.failures.append(PartialFailure(
                    chain_id, component, FailureKind.from_error(result), str(result)
                ))
            elif isinstance(result, asyncio.CancelledError):
                # Only this component was cancelled; the chain pipeline keeps its other results
                logger.warning(f"Chain {chain_id} {component} was cancelled")
                outcome.failures.append(PartialFailure(
                    chain_id, component, FailureKind.UNAVAILABLE, f"{component} cancelled"
                ))
            elif isinstance(result, BaseException):
                raise result
            else:
                values[component] = result

        wallet = values.get("wallet_scorer")
        mev = values.get("mev_detector")
        if wallet is None and mev is None:
            return outcome

        route: Optional[LiquidityRoute] = values.get("liquidity_router")
        holdings = values.get("supply_analyzer")
        score, signals = self.scorer.calculate_chain_score(wallet, mev)

        flags = [f.kind.value for f in outcome.failures if f.component == "liquidity_router"]
        if route is not None and route.price_impact_warning:
            flags.append("high_price_impact")
        if route is not None and route.amount_capped:
            flags.append("amount_capped")
        if mev is not None and mev.detected:
            flags.append("mev_detected")
        if holdings is not None:
            flags.extend(holdings.flags)

        outcome.breakdown = ChainBreakdown(
            chain_id=chain_id,
            score=score,
            signals=signals,
            wallet=wallet,
            mev=mev,
            route=route,
            holdings=holdings,
            flags=tuple(flags)
        )
        return outcome

    async def _route_largest_holding(self, chain_id: int, address: str) -> Optional[LiquidityRoute]:
        """Route the wallet's largest holding into the chain's stablecoin"""
        balances = await self.collector.get_token_balances(chain_id, address)
        held = [b for b in balances if b.balance > 0 and b.quote_usd > 0]
        if not held:
            return None
        largest = max(held, key=lambda b: b.quote_usd)

        stables = STABLECOINS.get(Chain(chain_id), {})
        quote_token = next(iter(stables.values()), None)
        if quote_token is None or quote_token.lower() == largest.token.address:
            return None

        amount = format_token_amount(largest.balance, largest.token.decimals)
        return await self.router.route(chain_id, largest.token.address, quote_token.lower(), amount)

    def _collect_outcome(self, chain_id: int, task: asyncio.Task) -> ChainOutcome:
        if task.cancelled():
            logger.warning(f"Chain {chain_id} missed the {self.deadline}s evaluation deadline")
            return ChainOutcome(chain_id, failures=[PartialFailure(
                chain_id, "engine", FailureKind.UNAVAILABLE,
                f"Evaluation deadline of {self.deadline}s exceeded"
            )])
        error = task.exception()
        if error is not None:
            logger.error(f"Chain {chain_id} pipeline crashed: {error}", exc_info=error)
            return ChainOutcome(chain_id, failures=[PartialFailure(
                chain_id, "engine", FailureKind.from_error(error), str(error)
            )])
        return task.result()

    def _log_evaluation(self, address: str, report: Optional[EligibilityReport],
                        failures: List[PartialFailure], duration: float) -> None:
        if self.structured_logger is None:
            return
        self.structured_logger.log_evaluation({
            "address": address,
            "success": report is not None,
            "score": report.score if report else 0.0,
            "chains": [b.chain_id for b in report.breakdown] if report else [],
            "failures": [f.to_dict() for f in failures],
            "duration": duration
        })
