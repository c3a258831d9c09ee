# analysis/mev_detector.py
"""
Heuristic MEV detection over ordered transaction windows.

A sandwich is a front-run, a victim and a back-run touching the same pool,
where the front-run and the back-run come from the same sender and sit in
the same or adjacent blocks. Profit is what the closing trade returned minus
what the opening trade spent.

This is a heuristic. Arbitrage bots that rebalance around unrelated users
look identical (false positives), and attackers that split legs across
several senders or non-adjacent blocks are missed (false negatives).

A wallet's own history rarely holds the attacker's legs. The indexer
`transactions` request is therefore expected to return, next to the wallet's
transactions, the other transactions in the pools it traded on within the
sandwich block window. With wallet-only history the detector reports nothing.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from data.collectors.chain_data import ChainDataCollector
from data.storage.models import MEVDetection, MEVType, Transaction
from utils.constants import MEV_PROFIT_THRESHOLD, NATIVE_DECIMALS, SANDWICH_BLOCK_WINDOW
from utils.helpers import format_token_amount

logger = logging.getLogger(__name__)


@dataclass
class SandwichCandidate:
    """Matched front-run / victim / back-run triplet"""
    front: Transaction
    victim: Transaction
    back: Transaction
    attacker_address: str
    estimated_profit: Decimal

    @property
    def evidence(self) -> tuple:
        return (self.front.hash, self.victim.hash, self.back.hash)


class MEVDetector:
    """Detects sandwich patterns and estimates extracted profit"""

    def __init__(self, collector: Optional[ChainDataCollector] = None, config: Optional[Dict] = None):
        self.collector = collector
        self.config = config or {}
        self.profit_threshold = Decimal(
            str(self.config.get('mev_profit_threshold', MEV_PROFIT_THRESHOLD))
        )
        self.block_window = int(self.config.get('sandwich_block_window', SANDWICH_BLOCK_WINDOW))

    def detect(self, chain_id: int, transactions: Iterable[Transaction]) -> MEVDetection:
        """
        Scan transactions for the most profitable sandwich

        Args:
            chain_id: Chain the transactions belong to
            transactions: Any iterable of mapped transactions, in any order

        Returns:
            MEVDetection; ``detected`` only when profit exceeds the threshold
        """
        candidates = self.find_sandwiches(transactions)
        if not candidates:
            return MEVDetection.none()

        best = max(candidates, key=lambda c: c.estimated_profit)
        if best.estimated_profit <= self.profit_threshold:
            logger.debug(
                f"Chain {chain_id}: sandwich profit {best.estimated_profit} "
                f"below threshold {self.profit_threshold}"
            )
            return MEVDetection.none()

        probability = min(1.0, float(best.estimated_profit / (2 * self.profit_threshold)))
        logger.info(
            f"Chain {chain_id}: sandwich by {best.attacker_address} "
            f"profit {best.estimated_profit} (p={probability:.2f})"
        )
        return MEVDetection(
            detected=True,
            type=MEVType.SANDWICH,
            probability=probability,
            estimated_profit=best.estimated_profit,
            evidence=best.evidence
        )

    async def detect_for_wallet(self, chain_id: int, address: str) -> MEVDetection:
        """
        Fetch a wallet's transactions with their pool context and run ``detect``

        The indexer includes the neighbouring transactions of every pool the
        wallet swapped on, so front-runs and back-runs by other senders are
        part of the scanned window.
        """
        if self.collector is None:
            raise RuntimeError("MEVDetector needs a collector to fetch transactions")
        transactions = await self.collector.get_transactions(chain_id, address)
        return self.detect(chain_id, transactions)

    def find_sandwiches(self, transactions: Iterable[Transaction]) -> List[SandwichCandidate]:
        """All front/victim/back triplets with a measurable profit"""
        by_pool: Dict[str, List[Transaction]] = defaultdict(list)
        for tx in sorted(transactions, key=lambda t: t.sort_key):
            if tx.venue is not None:
                by_pool[tx.venue].append(tx)

        candidates = []
        for txs in by_pool.values():
            candidates.extend(self._scan_pool(txs))
        return candidates

    def _scan_pool(self, txs: List[Transaction]) -> List[SandwichCandidate]:
        found = []
        for i, front in enumerate(txs):
            for k in range(i + 2, len(txs)):
                back = txs[k]
                if not self._within_window(front, back):
                    break
                if back.from_address != front.from_address or back.value_out is None:
                    continue
                victim = next(
                    (v for v in txs[i + 1:k] if v.from_address != front.from_address),
                    None
                )
                if victim is None:
                    continue
                profit = format_token_amount(back.value_out - front.value, NATIVE_DECIMALS)
                found.append(SandwichCandidate(front, victim, back, front.from_address, profit))
        return found

    def _within_window(self, front: Transaction, back: Transaction) -> bool:
        if front.block_number is None or back.block_number is None:
            return front.timestamp == back.timestamp
        return back.block_number - front.block_number <= self.block_window
