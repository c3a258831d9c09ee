# analysis/wallet_scorer.py

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from data.collectors.chain_data import ChainDataCollector
from data.storage.models import RiskLevel, TokenBalance, Transaction, WalletMetrics
from utils.constants import (
    ACTIVITY_DECAY_DAYS,
    ACTIVITY_SATURATION,
    DIVERSITY_REFERENCE_TOKENS,
    MIN_HOLDER_COUNT,
    SECONDS_PER_DAY,
    TOKEN_AGE_THRESHOLD_DAYS,
    WALLET_DIVERSITY_THRESHOLD,
)
from utils.helpers import clamp, utc_now

logger = logging.getLogger(__name__)


class WalletScorer:
    """
    Scores a wallet's holdings and history on one chain.

    - diversity: Shannon entropy of USD value shares, normalised so one token
      is 0 and an even spread over the reference token count is 1
    - activity: recency-weighted transaction count squashed into [0, 1]
    - risk: concentration combined with exposure to young or thinly held tokens
    """

    def __init__(self, collector: ChainDataCollector, config: Optional[Dict] = None):
        self.collector = collector
        self.config = config or {}

        self.diversity_threshold = float(
            self.config.get('wallet_diversity_threshold', WALLET_DIVERSITY_THRESHOLD)
        )
        self.reference_tokens = int(
            self.config.get('diversity_reference_tokens', DIVERSITY_REFERENCE_TOKENS)
        )
        self.activity_decay_days = float(self.config.get('activity_decay_days', ACTIVITY_DECAY_DAYS))
        self.activity_saturation = float(self.config.get('activity_saturation', ACTIVITY_SATURATION))
        self.token_age_threshold_days = float(
            self.config.get('token_age_threshold_days', TOKEN_AGE_THRESHOLD_DAYS)
        )
        self.min_holder_count = int(self.config.get('min_holder_count', MIN_HOLDER_COUNT))

    async def score(self, chain_id: int, address: str,
                    now: Optional[datetime] = None) -> WalletMetrics:
        """
        Compute wallet metrics for one chain

        Args:
            chain_id: Chain to score
            address: Wallet address
            now: Reference time for ages, defaults to current UTC time

        Returns:
            WalletMetrics with diversity, activity and risk level
        """
        balances, transactions = await asyncio.gather(
            self.collector.get_token_balances(chain_id, address),
            self.collector.get_transactions(chain_id, address)
        )
        # The transactions response also carries pool context for MEV scans
        wallet = address.lower()
        own = [tx for tx in transactions if wallet in (tx.from_address, tx.to_address)]
        return self.score_from_data(balances, own, now=now)

    def score_from_data(self, balances: Sequence[TokenBalance],
                        transactions: Sequence[Transaction],
                        now: Optional[datetime] = None) -> WalletMetrics:
        now = now or utc_now()

        diversity = self.calculate_diversity(balances)
        activity = self.calculate_activity(transactions, now)
        risky = self.find_risky_tokens(balances, now)
        concentrated = bool(diversity < self.diversity_threshold)
        risk_level = self._calculate_risk_level(concentrated, bool(risky))

        return WalletMetrics(
            diversity_score=diversity,
            activity_score=activity,
            risk_level=risk_level,
            is_concentrated=concentrated,
            risky_tokens=tuple(risky),
            token_count=len(self._values_by_token(balances)),
            transaction_count=len(transactions)
        )

    def calculate_diversity(self, balances: Sequence[TokenBalance]) -> float:
        """Normalised Shannon entropy of value shares across distinct tokens"""
        values = np.array(list(self._values_by_token(balances).values()), dtype=float)
        if values.size < 2:
            return 0.0

        shares = values / values.sum()
        entropy = float(-np.sum(shares * np.log(shares)))
        max_entropy = float(np.log(max(values.size, self.reference_tokens)))
        return float(clamp(entropy / max_entropy))

    def calculate_activity(self, transactions: Sequence[Transaction], now: datetime) -> float:
        """1 - exp(-S / saturation), S the exponentially decayed transaction count"""
        if not transactions:
            return 0.0
        ages = np.array(
            [max(0.0, (now - tx.timestamp).total_seconds()) / SECONDS_PER_DAY for tx in transactions]
        )
        weighted = float(np.sum(np.exp(-ages / self.activity_decay_days)))
        return clamp(1.0 - float(np.exp(-weighted / self.activity_saturation)))

    def find_risky_tokens(self, balances: Sequence[TokenBalance], now: datetime) -> List[str]:
        """Held tokens younger than the age threshold or with too few holders"""
        risky = []
        for balance in balances:
            if balance.balance <= 0:
                continue
            young = (
                balance.created_at is not None
                and (now - balance.created_at).total_seconds() / SECONDS_PER_DAY
                < self.token_age_threshold_days
            )
            thin = balance.holder_count is not None and balance.holder_count < self.min_holder_count
            if (young or thin) and balance.token.address not in risky:
                risky.append(balance.token.address)
        return risky

    def _calculate_risk_level(self, concentrated: bool, has_risky_tokens: bool) -> RiskLevel:
        if concentrated and has_risky_tokens:
            return RiskLevel.HIGH
        if concentrated or has_risky_tokens:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    @staticmethod
    def _values_by_token(balances: Sequence[TokenBalance]) -> Dict[str, float]:
        values: Dict[str, float] = {}
        for balance in balances:
            if balance.quote_usd > 0:
                values[balance.token.address] = values.get(balance.token.address, 0.0) + balance.quote_usd
        return values

    def largest_holdings(self, balances: Sequence[TokenBalance], count: int = 2) -> List[Tuple[str, float]]:
        """Token addresses with the highest USD value, largest first"""
        ranked = sorted(self._values_by_token(balances).items(), key=lambda item: item[1], reverse=True)
        return ranked[:count]
