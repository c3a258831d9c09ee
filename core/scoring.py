# core/scoring.py

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from data.storage.models import MEVDetection, WalletMetrics
from utils.constants import DEFAULT_SCORE_WEIGHTS, NEUTRAL_SIGNAL, RISK_PENALTIES, SCORE_THRESHOLDS
from utils.helpers import clamp

logger = logging.getLogger(__name__)


@dataclass
class ScoringWeights:
    """Weights for the eligibility signals"""
    diversity: float = DEFAULT_SCORE_WEIGHTS["diversity"]
    activity: float = DEFAULT_SCORE_WEIGHTS["activity"]
    risk: float = DEFAULT_SCORE_WEIGHTS["risk"]
    mev: float = DEFAULT_SCORE_WEIGHTS["mev"]

    def __post_init__(self):
        weights = self.as_dict()
        if any(w < 0 for w in weights.values()):
            raise ValueError(f"Scoring weights must be non-negative: {weights}")
        if sum(weights.values()) <= 0:
            raise ValueError("Scoring weights must not all be zero")

    def as_dict(self) -> Dict[str, float]:
        return {
            "diversity": self.diversity,
            "activity": self.activity,
            "risk": self.risk,
            "mev": self.mev
        }


class EligibilityScorer:
    """
    Weighted linear combination of per-chain signals.

    Every signal lies in [0, 1] where higher is better:
    diversity, activity, inverse risk penalty and inverse MEV probability.
    A missing signal takes the neutral value. Chain scores are 100 times the
    weighted mean, and the final score is the mean over chains with data.
    """

    def __init__(self, weights: Optional[ScoringWeights] = None, config: Optional[Dict] = None):
        self.config = config or {}
        self.weights = weights or ScoringWeights(
            diversity=float(self.config.get('weight_diversity', DEFAULT_SCORE_WEIGHTS["diversity"])),
            activity=float(self.config.get('weight_activity', DEFAULT_SCORE_WEIGHTS["activity"])),
            risk=float(self.config.get('weight_risk', DEFAULT_SCORE_WEIGHTS["risk"])),
            mev=float(self.config.get('weight_mev', DEFAULT_SCORE_WEIGHTS["mev"]))
        )
        self.neutral = float(self.config.get('neutral_signal', NEUTRAL_SIGNAL))
        self.thresholds = dict(SCORE_THRESHOLDS)

    def build_signals(self, wallet: Optional[WalletMetrics],
                      mev: Optional[MEVDetection]) -> Dict[str, float]:
        """Map analyzer results to [0, 1] signals, neutral where missing"""
        if wallet is None:
            diversity = activity = risk = self.neutral
        else:
            diversity = clamp(wallet.diversity_score)
            activity = clamp(wallet.activity_score)
            risk = 1.0 - RISK_PENALTIES[wallet.risk_level.value]
        inverse_mev = self.neutral if mev is None else 1.0 - clamp(mev.probability)
        return {
            "diversity": diversity,
            "activity": activity,
            "risk": risk,
            "mev": inverse_mev
        }

    def calculate_chain_score(self, wallet: Optional[WalletMetrics],
                              mev: Optional[MEVDetection]) -> Tuple[float, Dict[str, float]]:
        """Return (score in [0, 100], signals)"""
        signals = self.build_signals(wallet, mev)
        weights = self.weights.as_dict()
        weighted_sum = sum(signals[name] * weight for name, weight in weights.items())
        total_weight = sum(weights.values())
        score = clamp(100.0 * weighted_sum / total_weight, 0.0, 100.0)
        return round(score, 2), signals

    def combine(self, chain_scores: Sequence[float]) -> float:
        """Mean of chain scores, clamped to [0, 100]"""
        if not chain_scores:
            return 0.0
        return round(clamp(sum(chain_scores) / len(chain_scores), 0.0, 100.0), 2)

    def determine_tier(self, score: float) -> str:
        """Eligibility tier for a final score"""
        for tier, threshold in self.thresholds.items():
            if score >= threshold:
                return tier
        return "ineligible"
