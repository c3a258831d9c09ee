"""
Analysis Module
Liquidity routing, MEV detection, wallet scoring and supply analysis
"""

from .liquidity_router import LiquidityRouter
from .mev_detector import MEVDetector
from .supply_analyzer import SupplyAnalyzer
from .wallet_scorer import WalletScorer

__all__ = [
    'LiquidityRouter',
    'MEVDetector',
    'SupplyAnalyzer',
    'WalletScorer'
]
