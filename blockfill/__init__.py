"""
blockfill: large-calldata stress testing for EVM block propagation.
"""

from .bundle import BundleSubmitter
from .engine import StressEngine
from .mempool import MempoolSubmitter

__all__ = ["BundleSubmitter", "MempoolSubmitter", "StressEngine"]
