"""Split calculation package."""

from splitledger.splitting.calculator import SplitCalculator

__all__ = ["SplitCalculator"]
