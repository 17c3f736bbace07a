"""
Token pricing: market price feed and windowed price oracle.
"""

from .feed import JupiterPriceFeed
from .oracle import PriceOracle, PriceSample, PriceFeed

__all__ = ["JupiterPriceFeed", "PriceOracle", "PriceSample", "PriceFeed"]
