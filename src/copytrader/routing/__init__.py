"""Quote estimation and reference prices."""

from copytrader.routing.base import Quote, minimum_output, validate_slippage
from copytrader.routing.estimator import QuoteEstimator
from copytrader.routing.prices import CoinGeckoPriceFeed

__all__ = [
    "Quote",
    "minimum_output",
    "validate_slippage",
    "QuoteEstimator",
    "CoinGeckoPriceFeed",
]
