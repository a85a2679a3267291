"""copytrader - copy-trade execution engine for Uniswap-V2-style DEXes."""

__version__ = "0.1.0"
