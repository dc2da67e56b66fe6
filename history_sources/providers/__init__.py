"""
Providers package - Daily price history source implementations.
"""

from history_sources.providers.binance import BinanceHistorySource
from history_sources.providers.coingecko import CoinGeckoHistorySource
from history_sources.providers.cryptocompare import CryptoCompareHistorySource


__all__ = [
    "BinanceHistorySource",
    "CoinGeckoHistorySource",
    "CryptoCompareHistorySource",
]
