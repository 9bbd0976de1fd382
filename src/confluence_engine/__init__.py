"""Multi-timeframe signal confluence and risk sizing engine."""

__version__ = "0.1.0"
