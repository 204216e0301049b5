"""runsync: client-side tracking of backtest, live and candle-import sessions."""

__version__ = "0.1.0"
