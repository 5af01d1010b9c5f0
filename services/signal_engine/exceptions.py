"""
Signal engine error taxonomy.

Division-by-zero prone ratios (RSI, ADX) are not errors: they resolve to
fallback constants inside the indicator functions.
"""


class SignalEngineError(Exception):
    """Base class for signal engine errors."""
    pass


class DataUnavailableError(SignalEngineError):
    """No (or not enough) bars were returned for a symbol/range."""

    def __init__(self, symbol: str, message: str = ""):
        self.symbol = symbol
        super().__init__(message or f"No historical data for {symbol}")


class UnsupportedConfigurationError(SignalEngineError):
    """Unrecognized duration or bar interval format."""
    pass


class UnknownStrategyError(SignalEngineError):
    """A subscription references a strategy with no registered evaluator."""

    def __init__(self, strategy: str):
        self.strategy = strategy
        super().__init__(f"Unknown strategy: {strategy}")
