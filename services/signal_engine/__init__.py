"""
Signal Engine.

Technical indicators (ATR, Supertrend, ADX/DMI, EMA, RSI, MACD,
Bollinger Bands, VWAP) and the strategy evaluators built on them.
"""

__version__ = "0.1.0"
