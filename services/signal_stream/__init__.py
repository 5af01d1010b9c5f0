"""
Signal Stream Service.

Accepts WebSocket clients, tracks their (symbol, strategy) subscriptions,
and pushes freshly computed signals to them on a fixed polling interval.
"""

__version__ = "0.1.0"
