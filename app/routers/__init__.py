"""
POS Returns Engine - Routers Package

FastAPI route handlers.

Routers:
- product_returns: Return lifecycle, history, stats/analytics, customer lookup
"""

from app.routers import product_returns

__all__ = ["product_returns"]
