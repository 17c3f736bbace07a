"""
BURN RAIL - API Module

FastAPI adapter exposing balances, pricing, deposits and the settlement
trigger.
"""

from .server import create_app

__all__ = ["create_app"]
