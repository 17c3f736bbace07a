"""
BURN RAIL

Token billing for AI usage: wallet balances, windowed token pricing and
periodic on-chain burn/treasury settlement on Solana.
"""

__version__ = "1.0.0"
