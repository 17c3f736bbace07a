"""
Solana access: RPC connection, deposit verification, settlement submission.
"""

from .connection import ChainConnection
from .keys import SettlementKeyStore
from .submitter import SolanaSettlementSubmitter
from .verifier import TransactionVerifier, VerificationResult

__all__ = [
    "ChainConnection",
    "SettlementKeyStore",
    "SolanaSettlementSubmitter",
    "TransactionVerifier",
    "VerificationResult",
]
