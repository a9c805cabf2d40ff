"""
Node backend implementations.

Available backends:
- BigBangRPCBackend: BigBang node via its JSON-RPC interface
"""

from bbcwallet.backends.base import UTXO, NodeBackend, PendingSpend
from bbcwallet.backends.bigbang_rpc import BigBangRPCBackend

__all__ = [
    "BigBangRPCBackend",
    "NodeBackend",
    "PendingSpend",
    "UTXO",
]
