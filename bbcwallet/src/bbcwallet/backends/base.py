"""
Base node backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class UTXO:
    """Unspent output as listed by the node at query time (may become stale)."""

    txid: str
    vout: int
    amount: int

    @property
    def outpoint(self) -> tuple[str, int]:
        return (self.txid, self.vout)


@dataclass(frozen=True)
class PendingSpend:
    """Outpoint already consumed by a transaction waiting in the pool."""

    txid: str
    vout: int

    @property
    def outpoint(self) -> tuple[str, int]:
        return (self.txid, self.vout)


class NodeBackend(ABC):
    """
    Abstract node backend interface.

    Implementations wrap the node's RPC transport. Every failure to complete a
    query must surface as NodeUnavailable (or a subclass).
    """

    @abstractmethod
    async def get_address_balance(self, address: str) -> int:
        """Get spendable balance of an address in units (0 if unknown)"""

    @abstractmethod
    async def list_unspent(self, address: str, anchor: str) -> list[UTXO]:
        """List UTXOs of an address on the fork identified by anchor"""

    @abstractmethod
    async def list_pending_spends(self) -> list[PendingSpend]:
        """List outpoints referenced as inputs by unconfirmed transactions"""

    @abstractmethod
    async def get_anchor(self) -> str:
        """Get the chain anchor (genesis block hash)"""

    @abstractmethod
    async def broadcast_transaction(self, tx_hex: str) -> str:
        """Broadcast a signed transaction, returns txid"""

    async def close(self) -> None:
        """Close backend connection"""
        pass
