"""
Pending-spend filter over the node's transaction pool.
"""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from bbcwallet.backends.base import UTXO, NodeBackend
from bbcwallet.errors import NodeUnavailable


class PendingSpendSet:
    """Outpoints consumed by unconfirmed transactions at fetch time."""

    def __init__(self, outpoints: Iterable[tuple[str, int]] = ()):
        self._outpoints = frozenset(outpoints)

    def __len__(self) -> int:
        return len(self._outpoints)

    def __contains__(self, outpoint: object) -> bool:
        return outpoint in self._outpoints

    def is_pending(self, utxo: UTXO) -> bool:
        return utxo.outpoint in self._outpoints

    def available(self, utxos: list[UTXO]) -> list[UTXO]:
        """UTXOs not spent by the pool, in listing order"""
        return [utxo for utxo in utxos if utxo.outpoint not in self._outpoints]


class PendingSpendFilter:
    """Queries the pool on every fetch; pool contents change continuously."""

    def __init__(self, backend: NodeBackend):
        self.backend = backend

    async def fetch(self) -> PendingSpendSet:
        try:
            spends = await self.backend.list_pending_spends()
        except NodeUnavailable as e:
            raise e.with_context("Failed to get transactions in pool") from e

        pending = PendingSpendSet(spend.outpoint for spend in spends)
        logger.debug(f"{len(pending)} outpoints pending in pool")
        return pending
