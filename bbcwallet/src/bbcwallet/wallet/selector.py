"""
Single-address UTXO selection.

Greedy, first-fit by address (best funded first) and first-fit by UTXO
listing order. A transaction is never funded from more than one address.
"""

from __future__ import annotations

from loguru import logger

from bbcwallet.backends.base import UTXO, NodeBackend
from bbcwallet.errors import (
    CannotSplitAcrossAddresses,
    InsufficientBalance,
    NodeUnavailable,
    PendingConfirmationRequired,
)
from bbcwallet.wallet.models import AddressBalance, CoinSelection
from bbcwallet.wallet.pool import PendingSpendFilter, PendingSpendSet


def funded_candidates(balances: list[AddressBalance], needed: int) -> list[AddressBalance]:
    """
    Addresses whose balance alone covers ``needed``, in the given order.

    Raises:
        CannotSplitAcrossAddresses: If only the aggregate balance covers it
        InsufficientBalance: If even the aggregate balance does not
    """
    candidates = [b for b in balances if b.balance >= needed]
    if candidates:
        return candidates

    total = sum(b.balance for b in balances)
    if total >= needed:
        raise CannotSplitAcrossAddresses(needed, total)
    raise InsufficientBalance(needed, total)


def accumulate(utxos: list[UTXO], pending: PendingSpendSet, needed: int) -> list[UTXO] | None:
    """Take available UTXOs in order until they cover ``needed``; None if they never do"""
    selected: list[UTXO] = []
    total = 0

    for utxo in pending.available(utxos):
        selected.append(utxo)
        total += utxo.amount
        if total >= needed:
            return selected

    return None


class UTXOSelector:
    def __init__(self, backend: NodeBackend, pending_filter: PendingSpendFilter | None = None):
        self.backend = backend
        self.pending_filter = pending_filter or PendingSpendFilter(backend)

    async def select(
        self, balances: list[AddressBalance], amount: int, fee: int, anchor: str
    ) -> CoinSelection:
        """
        Select inputs from exactly one address to pay ``amount + fee``.

        Args:
            balances: Address balances, best funded first
            amount: Payment amount in units
            fee: Transaction fee in units
            anchor: Chain anchor the UTXOs are listed on

        Raises:
            CannotSplitAcrossAddresses, InsufficientBalance: Not fundable
            PendingConfirmationRequired: Funded addresses only have pool-spent UTXOs
            NodeUnavailable: A pool or UTXO query failed
        """
        needed = amount + fee
        candidates = funded_candidates(balances, needed)
        pending = await self.pending_filter.fetch()

        for candidate in candidates:
            try:
                utxos = await self.backend.list_unspent(candidate.address, anchor)
            except NodeUnavailable as e:
                raise e.with_context(
                    f"Failed to get UTXOs of address [{candidate.address}]"
                ) from e

            selected = accumulate(utxos, pending, needed)
            if selected is None:
                logger.debug(
                    f"Address {candidate.address} cannot cover {needed} without pool-spent UTXOs"
                )
                continue

            selection = CoinSelection(
                address=candidate.address,
                utxos=selected,
                total=sum(u.amount for u in selected),
                needed=needed,
            )
            logger.debug(
                f"Selected {len(selected)} UTXOs from {candidate.address}: "
                f"total {selection.total}, needed {needed}, change {selection.change}"
            )
            return selection

        raise PendingConfirmationRequired(
            f"Funds needed for {needed} are held by unconfirmed transactions, "
            "try again once the pool is confirmed",
            addresses=[c.address for c in candidates],
        )
