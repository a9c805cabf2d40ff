"""
Balance ledger view over a set of addresses.
"""

from __future__ import annotations

from loguru import logger

from bbcwallet.backends.base import NodeBackend
from bbcwallet.errors import NodeUnavailable
from bbcwallet.wallet.models import AddressBalance


def sort_by_balance(balances: list[AddressBalance]) -> list[AddressBalance]:
    """Order by balance descending; equal balances keep address-list order."""
    return sorted(balances, key=lambda b: (-b.balance, b.index))


class BalanceLedger:
    """Fetches current spendable balances, one node query per address."""

    def __init__(self, backend: NodeBackend):
        self.backend = backend

    async def balances(self, addresses: list[str]) -> list[AddressBalance]:
        """
        Get the balance of every address, best funded first.

        Raises:
            ValueError: If no addresses are given
            NodeUnavailable: If any balance query fails
        """
        if not addresses:
            raise ValueError("At least one address is required")

        result: list[AddressBalance] = []
        for index, address in enumerate(addresses):
            try:
                balance = await self.backend.get_address_balance(address)
            except NodeUnavailable as e:
                raise e.with_context(f"Failed to get balance of [{address}]") from e
            result.append(AddressBalance(address=address, balance=balance, index=index))

        ordered = sort_by_balance(result)
        logger.debug(
            "Balances: " + ", ".join(f"{b.address}={b.balance}" for b in ordered)
        )
        return ordered
