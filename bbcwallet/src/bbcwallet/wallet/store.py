"""
Wallet address storage interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from bbcwallet.errors import AddressNotFoundError
from bbcwallet.wallet.models import Address


class WalletStore(ABC):
    """Read access to the addresses a wallet holds keys for."""

    @abstractmethod
    def get_address_list(self, account_id: str, offset: int = 0, limit: int = -1) -> list[Address]:
        """Addresses of an account in their stored order; limit -1 means all"""

    @abstractmethod
    def get_address(self, address: str) -> Address:
        """Look up one address, raising AddressNotFoundError if unknown"""


class MemoryWalletStore(WalletStore):
    """In-memory store, addresses kept in insertion order."""

    def __init__(self, addresses: list[Address] | None = None):
        self._addresses: dict[str, Address] = {}
        for address in addresses or []:
            self.add(address)

    def add(self, address: Address) -> None:
        self._addresses[address.address] = address

    def get_address_list(self, account_id: str, offset: int = 0, limit: int = -1) -> list[Address]:
        matching = [a for a in self._addresses.values() if a.account_id == account_id]
        if limit < 0:
            return matching[offset:]
        return matching[offset : offset + limit]

    def get_address(self, address: str) -> Address:
        try:
            return self._addresses[address]
        except KeyError:
            raise AddressNotFoundError(address) from None
