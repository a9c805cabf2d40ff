"""
Pytest configuration and fixtures for wallet tests.
"""

from __future__ import annotations

import pytest

from bbcwallet.wallet.keys import HDKeyHolder, derive_account_addresses
from bbcwallet.wallet.models import Address
from bbcwallet.wallet.service import TransactionService, WalletContext
from bbcwallet.wallet.store import MemoryWalletStore
from tests.fake_node import ACCOUNT_ID, FIXED_FEE, ROOT_PATH, FakeNodeBackend


@pytest.fixture
def test_mnemonic() -> str:
    """Test mnemonic (BIP39 test vector)"""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def key_holder(test_mnemonic: str) -> HDKeyHolder:
    return HDKeyHolder.from_mnemonic(test_mnemonic)


@pytest.fixture
def addresses(key_holder: HDKeyHolder) -> list[Address]:
    """Six derived ed25519 addresses of the test account"""
    return derive_account_addresses(key_holder, ACCOUNT_ID, ROOT_PATH, 6)


@pytest.fixture
def store(addresses: list[Address]) -> MemoryWalletStore:
    return MemoryWalletStore(addresses)


@pytest.fixture
def backend() -> FakeNodeBackend:
    return FakeNodeBackend()


@pytest.fixture
def context(backend: FakeNodeBackend) -> WalletContext:
    return WalletContext(backend=backend, fixed_fee=FIXED_FEE)


@pytest.fixture
def service(context: WalletContext) -> TransactionService:
    return TransactionService(context)


@pytest.fixture
def destination(key_holder: HDKeyHolder) -> str:
    """An address outside the test account"""
    return derive_account_addresses(key_holder, "other", "m/44'/7777'/1'/0'", 1)[0].address
