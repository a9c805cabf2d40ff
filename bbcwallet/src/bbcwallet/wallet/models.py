"""
Wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from bbcwallet.backends.base import UTXO
from bbcwallet.errors import WalletError


class CurveType(str, Enum):
    ED25519 = "ed25519"
    SECP256K1 = "secp256k1"


@dataclass
class AddressBalance:
    """Spendable balance of one address; index is its position in the address list"""

    address: str
    balance: int
    index: int


@dataclass
class Address:
    """Key-holding address as recorded by the wallet store"""

    address: str
    public_key: str  # hex
    hd_path: str
    account_id: str = ""
    index: int = 0


@dataclass(frozen=True)
class Destination:
    """The single output of a transaction"""

    address: str
    amount: int


@dataclass
class KeySignature:
    """Signature slot for one signer, created empty by the builder"""

    address: Address
    message: bytes  # digest to sign
    curve: CurveType = CurveType.ED25519
    signature: bytes = b""

    @property
    def is_signed(self) -> bool:
        return len(self.signature) > 0


@dataclass
class CoinSelection:
    """Result of coin selection"""

    address: str
    utxos: list[UTXO]
    total: int
    needed: int

    @property
    def change(self) -> int:
        return self.total - self.needed


@dataclass
class TransactionRequest:
    """
    A transaction moving through build -> sign -> verify -> submit.

    raw_hex always holds the unsigned encoding; signed_hex is only set once
    a signature has been verified and combined.
    """

    account_id: str
    source: str
    destination: Destination
    fee: int
    anchor: str
    inputs: list[UTXO] = field(default_factory=list)
    memo: str = ""
    lock_until: int = 0
    raw_hex: str = ""
    signatures: list[KeySignature] = field(default_factory=list)
    signed_hex: str = ""
    txid: str = ""
    is_built: bool = False
    is_completed: bool = False
    is_submitted: bool = False
    submit_time: int = 0

    @property
    def amount(self) -> int:
        return self.destination.amount

    @property
    def tx_from(self) -> list[str]:
        return [self.source]

    @property
    def tx_to(self) -> list[str]:
        return [self.destination.address]

    @property
    def input_total(self) -> int:
        return sum(utxo.amount for utxo in self.inputs)


@dataclass
class ConsolidationResult:
    """Outcome of one address in a consolidation pass: a request or an error"""

    address: str
    request: TransactionRequest | None = None
    error: WalletError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
