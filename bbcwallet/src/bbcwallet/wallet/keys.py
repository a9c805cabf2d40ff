"""
HD key derivation for BigBang wallets.

- ed25519: SLIP-10 derivation, hardened indexes only
- secp256k1: BIP32 derivation
"""

from __future__ import annotations

import hashlib
import hmac
from abc import ABC, abstractmethod

from coincurve import PrivateKey
from nacl.signing import SigningKey

from bbcwallet.errors import KeyDerivationError
from bbcwallet.wallet.address import pubkey_to_address
from bbcwallet.wallet.models import Address, CurveType

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED = 0x80000000

_MASTER_HMAC_KEYS = {
    CurveType.ED25519: b"ed25519 seed",
    CurveType.SECP256K1: b"Bitcoin seed",
}


class HDKey:
    """
    Hierarchical Deterministic key for one curve.
    Holds the raw 32-byte private key material and chain code.
    """

    def __init__(self, key: bytes, chain_code: bytes, curve: CurveType, depth: int = 0):
        self._key = key
        self.chain_code = chain_code
        self.curve = curve
        self.depth = depth

    @classmethod
    def from_seed(cls, seed: bytes, curve: CurveType = CurveType.ED25519) -> HDKey:
        """Create master HD key from seed"""
        hmac_result = hmac.new(_MASTER_HMAC_KEYS[curve], seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        if curve == CurveType.SECP256K1:
            key_int = int.from_bytes(key_bytes, "big")
            if key_int == 0 or key_int >= SECP256K1_N:
                raise ValueError("Invalid master key")

        return cls(key_bytes, chain_code, curve, depth=0)

    def derive(self, path: str) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/44'/7777'/0'/0'/0'")
        ' indicates hardened derivation
        """
        if not path.startswith("m"):
            raise ValueError("Path must start with 'm'")

        parts = path.split("/")[1:]
        key = self

        for part in parts:
            if not part:
                continue

            hardened = part.endswith("'") or part.endswith("h")
            index = int(part.rstrip("'h"))

            if hardened:
                index += HARDENED

            key = key._derive_child(index)

        return key

    def _derive_child(self, index: int) -> HDKey:
        """Derive a child key at the given index"""
        hardened = index >= HARDENED

        if self.curve == CurveType.ED25519:
            if not hardened:
                raise ValueError("ed25519 derivation only supports hardened indexes")
            data = b"\x00" + self._key + index.to_bytes(4, "big")
        elif hardened:
            data = b"\x00" + self._key + index.to_bytes(4, "big")
        else:
            data = self.get_public_key_bytes() + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        if self.curve == CurveType.ED25519:
            return HDKey(key_offset, child_chain, self.curve, depth=self.depth + 1)

        parent_key_int = int.from_bytes(self._key, "big")
        offset_int = int.from_bytes(key_offset, "big")

        child_key_int = (parent_key_int + offset_int) % SECP256K1_N

        if child_key_int == 0:
            raise ValueError("Invalid child key")

        return HDKey(child_key_int.to_bytes(32, "big"), child_chain, self.curve, self.depth + 1)

    def get_private_key_bytes(self) -> bytes:
        """Get private key material as 32 bytes"""
        return self._key

    def get_public_key_bytes(self) -> bytes:
        """Get public key bytes (32 for ed25519, 33 compressed for secp256k1)"""
        if self.curve == CurveType.ED25519:
            return bytes(SigningKey(self._key).verify_key)
        return PrivateKey(self._key).public_key.format(compressed=True)

    def get_address(self) -> str:
        """Get the public key address for this key"""
        if self.curve != CurveType.ED25519:
            raise ValueError("Only ed25519 keys map to public key addresses")
        return pubkey_to_address(self.get_public_key_bytes())


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert BIP39 mnemonic to seed.
    Word list and checksum are not validated.
    """
    mnemonic_bytes = mnemonic.encode("utf-8")
    salt = ("mnemonic" + passphrase).encode("utf-8")

    return hashlib.pbkdf2_hmac("sha512", mnemonic_bytes, salt, 2048, dklen=64)


class KeyHolder(ABC):
    """External capability that turns an address's derivation path into key material."""

    @abstractmethod
    def derive_signing_key(self, address: str, hd_path: str, curve: CurveType) -> bytes:
        """Return the 32-byte signing key for address, or raise KeyDerivationError"""


class HDKeyHolder(KeyHolder):
    """Key holder deriving every key from one seed."""

    def __init__(self, seed: bytes):
        self._masters: dict[CurveType, HDKey] = {}
        self._seed = seed

    @classmethod
    def from_mnemonic(cls, mnemonic: str, passphrase: str = "") -> HDKeyHolder:
        return cls(mnemonic_to_seed(mnemonic, passphrase))

    def master(self, curve: CurveType) -> HDKey:
        if curve not in self._masters:
            self._masters[curve] = HDKey.from_seed(self._seed, curve)
        return self._masters[curve]

    def derive_signing_key(self, address: str, hd_path: str, curve: CurveType) -> bytes:
        try:
            key = self.master(curve).derive(hd_path)
        except ValueError as e:
            raise KeyDerivationError(f"Cannot derive key for {address} at {hd_path}: {e}") from e

        if curve == CurveType.ED25519 and key.get_address() != address:
            raise KeyDerivationError(f"Key at {hd_path} does not belong to {address}")

        return key.get_private_key_bytes()


def derive_account_addresses(
    key_holder: HDKeyHolder,
    account_id: str,
    root_path: str,
    count: int,
    start: int = 0,
) -> list[Address]:
    """Derive ed25519 address records {root_path}/{i}' for i in [start, start + count)"""
    master = key_holder.master(CurveType.ED25519)
    addresses = []
    for i in range(start, start + count):
        path = f"{root_path}/{i}'"
        key = master.derive(path)
        addresses.append(
            Address(
                address=key.get_address(),
                public_key=key.get_public_key_bytes().hex(),
                hd_path=path,
                account_id=account_id,
                index=i,
            )
        )
    return addresses
