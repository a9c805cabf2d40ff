"""
Transaction signing and verification for BigBang transactions.

ed25519 keys are 32-byte seeds (PyNaCl); secp256k1 keys are 32-byte secrets
(coincurve). Both schemes sign the transaction digest as-is.
"""

from __future__ import annotations

from coincurve import PrivateKey
from coincurve import verify_signature as coincurve_verify
from loguru import logger
from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey

from bbcwallet.errors import EncodingError, KeyDerivationError, SigningError
from bbcwallet.wallet.keys import KeyHolder
from bbcwallet.wallet.models import CurveType, KeySignature
from bbcwallet.wallet.transaction import combine_signature, deserialize_transaction


def sign_digest(digest: bytes, key: bytes, curve: CurveType) -> bytes:
    """
    Sign a transaction digest.

    Raises:
        SigningError: If the key is unusable or the primitive fails
    """
    try:
        if curve == CurveType.ED25519:
            return SigningKey(key).sign(digest).signature
        if curve == CurveType.SECP256K1:
            return PrivateKey(key).sign(digest, hasher=None)
    except (CryptoError, ValueError, TypeError) as e:
        # Never include key bytes in the message
        raise SigningError(f"{curve.value} signing failed: {type(e).__name__}") from e

    raise SigningError(f"Unsupported curve: {curve}")


def public_key_from_signing_key(key: bytes, curve: CurveType) -> bytes:
    if curve == CurveType.ED25519:
        return bytes(SigningKey(key).verify_key)
    return PrivateKey(key).public_key.format(compressed=True)


def verify_signature(digest: bytes, signature: bytes, public_key: bytes, curve: CurveType) -> bool:
    """Check a signature over a digest. Malformed keys or signatures do not verify."""
    try:
        if curve == CurveType.ED25519:
            VerifyKey(public_key).verify(digest, signature)
            return True
        if curve == CurveType.SECP256K1:
            return coincurve_verify(signature, digest, public_key, hasher=None)
    except BadSignatureError:
        return False
    except (CryptoError, ValueError, TypeError) as e:
        logger.debug(f"Signature check rejected malformed input: {e}")
        return False

    return False


def verify_and_combine(
    raw_unsigned: bytes, signature: bytes, public_key: bytes, curve: CurveType
) -> tuple[bool, bytes | None]:
    """
    Verify a signature against the digest of an unsigned transaction and,
    if it matches, return the signed transaction bytes.

    The digest is recomputed from the bytes, so a signature over anything
    else never passes.

    Raises:
        EncodingError: If the unsigned bytes do not parse
    """
    tx = deserialize_transaction(raw_unsigned)
    if tx.signature:
        raise EncodingError("Transaction is already signed")

    if not verify_signature(tx.digest(), signature, public_key, curve):
        return False, None

    return True, combine_signature(raw_unsigned, signature)


def sign_key_signatures(signatures: list[KeySignature], key_holder: KeyHolder) -> None:
    """
    Fill every pending signature slot.

    Raises:
        KeyDerivationError: If the key holder cannot produce a key
        SigningError: If signing fails
    """
    for key_signature in signatures:
        address = key_signature.address
        try:
            key = key_holder.derive_signing_key(
                address.address, address.hd_path, key_signature.curve
            )
        except KeyDerivationError:
            raise
        except Exception as e:
            raise KeyDerivationError(
                f"Cannot derive signing key for {address.address} at {address.hd_path}"
            ) from e

        try:
            key_signature.signature = sign_digest(key_signature.message, key, key_signature.curve)
        except SigningError as e:
            raise SigningError(f"Failed to sign for {address.address}: {e}") from e

        logger.debug(f"Signed digest {key_signature.message.hex()} for {address.address}")
