"""
BigBang address encoding utilities.

An address is a one-character prefix followed by base32 over
``data(32) || crc24q(data)(3)``:
- "1": public key address
- "2": template address
"""

from __future__ import annotations

import base64

from bbcwallet.errors import EncodingError

ADDRESS_CHARSET = "0123456789abcdefghjkmnpqrstvwxyz"
_STD_CHARSET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_TO_ADDRESS = str.maketrans(_STD_CHARSET, ADDRESS_CHARSET)
_FROM_ADDRESS = str.maketrans(ADDRESS_CHARSET, _STD_CHARSET)

PREFIX_PUBKEY = 1
PREFIX_TEMPLATE = 2

ADDRESS_DATA_LENGTH = 32
ADDRESS_LENGTH = 57
DESTINATION_LENGTH = 33


def crc24q(data: bytes) -> int:
    """CRC-24Q checksum (polynomial 0x1864CFB, init 0)"""
    crc = 0
    for byte in data:
        crc ^= byte << 16
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= 0x1864CFB
    return crc & 0xFFFFFF


def encode_address(prefix: int, data: bytes) -> str:
    if prefix not in (PREFIX_PUBKEY, PREFIX_TEMPLATE):
        raise EncodingError(f"Unknown address prefix: {prefix}")
    if len(data) != ADDRESS_DATA_LENGTH:
        raise EncodingError(f"Invalid address data length: {len(data)}")

    payload = data + crc24q(data).to_bytes(3, "big")
    body = base64.b32encode(payload).decode("ascii").translate(_TO_ADDRESS)
    return str(prefix) + body


def pubkey_to_address(pubkey: bytes) -> str:
    """Convert a 32-byte ed25519 public key to a public key address"""
    return encode_address(PREFIX_PUBKEY, pubkey)


def decode_address(address: str) -> tuple[int, bytes]:
    """
    Decode an address into (prefix, 32-byte data).

    Raises:
        EncodingError: On bad length, prefix, characters or checksum
    """
    if len(address) != ADDRESS_LENGTH:
        raise EncodingError(f"Invalid address length: {address!r}")

    prefix_char, body = address[0], address[1:]
    if prefix_char not in ("1", "2"):
        raise EncodingError(f"Unknown address prefix: {address!r}")
    if any(c not in ADDRESS_CHARSET for c in body):
        raise EncodingError(f"Invalid address characters: {address!r}")

    payload = base64.b32decode(body.translate(_FROM_ADDRESS))
    data, checksum = payload[:ADDRESS_DATA_LENGTH], payload[ADDRESS_DATA_LENGTH:]
    if crc24q(data).to_bytes(3, "big") != checksum:
        raise EncodingError(f"Address checksum mismatch: {address!r}")

    return int(prefix_char), data


def address_to_destination(address: str) -> bytes:
    """Encode an address as the 33-byte transaction destination (prefix || data)"""
    prefix, data = decode_address(address)
    return bytes([prefix]) + data


def destination_to_address(destination: bytes) -> str:
    if len(destination) != DESTINATION_LENGTH:
        raise EncodingError(f"Invalid destination length: {len(destination)}")
    return encode_address(destination[0], destination[1:])


def is_valid_address(address: str) -> bool:
    try:
        decode_address(address)
    except EncodingError:
        return False
    return True
