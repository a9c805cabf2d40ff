"""
BigBang transaction encoding.

Builds the canonical unsigned transaction for a single-output token
transfer, computes its signable digest and combines a signature into the
final bytes. The chain returns change to the source address implicitly, so
a transaction only ever carries the destination output.
"""

from __future__ import annotations

import hashlib
import struct
import time
from dataclasses import dataclass, field

from bbcwallet.backends.base import UTXO
from bbcwallet.errors import EncodingError
from bbcwallet.wallet.address import DESTINATION_LENGTH, address_to_destination

TX_VERSION = 1
TX_TYPE_TOKEN = 0

MAX_UINT32 = 0xFFFFFFFF
MAX_UINT64 = 0xFFFFFFFFFFFFFFFF
MAX_VOUT = 0xFF
MAX_MEMO_BYTES = 4096


@dataclass
class TxInput:
    txid: str
    vout: int


@dataclass
class Transaction:
    version: int
    tx_type: int
    timestamp: int
    lock_until: int
    anchor: str
    inputs: list[TxInput]
    send_to: bytes
    amount: int
    fee: int
    data: bytes = b""
    signature: bytes = b""

    def serialize_body(self) -> bytes:
        """Serialize everything the digest commits to"""
        result = struct.pack("<HHII", self.version, self.tx_type, self.timestamp, self.lock_until)
        result += _hash_to_bytes(self.anchor, "anchor")
        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += serialize_input(inp)
        if len(self.send_to) != DESTINATION_LENGTH:
            raise EncodingError(f"Invalid destination length: {len(self.send_to)}")
        result += self.send_to
        result += struct.pack("<QQ", self.amount, self.fee)
        result += encode_varint(len(self.data)) + self.data
        return result

    def serialize(self) -> bytes:
        return self.serialize_body() + encode_varint(len(self.signature)) + self.signature

    def digest(self) -> bytes:
        return tx_digest(self.serialize_body())


@dataclass
class UnsignedTransaction:
    """Canonical unsigned encoding plus the digest a signer commits to"""

    tx: Transaction
    raw: bytes = field(init=False)
    digest: bytes = field(init=False)

    def __post_init__(self) -> None:
        self.raw = self.tx.serialize()
        self.digest = self.tx.digest()

    @property
    def raw_hex(self) -> str:
        return self.raw.hex()


def tx_digest(body: bytes) -> bytes:
    return hashlib.blake2b(body, digest_size=32).digest()


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        value = int.from_bytes(data[offset : offset + 2], "little")
        return value, offset + 2
    if first == 0xFE:
        value = int.from_bytes(data[offset : offset + 4], "little")
        return value, offset + 4
    value = int.from_bytes(data[offset : offset + 8], "little")
    return value, offset + 8


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def _hash_to_bytes(value: str, what: str) -> bytes:
    # Hashes are shown big-endian and serialized reversed
    try:
        raw = bytes.fromhex(value)
    except (ValueError, TypeError) as e:
        raise EncodingError(f"Malformed {what}: {value!r}") from e
    if len(raw) != 32:
        raise EncodingError(f"Malformed {what}: expected 32 bytes, got {len(raw)}")
    return raw[::-1]


def serialize_input(inp: TxInput) -> bytes:
    """Serialize an input reference (txid:vout)."""
    if not isinstance(inp.vout, int) or not 0 <= inp.vout <= MAX_VOUT:
        raise EncodingError(f"Malformed output index {inp.vout!r} for {inp.txid}")
    return _hash_to_bytes(inp.txid, "txid") + bytes([inp.vout])


def _check_range(value: int, maximum: int, what: str) -> None:
    if not isinstance(value, int) or not 0 <= value <= maximum:
        raise EncodingError(f"{what} out of range: {value!r}")


def create_unsigned_transaction(
    anchor: str,
    inputs: list[UTXO],
    destination: str,
    amount: int,
    fee: int,
    memo: str = "",
    lock_until: int = 0,
    timestamp: int | None = None,
) -> UnsignedTransaction:
    """
    Build the unsigned transaction paying ``amount`` to ``destination``.

    Raises:
        EncodingError: On malformed input references, anchor, destination,
            memo, or out-of-range integers
    """
    if not inputs:
        raise EncodingError("Transaction needs at least one input")

    _check_range(amount, MAX_UINT64, "Amount")
    _check_range(fee, MAX_UINT64, "Fee")
    _check_range(lock_until, MAX_UINT32, "Lock time")

    if timestamp is None:
        timestamp = int(time.time())
    _check_range(timestamp, MAX_UINT32, "Timestamp")

    try:
        data = memo.encode("utf-8")
    except UnicodeEncodeError as e:
        raise EncodingError(f"Memo is not encodable as UTF-8: {e.reason}") from e
    if len(data) > MAX_MEMO_BYTES:
        raise EncodingError(f"Memo too long: {len(data)} bytes (max {MAX_MEMO_BYTES})")

    tx = Transaction(
        version=TX_VERSION,
        tx_type=TX_TYPE_TOKEN,
        timestamp=timestamp,
        lock_until=lock_until,
        anchor=anchor,
        inputs=[TxInput(txid=utxo.txid, vout=utxo.vout) for utxo in inputs],
        send_to=address_to_destination(destination),
        amount=amount,
        fee=fee,
        data=data,
    )
    return UnsignedTransaction(tx)


def deserialize_transaction(raw: bytes) -> Transaction:
    """
    Parse a serialized transaction, signed or unsigned.

    Raises:
        EncodingError: On truncated data or trailing bytes
    """
    try:
        offset = 0
        version, tx_type, timestamp, lock_until = struct.unpack_from("<HHII", raw, offset)
        offset += 12

        anchor = raw[offset : offset + 32][::-1].hex()
        offset += 32

        input_count, offset = read_varint(raw, offset)
        inputs: list[TxInput] = []
        for _ in range(input_count):
            txid = raw[offset : offset + 32][::-1].hex()
            offset += 32
            vout = raw[offset]
            offset += 1
            inputs.append(TxInput(txid, vout))

        send_to = raw[offset : offset + DESTINATION_LENGTH]
        offset += DESTINATION_LENGTH

        amount, fee = struct.unpack_from("<QQ", raw, offset)
        offset += 16

        data_len, offset = read_varint(raw, offset)
        data = raw[offset : offset + data_len]
        offset += data_len

        sig_len, offset = read_varint(raw, offset)
        signature = raw[offset : offset + sig_len]
        offset += sig_len

    except (IndexError, struct.error) as e:
        raise EncodingError(f"Failed to parse transaction: {e}") from e

    if len(send_to) != DESTINATION_LENGTH or len(data) != data_len or len(signature) != sig_len:
        raise EncodingError("Failed to parse transaction: truncated data")
    if offset != len(raw):
        raise EncodingError(f"Failed to parse transaction: {len(raw) - offset} trailing bytes")

    return Transaction(
        version=version,
        tx_type=tx_type,
        timestamp=timestamp,
        lock_until=lock_until,
        anchor=anchor,
        inputs=inputs,
        send_to=send_to,
        amount=amount,
        fee=fee,
        data=data,
        signature=signature,
    )


def combine_signature(raw_unsigned: bytes, signature: bytes) -> bytes:
    """Return the transaction bytes with the signature field set."""
    tx = deserialize_transaction(raw_unsigned)
    tx.signature = signature
    return tx.serialize()
