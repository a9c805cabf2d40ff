"""
Transaction service: build, sign, verify and submit BigBang transactions,
and generate per-address consolidation (summary) transactions.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from bbcwallet.backends.base import UTXO, NodeBackend
from bbcwallet.errors import (
    EncodingError,
    InvalidRequestError,
    NoAddressesError,
    NodeUnavailable,
    PendingConfirmationRequired,
    VerificationFailed,
    WalletError,
)
from bbcwallet.wallet.address import decode_address
from bbcwallet.wallet.keys import KeyHolder
from bbcwallet.wallet.ledger import BalanceLedger
from bbcwallet.wallet.models import (
    Address,
    AddressBalance,
    ConsolidationResult,
    CurveType,
    Destination,
    KeySignature,
    TransactionRequest,
)
from bbcwallet.wallet.pool import PendingSpendFilter
from bbcwallet.wallet.selector import UTXOSelector
from bbcwallet.wallet.signing import sign_key_signatures, verify_and_combine
from bbcwallet.wallet.store import WalletStore
from bbcwallet.wallet.transaction import create_unsigned_transaction

if TYPE_CHECKING:
    from bbcwallet.config import Settings

FEE_UNIT = "TX"


@dataclass
class WalletContext:
    """Everything a transaction build needs from the driver, passed explicitly."""

    backend: NodeBackend
    fixed_fee: int
    curve: CurveType = CurveType.ED25519

    @classmethod
    def from_settings(cls, settings: Settings, backend: NodeBackend | None = None) -> WalletContext:
        if backend is None:
            from bbcwallet.backends.bigbang_rpc import BigBangRPCBackend

            backend = BigBangRPCBackend(
                rpc_url=settings.rpc_url,
                rpc_user=settings.rpc_user,
                rpc_password=settings.rpc_password,
                timeout=settings.rpc_timeout,
                decimals=settings.decimals,
            )
        return cls(backend=backend, fixed_fee=settings.fixed_fee, curve=settings.curve_type)


class TransactionService:
    """
    Transaction pipeline for one wallet driver.

    Build -> sign -> verify -> submit. Every build re-reads balances, UTXOs
    and the transaction pool; nothing is cached between calls.
    """

    def __init__(self, context: WalletContext):
        self.context = context
        self.backend = context.backend
        self.ledger = BalanceLedger(self.backend)
        self.pending_filter = PendingSpendFilter(self.backend)
        self.selector = UTXOSelector(self.backend, self.pending_filter)

    def get_fee_rate(self) -> tuple[int, str]:
        """Fixed fee per transaction, in units"""
        return self.context.fixed_fee, FEE_UNIT

    def _fee(self, fee_rate: int | None) -> int:
        fee = self.context.fixed_fee if fee_rate is None else fee_rate
        if fee < 0:
            raise InvalidRequestError(f"Fee must not be negative: {fee}")
        return fee

    async def _anchor(self) -> str:
        try:
            return await self.backend.get_anchor()
        except NodeUnavailable as e:
            raise e.with_context("Failed to get anchor") from e

    def _account_addresses(
        self, wallet: WalletStore, account_id: str, offset: int = 0, limit: int = -1
    ) -> list[Address]:
        addresses = wallet.get_address_list(account_id, offset, limit)
        if not addresses:
            raise NoAddressesError(account_id)
        return addresses

    def _encode(
        self,
        request: TransactionRequest,
        source: Address,
        timestamp: int | None,
    ) -> None:
        if request.input_total < request.amount + request.fee:
            raise InvalidRequestError(
                f"Inputs total {request.input_total} does not cover "
                f"amount {request.amount} + fee {request.fee}"
            )

        unsigned = create_unsigned_transaction(
            anchor=request.anchor,
            inputs=request.inputs,
            destination=request.destination.address,
            amount=request.amount,
            fee=request.fee,
            memo=request.memo,
            lock_until=request.lock_until,
            timestamp=timestamp,
        )

        request.raw_hex = unsigned.raw_hex
        request.signatures = [
            KeySignature(address=source, message=unsigned.digest, curve=self.context.curve)
        ]
        request.is_built = True

        logger.info(
            f"Built transaction {request.source} -> {request.destination.address}: "
            f"amount {request.amount}, fee {request.fee}, {len(request.inputs)} inputs"
        )
        logger.debug(f"Transaction digest: {unsigned.digest.hex()}")

    async def build_transaction(
        self,
        wallet: WalletStore,
        account_id: str,
        destination: str,
        amount: int,
        fee_rate: int | None = None,
        memo: str = "",
        timestamp: int | None = None,
    ) -> TransactionRequest:
        """
        Build an unsigned transaction paying ``amount`` from one address of
        the account.

        Args:
            wallet: WalletStore holding the account's addresses
            account_id: Account to spend from
            destination: Receiving address
            amount: Amount in units
            fee_rate: Fee in units, defaults to the configured fixed fee
            memo: Optional memo stored in the transaction data
            timestamp: Transaction time, defaults to now

        Raises:
            InsufficientBalance, CannotSplitAcrossAddresses,
            PendingConfirmationRequired, NodeUnavailable, EncodingError,
            NoAddressesError, AddressNotFoundError, InvalidRequestError
        """
        if amount <= 0:
            raise InvalidRequestError(f"Amount must be positive: {amount}")
        decode_address(destination)
        fee = self._fee(fee_rate)

        addresses = self._account_addresses(wallet, account_id)
        anchor = await self._anchor()
        balances = await self.ledger.balances([a.address for a in addresses])

        selection = await self.selector.select(balances, amount, fee, anchor)
        source = wallet.get_address(selection.address)

        request = TransactionRequest(
            account_id=account_id,
            source=selection.address,
            destination=Destination(destination, amount),
            fee=fee,
            anchor=anchor,
            inputs=selection.utxos,
            memo=memo,
        )
        self._encode(request, source, timestamp)
        return request

    def sign_transaction(
        self, request: TransactionRequest, key_holder: KeyHolder
    ) -> TransactionRequest:
        """
        Sign every pending signature slot of a built transaction.

        Raises:
            InvalidRequestError: If the transaction was not built
            KeyDerivationError, SigningError: Credential problems
        """
        if not request.is_built or not request.signatures:
            raise InvalidRequestError("Transaction has not been built")

        sign_key_signatures(request.signatures, key_holder)
        logger.info(f"Transaction hash sign success for {request.source}")
        return request

    def verify_transaction(self, request: TransactionRequest) -> TransactionRequest:
        """
        Verify the signature and combine it into the final transaction.

        Previously combined bytes are discarded first, so on any failure the
        transaction is left incomplete. raw_hex is never modified.

        Raises:
            EncodingError: If there is not exactly one filled signature
            VerificationFailed: If the signature does not match
        """
        request.is_completed = False
        request.signed_hex = ""

        if len(request.signatures) != 1:
            raise EncodingError(f"Expected exactly one signature, got {len(request.signatures)}")

        key_signature = request.signatures[0]
        if not key_signature.is_signed:
            raise EncodingError(f"Signature for {key_signature.address.address} is empty")

        try:
            raw_unsigned = bytes.fromhex(request.raw_hex)
            public_key = bytes.fromhex(key_signature.address.public_key)
        except ValueError as e:
            raise EncodingError(f"Malformed hex in transaction: {e}") from e

        logger.debug(f"Signature: {key_signature.signature.hex()}")
        logger.debug(f"PublicKey: {key_signature.address.public_key}")

        passed, signed = verify_and_combine(
            raw_unsigned, key_signature.signature, public_key, key_signature.curve
        )

        if not passed or signed is None:
            logger.debug("Transaction verify failed")
            raise VerificationFailed(
                f"Signature does not match transaction for {key_signature.address.address}"
            )

        logger.debug("Transaction verify passed")
        request.signed_hex = signed.hex()
        request.is_completed = True
        return request

    async def submit_transaction(self, request: TransactionRequest) -> TransactionRequest:
        """
        Broadcast a completed transaction.

        Raises:
            InvalidRequestError: If the transaction is empty or not verified
            NodeUnavailable: If the broadcast fails
        """
        if not request.raw_hex:
            raise InvalidRequestError("Transaction hex is empty")
        if not request.is_completed or not request.signed_hex:
            raise InvalidRequestError("Transaction is not completed validation")

        try:
            txid = await self.backend.broadcast_transaction(request.signed_hex)
        except NodeUnavailable:
            logger.error(f"Failed to broadcast transaction from {request.source}")
            raise

        request.txid = txid
        request.is_submitted = True
        request.submit_time = int(time.time())
        return request

    async def build_consolidation_transactions(
        self,
        wallet: WalletStore,
        account_id: str,
        min_transfer: int,
        retained_balance: int,
        summary_address: str,
        fee_rate: int | None = None,
        address_offset: int = 0,
        address_limit: int = -1,
        memo: str = "",
        timestamp: int | None = None,
    ) -> list[ConsolidationResult]:
        """
        Build one summary transaction per address holding at least
        ``min_transfer``, sweeping ``balance - retained_balance - fee`` to
        ``summary_address``.

        Each address is built independently and concurrently. Per-address
        failures are collected in the results and never abort the others;
        addresses below the threshold, or with nothing left to send after
        retained balance and fee, produce no result.

        Raises:
            InvalidRequestError: If min_transfer < retained_balance, or either
                is negative
            NoAddressesError: If the account has no addresses
            NodeUnavailable: If balances or the anchor cannot be fetched
            EncodingError: If summary_address is malformed
        """
        if retained_balance < 0 or min_transfer < 0:
            raise InvalidRequestError(
                f"Retained balance and minimum transfer must not be negative: "
                f"retained_balance={retained_balance}, min_transfer={min_transfer}"
            )
        if min_transfer < retained_balance:
            raise InvalidRequestError(
                "Minimum transfer amount must be greater than address retained balance"
            )
        decode_address(summary_address)
        fee = self._fee(fee_rate)

        addresses = self._account_addresses(wallet, account_id, address_offset, address_limit)
        balances = await self.ledger.balances([a.address for a in addresses])
        anchor = await self._anchor()

        eligible = sorted(
            (b for b in balances if b.balance > 0 and b.balance >= min_transfer),
            key=lambda b: b.index,
        )

        outcomes = await asyncio.gather(
            *(
                self._build_summary_transaction(
                    wallet,
                    account_id,
                    balance,
                    retained_balance,
                    summary_address,
                    fee,
                    anchor,
                    memo,
                    timestamp,
                )
                for balance in eligible
            )
        )
        results = [outcome for outcome in outcomes if outcome is not None]

        failed = sum(1 for r in results if not r.ok)
        logger.info(
            f"Consolidation for account {account_id}: {len(results) - failed} built, "
            f"{failed} failed, {len(addresses) - len(results)} skipped"
        )
        return results

    async def build_consolidation_transactions_strict(
        self, wallet: WalletStore, account_id: str, *args, **kwargs
    ) -> list[TransactionRequest]:
        """Like build_consolidation_transactions, but raise the first per-address error."""
        results = await self.build_consolidation_transactions(wallet, account_id, *args, **kwargs)
        for result in results:
            if result.error is not None:
                raise result.error
        return [r.request for r in results if r.request is not None]

    async def _build_summary_transaction(
        self,
        wallet: WalletStore,
        account_id: str,
        balance: AddressBalance,
        retained_balance: int,
        summary_address: str,
        fee: int,
        anchor: str,
        memo: str,
        timestamp: int | None,
    ) -> ConsolidationResult | None:
        address = balance.address
        transfer = balance.balance - retained_balance - fee
        if transfer <= 0:
            logger.debug(f"Skipping {address}: nothing left after retained balance and fee")
            return None

        logger.debug(f"balance: {balance.balance}, fees: {fee}, sumAmount: {transfer}")

        try:
            inputs = await self._sweepable_utxos(address, anchor, transfer + fee)
            request = TransactionRequest(
                account_id=account_id,
                source=address,
                destination=Destination(summary_address, transfer),
                fee=fee,
                anchor=anchor,
                inputs=inputs,
                memo=memo,
            )
            self._encode(request, wallet.get_address(address), timestamp)
        except WalletError as e:
            logger.warning(f"Summary transaction for {address} failed: {e}")
            return ConsolidationResult(address=address, error=e)
        except Exception as e:
            logger.warning(f"Summary transaction for {address} failed unexpectedly: {e!r}")
            error = NodeUnavailable(f"Summary transaction for [{address}] failed: {e}")
            error.__cause__ = e
            return ConsolidationResult(address=address, error=error)

        return ConsolidationResult(address=address, request=request)

    async def _sweepable_utxos(self, address: str, anchor: str, needed: int) -> list[UTXO]:
        """All UTXOs of one address not spent by the pool, if they cover ``needed``"""
        pending = await self.pending_filter.fetch()
        try:
            utxos = await self.backend.list_unspent(address, anchor)
        except NodeUnavailable as e:
            raise e.with_context(f"Failed to get unspent record of address [{address}]") from e

        available = pending.available(utxos)
        if not available or sum(u.amount for u in available) < needed:
            raise PendingConfirmationRequired(
                f"Address [{address}] has unconfirmed transaction, try summary again later",
                addresses=[address],
            )
        return available
