"""
Tests for the transaction service: build, sign, verify, submit and
consolidation.
"""

from __future__ import annotations

from dataclasses import replace
from unittest.mock import AsyncMock, patch

import pytest

from bbcwallet.config import Settings
from bbcwallet.errors import (
    AddressNotFoundError,
    CannotSplitAcrossAddresses,
    EncodingError,
    InsufficientBalance,
    InvalidRequestError,
    NoAddressesError,
    NodeUnavailable,
    PendingConfirmationRequired,
    RPCError,
    VerificationFailed,
)
from bbcwallet.wallet.address import address_to_destination
from bbcwallet.wallet.keys import HDKeyHolder
from bbcwallet.wallet.models import Address, CurveType
from bbcwallet.wallet.service import TransactionService, WalletContext
from bbcwallet.wallet.store import MemoryWalletStore
from bbcwallet.wallet.transaction import deserialize_transaction
from tests.fake_node import ACCOUNT_ID, ANCHOR, FIXED_FEE, TIMESTAMP, FakeNodeBackend


async def _built(service, store, destination, amount=80, **kwargs):
    return await service.build_transaction(
        store, ACCOUNT_ID, destination, amount, timestamp=TIMESTAMP, **kwargs
    )


class TestWalletContext:
    def test_from_settings(self, backend: FakeNodeBackend):
        settings = Settings(fixed_fee=250, curve_type="secp256k1")
        context = WalletContext.from_settings(settings, backend=backend)
        assert context.backend is backend
        assert context.fixed_fee == 250
        assert context.curve == CurveType.SECP256K1

    def test_from_settings_builds_rpc_backend(self):
        from bbcwallet.backends.bigbang_rpc import BigBangRPCBackend

        context = WalletContext.from_settings(Settings(rpc_url="http://node:9902/"))
        assert isinstance(context.backend, BigBangRPCBackend)
        assert context.backend.rpc_url == "http://node:9902"

    def test_fee_rate(self, service: TransactionService):
        assert service.get_fee_rate() == (FIXED_FEE, "TX")


class TestBuildTransaction:
    @pytest.mark.asyncio
    async def test_single_address_funding(
        self, service, store, backend: FakeNodeBackend, addresses: list[Address], destination
    ):
        a, b = addresses[0].address, addresses[1].address
        backend.fund(a, 60, 40, 70, start=1)
        backend.fund(b, 50, start=10)

        request = await _built(service, store, destination, amount=80, fee_rate=5)

        assert request.tx_from == [a]
        assert request.tx_to == [destination]
        assert request.amount == 80
        assert request.fee == 5
        assert request.anchor == ANCHOR
        assert request.inputs == backend.utxos[a][:2]
        assert request.is_built
        assert not request.is_completed

        tx = deserialize_transaction(bytes.fromhex(request.raw_hex))
        assert tx.send_to == address_to_destination(destination)
        assert tx.amount == 80
        assert tx.fee == 5
        assert tx.timestamp == TIMESTAMP
        assert tx.signature == b""

    @pytest.mark.asyncio
    async def test_signature_slot(
        self, service, store, backend: FakeNodeBackend, addresses: list[Address], destination
    ):
        backend.fund(addresses[0].address, 1000)

        request = await _built(service, store, destination)

        assert len(request.signatures) == 1
        slot = request.signatures[0]
        assert slot.address == addresses[0]
        assert slot.message == deserialize_transaction(bytes.fromhex(request.raw_hex)).digest()
        assert slot.curve == CurveType.ED25519
        assert not slot.is_signed

    @pytest.mark.asyncio
    async def test_default_fee(
        self, service, store, backend: FakeNodeBackend, addresses: list[Address], destination
    ):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination)
        assert request.fee == FIXED_FEE

    @pytest.mark.asyncio
    async def test_memo(
        self, service, store, backend: FakeNodeBackend, addresses: list[Address], destination
    ):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination, memo="invoice 42")
        assert deserialize_transaction(bytes.fromhex(request.raw_hex)).data == b"invoice 42"

    @pytest.mark.asyncio
    async def test_exact_balance(
        self, service, store, backend: FakeNodeBackend, addresses: list[Address], destination
    ):
        backend.fund(addresses[2].address, 80 + FIXED_FEE)
        request = await _built(service, store, destination)
        assert request.input_total == 80 + FIXED_FEE

    @pytest.mark.asyncio
    async def test_cannot_split(
        self, service, store, backend: FakeNodeBackend, addresses: list[Address], destination
    ):
        backend.fund(addresses[0].address, 100, start=1)
        backend.fund(addresses[1].address, 100, start=10)
        with pytest.raises(CannotSplitAcrossAddresses):
            await _built(service, store, destination, amount=1)

    @pytest.mark.asyncio
    async def test_insufficient(self, service, store, destination):
        with pytest.raises(InsufficientBalance):
            await _built(service, store, destination)

    @pytest.mark.asyncio
    async def test_pending_confirmation(
        self, service, store, backend: FakeNodeBackend, addresses: list[Address], destination
    ):
        for utxo in backend.fund(addresses[0].address, 1000):
            backend.spend_in_pool(utxo)
        with pytest.raises(PendingConfirmationRequired):
            await _built(service, store, destination)

    @pytest.mark.asyncio
    async def test_no_addresses(self, service, destination):
        with pytest.raises(NoAddressesError):
            await _built(service, MemoryWalletStore(), destination)

    @pytest.mark.asyncio
    async def test_source_missing_from_store(
        self, service, backend: FakeNodeBackend, addresses: list[Address], destination
    ):
        class ListOnlyStore(MemoryWalletStore):
            def get_address(self, address: str) -> Address:
                raise AddressNotFoundError(address)

        backend.fund(addresses[0].address, 1000)
        with pytest.raises(AddressNotFoundError):
            await _built(service, ListOnlyStore(addresses), destination)

    @pytest.mark.asyncio
    async def test_invalid_destination(self, service, store):
        with pytest.raises(EncodingError):
            await _built(service, store, "1notanaddress")

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, service, store, destination):
        with pytest.raises(InvalidRequestError):
            await _built(service, store, destination, amount=0)

    @pytest.mark.asyncio
    async def test_negative_fee(self, service, store, destination):
        with pytest.raises(InvalidRequestError):
            await _built(service, store, destination, fee_rate=-1)

    @pytest.mark.asyncio
    async def test_anchor_failure(self, service, store, backend: FakeNodeBackend, destination):
        backend.fail_anchor = True
        with pytest.raises(NodeUnavailable, match="anchor"):
            await _built(service, store, destination)

    @pytest.mark.asyncio
    async def test_anchor_rpc_error_keeps_code(self, service, store, backend, destination):
        backend.get_anchor = AsyncMock(
            side_effect=RPCError("getblockhash", -32601, "Method not found")
        )
        with pytest.raises(RPCError, match="Failed to get anchor") as exc_info:
            await _built(service, store, destination)

        assert exc_info.value.code == -32601
        assert exc_info.value.rpc_message == "Method not found"

    @pytest.mark.asyncio
    async def test_query_order(
        self, service, store, backend: FakeNodeBackend, addresses: list[Address], destination
    ):
        backend.fund(addresses[0].address, 1000)
        await _built(service, store, destination)

        steps = [call for call, _ in backend.calls]
        assert steps.index("getblockhash") < steps.index("getbalance")
        assert max(i for i, s in enumerate(steps) if s == "getbalance") < steps.index("gettxpool")
        assert steps.index("gettxpool") < steps.index("listunspent")


class TestSignAndVerify:
    @pytest.mark.asyncio
    async def test_round_trip(
        self, service, store, backend, addresses, destination, key_holder: HDKeyHolder
    ):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination)
        raw_hex = request.raw_hex

        service.sign_transaction(request, key_holder)
        service.verify_transaction(request)

        assert request.is_completed
        assert request.raw_hex == raw_hex
        signed = deserialize_transaction(bytes.fromhex(request.signed_hex))
        assert signed.signature == request.signatures[0].signature
        assert signed.digest() == request.signatures[0].message

    @pytest.mark.asyncio
    async def test_verify_idempotent(
        self, service, store, backend, addresses, destination, key_holder: HDKeyHolder
    ):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination)
        service.sign_transaction(request, key_holder)

        first = service.verify_transaction(request).signed_hex
        second = service.verify_transaction(request).signed_hex

        assert first == second
        assert request.is_completed

    @pytest.mark.asyncio
    async def test_mismatched_public_key(
        self, service, store, backend, addresses, destination, key_holder: HDKeyHolder
    ):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination)
        raw_hex = request.raw_hex
        service.sign_transaction(request, key_holder)
        service.verify_transaction(request)

        request.signatures[0].address = addresses[1]
        with pytest.raises(VerificationFailed) as exc_info:
            service.verify_transaction(request)

        assert exc_info.value.recoverable
        assert not request.is_completed
        assert request.signed_hex == ""
        assert request.raw_hex == raw_hex

    @pytest.mark.asyncio
    async def test_malformed_public_key_discards_signed_bytes(
        self, service, store, backend, addresses, destination, key_holder: HDKeyHolder
    ):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination)
        service.sign_transaction(request, key_holder)
        service.verify_transaction(request)
        assert request.is_completed

        request.signatures[0].address = replace(addresses[0], public_key="zz")
        with pytest.raises(EncodingError):
            service.verify_transaction(request)

        assert not request.is_completed
        assert request.signed_hex == ""

    @pytest.mark.asyncio
    async def test_tampered_signature(
        self, service, store, backend, addresses, destination, key_holder: HDKeyHolder
    ):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination)
        service.sign_transaction(request, key_holder)
        slot = request.signatures[0]
        slot.signature = bytes([slot.signature[0] ^ 1]) + slot.signature[1:]

        with pytest.raises(VerificationFailed):
            service.verify_transaction(request)
        assert not request.is_completed

    @pytest.mark.asyncio
    async def test_verify_unsigned(self, service, store, backend, addresses, destination):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination)
        with pytest.raises(EncodingError, match="empty"):
            service.verify_transaction(request)

    @pytest.mark.asyncio
    async def test_verify_requires_single_signer(
        self, service, store, backend, addresses, destination
    ):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination)
        request.signatures = request.signatures * 2
        with pytest.raises(EncodingError, match="exactly one"):
            service.verify_transaction(request)

    def test_sign_unbuilt(self, service, key_holder: HDKeyHolder):
        from bbcwallet.wallet.models import Destination, TransactionRequest

        request = TransactionRequest(
            account_id=ACCOUNT_ID,
            source="x",
            destination=Destination("y", 1),
            fee=1,
            anchor=ANCHOR,
        )
        with pytest.raises(InvalidRequestError):
            service.sign_transaction(request, key_holder)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit(
        self, service, store, backend: FakeNodeBackend, addresses, destination, key_holder
    ):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination)
        service.sign_transaction(request, key_holder)
        service.verify_transaction(request)

        with patch("bbcwallet.wallet.service.time.time", return_value=1_700_000_123):
            await service.submit_transaction(request)

        assert backend.broadcasts == [request.signed_hex]
        assert request.is_submitted
        assert request.txid == f"{0xFEED:064x}"
        assert request.submit_time == 1_700_000_123

    @pytest.mark.asyncio
    async def test_submit_unverified(self, service, store, backend, addresses, destination):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination)
        with pytest.raises(InvalidRequestError, match="not completed"):
            await service.submit_transaction(request)
        assert backend.broadcasts == []

    @pytest.mark.asyncio
    async def test_submit_failure(
        self, service, store, backend: FakeNodeBackend, addresses, destination, key_holder
    ):
        backend.fund(addresses[0].address, 1000)
        request = await _built(service, store, destination)
        service.sign_transaction(request, key_holder)
        service.verify_transaction(request)
        backend.fail_broadcast = True

        with pytest.raises(NodeUnavailable):
            await service.submit_transaction(request)
        assert not request.is_submitted


class TestConsolidation:
    async def _consolidate(self, service, store, summary, **kwargs):
        params = {"min_transfer": 10, "retained_balance": 2, "fee_rate": 1}
        params.update(kwargs)
        return await service.build_consolidation_transactions(
            store, ACCOUNT_ID, summary_address=summary, timestamp=TIMESTAMP, **params
        )

    @pytest.mark.asyncio
    async def test_scenario(
        self, service, store, backend: FakeNodeBackend, addresses: list[Address], destination
    ):
        backend.fund(addresses[0].address, 12, 8, start=1)
        backend.fund(addresses[1].address, 5, start=10)

        results = await self._consolidate(service, store, destination)

        assert len(results) == 1
        result = results[0]
        assert result.ok
        assert result.address == addresses[0].address
        assert result.request.amount == 17
        assert result.request.fee == 1
        assert result.request.inputs == backend.utxos[addresses[0].address]

        tx = deserialize_transaction(bytes.fromhex(result.request.raw_hex))
        assert tx.amount == 17
        assert tx.send_to == address_to_destination(destination)

    @pytest.mark.asyncio
    async def test_balance_equal_to_min_transfer_included(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        backend.fund(addresses[0].address, 10)
        results = await self._consolidate(service, store, destination)
        assert [r.request.amount for r in results] == [7]

    @pytest.mark.asyncio
    async def test_nothing_left_after_fee_skipped(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        backend.fund(addresses[0].address, 3)
        results = await self._consolidate(
            service, store, destination, min_transfer=3, retained_balance=2
        )
        assert results == []

    @pytest.mark.asyncio
    async def test_results_in_address_order(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        backend.fund(addresses[3].address, 50, start=30)
        backend.fund(addresses[1].address, 90, start=10)
        backend.fund(addresses[2].address, 20, start=20)

        results = await self._consolidate(service, store, destination)

        assert [r.address for r in results] == [a.address for a in addresses[1:4]]

    @pytest.mark.asyncio
    async def test_pending_address_does_not_abort_others(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        for utxo in backend.fund(addresses[0].address, 40, start=1):
            backend.spend_in_pool(utxo)
        backend.fund(addresses[1].address, 30, start=10)

        results = await self._consolidate(service, store, destination)

        by_address = {r.address: r for r in results}
        failed = by_address[addresses[0].address]
        assert not failed.ok
        assert isinstance(failed.error, PendingConfirmationRequired)
        assert failed.request is None
        assert by_address[addresses[1].address].request.amount == 27

    @pytest.mark.asyncio
    async def test_partially_pending_short_of_transfer(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        utxos = backend.fund(addresses[0].address, 30, 5)
        backend.spend_in_pool(utxos[1])

        results = await self._consolidate(service, store, destination)

        # Balance still reports 35, transfer 32 needs 33 but only 30 is spendable
        assert isinstance(results[0].error, PendingConfirmationRequired)

    @pytest.mark.asyncio
    async def test_unspent_failure_scoped_to_address(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        backend.fund(addresses[0].address, 40, start=1)
        backend.fund(addresses[1].address, 30, start=10)
        backend.fail_unspent = {addresses[0].address}

        results = await self._consolidate(service, store, destination)

        assert isinstance(results[0].error, NodeUnavailable)
        assert results[1].ok

    @pytest.mark.asyncio
    async def test_unspent_rpc_error_keeps_code(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        backend.fund(addresses[0].address, 40)
        backend.list_unspent = AsyncMock(side_effect=RPCError("listunspent", -6, "Invalid address"))

        results = await self._consolidate(service, store, destination)

        error = results[0].error
        assert isinstance(error, RPCError)
        assert error.code == -6
        assert error.rpc_message == "Invalid address"
        assert addresses[0].address in str(error)

    @pytest.mark.asyncio
    async def test_unexpected_error_scoped_to_address(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        backend.fund(addresses[0].address, 40, start=1)
        backend.fund(addresses[1].address, 30, start=10)
        list_unspent = backend.list_unspent

        async def failing_for_first(address: str, anchor: str):
            if address == addresses[0].address:
                raise ValueError("unexpected reply")
            return await list_unspent(address, anchor)

        backend.list_unspent = failing_for_first

        results = await self._consolidate(service, store, destination)

        assert [r.address for r in results] == [addresses[0].address, addresses[1].address]
        assert isinstance(results[0].error, NodeUnavailable)
        assert addresses[0].address in str(results[0].error)
        assert isinstance(results[0].error.__cause__, ValueError)
        assert results[1].ok
        assert results[1].request.amount == 27

    @pytest.mark.asyncio
    async def test_pool_failure_is_node_unavailable(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        backend.fund(addresses[0].address, 40)
        backend.fail_pool = True

        results = await self._consolidate(service, store, destination)

        assert isinstance(results[0].error, NodeUnavailable)

    @pytest.mark.asyncio
    async def test_min_transfer_below_retained(self, service, store, destination):
        with pytest.raises(InvalidRequestError):
            await self._consolidate(
                service, store, destination, min_transfer=1, retained_balance=2
            )

    @pytest.mark.asyncio
    async def test_negative_retained_balance(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        backend.fund(addresses[0].address, 20)
        with pytest.raises(InvalidRequestError, match="negative"):
            await self._consolidate(service, store, destination, retained_balance=-5)
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_negative_min_transfer(self, service, store, destination):
        with pytest.raises(InvalidRequestError, match="negative"):
            await self._consolidate(
                service, store, destination, min_transfer=-1, retained_balance=-2
            )

    @pytest.mark.asyncio
    async def test_no_addresses(self, service, destination):
        with pytest.raises(NoAddressesError):
            await self._consolidate(service, MemoryWalletStore(), destination)

    @pytest.mark.asyncio
    async def test_balance_failure_propagates(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        backend.fail_balance = {addresses[2].address}
        with pytest.raises(NodeUnavailable):
            await self._consolidate(service, store, destination)

    @pytest.mark.asyncio
    async def test_address_window(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        backend.fund(addresses[0].address, 40, start=1)
        backend.fund(addresses[3].address, 40, start=10)

        results = await self._consolidate(
            service, store, destination, address_offset=2, address_limit=2
        )

        assert [r.address for r in results] == [addresses[3].address]

    @pytest.mark.asyncio
    async def test_consolidated_requests_sign_and_verify(
        self, service, store, backend: FakeNodeBackend, addresses, destination, key_holder
    ):
        backend.fund(addresses[0].address, 40, start=1)
        backend.fund(addresses[1].address, 30, start=10)

        results = await self._consolidate(service, store, destination)

        for result in results:
            service.sign_transaction(result.request, key_holder)
            service.verify_transaction(result.request)
            assert result.request.is_completed

    @pytest.mark.asyncio
    async def test_strict_raises_first_error(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        for utxo in backend.fund(addresses[0].address, 40, start=1):
            backend.spend_in_pool(utxo)
        backend.fund(addresses[1].address, 30, start=10)

        with pytest.raises(PendingConfirmationRequired):
            await service.build_consolidation_transactions_strict(
                store, ACCOUNT_ID, 10, 2, destination, fee_rate=1, timestamp=TIMESTAMP
            )

    @pytest.mark.asyncio
    async def test_strict_returns_requests(
        self, service, store, backend: FakeNodeBackend, addresses, destination
    ):
        backend.fund(addresses[1].address, 30, start=10)

        requests = await service.build_consolidation_transactions_strict(
            store, ACCOUNT_ID, 10, 2, destination, fee_rate=1, timestamp=TIMESTAMP
        )

        assert [r.source for r in requests] == [addresses[1].address]
