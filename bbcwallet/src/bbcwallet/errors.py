"""
Error taxonomy for transaction construction and signing.

Every error raised by the core derives from WalletError. ``recoverable``
tells the caller whether rerunning the whole pipeline later can succeed.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for all wallet core errors."""

    recoverable = False


class InsufficientBalance(WalletError):
    """Not enough funds across all addresses of the account."""

    def __init__(self, required: int, total: int):
        self.required = required
        self.total = total
        super().__init__(f"Insufficient balance: need {required}, account total is {total}")


class CannotSplitAcrossAddresses(WalletError):
    """Funds exist in aggregate but no single address can fund the transaction."""

    def __init__(self, required: int, total: int):
        self.required = required
        self.total = total
        super().__init__(
            f"Total balance {total} covers {required}, "
            "but no single address can fund it in one transaction"
        )


class PendingConfirmationRequired(WalletError):
    """Funds are tied up in transactions still waiting in the pool."""

    recoverable = True

    def __init__(self, message: str, addresses: list[str] | None = None):
        self.addresses = addresses or []
        super().__init__(message)


class NodeUnavailable(WalletError):
    """A node query could not be completed."""

    recoverable = True

    def with_context(self, context: str) -> NodeUnavailable:
        """The same failure, prefixed with the step or address it happened in."""
        return NodeUnavailable(f"{context}: {self}")


class RPCError(NodeUnavailable):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: int | str, message: str, context: str = ""):
        self.method = method
        self.code = code
        self.rpc_message = message
        self.context = context
        text = f"RPC error {code} in {method}: {message}"
        super().__init__(f"{context}: {text}" if context else text)

    def with_context(self, context: str) -> RPCError:
        if self.context:
            context = f"{context}: {self.context}"
        return RPCError(self.method, self.code, self.rpc_message, context=context)


class KeyDerivationError(WalletError):
    """The key holder could not produce a signing key for an address."""


class SigningError(WalletError):
    """The signing primitive failed."""


class VerificationFailed(WalletError):
    """A signature does not match the transaction digest and public key."""

    recoverable = True


class EncodingError(WalletError):
    """A transaction field cannot be encoded or decoded."""


class InvalidRequestError(WalletError):
    """The caller passed parameters that cannot form a valid request."""


class NoAddressesError(WalletError):
    """The account has no addresses to spend from."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account [{account_id}] has no addresses")


class AddressNotFoundError(WalletError):
    """An address is not known to the wallet store."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Address [{address}] not found in wallet")
