"""
BigBang Wallet CLI - Inspect balances and build, sign and send transactions.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger

from bbcwallet.amounts import coins_to_units, units_to_coins
from bbcwallet.config import Settings, get_settings
from bbcwallet.errors import WalletError
from bbcwallet.wallet.keys import HDKeyHolder, derive_account_addresses
from bbcwallet.wallet.models import TransactionRequest
from bbcwallet.wallet.service import TransactionService, WalletContext
from bbcwallet.wallet.store import MemoryWalletStore

app = typer.Typer(
    name="bbc-wallet",
    help="BigBang Wallet Transactions",
    add_completion=False,
)

ACCOUNT_ID = "default"


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _load_mnemonic(mnemonic: str | None, mnemonic_file: Path | None) -> str:
    if mnemonic_file:
        if not mnemonic_file.exists():
            logger.error(f"Mnemonic file not found: {mnemonic_file}")
            raise typer.Exit(1)
        mnemonic = mnemonic_file.read_text().strip()

    if not mnemonic:
        logger.error("Mnemonic required. Use --mnemonic, --mnemonic-file, or MNEMONIC env var")
        raise typer.Exit(1)

    return mnemonic


def _parse_amount(value: str, settings: Settings) -> int:
    try:
        return coins_to_units(value, settings.decimals)
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1)


def _open_wallet(
    mnemonic: str, settings: Settings, address_count: int
) -> tuple[HDKeyHolder, MemoryWalletStore]:
    key_holder = HDKeyHolder.from_mnemonic(mnemonic)
    addresses = derive_account_addresses(
        key_holder, ACCOUNT_ID, settings.derivation_root, address_count
    )
    return key_holder, MemoryWalletStore(addresses)


async def _finish(
    service: TransactionService,
    request: TransactionRequest,
    key_holder: HDKeyHolder,
    broadcast: bool,
    settings: Settings,
) -> None:
    service.sign_transaction(request, key_holder)
    service.verify_transaction(request)

    amount = units_to_coins(request.amount, settings.decimals)
    fee = units_to_coins(request.fee, settings.decimals)
    print(f"\n{request.source} -> {request.destination.address}")
    print(f"  Amount: {amount} {settings.symbol}  Fee: {fee} {settings.symbol}")

    if not broadcast:
        print(f"  Signed: {request.signed_hex}")
        return

    await service.submit_transaction(request)
    print(f"  TxID:   {request.txid}")


@app.command()
def balances(
    addresses: list[str] = typer.Argument(..., help="Addresses to query"),
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="Log level (default: BBC_LOG_LEVEL or INFO)"
    ),
) -> None:
    """Show address balances, best funded first."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    asyncio.run(_show_balances(addresses, settings))


async def _show_balances(addresses: list[str], settings: Settings) -> None:
    service = TransactionService(WalletContext.from_settings(settings))
    try:
        result = await service.ledger.balances(addresses)
        for entry in result:
            coins = units_to_coins(entry.balance, settings.decimals)
            print(f"  {entry.address}  {coins:>20} {settings.symbol}")
    except WalletError as e:
        logger.error(f"Failed to get balances: {e}")
        raise typer.Exit(1)
    finally:
        await service.backend.close()


@app.command()
def pending(
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="Log level (default: BBC_LOG_LEVEL or INFO)"
    ),
) -> None:
    """List outpoints spent by unconfirmed transactions in the pool."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    asyncio.run(_show_pending(settings))


async def _show_pending(settings: Settings) -> None:
    service = TransactionService(WalletContext.from_settings(settings))
    try:
        spends = await service.backend.list_pending_spends()
        if not spends:
            print("\nTransaction pool is empty.")
            return
        for spend in spends:
            print(f"  {spend.txid}:{spend.vout}")
    except WalletError as e:
        logger.error(f"Failed to read transaction pool: {e}")
        raise typer.Exit(1)
    finally:
        await service.backend.close()


@app.command("fee-rate")
def fee_rate() -> None:
    """Show the fixed transaction fee."""
    settings = get_settings()
    fee = units_to_coins(settings.fixed_fee, settings.decimals)
    print(f"{fee} {settings.symbol}/TX")


@app.command()
def send(
    destination: str = typer.Option(..., "--to", "-t", help="Destination address"),
    amount: str = typer.Option(..., "--amount", "-a", help="Amount in coins"),
    fee: str | None = typer.Option(None, "--fee", help="Fee in coins (default: fixed fee)"),
    memo: str = typer.Option("", "--memo", help="Transaction memo"),
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 mnemonic"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    address_count: int = typer.Option(20, "--addresses", "-n", help="Addresses to scan"),
    broadcast: bool = typer.Option(False, "--broadcast", help="Broadcast after signing"),
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="Log level (default: BBC_LOG_LEVEL or INFO)"
    ),
) -> None:
    """Build, sign and verify a payment from a single wallet address."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    phrase = _load_mnemonic(mnemonic, mnemonic_file)
    amount_units = _parse_amount(amount, settings)
    fee_units = _parse_amount(fee, settings) if fee is not None else None

    asyncio.run(
        _send(
            phrase, settings, address_count, destination, amount_units, fee_units, memo, broadcast
        )
    )


async def _send(
    mnemonic: str,
    settings: Settings,
    address_count: int,
    destination: str,
    amount: int,
    fee: int | None,
    memo: str,
    broadcast: bool,
) -> None:
    key_holder, store = _open_wallet(mnemonic, settings, address_count)
    service = TransactionService(WalletContext.from_settings(settings))
    try:
        request = await service.build_transaction(
            store, ACCOUNT_ID, destination, amount, fee_rate=fee, memo=memo
        )
        await _finish(service, request, key_holder, broadcast, settings)
    except WalletError as e:
        logger.error(f"Send failed: {e}")
        raise typer.Exit(1)
    finally:
        await service.backend.close()


@app.command()
def sweep(
    summary_address: str = typer.Option(..., "--to", "-t", help="Summary address"),
    min_transfer: str = typer.Option(..., "--min-transfer", help="Minimum balance to sweep"),
    retained: str = typer.Option("0", "--retained", help="Balance left on each address"),
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 mnemonic"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    address_count: int = typer.Option(20, "--addresses", "-n", help="Addresses to scan"),
    broadcast: bool = typer.Option(False, "--broadcast", help="Broadcast after signing"),
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="Log level (default: BBC_LOG_LEVEL or INFO)"
    ),
) -> None:
    """Consolidate every address above the threshold into the summary address."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    phrase = _load_mnemonic(mnemonic, mnemonic_file)

    asyncio.run(
        _sweep(
            phrase,
            settings,
            address_count,
            summary_address,
            _parse_amount(min_transfer, settings),
            _parse_amount(retained, settings),
            broadcast,
        )
    )


async def _sweep(
    mnemonic: str,
    settings: Settings,
    address_count: int,
    summary_address: str,
    min_transfer: int,
    retained: int,
    broadcast: bool,
) -> None:
    key_holder, store = _open_wallet(mnemonic, settings, address_count)
    service = TransactionService(WalletContext.from_settings(settings))
    failures = 0
    try:
        results = await service.build_consolidation_transactions(
            store, ACCOUNT_ID, min_transfer, retained, summary_address
        )
        if not results:
            print("\nNo address above the minimum transfer.")
            return

        for result in results:
            if result.request is None:
                failures += 1
                print(f"\n{result.address}: {result.error}")
                continue
            try:
                await _finish(service, result.request, key_holder, broadcast, settings)
            except WalletError as e:
                failures += 1
                logger.error(f"Summary for {result.address} failed: {e}")
    except WalletError as e:
        logger.error(f"Sweep failed: {e}")
        raise typer.Exit(1)
    finally:
        await service.backend.close()

    if failures:
        raise typer.Exit(1)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
