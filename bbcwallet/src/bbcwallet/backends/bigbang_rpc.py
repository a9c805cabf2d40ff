"""
BigBang node JSON-RPC backend.
Uses the node's RPC interface only, no node-side wallet state.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from bbcwallet.amounts import BBC_DECIMALS, coins_to_units
from bbcwallet.backends.base import UTXO, NodeBackend, PendingSpend
from bbcwallet.errors import NodeUnavailable, RPCError

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 30.0


class BigBangRPCBackend(NodeBackend):
    """
    Node backend speaking JSON-RPC 2.0 with a BigBang node.
    Parameters are passed by name, as the node expects.
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:9902",
        rpc_user: str = "",
        rpc_password: str = "",
        timeout: float = DEFAULT_RPC_TIMEOUT,
        decimals: int = BBC_DECIMALS,
    ):
        self.rpc_url = rpc_url.rstrip("/")
        self.decimals = decimals
        auth = (rpc_user, rpc_password) if rpc_user else None
        self.client = httpx.AsyncClient(timeout=timeout, auth=auth)
        self._request_id = 0

    async def _rpc_call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """
        Make an RPC call to the node.

        Args:
            method: RPC method name
            params: Named method parameters

        Returns:
            RPC result

        Raises:
            RPCError: If the node returns an error object
            NodeUnavailable: On connection/timeout/HTTP errors or an empty reply
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": str(self._request_id),
            "method": method,
            "params": params or {},
        }

        try:
            response = await self.client.post(
                self.rpc_url, json=payload, headers={"Accept": "application/json"}
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"RPC call timed out: {method} - {e}")
            raise NodeUnavailable(f"RPC call {method} timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise NodeUnavailable(f"RPC call {method} failed: {e}") from e
        except ValueError as e:
            logger.error(f"RPC call returned invalid JSON: {method} - {e}")
            raise NodeUnavailable(f"RPC call {method} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise NodeUnavailable(f"RPC call {method} returned a non-object reply")

        if isinstance(data.get("error"), dict):
            error_info = data["error"]
            raise RPCError(
                method,
                error_info.get("code", "unknown"),
                error_info.get("message", str(error_info)),
            )

        if "result" not in data:
            raise NodeUnavailable(f"RPC call {method} returned an empty response")

        return data["result"]

    def _units(self, value: Any, what: str) -> int:
        try:
            return coins_to_units(value, self.decimals)
        except ValueError as e:
            raise NodeUnavailable(f"Malformed {what} amount from node: {value!r}") from e

    async def get_anchor(self) -> str:
        result = await self._rpc_call("getblockhash", {"height": 0})
        if not result:
            raise NodeUnavailable("Node returned no genesis block hash")
        anchor = result[0] if isinstance(result, list) else result
        if not isinstance(anchor, str):
            raise NodeUnavailable(f"Malformed genesis block hash from node: {anchor!r}")
        logger.debug(f"Chain anchor: {anchor}")
        return anchor

    async def get_address_balance(self, address: str) -> int:
        result = await self._rpc_call("getbalance", {"address": address})

        if not result:
            logger.debug(f"Balance for {address}: 0 (no record)")
            return 0

        try:
            avail = result[0]["avail"]
        except (KeyError, IndexError, TypeError) as e:
            raise NodeUnavailable(f"Malformed getbalance reply for {address}") from e

        balance = self._units(avail, "balance")
        logger.debug(f"Balance for {address}: {balance}")
        return balance

    async def list_unspent(self, address: str, anchor: str) -> list[UTXO]:
        result = await self._rpc_call(
            "listunspent",
            {"forkid": anchor, "address": address, "max": 0, "sum": True},
        )

        utxos: list[UTXO] = []
        if not result:
            return utxos

        try:
            for utxo_data in result.get("unspents", []):
                utxos.append(
                    UTXO(
                        txid=utxo_data["txid"],
                        vout=int(utxo_data["out"]),
                        amount=self._units(utxo_data["amount"], "utxo"),
                    )
                )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise NodeUnavailable(f"Malformed listunspent reply for {address}") from e

        logger.debug(f"Listed {len(utxos)} UTXOs for {address}")
        return utxos

    async def list_pending_spends(self) -> list[PendingSpend]:
        result = await self._rpc_call("gettxpool", {"detail": True})

        spends: list[PendingSpend] = []
        if not result:
            return spends

        # Transactions are looked up one by one, in pool order
        try:
            for entry in result.get("list", []):
                tx_data = await self._rpc_call(
                    "gettransaction", {"txid": entry["hex"], "serialized": False}
                )
                for vin in tx_data["transaction"]["vin"]:
                    spends.append(PendingSpend(txid=vin["txid"], vout=int(vin["vout"])))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise NodeUnavailable("Malformed transaction pool reply") from e

        logger.debug(f"Transaction pool holds {len(spends)} pending spends")
        return spends

    async def broadcast_transaction(self, tx_hex: str) -> str:
        txid = await self._rpc_call("sendtransaction", {"txdata": tx_hex})
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def close(self) -> None:
        await self.client.aclose()
