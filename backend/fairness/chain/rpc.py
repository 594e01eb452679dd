"""Zcash node JSON-RPC commitment service.

A commitment is a dust self-send from the house shielded address with the
seed hash in the encrypted memo (``ZCASHINO_COMMIT_V1:<hash>``). ``minconf=1``
keeps the wallet from spending unconfirmed change, which would otherwise fail
with a "Missing witness" error.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from fairness.chain.base import (
    COMMITMENT_MEMO_PREFIX,
    CommitmentReceipt,
    CommitmentService,
    CommitmentVerification,
)
from fairness.exceptions import BlockchainUnavailableError, WitnessNotReadyError

if TYPE_CHECKING:
    from pydantic import SecretStr

logger = structlog.get_logger()

COMMITMENT_AMOUNT = 0.00001
_SYNC_PROGRESS_THRESHOLD = 0.9999
_MISSING_WITNESS_MARKER = "missing witness"


def _raise_for_message(message: str) -> None:
    if _MISSING_WITNESS_MARKER in message.lower():
        raise WitnessNotReadyError(message)
    raise BlockchainUnavailableError(message)


class ZcashRpcCommitmentService(CommitmentService):
    """Talks to zcashd over JSON-RPC with HTTP basic auth."""

    def __init__(  # noqa: PLR0913
        self,
        rpc_url: str,
        rpc_user: str,
        rpc_password: SecretStr | str,
        house_address: str,
        *,
        client: httpx.AsyncClient | None = None,
        request_timeout: float = 5.0,
        operation_timeout: float = 120.0,
        poll_interval: float = 1.0,
    ) -> None:
        password = rpc_password if isinstance(rpc_password, str) else rpc_password.get_secret_value()
        self._rpc_url = rpc_url
        self._house_address = house_address
        self._client = client or httpx.AsyncClient(timeout=request_timeout, auth=(rpc_user, password))
        self._operation_timeout = operation_timeout
        self._poll_interval = poll_interval
        self._request_id = 0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, params: list[Any] | None = None) -> Any:  # noqa: ANN401
        self._request_id += 1
        payload = {"jsonrpc": "1.0", "id": f"blackjack-{self._request_id}", "method": method, "params": params or []}
        try:
            response = await self._client.post(self._rpc_url, json=payload)
        except httpx.RequestError as exc:
            raise BlockchainUnavailableError(f"RPC {method} failed: {exc}") from exc

        # zcashd answers JSON-RPC errors with HTTP 500 and a structured body
        try:
            data = response.json()
        except ValueError:
            raise BlockchainUnavailableError(f"RPC {method} returned HTTP {response.status_code}") from None

        error = data.get("error")
        if error:
            _raise_for_message(f"RPC error {error.get('code')}: {error.get('message')}")
        if response.is_error:
            raise BlockchainUnavailableError(f"RPC {method} returned HTTP {response.status_code}")
        return data.get("result")

    async def _node_height(self) -> int:
        """Return the tip height, raising if the node is unreachable or still syncing."""
        info = await self._call("getblockchaininfo")
        synced = info.get("initial_block_download_complete")
        if not isinstance(synced, bool):
            synced = info.get("verificationprogress", 0) > _SYNC_PROGRESS_THRESHOLD
        if not synced:
            raise BlockchainUnavailableError(f"Zcash node is still syncing (block {info.get('blocks')})")
        return int(info["blocks"])

    async def is_available(self) -> bool:
        try:
            await self._node_height()
        except BlockchainUnavailableError:
            return False
        return True

    async def _wait_for_operation(self, operation_id: str) -> str:
        deadline = time.monotonic() + self._operation_timeout
        while time.monotonic() < deadline:
            results = await self._call("z_getoperationstatus", [[operation_id]])
            op = next((r for r in results or [] if r.get("id") == operation_id), None)
            if op is None:
                raise BlockchainUnavailableError("Operation not found")
            if op["status"] == "success":
                return op["result"]["txid"]
            if op["status"] == "failed":
                _raise_for_message(op.get("error", {}).get("message", "Transaction failed"))
            await asyncio.sleep(self._poll_interval)
        raise BlockchainUnavailableError("Operation timed out")

    async def create_commitment(self, server_seed_hash: str) -> CommitmentReceipt:
        height = await self._node_height()
        memo = f"{COMMITMENT_MEMO_PREFIX}{server_seed_hash}".encode().hex()
        recipient = {"address": self._house_address, "amount": COMMITMENT_AMOUNT, "memo": memo}
        operation_id = await self._call(
            "z_sendmany",
            [self._house_address, [recipient], 1, None, "AllowRevealedAmounts"],
        )
        txid = await self._wait_for_operation(operation_id)

        block_timestamp = datetime.now(tz=UTC)
        tx = await self._call("gettransaction", [txid])
        if tx and tx.get("blocktime"):
            block_timestamp = datetime.fromtimestamp(tx["blocktime"], tz=UTC)

        logger.info("commitment broadcast", tx_hash=txid, block_height=height)
        return CommitmentReceipt(tx_hash=txid, block_height=height, block_timestamp=block_timestamp)

    async def verify_commitment(self, tx_hash: str, expected_hash: str) -> CommitmentVerification:  # noqa: ARG002
        # The memo is encrypted, so only existence and confirmation can be checked here;
        # the hash itself is checked locally against the revealed seed.
        try:
            height = await self._node_height()
            tx = await self._call("gettransaction", [tx_hash])
        except BlockchainUnavailableError as exc:
            return CommitmentVerification(valid=False, error=f"Cannot verify: {exc}")

        if not tx:
            return CommitmentVerification(valid=False, error="Transaction not found on blockchain")

        confirmations = int(tx.get("confirmations", 0))
        if confirmations <= 0:
            return CommitmentVerification(valid=False, error="Transaction is not yet confirmed")
        blocktime = tx.get("blocktime")
        return CommitmentVerification(
            valid=True,
            block_height=height - confirmations + 1,
            block_timestamp=datetime.fromtimestamp(blocktime, tz=UTC) if blocktime else None,
        )
