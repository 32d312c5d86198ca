"""
JSON-RPC Ledger Client

Talks to the ballot contract through an Ethereum JSON-RPC node over httpx.
Writes go out as `eth_sendTransaction` from an account unlocked on the node
(a local Hardhat or Anvil node) and are confirmed by polling
`eth_getTransactionReceipt`.
"""

import asyncio
import itertools
import json
import re
import time
from typing import Any, Dict, List, Optional

import httpx

from ..constants import (
    LEDGER_CALL_TIMEOUT,
    LOG_INCLUDE_RPC_PAYLOADS,
    LOG_MAX_PAYLOAD_LENGTH,
    RECEIPT_POLL_INTERVAL,
    RECEIPT_TIMEOUT,
)
from ..exceptions import LedgerError, LedgerRejection, LedgerUnavailableError, RejectionReason
from ..logger import get_logger
from ..models import ProposalStatus, TxHandle
from . import abi
from .base import BallotLedger

logger = get_logger(__name__)

_REASON_PATTERNS = [
    re.compile(r"reverted with reason string '([^']*)'"),
    re.compile(r"execution reverted: (.+)$"),
    re.compile(r"revert(?:ed)?:? (.+)$"),
]


def _to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def _from_hex(value: Optional[str]) -> bytes:
    if not value or value == "0x":
        return b""
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def _truncate(payload: Any) -> str:
    text = json.dumps(payload) if not isinstance(payload, str) else payload
    if len(text) > LOG_MAX_PAYLOAD_LENGTH:
        return text[:LOG_MAX_PAYLOAD_LENGTH] + "...[TRUNCATED]"
    return text


def rejection_from_error(error: Dict[str, Any]) -> Optional[LedgerRejection]:
    """
    Build a LedgerRejection from a JSON-RPC error object if it describes a
    contract revert. Returns None for any other node error.
    """
    message = str(error.get("message", ""))
    data = error.get("data")
    if isinstance(data, dict):
        data = data.get("data") or data.get("result")

    if isinstance(data, str) and data.startswith("0x"):
        try:
            reason = abi.decode_revert_reason(_from_hex(data))
        except ValueError:
            reason = None
        if reason is not None:
            return LedgerRejection(reason)

    for pattern in _REASON_PATTERNS:
        match = pattern.search(message)
        if match:
            return LedgerRejection(match.group(1).strip())

    if "revert" in message.lower():
        return LedgerRejection(message, RejectionReason.UNKNOWN)
    return None


class JsonRpcLedgerClient(BallotLedger):
    """Ballot contract client over Ethereum JSON-RPC."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        timeout: float = LEDGER_CALL_TIMEOUT,
        receipt_timeout: float = RECEIPT_TIMEOUT,
        receipt_poll_interval: float = RECEIPT_POLL_INTERVAL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.contract_address = contract_address.lower()
        self.receipt_timeout = receipt_timeout
        self.receipt_poll_interval = receipt_poll_interval
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    @classmethod
    def from_config(cls, config, client: Optional[httpx.AsyncClient] = None) -> "JsonRpcLedgerClient":
        """Build from a `LedgerConfig` section."""
        return cls(
            rpc_url=config.rpc_url,
            contract_address=config.contract_address,
            timeout=config.call_timeout,
            receipt_timeout=config.receipt_timeout,
            receipt_poll_interval=config.receipt_poll_interval,
            client=client,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Transport ─────────────────────────────────────────────────────

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        """
        Perform one JSON-RPC call and return its `result`.

        Transport failures, HTTP errors and non-revert node errors raise
        LedgerUnavailableError; contract reverts raise LedgerRejection.
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        body = f" {_truncate(params)}" if LOG_INCLUDE_RPC_PAYLOADS else ""
        logger.debug(f"--> \"POST {self.rpc_url} HTTP/1.1\" {method}{body}")

        start_time = time.time()
        try:
            response = await self._client.post(self.rpc_url, json=payload)
            process_time = time.time() - start_time
            response.raise_for_status()
            data = response.json()
        except httpx.RequestError as e:
            process_time = time.time() - start_time
            logger.warning(f"<-- \"POST {self.rpc_url} HTTP/1.1\" {method} NETWORK_ERROR ({process_time:.3f}s)")
            raise LedgerUnavailableError(f"{method} failed: {e}") from e
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"<-- \"POST {self.rpc_url} HTTP/1.1\" {method} {e.response.status_code} ERROR ({process_time:.3f}s)"
            )
            raise LedgerUnavailableError(f"{method} failed with HTTP {e.response.status_code}") from e
        except ValueError as e:
            logger.warning(f"<-- \"POST {self.rpc_url} HTTP/1.1\" {method} ERROR ({process_time:.3f}s): invalid JSON")
            raise LedgerUnavailableError(f"{method} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise LedgerUnavailableError(f"{method} returned a malformed response")

        result_log = f" {_truncate(data.get('result'))}" if LOG_INCLUDE_RPC_PAYLOADS else ""
        logger.debug(
            f"<-- \"POST {self.rpc_url} HTTP/1.1\" {method} {response.status_code} ({process_time:.3f}s){result_log}"
        )

        error = data.get("error")
        if error:
            rejection = rejection_from_error(error)
            if rejection is not None:
                logger.info(f"{method} reverted: {rejection.message}")
                raise rejection
            raise LedgerUnavailableError(f"{method} error {error.get('code')}: {error.get('message')}")
        if "result" not in data:
            raise LedgerUnavailableError(f"{method} returned no result")
        return data["result"]

    async def _call(self, signature: str, *args) -> bytes:
        call = {"to": self.contract_address, "data": _to_hex(abi.encode_function_call(signature, *args))}
        return _from_hex(await self._rpc("eth_call", [call, "latest"]))

    async def _transact(self, account: str, signature: str, *args) -> Dict[str, Any]:
        tx = {
            "from": account,
            "to": self.contract_address,
            "data": _to_hex(abi.encode_function_call(signature, *args)),
        }
        tx_hash = await self._rpc("eth_sendTransaction", [tx])
        receipt = await self._wait_for_receipt(tx_hash)
        if int(receipt.get("status", "0x1"), 16) != 1:
            raise LedgerRejection(await self._replay_revert(tx, receipt), None)
        return receipt

    async def _wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        deadline = time.monotonic() + self.receipt_timeout
        while True:
            receipt = await self._rpc("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                receipt.setdefault("transactionHash", tx_hash)
                return receipt
            if time.monotonic() >= deadline:
                raise LedgerUnavailableError(f"Timed out waiting for receipt of {tx_hash}")
            await asyncio.sleep(self.receipt_poll_interval)

    async def _replay_revert(self, tx: Dict[str, Any], receipt: Dict[str, Any]) -> str:
        """Re-run a mined, reverted transaction as a call to recover its reason."""
        try:
            await self._rpc("eth_call", [tx, receipt.get("blockNumber", "latest")])
        except LedgerRejection as rejection:
            return rejection.message
        return "Transaction reverted"

    # ── Reads ─────────────────────────────────────────────────────────

    async def chain_id(self) -> int:
        return int(await self._rpc("eth_chainId", []), 16)

    async def contract_exists(self) -> bool:
        code = await self._rpc("eth_getCode", [self.contract_address, "latest"])
        return bool(_from_hex(code))

    async def proposal_count(self) -> int:
        (count,) = abi.decode_function_result(["uint256"], await self._call(abi.NEXT_PROPOSAL_ID))
        return count

    async def get_proposal(self, proposal_id: int) -> ProposalStatus:
        data = await self._call(abi.GET_PROPOSAL_PUBLIC, proposal_id)
        field, creator, deadline, revealed, pending, yes, no = abi.decode_function_result(
            abi.PROPOSAL_PUBLIC_TYPES, data
        )
        return ProposalStatus(
            id=proposal_id,
            on_chain_field=bytes(field),
            creator=creator.lower(),
            deadline=deadline,
            revealed=revealed,
            decryption_pending=pending,
            yes_count=yes,
            no_count=no,
        )

    async def has_voted(self, proposal_id: int, account: str) -> bool:
        (voted,) = abi.decode_function_result(["bool"], await self._call(abi.HAS_VOTED, proposal_id, account))
        return voted

    # ── Writes ────────────────────────────────────────────────────────

    async def create_proposal(self, on_chain_field: bytes, duration_seconds: int, account: str) -> TxHandle:
        receipt = await self._transact(account, abi.CREATE_PROPOSAL, on_chain_field, duration_seconds)
        topic = abi.event_topic(abi.PROPOSAL_CREATED_EVENT)
        for log in receipt.get("logs", []):
            topics = log.get("topics") or []
            if (
                topics
                and topics[0].lower() == topic
                and str(log.get("address", "")).lower() == self.contract_address
            ):
                proposal_id = int(topics[1], 16)
                return TxHandle(tx_hash=receipt["transactionHash"], proposal_id=proposal_id)
        raise LedgerError(f"No ProposalCreated event in receipt {receipt['transactionHash']}")

    async def vote(self, proposal_id: int, ciphertext: bytes, proof: bytes, account: str) -> TxHandle:
        receipt = await self._transact(account, abi.VOTE, proposal_id, ciphertext, proof)
        return TxHandle(tx_hash=receipt["transactionHash"])

    async def request_reveal(self, proposal_id: int, account: str) -> TxHandle:
        receipt = await self._transact(account, abi.REQUEST_REVEAL, proposal_id)
        return TxHandle(tx_hash=receipt["transactionHash"])
