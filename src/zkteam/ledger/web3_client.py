"""
Ethereum ledger client.

Chain reads, event queries and remediation transactions go through
web3.py's ``AsyncWeb3``; user operations go to an ERC-4337 bundler over
JSON-RPC with aiohttp.
"""

import itertools
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from eth_utils import to_checksum_address
from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted, Web3Exception

from ..config import LedgerConfig
from ..core.operation import UserOperation
from ..errors import LedgerError, OperationRejectedError
from .abi import ACCOUNT_ABI, FACTORY_ABI
from .base import (
    DiscardEntry,
    EventKind,
    LedgerClient,
    LedgerEvent,
    OperationReceipt,
)

logger = logging.getLogger(__name__)


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    return "0x" + bytes(value).hex()


class Web3LedgerClient(LedgerClient):
    """``LedgerClient`` backed by a JSON-RPC node and a bundler."""

    def __init__(
        self,
        config: LedgerConfig,
        entry_point_address: str,
        factory_address: Optional[str] = None,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.config = config
        self.entry_point_address = to_checksum_address(entry_point_address)
        self.factory_address = (
            to_checksum_address(factory_address) if factory_address else None
        )
        self.w3 = w3 or AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                config.rpc_url, request_kwargs={"timeout": config.timeout}
            )
        )
        self._request_ids = itertools.count(1)
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "Web3LedgerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _account_contract(self, address: str):
        return self.w3.eth.contract(address=to_checksum_address(address), abi=ACCOUNT_ABI)

    def _factory_contract(self):
        if self.factory_address is None:
            raise LedgerError("No factory address configured", endpoint=self.config.rpc_url)
        return self.w3.eth.contract(address=self.factory_address, abi=FACTORY_ABI)

    async def _bundler_request(self, method: str, params: List[Any]) -> Any:
        url = self.config.bundler_url or self.config.rpc_url
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout)
            )

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        try:
            async with self._session.post(url, json=payload) as response:
                response.raise_for_status()
                body = await response.json()
        except aiohttp.ClientError as e:
            raise LedgerError(f"{method} failed: {e}", endpoint=url, cause=e) from e

        if "error" in body:
            error = body["error"]
            raise OperationRejectedError(
                f"{method} rejected: {error.get('message', error)}",
                endpoint=url,
                metadata={"rpc_error": error},
            )
        return body.get("result")

    async def get_block_number(self) -> int:
        try:
            return await self.w3.eth.block_number
        except Web3Exception as e:
            raise LedgerError(f"Cannot read block number: {e}", endpoint=self.config.rpc_url, cause=e) from e

    async def get_chain_id(self) -> int:
        try:
            return await self.w3.eth.chain_id
        except Web3Exception as e:
            raise LedgerError(f"Cannot read chain id: {e}", endpoint=self.config.rpc_url, cause=e) from e

    async def is_deployed(self, address: str) -> bool:
        try:
            code = await self.w3.eth.get_code(to_checksum_address(address))
        except Web3Exception as e:
            raise LedgerError(f"Cannot read code at {address}: {e}", endpoint=self.config.rpc_url, cause=e) from e
        return len(code) > 0

    async def get_nonce(self, address: str) -> int:
        try:
            return await self._account_contract(address).functions.getNonce().call()
        except Web3Exception as e:
            raise LedgerError(f"Cannot read nonce of {address}: {e}", endpoint=self.config.rpc_url, cause=e) from e

    async def get_balance(self, address: str) -> int:
        try:
            return await self.w3.eth.get_balance(to_checksum_address(address))
        except Web3Exception as e:
            raise LedgerError(f"Cannot read balance of {address}: {e}", endpoint=self.config.rpc_url, cause=e) from e

    async def get_account_address(self, owner: str, index: int) -> str:
        factory = self._factory_contract()
        try:
            address = await factory.functions.getAddress(
                to_checksum_address(owner), index
            ).call()
        except Web3Exception as e:
            raise LedgerError(f"Cannot resolve account address: {e}", endpoint=self.config.rpc_url, cause=e) from e
        return to_checksum_address(address)

    async def query_events(
        self, account: str, kind: EventKind, from_block: int, to_block: int
    ) -> List[LedgerEvent]:
        event = getattr(self._account_contract(account).events, kind.value)
        try:
            logs = await event.get_logs(from_block=from_block, to_block=to_block)
        except Web3Exception as e:
            raise LedgerError(
                f"Cannot query {kind.value} events in [{from_block}, {to_block}]: {e}",
                endpoint=self.config.rpc_url,
                cause=e,
            ) from e

        events = []
        for log in logs:
            args = log["args"]
            if kind is EventKind.EXECUTION:
                values = (
                    int(args["nullifierHash"]),
                    int(args["commitmentHash"]),
                    bytes(args["encryptedAllowance"]),
                )
            else:
                values = (int(args["commitmentHash"]),)
            events.append(
                LedgerEvent(
                    kind=kind,
                    args=values,
                    transaction_hash=_hex(log["transactionHash"]),
                    block_number=log["blockNumber"],
                )
            )
        logger.debug(f"Fetched {len(events)} {kind.value} events from {account}")
        return events

    async def estimate_gas(self, sender: str, to: str, call_data: bytes) -> int:
        try:
            return await self.w3.eth.estimate_gas(
                {
                    "from": to_checksum_address(sender),
                    "to": to_checksum_address(to),
                    "data": _hex(call_data),
                }
            )
        except Web3Exception as e:
            raise LedgerError(f"Gas estimation failed: {e}", endpoint=self.config.rpc_url, cause=e) from e

    async def submit_operation(self, operation: UserOperation) -> str:
        operation_hash = await self._bundler_request(
            "eth_sendUserOperation", [operation.to_rpc(), self.entry_point_address]
        )
        logger.info(f"Submitted user operation {operation_hash}")
        return operation_hash

    async def get_operation_receipt(self, operation_hash: str) -> Optional[OperationReceipt]:
        result: Optional[Dict[str, Any]] = await self._bundler_request(
            "eth_getUserOperationReceipt", [operation_hash]
        )
        if not result:
            return None
        receipt = result.get("receipt", {})
        return OperationReceipt(
            operation_hash=operation_hash,
            transaction_hash=receipt.get("transactionHash", ""),
            success=bool(result.get("success", True)),
            metadata={"block_number": receipt.get("blockNumber")},
        )

    async def send_discard(
        self, account: str, entries: Sequence[DiscardEntry], signer: Any
    ) -> str:
        contract = self._account_contract(account)
        try:
            nonce = await self.w3.eth.get_transaction_count(signer.address)
            transaction = await contract.functions.discardCommitmentHashes(
                [entry.to_abi() for entry in entries]
            ).build_transaction(
                {
                    "from": signer.address,
                    "nonce": nonce,
                    "chainId": await self.w3.eth.chain_id,
                }
            )
            signed = signer.sign_transaction(transaction)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Web3Exception as e:
            raise LedgerError(f"Discard transaction failed: {e}", endpoint=self.config.rpc_url, cause=e) from e

        logger.info(f"Sent discard of {len(entries)} commitment(s): {_hex(tx_hash)}")
        return _hex(tx_hash)

    async def wait_for_transaction(self, transaction_hash: str) -> None:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                transaction_hash, timeout=self.config.receipt_timeout
            )
        except TimeExhausted as e:
            raise LedgerError(
                f"Transaction {transaction_hash} not mined in time",
                endpoint=self.config.rpc_url,
                cause=e,
            ) from e
        if receipt["status"] == 0:
            raise OperationRejectedError(
                f"Transaction {transaction_hash} reverted", endpoint=self.config.rpc_url
            )
