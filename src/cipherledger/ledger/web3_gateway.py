"""Ethereum ledger gateway — the record contract over JSON-RPC.

Reads go through ``eth_call``; writes are built locally, signed with the
configured key, sent raw, and confirmed with
``wait_for_transaction_receipt``. Node error text is inspected here and
nowhere else: ``classify_error`` turns it into the typed errors the
orchestrator branches on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp
from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from cipherledger.errors import (
    AlreadyVerifiedError,
    CipherLedgerError,
    FetchError,
    LedgerUnavailableError,
    SubmissionError,
    SubmissionRejectedError,
)
from cipherledger.ledger.gateway import (
    LedgerConnection,
    LedgerGateway,
    PendingTransaction,
    TransactionReceipt,
)
from cipherledger.models.record import RecordData

logger = logging.getLogger(__name__)

ALREADY_VERIFIED_MARKERS = ("data already verified",)
REJECTED_MARKERS = ("user rejected", "user denied")

# Node and transport failures surfaced by AsyncHTTPProvider.
NODE_ERRORS = (Web3Exception, aiohttp.ClientError, OSError, asyncio.TimeoutError)


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[tuple[str, str]],
        mutability: str = "view") -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


RECORD_CONTRACT_ABI: list[dict[str, Any]] = [
    _fn("getAllBusinessIds", [], [("", "string[]")]),
    _fn("getBusinessData", [("businessId", "string")], [
        ("name", "string"),
        ("publicValue1", "uint256"),
        ("publicValue2", "uint256"),
        ("description", "string"),
        ("creator", "address"),
        ("timestamp", "uint256"),
        ("isVerified", "bool"),
        ("decryptedValue", "uint32"),
    ]),
    _fn("getEncryptedValue", [("businessId", "string")], [("", "bytes32")]),
    _fn("isAvailable", [], [("", "bool")], mutability="pure"),
    _fn("createBusinessData", [
        ("businessId", "string"),
        ("name", "string"),
        ("encryptedValue", "bytes32"),
        ("inputProof", "bytes"),
        ("publicValue1", "uint256"),
        ("publicValue2", "uint256"),
        ("description", "string"),
    ], [], mutability="nonpayable"),
    _fn("verifyDecryption", [
        ("businessId", "string"),
        ("abiEncodedClearValue", "bytes"),
        ("decryptionProof", "bytes"),
    ], [], mutability="nonpayable"),
]


def classify_error(exc: BaseException) -> CipherLedgerError:
    """Map a node or signer failure onto the lifecycle error taxonomy."""
    if isinstance(exc, CipherLedgerError):
        return exc
    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    if any(marker in lowered for marker in ALREADY_VERIFIED_MARKERS):
        return AlreadyVerifiedError(message)
    if any(marker in lowered for marker in REJECTED_MARKERS):
        return SubmissionRejectedError(message)
    return SubmissionError(message)


def to_bytes(value: bytes | str) -> bytes:
    """Accept raw bytes or a 0x-prefixed hex string."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(text)


def to_hex(value: bytes | str) -> str:
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return "0x" + bytes(value).hex()


class Web3PendingTransaction(PendingTransaction):
    def __init__(self, w3: AsyncWeb3, tx_hash: bytes, timeout: float) -> None:
        self.tx_hash = to_hex(tx_hash)
        self._w3 = w3
        self._raw_hash = tx_hash
        self._timeout = timeout

    async def finality(self) -> TransactionReceipt:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                self._raw_hash, timeout=self._timeout,
            )
        except TimeExhausted as exc:
            raise SubmissionError(
                f"Transaction {self.tx_hash} not confirmed within {self._timeout}s"
            ) from exc
        except NODE_ERRORS as exc:
            raise classify_error(exc) from exc

        if receipt["status"] != 1:
            raise SubmissionError(f"Transaction {self.tx_hash} reverted")
        logger.info("Transaction %s confirmed in block %s",
                    self.tx_hash, receipt["blockNumber"])
        return TransactionReceipt(
            tx_hash=self.tx_hash, block_number=int(receipt["blockNumber"]),
        )


class Web3LedgerConnection(LedgerConnection):
    """Connection bound to one contract, optionally with a signing account."""

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        chain_id: int,
        tx_timeout: float,
        account: Optional[Any] = None,
    ) -> None:
        self._w3 = w3
        self._address = AsyncWeb3.to_checksum_address(contract_address)
        self._contract = w3.eth.contract(address=self._address, abi=RECORD_CONTRACT_ABI)
        self._chain_id = chain_id
        self._tx_timeout = tx_timeout
        self._account = account

    async def get_address(self) -> str:
        return self._address

    async def list_record_ids(self) -> list[str]:
        ids = await self._read(self._contract.functions.getAllBusinessIds(), "list records")
        return list(ids)

    async def get_record(self, record_id: str) -> RecordData:
        (name, public_value, aux_value, description, creator,
         timestamp, is_verified, decrypted_value) = await self._read(
            self._contract.functions.getBusinessData(record_id), f"read record {record_id}",
        )
        return RecordData(
            name=name,
            description=description,
            creator=creator,
            timestamp=int(timestamp),
            public_value=int(public_value),
            aux_value=int(aux_value),
            is_verified=bool(is_verified),
            decrypted_value=int(decrypted_value),
        )

    async def get_ciphertext_handle(self, record_id: str) -> str:
        handle = await self._read(
            self._contract.functions.getEncryptedValue(record_id),
            f"read handle for {record_id}",
        )
        return to_hex(handle)

    async def check_availability(self) -> bool:
        available = await self._read(self._contract.functions.isAvailable(), "check availability")
        return bool(available)

    async def create_record(
        self,
        record_id: str,
        name: str,
        ciphertext: str,
        proof: str,
        public_value: int,
        aux_value: int,
        description: str,
    ) -> PendingTransaction:
        call = self._contract.functions.createBusinessData(
            record_id, name, to_bytes(ciphertext), to_bytes(proof),
            int(public_value), int(aux_value), description,
        )
        return await self._send(call)

    async def verify_decryption(
        self,
        record_id: str,
        encoded_clear_values: bytes,
        decryption_proof: bytes,
    ) -> PendingTransaction:
        call = self._contract.functions.verifyDecryption(
            record_id, to_bytes(encoded_clear_values), to_bytes(decryption_proof),
        )
        return await self._send(call)

    async def _send(self, call: Any) -> PendingTransaction:
        if self._account is None:
            raise LedgerUnavailableError("Connection has no signer")
        try:
            nonce = await self._w3.eth.get_transaction_count(self._account.address)
            tx = await call.build_transaction({
                "from": self._account.address,
                "nonce": nonce,
                "chainId": self._chain_id,
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except (ContractLogicError, ValueError) + NODE_ERRORS as exc:
            raise classify_error(exc) from exc
        logger.info("Sent tx %s", to_hex(tx_hash))
        return Web3PendingTransaction(self._w3, tx_hash, self._tx_timeout)

    async def _read(self, call: Any, what: str) -> Any:
        try:
            return await call.call()
        except NODE_ERRORS as exc:
            raise FetchError(f"Failed to {what}: {str(exc) or exc.__class__.__name__}") from exc


class Web3LedgerGateway(LedgerGateway):
    """Gateway to the record contract on an EVM chain.

    Usage:
        gateway = Web3LedgerGateway(rpc_url, contract_address, private_key=key)
        conn = await gateway.with_signer()
    """

    def __init__(
        self,
        rpc_url: Optional[str],
        contract_address: Optional[str],
        private_key: Optional[str] = None,
        chain_id: int = 11155111,  # Sepolia
        tx_timeout: float = 300,
    ) -> None:
        self._rpc_url = rpc_url
        self._contract_address = contract_address
        self._private_key = private_key
        self._chain_id = chain_id
        self._tx_timeout = tx_timeout
        self._w3: Optional[AsyncWeb3] = None

    async def read_only(self) -> LedgerConnection:
        return Web3LedgerConnection(
            self._provider(), self._require_address(), self._chain_id, self._tx_timeout,
        )

    async def with_signer(self) -> LedgerConnection:
        if not self._private_key:
            raise LedgerUnavailableError("No signing key configured")
        account = Account.from_key(self._private_key)
        return Web3LedgerConnection(
            self._provider(), self._require_address(), self._chain_id,
            self._tx_timeout, account=account,
        )

    @property
    def signer_address(self) -> Optional[str]:
        if not self._private_key:
            return None
        return Account.from_key(self._private_key).address

    def _provider(self) -> AsyncWeb3:
        if not self._rpc_url:
            raise LedgerUnavailableError("No RPC URL configured")
        if self._w3 is None:
            self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self._rpc_url))
        return self._w3

    def _require_address(self) -> str:
        if not self._contract_address:
            raise LedgerUnavailableError("No contract address configured")
        return self._contract_address
